"""单帧指标提取：把检测器输出的人脸转换为 EAR / MAR / 头部姿态 / 视线等标量"""

from models.data_models import FaceData, FrameMetrics
from detectors.eye_analyzer import EyeAnalyzer
from detectors.gaze_analyzer import estimate_gaze_direction
from detectors.head_pose_analyzer import estimate_head_pose
from detectors.mouth_analyzer import MouthAnalyzer

DEFAULT_EMOTION = "neutral"
DEFAULT_BOX_SCORE = 0.5


class MetricExtractor:
    """组合各分析器，所有缺失字段都回退为安全默认值"""

    def __init__(self):
        self.eye_analyzer = EyeAnalyzer()
        self.mouth_analyzer = MouthAnalyzer()

    def extract(self, face: FaceData) -> FrameMetrics:
        mesh = face.mesh
        emotion = face.emotion[0][0] if face.emotion else DEFAULT_EMOTION
        box_score = face.box_score if face.box_score is not None else DEFAULT_BOX_SCORE

        return FrameMetrics(
            ear=self.eye_analyzer.analyze(mesh),
            mar=self.mouth_analyzer.analyze(mesh),
            head_pose=estimate_head_pose(mesh),
            gaze=estimate_gaze_direction(mesh, face.iris),
            emotion=emotion,
            confidence=int(round(box_score * 100)),
        )
