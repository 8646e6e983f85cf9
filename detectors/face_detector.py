"""人脸关键点检测模块，基于 MediaPipe FaceMesh（启用虹膜精修）"""

import asyncio
import logging
from typing import List, Optional, Tuple

import cv2
import mediapipe as mp
import numpy as np

from models.data_models import FaceData, FrameDetection

logger = logging.getLogger(__name__)

# refine_landmarks=True 时在 468 点网格后追加两组虹膜点，各 5 个，首点为中心
LEFT_IRIS_CENTER = 468
RIGHT_IRIS_CENTER = 473
REFINED_POINT_COUNT = 478


def _build_face_mesh(max_num_faces: int, min_detection_confidence: float):
    return mp.solutions.face_mesh.FaceMesh(
        max_num_faces=max_num_faces,
        min_detection_confidence=min_detection_confidence,
        min_tracking_confidence=0.5,
        refine_landmarks=True,
    )


class FaceDetector:
    """
    使用 MediaPipe FaceMesh 检测人脸网格和虹膜中心。

    模型加载是异步的：load() 完成前 is_loaded 为 False，
    加载失败时错误信息保存在 load_error 中，不会抛出。
    """

    def __init__(
        self,
        max_num_faces: int = 1,
        min_detection_confidence: float = 0.5,
    ):
        self.max_num_faces = max_num_faces
        self.min_detection_confidence = min_detection_confidence
        self._face_mesh = None
        self.load_error: Optional[str] = None

    @property
    def is_loaded(self) -> bool:
        return self._face_mesh is not None

    async def load(self) -> bool:
        """在工作线程中构建 FaceMesh，返回是否加载成功"""
        if self.is_loaded:
            return True
        try:
            self._face_mesh = await asyncio.to_thread(
                _build_face_mesh, self.max_num_faces, self.min_detection_confidence
            )
        except Exception as e:
            self.load_error = f"AI 模型加载失败: {e}"
            logger.error("FaceMesh 初始化失败: %s", e)
            return False
        self.load_error = None
        logger.info("FaceMesh 模型加载完成")
        return True

    async def detect(self, frame: np.ndarray) -> FrameDetection:
        """异步检测，推理在工作线程中执行，不阻塞事件循环"""
        return await asyncio.to_thread(self.detect_frame, frame)

    def detect_frame(self, frame: np.ndarray) -> FrameDetection:
        """
        检测单帧图像中的人脸。

        Args:
            frame: BGR 格式的 OpenCV 图像帧

        Returns:
            FrameDetection；未检测到人脸时 faces 为空列表
        """
        if not self.is_loaded:
            raise RuntimeError("FaceDetector 尚未加载")

        h, w = frame.shape[:2]

        # BGR -> RGB
        rgb_frame = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        rgb_frame.flags.writeable = False

        results = self._face_mesh.process(rgb_frame)

        if not results.multi_face_landmarks:
            return FrameDetection(faces=[])

        faces = [
            self._to_face_data(face.landmark, w, h)
            for face in results.multi_face_landmarks
        ]
        return FrameDetection(faces=faces)

    @staticmethod
    def _to_face_data(landmarks, w: int, h: int) -> FaceData:
        """将归一化坐标转换为像素坐标，并由网格外接框得到人脸框"""
        mesh = [(lm.x * w, lm.y * h, lm.z * w) for lm in landmarks]

        xs = [p[0] for p in mesh]
        ys = [p[1] for p in mesh]
        box = (min(xs), min(ys), max(xs) - min(xs), max(ys) - min(ys))

        iris: Optional[List[Tuple[float, float]]] = None
        if len(mesh) >= REFINED_POINT_COUNT:
            iris = [
                (mesh[LEFT_IRIS_CENTER][0], mesh[LEFT_IRIS_CENTER][1]),
                (mesh[RIGHT_IRIS_CENTER][0], mesh[RIGHT_IRIS_CENTER][1]),
            ]

        return FaceData(box=box, mesh=mesh, iris=iris)

    def close(self):
        """释放 MediaPipe 资源"""
        if self._face_mesh is not None:
            self._face_mesh.close()
            self._face_mesh = None
