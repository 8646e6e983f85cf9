"""核心数据模型定义"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Tuple


class GazeDirection(str, Enum):
    """视线方向，UNKNOWN 表示没有方向信号（不等同于 CENTER）"""
    LEFT = "left"
    RIGHT = "right"
    UP = "up"
    DOWN = "down"
    CENTER = "center"
    UNKNOWN = "unknown"


class FatigueLevel(str, Enum):
    """疲劳等级"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SessionStatus(str, Enum):
    """后端计时会话状态"""
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TimerState(str, Enum):
    """计时状态机状态"""
    IDLE = "idle"
    WAITING_FOR_FACE = "waiting_for_face"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"


@dataclass
class FaceData:
    """检测器输出的单张人脸，mesh / iris / emotion 均可能缺失"""
    box: Tuple[float, float, float, float]
    mesh: Optional[Sequence[Sequence[float]]] = None
    iris: Optional[List[Tuple[float, float]]] = None
    emotion: Optional[List[Tuple[str, float]]] = None
    box_score: Optional[float] = None


@dataclass
class FrameDetection:
    """单帧检测结果，只在一次检测循环内有效"""
    faces: List[FaceData] = field(default_factory=list)


@dataclass
class HeadPose:
    """头部姿态（角度制）"""
    yaw: float = 0.0
    pitch: float = 0.0
    roll: float = 0.0


@dataclass
class FrameMetrics:
    """单帧提取出的原始指标"""
    ear: float
    mar: float
    head_pose: HeadPose
    gaze: GazeDirection
    emotion: str
    confidence: int


@dataclass
class DrowsinessAssessment:
    """多因素困倦判定结果"""
    is_drowsy: bool
    score: int
    reasons: List[str]


@dataclass
class AnalysisResult:
    """单帧综合分析结果"""
    is_drowsy: bool
    is_attentive: bool
    emotion: str
    ear: float
    mar: float
    is_yawning: bool
    gaze_direction: GazeDirection
    head_pose: HeadPose
    blink_rate: int
    attention_score: int
    fatigue_level: FatigueLevel
    confidence: int

    def to_dict(self) -> dict:
        data = asdict(self)
        data["gaze_direction"] = self.gaze_direction.value
        data["fatigue_level"] = self.fatigue_level.value
        return data


@dataclass
class Task:
    """计时所关联的任务"""
    id: str
    title: str = ""

    @property
    def is_local(self) -> bool:
        """默认任务和本地任务不向后端提交 taskId"""
        return self.id.startswith("default-") or self.id.startswith("local-")


@dataclass
class TimerSession:
    """后端计时会话记录，duration / total_pause_time 单位为秒"""
    id: str
    task_id: Optional[str]
    start_time: str
    duration: float = 0.0
    pause_count: int = 0
    total_pause_time: float = 0.0
    status: SessionStatus = SessionStatus.ACTIVE
    face_stats_summary: Optional[dict] = None

    @classmethod
    def from_dict(cls, data: dict) -> "TimerSession":
        """解析后端返回的 JSON（camelCase 字段）"""
        return cls(
            id=str(data["id"]),
            task_id=data.get("taskId"),
            start_time=data.get("startTime", ""),
            duration=float(data.get("duration") or 0),
            pause_count=int(data.get("pauseCount") or 0),
            total_pause_time=float(data.get("totalPauseTime") or 0),
            status=SessionStatus(data.get("status", SessionStatus.ACTIVE.value)),
            face_stats_summary=data.get("faceStatsSummary"),
        )


@dataclass
class TimerSnapshot:
    """用于页面刷新 / 进程重启后恢复的计时快照"""
    task: Optional[Task]
    elapsed: int
    active: bool
    paused: bool
    session_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "task": asdict(self.task) if self.task else None,
            "elapsed": self.elapsed,
            "active": self.active,
            "paused": self.paused,
            "sessionId": self.session_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TimerSnapshot":
        task_data = data.get("task")
        task = Task(id=task_data["id"], title=task_data.get("title", "")) if task_data else None
        return cls(
            task=task,
            elapsed=max(0, int(data.get("elapsed") or 0)),
            active=bool(data.get("active", False)),
            paused=bool(data.get("paused", False)),
            session_id=data.get("sessionId"),
        )
