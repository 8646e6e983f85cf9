"""时间平滑模块：维护 EAR / 注意力 / 视线 / 眨眼的滚动历史，输出稳定的时间窗口指标"""

import logging
from collections import Counter, deque
from typing import Deque, List, Optional

from models.data_models import GazeDirection

logger = logging.getLogger(__name__)

EAR_HISTORY_LENGTH = 30
ATTENTION_HISTORY_LENGTH = 60
GAZE_HISTORY_LENGTH = 30


class BlinkDetector:
    """
    边沿触发的眨眼检测。

    EAR 跌破阈值记为闭眼边沿；重新睁眼时闭眼时长落在
    [min_duration_ms, max_duration_ms] 内才算一次有效眨眼。

    眨眼频率只统计最近 10 秒并乘以 6 换算为每分钟次数，
    以较短窗口换取响应速度；下游阈值 (6 / 12 / 36 次/分) 按此换算标定。
    """

    def __init__(
        self,
        threshold: float = 0.22,
        min_duration_ms: int = 80,
        max_duration_ms: int = 600,
        window_ms: int = 10000,
    ):
        self.threshold = threshold
        self.min_duration_ms = min_duration_ms
        self.max_duration_ms = max_duration_ms
        self.window_ms = window_ms
        self._timestamps: List[int] = []
        self._is_closed = False
        self._closed_at = 0

    @property
    def is_eye_closed(self) -> bool:
        return self._is_closed

    def update(self, ear: float, now: int) -> int:
        """输入当前 EAR，返回每分钟眨眼次数"""
        if ear < self.threshold and not self._is_closed:
            self._is_closed = True
            self._closed_at = now
        elif ear >= self.threshold and self._is_closed:
            duration = now - self._closed_at
            if self.min_duration_ms <= duration <= self.max_duration_ms:
                self._timestamps.append(now)
                logger.debug("有效眨眼 duration=%dms", duration)
            self._is_closed = False

        return self.blinks_per_minute(now)

    def recent_blinks(self, now: int) -> List[int]:
        """读取时裁剪掉窗口外的时间戳"""
        self._timestamps = [t for t in self._timestamps if now - t <= self.window_ms]
        return list(self._timestamps)

    def blinks_per_minute(self, now: int) -> int:
        return len(self.recent_blinks(now)) * (60000 // self.window_ms)

    def reset(self):
        self._timestamps = []
        self._is_closed = False
        self._closed_at = 0


class GazeStabilityTracker:
    """最近 30 个视线样本中众数方向占比，映射为 0-100 的稳定性分数"""

    NEUTRAL_SCORE = 70
    MIN_SAMPLES = 10

    def __init__(self, history_length: int = GAZE_HISTORY_LENGTH):
        self.history: Deque[GazeDirection] = deque(maxlen=history_length)

    def update(self, direction: GazeDirection) -> int:
        # UNKNOWN 不是方向信号，不计入历史
        if direction != GazeDirection.UNKNOWN:
            self.history.append(direction)
        return self.score()

    def score(self) -> int:
        if len(self.history) < self.MIN_SAMPLES:
            return self.NEUTRAL_SCORE

        _, count = Counter(self.history).most_common(1)[0]
        ratio = count / len(self.history)

        if ratio >= 0.8:
            return 100
        if ratio >= 0.7:
            return 85
        if ratio >= 0.6:
            return 70
        if ratio >= 0.5:
            return 50
        return int(ratio * 100 + 0.5)

    def reset(self):
        self.history.clear()


class StableFrameGate:
    """检测开始后的连续帧计数，达到阈值前的输出视为冷启动噪声"""

    def __init__(self, threshold: int = 10):
        self.threshold = threshold
        self.count = 0

    def tick(self) -> bool:
        self.count += 1
        return self.is_stable

    @property
    def is_stable(self) -> bool:
        return self.count >= self.threshold

    def reset(self):
        self.count = 0


class TemporalSmoother:
    """持有一次检测会话内的全部滚动历史，stop / reset 时整体清空"""

    def __init__(self, stable_frame_threshold: int = 10, blink_detector: Optional[BlinkDetector] = None):
        self.blink_detector = blink_detector or BlinkDetector()
        self.gaze_tracker = GazeStabilityTracker()
        self.gate = StableFrameGate(stable_frame_threshold)
        self.ear_history: Deque[float] = deque(maxlen=EAR_HISTORY_LENGTH)
        self.attention_history: Deque[int] = deque(maxlen=ATTENTION_HISTORY_LENGTH)

    def detect_blink(self, ear: float, now: int) -> int:
        return self.blink_detector.update(ear, now)

    def calculate_gaze_stability(self, direction: GazeDirection) -> int:
        return self.gaze_tracker.update(direction)

    def push_ear(self, ear: float):
        self.ear_history.append(ear)

    def push_attention(self, score: int):
        self.attention_history.append(score)

    @property
    def is_stable(self) -> bool:
        return self.gate.is_stable

    def reset(self):
        self.blink_detector.reset()
        self.gaze_tracker.reset()
        self.gate.reset()
        self.ear_history.clear()
        self.attention_history.clear()
