"""综合困倦判断模块：跨帧累积证据，而不是单帧阈值"""

import logging
from typing import List, Optional

from models.data_models import DrowsinessAssessment, FatigueLevel, HeadPose
from evaluators.attention_scorer import assess_fatigue_level

logger = logging.getLogger(__name__)

DROWSY_EAR_THRESHOLD = 0.18
SLOW_BLINK_MS = 500
SUSTAINED_CLOSED_MS = 2000
HEAD_DROP_PITCH = 15.0
HEAD_DROP_DELTA = 5.0
YAWN_MAR = 0.6
LOW_BLINK_RATE = 8
DECAY_INTERVAL_MS = 20000
DROWSY_SCORE_THRESHOLD = 30


class FatigueEvaluator:
    """
    持有困倦证据计数器，汇总为困倦分数和触发原因。

    证据及分值：
    - 持续闭眼超过 2 秒: 40
    - 窗口内慢眨眼 (闭眼 > 500ms) 至少 3 次: 25
    - 窗口内低头 (pitch 增量 > 5° 且 pitch > 15°) 至少 2 次: 20
    - 眨眼频率低于 8 次/分: 15
    - 打哈欠 (MAR > 0.6): 10

    总分 >= 30 判定为困倦。慢眨眼和低头计数每 20 秒各衰减 1。
    每个检测会话应持有独立实例，停止时调用 reset()。
    """

    def __init__(self):
        self.reset()

    def reset(self):
        """重置全部计数器"""
        self.eye_closed_duration = 0
        self.slow_blink_count = 0
        self.head_drop_count = 0
        self.consecutive_drowsy_frames = 0
        self._eye_closed = False
        self._eye_state_changed_at: Optional[int] = None
        self._last_pitch = 0.0
        self._last_decay_at: Optional[int] = None

    def evaluate(self, ear: float, mar: float, head_pose: HeadPose, blink_rate: int, now: int) -> DrowsinessAssessment:
        """
        更新证据并给出本帧困倦判定。

        Args:
            ear: 双眼平均 EAR
            mar: MAR
            head_pose: 头部姿态
            blink_rate: 每分钟眨眼次数
            now: 当前时间 (ms)

        Returns:
            DrowsinessAssessment(is_drowsy, score, reasons)
        """
        if self._eye_state_changed_at is None:
            self._eye_state_changed_at = now
        if self._last_decay_at is None:
            self._last_decay_at = now

        self._track_eye_state(ear, now)
        self._track_head_drop(head_pose.pitch)

        score = 0
        reasons: List[str] = []

        if self.eye_closed_duration > SUSTAINED_CLOSED_MS:
            score += 40
            reasons.append("持续闭眼")
        if self.slow_blink_count >= 3:
            score += 25
            reasons.append("慢眨眼")
        if self.head_drop_count >= 2:
            score += 20
            reasons.append("低头")
        if blink_rate < LOW_BLINK_RATE:
            score += 15
            reasons.append("眨眼减少")
        if mar > YAWN_MAR:
            score += 10
            reasons.append("哈欠")

        self._decay(now)

        is_drowsy = score >= DROWSY_SCORE_THRESHOLD
        if is_drowsy:
            logger.info("检测到困倦 score=%d reasons=%s", score, reasons)
        return DrowsinessAssessment(is_drowsy=is_drowsy, score=score, reasons=reasons)

    def detect_advanced_drowsiness(self, ear: float, mar: float, head_pose: HeadPose, blink_rate: int, now: int) -> bool:
        return self.evaluate(ear, mar, head_pose, blink_rate, now).is_drowsy

    def _track_eye_state(self, ear: float, now: int):
        closed = ear < DROWSY_EAR_THRESHOLD

        if closed != self._eye_closed:
            duration = now - self._eye_state_changed_at
            if self._eye_closed and duration > SLOW_BLINK_MS:
                self.slow_blink_count += 1
                logger.info("慢眨眼 duration=%dms count=%d", duration, self.slow_blink_count)
            self._eye_closed = closed
            self._eye_state_changed_at = now
            if not closed:
                self.eye_closed_duration = 0

        if closed:
            self.eye_closed_duration = now - self._eye_state_changed_at

    def _track_head_drop(self, pitch: float):
        if pitch - self._last_pitch > HEAD_DROP_DELTA and pitch > HEAD_DROP_PITCH:
            self.head_drop_count += 1
            logger.info("低头 pitch=%.1f count=%d", pitch, self.head_drop_count)
        self._last_pitch = pitch

    def _decay(self, now: int):
        if now - self._last_decay_at >= DECAY_INTERVAL_MS:
            self.slow_blink_count = max(0, self.slow_blink_count - 1)
            self.head_drop_count = max(0, self.head_drop_count - 1)
            self._last_decay_at = now

    def update_consecutive(self, is_drowsy: bool) -> int:
        """连续困倦帧计数，非困倦帧清零"""
        if is_drowsy:
            self.consecutive_drowsy_frames += 1
        else:
            self.consecutive_drowsy_frames = 0
        return self.consecutive_drowsy_frames

    def assess_fatigue_level(self, attention_score: int, ear: float) -> FatigueLevel:
        return assess_fatigue_level(attention_score, ear, self.consecutive_drowsy_frames)
