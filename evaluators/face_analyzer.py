"""单帧分析流水线：指标提取 -> 时间平滑 -> 评分，输出 AnalysisResult"""

import logging
from typing import Optional

from models.data_models import AnalysisResult, FaceData, FatigueLevel
from detectors.metric_extractor import MetricExtractor
from detectors.mouth_analyzer import is_yawning
from evaluators.attention_scorer import calculate_attention_score
from evaluators.fatigue_evaluator import FatigueEvaluator
from evaluators.temporal_smoother import TemporalSmoother

logger = logging.getLogger(__name__)

# 稳定前的保守替代值
WARMUP_MIN_BLINK_RATE = 18
WARMUP_MIN_ATTENTION = 70
ATTENTIVE_SCORE = 70


class FaceAnalyzer:
    """按固定顺序处理每一帧，并持有本次检测会话的全部有状态组件"""

    def __init__(
        self,
        extractor: Optional[MetricExtractor] = None,
        smoother: Optional[TemporalSmoother] = None,
        evaluator: Optional[FatigueEvaluator] = None,
        stable_frame_threshold: int = 10,
    ):
        self.extractor = extractor or MetricExtractor()
        self.smoother = smoother or TemporalSmoother(stable_frame_threshold)
        self.evaluator = evaluator or FatigueEvaluator()
        self._frames = 0
        self._drowsy_frames = 0
        self._yawn_frames = 0
        self._last_blink_rate = 0

    @property
    def is_stable(self) -> bool:
        return self.smoother.is_stable

    def analyze(self, face: FaceData, now: int) -> AnalysisResult:
        """
        分析一张人脸。

        稳定帧门限未满足时：眨眼频率至少 18，注意力至少 70，
        疲劳等级固定为 low，困倦固定为 False。
        """
        is_stable = self.smoother.gate.tick()
        metrics = self.extractor.extract(face)

        raw_blink_rate = self.smoother.detect_blink(metrics.ear, now)
        blink_rate = raw_blink_rate if is_stable else max(WARMUP_MIN_BLINK_RATE, raw_blink_rate)

        if is_stable:
            is_drowsy = self.evaluator.detect_advanced_drowsiness(
                metrics.ear, metrics.mar, metrics.head_pose, blink_rate, now
            )
        else:
            is_drowsy = False
        self.evaluator.update_consecutive(is_drowsy)

        self.smoother.push_ear(metrics.ear)
        gaze_stability = self.smoother.calculate_gaze_stability(metrics.gaze)

        attention_score = calculate_attention_score(
            metrics.ear, metrics.mar, metrics.head_pose, metrics.gaze, blink_rate, gaze_stability
        )
        if is_stable:
            fatigue_level = self.evaluator.assess_fatigue_level(attention_score, metrics.ear)
        else:
            attention_score = max(WARMUP_MIN_ATTENTION, attention_score)
            fatigue_level = FatigueLevel.LOW

        self.smoother.push_attention(attention_score)

        yawning = is_yawning(metrics.mar)
        self._frames += 1
        self._drowsy_frames += int(is_drowsy)
        self._yawn_frames += int(yawning)
        self._last_blink_rate = blink_rate

        if self._frames % 5 == 0:
            logger.debug(
                "frame=%d stable=%s ear=%.3f mar=%.3f blink=%d/min attention=%d gaze=%s fatigue=%s",
                self.smoother.gate.count, is_stable, metrics.ear, metrics.mar,
                blink_rate, attention_score, metrics.gaze.value, fatigue_level.value,
            )

        return AnalysisResult(
            is_drowsy=is_drowsy,
            is_attentive=attention_score > ATTENTIVE_SCORE,
            emotion=metrics.emotion,
            ear=metrics.ear,
            mar=metrics.mar,
            is_yawning=yawning,
            gaze_direction=metrics.gaze,
            head_pose=metrics.head_pose,
            blink_rate=blink_rate,
            attention_score=attention_score,
            fatigue_level=fatigue_level,
            confidence=metrics.confidence,
        )

    def face_stats_summary(self) -> Optional[dict]:
        """汇总本次会话的统计，随计时停止一起提交；无数据时返回 None"""
        if self._frames == 0:
            return None
        attention = list(self.smoother.attention_history)
        ears = list(self.smoother.ear_history)
        return {
            "framesAnalyzed": self._frames,
            "avgAttentionScore": round(sum(attention) / len(attention), 1) if attention else None,
            "minAttentionScore": min(attention) if attention else None,
            "avgEar": round(sum(ears) / len(ears), 3) if ears else None,
            "drowsyFrames": self._drowsy_frames,
            "yawnFrames": self._yawn_frames,
            "blinkRate": self._last_blink_rate,
        }

    def reset(self):
        self.smoother.reset()
        self.evaluator.reset()
        self._frames = 0
        self._drowsy_frames = 0
        self._yawn_frames = 0
        self._last_blink_rate = 0
