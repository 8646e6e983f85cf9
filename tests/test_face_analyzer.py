"""FaceAnalyzer 单帧流水线测试"""

import pytest

from evaluators.face_analyzer import FaceAnalyzer
from models.data_models import FaceData, FatigueLevel, GazeDirection
from mesh_factory import make_face


def _run(analyzer, face, ticks, start=0, step=100):
    return [analyzer.analyze(face, start + i * step) for i in range(ticks)]


class TestStableFrameGate:
    """稳定前 9 帧使用保守替代值，第 10 帧起使用原始计算值"""

    def test_first_nine_ticks_are_forced(self):
        analyzer = FaceAnalyzer()
        results = _run(analyzer, make_face(ear=0.1), 9)
        for result in results:
            assert result.attention_score >= 70
            assert result.fatigue_level == FatigueLevel.LOW
            assert result.is_drowsy is False
            assert result.blink_rate >= 18
        assert not analyzer.is_stable

    def test_tenth_tick_uses_raw_values(self):
        analyzer = FaceAnalyzer()
        result = _run(analyzer, make_face(ear=0.1), 10)[-1]
        assert analyzer.is_stable
        # 100 - 40 (EAR) - 15 (无眨眼)
        assert result.attention_score == 45
        assert result.blink_rate == 0
        assert result.fatigue_level == FatigueLevel.HIGH
        assert not result.is_attentive

    def test_attentive_face_after_warmup(self):
        analyzer = FaceAnalyzer(stable_frame_threshold=1)
        result = analyzer.analyze(make_face(ear=0.3), 0)
        assert result.gaze_direction == GazeDirection.CENTER
        assert result.ear == pytest.approx(0.3)
        assert result.mar == pytest.approx(0.125)
        assert not result.is_yawning
        assert result.confidence == 90


class TestFaceStatsSummary:

    def test_none_before_any_frame(self):
        assert FaceAnalyzer().face_stats_summary() is None

    def test_summary_after_frames(self):
        analyzer = FaceAnalyzer()
        _run(analyzer, make_face(ear=0.3), 10)
        summary = analyzer.face_stats_summary()
        assert summary["framesAnalyzed"] == 10
        # 前 9 帧 94 分（视线稳定性中性值 70 扣 6 分），第 10 帧 85 分（无眨眼扣 15 分）
        assert summary["avgAttentionScore"] == pytest.approx(93.1)
        assert summary["minAttentionScore"] == 85
        assert summary["avgEar"] == pytest.approx(0.3)
        assert summary["drowsyFrames"] == 0
        assert summary["yawnFrames"] == 0
        assert summary["blinkRate"] == 0

    def test_yawns_counted(self):
        analyzer = FaceAnalyzer()
        _run(analyzer, make_face(mar=0.75), 3)
        assert analyzer.face_stats_summary()["yawnFrames"] == 3


class TestReset:

    def test_reset_returns_to_unstable(self):
        analyzer = FaceAnalyzer()
        _run(analyzer, make_face(), 12)
        analyzer.reset()
        assert not analyzer.is_stable
        assert analyzer.face_stats_summary() is None
        assert analyzer.evaluator.consecutive_drowsy_frames == 0

    def test_partial_face_never_raises(self):
        analyzer = FaceAnalyzer(stable_frame_threshold=1)
        result = analyzer.analyze(FaceData(box=(0, 0, 10, 10)), 0)
        assert result.gaze_direction == GazeDirection.UNKNOWN
        assert result.emotion == "neutral"
