"""注意力评分与疲劳等级单元测试"""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from evaluators.attention_scorer import assess_fatigue_level, calculate_attention_score
from models.data_models import FatigueLevel, GazeDirection, HeadPose

ears = st.floats(min_value=0.0, max_value=0.5, allow_nan=False)
mars = st.floats(min_value=0.0, max_value=1.5, allow_nan=False)
angles = st.floats(min_value=-45.0, max_value=45.0, allow_nan=False)
blink_rates = st.integers(min_value=0, max_value=120)
stabilities = st.integers(min_value=0, max_value=100)


def _score(ear=0.3, mar=0.1, yaw=0.0, pitch=0.0, blink_rate=15, stability=100):
    return calculate_attention_score(
        ear, mar, HeadPose(yaw=yaw, pitch=pitch), GazeDirection.CENTER, blink_rate, stability,
    )


class TestCalculateAttentionScore:

    def test_attentive_baseline_is_100(self):
        assert _score() == 100

    @pytest.mark.parametrize("ear, expected", [(0.10, 60), (0.17, 80), (0.22, 90), (0.25, 100)])
    def test_ear_penalty(self, ear, expected):
        assert _score(ear=ear) == expected

    @pytest.mark.parametrize("mar, expected", [(0.3, 100), (0.4, 90), (0.6, 80)])
    def test_mar_penalty(self, mar, expected):
        assert _score(mar=mar) == expected

    @pytest.mark.parametrize("yaw, pitch, expected", [(10, 0, 100), (8, 5, 95), (15, 10, 85), (20, 20, 70)])
    def test_head_angle_penalty(self, yaw, pitch, expected):
        assert _score(yaw=yaw, pitch=pitch) == expected

    def test_gaze_stability_penalty(self):
        assert _score(stability=70) == 94
        assert _score(stability=0) == 80

    def test_gaze_penalty_rounds_half_up(self):
        # (100 - 85) * 0.2 = 3.0; (100 - 83) * 0.2 = 3.4; (100 - 77) * 0.2 = 4.6
        assert _score(stability=85) == 97
        assert _score(stability=83) == 97
        assert _score(stability=77) == 95

    @pytest.mark.parametrize("rate, expected", [(5, 85), (6, 90), (11, 90), (12, 100), (36, 100), (37, 90)])
    def test_blink_rate_penalty(self, rate, expected):
        assert _score(blink_rate=rate) == expected

    def test_worst_case_clamped_at_zero(self):
        assert _score(ear=0.0, mar=1.0, yaw=45, pitch=30, blink_rate=0, stability=0) == 0

    @given(ears, mars, angles, angles, blink_rates, stabilities)
    def test_always_in_range(self, ear, mar, yaw, pitch, blink_rate, stability):
        score = _score(ear, mar, yaw, pitch, blink_rate, stability)
        assert 0 <= score <= 100

    @given(ears, ears, mars, blink_rates, stabilities)
    def test_lower_ear_never_increases_score(self, ear_a, ear_b, mar, blink_rate, stability):
        low, high = sorted((ear_a, ear_b))
        assert _score(ear=low, mar=mar, blink_rate=blink_rate, stability=stability) <= \
            _score(ear=high, mar=mar, blink_rate=blink_rate, stability=stability)

    @given(mars, mars, ears)
    def test_higher_mar_never_increases_score(self, mar_a, mar_b, ear):
        low, high = sorted((mar_a, mar_b))
        assert _score(ear=ear, mar=high) <= _score(ear=ear, mar=low)

    @given(angles, angles)
    def test_larger_head_angle_never_increases_score(self, a, b):
        small, large = sorted((abs(a), abs(b)))
        assert _score(yaw=large) <= _score(yaw=small)

    @given(stabilities, stabilities)
    def test_lower_stability_never_increases_score(self, a, b):
        low, high = sorted((a, b))
        assert _score(stability=low) <= _score(stability=high)


class TestAssessFatigueLevel:

    def test_score_alone_triggers_high(self):
        assert assess_fatigue_level(35, 0.30, 0) == FatigueLevel.HIGH

    @pytest.mark.parametrize("score, ear, frames", [(39, 0.3, 0), (90, 0.14, 0), (90, 0.3, 21)])
    def test_high(self, score, ear, frames):
        assert assess_fatigue_level(score, ear, frames) == FatigueLevel.HIGH

    @pytest.mark.parametrize("score, ear, frames", [(69, 0.3, 0), (90, 0.19, 0), (90, 0.3, 11)])
    def test_medium(self, score, ear, frames):
        assert assess_fatigue_level(score, ear, frames) == FatigueLevel.MEDIUM

    def test_low(self):
        assert assess_fatigue_level(70, 0.20, 10) == FatigueLevel.LOW
