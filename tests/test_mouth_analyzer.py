"""MouthAnalyzer / compute_mar 单元测试"""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from detectors.mouth_analyzer import (
    DEFAULT_MAR,
    MOUTH_INDICES,
    MouthAnalyzer,
    compute_mar,
    is_yawning,
)


def _mouth_points(half_open, width=80.0, x0=280.0, y=330.0):
    """左嘴角、上唇 x3、右嘴角、下唇 x3"""
    return [
        (x0, y),
        (x0 + 15, y - half_open),
        (x0 + 30, y - half_open),
        (x0 + 50, y - half_open),
        (x0 + width, y),
        (x0 + 50, y + half_open),
        (x0 + 30, y + half_open),
        (x0 + 15, y + half_open),
    ]


class TestComputeMar:
    """测试 compute_mar()"""

    def test_closed_mouth(self):
        assert compute_mar(_mouth_points(0.0)) == pytest.approx(0.0)

    def test_open_mouth(self):
        # 两条竖直距离都是 20，嘴宽 80
        assert compute_mar(_mouth_points(10.0)) == pytest.approx(0.25)

    def test_yawn(self):
        mar = compute_mar(_mouth_points(30.0))
        assert mar == pytest.approx(0.75)
        assert is_yawning(mar)

    def test_zero_width_returns_default(self):
        assert compute_mar([(5.0, 5.0)] * 8) == DEFAULT_MAR

    @given(st.lists(st.tuples(st.floats(-500, 500), st.floats(-500, 500)), max_size=7))
    def test_fewer_than_eight_points_returns_default(self, points):
        """点数不足 8 个时总是返回 0.0"""
        assert compute_mar(points) == DEFAULT_MAR


class TestIsYawning:

    def test_threshold_is_exclusive(self):
        assert not is_yawning(0.6)
        assert is_yawning(0.61)


class TestMouthAnalyzer:

    def test_reads_mouth_indices_from_mesh(self):
        mesh = [(320.0, 240.0, 0.0)] * 478
        for idx, p in zip(MOUTH_INDICES, _mouth_points(10.0)):
            mesh[idx] = (p[0], p[1], 0.0)
        assert MouthAnalyzer().analyze(mesh) == pytest.approx(0.25)

    def test_missing_mesh(self):
        assert MouthAnalyzer().analyze(None) == DEFAULT_MAR
