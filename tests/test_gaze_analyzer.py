"""estimate_gaze_direction 单元测试"""

import pytest

from detectors.gaze_analyzer import (
    LEFT_EYE_INNER,
    LEFT_EYE_OUTER,
    RIGHT_EYE_INNER,
    RIGHT_EYE_OUTER,
    estimate_gaze_direction,
)
from models.data_models import GazeDirection

# 左眼中心 (225, 200)，右眼中心 (415, 200)，眼宽 50
LEFT_CENTER = (225.0, 200.0)
RIGHT_CENTER = (415.0, 200.0)


def _make_mesh():
    mesh = [(320.0, 240.0, 0.0)] * 478
    mesh[LEFT_EYE_OUTER] = (200.0, 200.0, 0.0)
    mesh[LEFT_EYE_INNER] = (250.0, 200.0, 0.0)
    mesh[RIGHT_EYE_INNER] = (390.0, 200.0, 0.0)
    mesh[RIGHT_EYE_OUTER] = (440.0, 200.0, 0.0)
    return mesh


def _iris(dx=0.0, dy=0.0):
    return [
        (LEFT_CENTER[0] + dx, LEFT_CENTER[1] + dy),
        (RIGHT_CENTER[0] + dx, RIGHT_CENTER[1] + dy),
    ]


class TestEstimateGazeDirection:

    @pytest.mark.parametrize("dx, dy, expected", [
        (0.0, 0.0, GazeDirection.CENTER),
        (3.0, 2.0, GazeDirection.CENTER),
        (10.0, 0.0, GazeDirection.RIGHT),
        (-10.0, 0.0, GazeDirection.LEFT),
        (0.0, 8.0, GazeDirection.DOWN),
        (0.0, -8.0, GazeDirection.UP),
    ])
    def test_direction(self, dx, dy, expected):
        assert estimate_gaze_direction(_make_mesh(), _iris(dx, dy)) == expected

    def test_horizontal_wins_over_vertical(self):
        assert estimate_gaze_direction(_make_mesh(), _iris(10.0, 10.0)) == GazeDirection.RIGHT

    def test_missing_iris_is_unknown(self):
        assert estimate_gaze_direction(_make_mesh(), None) == GazeDirection.UNKNOWN

    def test_single_iris_is_unknown(self):
        assert estimate_gaze_direction(_make_mesh(), _iris()[:1]) == GazeDirection.UNKNOWN

    def test_missing_mesh_is_unknown(self):
        assert estimate_gaze_direction(None, _iris()) == GazeDirection.UNKNOWN
