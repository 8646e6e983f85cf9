"""视线方向估计模块"""

from typing import List, Optional, Sequence, Tuple

from models.data_models import GazeDirection

MESH_POINT_COUNT = 468

LEFT_EYE_INNER = 133
LEFT_EYE_OUTER = 33
RIGHT_EYE_INNER = 362
RIGHT_EYE_OUTER = 263

# 阈值按眼宽比例缩放，与分辨率和人脸大小无关
HORIZONTAL_RATIO = 0.15
VERTICAL_RATIO = 0.1


def estimate_gaze_direction(
    mesh: Optional[Sequence[Sequence[float]]],
    iris: Optional[List[Tuple[float, float]]],
) -> GazeDirection:
    """
    根据虹膜中心相对眼睛中心的偏移估计视线方向。

    Args:
        mesh: 人脸网格点（至少 468 个）
        iris: 两只眼的虹膜中心 [(x, y), (x, y)]

    Returns:
        GazeDirection；虹膜或网格缺失时返回 UNKNOWN
    """
    if not iris or len(iris) < 2 or iris[0] is None or iris[1] is None:
        return GazeDirection.UNKNOWN
    if mesh is None or len(mesh) < MESH_POINT_COUNT:
        return GazeDirection.UNKNOWN

    left_inner, left_outer = mesh[LEFT_EYE_INNER], mesh[LEFT_EYE_OUTER]
    right_inner, right_outer = mesh[RIGHT_EYE_INNER], mesh[RIGHT_EYE_OUTER]

    left_center = ((left_inner[0] + left_outer[0]) / 2, (left_inner[1] + left_outer[1]) / 2)
    right_center = ((right_inner[0] + right_outer[0]) / 2, (right_inner[1] + right_outer[1]) / 2)

    avg_x = ((iris[0][0] - left_center[0]) + (iris[1][0] - right_center[0])) / 2
    avg_y = ((iris[0][1] - left_center[1]) + (iris[1][1] - right_center[1])) / 2

    eye_width = abs(left_outer[0] - left_inner[0])
    threshold_x = eye_width * HORIZONTAL_RATIO
    threshold_y = eye_width * VERTICAL_RATIO

    if abs(avg_x) < threshold_x and abs(avg_y) < threshold_y:
        return GazeDirection.CENTER
    if avg_x > threshold_x:
        return GazeDirection.RIGHT
    if avg_x < -threshold_x:
        return GazeDirection.LEFT
    if avg_y > threshold_y:
        return GazeDirection.DOWN
    if avg_y < -threshold_y:
        return GazeDirection.UP
    return GazeDirection.CENTER
