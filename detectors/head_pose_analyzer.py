"""头部姿态分析模块，基于人脸网格几何关系估计 yaw / pitch / roll"""

import math
from typing import Optional, Sequence

import numpy as np

from models.data_models import HeadPose

HEAD_POSE_INDICES = {
    "nose_tip": 1,
    "left_eye_outer": 33,
    "right_eye_outer": 263,
    "left_eye_inner": 133,
    "right_eye_inner": 362,
    "chin": 175,
    "forehead": 10,
}

MESH_POINT_COUNT = 468

YAW_LIMIT = 45.0
PITCH_LIMIT = 30.0
ROLL_LIMIT = 30.0

# 正常坐姿下眼睛中心位于额头到下巴高度的 40% 处
NORMAL_EYE_RATIO = 0.4
YAW_SCALE = 60.0
PITCH_SCALE = 150.0


def _clamp(value: float, limit: float) -> float:
    if math.isnan(value):
        return 0.0
    return float(np.clip(value, -limit, limit))


def estimate_head_pose(mesh: Optional[Sequence[Sequence[float]]]) -> HeadPose:
    """
    估计头部姿态。

    - yaw: 鼻尖相对双眼中心的水平偏移，按双眼外眼角距离归一化，限制在 ±45°
    - pitch: 眼睛中心在额头-下巴之间的相对位置与 0.4 的偏差，限制在 ±30°
    - roll: 双眼外眼角连线的倾角，限制在 ±30°

    Args:
        mesh: 人脸网格点（至少 468 个）

    Returns:
        HeadPose；关键点缺失时三个角度均为 0
    """
    if mesh is None or len(mesh) < MESH_POINT_COUNT:
        return HeadPose()

    try:
        pts = {name: (float(mesh[idx][0]), float(mesh[idx][1]))
               for name, idx in HEAD_POSE_INDICES.items()}
    except (IndexError, TypeError):
        return HeadPose()

    eye_corners = [
        pts["left_eye_outer"], pts["right_eye_outer"],
        pts["left_eye_inner"], pts["right_eye_inner"],
    ]
    eye_center_x = sum(p[0] for p in eye_corners) / 4.0
    eye_center_y = sum(p[1] for p in eye_corners) / 4.0

    face_width = abs(pts["right_eye_outer"][0] - pts["left_eye_outer"][0])
    if face_width > 0:
        yaw = (pts["nose_tip"][0] - eye_center_x) / face_width * YAW_SCALE
    else:
        yaw = 0.0

    face_height = abs(pts["forehead"][1] - pts["chin"][1])
    if face_height > 0:
        ratio = abs(pts["forehead"][1] - eye_center_y) / face_height
        pitch = (ratio - NORMAL_EYE_RATIO) * PITCH_SCALE
    else:
        pitch = 0.0

    dx = pts["right_eye_outer"][0] - pts["left_eye_outer"][0]
    dy = pts["right_eye_outer"][1] - pts["left_eye_outer"][1]
    roll = math.degrees(math.atan2(dy, dx))

    return HeadPose(
        yaw=_clamp(yaw, YAW_LIMIT),
        pitch=_clamp(pitch, PITCH_LIMIT),
        roll=_clamp(roll, ROLL_LIMIT),
    )
