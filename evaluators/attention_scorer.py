"""注意力评分与疲劳等级判定

各阈值为经验值，保持不变以与已标定的下游行为一致。
"""

import math

from models.data_models import FatigueLevel, GazeDirection, HeadPose


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def calculate_attention_score(
    ear: float,
    mar: float,
    head_pose: HeadPose,
    gaze: GazeDirection,
    blink_rate: int,
    gaze_stability: int,
) -> int:
    """
    从 100 分开始扣分，结果限制在 [0, 100]。

    - 闭眼程度 (EAR) 最多 -40
    - 张嘴程度 (MAR) 最多 -20
    - 头部转角 |yaw| + |pitch| 最多 -30
    - 视线不稳定 (100 - stability) * 0.2，最多 -20
    - 眨眼频率过低或过高最多 -15

    gaze 本身不参与扣分，视线信息通过 gaze_stability 体现。
    """
    score = 100

    if ear < 0.15:
        score -= 40
    elif ear < 0.20:
        score -= 20
    elif ear < 0.25:
        score -= 10

    if mar > 0.5:
        score -= 20
    elif mar > 0.3:
        score -= 10

    head_angle = abs(head_pose.yaw) + abs(head_pose.pitch)
    if head_angle > 30:
        score -= 30
    elif head_angle > 20:
        score -= 15
    elif head_angle > 10:
        score -= 5

    stability = min(100, max(0, gaze_stability))
    score -= _round_half_up((100 - stability) * 0.2)

    # 10 秒窗口换算的每分钟次数
    if blink_rate < 6:
        score -= 15
    elif blink_rate < 12:
        score -= 10
    elif blink_rate > 36:
        score -= 10

    return max(0, min(100, score))


def assess_fatigue_level(attention_score: int, ear: float, consecutive_drowsy_frames: int) -> FatigueLevel:
    """先判 high 再判 medium，命中即返回"""
    if attention_score < 40 or ear < 0.15 or consecutive_drowsy_frames > 20:
        return FatigueLevel.HIGH
    if attention_score < 70 or ear < 0.20 or consecutive_drowsy_frames > 10:
        return FatigueLevel.MEDIUM
    return FatigueLevel.LOW
