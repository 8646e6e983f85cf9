"""嘴巴状态分析模块，负责计算 MAR 值并判断哈欠"""

import math
from typing import Optional, Sequence

# 左嘴角、上唇 x3、右嘴角、下唇 x3（环绕顺序）
MOUTH_INDICES = [61, 84, 17, 314, 291, 375, 321, 308]

MESH_POINT_COUNT = 468
DEFAULT_MAR = 0.0
YAWN_MAR_THRESHOLD = 0.6


def compute_mar(mouth_points: Optional[Sequence[Sequence[float]]]) -> float:
    """
    计算 MAR 值。

    公式: MAR = (|p3-p7| + |p4-p6|) / (2 * |p1-p5|)

    Args:
        mouth_points: 8 个嘴部关键点 [(x,y), ...]

    Returns:
        MAR 值；点数不足或水平距离为零时返回 0.0
    """
    if not mouth_points or len(mouth_points) < 8:
        return DEFAULT_MAR

    pts = [(p[0], p[1]) for p in mouth_points[:8]]

    vertical_1 = math.dist(pts[2], pts[6])
    vertical_2 = math.dist(pts[3], pts[5])
    horizontal = math.dist(pts[0], pts[4])

    if horizontal == 0.0:
        return DEFAULT_MAR

    return (vertical_1 + vertical_2) / (2.0 * horizontal)


def is_yawning(mar: float) -> bool:
    return mar > YAWN_MAR_THRESHOLD


class MouthAnalyzer:
    """从人脸网格中取出嘴部关键点，输出 MAR"""

    def analyze(self, mesh: Optional[Sequence[Sequence[float]]]) -> float:
        if mesh is None or len(mesh) < MESH_POINT_COUNT:
            return DEFAULT_MAR
        return compute_mar([mesh[i] for i in MOUTH_INDICES])
