"""眼睛状态分析模块，负责从 468 点人脸网格计算 EAR 值"""

import math
from typing import Optional, Sequence

# 每只眼 6 个轮廓点：外眼角、上眼睑 x2、内眼角、下眼睑 x2
LEFT_EYE_INDICES = [33, 160, 158, 133, 153, 144]
RIGHT_EYE_INDICES = [362, 385, 387, 263, 373, 380]

MESH_POINT_COUNT = 468
DEFAULT_EAR = 0.3


def compute_ear(eye_points: Optional[Sequence[Sequence[float]]]) -> float:
    """
    计算单只眼睛的 EAR 值。

    公式: EAR = (|p2-p6| + |p3-p5|) / (2 * |p1-p4|)

    Args:
        eye_points: 6 个眼睛轮廓关键点 [(x,y), ...]，允许带 z 坐标

    Returns:
        EAR 值；点数不足或水平距离为零时返回 0.3
    """
    if not eye_points or len(eye_points) < 6:
        return DEFAULT_EAR

    p1, p2, p3, p4, p5, p6 = [(p[0], p[1]) for p in eye_points[:6]]

    vertical_1 = math.dist(p2, p6)
    vertical_2 = math.dist(p3, p5)
    horizontal = math.dist(p1, p4)

    if horizontal == 0.0:
        return DEFAULT_EAR

    return (vertical_1 + vertical_2) / (2.0 * horizontal)


class EyeAnalyzer:
    """从人脸网格中取出双眼轮廓点，输出平均 EAR"""

    def analyze(self, mesh: Optional[Sequence[Sequence[float]]]) -> float:
        """
        计算双眼平均 EAR。

        Args:
            mesh: 人脸网格点（至少 468 个），缺失时返回默认值

        Returns:
            双眼 EAR 平均值
        """
        if mesh is None or len(mesh) < MESH_POINT_COUNT:
            return DEFAULT_EAR

        left_eye = [mesh[i] for i in LEFT_EYE_INDICES]
        right_eye = [mesh[i] for i in RIGHT_EYE_INDICES]

        return (compute_ear(left_eye) + compute_ear(right_eye)) / 2.0
