"""预览叠加层渲染模块 - 在视频帧上绘制人脸框角、稀疏网格点和对准提示。"""

import math
import threading
import time
from typing import Optional

import cv2
import numpy as np

from models.data_models import AnalysisResult, FrameDetection

GUIDE_TEXT = "请将面部对准画面"
GUIDE_TEXT_EN = "Align your face"


def format_score(v: float) -> str:
    """格式化分数为整数字符串。"""
    return f"{int(round(v))}"


class OverlayRenderer:
    """绘制循环使用的渲染器，仅做展示，不影响检测结果。"""

    CORNER_LENGTH = 30
    MESH_STRIDE = 8

    def __init__(self, font_path: str = "SimHei", show_mesh: bool = True):
        """初始化中文字体，字体不存在时回退到 OpenCV 默认英文字体。"""
        self.show_mesh = show_mesh
        self._pil_font = None
        self._use_pil = False
        self._lock = threading.Lock()
        self._latest: Optional[np.ndarray] = None

        try:
            font = self._try_load_font(font_path)
            if font is not None:
                self._pil_font = font
                self._use_pil = True
        except ImportError:
            self._use_pil = False

    @staticmethod
    def _try_load_font(font_path: str):
        """尝试加载字体文件，返回 PIL ImageFont 或 None。"""
        from PIL import ImageFont

        common_paths = [
            font_path,
            "/usr/share/fonts/truetype/simhei/SimHei.ttf",
            "/usr/share/fonts/SimHei.ttf",
            "C:\\Windows\\Fonts\\simhei.ttf",
            "/System/Library/Fonts/STHeiti Medium.ttc",
        ]
        for path in common_paths:
            try:
                return ImageFont.truetype(path, 18)
            except (OSError, IOError):
                continue

        return None

    @property
    def latest(self) -> Optional[np.ndarray]:
        with self._lock:
            return self._latest

    def clear(self):
        """清除已绘制的叠加层。"""
        with self._lock:
            self._latest = None

    def draw(
        self,
        frame: np.ndarray,
        detection: Optional[FrameDetection],
        analysis: Optional[AnalysisResult] = None,
    ) -> np.ndarray:
        """渲染叠加层并保存为最新预览帧。"""
        output = frame.copy()

        if detection is not None and detection.faces:
            for face in detection.faces:
                self._draw_corners(output, face.box)
                if self.show_mesh and face.mesh:
                    self._draw_mesh(output, face.mesh)
            if analysis is not None:
                self._draw_attention(output, analysis)
        else:
            self._draw_guide(output)

        with self._lock:
            self._latest = output
        return output

    def _draw_corners(self, frame: np.ndarray, box) -> None:
        """Face ID 风格的四角框。"""
        x, y, w, h = [int(v) for v in box]
        length = min(self.CORNER_LENGTH, max(1, w // 3), max(1, h // 3))
        color = (255, 255, 255)
        for cx, cy, dx, dy in (
            (x, y, 1, 1),
            (x + w, y, -1, 1),
            (x, y + h, 1, -1),
            (x + w, y + h, -1, -1),
        ):
            cv2.line(frame, (cx, cy), (cx + dx * length, cy), color, 3, cv2.LINE_AA)
            cv2.line(frame, (cx, cy), (cx, cy + dy * length), color, 3, cv2.LINE_AA)

    def _draw_mesh(self, frame: np.ndarray, mesh) -> None:
        for point in mesh[::self.MESH_STRIDE]:
            cv2.circle(frame, (int(point[0]), int(point[1])), 1, (200, 200, 200), -1)

    def _draw_attention(self, frame: np.ndarray, analysis: AnalysisResult) -> None:
        text = f"Attention: {format_score(analysis.attention_score)}  Fatigue: {analysis.fatigue_level.value}"
        color = (0, 0, 255) if analysis.is_drowsy else (0, 255, 0)
        cv2.putText(frame, text, (10, 30), cv2.FONT_HERSHEY_SIMPLEX, 0.6, color, 2)

    def _draw_guide(self, frame: np.ndarray) -> None:
        """未检测到人脸时绘制呼吸效果的引导框和提示文字。"""
        h, w = frame.shape[:2]
        pulse = 0.5 + 0.3 * math.sin(time.time() * 2)
        guide_w = int(min(w * 0.6, 250))
        guide_h = int(guide_w * 1.2)
        gx = (w - guide_w) // 2
        gy = (h - guide_h) // 2
        level = int(255 * pulse)
        color = (level, level, level)

        cv2.rectangle(frame, (gx, gy), (gx + guide_w, gy + guide_h), color, 2)

        text_y = max(0, gy - 30)
        if self._use_pil:
            self._draw_pil_text(frame, GUIDE_TEXT, (gx, text_y), color)
        else:
            cv2.putText(
                frame, GUIDE_TEXT_EN, (gx, max(20, text_y + 20)),
                cv2.FONT_HERSHEY_SIMPLEX, 0.6, color, 2,
            )

    def _draw_pil_text(self, frame: np.ndarray, text: str, origin: tuple, color: tuple) -> None:
        """使用 PIL 绘制中文（BGR color -> RGB fill）。"""
        from PIL import Image, ImageDraw

        img_pil = Image.fromarray(cv2.cvtColor(frame, cv2.COLOR_BGR2RGB))
        draw = ImageDraw.Draw(img_pil)
        draw.text(origin, text, font=self._pil_font, fill=(color[2], color[1], color[0]))
        frame[:] = cv2.cvtColor(np.array(img_pil), cv2.COLOR_RGB2BGR)
