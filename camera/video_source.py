"""摄像头视频源：后台线程持续读取最新帧，供检测循环非阻塞地获取"""

import logging
import threading
import time
from typing import Optional

import cv2
import numpy as np

logger = logging.getLogger(__name__)


class CameraVideoSource:
    """封装 cv2.VideoCapture，保证同一时刻只有一个检测会话占用该视频源"""

    def __init__(self, device_index: int = 0):
        self.device_index = device_index
        self._cap = None
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._latest_frame: Optional[np.ndarray] = None
        self._owner = None

    def open(self) -> bool:
        """打开摄像头并启动读取线程，失败时返回 False"""
        if self._running:
            return True
        self._cap = cv2.VideoCapture(self.device_index)
        if not self._cap.isOpened():
            logger.error("无法打开摄像头 %s", self.device_index)
            self._cap = None
            return False
        self._running = True
        self._thread = threading.Thread(target=self._read_loop, daemon=True)
        self._thread.start()
        logger.info("摄像头 %s 已开启", self.device_index)
        return True

    def _read_loop(self):
        while self._running:
            cap = self._cap
            if cap is None or not cap.isOpened():
                break
            ret, frame = cap.read()
            if not ret:
                time.sleep(0.01)
                continue
            with self._lock:
                self._latest_frame = frame

    def acquire(self, owner) -> bool:
        """登记检测会话为独占使用者，已被其他会话占用时返回 False"""
        with self._lock:
            if self._owner is not None and self._owner is not owner:
                return False
            self._owner = owner
            return True

    def release_owner(self, owner):
        with self._lock:
            if self._owner is owner:
                self._owner = None

    def is_ready(self) -> bool:
        """帧尺寸大于 0 且已有缓冲帧"""
        with self._lock:
            frame = self._latest_frame
        if frame is None:
            return False
        h, w = frame.shape[:2]
        return w > 0 and h > 0

    @property
    def frame_size(self):
        with self._lock:
            frame = self._latest_frame
        if frame is None:
            return 0, 0
        h, w = frame.shape[:2]
        return w, h

    def current_frame(self) -> Optional[np.ndarray]:
        with self._lock:
            return None if self._latest_frame is None else self._latest_frame.copy()

    def release(self):
        """停止读取线程并释放摄像头"""
        self._running = False
        if self._thread is not None:
            self._thread.join(timeout=1.0)
            self._thread = None
        if self._cap is not None and self._cap.isOpened():
            self._cap.release()
        self._cap = None
        with self._lock:
            self._latest_frame = None
            self._owner = None
        logger.info("摄像头已释放")
