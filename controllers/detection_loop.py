"""检测循环控制器：固定间隔轮询视频帧、调用检测器、驱动分析流水线并回调计时状态机"""

import asyncio
import inspect
import logging
import time
from typing import Any, Awaitable, Callable, Optional, Union

from models.data_models import AnalysisResult, FrameDetection
from evaluators.face_analyzer import FaceAnalyzer

logger = logging.getLogger(__name__)

Callback = Callable[..., Union[None, Awaitable[None]]]


def monotonic_ms() -> int:
    return int(time.monotonic() * 1000)


class DetectionLoopController:
    """
    Idle -> Detecting -> Idle。

    两个相互独立的 asyncio 任务：
    - 检测循环：每 interval_ms 取一帧做检测，上一次检测未完成时跳过本次
    - 绘制循环：约 60fps 刷新叠加层，仅做展示

    有人脸时只在稳定帧门限满足后回调 on_face_detected；
    无人脸持续超过 grace_period_ms 后回调一次 on_face_not_detected，
    直到再次看到人脸才会重新计时。
    """

    def __init__(
        self,
        detector,
        video_source,
        on_face_detected: Callback,
        on_face_not_detected: Callback,
        analyzer: Optional[FaceAnalyzer] = None,
        renderer=None,
        interval_ms: int = 100,
        draw_interval_ms: int = 16,
        grace_period_ms: int = 800,
        ready_retry_delay_ms: int = 500,
        max_ready_retries: int = 20,
        clock: Callable[[], int] = monotonic_ms,
    ):
        self.detector = detector
        self.video_source = video_source
        self.analyzer = analyzer or FaceAnalyzer()
        self.renderer = renderer
        self.on_face_detected = on_face_detected
        self.on_face_not_detected = on_face_not_detected
        self.interval_ms = interval_ms
        self.draw_interval_ms = draw_interval_ms
        self.grace_period_ms = grace_period_ms
        self.ready_retry_delay_ms = ready_retry_delay_ms
        self.max_ready_retries = max_ready_retries
        self.clock = clock

        self._detecting = False
        self._generation = 0
        self._starting = False
        self._detect_task: Optional[asyncio.Task] = None
        self._draw_task: Optional[asyncio.Task] = None
        self._in_flight = False
        self._last_face_seen_at = 0
        self._absence_reported = False
        self._frame_count = 0
        self._last_detection: Optional[FrameDetection] = None
        self._analysis_result: Optional[AnalysisResult] = None

    # ---- 只读状态 ----

    @property
    def is_detecting(self) -> bool:
        return self._detecting

    @property
    def is_starting(self) -> bool:
        """正在等待视频就绪"""
        return self._starting

    @property
    def is_model_loaded(self) -> bool:
        return bool(getattr(self.detector, "is_loaded", False))

    @property
    def model_loading_error(self) -> Optional[str]:
        return getattr(self.detector, "load_error", None)

    @property
    def is_camera_ready(self) -> bool:
        return self.video_source.is_ready()

    @property
    def is_stable(self) -> bool:
        return self.analyzer.is_stable

    @property
    def analysis_result(self) -> Optional[AnalysisResult]:
        return self._analysis_result

    @property
    def last_detection(self) -> Optional[FrameDetection]:
        return self._last_detection

    # ---- 启停 ----

    async def start(self) -> bool:
        """
        开始检测。视频未就绪时按固定间隔重试，重试耗尽后记录日志并放弃。

        Returns:
            是否进入 Detecting 状态
        """
        if not self.is_model_loaded:
            logger.warning("检测模型尚未加载，无法开始检测")
            return False
        if self._detecting:
            logger.debug("检测已在运行")
            return True
        if self._starting:
            logger.debug("检测正在启动，忽略重复请求")
            return False

        self._starting = True
        try:
            ready = await self._wait_until_ready(self._generation)
        finally:
            self._starting = False
        if not ready:
            return False

        acquire = getattr(self.video_source, "acquire", None)
        if acquire is not None and not acquire(self):
            logger.warning("视频源已被其他检测会话占用")
            return False

        self._detecting = True
        self._last_face_seen_at = self.clock()
        self._absence_reported = False
        self._frame_count = 0
        self._detect_task = asyncio.create_task(self._detection_loop(self._generation))
        if self.renderer is not None:
            self._draw_task = asyncio.create_task(self._draw_loop(self._generation))
        logger.info("开始人脸检测")
        return True

    async def _wait_until_ready(self, generation: int) -> bool:
        for attempt in range(self.max_ready_retries + 1):
            if self.video_source.is_ready():
                return True
            if attempt == self.max_ready_retries:
                logger.warning("视频源在 %d 次重试后仍未就绪，检测未启动", self.max_ready_retries)
                return False
            logger.debug("等待视频就绪 (%d/%d)", attempt + 1, self.max_ready_retries)
            await asyncio.sleep(self.ready_retry_delay_ms / 1000)
            if generation != self._generation:
                # 等待期间被 stop()
                return False
        return False

    def stop(self):
        """同步停止：取消两个循环、清除叠加层、重置全部有状态计数器。返回后不会再有回调。"""
        was_detecting = self._detecting
        self._detecting = False
        self._generation += 1

        for task in (self._detect_task, self._draw_task):
            if task is not None and not task.done():
                task.cancel()
        self._detect_task = None
        self._draw_task = None

        if self.renderer is not None:
            self.renderer.clear()

        release = getattr(self.video_source, "release_owner", None)
        if release is not None:
            release(self)

        self.analyzer.reset()
        self._in_flight = False
        self._last_detection = None
        self._analysis_result = None
        self._frame_count = 0
        self._absence_reported = False
        if was_detecting:
            logger.info("人脸检测已停止")

    # ---- 循环 ----

    async def _detection_loop(self, generation: int):
        interval = self.interval_ms / 1000
        loop = asyncio.get_running_loop()
        while self._detecting and generation == self._generation:
            started = loop.time()
            await self.tick()
            elapsed = loop.time() - started
            await asyncio.sleep(max(0.0, interval - elapsed))

    async def _draw_loop(self, generation: int):
        interval = self.draw_interval_ms / 1000
        while self._detecting and generation == self._generation:
            frame = self.video_source.current_frame()
            if frame is not None:
                self.renderer.draw(frame, self._last_detection, self._analysis_result)
            await asyncio.sleep(interval)

    async def tick(self):
        """执行一次检测。单帧内提取、平滑、评分、回调严格顺序完成。"""
        if not self._detecting:
            return
        if self._in_flight:
            logger.debug("上一次检测尚未完成，跳过本次")
            return
        if not self.video_source.is_ready():
            return

        frame = self.video_source.current_frame()
        if frame is None:
            return

        generation = self._generation
        self._in_flight = True
        try:
            detection = await self._call_detector(frame)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("人脸检测出错")
            return
        finally:
            if generation == self._generation:
                self._in_flight = False

        if generation != self._generation or not self._detecting:
            return

        self._frame_count += 1
        self._last_detection = detection
        now = self.clock()

        if detection.faces:
            self._last_face_seen_at = now
            self._absence_reported = False
            result = self.analyzer.analyze(detection.faces[0], now)
            self._analysis_result = result

            if self.analyzer.is_stable:
                await self._emit(self.on_face_detected, result)
            else:
                logger.debug(
                    "稳定中 %d/%d",
                    self.analyzer.smoother.gate.count,
                    self.analyzer.smoother.gate.threshold,
                )
        else:
            absent_for = now - self._last_face_seen_at
            if not self._absence_reported and absent_for > self.grace_period_ms:
                self._absence_reported = True
                logger.info("人脸未检测到 %dms，触发 on_face_not_detected", absent_for)
                await self._emit(self.on_face_not_detected)

    async def _call_detector(self, frame) -> FrameDetection:
        result = self.detector.detect(frame)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def _emit(self, callback: Callback, *args: Any):
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("检测回调执行出错")
