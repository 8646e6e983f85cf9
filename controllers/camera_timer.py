"""摄像头计时协调器：把检测器、视频源、检测循环和计时状态机连接起来"""

import asyncio
import logging
from typing import Dict, List, Optional

from controllers.detection_loop import DetectionLoopController
from controllers.timer_state_machine import TimerStateMachine
from models.data_models import Task
from storage.local_store import TASK_TIMES_KEY

logger = logging.getLogger(__name__)

CAMERA_OPEN_FAILED = "无法打开摄像头，请检查权限或设备连接"
CAMERA_NOT_READY = "摄像头未就绪，自动计时不可用"


class CameraTimer:
    """
    摄像头模式的级联操作：

    - 开启：打开视频 -> 计时进入 WaitingForFace -> 开始检测
    - 关闭：停止检测 -> 清除等待人脸状态 -> 释放视频
    - 结束：生成人脸统计 -> 停止检测 -> 计时结束 -> 释放视频

    摄像头或模型出错时只设置 status_message，手动计时始终可用。
    释放视频源会等待读取线程退出，放到线程池中执行，不阻塞事件循环。
    """

    def __init__(self, detector, video_source, timer: TimerStateMachine, detection: DetectionLoopController):
        self.detector = detector
        self.video_source = video_source
        self.timer = timer
        self.detection = detection
        self.status_message: Optional[str] = None
        # 按任务累计时间的视图，由存储变更通知更新
        self.task_times: Dict[str, int] = timer.task_times.all()
        self._unsubscribe = timer.task_times.subscribe(self._on_store_changed)

    @classmethod
    def build(cls, detector, video_source, timer: TimerStateMachine, renderer=None, **loop_options) -> "CameraTimer":
        """用计时状态机的绑定方法作为检测回调，回调执行时读取状态机的当前状态"""
        detection = DetectionLoopController(
            detector,
            video_source,
            on_face_detected=timer.on_face_detected,
            on_face_not_detected=timer.on_face_not_detected,
            renderer=renderer,
            **loop_options,
        )
        return cls(detector, video_source, timer, detection)

    @property
    def camera_mode(self) -> bool:
        return self.timer.camera_mode

    def _on_store_changed(self, key, value):
        if key == TASK_TIMES_KEY:
            self.task_times = self.timer.task_times.all()

    def refresh(self) -> List[str]:
        """重新读取本地存储（其他进程可能修改了同一文件），返回发生变化的键"""
        changed = self.timer.task_times.reload()
        if changed:
            logger.info("本地存储已更新: %s", ", ".join(sorted(changed)))
        return changed

    async def load_model(self) -> bool:
        ok = await self.detector.load()
        if not ok:
            self.status_message = self.detector.load_error
        return ok

    async def _release_video(self):
        await asyncio.to_thread(self.video_source.release)

    async def enable_camera_mode(self) -> bool:
        if not self.detector.is_loaded:
            self.status_message = self.detector.load_error or "AI 模型尚未加载"
            logger.warning("模型未加载，无法开启摄像头模式")
            return False
        if self.detection.is_detecting or self.detection.is_starting:
            logger.debug("摄像头模式已开启")
            return True
        if not self.video_source.open():
            self.status_message = CAMERA_OPEN_FAILED
            return False

        self.status_message = None
        self.timer.enable_camera_mode()
        if not await self.detection.start():
            self.status_message = CAMERA_NOT_READY
            self.timer.disable_camera_mode()
            await self._release_video()
            return False
        return True

    async def disable_camera_mode(self):
        self.detection.stop()
        self.timer.disable_camera_mode()
        await self._release_video()

    async def select_task(self, task: Task) -> bool:
        return await self.timer.select_task(task)

    async def stop(self) -> bool:
        summary = self.detection.analyzer.face_stats_summary()
        was_detecting = self.detection.is_detecting
        self.detection.stop()
        stopped = await self.timer.stop(summary)
        if was_detecting:
            await self._release_video()
        return stopped

    async def reset(self):
        was_detecting = self.detection.is_detecting
        self.detection.stop()
        await self.timer.reset()
        if was_detecting:
            await self._release_video()

    def close(self):
        self._unsubscribe()

    def state(self) -> dict:
        """界面读取的只读状态"""
        analysis = self.detection.analysis_result
        timer = self.timer
        return {
            "timerState": timer.state.value,
            "task": None if timer.task is None else {"id": timer.task.id, "title": timer.task.title},
            "elapsed": timer.elapsed_ms,
            "displayTime": timer.display_time(),
            "cameraMode": timer.camera_mode,
            "canStartTimer": timer.can_start_timer,
            "awaitingTask": timer.is_awaiting_task,
            "isManualPause": timer.is_manual_pause,
            "pauseReason": timer.pause_reason,
            "sessionId": timer.session_id,
            "isDetecting": self.detection.is_detecting,
            "isModelLoaded": self.detection.is_model_loaded,
            "modelLoadingError": self.detection.model_loading_error,
            "isStable": self.detection.is_stable,
            "isCameraReady": self.detection.is_camera_ready,
            "analysis": None if analysis is None else analysis.to_dict(),
            "taskTimes": dict(self.task_times),
            "statusMessage": self.status_message,
        }
