"""专注计时入口文件：摄像头检测人脸，自动开始/暂停/恢复任务计时"""

import argparse
import asyncio
import json
import logging

import cv2

from camera.video_source import CameraVideoSource
from controllers.camera_timer import CameraTimer
from controllers.timer_state_machine import TimerStateMachine
from detectors.face_detector import FaceDetector
from display.renderer import OverlayRenderer
from evaluators.face_analyzer import FaceAnalyzer
from models.data_models import Task
from services.timer_backend import HttpTimerBackend, NullTimerBackend
from storage.local_store import ObservableStore, TaskTimeStore

logger = logging.getLogger(__name__)

# 默认配置
_DEFAULTS = {
    "camera_index": 0,
    "detection_interval_ms": 100,
    "draw_interval_ms": 16,
    "grace_period_ms": 800,
    "stable_frame_threshold": 10,
    "confirmation_delay_ms": 5000,
    "ready_retry_delay_ms": 500,
    "max_ready_retries": 20,
    "api_base_url": None,
    "api_token": None,
    "api_timeout": 5.0,
    "store_path": "focus_timer_state.json",
}

_WINDOW_NAME = "专注计时"


def build_backend(config):
    """配置了后端地址和令牌时使用 REST 后端，否则离线运行"""
    if config["api_base_url"] and config["api_token"]:
        return HttpTimerBackend(
            config["api_base_url"], token=config["api_token"], timeout=config["api_timeout"],
        )
    return NullTimerBackend()


def build_camera_timer(config, renderer=None) -> CameraTimer:
    """按配置组装检测器、视频源、计时状态机和检测循环"""
    timer = TimerStateMachine(
        backend=build_backend(config),
        task_times=TaskTimeStore(ObservableStore(config["store_path"])),
        confirmation_delay_ms=config["confirmation_delay_ms"],
    )
    return CameraTimer.build(
        FaceDetector(),
        CameraVideoSource(config["camera_index"]),
        timer,
        renderer=renderer,
        analyzer=FaceAnalyzer(stable_frame_threshold=config["stable_frame_threshold"]),
        interval_ms=config["detection_interval_ms"],
        draw_interval_ms=config["draw_interval_ms"],
        grace_period_ms=config["grace_period_ms"],
        ready_retry_delay_ms=config["ready_retry_delay_ms"],
        max_ready_retries=config["max_ready_retries"],
    )


class FocusTimerApp:
    """命令行版专注计时，可选 OpenCV 预览窗口（p 暂停/恢复，s 结束，r 重置，q 退出）。"""

    def __init__(self, config_path=None, task_id=None, camera_index=None, preview=True):
        config = self._load_config(config_path)
        if camera_index is not None:
            config["camera_index"] = camera_index
        self.config = config
        self.preview = preview
        self.task = Task(id=task_id or "default-focus", title=task_id or "专注")
        self.renderer = OverlayRenderer() if preview else None
        self.camera_timer = build_camera_timer(config, renderer=self.renderer)
        self._quit = False

    @staticmethod
    def _load_config(config_path):
        """从 JSON 配置文件加载参数，缺失字段使用默认值。"""
        config = dict(_DEFAULTS)

        if config_path is None:
            return config

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            print(f"警告: 配置文件不存在 {config_path}，使用默认配置")
            return config
        except json.JSONDecodeError:
            print(f"警告: 配置文件格式错误 {config_path}，使用默认配置")
            return config

        # 用配置文件中的值覆盖默认值
        for key in _DEFAULTS:
            if key in data and data[key] is not None:
                config[key] = data[key]

        return config

    def run(self):
        asyncio.run(self._run())

    async def _run(self):
        camera_timer = self.camera_timer
        await camera_timer.timer.restore()

        if not await camera_timer.load_model():
            print(f"警告: {camera_timer.status_message}，仅可手动计时")
        elif not await camera_timer.enable_camera_mode():
            print(f"警告: {camera_timer.status_message}")

        await camera_timer.select_task(self.task)
        if not camera_timer.camera_mode:
            await camera_timer.timer.start(self.task)

        try:
            while not self._quit:
                if self.preview:
                    await self._show_preview()
                await asyncio.sleep(0.03 if self.preview else 1.0)
                if not self.preview:
                    logger.info("%s %s", camera_timer.timer.state.value, camera_timer.timer.display_time())
        finally:
            await self.shutdown()

    async def _show_preview(self):
        frame = self.renderer.latest
        if frame is not None:
            frame = frame.copy()
            cv2.putText(
                frame, self.camera_timer.timer.display_time(), (10, frame.shape[0] - 20),
                cv2.FONT_HERSHEY_SIMPLEX, 1.0, (255, 255, 255), 2,
            )
            cv2.imshow(_WINDOW_NAME, frame)
        await self.handle_key(cv2.waitKey(1) & 0xFF)

    async def handle_key(self, key: int):
        timer = self.camera_timer.timer
        if key == ord("p"):
            await timer.toggle_pause()
        elif key == ord("s"):
            await self.camera_timer.stop()
        elif key == ord("r"):
            await self.camera_timer.reset()
        elif key == ord("q"):
            self._quit = True

    async def shutdown(self):
        """停止检测、释放摄像头、关闭窗口和检测器。"""
        await self.camera_timer.disable_camera_mode()
        if self.preview:
            cv2.destroyAllWindows()
        self.camera_timer.close()
        self.camera_timer.detector.close()


def main():
    parser = argparse.ArgumentParser(description="专注计时")
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="JSON 配置文件路径",
    )
    parser.add_argument(
        "--task",
        type=str,
        default=None,
        help="计时任务 id，默认 default-focus",
    )
    parser.add_argument(
        "--camera",
        type=int,
        default=None,
        help="摄像头编号",
    )
    parser.add_argument(
        "--no-preview",
        action="store_true",
        help="不显示预览窗口",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    app = FocusTimerApp(
        config_path=args.config, task_id=args.task, camera_index=args.camera, preview=not args.no_preview,
    )
    try:
        app.run()
    except KeyboardInterrupt:
        print("已退出")


if __name__ == "__main__":
    main()
