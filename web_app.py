"""Flask Web 前端 - 专注计时的 JSON 接口和 MJPEG 预览"""

import argparse
import asyncio
import logging
import threading
import time

import cv2
from flask import Flask, Response, jsonify, request

from controllers.camera_timer import CameraTimer
from display.renderer import OverlayRenderer
from main import FocusTimerApp, build_camera_timer
from models.data_models import Task

logger = logging.getLogger(__name__)


class WebTimerService:
    """
    Web 版计时服务。

    计时核心运行在独立线程的 asyncio 事件循环中，
    Flask 请求线程通过 run_coroutine_threadsafe 提交协程并等待结果。
    """

    CALL_TIMEOUT = 10.0

    def __init__(self, camera_timer: CameraTimer, renderer: OverlayRenderer = None):
        self.camera_timer = camera_timer
        self.renderer = renderer
        self._loop = None
        self._thread = None

    def start(self):
        """启动事件循环线程，恢复计时状态并加载模型。"""
        if self._loop is not None:
            return
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._loop.run_forever, daemon=True)
        self._thread.start()
        self._submit(self.camera_timer.timer.restore())
        if not self._submit(self.camera_timer.load_model(), timeout=None):
            logger.warning("模型加载失败: %s", self.camera_timer.status_message)

    def shutdown(self):
        if self._loop is None:
            return

        self._submit(self.camera_timer.disable_camera_mode())
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout=2.0)
        self._loop = None
        self._thread = None
        self.camera_timer.close()
        self.camera_timer.detector.close()

    def _submit(self, coro, timeout=CALL_TIMEOUT):
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return future.result(timeout)

    async def _state(self):
        return self.camera_timer.state()

    async def _disable_camera(self):
        await self.camera_timer.disable_camera_mode()
        return True

    async def _refresh(self):
        return self.camera_timer.refresh()

    def state(self) -> dict:
        return self._submit(self._state())

    def enable_camera(self) -> bool:
        return self._submit(self.camera_timer.enable_camera_mode(), timeout=None)

    def disable_camera(self) -> bool:
        return self._submit(self._disable_camera())

    def refresh(self) -> list:
        """重新读取本地存储，返回变化的键"""
        return self._submit(self._refresh())

    def select_task(self, task: Task) -> bool:
        return self._submit(self.camera_timer.select_task(task))

    def start_timer(self) -> bool:
        return self._submit(self.camera_timer.timer.start())

    def pause_timer(self) -> bool:
        return self._submit(self.camera_timer.timer.pause(manual=True))

    def resume_timer(self) -> bool:
        return self._submit(self.camera_timer.timer.resume())

    def stop_timer(self) -> bool:
        return self._submit(self.camera_timer.stop())

    def reset_timer(self) -> bool:
        self._submit(self.camera_timer.reset())
        return True

    def get_frame(self):
        """最新叠加帧编码为 JPEG，没有帧时返回 None"""
        if self.renderer is None:
            return None
        frame = self.renderer.latest
        if frame is None:
            return None
        ok, jpeg = cv2.imencode(".jpg", frame, [cv2.IMWRITE_JPEG_QUALITY, 80])
        return jpeg.tobytes() if ok else None


def create_app(service) -> Flask:
    app = Flask(__name__)

    def _result(ok, success_message, failure_message):
        return jsonify({"success": bool(ok), "message": success_message if ok else failure_message})

    @app.route("/api/state")
    def api_state():
        return jsonify(service.state())

    @app.route("/api/camera/enable", methods=["POST"])
    def api_camera_enable():
        ok = service.enable_camera()
        if ok:
            return jsonify({"success": True, "message": "摄像头模式已开启"})
        message = service.state().get("statusMessage") or "无法开启摄像头模式"
        return jsonify({"success": False, "message": message})

    @app.route("/api/camera/disable", methods=["POST"])
    def api_camera_disable():
        service.disable_camera()
        return jsonify({"success": True, "message": "摄像头模式已关闭"})

    @app.route("/api/refresh", methods=["POST"])
    def api_refresh():
        changed = service.refresh()
        return jsonify({"success": True, "changed": sorted(changed)})

    @app.route("/api/task", methods=["POST"])
    def api_task():
        data = request.get_json(force=True, silent=True) or {}
        task_id = data.get("id")
        if not task_id:
            return jsonify({"success": False, "message": "缺少任务 id"}), 400
        task = Task(id=str(task_id), title=str(data.get("title", "")))
        return _result(service.select_task(task), "任务已选择", "计时进行中，不能切换任务")

    @app.route("/api/timer/start", methods=["POST"])
    def api_timer_start():
        return _result(service.start_timer(), "计时已开始", "无法开始计时")

    @app.route("/api/timer/pause", methods=["POST"])
    def api_timer_pause():
        return _result(service.pause_timer(), "计时已暂停", "当前不在计时中")

    @app.route("/api/timer/resume", methods=["POST"])
    def api_timer_resume():
        return _result(service.resume_timer(), "计时已恢复", "当前未暂停")

    @app.route("/api/timer/stop", methods=["POST"])
    def api_timer_stop():
        return _result(service.stop_timer(), "计时已结束", "计时未开始")

    @app.route("/api/timer/reset", methods=["POST"])
    def api_timer_reset():
        service.reset_timer()
        return jsonify({"success": True, "message": "计时已重置"})

    @app.route("/video_feed")
    def video_feed():
        def generate():
            while True:
                frame = service.get_frame()
                if frame is not None:
                    yield (b"--frame\r\nContent-Type: image/jpeg\r\n\r\n" + frame + b"\r\n")
                time.sleep(0.03)
        return Response(generate(), mimetype="multipart/x-mixed-replace; boundary=frame")

    return app


def main():
    parser = argparse.ArgumentParser(description="专注计时 Web 服务")
    parser.add_argument("--config", type=str, default=None, help="JSON 配置文件路径")
    parser.add_argument("--host", type=str, default="0.0.0.0")
    parser.add_argument("--port", type=int, default=5000)
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    config = FocusTimerApp._load_config(args.config)
    renderer = OverlayRenderer()
    service = WebTimerService(build_camera_timer(config, renderer=renderer), renderer)
    service.start()
    try:
        create_app(service).run(host=args.host, port=args.port, debug=False, threaded=True)
    finally:
        service.shutdown()


if __name__ == "__main__":
    main()
