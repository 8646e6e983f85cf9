"""计时会话后端：未登录时使用空实现，登录后通过 REST 接口同步会话"""

import asyncio
import logging
from typing import Optional

import requests

from models.data_models import TimerSession

logger = logging.getLogger(__name__)


class TimerBackendError(Exception):
    """网络错误、鉴权失败或非 2xx 响应"""


class TimerBackend:
    """后端接口。所有调用均为异步，is_authenticated 为 False 时状态机不会调用"""

    @property
    def is_authenticated(self) -> bool:
        return False

    async def start(self, task_id: Optional[str] = None) -> TimerSession:
        raise NotImplementedError

    async def pause(self, session_id: str) -> TimerSession:
        raise NotImplementedError

    async def resume(self, session_id: str) -> TimerSession:
        raise NotImplementedError

    async def stop(self, session_id: str, face_stats_summary: Optional[dict] = None) -> TimerSession:
        raise NotImplementedError

    async def cancel(self, session_id: str) -> TimerSession:
        raise NotImplementedError

    async def get_active(self) -> Optional[TimerSession]:
        raise NotImplementedError


class NullTimerBackend(TimerBackend):
    """未登录时的空对象，计时完全依赖本地存储"""

    async def start(self, task_id: Optional[str] = None) -> TimerSession:
        raise TimerBackendError("未登录")

    async def pause(self, session_id: str) -> TimerSession:
        raise TimerBackendError("未登录")

    async def resume(self, session_id: str) -> TimerSession:
        raise TimerBackendError("未登录")

    async def stop(self, session_id: str, face_stats_summary: Optional[dict] = None) -> TimerSession:
        raise TimerBackendError("未登录")

    async def cancel(self, session_id: str) -> TimerSession:
        raise TimerBackendError("未登录")

    async def get_active(self) -> Optional[TimerSession]:
        return None


class HttpTimerBackend(TimerBackend):
    """
    基于 requests 的 REST 客户端。

    接口:
        POST /timer/start               {"taskId"?}
        POST /timer/{id}/pause
        POST /timer/{id}/resume
        POST /timer/{id}/stop           {"faceStatsSummary"?}
        POST /timer/{id}/cancel
        GET  /timer/active
    """

    def __init__(self, base_url: str, token: Optional[str] = None, timeout: float = 5.0, session=None):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._session = session or requests.Session()

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token)

    def _request(self, method: str, path: str, payload: Optional[dict] = None):
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        url = f"{self.base_url}{path}"
        try:
            response = self._session.request(
                method, url, json=payload, headers=headers, timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise TimerBackendError(f"{method} {path} 失败: {e}") from e

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise TimerBackendError(f"{method} {path} 返回的不是 JSON") from e

    async def _call(self, method: str, path: str, payload: Optional[dict] = None):
        return await asyncio.to_thread(self._request, method, path, payload)

    async def _session_call(self, method: str, path: str, payload: Optional[dict] = None) -> TimerSession:
        data = await self._call(method, path, payload)
        if not data:
            raise TimerBackendError(f"{method} {path} 返回为空")
        try:
            return TimerSession.from_dict(data)
        except (KeyError, ValueError) as e:
            raise TimerBackendError(f"{method} {path} 返回格式错误: {e}") from e

    async def start(self, task_id: Optional[str] = None) -> TimerSession:
        payload = {"taskId": task_id} if task_id else {}
        return await self._session_call("POST", "/timer/start", payload)

    async def pause(self, session_id: str) -> TimerSession:
        return await self._session_call("POST", f"/timer/{session_id}/pause")

    async def resume(self, session_id: str) -> TimerSession:
        return await self._session_call("POST", f"/timer/{session_id}/resume")

    async def stop(self, session_id: str, face_stats_summary: Optional[dict] = None) -> TimerSession:
        payload = {"faceStatsSummary": face_stats_summary} if face_stats_summary else {}
        return await self._session_call("POST", f"/timer/{session_id}/stop", payload)

    async def cancel(self, session_id: str) -> TimerSession:
        return await self._session_call("POST", f"/timer/{session_id}/cancel")

    async def get_active(self) -> Optional[TimerSession]:
        data = await self._call("GET", "/timer/active")
        if not data:
            return None
        try:
            return TimerSession.from_dict(data)
        except (KeyError, ValueError) as e:
            raise TimerBackendError(f"GET /timer/active 返回格式错误: {e}") from e
