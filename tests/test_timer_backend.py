"""计时后端测试，requests.Session 使用 MagicMock 代替"""

import asyncio
from unittest.mock import MagicMock

import pytest
import requests

from models.data_models import SessionStatus
from services.timer_backend import HttpTimerBackend, NullTimerBackend, TimerBackendError

SESSION_JSON = {
    "id": 7,
    "taskId": "task-1",
    "startTime": "2026-10-17T08:00:00Z",
    "duration": 0,
    "pauseCount": 2,
    "totalPauseTime": 30,
    "status": "paused",
}


def _response(json_data=None, status=200, content=b"{}"):
    response = MagicMock()
    response.content = content
    response.json.return_value = json_data
    if status >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f"{status} error")
    return response


def _backend(response, token="secret"):
    session = MagicMock()
    session.request.return_value = response
    return HttpTimerBackend("https://api.example.com/", token=token, session=session), session


class TestNullTimerBackend:

    def test_not_authenticated(self):
        assert not NullTimerBackend().is_authenticated

    def test_calls_raise(self):
        with pytest.raises(TimerBackendError):
            asyncio.run(NullTimerBackend().start("t"))

    def test_no_active_session(self):
        assert asyncio.run(NullTimerBackend().get_active()) is None


class TestHttpTimerBackend:

    def test_authenticated_only_with_token(self):
        assert HttpTimerBackend("https://x", token="t", session=MagicMock()).is_authenticated
        assert not HttpTimerBackend("https://x", session=MagicMock()).is_authenticated

    def test_start_posts_task_id(self):
        backend, session = _backend(_response(SESSION_JSON))
        result = asyncio.run(backend.start("task-1"))

        method, url = session.request.call_args.args
        kwargs = session.request.call_args.kwargs
        assert (method, url) == ("POST", "https://api.example.com/timer/start")
        assert kwargs["json"] == {"taskId": "task-1"}
        assert kwargs["headers"]["Authorization"] == "Bearer secret"
        assert kwargs["timeout"] == 5.0
        assert result.id == "7"
        assert result.status == SessionStatus.PAUSED
        assert result.total_pause_time == 30.0

    def test_start_without_task_id(self):
        backend, session = _backend(_response(SESSION_JSON))
        asyncio.run(backend.start(None))
        assert session.request.call_args.kwargs["json"] == {}

    @pytest.mark.parametrize("op", ["pause", "resume", "cancel"])
    def test_session_endpoints(self, op):
        backend, session = _backend(_response(SESSION_JSON))
        asyncio.run(getattr(backend, op)("7"))
        assert session.request.call_args.args == ("POST", f"https://api.example.com/timer/7/{op}")

    def test_stop_sends_summary(self):
        backend, session = _backend(_response(SESSION_JSON))
        asyncio.run(backend.stop("7", {"framesAnalyzed": 3}))
        assert session.request.call_args.args[1].endswith("/timer/7/stop")
        assert session.request.call_args.kwargs["json"] == {"faceStatsSummary": {"framesAnalyzed": 3}}

    def test_http_error_wrapped(self):
        backend, _ = _backend(_response(status=401))
        with pytest.raises(TimerBackendError):
            asyncio.run(backend.pause("7"))

    def test_network_error_wrapped(self):
        backend, session = _backend(_response(SESSION_JSON))
        session.request.side_effect = requests.ConnectionError("offline")
        with pytest.raises(TimerBackendError):
            asyncio.run(backend.resume("7"))

    def test_non_json_response_wrapped(self):
        response = _response(content=b"<html>")
        response.json.side_effect = ValueError("no json")
        backend, _ = _backend(response)
        with pytest.raises(TimerBackendError):
            asyncio.run(backend.cancel("7"))

    def test_get_active_empty(self):
        backend, session = _backend(_response(content=b""))
        assert asyncio.run(backend.get_active()) is None
        assert session.request.call_args.args == ("GET", "https://api.example.com/timer/active")

    def test_get_active_session(self):
        backend, _ = _backend(_response(SESSION_JSON))
        session = asyncio.run(backend.get_active())
        assert session.task_id == "task-1"
        assert session.pause_count == 2
