"""计时状态机：根据人脸检测回调和用户操作驱动 Idle / WaitingForFace / Running / Paused / Stopped"""

import asyncio
import datetime
import logging
import time
from typing import Awaitable, Callable, Dict, Optional, Tuple

from models.data_models import (
    AnalysisResult,
    SessionStatus,
    Task,
    TimerSession,
    TimerSnapshot,
    TimerState,
)
from services.timer_backend import NullTimerBackend, TimerBackend, TimerBackendError
from storage.local_store import TaskTimeStore

logger = logging.getLogger(__name__)

MANUAL_PAUSE_REASON = "手动暂停"
AUTO_PAUSE_REASON = "未检测到人脸，计时已自动暂停"
RESTORED_PAUSE_REASON = "已恢复的暂停会话"
RESTORED_TASK_TITLE = "恢复的会话"


def wall_clock_ms() -> int:
    return int(time.time() * 1000)


def format_duration(ms: int) -> str:
    """毫秒格式化为 HH:MM:SS"""
    total_seconds = max(0, int(ms)) // 1000
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def _parse_iso_ms(value: str) -> Optional[int]:
    if not value:
        return None
    try:
        parsed = datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return int(parsed.timestamp() * 1000)


class TimerStateMachine:
    """
    计时状态机，是计时状态和按任务累计时间的唯一写入者。

    - 运行中 elapsed = now - start_time，每次读取时重新计算，不做增量累加
    - 暂停时冻结 elapsed，恢复时 start_time = now - frozen_elapsed
    - 手动暂停不会被人脸重新出现自动恢复，只有自动暂停可以
    - 后端调用通过锁串行执行；与正在进行的请求完全相同的请求会被丢弃

    检测循环的回调直接绑定 on_face_detected / on_face_not_detected，
    两者在调用时读取实例的当前状态。
    """

    def __init__(
        self,
        backend: Optional[TimerBackend] = None,
        task_times: Optional[TaskTimeStore] = None,
        clock: Callable[[], int] = wall_clock_ms,
        confirmation_delay_ms: int = 5000,
    ):
        self.backend = backend or NullTimerBackend()
        self.task_times = task_times or TaskTimeStore()
        self.clock = clock
        self.confirmation_delay_ms = confirmation_delay_ms

        self._state = TimerState.IDLE
        self.task: Optional[Task] = None
        self.session_id: Optional[str] = None
        self.camera_mode = False
        self.face_detected_at: Optional[int] = None
        self.can_start_timer = False
        self.is_manual_pause = False
        self.pause_reason: Optional[str] = None
        self.last_analysis: Optional[AnalysisResult] = None
        self.pause_count = 0
        self.total_paused_ms = 0

        self._start_time: Optional[int] = None
        self._frozen_elapsed = 0
        self._paused_at: Optional[int] = None

        self._api_lock = asyncio.Lock()
        self._api_calling = False
        self._in_flight_call = None
        # 尚未返回会话的 start 请求，以及它返回前用户要求的结束方式
        self._pending_start: Optional[object] = None
        self._session_endings: Dict[object, Tuple[str, Optional[dict]]] = {}

    # ---- 只读状态 ----

    @property
    def state(self) -> TimerState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state in (TimerState.RUNNING, TimerState.PAUSED)

    @property
    def is_paused(self) -> bool:
        return self._state == TimerState.PAUSED

    @property
    def is_waiting_for_face(self) -> bool:
        return self._state == TimerState.WAITING_FOR_FACE

    @property
    def is_awaiting_task(self) -> bool:
        """人脸已确认，只差选择任务"""
        return self.is_waiting_for_face and self.can_start_timer and self.task is None

    @property
    def is_api_calling(self) -> bool:
        return self._api_calling

    @property
    def elapsed_ms(self) -> int:
        if self._state == TimerState.RUNNING and self._start_time is not None:
            return max(0, self.clock() - self._start_time)
        return self._frozen_elapsed

    def display_time(self) -> str:
        """计时中显示当前任务用时，否则显示所有任务累计用时"""
        if self.is_active:
            return format_duration(self.elapsed_ms)
        return format_duration(self.task_times.total())

    def snapshot(self) -> TimerSnapshot:
        return TimerSnapshot(
            task=self.task,
            elapsed=self.elapsed_ms,
            active=self.is_active,
            paused=self.is_paused,
            session_id=self.session_id,
        )

    # ---- 摄像头模式 ----

    def enable_camera_mode(self):
        self.camera_mode = True
        if self._state in (TimerState.IDLE, TimerState.STOPPED):
            self._state = TimerState.WAITING_FOR_FACE
            self._clear_face_wait()
            logger.info("摄像头模式开启，等待人脸")

    def disable_camera_mode(self):
        self.camera_mode = False
        self._clear_face_wait()
        self.last_analysis = None
        if self._state == TimerState.WAITING_FOR_FACE:
            self._state = TimerState.IDLE
        logger.info("摄像头模式关闭")

    def _clear_face_wait(self):
        self.face_detected_at = None
        self.can_start_timer = False

    # ---- 检测回调 ----

    async def on_face_detected(self, result: Optional[AnalysisResult]):
        if result is None:
            return
        self.last_analysis = result
        now = self.clock()

        if self._state == TimerState.WAITING_FOR_FACE:
            if self.face_detected_at is None:
                self.face_detected_at = now
                logger.info("检测到人脸，%dms 后确认", self.confirmation_delay_ms)
            if not self.can_start_timer and now - self.face_detected_at >= self.confirmation_delay_ms:
                self.can_start_timer = True
                if self.task is None:
                    logger.info("人脸已确认，等待选择任务")
            if self.can_start_timer and self.task is not None:
                logger.info("人脸已确认，自动开始计时")
                await self.start(self.task)
        elif self._state == TimerState.PAUSED and self.camera_mode and not self.is_manual_pause:
            logger.info("检测到人脸，自动恢复计时")
            await self.resume()

    async def on_face_not_detected(self):
        self._clear_face_wait()
        if self.camera_mode and self._state == TimerState.RUNNING:
            logger.info("未检测到人脸，自动暂停计时")
            await self.pause(manual=False, reason=AUTO_PAUSE_REASON)

    # ---- 用户操作 ----

    async def select_task(self, task: Task) -> bool:
        """选择任务；人脸已确认时立即开始计时"""
        if self.is_active:
            if self.task is not None and self.task.id == task.id:
                return True
            logger.warning("计时进行中，不能切换任务")
            return False
        self.task = task
        if self.camera_mode and self.can_start_timer:
            logger.info("选择任务后立即开始计时")
            return await self.start(task)
        return True

    async def start(self, task: Optional[Task] = None) -> bool:
        task = task or self.task
        if task is None:
            logger.warning("未选择任务，无法开始计时")
            return False
        if self.is_active:
            logger.debug("计时已在进行")
            return False

        previous = self.task_times.get(task.id)
        now = self.clock()
        self.task = task
        self._start_time = now - previous
        self._frozen_elapsed = previous
        self._paused_at = None
        self._state = TimerState.RUNNING
        self._clear_face_wait()
        self.is_manual_pause = False
        self.pause_reason = None
        self.pause_count = 0
        self.total_paused_ms = 0
        self._save_snapshot()
        logger.info("开始计时 task=%s previous=%dms", task.id, previous)

        if not self.backend.is_authenticated:
            return True

        task_id = None if task.is_local else task.id
        token = object()
        self._pending_start = token
        await self._call_backend(
            "start",
            lambda sid: self.backend.start(task_id),
            needs_session=False,
            dedupe=False,
            on_done=lambda session: self._adopt_session(session, token),
        )
        return True

    async def _adopt_session(self, session: Optional[TimerSession], token: object):
        """在后端锁内执行。start 返回前计时已结束时，按用户当时的操作结束或取消该会话。"""
        owned = self._pending_start is token
        if owned:
            self._pending_start = None
        ending = self._session_endings.pop(token, None)
        if session is None:
            return
        if owned:
            self.session_id = session.id
            self._save_snapshot()
            return

        op, summary = ending or ("cancel", None)
        logger.info("会话 %s 返回时计时已结束，补发 %s", session.id, op)
        try:
            if op == "stop":
                await self.backend.stop(session.id, summary)
            else:
                await self.backend.cancel(session.id)
        except TimerBackendError as e:
            logger.warning("计时后端 %s 调用失败: %s", op, e)

    def _detach_pending_start(self, op: str, summary: Optional[dict] = None):
        token = self._pending_start
        if token is not None:
            self._session_endings[token] = (op, summary)
            self._pending_start = None

    async def pause(self, manual: bool = True, reason: Optional[str] = None) -> bool:
        if self._state != TimerState.RUNNING:
            logger.debug("当前不在计时中，忽略暂停")
            return False

        now = self.clock()
        self._frozen_elapsed = max(0, now - self._start_time)
        self._start_time = None
        self._paused_at = now
        self.pause_count += 1
        self.is_manual_pause = manual
        self.pause_reason = reason or (MANUAL_PAUSE_REASON if manual else AUTO_PAUSE_REASON)
        self._state = TimerState.PAUSED
        self._save_snapshot()
        logger.info("计时暂停 manual=%s elapsed=%dms", manual, self._frozen_elapsed)

        await self._call_backend("pause", lambda sid: self.backend.pause(sid))
        return True

    async def resume(self) -> bool:
        if self._state != TimerState.PAUSED:
            logger.debug("当前未暂停，忽略恢复")
            return False

        now = self.clock()
        self._start_time = now - self._frozen_elapsed
        if self._paused_at is not None:
            self.total_paused_ms += max(0, now - self._paused_at)
        self._paused_at = None
        self.is_manual_pause = False
        self.pause_reason = None
        self._state = TimerState.RUNNING
        self._save_snapshot()
        logger.info("计时恢复 elapsed=%dms", self._frozen_elapsed)

        await self._call_backend("resume", lambda sid: self.backend.resume(sid))
        return True

    async def toggle_pause(self) -> bool:
        """暂停按钮：暂停中则恢复，否则手动暂停"""
        if self.is_paused:
            return await self.resume()
        return await self.pause(manual=True)

    async def stop(self, face_stats_summary: Optional[dict] = None) -> bool:
        """结束计时，把用时写入任务累计时间并通知后端完成会话"""
        if not self.is_active:
            logger.debug("计时未开始，忽略停止")
            return False

        elapsed = self.elapsed_ms
        finished_task = self.task
        self.task_times.set(finished_task.id, elapsed)

        self._frozen_elapsed = elapsed
        self._start_time = None
        self._paused_at = None
        self._state = TimerState.STOPPED
        self.task = None
        self.camera_mode = False
        self._clear_face_wait()
        self.is_manual_pause = False
        self.pause_reason = None
        self.task_times.save_snapshot(
            TimerSnapshot(task=finished_task, elapsed=elapsed, active=False, paused=False)
        )
        logger.info("计时结束 task=%s elapsed=%dms", finished_task.id, elapsed)

        self._detach_pending_start("stop", face_stats_summary)
        session = await self._call_backend(
            "stop", lambda sid: self.backend.stop(sid, face_stats_summary),
        )
        if session is not None:
            self.session_id = None
        return True

    async def reset(self):
        """回到 Idle；删除当前任务的累计时间并取消进行中的后端会话。可重复调用。"""
        if self.task is not None:
            self.task_times.remove(self.task.id)

        session_id = self.session_id
        self._state = TimerState.IDLE
        self.task = None
        self.session_id = None
        self.camera_mode = False
        self._clear_face_wait()
        self.is_manual_pause = False
        self.pause_reason = None
        self.last_analysis = None
        self.pause_count = 0
        self.total_paused_ms = 0
        self._start_time = None
        self._frozen_elapsed = 0
        self._paused_at = None
        self.task_times.clear_snapshot()

        self._detach_pending_start("cancel")
        if session_id is not None:
            await self._call_backend(
                "cancel", lambda sid: self.backend.cancel(sid), session_id=session_id,
            )
        logger.info("计时已重置")

    def reset_daily_records(self):
        """手动清空今天的全部记录，计时回到 Idle"""
        self.task_times.reset_all()
        self._detach_pending_start("cancel")
        self._state = TimerState.IDLE
        self.task = None
        self.session_id = None
        self._clear_face_wait()
        self.is_manual_pause = False
        self.pause_reason = None
        self._start_time = None
        self._frozen_elapsed = 0
        self._paused_at = None

    # ---- 恢复 ----

    async def restore(self):
        """启动时恢复：先做每日重置检查，已登录时以后端活动会话为准，否则读取本地快照"""
        if self.task_times.check_daily_reset():
            return

        if self.backend.is_authenticated:
            try:
                session = await self.backend.get_active()
            except TimerBackendError as e:
                logger.warning("获取活动会话失败: %s，改用本地快照", e)
            else:
                if session is not None:
                    self._restore_from_session(session)
                return

        snapshot = self.task_times.load_snapshot()
        if snapshot is not None and snapshot.task is not None:
            self._restore_from_snapshot(snapshot)

    def _restore_from_session(self, session: TimerSession):
        if session.status not in (SessionStatus.ACTIVE, SessionStatus.PAUSED):
            return
        now = self.clock()
        start_ms = _parse_iso_ms(session.start_time)
        if start_ms is None:
            start_ms = now
        elapsed = int(session.duration * 1000 + (now - start_ms - session.total_pause_time * 1000))
        elapsed = max(0, elapsed)

        self.session_id = session.id
        self.task = Task(id=session.task_id or "unknown", title=RESTORED_TASK_TITLE)
        self.pause_count = session.pause_count
        self.total_paused_ms = int(session.total_pause_time * 1000)
        self._apply_restored(elapsed, paused=session.status == SessionStatus.PAUSED)
        logger.info("已恢复后端会话 %s elapsed=%dms", session.id, elapsed)

    def _restore_from_snapshot(self, snapshot: TimerSnapshot):
        self.task = snapshot.task
        self.session_id = snapshot.session_id
        if snapshot.active:
            self._apply_restored(snapshot.elapsed, paused=snapshot.paused)
        else:
            self._frozen_elapsed = snapshot.elapsed
        logger.info("已恢复本地快照 task=%s", snapshot.task.id)

    def _apply_restored(self, elapsed: int, paused: bool):
        now = self.clock()
        if paused:
            self._state = TimerState.PAUSED
            self._frozen_elapsed = elapsed
            self._start_time = None
            self._paused_at = now
            self.is_manual_pause = True
            self.pause_reason = RESTORED_PAUSE_REASON
        else:
            self._state = TimerState.RUNNING
            self._start_time = now - elapsed
            self._frozen_elapsed = elapsed

    # ---- 内部 ----

    def _save_snapshot(self):
        if self.task is not None:
            self.task_times.save_snapshot(self.snapshot())

    async def _call_backend(
        self,
        op: str,
        call: Callable[[Optional[str]], Awaitable[TimerSession]],
        needs_session: bool = True,
        session_id: Optional[str] = None,
        dedupe: bool = True,
        on_done: Optional[Callable[[Optional[TimerSession]], Awaitable[None]]] = None,
    ) -> Optional[TimerSession]:
        """
        串行调用后端。会话 id 在真正执行时读取，因此排在 start 之后的
        pause / stop 能拿到 start 返回的会话。失败只记日志，不影响本地状态。

        请求在独立任务中执行并用 shield 保护：调用方被取消（例如检测循环停止）
        时请求照常完成，on_done 仍在锁内处理结果。
        """
        if not self.backend.is_authenticated:
            return None

        key = (op, session_id or self.session_id)
        if dedupe and self._api_calling and self._in_flight_call == key:
            logger.info("相同的后端请求 %s 正在进行，忽略", op)
            return None

        job = asyncio.ensure_future(self._locked_call(op, call, needs_session, session_id, on_done))
        return await asyncio.shield(job)

    async def _locked_call(self, op, call, needs_session, session_id, on_done) -> Optional[TimerSession]:
        async with self._api_lock:
            sid = session_id or self.session_id
            if needs_session and not sid:
                return None
            self._api_calling = True
            self._in_flight_call = (op, sid)
            try:
                try:
                    session = await call(sid)
                except TimerBackendError as e:
                    logger.warning("计时后端 %s 调用失败: %s", op, e)
                    session = None
                if on_done is not None:
                    await on_done(session)
                return session
            finally:
                self._api_calling = False
                self._in_flight_call = None
