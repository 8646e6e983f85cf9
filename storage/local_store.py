"""本地持久化：JSON 文件键值存储 + 变更订阅，以及按任务累计时间的封装"""

import copy
import datetime
import json
import logging
import os
import threading
from typing import Any, Callable, Dict, List, Optional

from models.data_models import TimerSnapshot

logger = logging.getLogger(__name__)

TASK_TIMES_KEY = "task_times"
TIMER_STATE_KEY = "timer_state"
LAST_RESET_DATE_KEY = "last_reset_date"

Listener = Callable[[str, Any], None]


class ObservableStore:
    """
    可观察的键值存储。

    写入后立即落盘并通知订阅者；reload() 重新读取文件，
    对发生变化的键发出通知（对应外部修改文件的情况）。
    path 为 None 时只保存在内存中。
    """

    def __init__(self, path: Optional[str] = None):
        self.path = path
        self._lock = threading.Lock()
        self._listeners: List[Listener] = []
        self._data: Dict[str, Any] = self._read_file()

    def _read_file(self) -> Dict[str, Any]:
        if self.path is None or not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("本地存储读取失败 %s: %s，使用空存储", self.path, e)
            return {}
        if not isinstance(data, dict):
            logger.warning("本地存储格式错误 %s，使用空存储", self.path)
            return {}
        return data

    def _write_file(self):
        if self.path is None:
            return
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(self._data, f, ensure_ascii=False, indent=2)
        os.replace(tmp_path, self.path)

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            if key not in self._data:
                return default
            return copy.deepcopy(self._data[key])

    def set(self, key: str, value: Any):
        with self._lock:
            self._data[key] = copy.deepcopy(value)
            self._write_file()
        self._notify(key, value)

    def remove(self, key: str):
        with self._lock:
            if key not in self._data:
                return
            del self._data[key]
            self._write_file()
        self._notify(key, None)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """注册变更监听，返回取消订阅函数"""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def reload(self) -> List[str]:
        """重新读取文件，返回发生变化的键"""
        fresh = self._read_file()
        with self._lock:
            old = self._data
            self._data = fresh
        changed = [k for k in set(old) | set(fresh) if old.get(k) != fresh.get(k)]
        for key in changed:
            self._notify(key, fresh.get(key))
        return changed

    def _notify(self, key: str, value: Any):
        for listener in list(self._listeners):
            listener(key, value)


def _today() -> str:
    return datetime.date.today().isoformat()


class TaskTimeStore:
    """
    按任务累计的计时（毫秒）、每日重置日期和计时快照。

    只应由计时状态机写入；界面通过 subscribe 读取变化。
    """

    def __init__(self, store: Optional[ObservableStore] = None, today: Callable[[], str] = _today):
        self.store = store or ObservableStore()
        self.today = today

    def all(self) -> Dict[str, int]:
        data = self.store.get(TASK_TIMES_KEY, {})
        if not isinstance(data, dict):
            return {}
        return {str(k): max(0, int(v)) for k, v in data.items() if isinstance(v, (int, float))}

    def get(self, task_id: str) -> int:
        return self.all().get(task_id, 0)

    def set(self, task_id: str, elapsed_ms: int):
        times = self.all()
        times[task_id] = max(0, int(elapsed_ms))
        self.store.set(TASK_TIMES_KEY, times)

    def remove(self, task_id: str):
        times = self.all()
        if task_id in times:
            del times[task_id]
            self.store.set(TASK_TIMES_KEY, times)

    def total(self) -> int:
        return sum(self.all().values())

    def save_snapshot(self, snapshot: TimerSnapshot):
        self.store.set(TIMER_STATE_KEY, snapshot.to_dict())

    def load_snapshot(self) -> Optional[TimerSnapshot]:
        data = self.store.get(TIMER_STATE_KEY)
        if not data:
            return None
        try:
            return TimerSnapshot.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("计时快照解析失败: %s", e)
            return None

    def clear_snapshot(self):
        self.store.remove(TIMER_STATE_KEY)

    def check_daily_reset(self) -> bool:
        """日期变化时清空全部累计时间和快照，返回是否发生了重置"""
        today = self.today()
        if self.store.get(LAST_RESET_DATE_KEY) == today:
            return False
        self.reset_all()
        return True

    def reset_all(self):
        self.store.remove(TASK_TIMES_KEY)
        self.store.remove(TIMER_STATE_KEY)
        self.store.set(LAST_RESET_DATE_KEY, self.today())
        logger.info("每日计时记录已重置")

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        return self.store.subscribe(listener)

    def reload(self) -> List[str]:
        return self.store.reload()
