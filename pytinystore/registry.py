"""
Subscription 與 interceptor 的登記表。

每個註冊項以單調遞增的 handle 為鍵，dict 的插入順序即註冊順序。
dispatch 開始時取得的快照不受之後的移除影響。
"""

import itertools
import logging
import threading
from typing import Any, Callable, Dict, FrozenSet, Hashable, Iterable, Optional, Tuple

from .actions import action_type_of
from .errors import ValidationError

logger = logging.getLogger(__name__)


class Entry:
    """
    一個註冊項：回調與其 action 類型過濾條件。

    屬性:
        handle: 唯一且單調遞增的識別碼
        callback: subscriber 或 interceptor
        actions: 過濾的 action 類型集合，空集合代表全部
        active: 移除後為 False，尚未開始的非同步通知會被跳過
    """
    __slots__ = ("handle", "callback", "actions", "active")

    def __init__(self, handle: int, callback: Callable[..., Any], actions: FrozenSet[Hashable]):
        self.handle = handle
        self.callback = callback
        self.actions = actions
        self.active = True

    def matches(self, action_type: Hashable) -> bool:
        return not self.actions or action_type in self.actions

    def __repr__(self):
        kinds = sorted(map(repr, self.actions)) or ["*"]
        return f"Entry(handle={self.handle}, actions=[{', '.join(kinds)}])"


def _normalize_actions(actions: Optional[Iterable[Any]], field: str) -> FrozenSet[Hashable]:
    if actions is None:
        return frozenset()
    if isinstance(actions, (str, bytes)):
        # 單一字串類型視為一個元素，而不是字元序列
        actions = [actions]
    try:
        return frozenset(action_type_of(a) for a in actions)
    except TypeError as err:
        raise ValidationError(
            "action types must be an iterable of hashable values",
            field=field,
            value=actions,
        ) from err


class Registry:
    """
    管理 subscriptions 與 interceptors。

    新增與移除可以在任何時候發生（包括 dispatch 進行中），
    但 dispatch 使用的是開始時取得的快照。
    """

    def __init__(self):
        self._handles = itertools.count(1)
        self._subscriptions: Dict[int, Entry] = {}
        self._interceptors: Dict[int, Entry] = {}
        self._lock = threading.Lock()

    def add_subscription(self, callback: Callable[..., Any], actions: Optional[Iterable[Any]] = None) -> Entry:
        """
        新增一個 subscription。

        Args:
            callback: subscriber 回調
            actions: 過濾的 action 類型，None 或空列表代表全部

        Returns:
            新建立的 Entry
        """
        if not callable(callback):
            raise ValidationError("subscriber must be callable", field="callback", value=callback,
                                  expected_type="callable")
        return self._add(self._subscriptions, callback, _normalize_actions(actions, "actions"))

    def add_interceptor(self, callback: Callable[..., Any], actions: Iterable[Any]) -> Entry:
        """
        新增一個 interceptor。

        與 subscription 不同，interceptor 必須明確指定至少一個 action 類型。

        Args:
            callback: interceptor 回調
            actions: 過濾的 action 類型，不可為空

        Returns:
            新建立的 Entry
        """
        if not callable(callback):
            raise ValidationError("interceptor must be callable", field="callback", value=callback,
                                  expected_type="callable")
        normalized = _normalize_actions(actions, "actions")
        if not normalized:
            raise ValidationError("interceptors require at least one action type", field="actions",
                                  value=actions)
        return self._add(self._interceptors, callback, normalized)

    def _add(self, table: Dict[int, Entry], callback: Callable[..., Any], actions: FrozenSet[Hashable]) -> Entry:
        with self._lock:
            entry = Entry(next(self._handles), callback, actions)
            table[entry.handle] = entry
        logger.debug("registered %r", entry)
        return entry

    def remove(self, handle: int) -> bool:
        """
        移除指定 handle 的註冊項。

        已排程但尚未開始的非同步通知會被跳過，正在執行的不受影響。

        Returns:
            是否真的移除了註冊項；重複移除返回 False
        """
        with self._lock:
            entry = self._subscriptions.pop(handle, None) or self._interceptors.pop(handle, None)
        if entry is None:
            return False
        entry.active = False
        logger.debug("removed %r", entry)
        return True

    def disposer(self, entry: Entry) -> Callable[[], None]:
        """建立移除指定註冊項的 disposer。"""
        handle = entry.handle

        def dispose() -> None:
            self.remove(handle)

        return dispose

    def subscribers_for(self, action_type: Hashable) -> Tuple[Entry, ...]:
        """返回符合 action 類型的 subscriptions 快照，依註冊順序排列。"""
        with self._lock:
            return tuple(e for e in self._subscriptions.values() if e.matches(action_type))

    def interceptors_for(self, action_type: Hashable) -> Tuple[Entry, ...]:
        """返回符合 action 類型的 interceptors 快照，依註冊順序排列。"""
        with self._lock:
            return tuple(e for e in self._interceptors.values() if action_type in e.actions)

    def clear(self) -> None:
        """移除所有註冊項。"""
        with self._lock:
            entries = list(self._subscriptions.values()) + list(self._interceptors.values())
            self._subscriptions.clear()
            self._interceptors.clear()
        for entry in entries:
            entry.active = False

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    @property
    def interceptor_count(self) -> int:
        return len(self._interceptors)
