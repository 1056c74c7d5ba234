import asyncio
import contextlib
import inspect
import logging
import threading
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Generic, Hashable, Iterable, Mapping, Optional, Tuple, TypeVar

from immutables import Map
from reactivex import Observable, Subject
from reactivex import operators as ops

from .actions import Action, action_type_of
from .config import ReentrancyPolicy, StoreConfig
from .errors import (
    InterceptorError,
    ReentrantDispatchError,
    StoreError,
    SubscriberError,
    ValidationError,
    global_error_handler,
)
from .middleware import BaseMiddleware
from .registry import Entry, Registry

S = TypeVar("S")

_NO_PAYLOAD = object()


class Store(Generic[S]):
    """
    狀態容器，管理應用狀態並通知訂閱者狀態變更。

    一次 dispatch 的流程：
    reducer 產生候選狀態 → 依註冊順序套用符合的 interceptors →
    若最終狀態與目前狀態不是同一個物件，依註冊順序通知符合的 subscribers，
    然後提交新狀態。
    """

    def __init__(self, reducer: Callable[[Optional[S], Action[Any]], S], initial_state: Optional[S] = None,
                 config: Optional[StoreConfig] = None):
        """
        初始化 Store。

        Args:
            reducer: 純函數 (previous_state, action) -> next_state
            initial_state: 可選的初始狀態
            config: Store 配置，預設使用 StoreConfig()
        """
        if not callable(reducer):
            raise ValidationError("reducer must be callable", field="reducer", value=reducer,
                                  expected_type="callable")
        self._reducer = reducer
        self._config = config or StoreConfig()
        self._error_handler = self._config.error_handler or global_error_handler
        self._logger = logging.getLogger(f"{__name__}.{self._config.name}")
        # 最後一次提交的狀態，只在 _commit 中整體替換
        self._state: Optional[S] = initial_state
        self._registry = Registry()
        self._middleware = []
        # 狀態流，每次提交後發出 (old_state, new_state)
        self._state_subject = Subject()
        # 同一時間只允許一個 dispatch 執行
        self._lock = threading.RLock()
        self._dispatching = False
        self._queue: Deque[Action[Any]] = deque()
        # 本次最外層 dispatch 中已排入的重入 dispatch 數量
        self._nested_count = 0
        self._closed = False
        # 沒有執行中的事件迴圈時，非同步 subscriber 在背景迴圈上執行
        self._loop_lock = threading.Lock()
        self._background_loop: Optional[asyncio.AbstractEventLoop] = None
        self._background_thread: Optional[threading.Thread] = None

    # ———— State accessor ————

    @property
    def state(self) -> Optional[S]:
        """
        獲取最後一次提交的狀態快照。

        Returns:
            當前狀態，尚未有任何狀態時為 None。
        """
        return self._state

    def get(self, key: Hashable, default: Any = None) -> Any:
        """
        讀取當前狀態中的單一鍵。

        鍵不存在或尚無狀態時返回 default，不會拋出異常。

        Args:
            key: 狀態鍵（Mapping 的鍵或物件屬性名稱）
            default: 鍵不存在時的返回值

        Returns:
            對應的值或 default
        """
        state = self._state
        if state is None:
            return default
        if isinstance(state, (Mapping, Map)):
            return state.get(key, default)
        if isinstance(key, str):
            return getattr(state, key, default)
        return default

    def select(self, selector: Optional[Callable[[S], Any]] = None) -> Observable:
        """
        選擇狀態的一部分進行觀察。

        Args:
            selector: 一個函數，接收整個狀態並返回希望觀察的部分。

        Returns:
            一個可觀察對象，每次提交後發送 (old, new)；
            提供 selector 時只在選取值的身分改變時發送。
        """
        if selector is None:
            return self._state_subject.pipe(ops.as_observable())

        return self._state_subject.pipe(
            ops.map(lambda pair: (None if pair[0] is None else selector(pair[0]), selector(pair[1]))),
            ops.filter(lambda pair: pair[0] is not pair[1]),
        )

    # ———— Registry ————

    def subscribe(self, callback: Callable[..., Any], actions: Optional[Iterable[Any]] = None) -> Callable[[], None]:
        """
        註冊一個 subscriber。

        若 Store 已有狀態且沒有指定過濾條件，會在返回前以 callback(state) 同步調用一次。

        Args:
            callback: 接收 (state, action) 的回調，可以是協程函數
            actions: 只在這些 action 類型時通知，None 或空列表代表全部

        Returns:
            移除此 subscriber 的 disposer，重複調用無作用
        """
        self._ensure_open("subscribe")
        entry = self._registry.add_subscription(callback, actions)
        state = self._state
        if state is not None and not entry.actions:
            self._notify(entry, (state,), None)
        return self._registry.disposer(entry)

    def intercept(self, callback: Callable[[Optional[S], S, Action[Any]], S],
                  actions: Iterable[Any]) -> Callable[[], None]:
        """
        註冊一個 interceptor。

        Interceptor 以 (original_state, candidate, action) 被調用，
        必須同步返回新的候選狀態。

        Args:
            callback: interceptor 函數
            actions: 必填，至少一個 action 類型

        Returns:
            移除此 interceptor 的 disposer，重複調用無作用
        """
        self._ensure_open("intercept")
        entry = self._registry.add_interceptor(callback, actions)
        return self._registry.disposer(entry)

    # ———— Middleware ————

    def apply_middleware(self, *middlewares) -> "Store[S]":
        """
        註冊一個或多個中介軟體。

        Args:
            *middlewares: 要註冊的中介軟體，可以是類或實例。
        """
        with self._lock:
            for m in middlewares:
                inst = m() if inspect.isclass(m) else m
                if not all(hasattr(inst, hook) for hook in ("on_next", "on_complete", "on_error")):
                    raise ValidationError("middleware must implement on_next, on_complete and on_error",
                                          field="middleware", value=inst)
                self._middleware.append(inst)
        return self

    # ———— Dispatcher ————

    def dispatch(self, action: Any, payload: Any = _NO_PAYLOAD) -> Action[Any]:
        """
        分發一個動作，觸發狀態轉換。

        可以傳入 (action_type, payload) 或現成的 Action 實例。

        Args:
            action: Action 類型標識、Action 生成器或 Action 實例
            payload: 可選的負載

        Returns:
            被分發的 Action

        Raises:
            ReentrantDispatchError: 重入被拒絕或佇列已滿
            Exception: reducer 或 interceptor 拋出的原始異常
        """
        self._ensure_open("dispatch")
        action = self._make_action(action, payload)

        with self._lock:
            if self._dispatching:
                self._enqueue(action)
                return action

            self._dispatching = True
            self._nested_count = 0
            try:
                self._run(action)
                # 在 subscriber/interceptor 中排入的 dispatch 依序執行，Store 關閉後不再執行
                while self._queue and not self._closed:
                    self._run(self._queue.popleft())
            finally:
                self._dispatching = False
                # 失敗（包括 KeyboardInterrupt 等）或關閉時剩下的佇列一律丟棄
                if self._queue:
                    self._logger.warning("discarding %d queued dispatches", len(self._queue))
                    self._queue.clear()
        return action

    def _make_action(self, action: Any, payload: Any) -> Action[Any]:
        if isinstance(action, Action):
            if payload is not _NO_PAYLOAD:
                raise ValidationError("payload cannot be given together with an Action instance",
                                      field="payload", value=payload)
            return action
        return Action(action_type_of(action), None if payload is _NO_PAYLOAD else payload)

    def _enqueue(self, action: Action[Any]) -> None:
        if self._config.reentrancy_policy is ReentrancyPolicy.REJECT:
            raise ReentrantDispatchError("dispatch called while another dispatch is in progress",
                                         action_type=action.type)
        if self._nested_count >= self._config.max_queued_dispatches:
            raise ReentrantDispatchError("too many dispatches queued from subscribers or interceptors",
                                         action_type=action.type,
                                         limit=self._config.max_queued_dispatches)
        self._nested_count += 1
        self._logger.debug("queueing reentrant dispatch of %r", action.type)
        self._queue.append(action)

    def _run(self, action: Action[Any]) -> None:
        """在所有中介軟體的上下文中執行一次狀態轉換。"""
        prev_state = self._state
        with contextlib.ExitStack() as stack:
            contexts = [stack.enter_context(self._middleware_context(mw, action, prev_state))
                        for mw in list(self._middleware)]
            changed, next_state = self._transition(action, prev_state)
            for context in contexts:
                context['next_state'] = next_state
                context['changed'] = changed

    @staticmethod
    def _middleware_context(mw: Any, action: Action[Any], prev_state: Any):
        if hasattr(mw, "action_context"):
            return mw.action_context(action, prev_state)
        return BaseMiddleware.action_context(mw, action, prev_state)

    def _transition(self, action: Action[Any], prev_state: Optional[S]) -> Tuple[bool, Optional[S]]:
        # 快照在 dispatch 開始時固定，之後的移除不影響本次 dispatch
        interceptors = self._registry.interceptors_for(action.type)
        subscribers = self._registry.subscribers_for(action.type)

        candidate = self._reducer(prev_state, action)

        for entry in interceptors:
            candidate = entry.callback(prev_state, candidate, action)
            if inspect.isawaitable(candidate):
                if inspect.iscoroutine(candidate):
                    candidate.close()
                raise InterceptorError("interceptors must return the next state synchronously",
                                       handle=entry.handle, action_type=action.type)

        if candidate is prev_state:
            self._logger.debug("%r left the state unchanged", action.type)
            return False, prev_state

        self._logger.debug("%r changed the state, notifying %d subscribers", action.type, len(subscribers))
        for entry in subscribers:
            self._notify(entry, (candidate, action), action)

        self._commit(prev_state, candidate)
        return True, candidate

    def _commit(self, prev_state: Optional[S], next_state: S) -> None:
        self._state = next_state
        try:
            self._state_subject.on_next((prev_state, next_state))
        except Exception as err:
            self._error_handler.handle(err)

    # ———— Subscriber notification ————

    def _notify(self, entry: Entry, args: Tuple[Any, ...], action: Optional[Action[Any]]) -> None:
        """調用 subscriber；返回 awaitable 時排程執行而不等待。"""
        try:
            result = entry.callback(*args)
        except Exception as err:
            self._report_subscriber_error(entry, action, err)
            return
        if inspect.isawaitable(result):
            self._schedule(entry, result, action)

    def _schedule(self, entry: Entry, awaitable: Awaitable[Any], action: Optional[Action[Any]]) -> None:
        coro = self._await_notification(entry, awaitable, action)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if loop is not None:
            loop.create_task(coro)
        else:
            asyncio.run_coroutine_threadsafe(coro, self._get_background_loop())

    async def _await_notification(self, entry: Entry, awaitable: Awaitable[Any],
                                  action: Optional[Action[Any]]) -> None:
        if not entry.active:
            # 開始執行前已被移除：跳過；已開始的通知不中斷
            self._logger.debug("skipping notification for removed subscriber %d", entry.handle)
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return
        try:
            await awaitable
        except Exception as err:
            self._report_subscriber_error(entry, action, err)

    def _report_subscriber_error(self, entry: Entry, action: Optional[Action[Any]], err: Exception) -> None:
        action_type = action.type if action is not None else None
        self._error_handler.handle(
            SubscriberError(f"subscriber {entry.handle} failed: {err}", handle=entry.handle,
                            action_type=action_type, cause=err)
        )

    def _get_background_loop(self) -> asyncio.AbstractEventLoop:
        with self._loop_lock:
            if self._background_loop is None:
                loop = asyncio.new_event_loop()
                thread = threading.Thread(target=_run_background_loop, args=(loop,), daemon=True,
                                          name=f"pytinystore-{self._config.name}")
                thread.start()
                self._background_loop = loop
                self._background_thread = thread
            return self._background_loop

    # ———— Lifecycle ————

    def _ensure_open(self, operation: str) -> None:
        if self._closed:
            raise StoreError("store has been torn down", operation=operation)

    def teardown(self) -> None:
        """
        清理 Store：移除所有註冊項與中介軟體，完成狀態流並停止背景迴圈。
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._registry.clear()
            for mw in self._middleware:
                if hasattr(mw, "teardown"):
                    mw.teardown()
            self._middleware.clear()
        self._state_subject.on_completed()

        with self._loop_lock:
            loop, thread = self._background_loop, self._background_thread
            self._background_loop = self._background_thread = None
        if loop is not None:
            loop.call_soon_threadsafe(loop.stop)
            # 從背景迴圈內的 subscriber 呼叫時不能 join 自己
            if threading.current_thread() is not thread:
                thread.join(timeout=5)

    def __enter__(self) -> "Store[S]":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.teardown()

    def __repr__(self):
        return (f"Store(name={self._config.name!r}, subscriptions={self._registry.subscription_count}, "
                f"interceptors={self._registry.interceptor_count})")


def _run_background_loop(loop: asyncio.AbstractEventLoop) -> None:
    asyncio.set_event_loop(loop)
    try:
        loop.run_forever()
    finally:
        loop.close()


def create_store(reducer: Callable[[Optional[S], Action[Any]], S], initial_state: Optional[S] = None, *,
                 config: Optional[StoreConfig] = None, middlewares: Iterable[Any] = ()) -> Store[S]:
    """
    創建一個新的 Store 實例。

    Args:
        reducer: 純函數 (previous_state, action) -> next_state
        initial_state: 可選的初始狀態
        config: 可選的 Store 配置
        middlewares: 要註冊的中介軟體

    Returns:
        Store: 新創建的 Store 實例。
    """
    store = Store(reducer, initial_state, config)
    if middlewares:
        store.apply_middleware(*middlewares)
    return store
