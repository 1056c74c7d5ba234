"""
PyTinyStore 共用類型定義。

集中定義 reducer、subscriber、interceptor 與 middleware 的呼叫約定。
"""

from typing import Any, Awaitable, Callable, Hashable, Iterable, Optional, TypeVar, Union

from typing_extensions import Protocol, TypedDict

from .actions import Action

# 狀態類型
S = TypeVar("S")
# 負載類型
P = TypeVar("P")
# selector 輸入與輸出
Input = TypeVar("Input")
Output = TypeVar("Output")
R = TypeVar("R")

# Action 類型標識：任何可雜湊、可比較的值（Enum 成員、字串、整數...）
ActionType = Hashable
ActionFilter = Optional[Iterable[ActionType]]

# (previous_state, action) -> next_state
Reducer = Callable[[Optional[S], Action[Any]], S]

StateSelector = Callable[[Input], Output]
ResultSelector = Callable[..., R]


class Subscriber(Protocol[S]):
    """狀態變更通知回調，可以是同步函數或回傳 awaitable 的協程函數。"""

    def __call__(self, state: S, action: Optional[Action[Any]] = None) -> Union[None, Awaitable[None]]: ...


class Interceptor(Protocol[S]):
    """在提交前改寫 reducer 結果的同步函數。"""

    def __call__(self, original_state: Optional[S], candidate: S, action: Action[Any]) -> S: ...


class Disposer(Protocol):
    """移除註冊項的無參數函數，重複調用無作用。"""

    def __call__(self) -> None: ...


class Middleware(Protocol):
    """Dispatch 生命週期鉤子。"""

    def on_next(self, action: Action[Any], prev_state: Any) -> None: ...

    def on_complete(self, next_state: Any, action: Action[Any]) -> None: ...

    def on_error(self, error: Exception, action: Action[Any]) -> None: ...

    def teardown(self) -> None: ...


class ActionContext(TypedDict, total=False):
    """Middleware 在一次 dispatch 期間共享的上下文資料。"""

    action: Action[Any]
    prev_state: Any
    next_state: Any
    changed: bool
    error: Optional[Exception]
