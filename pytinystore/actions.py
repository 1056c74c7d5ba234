"""
PyTinyStore 的 Action 定義模組。

此模組提供 Action 類別以及創建 Action 的功能。
Actions 是描述狀態變更意圖的不可變對象，類型標識由呼叫端自行定義，
Store 只把它當作可雜湊的鍵使用。
"""
from typing import Any, Callable, Generic, Hashable, Optional, TypeVar

P = TypeVar("P")


class Action(Generic[P]):
    """
    表示一個有類型和可選負載的動作。

    泛型參數:
        P: 負載的類型

    屬性:
        type: 動作的類型標識（Enum 成員、字串等任何可雜湊值）
        payload: 動作的負載數據（可選）
    """
    __slots__ = ('type', 'payload')

    def __init__(self, type: Hashable, payload: Optional[P] = None):
        super().__setattr__('type', type)
        super().__setattr__('payload', payload)

    def __setattr__(self, name, value):
        raise AttributeError(f"Cannot modify immutable instance attribute '{name}'")

    def __delattr__(self, name):
        raise AttributeError(f"Cannot delete immutable instance attribute '{name}'")

    def __eq__(self, other):
        if not isinstance(other, Action):
            return NotImplemented
        return self.type == other.type and self.payload == other.payload

    def __hash__(self):
        try:
            return hash((self.type, self.payload))
        except TypeError:
            # payload 不可雜湊時退回只用 type
            return hash(self.type)

    def __reduce__(self):
        return (Action, (self.type, self.payload))

    def __repr__(self):
        return f"Action(type={self.type!r}, payload={self.payload!r})"


class ActionCreator(Generic[P]):
    """
    指定類型的 Action 生成器。

    調用時每次都建立新的 Action，並暴露 `type` 屬性以便
    reducer、subscribe 與 intercept 的過濾條件引用。
    """

    def __init__(self, action_type: Hashable, prepare_fn: Optional[Callable[..., P]] = None):
        self.type = action_type
        self._prepare_fn = prepare_fn

    def __call__(self, *args: Any, **kwargs: Any) -> Action[P]:
        if self._prepare_fn:
            return Action(self.type, self._prepare_fn(*args, **kwargs))
        if len(args) == 1 and not kwargs:
            return Action(self.type, args[0])
        if args or kwargs:
            raise TypeError(
                f"action creator {self.type!r} takes at most one positional payload; "
                "pass a prepare_fn to build structured payloads"
            )
        # 無參數，無負載
        return Action(self.type)

    def __repr__(self):
        return f"ActionCreator(type={self.type!r})"


def create_action(action_type: Hashable, prepare_fn: Optional[Callable[..., P]] = None) -> ActionCreator[P]:
    """
    創建一個 Action 生成器函數。

    Args:
        action_type: Action 的類型標識符
        prepare_fn: 可選的預處理函數，用於在創建 Action 前處理輸入參數

    Returns:
        一個可調用的生成器，用於生成指定類型的 Action

    範例:
        >>> increment = create_action("[Counter] Increment")
        >>> increment()  # 返回 Action(type='[Counter] Increment', payload=None)
        >>>
        >>> add = create_action("[Counter] Add", lambda amount: amount)
        >>> add(5)  # 返回 Action(type='[Counter] Add', payload=5)
    """
    return ActionCreator(action_type, prepare_fn)


def action_type_of(action_or_type: Any) -> Hashable:
    """
    取得 Action 類型標識。

    接受 ActionCreator、Action 實例或原始類型標識。

    Args:
        action_or_type: Action 生成器、Action 或類型標識

    Returns:
        類型標識
    """
    if isinstance(action_or_type, (ActionCreator, Action)):
        return action_or_type.type
    return action_or_type
