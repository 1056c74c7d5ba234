from typing import Any, Callable, Dict, Hashable, Mapping, Optional, TypeVar

from immutables import Map

from .actions import Action, action_type_of

S = TypeVar("S")
Reducer = Callable[[Optional[S], Action[Any]], S]
Handler = Callable[[S, Action[Any]], S]


def create_reducer(initial_state: S, *handlers) -> Reducer[S]:
    """
    創建一個 reducer 函式，用於處理狀態變更。

    Args:
        initial_state: 初始狀態，Store 尚無狀態（None）時以此為起點。
        *handlers: 一系列 (action_type, handler_fn) 元組或使用 on 函式創建的處理器。

    Returns:
        一個 reducer 函式，根據 action 的類型執行對應的處理邏輯。
    """
    action_handlers: Dict[Hashable, Handler] = {}  # 儲存 action 類型與處理函式的對應關係

    for handler in handlers:
        if isinstance(handler, tuple) and len(handler) == 2:
            # 如果 handler 是元組，則解構為 action 類型與處理函式
            action_type, handler_fn = handler
            action_handlers[action_type_of(action_type)] = handler_fn
        elif isinstance(handler, Mapping):
            # 如果 handler 是字典，則直接更新到 action_handlers
            action_handlers.update(handler)
        else:
            raise TypeError(f"unsupported reducer handler: {handler!r}")

    def reducer(state: Optional[S], action: Action[Any]) -> S:
        if state is None:
            state = initial_state
        handler = action_handlers.get(action.type)  # 根據 action 類型查找處理函式
        if handler:
            return handler(state, action)
        return state  # 如果沒有對應處理函式，返回原狀態

    # 設置 reducer 的初始狀態和處理器映射
    reducer.initial_state = initial_state
    reducer.handlers = action_handlers

    return reducer


def on(action_creator_or_type, handler: Handler) -> Dict[Hashable, Handler]:
    """
    創建一個 action 類型與處理函式的映射。

    Args:
        action_creator_or_type: Action 創建器或任意 Action 類型標識（Enum 成員、字串...）。
        handler: 處理該 Action 的函式，接收 (state, action) 並返回新狀態。

    Returns:
        一個包含 {action_type: handler} 的字典。
    """
    return {action_type_of(action_creator_or_type): handler}


def combine_reducers(reducers: Mapping[str, Reducer[Any]]) -> Reducer[Map]:
    """
    將多個 slice reducer 組合為一個根 reducer。

    根狀態是以 slice 鍵為索引的 immutables.Map（傳入 dict 時保持 dict）。沒有任何 slice 改變時
    返回原本的狀態物件，讓 Store 的身分比較判定為「未改變」。

    Args:
        reducers: slice 鍵到 reducer 的映射

    Returns:
        根 reducer
    """
    slice_reducers = dict(reducers)

    def root_reducer(state: Optional[Map], action: Action[Any]) -> Map:
        if state is None:
            state = Map()
        changes = {}
        for key, reducer in slice_reducers.items():
            prev_substate = state.get(key)
            next_substate = reducer(prev_substate, action)
            if key not in state or next_substate is not prev_substate:
                changes[key] = next_substate

        if not changes:
            return state
        if isinstance(state, Map):
            return state.update(changes)
        return {**state, **changes}

    root_reducer.reducers = slice_reducers
    return root_reducer
