"""
PyTinyStore 範例：計數器，展示 reducer、interceptor、subscription 與中介軟體。
"""

import asyncio
import logging
from typing import Optional

from immutables import Map

from pytinystore import (
    DevToolsMiddleware,
    LoggerMiddleware,
    assoc,
    combine_reducers,
    create_action,
    create_reducer,
    create_selector,
    create_store,
    on,
    to_dict,
)


# ====== 1. 定義狀態 ======
counter_initial_state = Map(count=0, history=(), max_value=10)


# ====== 2. 定義 Actions ======
increment = create_action("increment")
decrement = create_action("decrement")
increment_by = create_action("incrementBy", lambda amount: amount)
reset = create_action("reset")


# ====== 3. 定義 Reducer ======
def _with_count(state: Map, count: int) -> Map:
    return assoc(state, "count", count).set("history", state["history"] + (count,))


counter_reducer = create_reducer(
    counter_initial_state,
    on(increment, lambda state, action: _with_count(state, state["count"] + 1)),
    on(decrement, lambda state, action: _with_count(state, state["count"] - 1)),
    on(increment_by, lambda state, action: _with_count(state, state["count"] + action.payload)),
    on(reset, lambda state, action: counter_initial_state),
)

root_reducer = combine_reducers({"counter": counter_reducer})


# ====== 4. 定義 Selectors ======
get_counter = lambda state: state["counter"]
get_count = create_selector(get_counter, result_fn=lambda counter: counter["count"])


# ====== 5. Interceptor：限制最大值 ======
def clamp_count(old_state: Optional[Map], new_state: Map, action) -> Map:
    counter = new_state["counter"]
    if counter["count"] <= counter["max_value"]:
        return new_state
    # 超過上限時保留原狀態，dispatch 不會通知任何 subscriber
    return old_state


async def report_async(state: Map, action) -> None:
    await asyncio.sleep(0)
    print(f"[async] {action.type} -> {get_count(state)}")


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    devtools = DevToolsMiddleware()

    with create_store(root_reducer, middlewares=[LoggerMiddleware, devtools]) as store:
        store.intercept(clamp_count, [increment, increment_by])
        store.select(get_count).subscribe(
            on_next=lambda pair: print(f"count changed: {pair[0]} -> {pair[1]}")
        )
        dispose = store.subscribe(lambda state, action: print(f"[sync] {action.type}: {to_dict(state)}"))
        store.subscribe(report_async, [reset])

        store.dispatch(increment)
        store.dispatch(increment_by(4))
        store.dispatch(increment_by(100))  # 被 interceptor 擋下
        store.dispatch(decrement)
        dispose()
        store.dispatch(reset)

        print(f"final count: {store.get('counter')['count']}")
        print(f"recorded changes: {len(devtools.get_history())}")


if __name__ == "__main__":
    main()
