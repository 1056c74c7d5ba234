from __future__ import annotations

import threading
from typing import Any, Callable
from unittest.mock import Mock

import pytest

from pytinystore import (
    Action,
    InterceptorError,
    ReentrancyPolicy,
    ReentrantDispatchError,
    StoreConfig,
    SubscriberError,
    TinyStoreError,
    ValidationError,
    create_reducer,
    create_store,
    on,
)
from tests.sample_app import AppAction


def _suffix(tag: str) -> Callable[[Any, dict[str, Any], Action[Any]], dict[str, Any]]:
    def interceptor(old: Any, new: dict[str, Any], action: Action[Any]) -> dict[str, Any]:
        return {**new, "value": f"{new['value']}-{tag}"}

    return interceptor


def test_interceptors_fold_in_registration_order(reducer: Mock) -> None:
    first = Mock(side_effect=_suffix("a"))
    second = Mock(side_effect=_suffix("b"))
    store = create_store(reducer, {"init": True})
    store.intercept(first, [AppAction.UPDATE])
    store.intercept(second, [AppAction.UPDATE, AppAction.INITIALISE])

    store.dispatch(AppAction.UPDATE, "test")

    assert store.get("value") == "test-a-b"
    assert second.call_args.args[1] == {"init": True, "value": "test-a"}


def test_every_interceptor_sees_the_original_state(reducer: Mock) -> None:
    original = {"init": True}
    first = Mock(side_effect=_suffix("a"))
    second = Mock(side_effect=_suffix("b"))
    store = create_store(reducer, original)
    store.intercept(first, [AppAction.UPDATE])
    store.intercept(second, [AppAction.UPDATE])

    store.dispatch(AppAction.UPDATE, "test")

    assert first.call_args.args[0] is original
    assert second.call_args.args[0] is original


def test_interceptor_requires_explicit_action_filter(reducer: Mock) -> None:
    store = create_store(reducer)

    with pytest.raises(ValidationError):
        store.intercept(lambda old, new, action: new, [])
    with pytest.raises(ValidationError):
        store.intercept(lambda old, new, action: new, None)  # type: ignore[arg-type]
    with pytest.raises(ValidationError):
        store.intercept("not callable", [AppAction.UPDATE])  # type: ignore[arg-type]


def test_reducer_failure_propagates_without_side_effects() -> None:
    def failing(state: Any, action: Action[Any]) -> Any:
        if action.type == "explode":
            raise ValueError("boom")
        return {"ok": action.payload}

    state = {"ok": None}
    subscription = Mock(return_value=None)
    interceptor = Mock(side_effect=lambda old, new, action: new)
    store = create_store(failing, state)
    store.subscribe(subscription, ["explode"])
    store.intercept(interceptor, ["explode"])

    with pytest.raises(ValueError, match="boom"):
        store.dispatch("explode")

    assert store.state is state
    subscription.assert_not_called()
    interceptor.assert_not_called()


def test_interceptor_failure_stops_the_fold_and_skips_commit(reducer: Mock) -> None:
    state = {"init": True}
    subscription = Mock(return_value=None)
    later = Mock(side_effect=lambda old, new, action: new)
    store = create_store(reducer, state)
    store.subscribe(subscription, [AppAction.UPDATE])
    store.intercept(Mock(side_effect=RuntimeError("rejected")), [AppAction.UPDATE])
    store.intercept(later, [AppAction.UPDATE])

    with pytest.raises(RuntimeError, match="rejected"):
        store.dispatch(AppAction.UPDATE, "test")

    later.assert_not_called()
    subscription.assert_not_called()
    assert store.state is state


def test_async_interceptor_is_rejected(reducer: Mock) -> None:
    async def interceptor(old: Any, new: Any, action: Action[Any]) -> Any:
        return new

    store = create_store(reducer, {"init": True})
    store.intercept(interceptor, [AppAction.UPDATE])

    with pytest.raises(InterceptorError):
        store.dispatch(AppAction.UPDATE, "test")
    assert store.get("value") is None


def test_subscriber_failure_is_reported_and_does_not_abort_dispatch(
    reducer: Mock, config: StoreConfig, reported: list[TinyStoreError]
) -> None:
    after = Mock(return_value=None)
    store = create_store(reducer, config=config)
    store.subscribe(Mock(side_effect=RuntimeError("subscriber broke")))
    store.subscribe(after)

    store.dispatch(AppAction.INITIALISE, True)

    after.assert_called_once_with({"init": True}, Action(AppAction.INITIALISE, True))
    assert store.get("init") is True
    assert len(reported) == 1
    assert isinstance(reported[0], SubscriberError)
    assert reported[0].action_type is AppAction.INITIALISE
    assert isinstance(reported[0].__cause__, RuntimeError)


def test_disposer_is_idempotent(reducer: Mock) -> None:
    subscription = Mock(return_value=None)
    store = create_store(reducer)
    dispose = store.subscribe(subscription)
    remove_interceptor = store.intercept(lambda old, new, action: new, [AppAction.UPDATE])

    dispose()
    dispose()
    remove_interceptor()
    remove_interceptor()

    store.dispatch(AppAction.UPDATE, "x")
    subscription.assert_not_called()


def test_disposing_during_dispatch_does_not_affect_dispatch_in_progress(reducer: Mock) -> None:
    late = Mock(return_value=None)
    disposers: dict[str, Callable[[], None]] = {}

    def first(state: Any, action: Action[Any]) -> None:
        disposers["late"]()

    store = create_store(reducer)
    store.subscribe(first)
    disposers["late"] = store.subscribe(late)

    store.dispatch(AppAction.INITIALISE, True)
    late.assert_called_once()

    store.dispatch(AppAction.UPDATE, "again")
    late.assert_called_once()


def test_interceptor_disposing_a_subscriber_keeps_the_snapshot(reducer: Mock) -> None:
    subscription = Mock(return_value=None)
    store = create_store(reducer)
    dispose = store.subscribe(subscription, [AppAction.UPDATE])

    def interceptor(old: Any, new: Any, action: Action[Any]) -> Any:
        dispose()
        return new

    store.intercept(interceptor, [AppAction.UPDATE])
    store.dispatch(AppAction.UPDATE, "first")
    store.dispatch(AppAction.UPDATE, "second")

    subscription.assert_called_once_with({"value": "first"}, Action(AppAction.UPDATE, "first"))


def test_subscription_added_during_dispatch_waits_for_next_dispatch(reducer: Mock) -> None:
    added = Mock(return_value=None)
    registered: list[bool] = []

    def register(state: Any, action: Action[Any]) -> None:
        if not registered:
            registered.append(True)
            store.subscribe(added, [AppAction.UPDATE])

    store = create_store(reducer)
    store.subscribe(register, [AppAction.UPDATE])

    store.dispatch(AppAction.UPDATE, "first")
    added.assert_not_called()

    store.dispatch(AppAction.UPDATE, "second")
    added.assert_called_once_with({"value": "second"}, Action(AppAction.UPDATE, "second"))


def test_reentrant_dispatch_is_queued_until_outer_commit(reducer: Mock) -> None:
    log: list[Any] = []

    def on_initialise(state: Any, action: Action[Any]) -> None:
        log.append("initialise")
        store.dispatch(AppAction.UPDATE, "nested")
        log.append("nested dispatch returned")

    def on_update(state: Any, action: Action[Any]) -> None:
        log.append(("update", store.state))

    store = create_store(reducer)
    store.subscribe(on_initialise, [AppAction.INITIALISE])
    store.subscribe(on_update, [AppAction.UPDATE])

    store.dispatch(AppAction.INITIALISE, True)

    assert log == ["initialise", "nested dispatch returned", ("update", {"init": True})]
    assert store.state == {"init": True, "value": "nested"}
    assert reducer.call_count == 2


def test_reentrant_dispatch_from_interceptor_runs_after_commit(reducer: Mock) -> None:
    def interceptor(old: Any, new: Any, action: Action[Any]) -> Any:
        store.dispatch(AppAction.UPDATE, "follow-up")
        return new

    store = create_store(reducer)
    store.intercept(interceptor, [AppAction.INITIALISE])

    store.dispatch(AppAction.INITIALISE, True)

    assert store.state == {"init": True, "value": "follow-up"}


def test_reject_policy_raises_on_reentrant_dispatch(reducer: Mock, reported: list[TinyStoreError]) -> None:
    handler_config = StoreConfig(reentrancy_policy=ReentrancyPolicy.REJECT,
                                 error_handler=_collecting_handler(reported))

    def interceptor(old: Any, new: Any, action: Action[Any]) -> Any:
        store.dispatch(AppAction.UPDATE, "nested")
        return new

    store = create_store(reducer, {"init": False}, config=handler_config)
    store.intercept(interceptor, [AppAction.INITIALISE])

    with pytest.raises(ReentrantDispatchError):
        store.dispatch(AppAction.INITIALISE, True)
    assert store.state == {"init": False}


def test_reject_policy_reports_reentrant_dispatch_from_subscriber(
    reducer: Mock, reported: list[TinyStoreError]
) -> None:
    handler_config = StoreConfig(reentrancy_policy=ReentrancyPolicy.REJECT,
                                 error_handler=_collecting_handler(reported))
    store = create_store(reducer, config=handler_config)
    store.subscribe(lambda state, action: store.dispatch(AppAction.UPDATE, "nested"), [AppAction.INITIALISE])

    store.dispatch(AppAction.INITIALISE, True)

    assert store.state == {"init": True}
    assert len(reported) == 1
    assert isinstance(reported[0].__cause__, ReentrantDispatchError)


def test_runaway_reentrant_dispatch_is_bounded(reducer: Mock, reported: list[TinyStoreError]) -> None:
    handler_config = StoreConfig(max_queued_dispatches=3, error_handler=_collecting_handler(reported))
    store = create_store(reducer, config=handler_config)
    store.subscribe(lambda state, action: store.dispatch(AppAction.UPDATE, reducer.call_count), [AppAction.UPDATE])

    store.dispatch(AppAction.UPDATE, 0)

    assert reducer.call_count == 4
    assert store.get("value") == 3
    assert len(reported) == 1
    assert isinstance(reported[0].__cause__, ReentrantDispatchError)

    # 計數在下一次最外層 dispatch 重新開始
    reported.clear()
    store.dispatch(AppAction.UPDATE, 100)
    assert reducer.call_count == 8
    assert len(reported) == 1


def test_failed_queued_dispatch_discards_remaining_queue() -> None:
    def reducer(state: Any, action: Action[Any]) -> Any:
        if action.type == "fail":
            raise KeyError("queued failure")
        return {**(state or {}), action.type: action.payload}

    store = create_store(reducer)

    def subscriber(state: Any, action: Action[Any]) -> None:
        store.dispatch("fail")
        store.dispatch("never", True)

    store.subscribe(subscriber, ["start"])

    with pytest.raises(KeyError):
        store.dispatch("start", True)

    assert store.state == {"start": True}
    store.dispatch("after", 1)
    assert store.state == {"start": True, "after": 1}


def test_concurrent_dispatches_are_serialized() -> None:
    increment = "increment"
    counter = create_reducer({"count": 0}, on(increment, lambda state, action: {"count": state["count"] + 1}))
    reducer = Mock(side_effect=counter)
    store = create_store(reducer)
    seen: list[int] = []
    store.subscribe(lambda state, action: seen.append(state["count"]), [increment])

    def worker() -> None:
        for _ in range(200):
            store.dispatch(increment)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert store.get("count") == 800
    assert reducer.call_count == 800
    assert seen == list(range(1, 801))


def test_interrupted_dispatch_does_not_leak_queued_dispatches(reducer: Mock) -> None:
    notified: list[Any] = []

    def on_initialise(state: Any, action: Action[Any]) -> None:
        store.dispatch(AppAction.UPDATE, "queued")
        raise KeyboardInterrupt

    store = create_store(reducer)
    store.subscribe(lambda state, action: notified.append(action.type), [AppAction.UPDATE, AppAction.DESTROY])
    store.subscribe(on_initialise, [AppAction.INITIALISE])

    with pytest.raises(KeyboardInterrupt):
        store.dispatch(AppAction.INITIALISE, True)

    store.dispatch(AppAction.DESTROY)

    assert notified == [AppAction.DESTROY]
    assert reducer.call_count == 2
    assert store.state == {}


def test_teardown_during_dispatch_discards_queued_dispatches(reducer: Mock) -> None:
    def on_initialise(state: Any, action: Action[Any]) -> None:
        store.dispatch(AppAction.UPDATE, "queued")
        store.teardown()

    store = create_store(reducer)
    store.subscribe(on_initialise, [AppAction.INITIALISE])

    store.dispatch(AppAction.INITIALISE, True)

    assert [c.args[1].type for c in reducer.call_args_list] == [AppAction.INITIALISE]
    assert store.get("value") is None


def test_registration_errors_go_to_the_configured_handler(
    reducer: Mock, config: StoreConfig, reported: list[TinyStoreError]
) -> None:
    from pytinystore import global_error_handler

    global_reports: list[TinyStoreError] = []
    global_error_handler.register_handler(global_reports.append)
    store = create_store(reducer, config=config)

    try:
        with pytest.raises(ValidationError):
            store.intercept(lambda old, new, action: new, [])
        with pytest.raises(ValidationError):
            store.subscribe("not callable")  # type: ignore[arg-type]
    finally:
        global_error_handler.unregister_handler(global_reports.append)

    assert global_reports == []
    assert reported == []


def _collecting_handler(reported: list[TinyStoreError]):
    from pytinystore import ErrorHandler

    handler = ErrorHandler(log_to_console=False)
    handler.register_handler(reported.append)
    return handler
