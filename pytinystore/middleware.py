"""
PyTinyStore 的中介軟體定義模組。

中介軟體在每次 dispatch 的生命週期中被調用：
reducer 執行前（on_next）、提交或判定未改變後（on_complete）、
以及 reducer 或 interceptor 拋出異常時（on_error）。
中介軟體只能觀察，不能改寫狀態；改寫狀態請使用 interceptor。
"""

import contextlib
import datetime
import logging
import time
from typing import Any, Dict, Generator, List, Tuple

from .actions import Action
from .types import ActionContext

logger = logging.getLogger(__name__)


# ———— Base Middleware ————
class BaseMiddleware:
    """
    基礎中介類，定義所有中介可能實現的鉤子。
    """

    def on_next(self, action: Action[Any], prev_state: Any) -> None:
        """
        在 action 發送給 reducer 之前調用。

        Args:
            action: 正在 dispatch 的 Action
            prev_state: dispatch 之前的 store.state
        """
        pass

    def on_complete(self, next_state: Any, action: Action[Any]) -> None:
        """
        在 dispatch 完成之後調用（狀態未改變時 next_state 即為原狀態）。

        Args:
            next_state: dispatch 之後的最新 store.state
            action: 剛剛 dispatch 的 Action
        """
        pass

    def on_error(self, error: Exception, action: Action[Any]) -> None:
        """
        如果 reducer 或 interceptor 拋出異常，則調用此鉤子，之後異常會繼續向外拋出。

        Args:
            error: 拋出的異常
            action: 導致異常的 Action
        """
        pass

    def teardown(self) -> None:
        """
        當 Store 清理資源時調用，用於清理中間件持有的資源。
        """
        pass

    @contextlib.contextmanager
    def action_context(self, action: Action[Any], prev_state: Any) -> Generator[ActionContext, None, None]:
        """
        以上下文管理器的形式包裹一次 dispatch 的生命週期。

        Store 在提交後把 next_state 與 changed 寫入 context；
        子類可以覆蓋此方法，但應負責呼叫適當的 hook 方法。

        Args:
            action: 要分發的 Action
            prev_state: 分發前的狀態

        Yields:
            context 字典，用於在上下文內部與外部之間傳遞數據
        """
        context: ActionContext = {
            'action': action,
            'prev_state': prev_state,
            'next_state': None,
            'changed': False,
            'error': None,
        }

        self.on_next(action, prev_state)
        try:
            yield context
        except Exception as err:
            context['error'] = err
            self.on_error(err, action)
            raise
        if context['next_state'] is not None:
            self.on_complete(context['next_state'], action)


# ———— LoggerMiddleware ————
class LoggerMiddleware(BaseMiddleware):
    """
    日誌中介，記錄每個 action 發送前和發送後的 state。

    使用場景:
    - 偵錯時需要觀察每次 state 的變化。
    - 確保 action 的執行順序正確。
    """

    def __init__(self, level: int = logging.INFO, name: str = __name__):
        self.level = level
        self._logger = logging.getLogger(name)
        self._started_at = None

    @contextlib.contextmanager
    def action_context(self, action: Action[Any], prev_state: Any) -> Generator[ActionContext, None, None]:
        self._started_at = datetime.datetime.now()
        try:
            with super().action_context(action, prev_state) as context:
                yield context
        finally:
            self._started_at = None

    def on_next(self, action: Action[Any], prev_state: Any) -> None:
        self._logger.log(self.level, "[%s] dispatching %r", self._started_at, action.type)
        self._logger.log(self.level, "state before %r: %r", action.type, prev_state)

    def on_complete(self, next_state: Any, action: Action[Any]) -> None:
        self._logger.log(self.level, "state after %r: %r", action.type, next_state)

    def on_error(self, error: Exception, action: Action[Any]) -> None:
        self._logger.error("error in %r: %s", action.type, error)


# ———— PerformanceMonitorMiddleware ————
class PerformanceMonitorMiddleware(BaseMiddleware):
    """
    性能監控中間件，記錄 action 處理時間。
    """

    def __init__(self, threshold_ms: float = 100, log_all: bool = False):
        """
        初始化 PerformanceMonitorMiddleware。

        Args:
            threshold_ms: 性能警告閾值，單位為毫秒，預設為 100 毫秒
            log_all: 是否記錄所有 action 的性能指標，預設為 False (只記錄超過閾值的)
        """
        self.threshold_ms = threshold_ms
        self.log_all = log_all
        self.metrics: Dict[Any, List[float]] = {}

    @contextlib.contextmanager
    def action_context(self, action: Action[Any], prev_state: Any) -> Generator[ActionContext, None, None]:
        start_time = time.perf_counter()
        try:
            with super().action_context(action, prev_state) as context:
                yield context
        except Exception as err:
            elapsed_ms = (time.perf_counter() - start_time) * 1000
            logger.warning("action %r failed after %.2fms: %s", action.type, elapsed_ms, err)
            raise
        elapsed_ms = (time.perf_counter() - start_time) * 1000
        self.metrics.setdefault(action.type, []).append(elapsed_ms)
        if elapsed_ms > self.threshold_ms:
            logger.warning("action %r took %.2fms, exceeding threshold %sms",
                           action.type, elapsed_ms, self.threshold_ms)
        elif self.log_all:
            logger.info("action %r took %.2fms", action.type, elapsed_ms)

    def get_metrics(self) -> Dict[Any, Dict[str, float]]:
        """
        獲取性能指標統計信息。
        """
        result = {}
        for action_type, times in self.metrics.items():
            if not times:
                continue
            result[action_type] = {
                'avg': sum(times) / len(times),
                'max': max(times),
                'min': min(times),
                'count': len(times),
            }
        return result

    def teardown(self) -> None:
        self.metrics.clear()


# ———— DevToolsMiddleware ————
class DevToolsMiddleware(BaseMiddleware):
    """
    記錄每次 action 與 state 快照，用於調試。

    只記錄實際改變狀態的 dispatch；歷史是唯讀的，不提供回放。
    """

    def __init__(self, max_history: int = 1000) -> None:
        self.max_history = max_history
        self.history: List[Tuple[Any, Action[Any], Any]] = []

    @contextlib.contextmanager
    def action_context(self, action: Action[Any], prev_state: Any) -> Generator[ActionContext, None, None]:
        with super().action_context(action, prev_state) as context:
            yield context
        if context['changed']:
            self.history.append((prev_state, action, context['next_state']))
            if len(self.history) > self.max_history:
                del self.history[0]

    def get_history(self) -> List[Tuple[Any, Action[Any], Any]]:
        """
        返回整個歷史快照列表。

        Returns:
            歷史快照列表，每項為 (prev_state, action, next_state)
        """
        return list(self.history)

    def teardown(self) -> None:
        self.history.clear()
