"""
PyTinyStore 錯誤處理模組。

定義 Store 相關的異常層級，以及集中式的錯誤處理器。
Reducer 與 interceptor 的錯誤會直接從 dispatch 拋出；
subscriber 的錯誤不會中斷 dispatch，而是交給 ErrorHandler 記錄。
"""

import functools
import logging
import traceback as tb
from typing import Any, Callable, Dict, List, Optional, TypeVar, Union

T = TypeVar("T")

logger = logging.getLogger(__name__)


class TinyStoreError(Exception):
    """所有 PyTinyStore 異常的基礎類。"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.traceback = "".join(tb.format_stack()[:-1])

    def to_dict(self) -> Dict[str, Any]:
        """
        將異常轉換為可序列化的字典。

        Returns:
            包含錯誤類型、訊息與細節的字典
        """
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": dict(self.details),
            "traceback": self.traceback,
        }

    def __str__(self) -> str:
        if not self.details:
            return self.message
        details = ", ".join(f"{k}={v!r}" for k, v in self.details.items())
        return f"{self.message} ({details})"


class StoreError(TinyStoreError):
    """與 Store 操作相關的錯誤。"""

    def __init__(self, message: str, operation: str, **kwargs: Any) -> None:
        super().__init__(message, {"operation": operation, **kwargs})
        self.operation = operation


class ReentrantDispatchError(StoreError):
    """在 dispatch 進行中再次 dispatch，且 Store 拒絕重入或佇列已滿。"""

    def __init__(self, message: str, action_type: Any = None, **kwargs: Any) -> None:
        super().__init__(message, operation="dispatch", action_type=action_type, **kwargs)
        self.action_type = action_type


class ValidationError(TinyStoreError):
    """註冊參數驗證錯誤。"""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Any = None,
        expected_type: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        details = {"field": field, "value": value, **kwargs}
        if expected_type is not None:
            details["expected_type"] = expected_type
        super().__init__(message, details)
        self.field = field
        self.value = value


class InterceptorError(TinyStoreError):
    """Interceptor 違反同步回傳狀態的約定。"""

    def __init__(self, message: str, handle: int, action_type: Any = None, **kwargs: Any) -> None:
        super().__init__(message, {"handle": handle, "action_type": action_type, **kwargs})
        self.handle = handle
        self.action_type = action_type


class SubscriberError(TinyStoreError):
    """包裝 subscriber 執行時拋出的異常，用於錯誤回報。"""

    def __init__(self, message: str, handle: int, action_type: Any = None, cause: Optional[BaseException] = None) -> None:
        super().__init__(message, {"handle": handle, "action_type": action_type})
        self.handle = handle
        self.action_type = action_type
        self.__cause__ = cause


class ConfigurationError(TinyStoreError):
    """配置相關的錯誤。"""

    def __init__(self, message: str, component: str, config_key: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(message, {"component": component, "config_key": config_key, **kwargs})
        self.component = component
        self.config_key = config_key


class ErrorHandler:
    """
    集中式錯誤處理器，用於捕獲、日誌記錄和錯誤回報。

    不會向外拋出的錯誤（例如 subscriber 失敗）都會經過這裡。
    """

    def __init__(self, log_to_console: bool = True, log_to_file: bool = False, log_file: Optional[str] = None) -> None:
        """
        初始化錯誤處理器。

        Args:
            log_to_console: 是否透過 logging 輸出錯誤
            log_to_file: 是否額外寫入檔案
            log_file: 錯誤日誌檔案路徑，log_to_file 為 True 時必填
        """
        if log_to_file and not log_file:
            raise ConfigurationError("log_file is required when log_to_file is enabled",
                                     component="ErrorHandler", config_key="log_file")
        self.log_to_console = log_to_console
        self.log_to_file = log_to_file
        self.log_file = log_file
        self.handlers: List[Callable[[TinyStoreError], None]] = []
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        if log_to_file:
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
            file_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
            self._logger.addHandler(file_handler)

    def register_handler(self, handler: Callable[[TinyStoreError], None]) -> None:
        """
        註冊一個錯誤回調，每次 handle 時以結構化錯誤調用。

        Args:
            handler: 接收 TinyStoreError 的回調
        """
        self.handlers.append(handler)

    def unregister_handler(self, handler: Callable[[TinyStoreError], None]) -> None:
        if handler in self.handlers:
            self.handlers.remove(handler)

    def handle(self, error: Union[TinyStoreError, BaseException]) -> None:
        """
        處理一個錯誤：記錄日誌並通知所有已註冊的回調。

        Args:
            error: 要處理的錯誤，非 TinyStoreError 會先包裝
        """
        if not isinstance(error, TinyStoreError):
            wrapped = TinyStoreError(str(error), {"error_type": error.__class__.__name__})
            wrapped.__cause__ = error
            error = wrapped

        if self.log_to_console or self.log_to_file:
            cause = error.__cause__
            exc_info = (type(cause), cause, cause.__traceback__) if cause is not None else None
            self._logger.error("%s", error, exc_info=exc_info)

        for handler in list(self.handlers):
            try:
                handler(error)
            except Exception:
                # 回調本身失敗只記錄，避免錯誤處理遞迴
                self._logger.exception("error handler %r failed", handler)


# 單例錯誤處理器
global_error_handler = ErrorHandler()


def handle_error(func: Callable[..., T]) -> Callable[..., T]:
    """
    裝飾器：將函數拋出的 TinyStoreError 交給全域錯誤處理器後再拋出。

    Args:
        func: 被裝飾的函數

    Returns:
        包裝後的函數
    """
    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> T:
        try:
            return func(*args, **kwargs)
        except TinyStoreError as err:
            global_error_handler.handle(err)
            raise

    return wrapper
