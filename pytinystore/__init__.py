"""
PyTinyStore：可攔截、可選擇性通知的行程內狀態容器。
"""

from .errors import (
    TinyStoreError, StoreError, ReentrantDispatchError, ValidationError,
    InterceptorError, SubscriberError, ConfigurationError,
    ErrorHandler, global_error_handler, handle_error
)
from .actions import Action, ActionCreator, create_action
from .config import ReentrancyPolicy, StoreConfig
from .middleware import (
    BaseMiddleware, LoggerMiddleware, PerformanceMonitorMiddleware, DevToolsMiddleware
)
from .reducers import create_reducer, on, combine_reducers
from .registry import Registry
from .store import Store, create_store
from .store_selectors import create_selector
from .immutable_utils import to_immutable, to_dict, assoc

__version__ = "0.1.0"

# 匯出所有公開 API
__all__ = [
    # Errors
    "TinyStoreError", "StoreError", "ReentrantDispatchError", "ValidationError",
    "InterceptorError", "SubscriberError", "ConfigurationError",
    "ErrorHandler", "global_error_handler", "handle_error",

    # Actions
    "Action", "ActionCreator", "create_action",

    # Config
    "ReentrancyPolicy", "StoreConfig",

    # Middleware
    "BaseMiddleware", "LoggerMiddleware", "PerformanceMonitorMiddleware", "DevToolsMiddleware",

    # Reducers
    "create_reducer", "on", "combine_reducers",

    # Store
    "Registry", "Store", "create_store",

    # Selectors
    "create_selector",

    # Immutable Utils
    "to_immutable", "to_dict", "assoc",
]
