"""
Store 配置。

使用 pydantic 驗證配置值，並支援從環境變數讀取。
"""

import os
from enum import Enum
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from .errors import ConfigurationError, ErrorHandler


class ReentrancyPolicy(str, Enum):
    """
    dispatch 重入策略。

    QUEUE: 在 subscriber 或 interceptor 中觸發的 dispatch 排入佇列，
           待外層 dispatch 提交後依序執行。
    REJECT: 直接拋出 ReentrantDispatchError。
    """

    QUEUE = "queue"
    REJECT = "reject"


class StoreConfig(BaseModel):
    """單一 Store 實例的配置。"""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True, extra="forbid")

    name: str = Field(default="store", min_length=1)
    reentrancy_policy: ReentrancyPolicy = ReentrancyPolicy.QUEUE
    max_queued_dispatches: int = Field(default=1000, ge=1)
    error_handler: Optional[ErrorHandler] = None

    @classmethod
    def from_env(cls, prefix: str = "PYTINYSTORE_", environ: Optional[Mapping[str, str]] = None) -> "StoreConfig":
        """
        從環境變數建立配置。

        Args:
            prefix: 環境變數前綴
            environ: 環境變數映射，預設為 os.environ

        Returns:
            StoreConfig 實例

        Raises:
            ConfigurationError: 環境變數值無法通過驗證
        """
        environ = os.environ if environ is None else environ
        values = {}
        for field_name in ("name", "reentrancy_policy", "max_queued_dispatches"):
            raw = environ.get(f"{prefix}{field_name.upper()}")
            if raw is not None:
                values[field_name] = raw.strip().lower() if field_name == "reentrancy_policy" else raw.strip()
        return cls.build(**values)

    @classmethod
    def build(cls, **values) -> "StoreConfig":
        """
        驗證並建立配置，驗證失敗時轉換為 ConfigurationError。
        """
        try:
            return cls(**values)
        except PydanticValidationError as err:
            first = err.errors()[0]
            key = ".".join(str(part) for part in first.get("loc", ())) or None
            raise ConfigurationError(
                f"invalid store configuration: {first.get('msg')}",
                component="StoreConfig",
                config_key=key,
            ) from err
