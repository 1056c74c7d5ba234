from __future__ import annotations

from unittest.mock import Mock

import pytest

from pytinystore import ErrorHandler, StoreConfig, TinyStoreError
from tests.sample_app import app_reducer


@pytest.fixture
def reducer() -> Mock:
    return Mock(side_effect=app_reducer)


@pytest.fixture
def reported() -> list[TinyStoreError]:
    return []


@pytest.fixture
def config(reported: list[TinyStoreError]) -> StoreConfig:
    handler = ErrorHandler(log_to_console=False)
    handler.register_handler(reported.append)
    return StoreConfig(name="test", error_handler=handler)
