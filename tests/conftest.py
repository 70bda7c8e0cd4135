# SPDX-License-Identifier: Apache-2.0
"""
Shared fixtures for the cloudcall test suites.

Everything here is synchronous: engines and dispatchers can be built
outside the event loop, and each async test drives them inside its own
loop. No fixture performs network I/O.
"""

from __future__ import annotations

from typing import Any, Callable

import pytest

from cloudcall_sdk.mock.mock_dispatcher import MockDispatcher
from cloudcall_sdk.rest.engine import RestEngine
from cloudcall_sdk.rest.jobs import FixedInterval

BASE_URI = "https://api.example.test/v1"


class RecordingMetrics:
    """MetricsSink that keeps every emission for assertions."""

    def __init__(self) -> None:
        self.observations = []
        self.counters = []

    def observe(self, **kw: Any) -> None:
        self.observations.append(kw)

    def counter(self, **kw: Any) -> None:
        self.counters.append(kw)


@pytest.fixture
def base_uri() -> str:
    return BASE_URI


@pytest.fixture
def dispatcher() -> MockDispatcher:
    return MockDispatcher()


@pytest.fixture
def metrics() -> RecordingMetrics:
    return RecordingMetrics()


@pytest.fixture
def make_engine() -> Callable[..., RestEngine]:
    """
    Factory for engines over a MockDispatcher.

    Polling uses a zero interval so job tests never sleep for real.
    """

    def _make(dispatcher: MockDispatcher, **kwargs: Any) -> RestEngine:
        kwargs.setdefault("base_uri", BASE_URI)
        kwargs.setdefault("poll_policy", FixedInterval(0.0))
        return RestEngine(dispatcher=dispatcher, **kwargs)

    return _make
