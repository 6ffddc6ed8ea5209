"""Shared fixtures for stackmemory tests."""

from __future__ import annotations

import pytest

from stackmemory.config import StackConfig
from stackmemory.stack_memory import StackMemory


class FakeClock:
    """Strictly increasing clock: every call advances by *step* seconds."""

    def __init__(self, start: float = 1_000_000.0, step: float = 1.0) -> None:
        self.now = start
        self.step = step

    def __call__(self) -> float:
        self.now += self.step
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config(tmp_path):
    return StackConfig(db_path=tmp_path / "context.db", max_stack_depth=4)


@pytest.fixture
def memory(config, clock):
    return StackMemory(config, clock=clock)
