"""
Shared fixtures for Bear Court tests.
"""

import sys
from pathlib import Path

import pytest

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))
sys.path.insert(0, str(Path(__file__).parent))

from bear_court.feedback import FeedbackAggregator
from bear_court.guard import AdjudicationGuard
from bear_court.machine import CaseStateMachine
from bear_court.store import MemoryCaseStore

from fakes import FakeClock, FakeOracle


@pytest.fixture
async def store():
    store = MemoryCaseStore()
    await store.connect()
    yield store
    await store.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def guard(clock):
    return AdjudicationGuard(debounce_seconds=5, cooldown_seconds=60, clock=clock)


@pytest.fixture
def oracle():
    return FakeOracle()


@pytest.fixture
def machine(store, oracle, guard):
    return CaseStateMachine(store=store, oracle=oracle, guard=guard)


@pytest.fixture
def feedback(store):
    return FeedbackAggregator(store)
