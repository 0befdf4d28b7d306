"""
Case Store Package
==================

Adapters for the shared, subscribable case document store.

Usage:
    from bear_court.store import create_store

    store = create_store(settings)
    await store.connect()
"""

from .base import CaseStore, get_path, apply_updates, conditions_hold
from .memory import MemoryCaseStore
from .redis_store import RedisCaseStore
from .factory import create_store

__all__ = [
    "CaseStore",
    "MemoryCaseStore",
    "RedisCaseStore",
    "create_store",
    "get_path",
    "apply_updates",
    "conditions_hold",
]
