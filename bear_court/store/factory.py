"""
Store Factory
=============

Builds the configured case store adapter.
"""

from ..config import Settings
from ..schemas import StoreBackend
from .base import CaseStore
from .memory import MemoryCaseStore
from .redis_store import RedisCaseStore


def create_store(settings: Settings) -> CaseStore:
    """
    Create (but do not connect) the store selected by STORE_BACKEND.

    Args:
        settings: Application settings

    Returns:
        Unconnected CaseStore
    """
    if settings.store_backend == StoreBackend.REDIS:
        return RedisCaseStore(
            redis_url=settings.redis_url,
            app_id=settings.app_id,
            stats_doc_id=settings.stats_doc_id,
        )
    return MemoryCaseStore()
