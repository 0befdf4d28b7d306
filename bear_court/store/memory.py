"""
In-process case store.

Every operation runs without suspending between its read and its write, so
on a single event loop each call is atomic. Subscribers get their own
asyncio.Queue, fed in write order.
"""

import asyncio
import copy
import logging
import time
from collections import defaultdict
from typing import Any, AsyncIterator, Dict, Optional, Set

from ..errors import InvalidCaseCode, StoreUnavailable
from .base import CaseStore, apply_updates, conditions_hold

logger = logging.getLogger(__name__)


class MemoryCaseStore(CaseStore):
    """Reference store adapter kept entirely in memory"""

    def __init__(self):
        self._cases: Dict[str, Dict[str, Any]] = {}
        self._stats: Dict[str, Any] = {"likes": 0, "dislikes": 0}
        self._case_subscribers: Dict[str, Set[asyncio.Queue]] = defaultdict(set)
        self._stats_subscribers: Set[asyncio.Queue] = set()
        self._connected = False

    async def connect(self) -> None:
        self._connected = True
        logger.info("Memory case store connected")

    async def close(self) -> None:
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    def _ensure_connected(self):
        if not self._connected:
            raise StoreUnavailable()

    def _publish(self, case_id: str, document: Dict[str, Any]):
        for queue in self._case_subscribers.get(case_id, ()):
            queue.put_nowait(copy.deepcopy(document))

    async def get(self, case_id: str) -> Optional[Dict[str, Any]]:
        self._ensure_connected()
        document = self._cases.get(case_id)
        return copy.deepcopy(document) if document is not None else None

    async def create(self, case_id: str, document: Dict[str, Any]) -> bool:
        self._ensure_connected()
        if case_id in self._cases:
            return False
        self._cases[case_id] = copy.deepcopy(document)
        self._publish(case_id, document)
        return True

    async def update_if(
        self,
        case_id: str,
        conditions: Dict[str, Any],
        fields: Dict[str, Any],
    ) -> Optional[Dict[str, Any]]:
        self._ensure_connected()
        current = self._cases.get(case_id)
        if current is None:
            raise InvalidCaseCode()
        if not conditions_hold(current, conditions):
            return None
        updated = apply_updates(current, fields)
        self._cases[case_id] = updated
        self._publish(case_id, updated)
        return copy.deepcopy(updated)

    async def subscribe(self, case_id: str) -> AsyncIterator[Dict[str, Any]]:
        self._ensure_connected()
        current = self._cases.get(case_id)
        if current is None:
            raise InvalidCaseCode()

        queue: asyncio.Queue = asyncio.Queue()
        self._case_subscribers[case_id].add(queue)
        try:
            yield copy.deepcopy(current)
            while True:
                yield await queue.get()
        finally:
            subscribers = self._case_subscribers.get(case_id)
            if subscribers is not None:
                subscribers.discard(queue)
                if not subscribers:
                    del self._case_subscribers[case_id]

    async def get_stats(self) -> Dict[str, Any]:
        self._ensure_connected()
        return dict(self._stats)

    async def increment_stats(self, field: str, amount: int = 1) -> Dict[str, Any]:
        self._ensure_connected()
        self._stats[field] = int(self._stats.get(field, 0)) + amount
        self._stats["lastUpdated"] = int(time.time() * 1000)
        snapshot = dict(self._stats)
        for queue in self._stats_subscribers:
            queue.put_nowait(dict(snapshot))
        return snapshot

    async def subscribe_stats(self) -> AsyncIterator[Dict[str, Any]]:
        self._ensure_connected()
        queue: asyncio.Queue = asyncio.Queue()
        self._stats_subscribers.add(queue)
        try:
            yield dict(self._stats)
            while True:
                yield await queue.get()
        finally:
            self._stats_subscribers.discard(queue)
