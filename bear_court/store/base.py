"""
Case Store Base Types
=====================

Interface every case store adapter implements, plus the dotted-path helpers
they share.

Documents are plain JSON-shaped dicts. Writes are partial updates keyed by
dotted paths (`"sideA.content"`), matching how the managed document store
addresses nested fields. Conditional writes (`update_if`) give the state
machine compare-and-set semantics for role claims and one-shot fields.
"""

import copy
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, Optional

_MISSING = object()


def get_path(document: Dict[str, Any], path: str, default: Any = None) -> Any:
    """Read a dotted path, returning default when any segment is absent"""
    node: Any = document
    for part in path.split("."):
        if not isinstance(node, dict) or part not in node:
            return default
        node = node[part]
    return node


def apply_updates(document: Dict[str, Any], fields: Dict[str, Any]) -> Dict[str, Any]:
    """
    Return a copy of document with dotted-path fields applied.

    Missing or null intermediate segments are created as empty dicts.
    """
    updated = copy.deepcopy(document)
    for path, value in fields.items():
        parts = path.split(".")
        node = updated
        for part in parts[:-1]:
            if not isinstance(node.get(part), dict):
                node[part] = {}
            node = node[part]
        node[parts[-1]] = copy.deepcopy(value)
    return updated


def conditions_hold(document: Dict[str, Any], conditions: Dict[str, Any]) -> bool:
    """True when every dotted path currently equals its expected value"""
    for path, expected in conditions.items():
        actual = get_path(document, path, _MISSING)
        if actual is _MISSING:
            actual = None
        if actual != expected:
            return False
    return True


class CaseStore(ABC):
    """
    Subscribable document store for cases and the global stats singleton.

    Lifecycle: `connect()` before use, `close()` when done. Any operation on a
    store that is not connected or cannot reach its backend raises
    StoreUnavailable.
    """

    @abstractmethod
    async def connect(self) -> None:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    @property
    @abstractmethod
    def connected(self) -> bool:
        ...

    @abstractmethod
    async def get(self, case_id: str) -> Optional[Dict[str, Any]]:
        """Current document, or None when it does not exist"""

    @abstractmethod
    async def create(self, case_id: str, document: Dict[str, Any]) -> bool:
        """Create a document; False when the id is already taken"""

    @abstractmethod
    async def update_if(
        self,
        case_id: str,
        conditions: Dict[str, Any],
        fields: Dict[str, Any],
    ) -> Optional[Dict[str, Any]]:
        """
        Atomically apply fields if all conditions hold.

        Returns the updated document, or None when a condition failed.
        Raises InvalidCaseCode when the document does not exist.
        """

    async def update(self, case_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Unconditional partial update"""
        return await self.update_if(case_id, {}, fields)

    @abstractmethod
    def subscribe(self, case_id: str) -> AsyncIterator[Dict[str, Any]]:
        """
        Stream of snapshots for one case.

        Yields the current document first, then every subsequent write in
        write order. Closing the iterator unsubscribes. Raises
        InvalidCaseCode when the document does not exist.
        """

    @abstractmethod
    async def get_stats(self) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def increment_stats(self, field: str, amount: int = 1) -> Dict[str, Any]:
        """Atomic counter increment on the stats singleton; returns new stats"""

    @abstractmethod
    def subscribe_stats(self) -> AsyncIterator[Dict[str, Any]]:
        ...
