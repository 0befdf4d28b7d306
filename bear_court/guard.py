"""
Adjudication Guard
==================

Per-case concurrency and rate-limit control around verdict requests.

- One request in flight per case; a newer accepted request cancels the older
  one (asyncio task cancellation).
- Debounce window: after a request is accepted, further triggers for the same
  case are rejected until the window expires or that request completes.
- Cooldown: a provider 429 blocks the case for a fixed time; triggers during
  the cooldown are rejected locally without calling the provider.

Failures are never retried here.
"""

import asyncio
import logging
import math
import time
from typing import Awaitable, Callable, Dict, Optional, Set, TypeVar

from .errors import AdjudicationRateLimited, PreconditionFailed

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AdjudicationGuard:
    """
    Wraps adjudication coroutines for one process.

    Usage:
        guard = AdjudicationGuard(debounce_seconds=5, cooldown_seconds=60)
        verdict = await guard.run(case_id, lambda: produce_verdict(case_id))
    """

    def __init__(
        self,
        debounce_seconds: float = 5.0,
        cooldown_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.debounce_seconds = debounce_seconds
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._in_flight: Dict[str, asyncio.Task] = {}
        self._superseded: Set[asyncio.Task] = set()
        self._accepted_at: Dict[str, float] = {}
        self._cooldown_until: Dict[str, float] = {}

    def cooldown_remaining(self, case_id: str) -> int:
        """Whole seconds left in the case's cooldown, 0 when none"""
        until = self._cooldown_until.get(case_id)
        if until is None:
            return 0
        remaining = until - self._clock()
        if remaining <= 0:
            del self._cooldown_until[case_id]
            return 0
        return math.ceil(remaining)

    def is_in_flight(self, case_id: str) -> bool:
        task = self._in_flight.get(case_id)
        return task is not None and not task.done()

    def check(self, case_id: str) -> None:
        """
        Raise if a new request for the case would be rejected right now.

        Raises:
            AdjudicationRateLimited: cooldown active
            PreconditionFailed: inside the debounce window
        """
        remaining = self.cooldown_remaining(case_id)
        if remaining > 0:
            logger.info(f"Case {case_id} in cooldown, {remaining}s left")
            raise AdjudicationRateLimited(retry_after=remaining)

        accepted_at = self._accepted_at.get(case_id)
        if accepted_at is not None and self._clock() - accepted_at < self.debounce_seconds:
            logger.info(f"Case {case_id} trigger debounced")
            raise PreconditionFailed("The judge is already reading this case, please wait")

    def cancel(self, case_id: str) -> bool:
        """Cancel the in-flight request for a case, if any"""
        task = self._in_flight.get(case_id)
        if task is None or task.done():
            return False
        self._superseded.add(task)
        task.cancel()
        logger.info(f"Cancelled in-flight adjudication for case {case_id}")
        return True

    def cancel_all(self) -> None:
        for case_id in list(self._in_flight):
            self.cancel(case_id)

    async def run(self, case_id: str, factory: Callable[[], Awaitable[T]]) -> T:
        """
        Run one adjudication request under the guard.

        Args:
            case_id: Case the request belongs to
            factory: Creates the coroutine to run; called only if accepted

        Returns:
            The coroutine's result

        Raises:
            AdjudicationRateLimited: cooldown active, or the provider throttled
                this request (which starts a new cooldown)
            PreconditionFailed: debounced, or superseded by a newer request
        """
        self.check(case_id)
        self.cancel(case_id)

        self._accepted_at[case_id] = self._clock()
        task = asyncio.ensure_future(factory())
        self._in_flight[case_id] = task

        try:
            return await task
        except AdjudicationRateLimited:
            self._cooldown_until[case_id] = self._clock() + self.cooldown_seconds
            logger.warning(f"Provider throttled case {case_id}, cooldown {self.cooldown_seconds}s")
            raise AdjudicationRateLimited(retry_after=math.ceil(self.cooldown_seconds))
        except asyncio.CancelledError:
            if task in self._superseded:
                raise PreconditionFailed("A newer request for this case replaced this one")
            raise
        finally:
            self._superseded.discard(task)
            if self._in_flight.get(case_id) is task:
                del self._in_flight[case_id]
                # Completion ends the debounce window early
                self._accepted_at.pop(case_id, None)
