"""
Court Context
=============

Owns every collaborator of one running court: settings, case store, identity
provider, oracle client, adjudication guard, state machine and feedback
aggregator. Built explicitly at startup and passed to whoever needs it.

Lifecycle: CREATED --init()--> READY --dispose()--> DISPOSED

Usage:
    async with CourtContext(settings) as court:
        code = await court.machine.create_case(Role.A, uid)
"""

import logging
from enum import Enum
from typing import Any, Optional

from .config import Settings, get_settings
from .errors import StoreUnavailable
from .feedback import FeedbackAggregator
from .guard import AdjudicationGuard
from .identity import IdentityProvider
from .machine import CaseStateMachine
from .oracle import OracleClient
from .store import CaseStore, create_store

logger = logging.getLogger(__name__)


class ContextState(str, Enum):
    CREATED = "created"
    READY = "ready"
    DISPOSED = "disposed"


class CourtContext:
    """
    Args:
        settings: Application settings (default: from environment)
        store: Case store; built from settings when omitted
        oracle: Adjudication oracle; OracleClient when omitted
        guard: Adjudication guard; built from settings when omitted
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        store: Optional[CaseStore] = None,
        oracle: Optional[Any] = None,
        guard: Optional[AdjudicationGuard] = None,
    ):
        self.settings = settings or get_settings()
        self.store = store or create_store(self.settings)
        self.oracle = oracle or OracleClient(self.settings)
        self.guard = guard or AdjudicationGuard(
            debounce_seconds=self.settings.adjudication_debounce_seconds,
            cooldown_seconds=self.settings.rate_limit_cooldown_seconds,
        )
        self.identity = IdentityProvider(self.settings)
        self.state = ContextState.CREATED
        self._machine: Optional[CaseStateMachine] = None
        self._feedback: Optional[FeedbackAggregator] = None

    async def init(self) -> "CourtContext":
        """Connect the store and wire the state machine"""
        if self.state == ContextState.READY:
            return self
        if self.state == ContextState.DISPOSED:
            raise StoreUnavailable("The court has been closed")

        for warning in self.settings.validate_oracle_config():
            logger.warning(warning)

        await self.store.connect()
        self._machine = CaseStateMachine(
            store=self.store,
            oracle=self.oracle,
            guard=self.guard,
            code_length=self.settings.case_code_length,
        )
        self._feedback = FeedbackAggregator(self.store)
        self.state = ContextState.READY
        logger.info(f"Court in session (store={self.settings.store_backend.value}, oracle={self.settings.oracle_mode.value})")
        return self

    async def dispose(self) -> None:
        """Cancel in-flight adjudications and release connections"""
        if self.state == ContextState.DISPOSED:
            return
        self.guard.cancel_all()
        try:
            await self.oracle.close()
        finally:
            await self.store.close()
            self._machine = None
            self._feedback = None
            self.state = ContextState.DISPOSED
            logger.info("Court adjourned")

    @property
    def ready(self) -> bool:
        return self.state == ContextState.READY

    @property
    def machine(self) -> CaseStateMachine:
        if self._machine is None:
            raise StoreUnavailable("The court is not in session")
        return self._machine

    @property
    def feedback(self) -> FeedbackAggregator:
        if self._feedback is None:
            raise StoreUnavailable("The court is not in session")
        return self._feedback

    async def __aenter__(self) -> "CourtContext":
        return await self.init()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.dispose()
