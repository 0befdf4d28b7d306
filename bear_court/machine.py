"""
Case State Machine
==================

Owns every transition of a case document and decides who may act when.

Transitions are optimistic: each write is a conditional update at the store
(`update_if`), so a precondition checked on a snapshot is checked again
atomically at write time. Losing a race never corrupts the document; the
loser simply sees the winner's state on the next snapshot.

Lifecycle as seen by one viewer (`derive_viewer_state`):

    NO_CASE -> AWAITING_ROLE -> AWAITING_STATEMENT -> AWAITING_OPPONENT
    -> READY_FOR_VERDICT -> ADJUDICATED -> OBJECTION_OPEN -> RE_ADJUDICATED
"""

import logging
import secrets
import string
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, Optional, Tuple

from .errors import InvalidCaseCode, PreconditionFailed, StoreUnavailable
from .guard import AdjudicationGuard
from .schemas import (
    Case,
    CaseStatus,
    Objection,
    ObjectionStatus,
    ResetCaseRequest,
    Role,
    SideSlot,
    Verdict,
    ViewerState,
)
from .store import CaseStore

logger = logging.getLogger(__name__)

CASE_CODE_ALPHABET = string.digits + string.ascii_uppercase
MAX_CODE_ATTEMPTS = 5


def now_ms() -> int:
    return int(time.time() * 1000)


def generate_case_code(length: int = 6) -> str:
    """Random upper-case base-36 code"""
    return "".join(secrets.choice(CASE_CODE_ALPHABET) for _ in range(length))


def normalize_case_code(raw: Optional[str]) -> str:
    """
    Upper-case and validate a typed case code.

    Raises:
        InvalidCaseCode: empty or containing characters outside base-36
    """
    code = (raw or "").strip().upper()
    if not code or any(ch not in CASE_CODE_ALPHABET for ch in code):
        raise InvalidCaseCode()
    return code


async def fetch_case(store: CaseStore, case_id: str) -> Case:
    """Load a case by code or raise InvalidCaseCode"""
    code = normalize_case_code(case_id)
    document = await store.get(code)
    if document is None:
        raise InvalidCaseCode()
    return Case.model_validate(document)


def derive_viewer_state(case: Optional[Case], uid: Optional[str]) -> ViewerState:
    """Lifecycle state of a case for one viewer; pure"""
    if case is None:
        return ViewerState.NO_CASE

    if case.objection is not None and case.objection.status == ObjectionStatus.PENDING:
        return ViewerState.OBJECTION_OPEN

    if case.verdict is not None:
        if case.objection is not None and case.objection.status == ObjectionStatus.RESOLVED:
            return ViewerState.RE_ADJUDICATED
        return ViewerState.ADJUDICATED

    role = case.role_of(uid)
    if role is None:
        if case.side_a.uid is None or case.side_b.uid is None:
            return ViewerState.AWAITING_ROLE
        return ViewerState.SPECTATOR

    if not case.side(role).submitted:
        return ViewerState.AWAITING_STATEMENT
    if not case.side(role.other).submitted:
        return ViewerState.AWAITING_OPPONENT
    return ViewerState.READY_FOR_VERDICT


@dataclass
class ClaimResult:
    """Outcome of a role claim; claimed is False when the slot was taken"""
    case: Case
    claimed: bool


class CaseStateMachine:
    """
    Case operations for one court context.

    Args:
        store: Connected case store
        oracle: Object with `async adjudicate(case, objection) -> OracleResult`
        guard: Adjudication guard shared by all requests of this process
        code_length: Length of generated case codes
        clock: Epoch-millisecond clock for timestamps
    """

    def __init__(
        self,
        store: CaseStore,
        oracle: Any,
        guard: AdjudicationGuard,
        code_length: int = 6,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.oracle = oracle
        self.guard = guard
        self.code_length = code_length
        self._clock = clock

    # ------------------------------------------------------------------
    # Case creation and lookup
    # ------------------------------------------------------------------

    async def create_case(self, role: Role, identity: str) -> str:
        """
        Open a new case with the creator holding the chosen side.

        Returns:
            The new case code

        Raises:
            StoreUnavailable: store unreachable or no free code found
        """
        for attempt in range(MAX_CODE_ATTEMPTS):
            code = generate_case_code(self.code_length)
            case = Case(
                id=code,
                created_by=identity,
                status=CaseStatus.WAITING,
                side_a=SideSlot(uid=identity if role is Role.A else None),
                side_b=SideSlot(uid=identity if role is Role.B else None),
                created_at=self._clock(),
            )
            if await self.store.create(code, case.to_document()):
                logger.info(f"Case {code} opened, creator on side {role.value}")
                return code
            logger.debug(f"Case code collision on {code} (attempt {attempt + 1})")

        raise StoreUnavailable("Could not allocate a case code, please try again")

    async def load_case(self, case_id: str) -> Case:
        return await fetch_case(self.store, case_id)

    async def join_case(self, case_id: str, identity: str) -> Tuple[Case, ViewerState]:
        """Open an existing case; never creates one"""
        case = await self.load_case(case_id)
        return case, derive_viewer_state(case, identity)

    async def watch(self, case_id: str, identity: str) -> AsyncIterator[Tuple[Case, ViewerState]]:
        """Snapshots of a case with the viewer's state, in write order"""
        code = normalize_case_code(case_id)
        snapshots = self.store.subscribe(code)
        try:
            async for document in snapshots:
                case = Case.model_validate(document)
                yield case, derive_viewer_state(case, identity)
        finally:
            await snapshots.aclose()

    # ------------------------------------------------------------------
    # Parties
    # ------------------------------------------------------------------

    async def claim_role(self, case_id: str, role: Role, identity: str) -> ClaimResult:
        """
        Take an unclaimed side.

        Claiming a side already held by the caller is a no-op. Claiming a side
        held by someone else, or losing a race for it, leaves the case
        untouched and reports claimed=False.

        Raises:
            PreconditionFailed: caller already holds the other side
        """
        case = await self.load_case(case_id)
        held = case.role_of(identity)
        if held is role:
            return ClaimResult(case=case, claimed=True)
        if held is not None:
            raise PreconditionFailed(f"You are already side {held.value} in this case")
        if case.side(role).uid is not None:
            return ClaimResult(case=case, claimed=False)

        other = role.other
        updated = await self.store.update_if(
            case.id,
            {
                f"{role.field}.uid": None,
                f"{other.field}.uid": case.side(other).uid,
            },
            {f"{role.field}.uid": identity},
        )
        if updated is None:
            # Someone wrote first; report whatever won
            latest = await self.load_case(case.id)
            won = latest.role_of(identity) is role
            logger.info(f"Claim of side {role.value} on {case.id} raced, won={won}")
            return ClaimResult(case=latest, claimed=won)

        logger.info(f"Side {role.value} of case {case.id} claimed")
        return ClaimResult(case=Case.model_validate(updated), claimed=True)

    async def submit_statement(self, case_id: str, identity: str, text: str) -> Case:
        """
        Submit the caller's statement. One-shot.

        Raises:
            PreconditionFailed: empty text, no side held, or already submitted
        """
        if not text or not text.strip():
            raise PreconditionFailed("The statement cannot be empty")

        case = await self.load_case(case_id)
        role = case.role_of(identity)
        if role is None:
            raise PreconditionFailed("Take a side before submitting a statement")
        if case.side(role).submitted:
            raise PreconditionFailed("Your statement has already been submitted")

        updated = await self.store.update_if(
            case.id,
            {
                f"{role.field}.uid": identity,
                f"{role.field}.submitted": False,
            },
            {
                f"{role.field}.content": text,
                f"{role.field}.submitted": True,
            },
        )
        if updated is None:
            raise PreconditionFailed("Your statement has already been submitted")

        logger.info(f"Side {role.value} of case {case.id} submitted ({len(text)} chars)")
        return Case.model_validate(updated)

    # ------------------------------------------------------------------
    # Adjudication
    # ------------------------------------------------------------------

    async def trigger_adjudication(self, case_id: str, identity: str) -> Case:
        """
        Ask the oracle for the first verdict of a case.

        Raises:
            PreconditionFailed: caller is not a party, a statement is missing,
                the case already has a verdict, or the request was debounced
            AdjudicationRateLimited / AdjudicationMalformed /
            AdjudicationTransportError: the oracle failed; nothing written
        """
        case = await self.load_case(case_id)
        if case.role_of(identity) is None:
            raise PreconditionFailed("Only the two parties can call for a verdict")
        if not case.both_submitted:
            raise PreconditionFailed("Both sides must submit their statements first")
        if case.verdict is not None:
            raise PreconditionFailed("This case has already been judged")

        return await self.guard.run(case.id, lambda: self._adjudicate(case, None))

    async def file_objection(self, case_id: str, identity: str, text: str) -> Case:
        """
        Raise the case's single objection and re-adjudicate at once.

        If re-adjudication fails the objection stays pending and can be
        retried with `retry_objection`.
        """
        if not text or not text.strip():
            raise PreconditionFailed("The objection cannot be empty")

        case = await self.load_case(case_id)
        role = case.role_of(identity)
        if role is None:
            raise PreconditionFailed("Only the two parties can object")
        if case.verdict is None:
            raise PreconditionFailed("There is no verdict to object to yet")
        if case.objection is not None:
            if case.objection.status == ObjectionStatus.PENDING:
                raise PreconditionFailed("An objection is already pending")
            raise PreconditionFailed("The objection in this case has already been heard")

        # Checked before writing so a rejected trigger leaves no objection behind
        self.guard.check(case.id)

        objection = Objection(
            uid=identity,
            role=role,
            content=text,
            status=ObjectionStatus.PENDING,
            created_at=self._clock(),
        )
        updated = await self.store.update_if(
            case.id,
            {"objection": None},
            {"objection": objection.model_dump(mode="json", by_alias=True)},
        )
        if updated is None:
            raise PreconditionFailed("An objection is already pending")

        logger.info(f"Objection filed on case {case.id} by side {role.value}")
        pending = Case.model_validate(updated)
        return await self.guard.run(pending.id, lambda: self._adjudicate(pending, pending.objection))

    async def retry_objection(self, case_id: str, identity: str) -> Case:
        """Re-run a re-adjudication that failed after an objection was filed"""
        case = await self.load_case(case_id)
        if case.role_of(identity) is None:
            raise PreconditionFailed("Only the two parties can call for a verdict")
        if case.objection is None or case.objection.status != ObjectionStatus.PENDING:
            raise PreconditionFailed("There is no pending objection")

        return await self.guard.run(case.id, lambda: self._adjudicate(case, case.objection))

    async def _adjudicate(self, case: Case, objection: Optional[Objection]) -> Case:
        """
        Oracle call plus verdict write; runs inside the guard.

        The write is conditional on the state the request was made for, so a
        stale or duplicate request cannot overwrite a newer verdict.
        """
        result = await self.oracle.adjudicate(case, objection)
        verdict: Verdict = result.unwrap()

        content = verdict.model_dump(mode="json", exclude={"feedback"})
        fields: Dict[str, Any] = {"status": CaseStatus.FINISHED.value}
        if objection is None:
            conditions: Dict[str, Any] = {
                "verdict": None,
                "sideA.submitted": True,
                "sideB.submitted": True,
            }
            fields["verdict"] = content
        else:
            conditions = {
                "objection.status": ObjectionStatus.PENDING.value,
                "objection.createdAt": objection.created_at,
            }
            # Field by field so a vote already cast on the case survives
            for name, value in content.items():
                fields[f"verdict.{name}"] = value
            fields["objection.status"] = ObjectionStatus.RESOLVED.value

        updated = await self.store.update_if(case.id, conditions, fields)
        if updated is None:
            logger.info(f"Verdict for case {case.id} discarded, case moved on meanwhile")
            return await self.load_case(case.id)

        ratio = verdict.fault_ratio
        logger.info(
            f"Case {case.id} {'re-' if objection else ''}adjudicated: "
            f"A {ratio.A if ratio else None} / B {ratio.B if ratio else None}"
        )
        return Case.model_validate(updated)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def reset_case(self, case_id: str, request: ResetCaseRequest) -> Case:
        """
        Maintainer reset of parts of a case. Not available to participants.

        Cancels any in-flight adjudication for the case first.
        """
        case = await self.load_case(case_id)
        fields: Dict[str, Any] = {}
        if request.reset_side_a:
            fields["sideA.content"] = ""
            fields["sideA.submitted"] = False
        if request.reset_side_b:
            fields["sideB.content"] = ""
            fields["sideB.submitted"] = False
        if request.clear_verdict:
            fields["verdict"] = None
            fields["status"] = CaseStatus.WAITING.value
        if request.clear_objection:
            fields["objection"] = None
        if not fields:
            return case

        self.guard.cancel(case.id)
        updated = await self.store.update(case.id, fields)
        logger.warning(f"Case {case.id} reset: {sorted(fields)}")
        return Case.model_validate(updated)
