"""
Pydantic Schemas for Bear Court
===============================

Document shapes shared by the store, the state machine and the API.

Case documents use the camelCase field names of the shared store
(`sideA`, `createdBy`, ...). Models accept both the alias and the
Python attribute name and always serialize by alias via `to_document()`.
"""

from typing import List, Optional, Dict, Any
from pydantic import BaseModel, Field, field_validator
from enum import Enum
from datetime import datetime


# =============================================================================
# ENUMS
# =============================================================================

class Role(str, Enum):
    """Participant role in a case"""
    A = "A"  # plaintiff
    B = "B"  # defendant

    @property
    def field(self) -> str:
        """Document field holding this side"""
        return "sideA" if self is Role.A else "sideB"

    @property
    def other(self) -> "Role":
        return Role.B if self is Role.A else Role.A


class CaseStatus(str, Enum):
    """Denormalized status hint; verdict presence is authoritative"""
    WAITING = "waiting"
    FINISHED = "finished"


class ObjectionStatus(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"


class FeedbackVote(str, Enum):
    LIKE = "like"
    DISLIKE = "dislike"


class ViewerState(str, Enum):
    """
    Lifecycle state of a case as seen by one viewer.

    CLOSED is client-local only and never derived from a document.
    """
    NO_CASE = "no_case"
    AWAITING_ROLE = "awaiting_role"
    SPECTATOR = "spectator"
    AWAITING_STATEMENT = "awaiting_statement"
    AWAITING_OPPONENT = "awaiting_opponent"
    READY_FOR_VERDICT = "ready_for_verdict"
    ADJUDICATED = "adjudicated"
    OBJECTION_OPEN = "objection_open"
    RE_ADJUDICATED = "re_adjudicated"
    CLOSED = "closed"


class OracleMode(str, Enum):
    """Adjudication provider mode"""
    NONE = "none"          # No provider configured
    DEEPSEEK = "deepseek"  # Direct OpenAI-compatible DeepSeek API
    PROXY = "proxy"        # Judge proxy endpoint holding the key


class StoreBackend(str, Enum):
    MEMORY = "memory"
    REDIS = "redis"


# =============================================================================
# DOCUMENT MODELS
# =============================================================================

class SideSlot(BaseModel):
    """One side of a case"""
    uid: Optional[str] = None
    content: str = ""
    submitted: bool = False


class Objection(BaseModel):
    """Supplementary statement filed after a verdict"""
    uid: str
    role: Role
    content: str
    status: ObjectionStatus = ObjectionStatus.PENDING
    created_at: int = Field(..., alias="createdAt")

    class Config:
        populate_by_name = True


class FaultRatio(BaseModel):
    """Share of fault per side; either may be missing from a provider answer"""
    A: Optional[float] = None
    B: Optional[float] = None


class Verdict(BaseModel):
    """
    Structured adjudication result.

    Written once per adjudication; a re-adjudication replaces every field
    except `feedback`, which is the case's single vote and outlives it.
    A missing `fault_ratio` (or side) is stored as missing.
    """
    verdict_title: str = Field(..., min_length=1)
    fault_ratio: Optional[FaultRatio] = None
    law_reference: str = Field(..., min_length=1)
    analysis: str = Field(..., min_length=1)
    perspective_taking: str = Field(..., min_length=1)
    bear_wisdom: str = Field(..., min_length=1)
    punishments: List[str] = Field(..., min_length=5, max_length=5)
    feedback: Optional[FeedbackVote] = None

    @field_validator("punishments")
    @classmethod
    def _punishments_not_blank(cls, value: List[str]) -> List[str]:
        if any(not item.strip() for item in value):
            raise ValueError("punishments must not contain blank entries")
        return value


class Case(BaseModel):
    """Shared case document"""
    id: str
    created_by: str = Field(..., alias="createdBy")
    status: CaseStatus = CaseStatus.WAITING
    side_a: SideSlot = Field(default_factory=SideSlot, alias="sideA")
    side_b: SideSlot = Field(default_factory=SideSlot, alias="sideB")
    verdict: Optional[Verdict] = None
    objection: Optional[Objection] = None
    created_at: int = Field(..., alias="createdAt")

    class Config:
        populate_by_name = True

    def side(self, role: Role) -> SideSlot:
        return self.side_a if role is Role.A else self.side_b

    def role_of(self, uid: Optional[str]) -> Optional[Role]:
        """Role held by uid, if any"""
        if uid is None:
            return None
        if self.side_a.uid == uid:
            return Role.A
        if self.side_b.uid == uid:
            return Role.B
        return None

    @property
    def both_submitted(self) -> bool:
        return self.side_a.submitted and self.side_b.submitted

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class GlobalStats(BaseModel):
    """Singleton feedback tally"""
    likes: int = 0
    dislikes: int = 0
    last_updated: Optional[int] = Field(None, alias="lastUpdated")

    class Config:
        populate_by_name = True

    @property
    def total(self) -> int:
        return self.likes + self.dislikes


# =============================================================================
# PRESENTATION VIEWS
# =============================================================================

class VerdictView(BaseModel):
    """
    Verdict as displayed.

    This is the only place where a missing fault ratio falls back to 50/50.
    """
    verdict_title: str
    fault_ratio: FaultRatio
    law_reference: str = ""
    analysis: str = ""
    perspective_taking: str = ""
    bear_wisdom: str = ""
    punishments: List[str] = Field(default_factory=list)
    feedback: Optional[FeedbackVote] = None

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> "VerdictView":
        ratio = data.get("fault_ratio") or {}
        return cls(
            verdict_title=data.get("verdict_title", ""),
            fault_ratio=FaultRatio(
                A=50 if ratio.get("A") is None else ratio["A"],
                B=50 if ratio.get("B") is None else ratio["B"],
            ),
            law_reference=data.get("law_reference", ""),
            analysis=data.get("analysis", ""),
            perspective_taking=data.get("perspective_taking", ""),
            bear_wisdom=data.get("bear_wisdom", ""),
            punishments=list(data.get("punishments") or []),
            feedback=data.get("feedback"),
        )


class StatsResponse(BaseModel):
    likes: int
    dislikes: int
    total: int
    rate: int = Field(..., description="Displayed satisfaction rate, 0-100")


class CaseResponse(BaseModel):
    """Case snapshot plus the caller's derived state"""
    case: Dict[str, Any]
    viewer_state: ViewerState
    role: Optional[Role] = None
    verdict: Optional[VerdictView] = None
    cooldown_seconds: int = Field(0, description="Seconds until adjudication may be requested again")
    adjudicating: bool = False


class ClaimRoleResponse(CaseResponse):
    claimed: bool


class FeedbackResponse(CaseResponse):
    recorded: bool
    stats: StatsResponse


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class CreateCaseRequest(BaseModel):
    role: Role = Field(..., description="Side the creator takes")

    class Config:
        json_schema_extra = {"example": {"role": "A"}}


class ClaimRoleRequest(BaseModel):
    role: Role


class StatementRequest(BaseModel):
    text: str = Field(..., description="Statement of this side")

    class Config:
        json_schema_extra = {
            "example": {"text": "He forgot our anniversary again."}
        }


class ObjectionRequest(BaseModel):
    text: str = Field(..., description="Supplementary statement after the verdict")


class FeedbackRequest(BaseModel):
    like: bool


class ResetCaseRequest(BaseModel):
    """Maintainer reset; each flag resets one part of the case"""
    reset_side_a: bool = False
    reset_side_b: bool = False
    clear_verdict: bool = False
    clear_objection: bool = False


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class AnonymousSignInResponse(BaseModel):
    uid: str
    access_token: str
    token_type: str = "bearer"


class CreateCaseResponse(BaseModel):
    case_id: str


class HealthResponse(BaseModel):
    status: str
    version: str
    oracle_mode: OracleMode
    store_backend: StoreBackend
    context_state: str
    timestamp: datetime


class ErrorResponse(BaseModel):
    kind: str
    message: str
    retryable: bool = False
    retry_after: Optional[int] = None
