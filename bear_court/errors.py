"""
Court error types.

Kept in their own module so the store adapters, the oracle client and the
API can all raise and catch the same classes without import cycles.
"""

from typing import Optional


class CourtError(Exception):
    """Base class for all errors surfaced to a participant."""

    kind = "court_error"
    status_code = 500
    retryable = False
    default_message = "Something went wrong in court"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "message": self.message,
            "retryable": self.retryable,
        }


class StoreUnavailable(CourtError):
    """The case store cannot be reached."""

    kind = "store_unavailable"
    status_code = 503
    default_message = "The case store is unavailable"


class IdentityUnavailable(CourtError):
    """Anonymous sign-in failed or the bearer token is not valid."""

    kind = "identity_unavailable"
    status_code = 401
    default_message = "Sign-in required"


class InvalidCaseCode(CourtError):
    kind = "invalid_case_code"
    status_code = 404
    retryable = True
    default_message = "No case with that code"


class PreconditionFailed(CourtError):
    """An operation's precondition does not hold for the current case state."""

    kind = "precondition_failed"
    status_code = 409
    default_message = "That action is not possible right now"


class AdjudicationError(CourtError):
    """Base class for failures while obtaining a verdict."""

    kind = "adjudication_error"
    status_code = 502
    retryable = True


class AdjudicationRateLimited(AdjudicationError):
    kind = "adjudication_rate_limited"
    status_code = 429
    default_message = "The judge is overwhelmed, please wait before trying again"

    def __init__(self, message: Optional[str] = None, retry_after: int = 0):
        self.retry_after = retry_after
        if message is None and retry_after:
            message = f"{self.default_message} ({retry_after}s)"
        super().__init__(message)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["retry_after"] = self.retry_after
        return data


class AdjudicationMalformed(AdjudicationError):
    """The provider answered but the answer is not a valid verdict."""

    kind = "adjudication_malformed"
    default_message = "The judge's answer could not be read, please try again"


class AdjudicationTransportError(AdjudicationError):
    """Network failure or non-2xx status from the provider."""

    kind = "adjudication_transport_error"
    default_message = "Could not reach the judge, please try again"
