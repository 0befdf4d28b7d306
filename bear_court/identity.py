"""
Anonymous Identity
==================

Each participant signs in anonymously once and receives a stable uid plus a
signed bearer token carrying it. The uid is the only thing role checks look
at; there are no passwords and no personal data.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

import jwt

from .config import Settings
from .errors import IdentityUnavailable

logger = logging.getLogger(__name__)

TOKEN_TYPE = "anonymous"


@dataclass(frozen=True)
class Identity:
    uid: str


class IdentityProvider:
    """Issues and resolves anonymous identity tokens"""

    def __init__(self, settings: Settings):
        self.secret_key = settings.jwt_secret_key
        self.algorithm = settings.jwt_algorithm
        self.token_ttl = timedelta(days=settings.identity_token_ttl_days)

    def sign_in_anonymously(self) -> Tuple[Identity, str]:
        """
        Create a new anonymous identity.

        Returns:
            (identity, bearer token)
        """
        uid = uuid.uuid4().hex
        now = datetime.now(timezone.utc)
        payload = {"sub": uid, "type": TOKEN_TYPE, "iat": now, "exp": now + self.token_ttl}
        try:
            token = jwt.encode(payload, self.secret_key, algorithm=self.algorithm)
        except jwt.PyJWTError as e:
            logger.error(f"Anonymous sign-in failed: {e}")
            raise IdentityUnavailable("Anonymous sign-in failed") from e
        return Identity(uid=uid), token

    def resolve(self, token: Optional[str]) -> Identity:
        """
        Identity carried by a bearer token.

        Raises:
            IdentityUnavailable: missing, expired or tampered token
        """
        if not token:
            raise IdentityUnavailable()
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except jwt.PyJWTError as e:
            logger.warning(f"Invalid identity token: {e}")
            raise IdentityUnavailable("Your session is no longer valid, please sign in again") from e

        if payload.get("type") != TOKEN_TYPE or not payload.get("sub"):
            raise IdentityUnavailable("Your session is no longer valid, please sign in again")
        return Identity(uid=payload["sub"])

    def resolve_header(self, authorization: Optional[str]) -> Identity:
        """Identity from an `Authorization: Bearer <token>` header value"""
        if authorization and authorization.lower().startswith("bearer "):
            return self.resolve(authorization.split(" ", 1)[1].strip())
        raise IdentityUnavailable()
