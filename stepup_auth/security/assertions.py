"""Signed step-up assertions minted after a challenge completes."""

import hashlib
import json
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from jose import JWTError, jwt
from pydantic import BaseModel, Field

from ..config import Settings, settings as default_settings
from ..exceptions import InvalidAssertion
from ..models.base import as_utc, utcnow
from .entropy import EntropySource, default_entropy


class TokenType(str, Enum):
    """Types of tokens."""
    STEP_UP = "step_up"


class StepUpAssertion(BaseModel):
    """Token payload data."""
    sub: str  # user ID
    type: TokenType
    challenge_id: str
    challenge_type: str
    ctx: str  # SHA-256 of the guarded operation's context
    methods: List[str] = Field(default_factory=list)
    exp: Optional[datetime] = None
    iat: Optional[datetime] = None
    jti: Optional[str] = None


def context_hash(context_data: Optional[Dict[str, Any]]) -> str:
    """Stable digest of operation context (key order does not matter)."""
    canonical = json.dumps(
        context_data or {}, sort_keys=True, separators=(",", ":"), default=str
    )
    return hashlib.sha256(canonical.encode()).hexdigest()


class StepUpAssertionService:
    """Mints and checks short-lived JWTs binding a user to one sensitive action."""

    def __init__(
        self,
        config: Optional[Settings] = None,
        entropy: Optional[EntropySource] = None,
    ):
        config = config or default_settings
        self.secret_key = config.SECRET_KEY
        self.algorithm = config.ALGORITHM
        self.ttl = timedelta(seconds=config.ASSERTION_TTL_SECONDS)
        self.entropy = entropy or default_entropy

    def create_assertion(
        self,
        user_id: str,
        challenge_id: str,
        challenge_type: str,
        context_data: Optional[Dict[str, Any]],
        methods: List[str],
        now: Optional[datetime] = None,
    ) -> str:
        """Create a step-up assertion token."""
        now = as_utc(now) if now else utcnow()
        to_encode = {
            "sub": user_id,
            "type": TokenType.STEP_UP.value,
            "challenge_id": challenge_id,
            "challenge_type": challenge_type,
            "ctx": context_hash(context_data),
            "methods": list(methods),
            "iat": now,
            "exp": now + self.ttl,
            "jti": self.entropy.token_urlsafe(16),  # Unique token ID
        }
        return jwt.encode(to_encode, self.secret_key, algorithm=self.algorithm)

    def decode_assertion(self, token: str) -> StepUpAssertion:
        """Decode and validate signature and expiry."""
        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm]
            )
            return StepUpAssertion(**payload)
        except (JWTError, ValueError) as e:
            raise InvalidAssertion(f"Invalid token: {str(e)}")

    def verify_assertion(
        self,
        token: str,
        user_id: str,
        challenge_type: str,
        context_data: Optional[Dict[str, Any]],
    ) -> StepUpAssertion:
        """Check the assertion was minted for this user, action and context."""
        assertion = self.decode_assertion(token)

        if assertion.type != TokenType.STEP_UP:
            raise InvalidAssertion("Wrong token type")
        if assertion.sub != user_id:
            raise InvalidAssertion("Assertion issued to a different user")
        if assertion.challenge_type != challenge_type:
            raise InvalidAssertion("Assertion issued for a different operation type")
        if assertion.ctx != context_hash(context_data):
            raise InvalidAssertion("Assertion issued for a different operation")

        return assertion
