"""Step-up challenge models."""

from datetime import datetime
from enum import Enum
from typing import List

from sqlalchemy import (
    Column, String, Boolean, DateTime, Integer, JSON,
    ForeignKey, Index
)

from .base import BaseModel, as_utc, utcnow
from .enrollment import StepUpMethod


class ChallengeType(str, Enum):
    """Sensitivity classes of guarded operations."""
    PERMISSION_GRANT = "permission_grant"
    ROLE_CHANGE = "role_change"
    DATA_ACCESS = "data_access"
    SENSITIVE_OPERATION = "sensitive_operation"

    @property
    def is_high_sensitivity(self) -> bool:
        return self in HIGH_SENSITIVITY_TYPES


HIGH_SENSITIVITY_TYPES = frozenset({ChallengeType.PERMISSION_GRANT, ChallengeType.ROLE_CHANGE})


class ChallengeStatus(str, Enum):
    """Derived challenge state. Everything but OPEN is terminal."""
    OPEN = "open"
    COMPLETED = "completed"
    EXHAUSTED = "exhausted"
    EXPIRED = "expired"


class ResponseStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


class StepUpChallenge(BaseModel):
    """A single step-up attempt session for one guarded operation."""

    __tablename__ = 'step_up_challenges'

    user_id = Column(String(64), nullable=False)
    challenge_type = Column(String(32), nullable=False)
    context_data = Column(JSON, nullable=False, default=dict)
    required_methods = Column(JSON, nullable=False)

    # SHA-256 of the bearer token; the token itself is never stored
    token_hash = Column(String(64), nullable=False)

    expires_at = Column(DateTime(timezone=True), nullable=False)
    attempts = Column(Integer, default=0, nullable=False)
    max_attempts = Column(Integer, default=3, nullable=False)

    is_completed = Column(Boolean, default=False, nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    exhausted_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index('idx_challenge_user', 'user_id'),
    )

    @property
    def methods(self) -> List[StepUpMethod]:
        return [StepUpMethod(m) for m in self.required_methods]

    @property
    def is_settled(self) -> bool:
        """A terminal outcome has been written."""
        return self.is_completed or self.exhausted_at is not None or self.cancelled_at is not None

    def status_at(self, now: datetime = None) -> ChallengeStatus:
        """Compute the lifecycle state; expiry is evaluated lazily.

        Exhaustion is stored, not derived from the counter: a challenge whose
        last attempt is still being verified stays open until that response
        settles it.
        """
        now = now or utcnow()
        if self.is_completed:
            return ChallengeStatus.COMPLETED
        if self.exhausted_at is not None:
            return ChallengeStatus.EXHAUSTED
        if self.cancelled_at is not None or now > as_utc(self.expires_at):
            return ChallengeStatus.EXPIRED
        return ChallengeStatus.OPEN

    def __repr__(self):
        return f"<StepUpChallenge(id={self.id}, user_id={self.user_id}, type={self.challenge_type})>"


class ChallengeResponse(BaseModel):
    """Append-only log of verification attempts."""

    __tablename__ = 'step_up_challenge_responses'

    challenge_id = Column(String(36), ForeignKey('step_up_challenges.id'), nullable=False)
    auth_method = Column(String(32), nullable=False)
    status = Column(String(16), nullable=False)
    attempted_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    # Request metadata
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(String(500), nullable=True)

    __table_args__ = (
        Index('idx_response_challenge_status', 'challenge_id', 'status'),
    )

    def __repr__(self):
        return f"<ChallengeResponse(challenge_id={self.challenge_id}, method={self.auth_method}, status={self.status})>"
