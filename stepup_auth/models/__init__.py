"""Step-up engine models."""

from .base import Base, BaseModel, utcnow, as_utc
from .enrollment import StepUpMethod, FactorEnrollment, RecoveryCode, SMSPendingCode
from .challenge import (
    ChallengeType,
    ChallengeStatus,
    ResponseStatus,
    StepUpChallenge,
    ChallengeResponse,
)

__all__ = [
    # Base
    "Base",
    "BaseModel",
    "utcnow",
    "as_utc",

    # Enrollment models
    "StepUpMethod",
    "FactorEnrollment",
    "RecoveryCode",
    "SMSPendingCode",

    # Challenge models
    "ChallengeType",
    "ChallengeStatus",
    "ResponseStatus",
    "StepUpChallenge",
    "ChallengeResponse",
]
