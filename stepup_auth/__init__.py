"""Step-up authentication challenge engine."""

from .manager import StepUpManager
from .config import Settings
from .audit import AuditEvent, AuditEventType, AuditSink, LoggingAuditSink, MemoryAuditSink
from .exceptions import (
    StepUpError,
    NotFoundError,
    EnrollmentNotFound,
    PolicyViolation,
    ChallengeNotFound,
    MethodNotRequired,
    InvalidFactorInput,
    DependencyFailure,
    InvalidAssertion,
)
from .mfa import RequestMeta, SMSGateway
from .models import StepUpMethod, ChallengeType, ChallengeStatus

__version__ = "1.0.0"

__all__ = [
    "StepUpManager",
    "Settings",
    "AuditEvent",
    "AuditEventType",
    "AuditSink",
    "LoggingAuditSink",
    "MemoryAuditSink",
    "StepUpError",
    "NotFoundError",
    "EnrollmentNotFound",
    "PolicyViolation",
    "ChallengeNotFound",
    "MethodNotRequired",
    "InvalidFactorInput",
    "DependencyFailure",
    "InvalidAssertion",
    "RequestMeta",
    "SMSGateway",
    "StepUpMethod",
    "ChallengeType",
    "ChallengeStatus",
]
