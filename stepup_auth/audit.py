"""Audit trail for challenge lifecycle and enrollment changes."""

import abc
import logging
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .exceptions import DependencyFailure
from .metrics import dependency_failures
from .models.base import utcnow

logger = logging.getLogger(__name__)


class AuditEventType(Enum):
    """Types of audit events"""
    # Enrollment
    SECONDARY_PASSWORD_SETUP = "stepup.secondary_password.setup"
    TOTP_SETUP = "stepup.totp.setup"
    SMS_SETUP = "stepup.sms.setup"
    SMS_CONFIRMED = "stepup.sms.confirmed"
    SMS_CODE_SENT = "stepup.sms.code_sent"
    RECOVERY_CODES_GENERATED = "stepup.recovery_codes.generated"
    BACKUP_CODE_USED = "stepup.recovery_codes.used"
    METHOD_DISABLED = "stepup.method.disabled"

    # Challenge lifecycle
    CHALLENGE_CREATED = "stepup.challenge.created"
    CHALLENGE_METHOD_VERIFIED = "stepup.challenge.method_verified"
    CHALLENGE_FAILED_ATTEMPT = "stepup.challenge.failed_attempt"
    CHALLENGE_COMPLETED = "stepup.challenge.completed"
    CHALLENGE_EXHAUSTED = "stepup.challenge.exhausted"
    CHALLENGE_CANCELLED = "stepup.challenge.cancelled"
    CHALLENGE_REJECTED = "stepup.challenge.rejected"
    ASSERTION_ISSUED = "stepup.assertion.issued"


@dataclass
class AuditEvent:
    """Audit event data structure"""
    event_type: AuditEventType
    user_id: Optional[str] = None
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=utcnow)
    challenge_id: Optional[str] = None
    success: bool = True
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        data = asdict(self)
        data['timestamp'] = self.timestamp.isoformat()
        data['event_type'] = self.event_type.value
        return data


class AuditSink(abc.ABC):
    """Append-only event recorder. Failures propagate to the caller."""

    @abc.abstractmethod
    async def record(self, event: AuditEvent) -> None:
        ...


async def emit(sink: AuditSink, event: AuditEvent) -> None:
    """Record an event; a failing sink surfaces as ``DependencyFailure``."""
    try:
        await sink.record(event)
    except DependencyFailure:
        raise
    except Exception as e:
        logger.error(
            "Audit sink rejected event",
            extra={"event_type": event.event_type.value, "error": str(e)},
        )
        dependency_failures.labels(dependency="audit").inc()
        raise DependencyFailure("audit") from e


class LoggingAuditSink(AuditSink):
    """Writes audit events to a dedicated logger as structured records."""

    def __init__(self, logger_name: str = "stepup_auth.audit"):
        self._logger = logging.getLogger(logger_name)

    async def record(self, event: AuditEvent) -> None:
        self._logger.info(event.event_type.value, extra={"audit": event.to_dict()})


class MemoryAuditSink(AuditSink):
    """Keeps events in a list; used by tests and local tooling."""

    def __init__(self):
        self.events: List[AuditEvent] = []

    async def record(self, event: AuditEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: AuditEventType) -> List[AuditEvent]:
        return [e for e in self.events if e.event_type == event_type]
