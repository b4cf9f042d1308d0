"""Turns a completed challenge into a short-lived step-up assertion."""

import logging
from typing import Any, Dict, Optional

from ..audit import AuditEvent, AuditEventType, AuditSink, emit
from ..security import StepUpAssertion, StepUpAssertionService
from .orchestrator import ChallengeOrchestrator

logger = logging.getLogger(__name__)


class StepUpSessionIssuer:
    """Only completed, unexpired challenges can be exchanged for an assertion."""

    def __init__(
        self,
        orchestrator: ChallengeOrchestrator,
        assertions: StepUpAssertionService,
        audit: AuditSink,
    ):
        self.orchestrator = orchestrator
        self.assertions = assertions
        self.audit = audit

    async def issue(self, challenge_id: str, challenge_token: str) -> str:
        challenge = await self.orchestrator.get_completed(challenge_id, challenge_token)

        token = self.assertions.create_assertion(
            user_id=challenge.user_id,
            challenge_id=challenge.id,
            challenge_type=challenge.challenge_type,
            context_data=challenge.context_data,
            methods=challenge.required_methods,
            now=self.orchestrator.clock(),
        )

        await emit(self.audit, AuditEvent(
            event_type=AuditEventType.ASSERTION_ISSUED,
            user_id=challenge.user_id,
            challenge_id=challenge.id,
            metadata={"challenge_type": challenge.challenge_type},
        ))
        logger.info(
            "Step-up assertion issued",
            extra={"challenge_id": challenge.id, "user_id": challenge.user_id},
        )
        return token

    def verify(
        self,
        token: str,
        user_id: str,
        challenge_type: str,
        context_data: Optional[Dict[str, Any]] = None,
    ) -> StepUpAssertion:
        """Check an assertion against the operation about to be performed."""
        return self.assertions.verify_assertion(token, user_id, challenge_type, context_data)
