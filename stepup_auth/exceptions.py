"""Error taxonomy for the step-up engine.

Wrong credentials are not errors: verifiers return ``False`` and the
orchestrator reports ``success=False`` with the remaining attempt budget.
Exceptions are reserved for unknown records, policy violations, malformed
input and failing collaborators.
"""

from typing import Optional


GENERIC_CHALLENGE_MESSAGE = "Invalid or expired challenge"


class StepUpError(Exception):
    """Base class for all engine errors."""

    public_message = "Step-up authentication failed"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.public_message)


class NotFoundError(StepUpError):
    public_message = "Not found"


class EnrollmentNotFound(NotFoundError):
    """No enrollment exists for the (user, method) pair."""

    def __init__(self, user_id: str, method: str):
        self.user_id = user_id
        self.method = method
        super().__init__(f"No {method} enrollment for user")


class PolicyViolation(StepUpError):
    """Rejected by policy. Callers only ever see the generic message."""

    public_message = GENERIC_CHALLENGE_MESSAGE

    def __init__(self, reason: str, challenge_id: Optional[str] = None):
        self.reason = reason
        self.challenge_id = challenge_id
        super().__init__(GENERIC_CHALLENGE_MESSAGE)


class ChallengeNotFound(PolicyViolation):
    """Unknown, completed, expired, exhausted or wrongly-authenticated challenge.

    ``reason`` holds the internal cause for logging: ``not_found``,
    ``bad_token``, ``completed``, ``expired`` or ``exhausted``.
    """


class MethodNotRequired(PolicyViolation):
    """The presented method is not part of the challenge's requirement set."""

    def __init__(self, method: str, challenge_id: Optional[str] = None):
        self.method = method
        super().__init__("method_not_required", challenge_id)


class InvalidFactorInput(StepUpError):
    """Malformed input, rejected before any delivery or storage happens."""

    public_message = "Invalid input"


class DependencyFailure(StepUpError):
    """A collaborator (SMS gateway, storage, audit sink) failed. Retryable."""

    public_message = "Temporarily unavailable, please retry"

    def __init__(self, dependency: str, message: Optional[str] = None):
        self.dependency = dependency
        super().__init__(message or f"{dependency} unavailable")


class InvalidAssertion(StepUpError):
    """Step-up assertion is malformed, expired or bound to something else."""

    public_message = "Invalid step-up assertion"
