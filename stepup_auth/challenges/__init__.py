"""Challenge policy, lifecycle and assertion issuance."""

from .policy import PolicyResolver, DEFAULT_METHOD, NON_POLICY_METHODS, normalize_methods
from .orchestrator import ChallengeOrchestrator, hash_token
from .issuer import StepUpSessionIssuer

__all__ = [
    "PolicyResolver",
    "DEFAULT_METHOD",
    "NON_POLICY_METHODS",
    "normalize_methods",
    "ChallengeOrchestrator",
    "hash_token",
    "StepUpSessionIssuer",
]
