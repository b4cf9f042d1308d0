"""Security primitives for step-up authentication."""

from .entropy import EntropySource, default_entropy
from .encryption import SecretCipher
from .passwords import PasswordService
from .assertions import StepUpAssertionService, StepUpAssertion, TokenType, context_hash

__all__ = [
    "EntropySource",
    "default_entropy",
    "SecretCipher",
    "PasswordService",
    "StepUpAssertionService",
    "StepUpAssertion",
    "TokenType",
    "context_hash",
]
