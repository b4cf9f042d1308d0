"""Storage adapters for enrollments and challenges."""

from .base import SQLAlchemyRepository
from .enrollments import SecretStore, SQLAlchemySecretStore, NewEnrollment
from .challenges import ChallengeStore, Settlement, SQLAlchemyChallengeStore

__all__ = [
    "SQLAlchemyRepository",
    "SecretStore",
    "SQLAlchemySecretStore",
    "NewEnrollment",
    "ChallengeStore",
    "Settlement",
    "SQLAlchemyChallengeStore",
]
