"""Decides which factors a challenge must collect."""

import logging
from typing import Iterable, List, Optional, Union

from ..exceptions import InvalidFactorInput
from ..models import ChallengeType, StepUpMethod
from ..repositories import SecretStore

logger = logging.getLogger(__name__)

DEFAULT_METHOD = StepUpMethod.SECONDARY_PASSWORD

# Fallback credentials are never picked by policy, only requested explicitly
NON_POLICY_METHODS = frozenset({StepUpMethod.RECOVERY_CODES})


def normalize_methods(methods: Iterable[Union[str, StepUpMethod]]) -> List[StepUpMethod]:
    """Coerce to ``StepUpMethod`` and drop duplicates, keeping first occurrence."""
    ordered: List[StepUpMethod] = []
    for method in methods:
        method = StepUpMethod(method)
        if method not in ordered:
            ordered.append(method)
    return ordered


class PolicyResolver:
    """Multi-factor for irreversible authorization changes, single-factor otherwise."""

    def __init__(self, store: SecretStore, multi_factor_count: int = 2):
        self.store = store
        self.multi_factor_count = multi_factor_count

    async def available_methods(self, user_id: str) -> List[StepUpMethod]:
        """Active enrolled methods in enrollment order."""
        enrollments = await self.store.list_enrollments(user_id, active_only=True)
        methods = normalize_methods(e.method for e in enrollments)
        return [m for m in methods if m not in NON_POLICY_METHODS]

    async def determine_required_methods(
        self, user_id: str, challenge_type: Union[str, ChallengeType]
    ) -> List[StepUpMethod]:
        challenge_type = ChallengeType(challenge_type)
        active = await self.available_methods(user_id)

        # Never produce an empty requirement set
        if not active:
            logger.info(
                "No active step-up methods, using default",
                extra={"user_id": user_id, "method": DEFAULT_METHOD.value},
            )
            return [DEFAULT_METHOD]

        if challenge_type.is_high_sensitivity and len(active) >= self.multi_factor_count:
            return active[:self.multi_factor_count]

        return [active[0]]

    async def resolve(
        self,
        user_id: str,
        challenge_type: Union[str, ChallengeType],
        requested: Optional[Iterable[Union[str, StepUpMethod]]] = None,
    ) -> List[StepUpMethod]:
        """Use the caller's explicit list when given, else apply the policy."""
        if requested is not None:
            try:
                methods = normalize_methods(requested)
            except ValueError as e:
                raise InvalidFactorInput("Unknown authentication method") from e
            if not methods:
                raise InvalidFactorInput("required_methods must not be empty")
            return methods
        return await self.determine_required_methods(user_id, challenge_type)
