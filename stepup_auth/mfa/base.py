"""Common verifier interface and the method -> verifier lookup table."""

import abc
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Iterable, Optional

from ..models import StepUpMethod
from ..models.base import utcnow

Clock = Callable[[], datetime]


@dataclass
class RequestMeta:
    """Opaque caller metadata stored alongside each attempt."""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


class FactorVerifier(abc.ABC):
    """One authentication method.

    ``verify`` answers "is this the right credential?" and returns ``False``
    for every wrong, empty or unenrolled case. It raises only for failing
    collaborators (``DependencyFailure``).
    """

    method: StepUpMethod

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or utcnow

    @abc.abstractmethod
    async def verify(
        self, user_id: str, value: str, request_meta: Optional[RequestMeta] = None
    ) -> bool:
        ...


class FactorRegistry:
    """Maps every ``StepUpMethod`` to exactly one verifier."""

    def __init__(self, verifiers: Iterable[FactorVerifier]):
        self._verifiers: Dict[StepUpMethod, FactorVerifier] = {}
        for verifier in verifiers:
            if verifier.method in self._verifiers:
                raise ValueError(f"Duplicate verifier for {verifier.method.value}")
            self._verifiers[verifier.method] = verifier

        missing = set(StepUpMethod) - set(self._verifiers)
        if missing:
            names = ", ".join(sorted(m.value for m in missing))
            raise ValueError(f"No verifier registered for: {names}")

    def get(self, method: StepUpMethod) -> FactorVerifier:
        return self._verifiers[method]

    def __getitem__(self, method: StepUpMethod) -> FactorVerifier:
        return self._verifiers[method]
