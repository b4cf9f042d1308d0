"""Challenge and challenge-response persistence."""

import abc
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Set

from sqlalchemy import select, update

from ..models import ChallengeResponse, ChallengeStatus, ResponseStatus, StepUpChallenge
from .base import SQLAlchemyRepository


@dataclass
class Settlement:
    """Outcome of settling a challenge after one recorded response."""
    status: ChallengeStatus
    satisfied: Set[str]
    # True when this call wrote the terminal state
    changed: bool = False


class ChallengeStore(abc.ABC):
    """Persistence contract owned by the challenge orchestrator."""

    @abc.abstractmethod
    async def add(self, challenge: StepUpChallenge) -> StepUpChallenge:
        ...

    @abc.abstractmethod
    async def get(self, challenge_id: str) -> Optional[StepUpChallenge]:
        ...

    @abc.abstractmethod
    async def reserve_attempt(self, challenge_id: str, now: datetime) -> Optional[int]:
        """Atomically take one attempt from an open challenge.

        Returns the new attempt count, or None when the challenge is unknown
        or not open (completed, cancelled, expired or out of attempts).
        """

    @abc.abstractmethod
    async def release_attempt(self, challenge_id: str) -> None:
        """Give back an attempt taken for a verification that never ran."""

    @abc.abstractmethod
    async def record_response(
        self,
        challenge_id: str,
        auth_method: str,
        status: ResponseStatus,
        now: datetime,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        ...

    @abc.abstractmethod
    async def satisfied_methods(self, challenge_id: str) -> Set[str]:
        """Distinct methods with at least one successful response."""

    @abc.abstractmethod
    async def settle(self, challenge_id: str, now: datetime, final: bool) -> Optional[Settlement]:
        """Decide the challenge outcome after a response has been recorded.

        Settlements of one challenge run one at a time. The challenge is
        completed once every required method has a success, or exhausted
        when ``final`` (the caller held the last attempt) and methods are
        still missing. A settled challenge is never changed again.
        Returns None for an unknown challenge.
        """

    @abc.abstractmethod
    async def cancel(self, challenge_id: str, now: datetime) -> bool:
        ...


class SQLAlchemyChallengeStore(SQLAlchemyRepository, ChallengeStore):
    """Challenge store backed by a relational database."""

    def _unsettled_clause(self, now: datetime):
        return (
            StepUpChallenge.is_completed.is_(False),
            StepUpChallenge.exhausted_at.is_(None),
            StepUpChallenge.cancelled_at.is_(None),
            StepUpChallenge.expires_at >= now,
        )

    def _open_clause(self, now: datetime):
        return (
            *self._unsettled_clause(now),
            StepUpChallenge.attempts < StepUpChallenge.max_attempts,
        )

    async def add(self, challenge: StepUpChallenge) -> StepUpChallenge:
        async with self.transaction() as session:
            session.add(challenge)
        return challenge

    async def get(self, challenge_id: str) -> Optional[StepUpChallenge]:
        async with self.transaction() as session:
            return await session.get(StepUpChallenge, challenge_id)

    async def reserve_attempt(self, challenge_id: str, now: datetime) -> Optional[int]:
        async with self.transaction() as session:
            result = await session.execute(
                update(StepUpChallenge)
                .where(StepUpChallenge.id == challenge_id, *self._open_clause(now))
                .values(attempts=StepUpChallenge.attempts + 1, updated_at=now)
                .returning(StepUpChallenge.attempts)
                .execution_options(synchronize_session=False)
            )
            return result.scalar()

    async def release_attempt(self, challenge_id: str) -> None:
        async with self.transaction() as session:
            await session.execute(
                update(StepUpChallenge)
                .where(
                    StepUpChallenge.id == challenge_id,
                    StepUpChallenge.attempts > 0,
                    StepUpChallenge.is_completed.is_(False),
                    StepUpChallenge.exhausted_at.is_(None),
                )
                .values(attempts=StepUpChallenge.attempts - 1)
                .execution_options(synchronize_session=False)
            )

    async def record_response(
        self,
        challenge_id: str,
        auth_method: str,
        status: ResponseStatus,
        now: datetime,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        async with self.transaction() as session:
            session.add(ChallengeResponse(
                challenge_id=challenge_id,
                auth_method=auth_method,
                status=status.value,
                attempted_at=now,
                ip_address=ip_address,
                user_agent=user_agent,
                created_at=now,
                updated_at=now,
            ))

    async def _satisfied(self, session, challenge_id: str) -> Set[str]:
        result = await session.execute(
            select(ChallengeResponse.auth_method)
            .where(
                ChallengeResponse.challenge_id == challenge_id,
                ChallengeResponse.status == ResponseStatus.SUCCESS.value,
            )
            .distinct()
        )
        return {row[0] for row in result}

    async def satisfied_methods(self, challenge_id: str) -> Set[str]:
        async with self.transaction() as session:
            return await self._satisfied(session, challenge_id)

    async def settle(self, challenge_id: str, now: datetime, final: bool) -> Optional[Settlement]:
        async with self.transaction() as session:
            # Writing the row first takes its lock (a row lock on PostgreSQL,
            # the write lock on SQLite), so concurrent settlements queue here
            locked = await session.execute(
                update(StepUpChallenge)
                .where(StepUpChallenge.id == challenge_id)
                .values(updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if locked.rowcount != 1:
                return None

            challenge = await session.get(StepUpChallenge, challenge_id, populate_existing=True)
            satisfied = await self._satisfied(session, challenge_id)
            if challenge.is_settled:
                return Settlement(challenge.status_at(now), satisfied)

            if set(challenge.required_methods) <= satisfied:
                challenge.is_completed = True
                challenge.completed_at = now
                return Settlement(ChallengeStatus.COMPLETED, satisfied, changed=True)

            if final and challenge.attempts >= challenge.max_attempts:
                challenge.exhausted_at = now
                return Settlement(ChallengeStatus.EXHAUSTED, satisfied, changed=True)

            return Settlement(ChallengeStatus.OPEN, satisfied)

    async def cancel(self, challenge_id: str, now: datetime) -> bool:
        async with self.transaction() as session:
            result = await session.execute(
                update(StepUpChallenge)
                .where(StepUpChallenge.id == challenge_id, *self._unsettled_clause(now))
                .values(cancelled_at=now, expires_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1
