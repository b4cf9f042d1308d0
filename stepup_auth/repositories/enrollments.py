"""Secret store: factor enrollments, recovery codes and pending SMS codes."""

import abc
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from sqlalchemy import delete, func, select, update, or_

from ..models import FactorEnrollment, RecoveryCode, SMSPendingCode, StepUpMethod
from .base import SQLAlchemyRepository


@dataclass
class NewEnrollment:
    """Material for one enrollment written by ``replace_enrollments``."""
    method: StepUpMethod
    secret: Optional[str] = None
    phone_number: Optional[str] = None
    is_active: bool = True
    is_verified: bool = False
    code_hashes: List[str] = field(default_factory=list)


class SecretStore(abc.ABC):
    """Persistence contract for per-user factor secrets."""

    @abc.abstractmethod
    async def replace_enrollments(
        self, user_id: str, enrollments: List[NewEnrollment], now: datetime
    ) -> List[FactorEnrollment]:
        """Atomically replace the user's enrollments for the given methods."""

    @abc.abstractmethod
    async def get_enrollment(
        self, user_id: str, method: StepUpMethod, active_only: bool = True
    ) -> Optional[FactorEnrollment]:
        ...

    @abc.abstractmethod
    async def list_enrollments(
        self, user_id: str, active_only: bool = False
    ) -> List[FactorEnrollment]:
        """Enrollments in stable order: creation time, then method order."""

    @abc.abstractmethod
    async def set_active(
        self, user_id: str, method: StepUpMethod, active: bool, now: datetime
    ) -> bool:
        ...

    @abc.abstractmethod
    async def mark_used(
        self, user_id: str, method: StepUpMethod, now: datetime, step: Optional[int] = None
    ) -> bool:
        """Record a successful use. With ``step``, refuse steps not newer than the last one."""

    @abc.abstractmethod
    async def consume_recovery_code(
        self,
        user_id: str,
        code_hash: str,
        now: datetime,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Optional[int]:
        """Use a code once. Returns remaining unused codes, or None if no match."""

    @abc.abstractmethod
    async def restore_recovery_code(self, user_id: str, code_hash: str, now: datetime) -> bool:
        """Make a consumed code usable again when its use could not be recorded."""

    @abc.abstractmethod
    async def count_recovery_codes(self, user_id: str) -> int:
        ...

    @abc.abstractmethod
    async def store_sms_code(
        self, user_id: str, phone_number: str, code_hash: str, expires_at: datetime, now: datetime
    ) -> None:
        ...

    @abc.abstractmethod
    async def consume_sms_code(self, user_id: str, code_hash: str, now: datetime) -> bool:
        ...


class SQLAlchemySecretStore(SQLAlchemyRepository, SecretStore):
    """Secret store backed by a relational database."""

    async def replace_enrollments(
        self, user_id: str, enrollments: List[NewEnrollment], now: datetime
    ) -> List[FactorEnrollment]:
        methods = [e.method.value for e in enrollments]
        created = []

        async with self.transaction() as session:
            existing = await session.execute(
                select(FactorEnrollment.id).where(
                    FactorEnrollment.user_id == user_id,
                    FactorEnrollment.method.in_(methods),
                )
            )
            existing_ids = [row[0] for row in existing]
            if existing_ids:
                await session.execute(
                    delete(RecoveryCode).where(RecoveryCode.enrollment_id.in_(existing_ids))
                )
                await session.execute(
                    delete(FactorEnrollment).where(FactorEnrollment.id.in_(existing_ids))
                )

            for new in enrollments:
                enrollment = FactorEnrollment(
                    user_id=user_id,
                    method=new.method.value,
                    secret=new.secret,
                    phone_number=new.phone_number,
                    is_active=new.is_active,
                    is_verified=new.is_verified,
                    created_at=now,
                    updated_at=now,
                )
                session.add(enrollment)
                await session.flush()

                for code_hash in new.code_hashes:
                    session.add(RecoveryCode(
                        user_id=user_id,
                        enrollment_id=enrollment.id,
                        code_hash=code_hash,
                        created_at=now,
                        updated_at=now,
                    ))
                created.append(enrollment)

        return created

    async def get_enrollment(
        self, user_id: str, method: StepUpMethod, active_only: bool = True
    ) -> Optional[FactorEnrollment]:
        query = select(FactorEnrollment).where(
            FactorEnrollment.user_id == user_id,
            FactorEnrollment.method == method.value,
        )
        if active_only:
            query = query.where(FactorEnrollment.is_active.is_(True))

        async with self.transaction() as session:
            result = await session.execute(query)
            return result.scalars().first()

    async def list_enrollments(
        self, user_id: str, active_only: bool = False
    ) -> List[FactorEnrollment]:
        query = select(FactorEnrollment).where(FactorEnrollment.user_id == user_id)
        if active_only:
            query = query.where(FactorEnrollment.is_active.is_(True))

        async with self.transaction() as session:
            result = await session.execute(query)
            enrollments = list(result.scalars().all())

        return sorted(
            enrollments,
            key=lambda e: (e.created_at, StepUpMethod(e.method).rank),
        )

    async def set_active(
        self, user_id: str, method: StepUpMethod, active: bool, now: datetime
    ) -> bool:
        values = {"is_active": active, "updated_at": now}
        if active:
            values["is_verified"] = True

        async with self.transaction() as session:
            result = await session.execute(
                update(FactorEnrollment)
                .where(
                    FactorEnrollment.user_id == user_id,
                    FactorEnrollment.method == method.value,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    async def mark_used(
        self, user_id: str, method: StepUpMethod, now: datetime, step: Optional[int] = None
    ) -> bool:
        stmt = update(FactorEnrollment).where(
            FactorEnrollment.user_id == user_id,
            FactorEnrollment.method == method.value,
            FactorEnrollment.is_active.is_(True),
        )
        values = {
            "last_used_at": now,
            "use_count": FactorEnrollment.use_count + 1,
            "updated_at": now,
        }
        if step is not None:
            stmt = stmt.where(or_(
                FactorEnrollment.last_used_step.is_(None),
                FactorEnrollment.last_used_step < step,
            ))
            values["last_used_step"] = step

        async with self.transaction() as session:
            result = await session.execute(
                stmt.values(**values).execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    async def consume_recovery_code(
        self,
        user_id: str,
        code_hash: str,
        now: datetime,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Optional[int]:
        async with self.transaction() as session:
            enrollment = await session.execute(
                select(FactorEnrollment.id).where(
                    FactorEnrollment.user_id == user_id,
                    FactorEnrollment.method == StepUpMethod.RECOVERY_CODES.value,
                    FactorEnrollment.is_active.is_(True),
                )
            )
            active_enrollment = enrollment.scalar()
            if active_enrollment is None:
                return None

            candidate = await session.execute(
                select(RecoveryCode.id).where(
                    RecoveryCode.user_id == user_id,
                    RecoveryCode.code_hash == code_hash,
                    RecoveryCode.is_used.is_(False),
                    RecoveryCode.enrollment_id == active_enrollment,
                ).limit(1)
            )
            code_id = candidate.scalar()
            if code_id is None:
                return None

            # Conditional on is_used so two concurrent callers cannot both win
            result = await session.execute(
                update(RecoveryCode)
                .where(RecoveryCode.id == code_id, RecoveryCode.is_used.is_(False))
                .values(
                    is_used=True,
                    used_at=now,
                    used_ip=ip_address,
                    used_user_agent=user_agent,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return None

            await session.execute(
                update(FactorEnrollment)
                .where(FactorEnrollment.id == active_enrollment)
                .values(
                    last_used_at=now,
                    use_count=FactorEnrollment.use_count + 1,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )

            remaining = await session.execute(
                select(func.count(RecoveryCode.id)).where(
                    RecoveryCode.user_id == user_id,
                    RecoveryCode.is_used.is_(False),
                    RecoveryCode.enrollment_id == active_enrollment,
                )
            )
            return remaining.scalar_one()

    async def restore_recovery_code(self, user_id: str, code_hash: str, now: datetime) -> bool:
        async with self.transaction() as session:
            result = await session.execute(
                update(RecoveryCode)
                .where(
                    RecoveryCode.user_id == user_id,
                    RecoveryCode.code_hash == code_hash,
                    RecoveryCode.is_used.is_(True),
                )
                .values(
                    is_used=False,
                    used_at=None,
                    used_ip=None,
                    used_user_agent=None,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    async def count_recovery_codes(self, user_id: str) -> int:
        async with self.transaction() as session:
            result = await session.execute(
                select(func.count(RecoveryCode.id))
                .join(FactorEnrollment, RecoveryCode.enrollment_id == FactorEnrollment.id)
                .where(
                    RecoveryCode.user_id == user_id,
                    RecoveryCode.is_used.is_(False),
                    FactorEnrollment.is_active.is_(True),
                )
            )
            return result.scalar_one()

    async def store_sms_code(
        self, user_id: str, phone_number: str, code_hash: str, expires_at: datetime, now: datetime
    ) -> None:
        async with self.transaction() as session:
            await session.execute(
                delete(SMSPendingCode).where(SMSPendingCode.user_id == user_id)
            )
            session.add(SMSPendingCode(
                user_id=user_id,
                phone_number=phone_number,
                code_hash=code_hash,
                expires_at=expires_at,
                created_at=now,
            ))

    async def consume_sms_code(self, user_id: str, code_hash: str, now: datetime) -> bool:
        async with self.transaction() as session:
            result = await session.execute(
                delete(SMSPendingCode)
                .where(
                    SMSPendingCode.user_id == user_id,
                    SMSPendingCode.code_hash == code_hash,
                    SMSPendingCode.expires_at > now,
                )
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1
