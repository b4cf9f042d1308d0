"""Single-use recovery (backup) code verifier."""

import logging
from typing import List, Optional

from ..audit import AuditEvent, AuditEventType, AuditSink, emit
from ..exceptions import DependencyFailure
from ..models import StepUpMethod
from ..repositories import NewEnrollment, SecretStore
from ..security import PasswordService
from .base import Clock, FactorVerifier, RequestMeta

logger = logging.getLogger(__name__)


class RecoveryCodeVerifier(FactorVerifier):
    method = StepUpMethod.RECOVERY_CODES

    def __init__(
        self,
        store: SecretStore,
        password_service: PasswordService,
        audit: AuditSink,
        clock: Optional[Clock] = None,
    ):
        super().__init__(clock)
        self.store = store
        self.passwords = password_service
        self.audit = audit

    async def regenerate(self, user_id: str) -> List[str]:
        """Replace the user's recovery codes; earlier codes stop working."""
        codes = self.passwords.generate_recovery_codes()
        await self.store.replace_enrollments(
            user_id,
            [NewEnrollment(
                method=StepUpMethod.RECOVERY_CODES,
                is_verified=True,
                code_hashes=[self.passwords.hash_code(code) for code in codes],
            )],
            now=self.clock(),
        )
        return codes

    async def verify(
        self, user_id: str, value: str, request_meta: Optional[RequestMeta] = None
    ) -> bool:
        code = self.passwords.normalize_code(value or "")
        if not code:
            return False

        meta = request_meta or RequestMeta()
        code_hash = self.passwords.hash_code(code)
        now = self.clock()
        remaining = await self.store.consume_recovery_code(
            user_id,
            code_hash,
            now=now,
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
        )
        if remaining is None:
            return False

        if remaining == 0:
            logger.warning("Last recovery code consumed", extra={"user_id": user_id})

        try:
            await emit(self.audit, AuditEvent(
                event_type=AuditEventType.BACKUP_CODE_USED,
                user_id=user_id,
                ip_address=meta.ip_address,
                user_agent=meta.user_agent,
                metadata={"remaining_codes": remaining},
            ))
        except DependencyFailure:
            # An unaudited use does not count; the code stays valid
            await self.store.restore_recovery_code(user_id, code_hash, now)
            logger.warning("Recovery code restored after audit failure", extra={"user_id": user_id})
            raise
        return True
