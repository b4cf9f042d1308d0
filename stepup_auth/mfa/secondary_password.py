"""Secondary password verifier."""

from typing import List, Optional

from ..exceptions import InvalidFactorInput
from ..models import StepUpMethod
from ..repositories import NewEnrollment, SecretStore
from ..security import PasswordService
from .base import Clock, FactorVerifier, RequestMeta


class SecondaryPasswordVerifier(FactorVerifier):
    """A second, step-up-only password plus its batch of recovery codes."""

    method = StepUpMethod.SECONDARY_PASSWORD

    def __init__(
        self,
        store: SecretStore,
        password_service: PasswordService,
        clock: Optional[Clock] = None,
    ):
        super().__init__(clock)
        self.store = store
        self.passwords = password_service

    async def setup(self, user_id: str, password: str) -> List[str]:
        """Store the password hash and a fresh recovery-code set in one step.

        Returns the plaintext recovery codes; they are not retrievable later.
        """
        is_valid, errors = self.passwords.validate_password(password)
        if not is_valid:
            raise InvalidFactorInput("; ".join(errors))

        password_hash = await self.passwords.hash_password_async(password)
        codes = self.passwords.generate_recovery_codes()

        await self.store.replace_enrollments(
            user_id,
            [
                NewEnrollment(
                    method=StepUpMethod.SECONDARY_PASSWORD,
                    secret=password_hash,
                    is_verified=True,
                ),
                NewEnrollment(
                    method=StepUpMethod.RECOVERY_CODES,
                    is_verified=True,
                    code_hashes=[self.passwords.hash_code(code) for code in codes],
                ),
            ],
            now=self.clock(),
        )
        return codes

    async def verify(
        self, user_id: str, value: str, request_meta: Optional[RequestMeta] = None
    ) -> bool:
        if not value:
            return False

        enrollment = await self.store.get_enrollment(user_id, StepUpMethod.SECONDARY_PASSWORD)
        if not enrollment or not enrollment.secret:
            return False

        if not await self.passwords.verify_password_async(value, enrollment.secret):
            return False

        await self.store.mark_used(user_id, StepUpMethod.SECONDARY_PASSWORD, self.clock())
        return True
