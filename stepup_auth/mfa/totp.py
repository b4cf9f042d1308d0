"""Time-based One-Time Password (TOTP) verifier."""

import logging
from typing import Dict, Optional

import pyotp
from pyotp.utils import strings_equal

from ..config import Settings, settings as default_settings
from ..models import StepUpMethod
from ..repositories import NewEnrollment, SecretStore
from ..security import EntropySource, SecretCipher, default_entropy
from .base import Clock, FactorVerifier, RequestMeta

logger = logging.getLogger(__name__)


class TOTPVerifier(FactorVerifier):
    """Authenticator-app codes over a configurable window of time steps."""

    method = StepUpMethod.TOTP

    def __init__(
        self,
        store: SecretStore,
        cipher: SecretCipher,
        config: Optional[Settings] = None,
        entropy: Optional[EntropySource] = None,
        clock: Optional[Clock] = None,
    ):
        super().__init__(clock)
        config = config or default_settings
        self.store = store
        self.cipher = cipher
        self.entropy = entropy or default_entropy

        self.issuer = config.TOTP_ISSUER
        self.digits = config.TOTP_DIGITS
        self.interval = config.TOTP_INTERVAL  # seconds
        self.window = config.TOTP_VALID_WINDOW  # steps before/after
        self.secret_bytes = config.TOTP_SECRET_BYTES
        self.replay_protection = config.TOTP_REPLAY_PROTECTION

    def _totp(self, secret: str) -> pyotp.TOTP:
        return pyotp.TOTP(secret, digits=self.digits, interval=self.interval, issuer=self.issuer)

    def generate_secret(self) -> str:
        """Generate a new TOTP secret."""
        return self.entropy.base32_secret(self.secret_bytes)

    def generate_provisioning_uri(self, secret: str, label: str) -> str:
        """Generate provisioning URI for QR code."""
        return self._totp(secret).provisioning_uri(name=label, issuer_name=self.issuer)

    async def setup(self, user_id: str, label: Optional[str] = None) -> Dict[str, str]:
        """Enroll (or re-enroll) the user and return the shared secret once."""
        secret = self.generate_secret()
        provisioning_uri = self.generate_provisioning_uri(secret, label or user_id)

        await self.store.replace_enrollments(
            user_id,
            [NewEnrollment(
                method=StepUpMethod.TOTP,
                secret=self.cipher.encrypt(secret),
                is_active=True,
            )],
            now=self.clock(),
        )

        return {
            "secret": secret,
            "provisioning_uri": provisioning_uri,
            "manual_entry_key": secret,
        }

    def match_step(self, secret: str, token: str) -> Optional[int]:
        """Return the time step the token belongs to, if any within the window."""
        totp = self._totp(secret)
        current = totp.timecode(self.clock())

        for offset in range(-self.window, self.window + 1):
            step = current + offset
            if step < 0:
                continue
            if strings_equal(token, totp.generate_otp(step)):
                return step
        return None

    async def verify(
        self, user_id: str, value: str, request_meta: Optional[RequestMeta] = None
    ) -> bool:
        token = (value or "").replace(" ", "").strip()
        if len(token) != self.digits or not token.isdigit():
            return False

        enrollment = await self.store.get_enrollment(user_id, StepUpMethod.TOTP)
        if not enrollment or not enrollment.secret:
            return False

        try:
            secret = self.cipher.decrypt(enrollment.secret)
        except ValueError:
            logger.error("TOTP secret could not be decrypted", extra={"user_id": user_id})
            return False

        step = self.match_step(secret, token)
        if step is None:
            return False

        if not self.replay_protection:
            await self.store.mark_used(user_id, StepUpMethod.TOTP, self.clock())
            return True

        accepted = await self.store.mark_used(user_id, StepUpMethod.TOTP, self.clock(), step=step)
        if not accepted:
            logger.warning("Replayed TOTP code rejected", extra={"user_id": user_id, "step": step})
        return accepted
