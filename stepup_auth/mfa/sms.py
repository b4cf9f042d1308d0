"""SMS one-time code verifier and delivery gateways."""

import abc
import asyncio
import logging
import re
from datetime import timedelta
from typing import Dict, Optional

from twilio.rest import Client

from ..config import Settings, settings as default_settings
from ..exceptions import DependencyFailure, InvalidFactorInput
from ..metrics import dependency_failures
from ..models import StepUpMethod
from ..repositories import NewEnrollment, SecretStore
from ..security import EntropySource, PasswordService, default_entropy
from .base import Clock, FactorVerifier, RequestMeta

logger = logging.getLogger(__name__)

E164_PATTERN = re.compile(r"^\+[1-9]\d{1,14}$")


def is_valid_phone_number(phone_number: str) -> bool:
    """E.164: a ``+`` then up to 15 digits, no leading zero."""
    return bool(phone_number) and bool(E164_PATTERN.match(phone_number))


def mask_phone_number(phone_number: str) -> str:
    """Mask phone number for privacy, keeping the last 4 digits."""
    if len(phone_number) < 4:
        return "****"
    return re.sub(r"\d", "*", phone_number[:-4]) + phone_number[-4:]


class SMSGateway(abc.ABC):
    """External SMS delivery collaborator."""

    @abc.abstractmethod
    async def send(self, phone_number: str, message: str) -> None:
        """Deliver ``message``. Raise on failure."""


class TwilioSMSGateway(SMSGateway):
    """Delivers through the Twilio REST API."""

    def __init__(self, config: Optional[Settings] = None):
        config = config or default_settings
        if not config.twilio_configured:
            raise ValueError("Twilio credentials are not configured")

        self.client = Client(config.TWILIO_ACCOUNT_SID, config.TWILIO_AUTH_TOKEN)
        self.from_number = config.TWILIO_FROM_NUMBER

    async def send(self, phone_number: str, message: str) -> None:
        # The Twilio client is blocking
        await asyncio.to_thread(
            self.client.messages.create,
            body=message,
            from_=self.from_number,
            to=phone_number,
        )


class LoggingSMSGateway(SMSGateway):
    """Development gateway: records that a message would have been sent."""

    async def send(self, phone_number: str, message: str) -> None:
        logger.info("SMS delivery skipped", extra={"phone_number": mask_phone_number(phone_number)})


class SMSVerifier(FactorVerifier):
    """Six-digit codes sent by SMS, valid for a short time and usable once."""

    method = StepUpMethod.SMS

    def __init__(
        self,
        store: SecretStore,
        gateway: SMSGateway,
        password_service: PasswordService,
        config: Optional[Settings] = None,
        entropy: Optional[EntropySource] = None,
        clock: Optional[Clock] = None,
    ):
        super().__init__(clock)
        config = config or default_settings
        self.store = store
        self.gateway = gateway
        self.passwords = password_service
        self.entropy = entropy or default_entropy

        self.enabled = config.ENABLE_SMS
        self.code_length = config.SMS_CODE_LENGTH
        self.code_validity = timedelta(seconds=config.SMS_CODE_TTL_SECONDS)
        self.send_timeout = config.SMS_SEND_TIMEOUT_SECONDS
        self.issuer = config.TOTP_ISSUER

    def is_enabled(self) -> bool:
        """Check if SMS service is enabled."""
        return self.enabled

    def generate_code(self) -> str:
        """Generate a random verification code."""
        return self.entropy.numeric_code(self.code_length)

    def _compose_message(self, code: str) -> str:
        minutes = int(self.code_validity.total_seconds() // 60)
        return (
            f"Your {self.issuer} verification code is: {code}\n\n"
            f"This code expires in {minutes} minutes."
        )

    async def setup(self, user_id: str, phone_number: str) -> Dict[str, object]:
        """Enroll a phone number; it becomes active once a code is confirmed."""
        if not self.enabled:
            raise InvalidFactorInput("SMS verification is not enabled")
        phone_number = (phone_number or "").strip()
        if not is_valid_phone_number(phone_number):
            raise InvalidFactorInput("Invalid phone number format")

        await self.store.replace_enrollments(
            user_id,
            [NewEnrollment(
                method=StepUpMethod.SMS,
                phone_number=phone_number,
                is_active=False,
            )],
            now=self.clock(),
        )
        return await self._deliver(user_id, phone_number)

    async def send_code(self, user_id: str) -> Dict[str, object]:
        """Send a fresh code to the user's enrolled phone."""
        if not self.enabled:
            raise InvalidFactorInput("SMS verification is not enabled")

        enrollment = await self.store.get_enrollment(user_id, StepUpMethod.SMS, active_only=False)
        if not enrollment or not enrollment.phone_number:
            raise InvalidFactorInput("No phone number enrolled")
        return await self._deliver(user_id, enrollment.phone_number)

    async def _deliver(self, user_id: str, phone_number: str) -> Dict[str, object]:
        code = self.generate_code()
        now = self.clock()

        await self.store.store_sms_code(
            user_id,
            phone_number,
            self.passwords.hash_code(code),
            expires_at=now + self.code_validity,
            now=now,
        )

        # No transaction is open here; the send may block on the network
        try:
            await asyncio.wait_for(
                self.gateway.send(phone_number, self._compose_message(code)),
                timeout=self.send_timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error("SMS gateway timed out", extra={"user_id": user_id})
            dependency_failures.labels(dependency="sms_gateway").inc()
            raise DependencyFailure("sms_gateway", "SMS gateway timed out") from e
        except Exception as e:
            # Any gateway error counts as a delivery failure
            logger.error("SMS gateway failed", extra={"user_id": user_id, "error": str(e)})
            dependency_failures.labels(dependency="sms_gateway").inc()
            raise DependencyFailure("sms_gateway") from e

        return {
            "masked_phone": mask_phone_number(phone_number),
            "expires_in_seconds": int(self.code_validity.total_seconds()),
        }

    def _normalize(self, value: str) -> str:
        code = (value or "").replace(" ", "").strip()
        if len(code) != self.code_length or not code.isdigit():
            return ""
        return code

    async def confirm(self, user_id: str, value: str) -> bool:
        """Confirm phone ownership and activate the SMS enrollment."""
        code = self._normalize(value)
        if not code:
            return False

        now = self.clock()
        if not await self.store.consume_sms_code(user_id, self.passwords.hash_code(code), now):
            return False
        return await self.store.set_active(user_id, StepUpMethod.SMS, True, now)

    async def verify(
        self, user_id: str, value: str, request_meta: Optional[RequestMeta] = None
    ) -> bool:
        code = self._normalize(value)
        if not code:
            return False

        enrollment = await self.store.get_enrollment(user_id, StepUpMethod.SMS)
        if not enrollment:
            return False

        now = self.clock()
        if not await self.store.consume_sms_code(user_id, self.passwords.hash_code(code), now):
            return False

        await self.store.mark_used(user_id, StepUpMethod.SMS, now)
        return True
