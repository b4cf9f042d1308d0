"""Step-up authentication manager: the engine's public surface."""

import logging
from typing import Any, Dict, Iterable, List, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .audit import AuditEvent, AuditEventType, AuditSink, LoggingAuditSink, emit
from .challenges import ChallengeOrchestrator, PolicyResolver, StepUpSessionIssuer
from .config import Settings, settings as default_settings
from .exceptions import EnrollmentNotFound, InvalidFactorInput
from .mfa import (
    Clock,
    FactorRegistry,
    LoggingSMSGateway,
    RecoveryCodeVerifier,
    RequestMeta,
    SecondaryPasswordVerifier,
    SMSGateway,
    SMSVerifier,
    TOTPVerifier,
    TwilioSMSGateway,
)
from .models import ChallengeType, StepUpMethod
from .models.base import utcnow
from .repositories import (
    ChallengeStore,
    SecretStore,
    SQLAlchemyChallengeStore,
    SQLAlchemySecretStore,
)
from .schemas import (
    AuthMethodInfo,
    ChallengeCreated,
    ChallengeResult,
    ChallengeState,
    RecoveryCodesResult,
    SecondaryPasswordSetupResult,
    SMSSetupResult,
    StepUpStatus,
    TOTPSetupResult,
)
from .security import (
    EntropySource,
    PasswordService,
    SecretCipher,
    StepUpAssertion,
    StepUpAssertionService,
    default_entropy,
)

logger = logging.getLogger(__name__)


class StepUpManager:
    """Manages step-up enrollments and challenges for one tenant."""

    def __init__(
        self,
        secret_store: SecretStore,
        challenge_store: ChallengeStore,
        sms_gateway: Optional[SMSGateway] = None,
        audit: Optional[AuditSink] = None,
        config: Optional[Settings] = None,
        entropy: Optional[EntropySource] = None,
        clock: Optional[Clock] = None,
        password_service: Optional[PasswordService] = None,
    ):
        config = config or default_settings
        self.config = config
        self.clock = clock or utcnow
        self.entropy = entropy or default_entropy
        self.audit = audit or LoggingAuditSink()
        self.secret_store = secret_store

        if sms_gateway is None:
            sms_gateway = TwilioSMSGateway(config) if config.twilio_configured else LoggingSMSGateway()

        # Initialize services
        self.password_service = password_service or PasswordService(config, self.entropy)
        self.cipher = SecretCipher(config)

        self.secondary_password = SecondaryPasswordVerifier(
            secret_store, self.password_service, self.clock
        )
        self.totp = TOTPVerifier(secret_store, self.cipher, config, self.entropy, self.clock)
        self.sms = SMSVerifier(
            secret_store, sms_gateway, self.password_service, config, self.entropy, self.clock
        )
        self.recovery_codes = RecoveryCodeVerifier(
            secret_store, self.password_service, self.audit, self.clock
        )
        self.registry = FactorRegistry([
            self.secondary_password,
            self.totp,
            self.sms,
            self.recovery_codes,
        ])

        self.policy = PolicyResolver(secret_store)
        self.challenges = ChallengeOrchestrator(
            challenge_store,
            self.registry,
            self.policy,
            self.audit,
            config,
            self.entropy,
            self.clock,
        )
        self.issuer = StepUpSessionIssuer(
            self.challenges,
            StepUpAssertionService(config, self.entropy),
            self.audit,
        )

    @classmethod
    def from_session_factory(
        cls,
        session_factory: async_sessionmaker[AsyncSession],
        **kwargs,
    ) -> "StepUpManager":
        """Build a manager whose stores share one SQLAlchemy session factory."""
        return cls(
            SQLAlchemySecretStore(session_factory),
            SQLAlchemyChallengeStore(session_factory),
            **kwargs,
        )

    def close(self) -> None:
        self.password_service.shutdown()

    async def _audit(self, event_type: AuditEventType, user_id: str, **metadata) -> None:
        await emit(self.audit, AuditEvent(event_type=event_type, user_id=user_id, metadata=metadata))

    # Enrollment

    async def setup_secondary_password(
        self, user_id: str, password: str
    ) -> SecondaryPasswordSetupResult:
        """Set the step-up password and issue a fresh batch of recovery codes.

        The plaintext codes are returned exactly once.
        """
        backup_codes = await self.secondary_password.setup(user_id, password)

        await self._audit(AuditEventType.SECONDARY_PASSWORD_SETUP, user_id)
        await self._audit(
            AuditEventType.RECOVERY_CODES_GENERATED, user_id, count=len(backup_codes)
        )
        logger.info("Secondary password set up", extra={"user_id": user_id})

        return SecondaryPasswordSetupResult(backup_codes=backup_codes)

    async def setup_totp(self, user_id: str, label: Optional[str] = None) -> TOTPSetupResult:
        totp_data = await self.totp.setup(user_id, label)
        await self._audit(AuditEventType.TOTP_SETUP, user_id)
        return TOTPSetupResult(**totp_data)

    async def setup_sms(self, user_id: str, phone_number: str) -> SMSSetupResult:
        """Enroll a phone and send the first code; ``confirm_sms`` activates it."""
        delivery = await self.sms.setup(user_id, phone_number)
        await self._audit(AuditEventType.SMS_SETUP, user_id, masked_phone=delivery["masked_phone"])
        return SMSSetupResult(**delivery)

    async def confirm_sms(self, user_id: str, code: str) -> bool:
        confirmed = await self.sms.confirm(user_id, code)
        if confirmed:
            await self._audit(AuditEventType.SMS_CONFIRMED, user_id)
        return confirmed

    async def send_sms_code(self, user_id: str) -> SMSSetupResult:
        """Send a code to the enrolled phone, e.g. before answering a challenge."""
        delivery = await self.sms.send_code(user_id)
        await self._audit(AuditEventType.SMS_CODE_SENT, user_id, masked_phone=delivery["masked_phone"])
        return SMSSetupResult(**delivery)

    async def regenerate_recovery_codes(self, user_id: str) -> RecoveryCodesResult:
        """Replace the recovery codes; previously issued codes stop working."""
        enrollment = await self.secret_store.get_enrollment(user_id, StepUpMethod.SECONDARY_PASSWORD)
        if not enrollment:
            raise EnrollmentNotFound(user_id, StepUpMethod.SECONDARY_PASSWORD.value)

        backup_codes = await self.recovery_codes.regenerate(user_id)
        await self._audit(
            AuditEventType.RECOVERY_CODES_GENERATED, user_id, count=len(backup_codes)
        )
        return RecoveryCodesResult(backup_codes=backup_codes, generated_at=self.clock())

    async def disable_method(self, user_id: str, method: Union[str, StepUpMethod]) -> None:
        try:
            method = StepUpMethod(method)
        except ValueError as e:
            raise InvalidFactorInput("Unknown authentication method") from e

        enrollment = await self.secret_store.get_enrollment(user_id, method)
        if not enrollment:
            raise EnrollmentNotFound(user_id, method.value)

        await self.secret_store.set_active(user_id, method, False, self.clock())
        await self._audit(AuditEventType.METHOD_DISABLED, user_id, method=method.value)
        logger.info("Step-up method disabled", extra={"user_id": user_id, "method": method.value})

    async def get_user_auth_methods(self, user_id: str) -> List[AuthMethodInfo]:
        """Get user's configured step-up methods."""
        enrollments = await self.secret_store.list_enrollments(user_id)

        methods = []
        for enrollment in enrollments:
            method = StepUpMethod(enrollment.method)
            methods.append(AuthMethodInfo(
                method=method,
                display_name=method.display_name,
                is_active=enrollment.is_active,
                is_verified=enrollment.is_verified,
                created_at=enrollment.created_at,
                last_used_at=enrollment.last_used_at,
            ))
        return methods

    async def get_status(self, user_id: str) -> StepUpStatus:
        methods = await self.get_user_auth_methods(user_id)
        return StepUpStatus(
            enabled=any(m.is_active for m in methods),
            methods=methods,
            recovery_codes_remaining=await self.secret_store.count_recovery_codes(user_id),
        )

    # Challenges

    async def create_challenge(
        self,
        user_id: str,
        challenge_type: Union[str, ChallengeType],
        context_data: Optional[Dict[str, Any]] = None,
        required_methods: Optional[Iterable[Union[str, StepUpMethod]]] = None,
    ) -> ChallengeCreated:
        return await self.challenges.create(user_id, challenge_type, context_data, required_methods)

    async def respond_to_challenge(
        self,
        challenge_id: str,
        auth_method: Union[str, StepUpMethod],
        value: str,
        request_meta: Optional[RequestMeta] = None,
        challenge_token: Optional[str] = None,
    ) -> ChallengeResult:
        return await self.challenges.respond(
            challenge_id, auth_method, value, request_meta, challenge_token=challenge_token
        )

    async def is_challenge_completed(self, challenge_id: str, challenge_token: str) -> bool:
        return await self.challenges.is_completed(challenge_id, challenge_token)

    async def get_challenge_status(self, challenge_id: str, challenge_token: str) -> ChallengeState:
        return await self.challenges.get_state(challenge_id, challenge_token)

    async def cancel_challenge(
        self,
        challenge_id: str,
        challenge_token: str,
        request_meta: Optional[RequestMeta] = None,
    ) -> None:
        await self.challenges.cancel(challenge_id, challenge_token, request_meta)

    async def issue_assertion(self, challenge_id: str, challenge_token: str) -> str:
        """Exchange a completed challenge for a signed step-up assertion."""
        return await self.issuer.issue(challenge_id, challenge_token)

    def verify_assertion(
        self,
        token: str,
        user_id: str,
        challenge_type: Union[str, ChallengeType],
        context_data: Optional[Dict[str, Any]] = None,
    ) -> StepUpAssertion:
        return self.issuer.verify(token, user_id, ChallengeType(challenge_type).value, context_data)
