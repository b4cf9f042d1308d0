"""Tests for the step-up factor verifiers."""

import asyncio
from unittest.mock import AsyncMock

import pyotp
import pytest
from twilio.base.exceptions import TwilioException

from stepup_auth.audit import AuditEventType
from stepup_auth.exceptions import DependencyFailure, InvalidFactorInput
from stepup_auth.mfa import (
    FactorRegistry,
    RecoveryCodeVerifier,
    SecondaryPasswordVerifier,
    SMSVerifier,
    TOTPVerifier,
    is_valid_phone_number,
    mask_phone_number,
)
from stepup_auth.models import StepUpMethod
from stepup_auth.security import SecretCipher


@pytest.fixture
def totp_verifier(secret_store, test_settings, clock) -> TOTPVerifier:
    return TOTPVerifier(secret_store, SecretCipher(test_settings), test_settings, clock=clock)


@pytest.fixture
def password_verifier(secret_store, password_service, clock) -> SecondaryPasswordVerifier:
    return SecondaryPasswordVerifier(secret_store, password_service, clock)


@pytest.fixture
def recovery_verifier(secret_store, password_service, audit_sink, clock) -> RecoveryCodeVerifier:
    return RecoveryCodeVerifier(secret_store, password_service, audit_sink, clock)


@pytest.fixture
def sms_verifier(secret_store, sms_gateway, password_service, test_settings, clock) -> SMSVerifier:
    return SMSVerifier(secret_store, sms_gateway, password_service, test_settings, clock=clock)


class TestTOTPVerifier:
    """Test TOTP functionality."""

    def test_generate_provisioning_uri(self, totp_verifier: TOTPVerifier):
        secret = "JBSWY3DPEHPK3PXP"

        uri = totp_verifier.generate_provisioning_uri(secret, "user@example.com")

        assert uri.startswith("otpauth://totp/")
        assert "StepUp" in uri
        assert f"secret={secret}" in uri

    @pytest.mark.asyncio
    async def test_setup_then_verify_current_code(self, totp_verifier: TOTPVerifier, clock, secret_store):
        """A code from the returned secret at the current step verifies."""
        setup = await totp_verifier.setup("user-1", "user@example.com")

        assert setup["secret"] == setup["manual_entry_key"]
        assert len(setup["secret"]) == 32
        enrollment = await secret_store.get_enrollment("user-1", StepUpMethod.TOTP)
        assert enrollment.secret != setup["secret"]

        code = pyotp.TOTP(setup["secret"]).at(clock())
        assert await totp_verifier.verify("user-1", code) is True

    @pytest.mark.asyncio
    async def test_code_from_other_secret_fails(self, totp_verifier: TOTPVerifier, clock):
        await totp_verifier.setup("user-1")

        code = pyotp.TOTP(pyotp.random_base32()).at(clock())
        assert await totp_verifier.verify("user-1", code) is False

    @pytest.mark.asyncio
    async def test_window_accepts_previous_step_only(self, totp_verifier: TOTPVerifier, clock):
        setup = await totp_verifier.setup("user-1")
        totp = pyotp.TOTP(setup["secret"])

        previous = totp.at(clock().timestamp() - 30)
        too_old = totp.at(clock().timestamp() - 90)

        assert await totp_verifier.verify("user-1", too_old) is False
        assert await totp_verifier.verify("user-1", previous) is True

    @pytest.mark.asyncio
    async def test_replayed_code_rejected(self, totp_verifier: TOTPVerifier, clock):
        setup = await totp_verifier.setup("user-1")
        totp = pyotp.TOTP(setup["secret"])

        code = totp.at(clock())
        assert await totp_verifier.verify("user-1", code) is True
        assert await totp_verifier.verify("user-1", code) is False

        clock.advance(seconds=30)
        assert await totp_verifier.verify("user-1", totp.at(clock())) is True

    @pytest.mark.asyncio
    async def test_malformed_or_unenrolled_is_false(self, totp_verifier: TOTPVerifier):
        assert await totp_verifier.verify("nobody", "123456") is False

        await totp_verifier.setup("user-1")
        assert await totp_verifier.verify("user-1", "") is False
        assert await totp_verifier.verify("user-1", "12345") is False
        assert await totp_verifier.verify("user-1", "abcdef") is False


class TestSecondaryPasswordVerifier:
    """Test secondary password setup and verification."""

    @pytest.mark.asyncio
    async def test_setup_returns_eight_codes(self, password_verifier, secret_store):
        codes = await password_verifier.setup("user-1", "Correct-Horse-9")

        assert len(codes) == 8
        assert await secret_store.count_recovery_codes("user-1") == 8
        enrollment = await secret_store.get_enrollment("user-1", StepUpMethod.SECONDARY_PASSWORD)
        assert enrollment.secret.startswith("$argon2")

    @pytest.mark.asyncio
    async def test_verify(self, password_verifier, secret_store):
        await password_verifier.setup("user-1", "Correct-Horse-9")

        assert await password_verifier.verify("user-1", "Correct-Horse-9") is True
        assert await password_verifier.verify("user-1", "wrong-password") is False
        assert await password_verifier.verify("user-1", "") is False
        assert await password_verifier.verify("user-2", "Correct-Horse-9") is False

        enrollment = await secret_store.get_enrollment("user-1", StepUpMethod.SECONDARY_PASSWORD)
        assert enrollment.use_count == 1
        assert enrollment.last_used_at is not None

    @pytest.mark.asyncio
    async def test_weak_password_rejected(self, password_verifier):
        with pytest.raises(InvalidFactorInput):
            await password_verifier.setup("user-1", "short")

    @pytest.mark.asyncio
    async def test_setup_again_replaces_password_and_codes(self, password_verifier, recovery_verifier, secret_store):
        old_codes = await password_verifier.setup("user-1", "Correct-Horse-9")
        await password_verifier.setup("user-1", "Battery-Staple-7")

        assert await password_verifier.verify("user-1", "Correct-Horse-9") is False
        assert await password_verifier.verify("user-1", "Battery-Staple-7") is True
        assert await recovery_verifier.verify("user-1", old_codes[0]) is False

        methods = [e.method for e in await secret_store.list_enrollments("user-1")]
        assert sorted(methods) == ["recovery_codes", "secondary_password"]


class TestRecoveryCodeVerifier:
    """Test single-use recovery codes."""

    @pytest.mark.asyncio
    async def test_code_is_single_use(self, password_verifier, recovery_verifier, secret_store, audit_sink):
        codes = await password_verifier.setup("user-1", "Correct-Horse-9")

        assert await recovery_verifier.verify("user-1", codes[0]) is True
        assert await recovery_verifier.verify("user-1", codes[0]) is False
        assert await secret_store.count_recovery_codes("user-1") == 7

        used = audit_sink.of_type(AuditEventType.BACKUP_CODE_USED)
        assert len(used) == 1
        assert used[0].metadata["remaining_codes"] == 7

    @pytest.mark.asyncio
    async def test_input_is_normalized(self, password_verifier, recovery_verifier):
        codes = await password_verifier.setup("user-1", "Correct-Horse-9")
        typed = f" {codes[1][:4].lower()}-{codes[1][4:].lower()} "

        assert await recovery_verifier.verify("user-1", typed) is True

    @pytest.mark.asyncio
    async def test_codes_belong_to_their_user(self, password_verifier, recovery_verifier):
        codes = await password_verifier.setup("user-1", "Correct-Horse-9")
        await password_verifier.setup("user-2", "Correct-Horse-9")

        assert await recovery_verifier.verify("user-2", codes[0]) is False
        assert await recovery_verifier.verify("user-1", codes[0]) is True

    @pytest.mark.asyncio
    async def test_concurrent_consumption_wins_once(self, password_verifier, recovery_verifier):
        codes = await password_verifier.setup("user-1", "Correct-Horse-9")

        results = await asyncio.gather(
            *(recovery_verifier.verify("user-1", codes[2]) for _ in range(4))
        )

        assert results.count(True) == 1

    @pytest.mark.asyncio
    async def test_regenerate_invalidates_old_codes(self, password_verifier, recovery_verifier, secret_store):
        old_codes = await password_verifier.setup("user-1", "Correct-Horse-9")

        new_codes = await recovery_verifier.regenerate("user-1")

        assert set(new_codes).isdisjoint(old_codes)
        assert await recovery_verifier.verify("user-1", old_codes[0]) is False
        assert await recovery_verifier.verify("user-1", new_codes[0]) is True
        assert await secret_store.count_recovery_codes("user-1") == 7


class TestSMSVerifier:
    """Test SMS codes and phone handling."""

    def test_phone_validation(self):
        assert is_valid_phone_number("+14155552671") is True
        assert is_valid_phone_number("+442071838750") is True
        assert is_valid_phone_number("14155552671") is False
        assert is_valid_phone_number("+04155552671") is False
        assert is_valid_phone_number("+1415555267123456") is False
        assert is_valid_phone_number("") is False

    def test_phone_masking(self):
        assert mask_phone_number("+14155552671") == "+*******2671"

    @pytest.mark.asyncio
    async def test_setup_sends_code_and_confirm_activates(
        self, sms_verifier: SMSVerifier, sms_gateway, secret_store, last_sms_code
    ):
        result = await sms_verifier.setup("user-1", "+14155552671")

        assert result == {"masked_phone": "+*******2671", "expires_in_seconds": 600}
        sms_gateway.send.assert_awaited_once()
        assert sms_gateway.send.await_args.args[0] == "+14155552671"
        assert await secret_store.get_enrollment("user-1", StepUpMethod.SMS) is None

        assert await sms_verifier.confirm("user-1", last_sms_code()) is True
        enrollment = await secret_store.get_enrollment("user-1", StepUpMethod.SMS)
        assert enrollment.is_verified is True

    @pytest.mark.asyncio
    async def test_invalid_phone_rejected_before_delivery(self, sms_verifier: SMSVerifier, sms_gateway):
        with pytest.raises(InvalidFactorInput):
            await sms_verifier.setup("user-1", "555-2671")

        sms_gateway.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_code_is_single_use_and_expires(self, sms_verifier: SMSVerifier, clock, last_sms_code):
        await sms_verifier.setup("user-1", "+14155552671")
        await sms_verifier.confirm("user-1", last_sms_code())

        await sms_verifier.send_code("user-1")
        code = last_sms_code()
        assert await sms_verifier.verify("user-1", code) is True
        assert await sms_verifier.verify("user-1", code) is False

        await sms_verifier.send_code("user-1")
        clock.advance(minutes=11)
        assert await sms_verifier.verify("user-1", last_sms_code()) is False

    @pytest.mark.asyncio
    async def test_unconfirmed_enrollment_cannot_verify(self, sms_verifier: SMSVerifier, last_sms_code):
        await sms_verifier.setup("user-1", "+14155552671")

        assert await sms_verifier.verify("user-1", last_sms_code()) is False

    @pytest.mark.asyncio
    async def test_gateway_failure_is_dependency_failure(self, sms_verifier: SMSVerifier, sms_gateway):
        sms_gateway.send.side_effect = TwilioException("unreachable")

        with pytest.raises(DependencyFailure) as exc_info:
            await sms_verifier.setup("user-1", "+14155552671")
        assert exc_info.value.dependency == "sms_gateway"

    @pytest.mark.asyncio
    async def test_unexpected_gateway_error_is_dependency_failure(self, sms_verifier: SMSVerifier, sms_gateway):
        sms_gateway.send.side_effect = RuntimeError("provider returned garbage")

        with pytest.raises(DependencyFailure) as exc_info:
            await sms_verifier.setup("user-1", "+14155552671")
        assert exc_info.value.dependency == "sms_gateway"
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    @pytest.mark.asyncio
    async def test_gateway_timeout_is_dependency_failure(
self, secret_store, password_service, test_settings, clock):
        async def slow_send(phone_number, message):
            await asyncio.sleep(1)

        gateway = AsyncMock()
        gateway.send.side_effect = slow_send
        verifier = SMSVerifier(
            secret_store,
            gateway,
            password_service,
            test_settings.model_copy(update={"SMS_SEND_TIMEOUT_SECONDS": 0.01}),
            clock=clock,
        )

        with pytest.raises(DependencyFailure):
            await verifier.setup("user-1", "+14155552671")

    @pytest.mark.asyncio
    async def test_disabled_sms_rejects_setup(self, secret_store, sms_gateway, password_service, test_settings):
        verifier = SMSVerifier(
            secret_store,
            sms_gateway,
            password_service,
            test_settings.model_copy(update={"ENABLE_SMS": False}),
        )

        assert verifier.is_enabled() is False
        with pytest.raises(InvalidFactorInput):
            await verifier.setup("user-1", "+14155552671")


class TestFactorRegistry:
    """Test the method -> verifier table."""

    def test_every_method_resolves(self, totp_verifier, password_verifier, recovery_verifier, sms_verifier):
        registry = FactorRegistry([totp_verifier, password_verifier, recovery_verifier, sms_verifier])

        for method in StepUpMethod:
            assert registry[method].method == method

    def test_missing_method_rejected(self, totp_verifier, password_verifier, recovery_verifier):
        with pytest.raises(ValueError, match="sms"):
            FactorRegistry([totp_verifier, password_verifier, recovery_verifier])

    def test_duplicate_method_rejected(self, totp_verifier, password_verifier, recovery_verifier, sms_verifier):
        with pytest.raises(ValueError, match="Duplicate"):
            FactorRegistry([totp_verifier, totp_verifier, password_verifier, recovery_verifier, sms_verifier])
