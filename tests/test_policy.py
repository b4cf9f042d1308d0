"""Tests for required-method policy resolution."""

import pytest

from stepup_auth.challenges import PolicyResolver, normalize_methods
from stepup_auth.exceptions import InvalidFactorInput
from stepup_auth.models import ChallengeType, StepUpMethod


@pytest.fixture
def policy(secret_store) -> PolicyResolver:
    return PolicyResolver(secret_store)


class TestPolicyResolver:
    """Test how many and which factors a challenge requires."""

    @pytest.mark.asyncio
    async def test_no_enrollments_falls_back_to_secondary_password(self, policy):
        methods = await policy.determine_required_methods("user-1", ChallengeType.PERMISSION_GRANT)

        assert methods == [StepUpMethod.SECONDARY_PASSWORD]

    @pytest.mark.asyncio
    async def test_high_sensitivity_requires_two_in_enrollment_order(self, policy, manager, clock):
        await manager.setup_totp("user-1")
        clock.advance(minutes=1)
        await manager.setup_secondary_password("user-1", "Correct-Horse-9")

        for challenge_type in (ChallengeType.ROLE_CHANGE, ChallengeType.PERMISSION_GRANT):
            methods = await policy.determine_required_methods("user-1", challenge_type)
            assert methods == [StepUpMethod.TOTP, StepUpMethod.SECONDARY_PASSWORD]

    @pytest.mark.asyncio
    async def test_same_timestamp_uses_method_order(self, policy, manager):
        await manager.setup_totp("user-1")
        await manager.setup_secondary_password("user-1", "Correct-Horse-9")

        methods = await policy.determine_required_methods("user-1", "role_change")

        assert methods == [StepUpMethod.SECONDARY_PASSWORD, StepUpMethod.TOTP]

    @pytest.mark.asyncio
    async def test_low_sensitivity_requires_one(self, policy, manager, clock):
        await manager.setup_totp("user-1")
        clock.advance(minutes=1)
        await manager.setup_secondary_password("user-1", "Correct-Horse-9")

        for challenge_type in (ChallengeType.DATA_ACCESS, ChallengeType.SENSITIVE_OPERATION):
            methods = await policy.determine_required_methods("user-1", challenge_type)
            assert methods == [StepUpMethod.TOTP]

    @pytest.mark.asyncio
    async def test_single_method_for_high_sensitivity(self, policy, manager):
        await manager.setup_totp("user-1")

        methods = await policy.determine_required_methods("user-1", ChallengeType.ROLE_CHANGE)

        assert methods == [StepUpMethod.TOTP]

    @pytest.mark.asyncio
    async def test_recovery_codes_never_selected(self, policy, manager):
        await manager.setup_secondary_password("user-1", "Correct-Horse-9")

        methods = await policy.determine_required_methods("user-1", ChallengeType.ROLE_CHANGE)

        assert methods == [StepUpMethod.SECONDARY_PASSWORD]

    @pytest.mark.asyncio
    async def test_disabled_methods_ignored(self, policy, manager):
        await manager.setup_totp("user-1")
        await manager.setup_secondary_password("user-1", "Correct-Horse-9")
        await manager.disable_method("user-1", StepUpMethod.SECONDARY_PASSWORD)

        methods = await policy.determine_required_methods("user-1", ChallengeType.ROLE_CHANGE)

        assert methods == [StepUpMethod.TOTP]

    @pytest.mark.asyncio
    async def test_explicit_methods_are_deduplicated(self, policy):
        methods = await policy.resolve(
            "user-1",
            ChallengeType.DATA_ACCESS,
            ["recovery_codes", StepUpMethod.TOTP, "recovery_codes"],
        )

        assert methods == [StepUpMethod.RECOVERY_CODES, StepUpMethod.TOTP]

    @pytest.mark.asyncio
    async def test_explicit_methods_validated(self, policy):
        with pytest.raises(InvalidFactorInput):
            await policy.resolve("user-1", ChallengeType.DATA_ACCESS, [])
        with pytest.raises(InvalidFactorInput):
            await policy.resolve("user-1", ChallengeType.DATA_ACCESS, ["email"])

    def test_normalize_methods_keeps_first_occurrence(self):
        assert normalize_methods(["totp", "sms", "totp"]) == [StepUpMethod.TOTP, StepUpMethod.SMS]
