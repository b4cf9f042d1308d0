"""Result shapes returned by the step-up engine."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from .models import ChallengeStatus, ChallengeType, StepUpMethod


class SecondaryPasswordSetupResult(BaseModel):
    backup_codes: List[str]
    message: str = "Secondary password set up successfully"


class RecoveryCodesResult(BaseModel):
    backup_codes: List[str]
    generated_at: datetime


class TOTPSetupResult(BaseModel):
    secret: str
    provisioning_uri: str
    manual_entry_key: str


class SMSSetupResult(BaseModel):
    masked_phone: str
    expires_in_seconds: int


class ChallengeCreated(BaseModel):
    challenge_id: str
    challenge_token: str
    required_methods: List[StepUpMethod]
    expires_at: datetime


class ChallengeResult(BaseModel):
    """Outcome of one response to a challenge.

    ``remaining_methods`` is set while factors are still missing;
    ``attempts_remaining`` is set when the attempt failed.
    """
    success: bool
    challenge_completed: bool = False
    remaining_methods: Optional[List[StepUpMethod]] = None
    attempts_remaining: Optional[int] = None
    message: str = ""


class ChallengeState(BaseModel):
    challenge_id: str
    challenge_type: ChallengeType
    status: ChallengeStatus
    required_methods: List[StepUpMethod]
    remaining_methods: List[StepUpMethod]
    attempts_remaining: int
    expires_at: datetime


class AuthMethodInfo(BaseModel):
    method: StepUpMethod
    display_name: str
    is_active: bool
    is_verified: bool = False
    created_at: Optional[datetime] = None
    last_used_at: Optional[datetime] = None


class StepUpStatus(BaseModel):
    enabled: bool
    methods: List[AuthMethodInfo] = Field(default_factory=list)
    recovery_codes_remaining: int = 0
