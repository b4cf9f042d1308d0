"""Step-up factor verifiers."""

from .base import FactorVerifier, FactorRegistry, RequestMeta, Clock
from .totp import TOTPVerifier
from .sms import (
    SMSVerifier,
    SMSGateway,
    TwilioSMSGateway,
    LoggingSMSGateway,
    is_valid_phone_number,
    mask_phone_number,
)
from .secondary_password import SecondaryPasswordVerifier
from .recovery_codes import RecoveryCodeVerifier

__all__ = [
    "FactorVerifier",
    "FactorRegistry",
    "RequestMeta",
    "Clock",
    "TOTPVerifier",
    "SMSVerifier",
    "SMSGateway",
    "TwilioSMSGateway",
    "LoggingSMSGateway",
    "is_valid_phone_number",
    "mask_phone_number",
    "SecondaryPasswordVerifier",
    "RecoveryCodeVerifier",
]
