"""Factor enrollment models."""

from enum import Enum
from sqlalchemy import (
    Column, String, Boolean, DateTime, Integer,
    ForeignKey, UniqueConstraint, Index
)
from sqlalchemy.orm import relationship

from .base import Base, BaseModel


class StepUpMethod(str, Enum):
    """Supported step-up methods, in policy tie-break order."""
    SECONDARY_PASSWORD = "secondary_password"
    TOTP = "totp"  # Time-based One-Time Password
    SMS = "sms"
    RECOVERY_CODES = "recovery_codes"

    @property
    def display_name(self) -> str:
        return METHOD_DISPLAY_NAMES[self]

    @property
    def rank(self) -> int:
        return list(StepUpMethod).index(self)


METHOD_DISPLAY_NAMES = {
    StepUpMethod.SECONDARY_PASSWORD: "Secondary Password",
    StepUpMethod.TOTP: "Authenticator App (2FA)",
    StepUpMethod.SMS: "SMS Verification",
    StepUpMethod.RECOVERY_CODES: "Recovery Codes",
}


class FactorEnrollment(BaseModel):
    """One enrollment per (user, method). Re-enrolling replaces the row."""

    __tablename__ = 'factor_enrollments'

    user_id = Column(String(64), nullable=False)
    method = Column(String(32), nullable=False)

    # Method-specific secret material
    secret = Column(String(512), nullable=True)  # Fernet-encrypted TOTP seed or argon2 hash
    phone_number = Column(String(20), nullable=True)  # For SMS

    # Status
    is_active = Column(Boolean, default=True, nullable=False)
    is_verified = Column(Boolean, default=False, nullable=False)

    # Usage tracking
    last_used_at = Column(DateTime(timezone=True), nullable=True)
    last_used_step = Column(Integer, nullable=True)  # TOTP replay protection
    use_count = Column(Integer, default=0, nullable=False)

    recovery_codes = relationship(
        "RecoveryCode", back_populates="enrollment", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint('user_id', 'method', name='uq_enrollment_user_method'),
        Index('idx_enrollment_user_active', 'user_id', 'is_active'),
    )

    def __repr__(self):
        return f"<FactorEnrollment(id={self.id}, user_id={self.user_id}, method={self.method})>"


class RecoveryCode(BaseModel):
    """Single-use recovery code, stored as a peppered HMAC."""

    __tablename__ = 'recovery_codes'

    user_id = Column(String(64), nullable=False)
    enrollment_id = Column(String(36), ForeignKey('factor_enrollments.id'), nullable=False)

    code_hash = Column(String(64), nullable=False)

    # Usage
    is_used = Column(Boolean, default=False, nullable=False)
    used_at = Column(DateTime(timezone=True), nullable=True)
    used_ip = Column(String(45), nullable=True)
    used_user_agent = Column(String(500), nullable=True)

    enrollment = relationship("FactorEnrollment", back_populates="recovery_codes")

    __table_args__ = (
        Index('idx_recovery_code_user_hash', 'user_id', 'code_hash'),
    )

    def __repr__(self):
        return f"<RecoveryCode(id={self.id}, user_id={self.user_id}, is_used={self.is_used})>"


class SMSPendingCode(Base):
    """The one outstanding SMS code per user."""

    __tablename__ = 'sms_pending_codes'

    user_id = Column(String(64), primary_key=True)
    phone_number = Column(String(20), nullable=False)
    code_hash = Column(String(64), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
