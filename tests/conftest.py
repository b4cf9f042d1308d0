"""Pytest configuration and fixtures for step-up engine tests."""

import os

# Settings are read at import time
os.environ.setdefault("STEPUP_SECRET_KEY", "test-secret-key-for-stepup-tests")
os.environ.setdefault("STEPUP_ENCRYPTION_KEY", "test-encryption-key-for-stepup")
os.environ.setdefault("STEPUP_ENVIRONMENT", "test")

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from stepup_auth.audit import MemoryAuditSink
from stepup_auth.config import Settings
from stepup_auth.database import close_connections, create_engine, create_session_factory, init_db
from stepup_auth.manager import StepUpManager
from stepup_auth.mfa import SMSGateway
from stepup_auth.repositories import SQLAlchemyChallengeStore, SQLAlchemySecretStore
from stepup_auth.security import PasswordService


class FrozenClock:
    """Controllable UTC clock injected into every component."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2026, 3, 2, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings with cheap argon2 parameters and a per-test SQLite file."""
    return Settings(
        SECRET_KEY="test-secret-key-for-stepup-tests",
        ENCRYPTION_KEY="test-encryption-key-for-stepup",
        ENVIRONMENT="test",
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'stepup.db'}",
        PASSWORD_HASH_TIME_COST=1,
        PASSWORD_HASH_MEMORY_COST=1024,
        PASSWORD_HASH_PARALLELISM=1,
        HASH_WORKERS=2,
        ENABLE_SMS=True,
    )


@pytest_asyncio.fixture(scope="function")
async def session_factory(test_settings: Settings) -> AsyncGenerator:
    """Create test database and session factory."""
    engine = create_engine(test_settings)
    await init_db(engine)

    yield create_session_factory(engine)

    await close_connections(engine)


@pytest.fixture
def secret_store(session_factory) -> SQLAlchemySecretStore:
    return SQLAlchemySecretStore(session_factory)


@pytest.fixture
def challenge_store(session_factory) -> SQLAlchemyChallengeStore:
    return SQLAlchemyChallengeStore(session_factory)


@pytest.fixture
def password_service(test_settings: Settings):
    """Create password service instance."""
    service = PasswordService(test_settings)
    yield service
    service.shutdown()


@pytest.fixture
def audit_sink() -> MemoryAuditSink:
    return MemoryAuditSink()


@pytest.fixture
def sms_gateway() -> AsyncMock:
    """SMS gateway double that records sent messages."""
    return AsyncMock(spec=SMSGateway)


@pytest.fixture
def manager(
    secret_store,
    challenge_store,
    sms_gateway,
    audit_sink,
    test_settings,
    clock,
    password_service,
) -> StepUpManager:
    """Fully wired manager over the test database."""
    return StepUpManager(
        secret_store,
        challenge_store,
        sms_gateway=sms_gateway,
        audit=audit_sink,
        config=test_settings,
        clock=clock,
        password_service=password_service,
    )


@pytest.fixture
def last_sms_code(sms_gateway: AsyncMock):
    """Read the code out of the last message passed to the gateway."""
    def _read() -> str:
        message = sms_gateway.send.await_args.args[1]
        return message.split(": ")[1].split()[0]
    return _read
