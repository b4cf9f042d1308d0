"""Password and one-time code hashing service."""

import asyncio
import hashlib
import hmac
import re
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Tuple

from argon2 import PasswordHasher
from argon2.exceptions import VerificationError, InvalidHashError

from ..config import Settings, settings as default_settings
from .entropy import EntropySource, default_entropy


class PasswordService:
    """Slow hashing for secondary passwords, keyed digests for one-time codes.

    Argon2 is CPU-bound on purpose, so the async helpers push it onto a
    dedicated thread pool instead of the event loop.
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        entropy: Optional[EntropySource] = None,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        config = config or default_settings
        self.entropy = entropy or default_entropy

        self.argon2 = PasswordHasher(
            time_cost=config.PASSWORD_HASH_TIME_COST,
            memory_cost=config.PASSWORD_HASH_MEMORY_COST,
            parallelism=config.PASSWORD_HASH_PARALLELISM,
        )
        self.min_length = config.PASSWORD_MIN_LENGTH
        self.backup_code_count = config.BACKUP_CODE_COUNT
        self.backup_code_length = config.BACKUP_CODE_LENGTH

        # Pepper for one-time code digests, separate from the JWT signing use
        self._pepper = hmac.new(
            config.SECRET_KEY.encode(), b"stepup-code-pepper", hashlib.sha256
        ).digest()

        self._executor = executor or ThreadPoolExecutor(
            max_workers=config.HASH_WORKERS,
            thread_name_prefix="stepup-hash",
        )

    def hash_password(self, password: str) -> str:
        """Hash a password using Argon2."""
        return self.argon2.hash(password)

    def verify_password(self, plain_password: str, hashed_password: str) -> bool:
        """Verify a password against a hash."""
        try:
            return self.argon2.verify(hashed_password, plain_password)
        except (VerificationError, InvalidHashError):
            return False

    async def hash_password_async(self, password: str) -> str:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, self.hash_password, password)

    async def verify_password_async(self, plain_password: str, hashed_password: str) -> bool:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self._executor, self.verify_password, plain_password, hashed_password
        )

    def validate_password(self, password: str) -> Tuple[bool, List[str]]:
        """Validate a secondary password against the minimal policy."""
        errors = []

        if not password or not password.strip():
            errors.append("Password must not be empty")
        elif len(password) < self.min_length:
            errors.append(f"Password must be at least {self.min_length} characters long")

        if password and re.search(r"(.)\1{3,}", password):
            errors.append("Password should not contain repeated characters")

        return len(errors) == 0, errors

    def hash_code(self, code: str) -> str:
        """Keyed digest of a one-time code; equal codes give equal digests."""
        return hmac.new(self._pepper, code.encode(), hashlib.sha256).hexdigest()

    @staticmethod
    def normalize_code(code: str) -> str:
        """Normalize user-typed codes (drop dashes and spaces, upper-case)."""
        return code.replace("-", "").replace(" ", "").strip().upper()

    def generate_recovery_codes(self, count: Optional[int] = None) -> List[str]:
        """Generate plaintext recovery codes for account recovery."""
        count = count or self.backup_code_count
        return [
            self.entropy.alphanumeric_code(self.backup_code_length)
            for _ in range(count)
        ]

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)
