"""Single source of randomness for every token, code and secret the engine mints."""

import base64
import secrets
import string
import uuid


class EntropySource:
    """Cryptographically secure generator backed by :mod:`secrets`.

    All challenge ids and tokens, recovery codes, SMS codes and TOTP seeds
    come from here, so auditing unpredictability means auditing this class.
    """

    RECOVERY_ALPHABET = string.ascii_uppercase + string.digits

    def token_hex(self, nbytes: int) -> str:
        return secrets.token_hex(nbytes)

    def token_urlsafe(self, nbytes: int) -> str:
        return secrets.token_urlsafe(nbytes)

    def identifier(self) -> str:
        """Opaque, unique identifier (UUID4, 122 random bits)."""
        return str(uuid.UUID(bytes=secrets.token_bytes(16), version=4))

    def numeric_code(self, digits: int) -> str:
        return ''.join(secrets.choice(string.digits) for _ in range(digits))

    def alphanumeric_code(self, length: int) -> str:
        return ''.join(secrets.choice(self.RECOVERY_ALPHABET) for _ in range(length))

    def base32_secret(self, nbytes: int) -> str:
        """Base32 TOTP seed of ``nbytes`` random bytes (20 bytes = 160 bits)."""
        return base64.b32encode(secrets.token_bytes(nbytes)).decode("ascii").rstrip("=")


default_entropy = EntropySource()
