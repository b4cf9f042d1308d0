"""Symmetric encryption of factor secrets at rest."""

import base64
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..config import Settings, settings as default_settings


def generate_key(password: str, salt: bytes) -> bytes:
    """Derive a Fernet key from a passphrase."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=100000,
    )
    return base64.urlsafe_b64encode(kdf.derive(password.encode()))


class SecretCipher:
    """Encrypts TOTP seeds before they reach the secret store."""

    def __init__(self, config: Optional[Settings] = None):
        config = config or default_settings
        key = generate_key(config.ENCRYPTION_KEY, config.ENCRYPTION_SALT.encode())
        self._fernet = Fernet(key)

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a stored secret. Raises ``ValueError`` on tampering or key mismatch."""
        try:
            return self._fernet.decrypt(ciphertext.encode()).decode()
        except InvalidToken as e:
            raise ValueError("Stored secret could not be decrypted") from e
