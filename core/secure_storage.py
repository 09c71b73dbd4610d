"""
Secure credential storage for the POESESSID session cookie.

The trade history endpoint only answers for a logged-in session, so the
cookie has to live in the config file. It is encrypted at rest with a key
derived from machine identifiers, so a copied config file is useless on
another machine.
"""

import base64
import logging
import os
import platform
from pathlib import Path
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from core.constants import APP_DIR_NAME

logger = logging.getLogger(__name__)


class SecureStorage:
    """
    Encrypts and decrypts sensitive credentials using machine-specific keys.

    The encryption key is derived from:
    - Machine hostname
    - Username
    - A random salt stored next to the config file
    """

    # Prefix to identify encrypted values
    ENCRYPTED_PREFIX = "enc:v1:"

    def __init__(self, salt_file: Optional[Path] = None):
        """
        Args:
            salt_file: Path to salt file. If None, uses default location.
        """
        if salt_file is None:
            salt_file = Path.home() / APP_DIR_NAME / ".salt"

        self._salt_file = salt_file
        self._salt = self._get_or_create_salt()
        self._fernet = self._create_fernet()

    def _get_or_create_salt(self) -> bytes:
        """Get existing salt or create a new random one."""
        if self._salt_file.exists():
            try:
                return self._salt_file.read_bytes()
            except OSError as e:
                logger.warning(f"Failed to read salt file: {e}")

        salt = os.urandom(32)
        try:
            self._salt_file.parent.mkdir(parents=True, exist_ok=True)
            self._salt_file.write_bytes(salt)
            if platform.system() != "Windows":
                os.chmod(self._salt_file, 0o600)
        except OSError as e:
            logger.warning(f"Failed to save salt file: {e}")

        return salt

    def _get_machine_identifier(self) -> bytes:
        hostname = platform.node() or "unknown-host"
        username = os.getenv("USER") or os.getenv("USERNAME") or "unknown-user"
        return f"{hostname}:{username}:poe-trade-history".encode("utf-8")

    def _create_fernet(self) -> Fernet:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=self._salt,
            iterations=480000,  # OWASP recommended minimum
        )
        key = base64.urlsafe_b64encode(kdf.derive(self._get_machine_identifier()))
        return Fernet(key)

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a string credential.

        Returns:
            Encrypted string with prefix, or "" for empty input.
        """
        if not plaintext:
            return ""
        encrypted = self._fernet.encrypt(plaintext.encode("utf-8"))
        return f"{self.ENCRYPTED_PREFIX}{encrypted.decode('utf-8')}"

    def decrypt(self, ciphertext: str) -> str:
        """
        Decrypt an encrypted credential.

        Plain (legacy) values are returned unchanged so they get encrypted
        on the next save.

        Returns:
            Decrypted plaintext, or empty string on failure.
        """
        if not ciphertext:
            return ""

        if ciphertext.startswith(self.ENCRYPTED_PREFIX):
            encrypted_data = ciphertext[len(self.ENCRYPTED_PREFIX):]
            try:
                return self._fernet.decrypt(encrypted_data.encode("utf-8")).decode("utf-8")
            except InvalidToken:
                logger.error(
                    "Decryption failed: invalid token. "
                    "Credential may have been encrypted on a different machine."
                )
                return ""

        logger.warning("Found unencrypted credential. It will be encrypted on next save.")
        return ciphertext

    def is_encrypted(self, value: str) -> bool:
        """Check if a value is already encrypted."""
        if not value:
            return True  # Empty is "safe"
        return value.startswith(self.ENCRYPTED_PREFIX)


_storage: Optional[SecureStorage] = None


def get_secure_storage() -> SecureStorage:
    """Get or create the global SecureStorage instance."""
    global _storage
    if _storage is None:
        _storage = SecureStorage()
    return _storage


def encrypt_credential(plaintext: str) -> str:
    """Convenience function to encrypt a credential."""
    return get_secure_storage().encrypt(plaintext)


def decrypt_credential(ciphertext: str) -> str:
    """Convenience function to decrypt a credential."""
    return get_secure_storage().decrypt(ciphertext)
