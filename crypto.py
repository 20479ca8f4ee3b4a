"""
crypto.py – Key derivation and PIN verification primitives.

This module contains CryptoManager, the single place responsible for every
cryptographic concern in the application:

  - Key derivation from the PIN using PBKDF2-HMAC-SHA256.
  - Salt and key-check file management (used to verify the PIN at login
    and to tell whether a PIN has been set up at all).

The key-check file is a Fernet token (AES-128-CBC + HMAC-SHA256, provided
by the 'cryptography' package) of a known plaintext.  A PIN is correct
exactly when the key derived from it decrypts that token.
"""

import base64
import logging
import os
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from config import APP_NAME, DEFAULT_CONFIG

logger = logging.getLogger(APP_NAME)

# Known plaintext stored (encrypted) in the key-check file.
KEYCHECK_TOKEN = b"keycheck"

SALT_LENGTH = 16


class CryptoManager:
    """
    Handles all cryptographic operations for the application.

    Parameters
    ----------
    config : AppConfig
        Application configuration object used for file paths and the
        PBKDF2 iteration count.
    """

    def __init__(self, config) -> None:
        self.config = config
        self.iterations: int = int(
            config.get("kdf_iterations", DEFAULT_CONFIG["kdf_iterations"])
        )

    # ------------------------------------------------------------------
    # Key derivation
    # ------------------------------------------------------------------

    def derive_key(self, secret: str, salt: bytes) -> bytes:
        """
        Derive a 32-byte Fernet-compatible key from *secret* and *salt*
        using PBKDF2-HMAC-SHA256.

        The raw 32 bytes are URL-safe base64-encoded so they can be passed
        directly to Fernet().
        """
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=self.iterations,
        )
        raw_key = kdf.derive(secret.encode("utf-8"))
        return base64.urlsafe_b64encode(raw_key)

    # ------------------------------------------------------------------
    # Salt management
    # ------------------------------------------------------------------

    def create_and_store_salt(self) -> bytes:
        """
        Generate a new cryptographically-random salt, write it to
        config.salt_path, and return it.
        """
        salt = os.urandom(SALT_LENGTH)
        with open(self.config.salt_path, "wb") as fh:
            fh.write(salt)
        return salt

    def load_salt(self) -> Optional[bytes]:
        """
        Read and return the salt from disk.

        Returns None when the salt file does not exist, which signals a
        first-run state (no PIN configured yet).
        """
        if os.path.exists(self.config.salt_path):
            with open(self.config.salt_path, "rb") as fh:
                return fh.read()
        return None

    # ------------------------------------------------------------------
    # Key-check file
    # ------------------------------------------------------------------

    def has_keycheck_file(self) -> bool:
        return os.path.exists(self.config.keycheck_path)

    def create_keycheck_file(self, key: bytes) -> None:
        """
        Encrypt KEYCHECK_TOKEN with *key* and store the ciphertext in
        config.keycheck_path.
        """
        token = Fernet(key).encrypt(KEYCHECK_TOKEN)
        with open(self.config.keycheck_path, "wb") as fh:
            fh.write(token)

    def store_secret(self, secret: str) -> None:
        """Write a fresh salt and a key-check file derived from *secret*."""
        salt = self.create_and_store_salt()
        self.create_keycheck_file(self.derive_key(secret, salt))
        logger.info("Stored new salt and key-check file")

    def verify_secret(self, secret: str) -> bool:
        """
        Return True if *secret* correctly decrypts the key-check file.

        Returns False on a wrong secret, a missing salt/keycheck file, or
        a corrupted token.
        """
        salt = self.load_salt()
        if salt is None or not self.has_keycheck_file():
            return False
        try:
            with open(self.config.keycheck_path, "rb") as fh:
                ciphertext = fh.read()
            plaintext = Fernet(self.derive_key(secret, salt)).decrypt(ciphertext)
        except InvalidToken:
            return False
        except OSError:
            logger.exception("Failed to read key-check file")
            return False
        return plaintext == KEYCHECK_TOKEN
