"""
Token encryption: encrypt and decrypt OAuth tokens at rest.

Uses AES-256-CBC with PKCS7 padding from the ``cryptography`` library. Every
value gets a fresh random IV which is stored in front of the ciphertext as
``<iv hex>:<ciphertext hex>``, so a stored value can be decrypted with
nothing but the shared key.

The key is 32 bytes given as 64 hex characters (``oauth.encryption_key`` /
env var ``OAUTH_ENCRYPTION_KEY``). Generate one with::

    python -c "import secrets; print(secrets.token_hex(32))"
"""

import os
import secrets
from typing import Optional

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from jira_mirror.config_manager import ConfigManager
from jira_mirror.errors import EncryptionKeyMissing, OAuthError
from jira_mirror.utils.logger import get_logger

logger = get_logger(__name__)

KEY_BYTES = 32
IV_BYTES = 16


class TokenCipher:
    """Symmetric cipher for secrets stored in the database."""

    def __init__(self, key: str):
        try:
            raw_key = bytes.fromhex(key)
        except (TypeError, ValueError):
            raise OAuthError("Encryption key must be a hex string")

        if len(raw_key) != KEY_BYTES:
            raise OAuthError(f"Encryption key must be {KEY_BYTES} bytes ({KEY_BYTES * 2} hex characters)")

        self._key = raw_key

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a string; returns ``iv:ciphertext`` in hex."""
        iv = os.urandom(IV_BYTES)

        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(plaintext.encode('utf-8')) + padder.finalize()

        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()

        return f"{iv.hex()}:{ciphertext.hex()}"

    def decrypt(self, value: str) -> str:
        """Decrypt a value produced by encrypt()."""
        iv_hex, sep, ciphertext_hex = (value or '').partition(':')
        if not sep:
            raise OAuthError("Encrypted value is malformed (missing IV separator)")

        try:
            iv = bytes.fromhex(iv_hex)
            ciphertext = bytes.fromhex(ciphertext_hex)

            decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(ciphertext) + decryptor.finalize()

            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            plaintext = unpadder.update(padded) + unpadder.finalize()
        except ValueError as e:
            raise OAuthError(f"Failed to decrypt value: {e}")

        return plaintext.decode('utf-8')


def load_cipher(key: Optional[str] = None, production: Optional[bool] = None) -> TokenCipher:
    """
    Build the cipher from configuration.

    Without a key, production deployments fail hard; everything else gets a
    random key that only lives as long as the process.

    Raises:
        EncryptionKeyMissing: If no key is configured in production
    """
    config = ConfigManager()
    if key is None:
        key = config.get_oauth_config().get('encryption_key') or os.getenv('OAUTH_ENCRYPTION_KEY')
    if production is None:
        production = config.is_production()

    if not key:
        if production:
            logger.error("OAUTH_ENCRYPTION_KEY is not set in production! Tokens cannot be encrypted/decrypted.")
            raise EncryptionKeyMissing("OAUTH_ENCRYPTION_KEY environment variable is required in production")

        logger.warning("OAUTH_ENCRYPTION_KEY not set, using random key. Stored tokens will be unreadable after restart!")
        key = secrets.token_hex(KEY_BYTES)

    return TokenCipher(key)
