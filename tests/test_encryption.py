"""
Unit Tests for Token Encryption
"""

import secrets
import unittest
from unittest.mock import patch

from jira_mirror.errors import EncryptionKeyMissing, OAuthError
from jira_mirror.oauth.encryption import TokenCipher, load_cipher


class TestTokenCipher(unittest.TestCase):
    """Test AES token encryption."""

    def setUp(self):
        self.cipher = TokenCipher(secrets.token_hex(32))

    def test_round_trip(self):
        value = 'eyJhbGciOiJIUzI1NiJ9.access-token'
        self.assertEqual(self.cipher.decrypt(self.cipher.encrypt(value)), value)

    def test_stored_format(self):
        iv_hex, ciphertext_hex = self.cipher.encrypt('token').split(':')
        self.assertEqual(len(iv_hex), 32)
        self.assertEqual(len(ciphertext_hex) % 32, 0)

    def test_same_plaintext_encrypts_differently(self):
        self.assertNotEqual(self.cipher.encrypt('token'), self.cipher.encrypt('token'))

    def test_ciphertext_does_not_contain_plaintext(self):
        self.assertNotIn('supersecret', self.cipher.encrypt('supersecret'))

    def test_wrong_key_cannot_decrypt(self):
        encrypted = self.cipher.encrypt('token')
        other = TokenCipher(secrets.token_hex(32))
        try:
            self.assertNotEqual(other.decrypt(encrypted), 'token')
        except (OAuthError, UnicodeDecodeError):
            pass

    def test_malformed_value(self):
        with self.assertRaises(OAuthError):
            self.cipher.decrypt('not-encrypted')
        with self.assertRaises(OAuthError):
            self.cipher.decrypt('zz:zz')

    def test_key_length_checked(self):
        with self.assertRaises(OAuthError):
            TokenCipher('abcd')
        with self.assertRaises(OAuthError):
            TokenCipher('not hex at all')


class TestLoadCipher(unittest.TestCase):
    """Test cipher construction from configuration."""

    def test_explicit_key(self):
        key = secrets.token_hex(32)
        cipher = load_cipher(key=key, production=True)
        self.assertEqual(cipher.decrypt(TokenCipher(key).encrypt('x')), 'x')

    @patch.dict('os.environ', {'OAUTH_ENCRYPTION_KEY': ''})
    @patch('jira_mirror.oauth.encryption.ConfigManager')
    def test_missing_key_in_production(self, mock_config):
        mock_config.return_value.get_oauth_config.return_value = {}
        with self.assertRaises(EncryptionKeyMissing):
            load_cipher(production=True)

    @patch.dict('os.environ', {'OAUTH_ENCRYPTION_KEY': ''})
    @patch('jira_mirror.oauth.encryption.ConfigManager')
    def test_missing_key_in_development_uses_random_key(self, mock_config):
        mock_config.return_value.get_oauth_config.return_value = {}
        cipher = load_cipher(production=False)
        self.assertEqual(cipher.decrypt(cipher.encrypt('token')), 'token')


if __name__ == '__main__':
    unittest.main()
