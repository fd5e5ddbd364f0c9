"""
Exception Hierarchy Module
Error types raised by the Jira client, the OAuth token manager and the importer.
"""

from typing import List, Optional


class JiraMirrorError(Exception):
    """Base class for all errors raised by this package."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


# ========================================
# Configuration Errors
# ========================================

class InvalidConfiguration(JiraMirrorError):
    """Client configuration failed validation. Never retried."""

    def __init__(self, message: str, problems: Optional[List[str]] = None):
        self.problems = problems or [message]
        super().__init__(message)


class InvalidCredentialFormat(InvalidConfiguration):
    """Credential material could not be turned into request headers."""


# ========================================
# Jira API Errors
# ========================================

class JiraAPIError(JiraMirrorError):
    """Custom exception for Jira API errors."""

    def __init__(self, message: str, status_code: int = None, response: dict = None):
        self.status_code = status_code
        self.response = response
        super().__init__(message)


class Unauthorized(JiraAPIError):
    """Jira rejected the credentials (HTTP 401)."""


class Forbidden(JiraAPIError):
    """Credentials are valid but lack permission (HTTP 403)."""


class Unreachable(JiraAPIError):
    """The Jira server could not be reached at all."""


class UnknownAPIError(JiraAPIError):
    """Any other failure response; the remote status code is preserved."""


# ========================================
# OAuth Errors
# ========================================

class OAuthError(JiraMirrorError):
    """Base class for delegated authorization failures."""


class InvalidState(OAuthError):
    """CSRF state is unknown, expired or already consumed."""


class NoRefreshToken(OAuthError):
    """A refresh was requested but no refresh token is stored."""


class CredentialNotFound(OAuthError):
    """No stored credential exists for the account."""


class TokenExchangeError(OAuthError):
    """The identity provider rejected a token or profile request."""

    def __init__(self, message: str, status_code: int = None):
        self.status_code = status_code
        super().__init__(message)


class EncryptionKeyMissing(OAuthError):
    """No token encryption key is configured in a production deployment."""
