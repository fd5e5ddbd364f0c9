"""
Authentication Module
Header strategies for the three ways of talking to Jira: API credentials,
browser session cookies and OAuth bearer tokens.
"""

import base64
import re
from dataclasses import dataclass
from typing import Dict, List, Union

from jira_mirror.errors import InvalidCredentialFormat

# Attributes a browser adds to Set-Cookie lines; they are not cookies themselves.
COOKIE_ATTRIBUTES = frozenset({
    'path', 'domain', 'secure', 'httponly', 'samesite', 'expires', 'max-age'
})

_CONTROL_CHARS = re.compile(r'[\x00-\x1f\x7f]')


def create_auth_token(email: str, api_token: str) -> str:
    """Create a base64 encoded Basic auth token from email and API token."""
    credentials = f"{email}:{api_token}"
    return base64.b64encode(credentials.encode('utf-8')).decode('ascii')


def sanitize_cookie_string(raw: str) -> str:
    """
    Reduce a pasted cookie header to plain ``name=value`` pairs.

    Line breaks and control characters are removed, Set-Cookie attributes
    (Path, Domain, Secure, ...) are dropped and the remaining pairs are
    joined with ``"; "``. Applying it twice gives the same result.

    Raises:
        InvalidCredentialFormat: If no name=value pair survives
    """
    if not raw:
        raise InvalidCredentialFormat("Cookie string is empty")

    # Line breaks separate cookies just like semicolons do
    text = re.sub(r'[\r\n]+', ';', raw)
    text = _CONTROL_CHARS.sub('', text)

    pairs: List[str] = []
    for part in text.split(';'):
        part = part.strip()
        if not part or '=' not in part:
            continue

        name, value = part.split('=', 1)
        name = name.strip()
        if not name or name.lower() in COOKIE_ATTRIBUTES:
            continue

        pairs.append(f"{name}={value.strip()}")

    if not pairs:
        raise InvalidCredentialFormat("Cookie string contains no name=value pairs")

    return '; '.join(pairs)


@dataclass(frozen=True)
class ApiCredential:
    """Email + API token, sent as HTTP Basic auth."""

    email: str = ''
    api_token: str = ''
    # Already base64 encoded "email:token", as stored in saved configurations
    encoded_token: str = ''

    mode = 'credential'

    def headers(self) -> Dict[str, str]:
        token = self.encoded_token
        if not token:
            if not self.email or not self.api_token:
                raise InvalidCredentialFormat("Email and API token are required for API authentication")
            token = create_auth_token(self.email, self.api_token)
        return {'Authorization': f'Basic {token}'}

    def unauthorized_message(self) -> str:
        return "Invalid API credentials. Please check your email and API token."


@dataclass(frozen=True)
class CookieSession:
    """Session cookies copied from a logged-in browser."""

    cookies: str

    mode = 'cookie'

    def headers(self) -> Dict[str, str]:
        return {'Cookie': sanitize_cookie_string(self.cookies)}

    def unauthorized_message(self) -> str:
        return ("Invalid or expired cookies. Please refresh your browser session "
                "and copy new cookies.")


@dataclass(frozen=True)
class OAuthBearer:
    """Access token obtained through the OAuth authorization-code flow."""

    access_token: str

    mode = 'oauth'

    def headers(self) -> Dict[str, str]:
        if not self.access_token:
            raise InvalidCredentialFormat("OAuth access token is empty")
        return {'Authorization': f'Bearer {self.access_token}'}

    def unauthorized_message(self) -> str:
        return "OAuth access token was rejected. Please authorize the application again."


Authentication = Union[ApiCredential, CookieSession, OAuthBearer]


def authenticate(auth: Authentication) -> Dict[str, str]:
    """Build the authentication headers for a request."""
    return auth.headers()
