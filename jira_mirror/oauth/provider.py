"""
Atlassian OAuth 2.0 (3LO) endpoints.

Thin wrapper over the authorization, token, profile and accessible-resources
endpoints of Atlassian's identity provider.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional
from urllib.parse import urlencode

import requests

from jira_mirror.config_manager import ConfigManager
from jira_mirror.errors import OAuthError, TokenExchangeError
from jira_mirror.utils.logger import get_logger

logger = get_logger(__name__)

AUTHORIZE_URL = 'https://auth.atlassian.com/authorize'
TOKEN_URL = 'https://auth.atlassian.com/oauth/token'
PROFILE_URL = 'https://api.atlassian.com/me'
RESOURCES_URL = 'https://api.atlassian.com/oauth/token/accessible-resources'
API_GATEWAY_URL = 'https://api.atlassian.com/ex/jira'

DEFAULT_CALLBACK_URL = 'http://localhost:4000/oauth/callback'
DEFAULT_SCOPES = 'read:jira-work read:jira-user write:jira-work offline_access'
JIRA_SITE_SCOPES = ('read:jira-work', 'write:jira-work')


@dataclass
class TokenResponse:
    """Token endpoint response."""

    access_token: str
    expires_in: int
    scope: str = ''
    refresh_token: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict) -> 'TokenResponse':
        if not isinstance(data, dict) or not data.get('access_token'):
            raise TokenExchangeError("Token response did not contain an access token")
        return cls(
            access_token=data['access_token'],
            expires_in=int(data.get('expires_in') or 3600),
            scope=data.get('scope') or '',
            refresh_token=data.get('refresh_token') or None
        )


def select_jira_site(sites: List[Dict]) -> Optional[Dict]:
    """First accessible resource that grants Jira read or write access."""
    for site in sites or []:
        scopes = site.get('scopes') or []
        if any(scope in scopes for scope in JIRA_SITE_SCOPES):
            return site
    return None


def site_api_url(cloud_id: str) -> str:
    """Base URL for Jira REST calls made with an OAuth token."""
    return f"{API_GATEWAY_URL}/{cloud_id}"


class AtlassianOAuthProvider:
    """Client for the Atlassian identity endpoints."""

    def __init__(
        self,
        client_id: str = None,
        client_secret: str = None,
        callback_url: str = None,
        scopes: str = None,
        session: requests.Session = None,
        timeout: int = 30
    ):
        oauth_config = ConfigManager().get_oauth_config()

        self.client_id = client_id or oauth_config.get('client_id')
        self.client_secret = client_secret or oauth_config.get('client_secret')
        self.callback_url = callback_url or oauth_config.get('callback_url') or DEFAULT_CALLBACK_URL
        self.scopes = scopes or oauth_config.get('scopes') or DEFAULT_SCOPES
        self.timeout = timeout
        self._session = session or requests.Session()

    def _require_client(self, need_secret: bool = True) -> None:
        if not self.client_id:
            raise OAuthError("JIRA_OAUTH_CLIENT_ID is not configured")
        if need_secret and not self.client_secret:
            raise OAuthError("JIRA_OAUTH_CLIENT_SECRET is not configured")

    def authorization_url(self, state: str) -> str:
        """Build the consent-screen URL the user is redirected to."""
        self._require_client(need_secret=False)

        params = {
            'audience': 'api.atlassian.com',
            'client_id': self.client_id,
            'scope': self.scopes,
            'redirect_uri': self.callback_url,
            'state': state,
            'response_type': 'code',
            'prompt': 'consent',
        }
        return f"{AUTHORIZE_URL}?{urlencode(params)}"

    def _post_token(self, payload: Dict, action: str) -> TokenResponse:
        self._require_client()
        payload = dict(payload, client_id=self.client_id, client_secret=self.client_secret)

        try:
            response = self._session.post(
                TOKEN_URL,
                json=payload,
                headers={'Content-Type': 'application/json'},
                timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to {action}: {e}")
            raise TokenExchangeError(f"Failed to {action}: {e}")

        if response.status_code >= 400:
            detail = self._error_detail(response)
            logger.error(f"Failed to {action} (status {response.status_code}): {detail}")
            raise TokenExchangeError(f"Failed to {action}: {detail}", response.status_code)

        return TokenResponse.from_dict(self._json(response, action))

    def exchange_code(self, code: str) -> TokenResponse:
        """Exchange an authorization code for an access/refresh token pair."""
        return self._post_token({
            'grant_type': 'authorization_code',
            'code': code,
            'redirect_uri': self.callback_url,
        }, 'exchange authorization code')

    def refresh(self, refresh_token: str) -> TokenResponse:
        """Exchange a refresh token for a new token pair."""
        return self._post_token({
            'grant_type': 'refresh_token',
            'refresh_token': refresh_token,
        }, 'refresh token')

    def _get(self, url: str, access_token: str, what: str):
        try:
            response = self._session.get(
                url,
                headers={'Authorization': f'Bearer {access_token}', 'Accept': 'application/json'},
                timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            raise TokenExchangeError(f"Failed to get {what}: {e}")

        if response.status_code >= 400:
            logger.error(f"Failed to get {what} (status {response.status_code})")
            raise TokenExchangeError(f"Failed to get {what}: HTTP {response.status_code}", response.status_code)

        return self._json(response, f"get {what}")

    @staticmethod
    def _json(response, action: str):
        try:
            return response.json()
        except ValueError:
            logger.error(f"Failed to {action}: response is not JSON (status {response.status_code})")
            raise TokenExchangeError(f"Failed to {action}: invalid response from Atlassian", response.status_code)

    def get_user_info(self, access_token: str) -> Dict:
        """Profile of the account that granted access."""
        user_info = self._get(PROFILE_URL, access_token, 'user information')
        if not isinstance(user_info, dict):
            raise TokenExchangeError("Failed to get user information: unexpected response")
        return user_info

    def get_accessible_sites(self, access_token: str) -> List[Dict]:
        """Sites (cloud ids) the token can reach."""
        sites = self._get(RESOURCES_URL, access_token, 'accessible sites')
        return [site for site in sites if isinstance(site, dict)] if isinstance(sites, list) else []

    @staticmethod
    def _error_detail(response) -> str:
        try:
            data = response.json()
        except ValueError:
            return (response.text or '')[:200] or f"HTTP {response.status_code}"
        if not isinstance(data, dict):
            return f"HTTP {response.status_code}"
        return data.get('error_description') or data.get('error') or f"HTTP {response.status_code}"
