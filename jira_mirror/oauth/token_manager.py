"""
Token manager: authorize, store and refresh per-account OAuth tokens.

This is the single interface the rest of the application uses to obtain a
live access token for an Atlassian account.
"""

import secrets
import threading
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Dict, Optional, Union

from jira_mirror.auth import OAuthBearer
from jira_mirror.client_config import ClientConfig, parse_import_date
from jira_mirror.database.models import OAuthToken
from jira_mirror.database.repository import CredentialStore
from jira_mirror.errors import (
    CredentialNotFound, InvalidState, NoRefreshToken, OAuthError
)
from jira_mirror.oauth.encryption import TokenCipher
from jira_mirror.oauth.provider import (
    AtlassianOAuthProvider, TokenResponse, select_jira_site, site_api_url
)
from jira_mirror.oauth.state_store import StateStore
from jira_mirror.utils.helpers import ensure_utc, mask_secret, utc_now
from jira_mirror.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class AuthorizationRequest:
    """Where to send the user, and the state that must come back."""

    redirect_url: str
    state: str


class OAuthTokenManager:
    """
    Owns the OAuth lifecycle of every account:
    authorization → token acquisition → refresh → revocation.
    """

    def __init__(
        self,
        credentials: CredentialStore,
        provider: AtlassianOAuthProvider,
        cipher: TokenCipher,
        states: StateStore,
        clock: Callable[[], datetime] = utc_now
    ):
        self.credentials = credentials
        self.provider = provider
        self.cipher = cipher
        self.states = states
        self._clock = clock

        # One refresh in flight per account
        self._refresh_locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _refresh_lock(self, account_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._refresh_locks.setdefault(account_id, threading.Lock())

    def _is_expired(self, record: OAuthToken) -> bool:
        return ensure_utc(record.expires_at) <= self._clock()

    # ========================================
    # Authorization Flow
    # ========================================

    def begin_authorization(self) -> AuthorizationRequest:
        """Issue a CSRF state and build the Atlassian consent URL."""
        state = secrets.token_hex(32)
        redirect_url = self.provider.authorization_url(state)
        self.states.put(state)

        logger.info(f"OAuth authorization initiated (state {mask_secret(state)})")
        return AuthorizationRequest(redirect_url=redirect_url, state=state)

    def complete_authorization(self, code: str, state: str) -> OAuthToken:
        """
        Handle the OAuth callback.

        Args:
            code: Authorization code from the redirect
            state: State value from the redirect

        Returns:
            The stored credential

        Raises:
            InvalidState: If the state is unknown, expired or already used
            TokenExchangeError: If Atlassian rejects the code or profile calls
        """
        if not state or not self.states.consume(state):
            logger.error(f"OAuth callback with invalid state {mask_secret(state)}")
            raise InvalidState("Invalid or expired state parameter")

        if not code:
            raise OAuthError("Missing authorization code")

        tokens = self.provider.exchange_code(code)
        user_info = self.provider.get_user_info(tokens.access_token)
        sites = self.provider.get_accessible_sites(tokens.access_token)

        site = select_jira_site(sites)
        if site is None:
            logger.warning(f"No Jira site found in accessible resources ({len(sites)} sites)")

        account_id = user_info.get('account_id')
        if not account_id:
            raise OAuthError("Atlassian profile did not include an account id")

        record = self.save_tokens(
            account_id,
            tokens,
            user_info=user_info,
            cloud_id=site.get('id') if site else None,
            site_url=site.get('url') if site else None
        )

        logger.info(f"OAuth tokens saved for account {account_id} (site: {record.site_url})")
        return record

    def save_tokens(
        self,
        account_id: str,
        tokens: TokenResponse,
        user_info: Dict = None,
        cloud_id: str = None,
        site_url: str = None
    ) -> OAuthToken:
        """Encrypt and store a token pair; profile and site are kept unless given."""
        values = {
            'access_token': self.cipher.encrypt(tokens.access_token),
            'refresh_token': self.cipher.encrypt(tokens.refresh_token) if tokens.refresh_token else None,
            'expires_at': self._clock() + timedelta(seconds=tokens.expires_in),
            'scope': tokens.scope,
        }
        if cloud_id:
            values['cloud_id'] = cloud_id
        if site_url:
            values['site_url'] = site_url
        if user_info:
            values['user_account_id'] = user_info.get('account_id')
            values['user_email'] = user_info.get('email')
            values['user_name'] = user_info.get('name')

        record = self.credentials.save(account_id, values)
        logger.info(f"OAuth tokens stored for {account_id} (refresh token: {bool(tokens.refresh_token)})")
        return record

    # ========================================
    # Token Access
    # ========================================

    def get_valid_access_token(self, account_id: str) -> Optional[str]:
        """
        Return a live access token, refreshing it if it has expired.

        Returns None when there is no credential, when it is expired without
        a refresh token, or when the refresh fails. The caller must then run
        the authorization flow again.
        """
        record = self.credentials.get(account_id)
        if record is None:
            return None

        if self._is_expired(record):
            if not record.refresh_token:
                logger.warning(f"Access token expired and no refresh token available for {account_id}")
                return None

            with self._refresh_lock(account_id):
                # Another caller may have refreshed while we waited
                record = self.credentials.get(account_id)
                if record is None:
                    return None
                if self._is_expired(record):
                    try:
                        self._refresh_record(record)
                    except OAuthError as e:
                        logger.error(f"Failed to refresh expired token for {account_id}: {e.message}")
                        return None
                    record = self.credentials.get(account_id)
                    if record is None:
                        return None

        try:
            return self.cipher.decrypt(record.access_token)
        except OAuthError as e:
            logger.error(f"Stored access token for {account_id} cannot be decrypted: {e.message}")
            return None

    def _refresh_record(self, record: OAuthToken) -> TokenResponse:
        refresh_token = self.cipher.decrypt(record.refresh_token)
        tokens = self.provider.refresh(refresh_token)

        # Atlassian rotates refresh tokens; keep the old one if none came back
        if not tokens.refresh_token:
            tokens.refresh_token = refresh_token

        self.save_tokens(record.account_id, tokens)
        logger.info(f"Refreshed access token for {record.account_id}")
        return tokens

    def refresh(self, account_id: str) -> TokenResponse:
        """
        Explicitly refresh an account's tokens.

        Raises:
            CredentialNotFound: If the account has no stored credential
            NoRefreshToken: If no refresh token is stored
        """
        with self._refresh_lock(account_id):
            record = self.credentials.get(account_id)
            if record is None:
                raise CredentialNotFound(f"No stored credential for account {account_id}")
            if not record.refresh_token:
                raise NoRefreshToken("No refresh token found for this account")
            return self._refresh_record(record)

    def revoke(self, account_id: str) -> None:
        """
        Delete the stored credential.

        Raises:
            CredentialNotFound: If nothing is stored for the account
        """
        self.credentials.delete(account_id)
        logger.info(f"OAuth tokens deleted for {account_id}")

    def get_status(self, account_id: str) -> Dict:
        """Authentication status for display; never exposes tokens."""
        record = self.credentials.get(account_id)
        if record is None:
            return {'authenticated': False, 'message': 'No tokens found for this account'}

        expired = self._is_expired(record)
        has_refresh_token = bool(record.refresh_token)

        return {
            'authenticated': not expired or has_refresh_token,
            'expired': expired,
            'has_refresh_token': has_refresh_token,
            'expires_at': ensure_utc(record.expires_at),
            'user_email': record.user_email,
            'user_name': record.user_name,
            'site_url': record.site_url,
            'cloud_id': record.cloud_id,
        }

    def build_client_config(
        self,
        account_id: str,
        project_key: str,
        team_name: str,
        import_since: Union[str, date]
    ) -> ClientConfig:
        """
        Client configuration for importing through an OAuth account.

        Raises:
            CredentialNotFound: If no usable token or site is available
        """
        token = self.get_valid_access_token(account_id)
        if token is None:
            raise CredentialNotFound(f"No valid OAuth token for account {account_id}; authorize again")

        record = self.credentials.get(account_id)
        if record is None or not record.cloud_id:
            raise CredentialNotFound(f"No Jira site is linked to account {account_id}")

        return ClientConfig(
            base_url=site_api_url(record.cloud_id),
            auth=OAuthBearer(access_token=token),
            project_key=project_key,
            team_name=team_name,
            import_since=parse_import_date(import_since)
        ).validate()
