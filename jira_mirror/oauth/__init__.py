"""
OAuth 2.0 (3LO) support: token encryption, CSRF states and the token manager.
"""

from jira_mirror.config_manager import ConfigManager
from jira_mirror.database.connection import DatabaseConnection
from jira_mirror.database.repository import SqlAlchemyCredentialStore
from jira_mirror.oauth.encryption import TokenCipher, load_cipher
from jira_mirror.oauth.provider import AtlassianOAuthProvider, TokenResponse
from jira_mirror.oauth.state_store import (
    DEFAULT_STATE_TTL, InMemoryStateStore, SqlStateStore, StateStore
)
from jira_mirror.oauth.token_manager import AuthorizationRequest, OAuthTokenManager


def create_token_manager(db: DatabaseConnection) -> OAuthTokenManager:
    """Wire a token manager from the oauth section of the configuration."""
    oauth_config = ConfigManager().get_oauth_config()
    ttl = oauth_config.get('state_ttl_seconds', DEFAULT_STATE_TTL)

    if oauth_config.get('state_store', 'database') == 'memory':
        states = InMemoryStateStore(ttl_seconds=ttl)
    else:
        states = SqlStateStore(db, ttl_seconds=ttl)

    return OAuthTokenManager(
        credentials=SqlAlchemyCredentialStore(db),
        provider=AtlassianOAuthProvider(),
        cipher=load_cipher(),
        states=states
    )


__all__ = [
    'AtlassianOAuthProvider',
    'AuthorizationRequest',
    'InMemoryStateStore',
    'OAuthTokenManager',
    'SqlStateStore',
    'StateStore',
    'TokenCipher',
    'TokenResponse',
    'create_token_manager',
    'load_cipher',
]
