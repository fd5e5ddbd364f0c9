"""
Unit Tests for the OAuth Token Manager
Tests the authorization flow, token refresh and revocation with a mocked
identity provider and a SQLite credential store.
"""

import json
import secrets
import threading
import time
import unittest
from datetime import datetime, timedelta
from types import SimpleNamespace
from unittest.mock import Mock

import pytz

from jira_mirror.auth import OAuthBearer
from jira_mirror.database.connection import DatabaseConnection
from jira_mirror.database.repository import CredentialStore, SqlAlchemyCredentialStore
from jira_mirror.errors import (
    CredentialNotFound, InvalidState, NoRefreshToken, TokenExchangeError
)
from jira_mirror.oauth.encryption import TokenCipher
from jira_mirror.oauth.provider import AtlassianOAuthProvider, TokenResponse
from jira_mirror.oauth.state_store import InMemoryStateStore
from jira_mirror.oauth.token_manager import OAuthTokenManager
from jira_mirror.utils.helpers import ensure_utc

SITES = [
    {'id': 'confluence-1', 'url': 'https://wiki.example.com', 'scopes': ['read:confluence-content.all']},
    {'id': 'cloud-1', 'url': 'https://example.atlassian.net', 'scopes': ['read:jira-work', 'offline_access']},
]

USER = {'account_id': 'acc-1', 'email': 'sam@example.com', 'name': 'Sam Doe'}


class FakeClock:

    def __init__(self):
        self.now = datetime(2024, 1, 1, 12, 0, tzinfo=pytz.UTC)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


class MemoryCredentialStore(CredentialStore):
    """Thread-safe credential store for concurrency tests."""

    def __init__(self):
        self.records = {}
        self.lock = threading.Lock()

    def get(self, account_id):
        with self.lock:
            record = self.records.get(account_id)
            return SimpleNamespace(**vars(record)) if record else None

    def save(self, account_id, values):
        with self.lock:
            record = self.records.setdefault(
                account_id, SimpleNamespace(account_id=account_id, refresh_token=None)
            )
            for name, value in values.items():
                setattr(record, name, value)
            return record

    def delete(self, account_id):
        with self.lock:
            if self.records.pop(account_id, None) is None:
                raise CredentialNotFound(account_id)


class TokenManagerTestCase(unittest.TestCase):

    def setUp(self):
        self.db = DatabaseConnection('sqlite://')
        self.db.create_tables()
        self.clock = FakeClock()
        self.provider = Mock()
        self.provider.authorization_url.side_effect = lambda state: f'https://auth.example.com/authorize?state={state}'
        self.provider.get_user_info.return_value = USER
        self.provider.get_accessible_sites.return_value = SITES
        self.cipher = TokenCipher(secrets.token_hex(32))
        self.credentials = SqlAlchemyCredentialStore(self.db)
        self.manager = OAuthTokenManager(
            credentials=self.credentials,
            provider=self.provider,
            cipher=self.cipher,
            states=InMemoryStateStore(clock=self.clock),
            clock=self.clock
        )

    def tearDown(self):
        self.db.dispose()

    def store_tokens(self, access='access-1', refresh='refresh-1', expires_in=3600):
        return self.manager.save_tokens(
            'acc-1',
            TokenResponse(access_token=access, expires_in=expires_in, refresh_token=refresh),
            user_info=USER,
            cloud_id='cloud-1',
            site_url='https://example.atlassian.net'
        )


class TestAuthorizationFlow(TokenManagerTestCase):
    """Test consent URL, state handling and the callback."""

    def test_begin_authorization_issues_state(self):
        request = self.manager.begin_authorization()
        self.assertEqual(len(request.state), 64)
        self.assertIn(request.state, request.redirect_url)

    def test_complete_authorization_stores_encrypted_tokens(self):
        self.provider.exchange_code.return_value = TokenResponse('access-1', 3600, 'read:jira-work', 'refresh-1')
        request = self.manager.begin_authorization()

        self.manager.complete_authorization('code-1', request.state)

        record = self.credentials.get('acc-1')
        self.assertNotEqual(record.access_token, 'access-1')
        self.assertEqual(self.cipher.decrypt(record.access_token), 'access-1')
        self.assertEqual(self.cipher.decrypt(record.refresh_token), 'refresh-1')
        self.assertEqual(record.cloud_id, 'cloud-1')
        self.assertEqual(record.user_email, 'sam@example.com')
        self.assertEqual(ensure_utc(record.expires_at), self.clock.now + timedelta(seconds=3600))
        self.provider.exchange_code.assert_called_once_with('code-1')

    def test_state_accepted_only_once(self):
        self.provider.exchange_code.return_value = TokenResponse('access-1', 3600, refresh_token='refresh-1')
        request = self.manager.begin_authorization()

        self.manager.complete_authorization('code-1', request.state)
        with self.assertRaises(InvalidState):
            self.manager.complete_authorization('code-1', request.state)

    def test_unknown_state_rejected(self):
        with self.assertRaises(InvalidState):
            self.manager.complete_authorization('code-1', 'forged')
        self.provider.exchange_code.assert_not_called()

    def test_expired_state_rejected(self):
        request = self.manager.begin_authorization()
        self.clock.advance(601)
        with self.assertRaises(InvalidState):
            self.manager.complete_authorization('code-1', request.state)

    def test_no_jira_site_logs_warning(self):
        self.provider.exchange_code.return_value = TokenResponse('access-1', 3600)
        self.provider.get_accessible_sites.return_value = [SITES[0]]
        request = self.manager.begin_authorization()

        with self.assertLogs('jira_mirror.oauth.token_manager', level='WARNING'):
            record = self.manager.complete_authorization('code-1', request.state)

        self.assertIsNone(record.cloud_id)

    def test_provider_failure_propagates(self):
        self.provider.exchange_code.side_effect = TokenExchangeError('Failed to exchange authorization code: bad', 400)
        request = self.manager.begin_authorization()
        with self.assertRaises(TokenExchangeError):
            self.manager.complete_authorization('bad-code', request.state)


class TestTokenAccess(TokenManagerTestCase):
    """Test access token retrieval and refresh."""

    def test_valid_token_returned_without_refresh(self):
        self.store_tokens()
        self.assertEqual(self.manager.get_valid_access_token('acc-1'), 'access-1')
        self.provider.refresh.assert_not_called()

    def test_missing_account(self):
        self.assertIsNone(self.manager.get_valid_access_token('nobody'))

    def test_expired_token_is_refreshed(self):
        self.store_tokens(expires_in=3600)
        self.clock.advance(3601)
        self.provider.refresh.return_value = TokenResponse('access-2', 3600, refresh_token='refresh-2')

        self.assertEqual(self.manager.get_valid_access_token('acc-1'), 'access-2')

        self.provider.refresh.assert_called_once_with('refresh-1')
        record = self.credentials.get('acc-1')
        self.assertEqual(self.cipher.decrypt(record.refresh_token), 'refresh-2')
        self.assertEqual(ensure_utc(record.expires_at), self.clock.now + timedelta(seconds=3600))
        self.assertEqual(record.cloud_id, 'cloud-1')

    def test_refresh_keeps_old_refresh_token_when_none_returned(self):
        self.store_tokens()
        self.clock.advance(3601)
        self.provider.refresh.return_value = TokenResponse('access-2', 3600)

        self.manager.get_valid_access_token('acc-1')

        record = self.credentials.get('acc-1')
        self.assertEqual(self.cipher.decrypt(record.refresh_token), 'refresh-1')

    def test_expired_without_refresh_token(self):
        self.store_tokens(refresh=None)
        self.clock.advance(3601)
        self.assertIsNone(self.manager.get_valid_access_token('acc-1'))
        self.provider.refresh.assert_not_called()

    def test_failed_refresh_returns_none(self):
        self.store_tokens()
        self.clock.advance(3601)
        self.provider.refresh.side_effect = TokenExchangeError('Failed to refresh token: invalid_grant', 400)
        self.assertIsNone(self.manager.get_valid_access_token('acc-1'))

    def test_concurrent_callers_share_one_refresh(self):
        store = MemoryCredentialStore()
        manager = OAuthTokenManager(store, self.provider, self.cipher, InMemoryStateStore(), clock=self.clock)
        manager.save_tokens('acc-1', TokenResponse('access-1', 60, refresh_token='refresh-1'))
        self.clock.advance(61)

        def slow_refresh(refresh_token):
            time.sleep(0.1)
            return TokenResponse('access-2', 3600, refresh_token='refresh-2')

        self.provider.refresh.side_effect = slow_refresh

        results = []
        threads = [
            threading.Thread(target=lambda: results.append(manager.get_valid_access_token('acc-1')))
            for _ in range(4)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(results, ['access-2'] * 4)
        self.assertEqual(self.provider.refresh.call_count, 1)

    def test_explicit_refresh_without_refresh_token(self):
        self.store_tokens(refresh=None)
        with self.assertRaises(NoRefreshToken):
            self.manager.refresh('acc-1')

    def test_explicit_refresh_unknown_account(self):
        with self.assertRaises(CredentialNotFound):
            self.manager.refresh('nobody')


class TestRevocationAndStatus(TokenManagerTestCase):
    """Test revoke, status and client configuration."""

    def test_revoke(self):
        self.store_tokens()
        self.manager.revoke('acc-1')
        self.assertIsNone(self.credentials.get('acc-1'))

    def test_revoke_unknown_account(self):
        with self.assertRaises(CredentialNotFound):
            self.manager.revoke('nobody')

    def test_status_without_tokens(self):
        self.assertFalse(self.manager.get_status('nobody')['authenticated'])

    def test_status_never_exposes_tokens(self):
        self.store_tokens()
        status = self.manager.get_status('acc-1')
        self.assertTrue(status['authenticated'])
        self.assertFalse(status['expired'])
        self.assertNotIn('access_token', status)
        self.assertEqual(status['site_url'], 'https://example.atlassian.net')

    def test_build_client_config(self):
        self.store_tokens()
        config = self.manager.build_client_config('acc-1', 'PROJ', 'Team A', '2024-01-01')

        self.assertEqual(config.base_url, 'https://api.atlassian.com/ex/jira/cloud-1')
        self.assertEqual(config.auth, OAuthBearer(access_token='access-1'))
        self.assertEqual(config.auth_mode, 'oauth')

    def test_build_client_config_without_token(self):
        with self.assertRaises(CredentialNotFound):
            self.manager.build_client_config('nobody', 'PROJ', 'Team A', '2024-01-01')

def json_response(payload, status_code=200):
    response = Mock()
    response.status_code = status_code
    response.text = json.dumps(payload)
    response.json.return_value = payload
    return response


def html_response(status_code=200):
    body = '<html><body>Gateway page</body></html>'
    response = Mock()
    response.status_code = status_code
    response.text = body
    response.json.side_effect = json.JSONDecodeError('Expecting value', body, 0)
    return response


class TestTokenLifecycleWithAtlassianProvider(unittest.TestCase):
    """Authorize, expire and refresh through the real provider and the SQL store."""

    def setUp(self):
        self.db = DatabaseConnection('sqlite://')
        self.db.create_tables()
        self.clock = FakeClock()
        self.session = Mock()
        self.session.get.side_effect = lambda url, **kwargs: json_response(
            USER if url.endswith('/me') else SITES
        )
        self.cipher = TokenCipher(secrets.token_hex(32))
        self.credentials = SqlAlchemyCredentialStore(self.db)
        self.manager = OAuthTokenManager(
            credentials=self.credentials,
            provider=AtlassianOAuthProvider(client_id='client', client_secret='secret', session=self.session),
            cipher=self.cipher,
            states=InMemoryStateStore(clock=self.clock),
            clock=self.clock
        )

    def tearDown(self):
        self.db.dispose()

    def authorize(self):
        self.session.post.return_value = json_response(
            {'access_token': 'access-1', 'expires_in': 3600, 'refresh_token': 'refresh-1', 'scope': 'read:jira-work'}
        )
        request = self.manager.begin_authorization()
        return self.manager.complete_authorization('code-1', request.state)

    def test_authorize_expire_refresh(self):
        self.authorize()
        self.clock.advance(3601)
        self.session.post.return_value = json_response(
            {'access_token': 'access-2', 'expires_in': 3600, 'refresh_token': 'refresh-2'}
        )

        self.assertEqual(self.manager.get_valid_access_token('acc-1'), 'access-2')

        self.assertEqual(self.session.post.call_args.kwargs['json']['refresh_token'], 'refresh-1')
        record = self.credentials.get('acc-1')
        self.assertEqual(ensure_utc(record.expires_at), self.clock.now + timedelta(seconds=3600))
        self.assertEqual(self.cipher.decrypt(record.refresh_token), 'refresh-2')
        self.assertEqual(record.cloud_id, 'cloud-1')
        self.assertEqual(record.user_email, 'sam@example.com')

        # Fresh token is served without another refresh
        self.assertEqual(self.manager.get_valid_access_token('acc-1'), 'access-2')
        self.assertEqual(self.session.post.call_count, 2)

    def test_non_json_refresh_response_returns_none(self):
        self.authorize()
        self.clock.advance(3601)
        self.session.post.return_value = html_response()

        self.assertIsNone(self.manager.get_valid_access_token('acc-1'))

        record = self.credentials.get('acc-1')
        self.assertEqual(self.cipher.decrypt(record.access_token), 'access-1')
        self.assertEqual(self.cipher.decrypt(record.refresh_token), 'refresh-1')

    def test_non_json_token_response_on_callback(self):
        self.session.post.return_value = html_response()
        request = self.manager.begin_authorization()

        with self.assertRaises(TokenExchangeError):
            self.manager.complete_authorization('code-1', request.state)
        self.assertIsNone(self.credentials.get('acc-1'))


if __name__ == '__main__':
    unittest.main()
