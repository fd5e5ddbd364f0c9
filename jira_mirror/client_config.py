"""
Client Configuration Module
Immutable per-run settings for the Jira client and their validation.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import List, Optional, Union

from jira_mirror.auth import ApiCredential, Authentication, CookieSession, OAuthBearer
from jira_mirror.errors import InvalidConfiguration, InvalidCredentialFormat

DATE_PATTERN = re.compile(r'^\d{4}-\d{2}-\d{2}$')

AUTH_MODES = ('credential', 'cookie', 'oauth')


@dataclass(frozen=True)
class ClientConfig:
    """Everything the Jira client needs for one import run."""

    base_url: str
    auth: Authentication
    project_key: str
    team_name: str
    import_since: date

    @property
    def auth_mode(self) -> str:
        return self.auth.mode

    @property
    def import_since_str(self) -> str:
        return self.import_since.strftime('%Y-%m-%d')

    def validate(self) -> 'ClientConfig':
        """
        Check the configuration before it is used.

        Returns:
            The configuration itself, so calls can be chained

        Raises:
            InvalidConfiguration: Listing every problem found
        """
        errors = validate_client_config(self)
        if errors:
            raise InvalidConfiguration('; '.join(errors), errors)
        return self


def validate_client_config(config: ClientConfig) -> List[str]:
    """Return a list of human readable validation problems (empty when valid)."""
    errors = []

    if not config.base_url:
        errors.append('Jira base URL is required')
    elif not config.base_url.lower().startswith(('http://', 'https://')):
        errors.append('Jira base URL must start with http or https')

    if config.auth is None:
        errors.append('Authentication is required')
    else:
        try:
            config.auth.headers()
        except InvalidCredentialFormat as e:
            errors.append(e.message)

    if not config.project_key:
        errors.append('Project key is required')

    if not config.team_name:
        errors.append('Team name is required')

    if not isinstance(config.import_since, date):
        errors.append('Import start date is required')

    return errors


def parse_import_date(value: Union[str, date, None]) -> date:
    """
    Parse an import start date given as ``YYYY-MM-DD``.

    ISO timestamps are cut down to their date part first.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value:
        raise InvalidConfiguration('Import start date is required')
    if not isinstance(value, str):
        raise InvalidConfiguration('Import start date must be in YYYY-MM-DD format')

    value = value.split('T')[0].strip()
    if not DATE_PATTERN.match(value):
        raise InvalidConfiguration('Import start date must be in YYYY-MM-DD format')

    try:
        return date.fromisoformat(value)
    except ValueError:
        raise InvalidConfiguration(f'Import start date is not a valid date: {value}')


def build_client_config(
    base_url: str,
    project_key: str,
    team_name: str,
    import_since: Union[str, date],
    auth_mode: str = 'credential',
    email: str = None,
    api_token: str = None,
    auth_token: str = None,
    cookies: str = None,
    access_token: str = None
) -> ClientConfig:
    """
    Build and validate a ClientConfig from flat keyword arguments.

    Args:
        base_url: Jira site URL
        project_key: Jira project key
        team_name: Value of the team dropdown field
        import_since: Earliest resolution date to import
        auth_mode: 'credential', 'cookie' or 'oauth'
        email, api_token: Credential mode inputs
        auth_token: Credential mode, already base64 encoded
        cookies: Cookie mode input
        access_token: OAuth mode input

    Raises:
        InvalidConfiguration: If any input is missing or malformed
    """
    auth: Optional[Authentication]
    if auth_mode in ('credential', 'api'):
        auth = ApiCredential(email=email or '', api_token=api_token or '', encoded_token=auth_token or '')
    elif auth_mode == 'cookie':
        auth = CookieSession(cookies=cookies or '')
    elif auth_mode == 'oauth':
        auth = OAuthBearer(access_token=access_token or '')
    else:
        raise InvalidConfiguration(f"Auth mode must be one of {', '.join(AUTH_MODES)}")

    config = ClientConfig(
        base_url=(base_url or '').rstrip('/'),
        auth=auth,
        project_key=project_key,
        team_name=team_name,
        import_since=parse_import_date(import_since)
    )
    return config.validate()
