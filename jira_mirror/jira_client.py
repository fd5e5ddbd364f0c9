"""
Jira REST API Client Module
Handles all communication with the Jira Cloud REST API: JQL construction,
cursor pagination, error classification and record normalization.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Generator, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from jira_mirror.client_config import ClientConfig
from jira_mirror.config_manager import ConfigManager
from jira_mirror.errors import (
    Forbidden, JiraAPIError, Unauthorized, UnknownAPIError, Unreachable
)
from jira_mirror.utils.helpers import (
    parse_jira_date, parse_jira_datetime, safe_get, sanitize_string, truncate_to_day
)
from jira_mirror.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 30
DEFAULT_PAGE_SIZE = 100
MAX_PAGES = 50

# Stop reasons reported by FetchStats
EXHAUSTED = 'exhausted'
PAGE_LIMIT_EXCEEDED = 'page_limit_exceeded'
DEADLINE_EXCEEDED = 'deadline_exceeded'

# Custom fields of the Jira site this tool was built against
FIELD_ROUGH_ESTIMATE = 'customfield_10192'
FIELD_ORIGINAL_ESTIMATE = 'customfield_10193'
FIELD_REMAINING_ESTIMATE = 'customfield_10194'
FIELD_STORY_POINTS = 'customfield_10033'
FIELD_EPIC_LINK = 'customfield_10014'
FIELD_BACKLOG_PRIORITY = 'customfield_10019'
FIELD_SPRINT = 'customfield_10020'

SEARCH_FIELDS = [
    'key', 'summary', 'status', 'duedate', 'priority', 'assignee', 'customfield_10112',
    'fixVersions', FIELD_ROUGH_ESTIMATE, FIELD_ORIGINAL_ESTIMATE, FIELD_REMAINING_ESTIMATE,
    'issuetype', 'created', 'updated', 'resolutiondate', 'resolution',
    FIELD_STORY_POINTS, FIELD_EPIC_LINK, FIELD_BACKLOG_PRIORITY, FIELD_SPRINT
]

TEAM_FIELD = '"Team (Development)[Dropdown]"'
ISSUE_TYPES = 'Task, Story, "Bug (new development)", Bug'


class EntityKind(str, Enum):
    """Kinds of records the client can fetch."""

    EPICS = 'epics'
    ISSUES = 'issues'


@dataclass
class SearchPage:
    """One page of search results."""

    issues: List[Dict]
    next_cursor: Optional[str] = None


@dataclass
class ConnectionResult:
    """Outcome of a connection test."""

    ok: bool
    message: str
    identity: Optional[Dict] = None
    status_code: Optional[int] = None


@dataclass
class FetchStats:
    """Bookkeeping for the most recent fetch_all() call."""

    kind: str = ''
    pages: int = 0
    records: int = 0
    stop_reason: str = EXHAUSTED
    warnings: List[str] = field(default_factory=list)

    @property
    def truncated(self) -> bool:
        return self.stop_reason != EXHAUSTED


def build_jql(kind: EntityKind, config: ClientConfig) -> str:
    """
    Build the JQL query for a record kind.

    Project key, team name and date are interpolated verbatim. They come
    from validated configuration, not from end users, so no escaping is
    applied.
    """
    kind = EntityKind(kind)
    base = (
        f'project = "{config.project_key}" AND {TEAM_FIELD} in ("{config.team_name}") '
        f'AND (resolutiondate >= {config.import_since_str} OR resolutiondate IS EMPTY)'
    )

    if kind == EntityKind.EPICS:
        return f'{base} AND issuetype = Epic ORDER BY Rank ASC'
    return f'{base} AND issuetype in ({ISSUE_TYPES}) ORDER BY Rank ASC'


def select_latest_sprint(sprints: Any) -> Optional[Dict]:
    """
    Pick the most recently started sprint from a sprint field value.

    Sprints without a start date only win when nothing else has one.
    """
    if not isinstance(sprints, list) or not sprints:
        return None

    latest = sprints[0]
    latest_start = parse_jira_datetime(safe_get(latest, 'startDate'))

    for sprint in sprints[1:]:
        start = parse_jira_datetime(safe_get(sprint, 'startDate'))
        if start is None:
            continue
        if latest_start is None or start > latest_start:
            latest, latest_start = sprint, start

    return latest if isinstance(latest, dict) else None


def extract_epic_data(issue: Dict) -> Dict:
    """Flatten a raw epic from the search endpoint."""
    fields = issue.get('fields') or {}

    fix_versions = [
        version.get('name') for version in fields.get('fixVersions') or []
        if isinstance(version, dict) and version.get('name')
    ]

    return {
        'jira_key': issue.get('key'),
        'summary': sanitize_string(fields.get('summary') or '', 1000),
        'status': safe_get(fields, 'status', 'name', default=''),
        'due_date': parse_jira_date(fields.get('duedate')),
        'priority': safe_get(fields, 'priority', 'name'),
        'fix_versions': fix_versions or None,
        'rough_estimate': fields.get(FIELD_ROUGH_ESTIMATE),
        'original_estimate': fields.get(FIELD_ORIGINAL_ESTIMATE),
        'remaining_estimate': fields.get(FIELD_REMAINING_ESTIMATE),
    }


def extract_issue_data(issue: Dict) -> Dict:
    """Flatten a raw story/task/bug from the search endpoint."""
    fields = issue.get('fields') or {}

    sprint = select_latest_sprint(fields.get(FIELD_SPRINT))
    if sprint:
        sprint_state = sprint.get('state')
        last_sprint = sprint.get('name')
        sprint_start = parse_jira_datetime(sprint.get('startDate'))
        sprint_end = parse_jira_datetime(sprint.get('endDate'))
    else:
        sprint_state, last_sprint, sprint_start, sprint_end = 'backlog', None, None, None

    return {
        'jira_key': issue.get('key'),
        'issue_type': safe_get(fields, 'issuetype', 'name', default=''),
        'summary': sanitize_string(fields.get('summary') or '', 1000),
        'status': safe_get(fields, 'status', 'name', default=''),
        'priority': safe_get(fields, 'priority', 'name'),
        'assignee': safe_get(fields, 'assignee', 'displayName'),
        'due_date': parse_jira_date(fields.get('duedate')),
        'created': parse_jira_date(truncate_to_day(fields.get('created'))),
        'updated': parse_jira_date(truncate_to_day(fields.get('updated'))),
        'resolved': parse_jira_date(truncate_to_day(fields.get('resolutiondate'))),
        'resolution': safe_get(fields, 'resolution', 'name'),
        'story_points': fields.get(FIELD_STORY_POINTS),
        'epic_link': fields.get(FIELD_EPIC_LINK),
        'backlog_priority': fields.get(FIELD_BACKLOG_PRIORITY),
        'sprint_state': sprint_state,
        'last_assigned_sprint': last_sprint,
        'sprint_start_date': sprint_start,
        'sprint_end_date': sprint_end,
    }


EXTRACTORS = {
    EntityKind.EPICS: extract_epic_data,
    EntityKind.ISSUES: extract_issue_data,
}


class JiraClient:
    """
    Jira REST API client with cursor pagination, rate limiting and
    classified error handling.
    """

    def __init__(
        self,
        config: ClientConfig,
        session: requests.Session = None,
        timeout: int = None,
        page_size: int = None,
        max_pages: int = None,
        requests_per_second: float = None
    ):
        """
        Initialize Jira client.

        Args:
            config: Validated client configuration
            session: Optional pre-built HTTP session (mainly for tests)
            timeout: Per-request timeout in seconds
            page_size: Results requested per search page
            max_pages: Safety ceiling on pages fetched per query
            requests_per_second: Client-side rate limit (0 disables)
        """
        jira_config = ConfigManager().get_jira_config()

        self.config = config
        self.base_url = config.base_url.rstrip('/')
        self.timeout = timeout or jira_config.get('timeout', DEFAULT_TIMEOUT)
        self.page_size = page_size or jira_config.get('page_size', DEFAULT_PAGE_SIZE)
        self.max_pages = max_pages or jira_config.get('max_pages', MAX_PAGES)
        self.max_retries = jira_config.get('max_retries', 3)
        self.retry_delay = jira_config.get('retry_delay', 1)

        if requests_per_second is None:
            requests_per_second = jira_config.get('requests_per_second', 0)
        self.requests_per_second = requests_per_second

        self._headers = {
            'Accept': 'application/json',
            'Content-Type': 'application/json',
            'User-Agent': 'JiraMirror/1.0',
        }
        self._headers.update(config.auth.headers())

        self._last_request_time = 0.0
        self._session = session or self._create_session()
        self.last_fetch_stats: Optional[FetchStats] = None

        logger.info(f"Jira client initialized for {self.base_url} (auth: {config.auth_mode})")

    def _create_session(self) -> requests.Session:
        """Create requests session with retry logic."""
        session = requests.Session()

        # Transient failures only; the final response is classified by _make_request
        retry_strategy = Retry(
            total=self.max_retries,
            backoff_factor=self.retry_delay,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=['GET', 'POST'],
            raise_on_status=False
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount('https://', adapter)
        session.mount('http://', adapter)

        return session

    def _rate_limit(self) -> None:
        """Apply rate limiting between requests."""
        if not self.requests_per_second or self.requests_per_second <= 0:
            return

        min_interval = 1.0 / self.requests_per_second
        elapsed = time.time() - self._last_request_time

        if elapsed < min_interval:
            time.sleep(min_interval - elapsed)

        self._last_request_time = time.time()

    def _make_request(
        self,
        method: str,
        endpoint: str,
        params: Dict = None,
        json_data: Dict = None
    ) -> Dict:
        """
        Make HTTP request to Jira API.

        Args:
            method: HTTP method
            endpoint: API endpoint below /rest/
            params: Query parameters
            json_data: JSON body data

        Returns:
            Response JSON

        Raises:
            Unauthorized: On HTTP 401
            Forbidden: On HTTP 403
            Unreachable: If the server cannot be contacted
            UnknownAPIError: On any other failure
        """
        self._rate_limit()

        url = f"{self.base_url}/rest/{endpoint.lstrip('/')}"
        logger.debug(f"Jira API request: {method} {url}")

        try:
            response = self._session.request(
                method=method,
                url=url,
                headers=self._headers,
                params=params,
                json=json_data,
                timeout=self.timeout
            )
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            logger.error(f"Jira server unreachable at {self.base_url}: {e}")
            raise Unreachable("Cannot connect to Jira server. Please check the URL.")
        except requests.exceptions.RequestException as e:
            logger.error(f"Request failed: {e}")
            raise UnknownAPIError(f"Request failed: {str(e)}")

        status = response.status_code
        if status == 401:
            raise Unauthorized(self.config.auth.unauthorized_message(), 401)
        elif status == 403:
            raise Forbidden("Access forbidden. Please check your permissions.", 403)
        elif status >= 400:
            raise UnknownAPIError(
                f"API error: {(response.text or '')[:500]}",
                status,
                self._safe_json(response)
            )

        return self._safe_json(response) or {}

    @staticmethod
    def _safe_json(response) -> Optional[Dict]:
        if not response.text:
            return None
        try:
            return response.json()
        except ValueError:
            return None

    # ========================================
    # Search & Pagination
    # ========================================

    def fetch_page(self, jql: str, cursor: str = None) -> SearchPage:
        """
        Fetch one page from the enhanced JQL search endpoint.

        Args:
            jql: JQL query string
            cursor: nextPageToken from the previous page

        Returns:
            SearchPage with raw issues and the next cursor, if any
        """
        json_data = {
            'jql': jql,
            'maxResults': self.page_size,
            'fields': SEARCH_FIELDS,
        }
        if cursor:
            json_data['nextPageToken'] = cursor

        try:
            response = self._make_request('POST', 'api/3/search/jql', json_data=json_data)
        except JiraAPIError as e:
            logger.error(f"Jira search failed: {e.message} (status: {e.status_code})")
            raise

        return SearchPage(
            issues=response.get('issues') or [],
            next_cursor=response.get('nextPageToken') or None
        )

    def iter_pages(self, jql: str, deadline: float = None, stats: FetchStats = None) -> Generator[List[Dict], None, None]:
        """
        Yield raw result pages while the server hands out a cursor.

        Stops on an empty page, a missing/empty cursor, the page ceiling
        or the optional monotonic-clock deadline.
        """
        stats = stats if stats is not None else FetchStats()
        cursor = None

        while True:
            if stats.pages >= self.max_pages:
                message = f"Fetch stopped after {self.max_pages} pages ({stats.records} records); results are partial"
                logger.warning(message)
                stats.stop_reason = PAGE_LIMIT_EXCEEDED
                stats.warnings.append(message)
                break

            if deadline is not None and time.monotonic() >= deadline:
                message = f"Fetch stopped at run deadline after {stats.pages} pages; results are partial"
                logger.warning(message)
                stats.stop_reason = DEADLINE_EXCEEDED
                stats.warnings.append(message)
                break

            page = self.fetch_page(jql, cursor)
            stats.pages += 1

            if not page.issues:
                break

            stats.records += len(page.issues)
            logger.debug(f"Page {stats.pages} processed: {len(page.issues)} records, {stats.records} total")
            yield page.issues

            if not page.next_cursor:
                break
            cursor = page.next_cursor

    def fetch_all(self, kind: EntityKind, deadline: float = None) -> Generator[Dict, None, None]:
        """
        Lazily fetch and normalize every record of a kind.

        Args:
            kind: EntityKind.EPICS or EntityKind.ISSUES
            deadline: Optional time.monotonic() value after which paging stops

        Yields:
            Normalized record dictionaries
        """
        kind = EntityKind(kind)
        jql = build_jql(kind, self.config)
        extract = EXTRACTORS[kind]

        stats = FetchStats(kind=kind.value)
        self.last_fetch_stats = stats

        logger.info(f"Starting {kind.value} fetch with JQL: {jql[:200]}")

        for issues in self.iter_pages(jql, deadline=deadline, stats=stats):
            for issue in issues:
                yield extract(issue)

        logger.info(f"{kind.value.capitalize()} fetch completed: {stats.records} records in {stats.pages} pages")

    def fetch_epic_data(self, deadline: float = None) -> List[Dict]:
        """Fetch all epics for the configured team and project."""
        return list(self.fetch_all(EntityKind.EPICS, deadline=deadline))

    def fetch_issue_data(self, deadline: float = None) -> List[Dict]:
        """Fetch all stories, tasks and bugs for the configured team and project."""
        return list(self.fetch_all(EntityKind.ISSUES, deadline=deadline))

    # ========================================
    # Utility Methods
    # ========================================

    def test_connection(self) -> ConnectionResult:
        """Test connection and authentication against /myself."""
        try:
            user = self._make_request('GET', 'api/3/myself')
        except JiraAPIError as e:
            logger.error(f"Jira connection test failed ({self.config.auth_mode}): {e.message}")
            return ConnectionResult(
                ok=False,
                message=f"{e.message} (Status: {e.status_code or 'Unknown'})",
                status_code=e.status_code
            )

        display_name = user.get('displayName', 'unknown user')
        logger.info(f"Jira connection test successful as {display_name}")
        return ConnectionResult(
            ok=True,
            message=f"Connected successfully as {display_name}",
            identity=user
        )
