"""
Import Service Module
Orchestrates import runs: fetch epics/issues from Jira, upsert them into the
local mirror and record an auditable run log.
"""

import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from jira_mirror.client_config import ClientConfig, parse_import_date
from jira_mirror.config_manager import ConfigManager
from jira_mirror.database.models import ImportConfig, ImportRun, JiraEpic, JiraIssue
from jira_mirror.database.repository import ImportStore
from jira_mirror.jira_client import EntityKind, JiraClient
from jira_mirror.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_REPORTED_ERRORS = 20
DEFAULT_HISTORY_LIMIT = 50

ClientFactory = Callable[[ClientConfig], JiraClient]


class ImportKind(str, Enum):
    """What a run imports."""

    EPICS = 'epics'
    ISSUES = 'issues'
    FULL = 'full'

    @classmethod
    def parse(cls, value) -> 'ImportKind':
        """Accept enum members, canonical values and the singular aliases 'epic'/'issue'."""
        if isinstance(value, cls):
            return value
        aliases = {'epic': cls.EPICS, 'issue': cls.ISSUES}
        value = str(value).lower()
        return aliases.get(value) or cls(value)

    def entity_kinds(self) -> List[EntityKind]:
        if self == ImportKind.EPICS:
            return [EntityKind.EPICS]
        if self == ImportKind.ISSUES:
            return [EntityKind.ISSUES]
        return [EntityKind.EPICS, EntityKind.ISSUES]


@dataclass
class ImportResult:
    """Structured outcome of one run. Errors are messages, never tracebacks."""

    success: bool
    epics_processed: int = 0
    issues_processed: int = 0
    errors: List[str] = field(default_factory=list)
    error_count: int = 0
    warnings: List[str] = field(default_factory=list)
    run_id: Optional[int] = None

    @property
    def records_processed(self) -> int:
        return self.epics_processed + self.issues_processed

    def to_dict(self) -> Dict:
        return {
            'success': self.success,
            'epics_processed': self.epics_processed,
            'issues_processed': self.issues_processed,
            'errors': self.errors,
            'error_count': self.error_count,
            'warnings': self.warnings,
            'run_id': self.run_id,
        }


ERROR_PREFIX = {
    EntityKind.EPICS: 'Epic import failed',
    EntityKind.ISSUES: 'Issue import failed',
}


class ImportService:
    """
    Drives import runs against a storage port.
    Partial success is a normal outcome: one kind failing does not stop the other.
    """

    def __init__(
        self,
        store: ImportStore,
        client_factory: ClientFactory = JiraClient,
        concurrent_fetch: bool = None,
        max_run_seconds: float = None,
        max_reported_errors: int = None
    ):
        """
        Initialize import service.

        Args:
            store: Persistence port for configs, runs and records
            client_factory: Builds a JiraClient for a configuration
            concurrent_fetch: Fetch epics and issues in parallel on full runs
            max_run_seconds: Stop paging once a run has fetched this long (0 disables)
            max_reported_errors: How many error messages a result carries
        """
        import_config = ConfigManager().get_import_config()

        self.store = store
        self.client_factory = client_factory

        if concurrent_fetch is None:
            concurrent_fetch = import_config.get('concurrent_fetch', False)
        if max_run_seconds is None:
            max_run_seconds = import_config.get('max_run_seconds', 0)
        if max_reported_errors is None:
            max_reported_errors = import_config.get('max_reported_errors', DEFAULT_MAX_REPORTED_ERRORS)

        self.concurrent_fetch = bool(concurrent_fetch)
        self.max_run_seconds = max_run_seconds or 0
        self.max_reported_errors = max_reported_errors
        self.history_limit = import_config.get('history_limit', DEFAULT_HISTORY_LIMIT)

    # ========================================
    # Import Runs
    # ========================================

    def perform_import(self, config: ClientConfig, kind=ImportKind.FULL) -> ImportResult:
        """
        Run one complete import.

        Args:
            config: Validated client configuration
            kind: ImportKind (or 'epics' / 'issues' / 'full')

        Returns:
            ImportResult; failures are reported in it rather than raised
        """
        team_name, project_key = config.team_name, config.project_key
        errors: List[str] = []
        warnings: List[str] = []
        run_id = None
        counts = {EntityKind.EPICS: 0, EntityKind.ISSUES: 0}

        try:
            kind = ImportKind.parse(kind)
            run_id = self.store.create_run(team_name, project_key, kind.value)
            logger.info(f"Import run {run_id} started: {team_name}/{project_key} ({kind.value})")

            client = self.client_factory(config)

            connection = client.test_connection()
            if not connection.ok:
                raise ConnectionError(f"Failed to connect to Jira: {connection.message}")

            deadline = time.monotonic() + self.max_run_seconds if self.max_run_seconds else None

            for entity_kind, fetched in self._fetch_kinds(client, kind.entity_kinds(), deadline):
                try:
                    records, fetch_warnings = fetched()
                    warnings.extend(fetch_warnings)
                    counts[entity_kind] = self._import_records(entity_kind, records, team_name, project_key)
                except Exception as e:
                    message = f"{ERROR_PREFIX[entity_kind]}: {e}"
                    errors.append(message)
                    logger.error(f"Run {run_id}: {message}")

            success = not errors
            self.store.finish_run(
                run_id,
                'completed' if success else 'failed',
                counts[EntityKind.EPICS] + counts[EntityKind.ISSUES],
                '; '.join(errors) if errors else None
            )

            logger.info(
                f"Import run {run_id} finished: success={success}, "
                f"epics={counts[EntityKind.EPICS]}, issues={counts[EntityKind.ISSUES]}, errors={len(errors)}"
            )

            return self._result(success, counts, errors, warnings, run_id)

        except Exception as e:
            message = f"Import failed: {e}"
            errors.append(message)
            logger.error(f"Import for {team_name}/{project_key} failed: {e}")

            if run_id is not None:
                try:
                    self.store.finish_run(run_id, 'failed', 0, message)
                except Exception as log_error:
                    logger.error(f"Failed to update import log {run_id}: {log_error}")

            return self._result(False, {EntityKind.EPICS: 0, EntityKind.ISSUES: 0}, errors, warnings, run_id)

    def _result(self, success, counts, errors, warnings, run_id) -> ImportResult:
        return ImportResult(
            success=success,
            epics_processed=counts[EntityKind.EPICS],
            issues_processed=counts[EntityKind.ISSUES],
            errors=errors[:self.max_reported_errors],
            error_count=len(errors),
            warnings=warnings,
            run_id=run_id
        )

    def _fetch_kinds(self, client: JiraClient, kinds: List[EntityKind], deadline: Optional[float]):
        """
        Yield (kind, thunk) pairs; calling the thunk returns (records, warnings)
        or raises the fetch error for that kind.
        """
        def fetch(entity_kind: EntityKind) -> Tuple[List[Dict], List[str]]:
            records = list(client.fetch_all(entity_kind, deadline=deadline))
            stats = client.last_fetch_stats
            return records, list(stats.warnings) if stats else []

        if self.concurrent_fetch and len(kinds) > 1:
            # Each kind gets its own client; pages of one kind stay sequential
            def fetch_with_own_client(entity_kind: EntityKind):
                own_client = self.client_factory(client.config)
                records = list(own_client.fetch_all(entity_kind, deadline=deadline))
                stats = own_client.last_fetch_stats
                return records, list(stats.warnings) if stats else []

            with ThreadPoolExecutor(max_workers=len(kinds)) as executor:
                futures = [(k, executor.submit(fetch_with_own_client, k)) for k in kinds]
                for entity_kind, future in futures:
                    yield entity_kind, future.result
        else:
            for entity_kind in kinds:
                yield entity_kind, (lambda k=entity_kind: fetch(k))

    def _import_records(self, kind: EntityKind, records: List[Dict], team_name: str, project_key: str) -> int:
        """Upsert records of one kind; the first failure aborts the rest of the kind."""
        upsert = self.store.upsert_epic if kind == EntityKind.EPICS else self.store.upsert_issue
        processed = 0

        for record in records:
            try:
                upsert(record, team_name, project_key)
            except Exception as e:
                logger.error(f"Failed to import {record.get('jira_key')} for {team_name}/{project_key}: {e}")
                raise
            processed += 1

        logger.info(f"{kind.value.capitalize()} import completed: {processed} records for {team_name}/{project_key}")
        return processed

    # ========================================
    # Configuration
    # ========================================

    def save_import_config(
        self,
        team_name: str,
        project_key: str,
        jira_base_url: str,
        import_start_date,
        auth_type: str = 'credential',
        auth_token: str = None,
        cookies: str = None,
        oauth_account_id: str = None,
        is_active: bool = True
    ) -> ImportConfig:
        """Create or update the configuration for (team, project)."""
        config = self.store.save_config({
            'team_name': team_name,
            'project_key': project_key,
            'jira_base_url': jira_base_url,
            'import_start_date': parse_import_date(import_start_date),
            'auth_type': auth_type,
            'auth_token': auth_token,
            'cookies': cookies,
            'oauth_account_id': oauth_account_id,
            'is_active': is_active,
        })
        logger.info(f"Import configuration saved for {team_name}/{project_key} (id {config.id})")
        return config

    def save_client_config(self, config: ClientConfig, oauth_account_id: str = None) -> ImportConfig:
        """Persist the settings of a client configuration before running it."""
        auth_token = None
        cookies = None
        headers = config.auth.headers()
        if config.auth_mode == 'credential':
            auth_token = headers['Authorization'].split(' ', 1)[1]
        elif config.auth_mode == 'cookie':
            cookies = headers['Cookie']

        return self.save_import_config(
            team_name=config.team_name,
            project_key=config.project_key,
            jira_base_url=config.base_url,
            import_start_date=config.import_since,
            auth_type=config.auth_mode,
            auth_token=auth_token,
            cookies=cookies,
            oauth_account_id=oauth_account_id
        )

    def save_and_import(self, config: ClientConfig, kind=ImportKind.FULL, oauth_account_id: str = None) -> ImportResult:
        """Save the configuration, then run the import. A save failure fails the run."""
        try:
            self.save_client_config(config, oauth_account_id=oauth_account_id)
        except Exception as e:
            logger.error(f"Failed to save import configuration for {config.team_name}/{config.project_key}: {e}")
            return ImportResult(success=False, errors=[f"Import failed: {e}"], error_count=1)

        return self.perform_import(config, kind)

    def get_import_config(self, team_name: str, project_key: str) -> Optional[ImportConfig]:
        return self.store.get_config(team_name, project_key)

    def get_all_import_configs(self, active_only: bool = False) -> List[ImportConfig]:
        return self.store.list_configs(active_only=active_only)

    # ========================================
    # Queries
    # ========================================

    def get_import_history(self, team_name: str = None, project_key: str = None, limit: int = None) -> List[ImportRun]:
        """Newest runs first, optionally scoped to a team and/or project."""
        return self.store.list_runs(team_name, project_key, limit or self.history_limit)

    def get_imported_epics(self, team_name: str = None, project_key: str = None) -> List[JiraEpic]:
        return self.store.list_epics(team_name, project_key)

    def get_imported_issues(self, team_name: str = None, project_key: str = None) -> List[JiraIssue]:
        return self.store.list_issues(team_name, project_key)

    def get_import_statistics(self, team_name: str = None) -> Dict:
        return self.store.statistics(team_name)


def default_import_since(days: int = 30) -> date:
    """Default import start date: 30 days ago."""
    return date.today() - timedelta(days=days)
