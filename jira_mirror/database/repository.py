"""
Storage Port Module
Abstract storage interfaces used by the importer and the OAuth token
manager, plus their SQLAlchemy implementations.
"""

from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Dict, List, Optional

from sqlalchemy import func

from jira_mirror.database.connection import DatabaseConnection
from jira_mirror.database.models import (
    ImportConfig, ImportRun, JiraEpic, JiraIssue, OAuthToken
)
from jira_mirror.errors import CredentialNotFound
from jira_mirror.utils.helpers import utc_now
from jira_mirror.utils.logger import get_logger

logger = get_logger(__name__)

EPIC_FIELDS = (
    'summary', 'status', 'due_date', 'priority', 'fix_versions',
    'rough_estimate', 'original_estimate', 'remaining_estimate'
)

ISSUE_FIELDS = (
    'issue_type', 'summary', 'status', 'priority', 'assignee', 'due_date',
    'created', 'updated', 'resolved', 'resolution', 'story_points', 'epic_link',
    'backlog_priority', 'sprint_state', 'last_assigned_sprint',
    'sprint_start_date', 'sprint_end_date'
)

CONFIG_FIELDS = (
    'jira_base_url', 'import_start_date', 'auth_type', 'auth_token',
    'cookies', 'oauth_account_id', 'is_active'
)


class ImportStore(ABC):
    """Persistence port for import configuration, run history and mirrored records."""

    # Configuration
    @abstractmethod
    def save_config(self, values: Dict) -> ImportConfig: ...

    @abstractmethod
    def get_config(self, team_name: str, project_key: str) -> Optional[ImportConfig]: ...

    @abstractmethod
    def list_configs(self, active_only: bool = False) -> List[ImportConfig]: ...

    # Run log
    @abstractmethod
    def create_run(self, team_name: str, project_key: str, import_type: str) -> int: ...

    @abstractmethod
    def finish_run(self, run_id: int, status: str, records_processed: int, error_message: str = None) -> None: ...

    @abstractmethod
    def get_run(self, run_id: int) -> Optional[ImportRun]: ...

    @abstractmethod
    def list_runs(self, team_name: str = None, project_key: str = None, limit: int = 50) -> List[ImportRun]: ...

    # Mirrored records
    @abstractmethod
    def upsert_epic(self, record: Dict, team_name: str, project_key: str) -> None: ...

    @abstractmethod
    def upsert_issue(self, record: Dict, team_name: str, project_key: str) -> None: ...

    @abstractmethod
    def list_epics(self, team_name: str = None, project_key: str = None) -> List[JiraEpic]: ...

    @abstractmethod
    def list_issues(self, team_name: str = None, project_key: str = None) -> List[JiraIssue]: ...

    @abstractmethod
    def statistics(self, team_name: str = None) -> Dict: ...


class CredentialStore(ABC):
    """Persistence port for OAuth credentials, one per account."""

    @abstractmethod
    def get(self, account_id: str) -> Optional[OAuthToken]: ...

    @abstractmethod
    def save(self, account_id: str, values: Dict) -> OAuthToken: ...

    @abstractmethod
    def delete(self, account_id: str) -> None: ...


def _scoped(query, model, team_name: str = None, project_key: str = None):
    if team_name:
        query = query.filter(model.team_name == team_name)
    if project_key:
        query = query.filter(model.project_key == project_key)
    return query


class SqlAlchemyImportStore(ImportStore):
    """ImportStore backed by the SQLAlchemy models."""

    def __init__(self, db: DatabaseConnection):
        self.db = db

    # ========================================
    # Configuration
    # ========================================

    def save_config(self, values: Dict) -> ImportConfig:
        """Create or update the configuration for (team_name, project_key)."""
        with self.db.session_scope() as session:
            config = session.query(ImportConfig).filter(
                ImportConfig.team_name == values['team_name'],
                ImportConfig.project_key == values['project_key']
            ).first()

            if config is None:
                config = ImportConfig(team_name=values['team_name'], project_key=values['project_key'])
                session.add(config)

            for name in CONFIG_FIELDS:
                if name in values:
                    setattr(config, name, values[name])
            config.updated_at = utc_now()

            session.flush()
            return config

    def get_config(self, team_name: str, project_key: str) -> Optional[ImportConfig]:
        with self.db.session_scope() as session:
            return session.query(ImportConfig).filter(
                ImportConfig.team_name == team_name,
                ImportConfig.project_key == project_key
            ).first()

    def list_configs(self, active_only: bool = False) -> List[ImportConfig]:
        with self.db.session_scope() as session:
            query = session.query(ImportConfig)
            if active_only:
                query = query.filter(ImportConfig.is_active.is_(True))
            return query.order_by(ImportConfig.team_name.asc(), ImportConfig.project_key.asc()).all()

    # ========================================
    # Run Log
    # ========================================

    def create_run(self, team_name: str, project_key: str, import_type: str) -> int:
        with self.db.session_scope() as session:
            run = ImportRun(
                team_name=team_name,
                project_key=project_key,
                import_type=import_type,
                status='started',
                start_time=utc_now()
            )
            session.add(run)
            session.flush()
            return run.id

    def finish_run(self, run_id: int, status: str, records_processed: int, error_message: str = None) -> None:
        with self.db.session_scope() as session:
            run = session.get(ImportRun, run_id)
            if run is None:
                raise LookupError(f"Import run {run_id} does not exist")
            run.status = status
            run.end_time = utc_now()
            run.records_processed = records_processed
            run.error_message = error_message

    def get_run(self, run_id: int) -> Optional[ImportRun]:
        with self.db.session_scope() as session:
            return session.get(ImportRun, run_id)

    def list_runs(self, team_name: str = None, project_key: str = None, limit: int = 50) -> List[ImportRun]:
        with self.db.session_scope() as session:
            query = _scoped(session.query(ImportRun), ImportRun, team_name, project_key)
            return query.order_by(ImportRun.start_time.desc(), ImportRun.id.desc()).limit(limit).all()

    # ========================================
    # Mirrored Records
    # ========================================

    def _upsert(self, model, fields, record: Dict, team_name: str, project_key: str) -> None:
        """Match by Jira key, then overwrite every mapped field (no merge)."""
        with self.db.session_scope() as session:
            row = session.query(model).filter(model.jira_key == record['jira_key']).first()
            if row is None:
                row = model(jira_key=record['jira_key'])
                session.add(row)

            for name in fields:
                setattr(row, name, record.get(name))
            row.team_name = team_name
            row.project_key = project_key
            row.last_imported = utc_now()

    def upsert_epic(self, record: Dict, team_name: str, project_key: str) -> None:
        values = dict(record)
        if isinstance(values.get('fix_versions'), list):
            values['fix_versions'] = ', '.join(values['fix_versions'])
        self._upsert(JiraEpic, EPIC_FIELDS, values, team_name, project_key)

    def upsert_issue(self, record: Dict, team_name: str, project_key: str) -> None:
        values = dict(record)
        if values.get('backlog_priority') is not None:
            values['backlog_priority'] = str(values['backlog_priority'])
        self._upsert(JiraIssue, ISSUE_FIELDS, values, team_name, project_key)

    def list_epics(self, team_name: str = None, project_key: str = None) -> List[JiraEpic]:
        with self.db.session_scope() as session:
            query = _scoped(session.query(JiraEpic), JiraEpic, team_name, project_key)
            return query.order_by(JiraEpic.last_imported.desc()).all()

    def list_issues(self, team_name: str = None, project_key: str = None) -> List[JiraIssue]:
        with self.db.session_scope() as session:
            query = _scoped(session.query(JiraIssue), JiraIssue, team_name, project_key)
            return query.order_by(JiraIssue.last_imported.desc()).all()

    def statistics(self, team_name: str = None) -> Dict:
        """Counts of runs and mirrored records, optionally for one team."""
        with self.db.session_scope() as session:
            runs = _scoped(session.query(ImportRun), ImportRun, team_name)
            last_run = runs.order_by(ImportRun.start_time.desc()).first()
            recent_cutoff = utc_now() - timedelta(days=7)

            return {
                'total_imports': runs.count(),
                'successful_imports': runs.filter(ImportRun.status == 'completed').count(),
                'failed_imports': runs.filter(ImportRun.status == 'failed').count(),
                'last_import_date': last_run.start_time if last_run else None,
                'total_epics': _scoped(session.query(JiraEpic), JiraEpic, team_name).count(),
                'total_issues': _scoped(session.query(JiraIssue), JiraIssue, team_name).count(),
                'active_configurations': _scoped(
                    session.query(ImportConfig), ImportConfig, team_name
                ).filter(ImportConfig.is_active.is_(True)).count(),
                'teams_with_recent_imports': session.query(
                    func.count(func.distinct(ImportRun.team_name))
                ).filter(ImportRun.start_time >= recent_cutoff).scalar() or 0,
            }


class SqlAlchemyCredentialStore(CredentialStore):
    """CredentialStore backed by the oauth_tokens table."""

    def __init__(self, db: DatabaseConnection):
        self.db = db

    def get(self, account_id: str) -> Optional[OAuthToken]:
        with self.db.session_scope() as session:
            return session.query(OAuthToken).filter(OAuthToken.account_id == account_id).first()

    def save(self, account_id: str, values: Dict) -> OAuthToken:
        """Create or overwrite the credential; only the given columns change."""
        with self.db.session_scope() as session:
            token = session.query(OAuthToken).filter(OAuthToken.account_id == account_id).first()
            if token is None:
                token = OAuthToken(account_id=account_id)
                session.add(token)

            for name, value in values.items():
                setattr(token, name, value)
            token.updated_at = utc_now()

            session.flush()
            return token

    def delete(self, account_id: str) -> None:
        """
        Delete the credential.

        Raises:
            CredentialNotFound: If the account has no stored credential
        """
        with self.db.session_scope() as session:
            token = session.query(OAuthToken).filter(OAuthToken.account_id == account_id).first()
            if token is None:
                raise CredentialNotFound(f"No stored credential for account {account_id}")
            session.delete(token)
