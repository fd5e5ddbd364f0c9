"""
SQLAlchemy ORM Models
Defines the local mirror tables: imported epics/issues, import configuration,
the import run log and OAuth credentials.
"""

from sqlalchemy import (
    Boolean, Column, Date, DateTime, Float, Index, Integer, String, Text, UniqueConstraint
)
from sqlalchemy.orm import declarative_base

from jira_mirror.utils.helpers import utc_now

Base = declarative_base()


# ============================================
# MIRRORED JIRA DATA
# ============================================

class JiraEpic(Base):
    """Epic imported from Jira, keyed by its Jira key."""
    __tablename__ = 'jira_epics'

    id = Column(Integer, primary_key=True)
    jira_key = Column(String(50), nullable=False, unique=True)
    summary = Column(Text, nullable=False, default='')
    status = Column(String(100))
    due_date = Column(Date)
    priority = Column(String(100))
    fix_versions = Column(Text)  # comma separated version names
    rough_estimate = Column(Float)
    original_estimate = Column(Float)
    remaining_estimate = Column(Float)

    # Scoping
    team_name = Column(String(255), nullable=False)
    project_key = Column(String(50), nullable=False)

    last_imported = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    __table_args__ = (
        Index('ix_jira_epics_team_project', 'team_name', 'project_key'),
    )


class JiraIssue(Base):
    """Story, task or bug imported from Jira, keyed by its Jira key."""
    __tablename__ = 'jira_issues'

    id = Column(Integer, primary_key=True)
    jira_key = Column(String(50), nullable=False, unique=True)
    issue_type = Column(String(100))
    summary = Column(Text, nullable=False, default='')
    status = Column(String(100))
    priority = Column(String(100))
    assignee = Column(String(255))

    # Dates (day precision)
    due_date = Column(Date)
    created = Column(Date)
    updated = Column(Date)
    resolved = Column(Date)
    resolution = Column(String(100))

    # Planning
    story_points = Column(Float)
    epic_link = Column(String(50))
    backlog_priority = Column(String(255))
    sprint_state = Column(String(50))
    last_assigned_sprint = Column(String(255))
    sprint_start_date = Column(DateTime(timezone=True))
    sprint_end_date = Column(DateTime(timezone=True))

    # Scoping
    team_name = Column(String(255), nullable=False)
    project_key = Column(String(50), nullable=False)

    last_imported = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    __table_args__ = (
        Index('ix_jira_issues_team_project', 'team_name', 'project_key'),
    )


# ============================================
# IMPORT BOOKKEEPING
# ============================================

class ImportConfig(Base):
    """Saved import configuration, one per (team, project)."""
    __tablename__ = 'import_configs'

    id = Column(Integer, primary_key=True)
    team_name = Column(String(255), nullable=False)
    project_key = Column(String(50), nullable=False)
    jira_base_url = Column(Text, nullable=False)
    import_start_date = Column(Date, nullable=False)
    auth_type = Column(String(20), nullable=False, default='credential')
    auth_token = Column(Text)
    cookies = Column(Text)
    oauth_account_id = Column(String(255))
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    __table_args__ = (
        UniqueConstraint('team_name', 'project_key', name='uq_import_config_team_project'),
    )


class ImportRun(Base):
    """Import run log entry. Created as 'started', closed once, never deleted."""
    __tablename__ = 'import_logs'

    id = Column(Integer, primary_key=True)
    team_name = Column(String(255), nullable=False)
    project_key = Column(String(50), nullable=False)
    import_type = Column(String(20), nullable=False)  # 'epics', 'issues', 'full'
    status = Column(String(20), nullable=False, default='started')  # 'started', 'completed', 'failed'
    start_time = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    end_time = Column(DateTime(timezone=True))
    records_processed = Column(Integer, default=0)
    error_message = Column(Text)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (
        Index('ix_import_logs_team_project', 'team_name', 'project_key'),
    )


# ============================================
# OAUTH
# ============================================

class OAuthToken(Base):
    """Stored OAuth credential; tokens are always encrypted."""
    __tablename__ = 'oauth_tokens'

    id = Column(Integer, primary_key=True)
    account_id = Column(String(255), nullable=False, unique=True)
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    scope = Column(Text)
    cloud_id = Column(String(255))
    site_url = Column(Text)

    # Profile
    user_account_id = Column(String(255))
    user_email = Column(String(255))
    user_name = Column(String(255))

    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)


class OAuthState(Base):
    """Issued CSRF state for the authorization flow."""
    __tablename__ = 'oauth_states'

    state = Column(String(128), primary_key=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
