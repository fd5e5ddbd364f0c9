# Database Package
from .connection import DatabaseConnection, get_db
from .models import Base, ImportConfig, ImportRun, JiraEpic, JiraIssue, OAuthState, OAuthToken
from .repository import CredentialStore, ImportStore, SqlAlchemyCredentialStore, SqlAlchemyImportStore

__all__ = [
    'Base', 'DatabaseConnection', 'get_db',
    'ImportConfig', 'ImportRun', 'JiraEpic', 'JiraIssue', 'OAuthState', 'OAuthToken',
    'CredentialStore', 'ImportStore', 'SqlAlchemyCredentialStore', 'SqlAlchemyImportStore',
]
