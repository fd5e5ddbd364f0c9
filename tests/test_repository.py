"""
Unit Tests for the SQLAlchemy Storage Layer
Uses an in-memory SQLite database.
"""

import unittest
from datetime import date

from jira_mirror.database.connection import DatabaseConnection
from jira_mirror.database.repository import SqlAlchemyCredentialStore, SqlAlchemyImportStore
from jira_mirror.errors import CredentialNotFound


def epic(key='PROJ-1', summary='Payments', **extra):
    record = {'jira_key': key, 'summary': summary, 'status': 'To Do', 'fix_versions': ['1.0', '1.1']}
    record.update(extra)
    return record


class StoreTestCase(unittest.TestCase):

    def setUp(self):
        self.db = DatabaseConnection('sqlite://')
        self.db.create_tables()
        self.store = SqlAlchemyImportStore(self.db)

    def tearDown(self):
        self.db.dispose()


class TestUpsert(StoreTestCase):
    """Test record upserts keyed by Jira key."""

    def test_same_key_twice_keeps_one_record(self):
        self.store.upsert_epic(epic(summary='First'), 'Team A', 'PROJ')
        self.store.upsert_epic(epic(summary='Second'), 'Team A', 'PROJ')

        epics = self.store.list_epics()
        self.assertEqual(len(epics), 1)
        self.assertEqual(epics[0].summary, 'Second')

    def test_fix_versions_joined(self):
        self.store.upsert_epic(epic(), 'Team A', 'PROJ')
        self.assertEqual(self.store.list_epics()[0].fix_versions, '1.0, 1.1')

    def test_upsert_overwrites_with_missing_values(self):
        self.store.upsert_epic(epic(priority='High'), 'Team A', 'PROJ')
        self.store.upsert_epic(epic(), 'Team A', 'PROJ')
        self.assertIsNone(self.store.list_epics()[0].priority)

    def test_upsert_moves_record_to_latest_scope(self):
        self.store.upsert_epic(epic(), 'Team A', 'PROJ')
        self.store.upsert_epic(epic(), 'Team B', 'PROJ')

        self.assertEqual(self.store.list_epics('Team A'), [])
        self.assertEqual(len(self.store.list_epics('Team B')), 1)

    def test_issue_upsert(self):
        record = {
            'jira_key': 'PROJ-2', 'issue_type': 'Story', 'summary': 'Login',
            'created': date(2024, 3, 5), 'backlog_priority': 12, 'sprint_state': 'backlog'
        }
        self.store.upsert_issue(record, 'Team A', 'PROJ')

        issue = self.store.list_issues('Team A', 'PROJ')[0]
        self.assertEqual(issue.created, date(2024, 3, 5))
        self.assertEqual(issue.backlog_priority, '12')
        self.assertIsNotNone(issue.last_imported)


class TestRunLog(StoreTestCase):
    """Test the import run log."""

    def test_run_lifecycle(self):
        run_id = self.store.create_run('Team A', 'PROJ', 'full')
        self.assertEqual(self.store.get_run(run_id).status, 'started')

        self.store.finish_run(run_id, 'failed', 3, 'Issue import failed: boom')

        run = self.store.get_run(run_id)
        self.assertEqual(run.status, 'failed')
        self.assertEqual(run.records_processed, 3)
        self.assertEqual(run.error_message, 'Issue import failed: boom')
        self.assertIsNotNone(run.end_time)

    def test_finish_unknown_run(self):
        with self.assertRaises(LookupError):
            self.store.finish_run(999, 'completed', 0)

    def test_history_newest_first_and_limited(self):
        ids = [self.store.create_run('Team A', 'PROJ', 'full') for _ in range(5)]
        self.store.create_run('Team B', 'OTHER', 'epics')

        runs = self.store.list_runs('Team A', 'PROJ', limit=3)

        self.assertEqual([r.id for r in runs], list(reversed(ids))[:3])

    def test_statistics(self):
        first = self.store.create_run('Team A', 'PROJ', 'full')
        second = self.store.create_run('Team A', 'PROJ', 'full')
        self.store.finish_run(first, 'completed', 1)
        self.store.finish_run(second, 'failed', 0, 'Import failed: x')
        self.store.upsert_epic(epic(), 'Team A', 'PROJ')

        stats = self.store.statistics('Team A')

        self.assertEqual(stats['total_imports'], 2)
        self.assertEqual(stats['successful_imports'], 1)
        self.assertEqual(stats['failed_imports'], 1)
        self.assertEqual(stats['total_epics'], 1)
        self.assertEqual(stats['total_issues'], 0)


class TestConfigs(StoreTestCase):
    """Test saved import configurations."""

    def values(self, **extra):
        values = {
            'team_name': 'Team A', 'project_key': 'PROJ',
            'jira_base_url': 'https://example.atlassian.net',
            'import_start_date': date(2024, 1, 1), 'auth_type': 'credential', 'auth_token': 'abc'
        }
        values.update(extra)
        return values

    def test_save_is_upsert_per_team_and_project(self):
        self.store.save_config(self.values())
        self.store.save_config(self.values(import_start_date=date(2024, 2, 1)))

        configs = self.store.list_configs()
        self.assertEqual(len(configs), 1)
        self.assertEqual(configs[0].import_start_date, date(2024, 2, 1))

    def test_active_filter(self):
        self.store.save_config(self.values())
        self.store.save_config(self.values(project_key='OLD', is_active=False))

        self.assertEqual(len(self.store.list_configs()), 2)
        self.assertEqual([c.project_key for c in self.store.list_configs(active_only=True)], ['PROJ'])

    def test_get_missing_config(self):
        self.assertIsNone(self.store.get_config('Team A', 'NOPE'))


class TestCredentialStore(StoreTestCase):
    """Test OAuth credential persistence."""

    def test_delete_missing(self):
        credentials = SqlAlchemyCredentialStore(self.db)
        with self.assertRaises(CredentialNotFound):
            credentials.delete('nobody')


if __name__ == '__main__':
    unittest.main()
