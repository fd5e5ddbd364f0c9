"""
Unit Tests for the Command Line Interface
"""

import unittest
from unittest.mock import Mock, patch

from jira_mirror import cli
from jira_mirror.import_service import ImportResult
from jira_mirror.jira_client import ConnectionResult

BASE_ARGS = [
    '--base-url', 'https://example.atlassian.net',
    '--email', 'me@example.com',
    '--api-token', 'secret',
]


@patch('jira_mirror.cli.setup_logging')
class TestCli(unittest.TestCase):

    @patch('jira_mirror.cli.JiraClient')
    def test_test_connection(self, mock_client, _):
        mock_client.return_value.test_connection.return_value = ConnectionResult(
            ok=True, message='Connected successfully as Sam Doe'
        )
        self.assertEqual(cli.main(['test-connection'] + BASE_ARGS), 0)

        config = mock_client.call_args.args[0]
        self.assertEqual(config.base_url, 'https://example.atlassian.net')

    @patch('jira_mirror.cli.JiraClient')
    def test_test_connection_failure_exit_code(self, mock_client, _):
        mock_client.return_value.test_connection.return_value = ConnectionResult(
            ok=False, message='Invalid API credentials. (Status: 401)', status_code=401
        )
        self.assertEqual(cli.main(['test-connection'] + BASE_ARGS), 1)

    def test_invalid_configuration_exit_code(self, _):
        self.assertEqual(cli.main(['test-connection', '--base-url', 'https://example.atlassian.net']), 1)

    @patch('jira_mirror.cli.ImportService')
    @patch('jira_mirror.cli.get_db')
    def test_import(self, mock_get_db, mock_service, _):
        mock_service.return_value.save_and_import.return_value = ImportResult(
            success=False, epics_processed=3, errors=['Issue import failed: boom'], error_count=1, run_id=7
        )

        code = cli.main(['import', '--team', 'Team A', '--project', 'PROJ', '--since', '2024-01-01',
                         '--kind', 'epics'] + BASE_ARGS)

        self.assertEqual(code, 1)
        config, kind = mock_service.return_value.save_and_import.call_args.args
        self.assertEqual(config.team_name, 'Team A')
        self.assertEqual(config.import_since_str, '2024-01-01')
        self.assertEqual(kind.value, 'epics')

    @patch('jira_mirror.cli.ImportService')
    @patch('jira_mirror.cli.get_db', Mock())
    def test_history_empty(self, mock_service, _):
        mock_service.return_value.get_import_history.return_value = []
        self.assertEqual(cli.main(['history', '--team', 'Team A']), 0)
        mock_service.return_value.get_import_history.assert_called_once_with('Team A', None, 20)


if __name__ == '__main__':
    unittest.main()
