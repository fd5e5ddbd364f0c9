"""
Command Line Interface
Run imports, test connections and manage OAuth accounts from a terminal.
"""

import argparse
import os
import sys
from typing import List, Optional

from jira_mirror.client_config import ClientConfig, build_client_config
from jira_mirror.database.connection import get_db
from jira_mirror.database.repository import SqlAlchemyImportStore
from jira_mirror.errors import JiraMirrorError
from jira_mirror.import_service import ImportKind, ImportService, default_import_since
from jira_mirror.jira_client import JiraClient
from jira_mirror.oauth import create_token_manager
from jira_mirror.utils.logger import get_logger, setup_logging

logger = get_logger(__name__)


def _add_connection_args(parser: argparse.ArgumentParser, with_scope: bool = True) -> None:
    parser.add_argument('--base-url', help='Jira site URL, e.g. https://example.atlassian.net')
    parser.add_argument('--auth', choices=['credential', 'cookie', 'oauth'], default='credential',
                        help='Authentication mode')
    parser.add_argument('--email', default=os.getenv('JIRA_EMAIL'), help='Account email (credential mode)')
    parser.add_argument('--api-token', default=os.getenv('JIRA_API_TOKEN'), help='API token (credential mode)')
    parser.add_argument('--cookies', default=os.getenv('JIRA_COOKIES'), help='Browser session cookies (cookie mode)')
    parser.add_argument('--account-id', help='Atlassian account id (oauth mode)')
    if with_scope:
        parser.add_argument('--team', required=True, help='Team name as shown in the Team (Development) field')
        parser.add_argument('--project', required=True, help='Jira project key')
        parser.add_argument('--since', default=None, help='Import start date (YYYY-MM-DD), default 30 days ago')


def _client_config(args, team: str = 'TEST', project: str = 'TEST', since=None) -> ClientConfig:
    since = since or default_import_since()

    if args.auth == 'oauth':
        if not args.account_id:
            raise JiraMirrorError('--account-id is required for oauth mode')
        manager = create_token_manager(get_db())
        return manager.build_client_config(args.account_id, project, team, since)

    return build_client_config(
        base_url=args.base_url,
        project_key=project,
        team_name=team,
        import_since=since,
        auth_mode=args.auth,
        email=args.email,
        api_token=args.api_token,
        cookies=args.cookies
    )


def cmd_init_db(args) -> int:
    db = get_db()
    if not db.check_connection():
        print("Error: Cannot connect to database")
        return 1
    db.create_tables()
    print("Database tables created")
    return 0


def cmd_test_connection(args) -> int:
    config = _client_config(args)
    result = JiraClient(config).test_connection()
    print(result.message)
    return 0 if result.ok else 1


def cmd_import(args) -> int:
    config = _client_config(args, team=args.team, project=args.project, since=args.since)

    db = get_db()
    db.create_tables()
    service = ImportService(SqlAlchemyImportStore(db))

    result = service.save_and_import(config, ImportKind.parse(args.kind), oauth_account_id=args.account_id)

    print(f"\n{'=' * 50}")
    print("Import Run Complete")
    print(f"{'=' * 50}")
    print(f"Run ID: {result.run_id}")
    print(f"Success: {result.success}")
    print(f"Epics Processed: {result.epics_processed}")
    print(f"Issues Processed: {result.issues_processed}")
    for warning in result.warnings:
        print(f"Warning: {warning}")
    for error in result.errors:
        print(f"Error: {error}")
    if result.error_count > len(result.errors):
        print(f"... and {result.error_count - len(result.errors)} more errors")

    return 0 if result.success else 1


def cmd_history(args) -> int:
    service = ImportService(SqlAlchemyImportStore(get_db()))
    runs = service.get_import_history(args.team, args.project, args.limit)

    for run in runs:
        started = run.start_time.strftime('%Y-%m-%d %H:%M') if run.start_time else '-'
        print(f"#{run.id:<5} {started}  {run.team_name}/{run.project_key}  {run.import_type:<6}  "
              f"{run.status:<9}  {run.records_processed or 0} records")
        if run.error_message:
            print(f"       {run.error_message}")

    if not runs:
        print("No import runs found")
    return 0


def cmd_oauth_url(args) -> int:
    manager = create_token_manager(get_db())
    request = manager.begin_authorization()
    print(request.redirect_url)
    return 0


def cmd_oauth_complete(args) -> int:
    manager = create_token_manager(get_db())
    record = manager.complete_authorization(args.code, args.state)
    print(f"Authorized account {record.account_id} (site: {record.site_url or 'none'})")
    return 0


def cmd_oauth_revoke(args) -> int:
    create_token_manager(get_db()).revoke(args.account_id)
    print(f"Tokens deleted for {args.account_id}")
    return 0


def cmd_oauth_status(args) -> int:
    manager = create_token_manager(get_db())
    for key, value in manager.get_status(args.account_id).items():
        print(f"{key}: {value}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='jira-mirror', description='Mirror Jira epics and issues into a local database')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable verbose output')
    subparsers = parser.add_subparsers(dest='command', required=True)

    init_parser = subparsers.add_parser('init-db', help='Create database tables')
    init_parser.set_defaults(func=cmd_init_db)

    test_parser = subparsers.add_parser('test-connection', help='Check Jira credentials')
    _add_connection_args(test_parser, with_scope=False)
    test_parser.set_defaults(func=cmd_test_connection)

    import_parser = subparsers.add_parser('import', help='Run an import')
    _add_connection_args(import_parser)
    import_parser.add_argument('--kind', choices=[k.value for k in ImportKind], default=ImportKind.FULL.value,
                               help='What to import')
    import_parser.set_defaults(func=cmd_import)

    history_parser = subparsers.add_parser('history', help='Show recent import runs')
    history_parser.add_argument('--team')
    history_parser.add_argument('--project')
    history_parser.add_argument('--limit', type=int, default=20)
    history_parser.set_defaults(func=cmd_history)

    url_parser = subparsers.add_parser('oauth-url', help='Start the OAuth flow and print the consent URL')
    url_parser.set_defaults(func=cmd_oauth_url)

    complete_parser = subparsers.add_parser('oauth-complete', help='Finish the OAuth flow with the code and state from the callback')
    complete_parser.add_argument('--code', required=True)
    complete_parser.add_argument('--state', required=True)
    complete_parser.set_defaults(func=cmd_oauth_complete)

    revoke_parser = subparsers.add_parser('oauth-revoke', help='Delete stored OAuth tokens for an account')
    revoke_parser.add_argument('--account-id', required=True)
    revoke_parser.set_defaults(func=cmd_oauth_revoke)

    status_parser = subparsers.add_parser('oauth-status', help='Show OAuth status for an account')
    status_parser.add_argument('--account-id', required=True)
    status_parser.set_defaults(func=cmd_oauth_status)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the command line."""
    args = build_parser().parse_args(argv)

    setup_logging()
    if args.verbose:
        import logging
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        return args.func(args)
    except JiraMirrorError as e:
        logger.error(f"{args.command} failed: {e.message}")
        print(f"\nError: {e.message}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
