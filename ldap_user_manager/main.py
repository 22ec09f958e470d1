"""
Command-line interface for the LDAP user manager.

Lets an administrator list, inspect, add, delete and test-authenticate users
against the configured directory.
"""

import sys
import json
import getpass
import argparse
import logging
from dataclasses import asdict
from typing import List, Optional

from ldap_user_manager.config import ConfigurationError, load_settings
from ldap_user_manager.errors import ArgumentError, AuthenticationFailed, OperationFailed
from ldap_user_manager.logging_setup import setup_logging
from ldap_user_manager.models import UserRecord, UsernamePasswordCredentials
from ldap_user_manager.user_manager import LdapUserManager

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FALSE = 1
EXIT_CONFIG_ERROR = 2
EXIT_OPERATION_FAILED = 3


def _user_to_dict(user: UserRecord) -> dict:
    data = asdict(user)
    data.pop('password', None)
    data['authorities'] = [
        dict(type=type(authority).__name__, **asdict(authority)) for authority in user.authorities
    ]
    return data


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='LDAP User Manager')
    parser.add_argument('--config', '-c', help='Path to configuration file')
    parser.add_argument('--log-level', default='WARNING', help='Console log level (default: WARNING)')

    subparsers = parser.add_subparsers(dest='command', required=True)

    subparsers.add_parser('list', help='List all user names')

    show = subparsers.add_parser('show', help='Show a user as JSON')
    show.add_argument('name')

    exists = subparsers.add_parser('exists', help='Exit 0 if the user exists, 1 otherwise')
    exists.add_argument('name')

    add = subparsers.add_parser('add', help='Add a user')
    add.add_argument('name')
    add.add_argument('--password', required=True)
    add.add_argument('--home', required=True, help='Home directory')
    add.add_argument('--max-idle', type=int, default=0, help='Maximum idle time in seconds')
    add.add_argument('--disabled', action='store_true', help='Create the account locked')

    delete = subparsers.add_parser('delete', help='Delete a user')
    delete.add_argument('name')

    auth = subparsers.add_parser('auth', help='Check a user name and password')
    auth.add_argument('name')
    auth.add_argument('--password', help='Password (prompted if omitted)')

    return parser


def run_command(manager: LdapUserManager, args: argparse.Namespace) -> int:
    """
    Execute one CLI command against a user manager.

    Returns:
        Exit code
    """
    if args.command == 'list':
        for name in manager.get_all_user_names():
            print(name)
        return EXIT_OK

    if args.command == 'show':
        user = manager.get_user_by_name(args.name)
        if user is None:
            print(f"User not found: {args.name}", file=sys.stderr)
            return EXIT_FALSE
        print(json.dumps(_user_to_dict(user), indent=2))
        return EXIT_OK

    if args.command == 'exists':
        return EXIT_OK if manager.does_exist(args.name) else EXIT_FALSE

    if args.command == 'add':
        manager.save(UserRecord(
            name=args.name,
            password=args.password,
            home_directory=args.home,
            max_idle_time=args.max_idle,
            enabled=not args.disabled
        ))
        print(f"Added user {args.name}")
        return EXIT_OK

    if args.command == 'delete':
        manager.delete(args.name)
        print(f"Deleted user {args.name}")
        return EXIT_OK

    if args.command == 'auth':
        password = args.password if args.password is not None else getpass.getpass('Password: ')
        try:
            user = manager.authenticate(UsernamePasswordCredentials(args.name, password))
        except AuthenticationFailed as e:
            print(f"Authentication failed: {e}", file=sys.stderr)
            return EXIT_FALSE
        print(f"Authenticated {user.name}")
        return EXIT_OK

    raise ArgumentError(f"Unknown command: {args.command}")


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the application."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging({'level': args.log_level, 'console_level': args.log_level})

    try:
        settings = load_settings(args.config)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    with LdapUserManager(settings) as manager:
        try:
            return run_command(manager, args)
        except OperationFailed as e:
            logger.debug("Operation failed", exc_info=True)
            print(f"Operation failed: {e}", file=sys.stderr)
            return EXIT_OPERATION_FAILED


if __name__ == "__main__":
    sys.exit(main())
