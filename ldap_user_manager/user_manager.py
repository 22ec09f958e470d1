"""
LDAP-backed user manager.

Each operation borrows one pooled connection for its directory work (a single
request, or the pages of one listing search) and translates directory faults into the user manager's error
types. Nothing is retried and nothing is cached between calls.
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Mapping, Optional, Union

from ldap3 import Connection, BASE, LEVEL
from ldap3.core.exceptions import LDAPException, LDAPBindError
from ldap3.core.results import RESULT_NO_SUCH_OBJECT, RESULT_SUCCESS

from ldap_user_manager.base import UserManager
from ldap_user_manager.config import Settings
from ldap_user_manager.dn import ATTR_UID, build_dn
from ldap_user_manager.errors import (
    ArgumentError,
    AuthenticationFailed,
    OperationFailed,
    UserManagerError,
    require,
)
from ldap_user_manager.logging_setup import security_logger
from ldap_user_manager.mapper import (
    ATTR_OBJECT_CLASS,
    OBJECT_CLASS_INET_ORG_PERSON,
    USER_ATTRIBUTES,
    EntryMapper,
)
from ldap_user_manager.models import Credentials, UserRecord, UsernamePasswordCredentials
from ldap_user_manager.pool import LDAPConnectionError, LDAPConnectionPool

logger = logging.getLogger(__name__)

USER_FILTER = f"(&({ATTR_UID}=*)({ATTR_OBJECT_CLASS}={OBJECT_CLASS_INET_ORG_PERSON}))"
ENTRY_FILTER = f"({ATTR_OBJECT_CLASS}=*)"

PAGED_RESULTS_CONTROL = '1.2.840.113556.1.4.319'


def _result_code(connection: Connection) -> Optional[int]:
    return (connection.result or {}).get('result')


def _paged_cookie(connection: Connection) -> Optional[bytes]:
    """Cookie for the next page of a paged search, or None after the last page."""
    controls = (connection.result or {}).get('controls') or {}
    paged = controls.get(PAGED_RESULTS_CONTROL)
    if not paged:
        return None
    return (paged.get('value') or {}).get('cookie') or None


def _describe(result: Optional[Dict[str, Any]]) -> str:
    if not result:
        return "no result"
    return f"{result.get('description')} ({result.get('result')}): {result.get('message') or ''}".rstrip(': ')


def _entries(connection: Connection) -> List[Dict[str, Any]]:
    """Attribute dicts of the search result entries in the last response."""
    return [item.get('attributes', {}) for item in (connection.response or [])
            if item.get('type') == 'searchResEntry']


class LdapUserManager(UserManager):
    """
    User manager storing accounts as inetOrgPerson entries in an LDAP directory.

    Users live one level below the configured user base DN, each at
    'uid=<name>,<user base DN>'.
    """

    def __init__(self, settings: Union[Settings, Mapping[str, Any], None],
                 pool: Optional[LDAPConnectionPool] = None):
        """
        Initialize the user manager and its connection pool.

        Args:
            settings: Resolved Settings, or a key/value source to resolve
            pool: Connection pool to use (defaults to one built from settings)

        Raises:
            ArgumentError: If settings is None
        """
        if settings is None:
            raise ArgumentError("configuration is None")
        if not isinstance(settings, Settings):
            settings = Settings.from_source(settings)

        logger.debug(f"configuration = {settings!r}")

        self.settings = settings
        self.mapper = EntryMapper(settings)
        self.pool = pool or LDAPConnectionPool(settings)

    def get_user_by_name(self, name: str) -> Optional[UserRecord]:
        logger.debug(f"get_user_by_name name={name}")
        require(name, 'name')

        dn = build_dn(name, self.settings.user_base_dn)

        # search() returns False for an empty result, so outcomes are read from the result code
        with self._round_trip('lookup', dn) as connection:
            connection.search(dn, ENTRY_FILTER, search_scope=BASE, attributes=USER_ATTRIBUTES)
            if _result_code(connection) == RESULT_NO_SUCH_OBJECT:
                return None
            self._check(connection, 'lookup', dn)
            entries = _entries(connection)

        if not entries:
            return None
        return self.mapper.to_user(entries[0])

    def get_all_user_names(self) -> List[str]:
        """
        List user names one level below the user base DN, in directory order.

        The search is paged so that server size limits do not truncate the
        listing. A size limit hit on any page raises OperationFailed.
        """
        base_dn = self.settings.user_base_dn
        page_size = self.settings.connection_page_size

        entries = []
        page_count = 0
        with self._round_trip('search', base_dn) as connection:
            cookie = None
            while True:
                connection.search(base_dn, USER_FILTER, search_scope=LEVEL, attributes=[ATTR_UID],
                                  paged_size=page_size, paged_cookie=cookie)
                self._check(connection, 'search', base_dn)

                page_count += 1
                entries.extend(_entries(connection))

                cookie = _paged_cookie(connection)
                if not cookie:
                    break

        user_names = [self.mapper.to_user_name(entry) for entry in entries]
        logger.debug(f"Retrieved {len(user_names)} user names across {page_count} pages")
        return user_names

    def does_exist(self, name: str) -> bool:
        logger.debug(f"does_exist name={name}")
        require(name, 'name')

        return self.get_user_by_name(name) is not None

    def delete(self, name: str) -> None:
        """
        Remove a user entry.

        Deleting a user that does not exist raises OperationFailed.
        """
        logger.debug(f"delete name={name}")
        require(name, 'name')

        dn = build_dn(name, self.settings.user_base_dn)

        try:
            with self._round_trip('delete', dn) as connection:
                connection.delete(dn)
                self._check(connection, 'delete', dn)
        except OperationFailed:
            security_logger.log_user_operation('delete', name, False)
            raise

        logger.info(f"Deleted user {name}")
        security_logger.log_user_operation('delete', name, True)

    def save(self, user: UserRecord) -> None:
        """
        Create a user entry.

        This is an LDAP add: saving a user whose entry already exists raises
        OperationFailed and leaves the existing entry unchanged.
        """
        logger.debug(f"save user={user!r}")
        require(user, 'user')
        require(user.name, 'user.name')

        dn = build_dn(user.name, self.settings.user_base_dn)
        attributes = self.mapper.to_entry(user)

        try:
            with self._round_trip('add', dn) as connection:
                connection.add(dn, attributes=attributes)
                self._check(connection, 'add', dn)
        except OperationFailed:
            security_logger.log_user_operation('add', user.name, False)
            raise

        logger.info(f"Saved user {user.name}")
        security_logger.log_user_operation('add', user.name, True)

    def authenticate(self, credentials: Credentials) -> UserRecord:
        """
        Verify a user name and password by binding as the user.

        Args:
            credentials: UsernamePasswordCredentials

        Returns:
            The user as currently stored in the directory

        Raises:
            ArgumentError: If credentials is None
            AuthenticationFailed: If the credentials are unsupported or rejected,
                or the user cannot be read back after binding
            OperationFailed: If the directory cannot be reached for the bind
        """
        logger.debug(f"authenticate credentials={credentials!r}")
        require(credentials, 'credentials')

        if not isinstance(credentials, UsernamePasswordCredentials):
            security_logger.log_authentication_attempt(None, False, f"unsupported credentials {type(credentials).__name__}")
            raise AuthenticationFailed(f"Unsupported credentials: {type(credentials).__name__}")

        username = credentials.username
        password = credentials.password

        # An empty password would be an unauthenticated bind, which servers accept
        if username is None or not password:
            security_logger.log_authentication_attempt(username, False, "missing user name or password")
            raise AuthenticationFailed("User name and password are required")

        dn = build_dn(username, self.settings.user_base_dn)

        with self._round_trip('bind', dn) as connection:
            bound = self._bind(connection, dn, password)

        if not bound:
            security_logger.log_authentication_attempt(username, False, "bind rejected")
            raise AuthenticationFailed(f"Invalid credentials for {username}")

        try:
            user = self.get_user_by_name(username)
        except UserManagerError as e:
            logger.error(f"Failed to read user {username} after bind: {e}")
            security_logger.log_authentication_attempt(username, False, "user lookup failed")
            raise AuthenticationFailed(f"Failed to read user {username}: {e}") from e

        if user is None:
            security_logger.log_authentication_attempt(username, False, "user entry not found")
            raise AuthenticationFailed(f"User {username} not found")

        security_logger.log_authentication_attempt(username, True)
        return user

    def close(self):
        """Close the connection pool."""
        self.pool.close()

    @contextmanager
    def _round_trip(self, operation: str, dn: str) -> Iterator[Connection]:
        """Borrow a pooled connection, translating directory and pool faults into OperationFailed."""
        try:
            with self.pool.connection() as connection:
                yield connection
        except (LDAPException, LDAPConnectionError) as e:
            logger.error(f"LDAP {operation} failed for {dn}: {e}")
            raise OperationFailed(f"LDAP {operation} failed for {dn}: {e}") from e

    def _check(self, connection: Connection, operation: str, dn: str):
        if _result_code(connection) != RESULT_SUCCESS:
            message = f"LDAP {operation} failed for {dn}: {_describe(connection.result)}"
            logger.error(message)
            raise OperationFailed(message)

    def _bind(self, connection: Connection, dn: str, password: str) -> bool:
        """Bind the connection as dn; the pool restores the service identity on release."""
        try:
            return bool(connection.rebind(user=dn, password=password))
        except LDAPBindError as e:
            logger.debug(f"Bind rejected for {dn}: {e}")
            return False

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
