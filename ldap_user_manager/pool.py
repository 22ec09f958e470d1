"""
Pooled LDAP connections for the user manager.

This module keeps a bounded set of bound ldap3 connections. Connections are
validated when they are checked out, restored to the service identity when
they are returned, and discarded when they can no longer be used.
"""

import logging
import ssl
import threading
from collections import deque
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, Optional

from ldap3 import Server, Connection, Tls, NONE
from ldap3.core.exceptions import LDAPException, LDAPBindError

from ldap_user_manager.config import Settings

logger = logging.getLogger(__name__)


class LDAPConnectionError(Exception):
    """Raised when an LDAP connection cannot be opened or bound."""
    pass


class PoolExhaustedError(LDAPConnectionError):
    """Raised when no connection becomes available before the timeout."""
    pass


ConnectionFactory = Callable[[], Connection]


class LDAPConnectionFactory:
    """Opens connections bound as the configured service identity."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.server = None

    def __call__(self) -> Connection:
        """
        Open and bind a new connection.

        Returns:
            Bound ldap3 Connection

        Raises:
            LDAPConnectionError: If the connection cannot be opened or bound
        """
        if self.server is None:
            self.server = self._create_server()

        connection = Connection(
            self.server,
            user=self.settings.connection_name,
            password=self.settings.connection_credentials,
            auto_bind=False,
            receive_timeout=self.settings.timeout_seconds
        )

        try:
            if not connection.open():
                raise LDAPConnectionError(f"Failed to open connection: {connection.result}")

            if self.settings.connection_start_tls and not self.settings.connection_use_ssl:
                if not connection.start_tls():
                    raise LDAPConnectionError(f"Failed to start TLS: {connection.result}")
                logger.debug("StartTLS negotiation successful")

            if not connection.bind():
                raise LDAPConnectionError(f"Bind failed: {connection.result}")
        except LDAPException as e:
            _unbind_quietly(connection)
            raise LDAPConnectionError(f"Failed to connect to LDAP server "
                                      f"{self.settings.connection_host}:{self.settings.connection_port}: {e}") from e
        except LDAPConnectionError:
            _unbind_quietly(connection)
            raise

        logger.debug(f"Opened LDAP connection to {self.settings.connection_host}:{self.settings.connection_port}")
        return connection

    def _create_server(self) -> Server:
        try:
            return Server(
                self.settings.connection_host,
                port=self.settings.connection_port,
                use_ssl=self.settings.connection_use_ssl,
                tls=self._create_tls_config(),
                get_info=NONE,
                connect_timeout=self.settings.timeout_seconds
            )
        except LDAPException as e:
            raise LDAPConnectionError(f"Failed to create LDAP server: {e}") from e

    def _create_tls_config(self) -> Optional[Tls]:
        """
        Create TLS configuration for LDAP connections.

        Returns:
            Tls configuration object or None if not needed
        """
        if not (self.settings.connection_use_ssl or self.settings.connection_start_tls):
            return None

        tls_config = {}

        if not self.settings.connection_verify_ssl:
            tls_config['validate'] = ssl.CERT_NONE
            logger.warning("SSL certificate verification disabled")
        else:
            tls_config['validate'] = ssl.CERT_REQUIRED

        if self.settings.connection_ca_cert_file:
            tls_config['ca_certs_file'] = self.settings.connection_ca_cert_file
            logger.debug(f"Using CA certificate file: {self.settings.connection_ca_cert_file}")

        try:
            return Tls(**tls_config)
        except LDAPException as e:
            raise LDAPConnectionError(f"Failed to create TLS configuration: {e}") from e


def _unbind_quietly(connection: Connection):
    try:
        connection.unbind()
    except LDAPException as e:
        logger.debug(f"Error closing LDAP connection: {e}")


class LDAPConnectionPool:
    """
    Bounded pool of LDAP connections bound as the service identity.

    At most max_active connections are checked out at once and at most
    max_idle are kept open between uses.
    """

    def __init__(self, settings: Settings, connection_factory: Optional[ConnectionFactory] = None):
        """
        Initialize the pool. No connection is opened until the first borrow.

        Args:
            settings: Resolved settings
            connection_factory: Callable returning a bound connection (defaults to LDAPConnectionFactory)
        """
        self.settings = settings
        self.connection_factory = connection_factory or LDAPConnectionFactory(settings)
        self.max_active = settings.connection_max_active
        self.max_idle = settings.connection_max_idle
        self.timeout = settings.timeout_seconds

        self._lock = threading.Lock()
        self._available = threading.BoundedSemaphore(self.max_active)
        self._idle = deque()
        self._borrowed = set()
        self._created = 0
        self._destroyed = 0
        self._closed = False

    def borrow(self) -> Connection:
        """
        Check out a validated connection, blocking while the pool is exhausted.

        Returns:
            Bound ldap3 Connection

        Raises:
            PoolExhaustedError: If no connection is available before the timeout
            LDAPConnectionError: If the pool is closed or a new connection cannot be opened
        """
        with self._lock:
            self._ensure_open()

        if not self._available.acquire(timeout=self.timeout):
            raise PoolExhaustedError(f"No LDAP connection available after {self.timeout:.1f} seconds "
                                     f"(max active: {self.max_active})")

        try:
            connection = self._checkout()
        except Exception:
            self._available.release()
            raise

        with self._lock:
            self._borrowed.add(id(connection))
        return connection

    def release(self, connection: Connection, discard: bool = False):
        """
        Return a borrowed connection to the pool.

        Args:
            connection: Connection obtained from borrow()
            discard: Close the connection instead of keeping it idle
        """
        with self._lock:
            if id(connection) not in self._borrowed:
                raise LDAPConnectionError("Connection was not borrowed from this pool")
            self._borrowed.discard(id(connection))

        try:
            if not discard and self._restore_identity(connection):
                with self._lock:
                    if not self._closed and len(self._idle) < self.max_idle:
                        self._idle.append(connection)
                        return
            self._destroy(connection)
        finally:
            self._available.release()

    @contextmanager
    def connection(self) -> Iterator[Connection]:
        """
        Borrow a connection for the duration of a with block.

        The connection is always released; it is discarded if the block raised
        an LDAP error.
        """
        connection = self.borrow()
        discard = False
        try:
            yield connection
        except LDAPException:
            discard = True
            raise
        finally:
            self.release(connection, discard=discard)

    def close(self):
        """Close all idle connections and refuse further borrows."""
        with self._lock:
            self._closed = True
            idle = list(self._idle)
            self._idle.clear()

        for connection in idle:
            self._destroy(connection)
        logger.debug(f"Connection pool closed ({len(idle)} idle connections unbound)")

    def stats(self) -> Dict[str, Any]:
        """
        Get pool statistics.

        Returns:
            Dictionary with pool sizes and counters
        """
        with self._lock:
            return {
                'active': len(self._borrowed),
                'idle': len(self._idle),
                'max_active': self.max_active,
                'max_idle': self.max_idle,
                'created': self._created,
                'destroyed': self._destroyed,
                'closed': self._closed
            }

    def _checkout(self) -> Connection:
        while True:
            with self._lock:
                self._ensure_open()
                connection = self._idle.popleft() if self._idle else None

            if connection is None:
                return self._create()

            if self._validate(connection):
                return connection

            logger.debug("Discarding idle LDAP connection that failed validation")
            self._destroy(connection)

    def _ensure_open(self):
        """Raise if the pool is closed. Callers hold the lock."""
        if self._closed:
            raise LDAPConnectionError("Connection pool is closed")

    def _create(self) -> Connection:
        connection = self.connection_factory()
        with self._lock:
            self._created += 1
        return connection

    def _destroy(self, connection: Connection):
        _unbind_quietly(connection)
        with self._lock:
            self._destroyed += 1

    def _validate(self, connection: Connection) -> bool:
        """A connection is usable if it is open and bound as the service identity."""
        return (not connection.closed
                and connection.bound
                and connection.user == self.settings.connection_name)

    def _restore_identity(self, connection: Connection) -> bool:
        """Rebind a connection as the service identity if a user bind replaced it."""
        if connection.closed:
            return False
        if connection.bound and connection.user == self.settings.connection_name:
            return True

        try:
            restored = connection.rebind(user=self.settings.connection_name,
                                         password=self.settings.connection_credentials)
        except LDAPBindError as e:
            logger.warning(f"Could not restore service identity on pooled connection: {e}")
            return False
        except LDAPException as e:
            logger.warning(f"Error rebinding pooled connection: {e}")
            return False

        return bool(restored)

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
