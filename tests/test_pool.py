#!/usr/bin/env python3
"""
Unit tests for the LDAP connection pool and connection factory.
"""

import os
import sys
import ssl
import threading
import time
import unittest
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import Mock, patch

from ldap3.core.exceptions import LDAPException, LDAPSocketOpenError

# Add the project directory to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ldap_user_manager.config import Settings
from ldap_user_manager.pool import (
    LDAPConnectionError,
    LDAPConnectionFactory,
    LDAPConnectionPool,
    PoolExhaustedError,
)

ADMIN_DN = 'uid=admin,ou=system'


def make_connection(user=ADMIN_DN):
    """Create a mock connection that looks open and bound."""
    connection = Mock()
    connection.closed = False
    connection.bound = True
    connection.user = user
    return connection


class TestLDAPConnectionPool(unittest.TestCase):
    """Test cases for LDAPConnectionPool."""

    def create_pool(self, **overrides):
        source = {'connection.max.active': 4, 'connection.max.idle': 2, 'connection.timeout': 200}
        source.update(overrides)
        self.factory = Mock(side_effect=lambda: make_connection())
        return LDAPConnectionPool(Settings.from_source(source), connection_factory=self.factory)

    def test_pool_is_lazy(self):
        """Test that building the pool opens no connection."""
        pool = self.create_pool()
        self.factory.assert_not_called()
        self.assertEqual(pool.stats()['idle'], 0)

    def test_idle_connection_is_reused(self):
        """Test that a released connection is handed out again."""
        pool = self.create_pool()

        first = pool.borrow()
        pool.release(first)
        second = pool.borrow()

        self.assertIs(first, second)
        self.assertEqual(self.factory.call_count, 1)

    def test_invalid_idle_connection_is_replaced(self):
        """Test that a connection failing validation on checkout is discarded."""
        pool = self.create_pool()

        stale = pool.borrow()
        pool.release(stale)
        stale.closed = True

        fresh = pool.borrow()

        self.assertIsNot(stale, fresh)
        stale.unbind.assert_called_once()
        self.assertEqual(self.factory.call_count, 2)

    def test_unbound_idle_connection_is_replaced(self):
        """Test that a connection that lost its bind is discarded."""
        pool = self.create_pool()

        stale = pool.borrow()
        pool.release(stale)
        stale.bound = False

        self.assertIsNot(pool.borrow(), stale)

    def test_max_idle_is_enforced(self):
        """Test that connections beyond max idle are closed on release."""
        pool = self.create_pool(**{'connection.max.idle': 1})

        first = pool.borrow()
        second = pool.borrow()
        pool.release(first)
        pool.release(second)

        stats = pool.stats()
        self.assertEqual(stats['idle'], 1)
        self.assertEqual(stats['active'], 0)
        second.unbind.assert_called_once()
        first.unbind.assert_not_called()

    def test_exhausted_pool_times_out(self):
        """Test that borrowing beyond max active fails after the timeout."""
        pool = self.create_pool(**{'connection.max.active': 1, 'connection.timeout': 50})

        pool.borrow()
        started = time.monotonic()
        with self.assertRaises(PoolExhaustedError):
            pool.borrow()
        self.assertGreaterEqual(time.monotonic() - started, 0.04)

    def test_waiting_borrow_gets_released_connection(self):
        """Test that a blocked borrow proceeds once a connection is released."""
        pool = self.create_pool(**{'connection.max.active': 1, 'connection.timeout': 2000})
        held = pool.borrow()

        timer = threading.Timer(0.05, pool.release, args=(held,))
        timer.start()
        try:
            self.assertIs(pool.borrow(), held)
        finally:
            timer.join()

    def test_context_manager_releases_on_error(self):
        """Test that the scoped borrow always releases."""
        pool = self.create_pool()

        with self.assertRaises(RuntimeError):
            with pool.connection() as connection:
                raise RuntimeError("boom")

        stats = pool.stats()
        self.assertEqual(stats['active'], 0)
        self.assertEqual(stats['idle'], 1)
        connection.unbind.assert_not_called()

    def test_context_manager_discards_after_ldap_error(self):
        """Test that a connection whose round trip raised an LDAP error is not reused."""
        pool = self.create_pool()

        with self.assertRaises(LDAPSocketOpenError):
            with pool.connection() as connection:
                raise LDAPSocketOpenError("socket closed")

        stats = pool.stats()
        self.assertEqual(stats['active'], 0)
        self.assertEqual(stats['idle'], 0)
        connection.unbind.assert_called_once()

    def test_service_identity_restored_on_release(self):
        """Test that a connection rebound as a user is rebound as the service identity."""
        pool = self.create_pool()
        connection = pool.borrow()
        connection.user = 'uid=alice,ou=users,ou=system'

        def rebind(user, password):
            connection.user = user
            return True

        connection.rebind.side_effect = rebind
        pool.release(connection)

        connection.rebind.assert_called_once_with(user=ADMIN_DN, password='secret')
        self.assertEqual(pool.stats()['idle'], 1)

    def test_connection_discarded_when_identity_cannot_be_restored(self):
        """Test that a connection that cannot rebind is closed."""
        pool = self.create_pool()
        connection = pool.borrow()
        connection.bound = False
        connection.rebind.return_value = False

        pool.release(connection)

        self.assertEqual(pool.stats()['idle'], 0)
        connection.unbind.assert_called_once()

    def test_release_of_foreign_connection(self):
        """Test that releasing a connection not from this pool is rejected."""
        pool = self.create_pool()
        with self.assertRaises(LDAPConnectionError):
            pool.release(make_connection())

    def test_factory_failure_frees_slot(self):
        """Test that a failed connection attempt does not leak an active slot."""
        pool = self.create_pool(**{'connection.max.active': 1})
        self.factory.side_effect = LDAPConnectionError("refused")

        with self.assertRaises(LDAPConnectionError):
            pool.borrow()

        self.factory.side_effect = lambda: make_connection()
        pool.release(pool.borrow())
        self.assertEqual(pool.stats()['active'], 0)

    def test_close(self):
        """Test that close unbinds idle connections and refuses borrows."""
        pool = self.create_pool()
        connection = pool.borrow()
        pool.release(connection)

        pool.close()

        connection.unbind.assert_called_once()
        self.assertTrue(pool.stats()['closed'])
        with self.assertRaises(LDAPConnectionError):
            pool.borrow()

    def test_close_while_waiting_for_connection(self):
        """Test that a borrow blocked on an exhausted pool fails once the pool is closed."""
        pool = self.create_pool(**{'connection.max.active': 1, 'connection.timeout': 2000})
        held = pool.borrow()

        def close_and_release():
            pool.close()
            pool.release(held)

        timer = threading.Timer(0.05, close_and_release)
        timer.start()
        try:
            with self.assertRaises(LDAPConnectionError) as context:
                pool.borrow()
        finally:
            timer.join()

        self.assertNotIsInstance(context.exception, PoolExhaustedError)
        self.assertEqual(self.factory.call_count, 1)
        self.assertEqual(pool.stats()['active'], 0)
        held.unbind.assert_called_once()

    def test_release_after_close_discards(self):
        """Test that connections returned after close are not kept."""
        pool = self.create_pool()
        connection = pool.borrow()
        pool.close()
        pool.release(connection)

        connection.unbind.assert_called_once()
        self.assertEqual(pool.stats()['idle'], 0)

    def test_concurrent_use_respects_max_active(self):
        """Test that concurrent callers never exceed max active connections."""
        pool = self.create_pool(**{'connection.max.active': 3, 'connection.timeout': 5000})
        lock = threading.Lock()
        in_use = [0]
        peak = [0]

        def work(_):
            with pool.connection():
                with lock:
                    in_use[0] += 1
                    peak[0] = max(peak[0], in_use[0])
                time.sleep(0.01)
                with lock:
                    in_use[0] -= 1

        with ThreadPoolExecutor(max_workers=8) as executor:
            list(executor.map(work, range(40)))

        self.assertLessEqual(peak[0], 3)
        self.assertEqual(pool.stats()['active'], 0)
        self.assertLessEqual(self.factory.call_count, 3 + 40)


class TestLDAPConnectionFactory(unittest.TestCase):
    """Test cases for LDAPConnectionFactory."""

    def setUp(self):
        """Set up test fixtures."""
        self.settings = Settings.from_source({
            'connection.host': 'ldap.example.com',
            'connection.port': 389,
            'connection.timeout': 3000,
        })

    @patch('ldap_user_manager.pool.Server')
    @patch('ldap_user_manager.pool.Connection')
    def test_connection_opened_and_bound(self, mock_connection_class, mock_server_class):
        """Test that connections are created from settings and bound."""
        mock_connection = mock_connection_class.return_value
        mock_connection.open.return_value = True
        mock_connection.bind.return_value = True

        connection = LDAPConnectionFactory(self.settings)()

        self.assertIs(connection, mock_connection)
        mock_server_class.assert_called_once()
        server_args, server_kwargs = mock_server_class.call_args
        self.assertEqual(server_args[0], 'ldap.example.com')
        self.assertEqual(server_kwargs['port'], 389)
        self.assertEqual(server_kwargs['connect_timeout'], 3.0)
        self.assertIsNone(server_kwargs['tls'])

        _, connection_kwargs = mock_connection_class.call_args
        self.assertEqual(connection_kwargs['user'], 'uid=admin,ou=system')
        self.assertEqual(connection_kwargs['password'], 'secret')
        self.assertEqual(connection_kwargs['receive_timeout'], 3.0)
        mock_connection.start_tls.assert_not_called()

    @patch('ldap_user_manager.pool.Server')
    @patch('ldap_user_manager.pool.Connection')
    def test_server_created_once(self, mock_connection_class, mock_server_class):
        """Test that the server object is shared between connections."""
        mock_connection_class.return_value.open.return_value = True
        mock_connection_class.return_value.bind.return_value = True

        factory = LDAPConnectionFactory(self.settings)
        factory()
        factory()

        mock_server_class.assert_called_once()

    @patch('ldap_user_manager.pool.Server')
    @patch('ldap_user_manager.pool.Connection')
    def test_bind_failure(self, mock_connection_class, mock_server_class):
        """Test that a rejected service bind raises LDAPConnectionError."""
        mock_connection = mock_connection_class.return_value
        mock_connection.open.return_value = True
        mock_connection.bind.return_value = False
        mock_connection.result = {'result': 49, 'description': 'invalidCredentials'}

        with self.assertRaises(LDAPConnectionError) as context:
            LDAPConnectionFactory(self.settings)()

        self.assertIn('Bind failed', str(context.exception))
        mock_connection.unbind.assert_called_once()

    @patch('ldap_user_manager.pool.Server')
    @patch('ldap_user_manager.pool.Connection')
    def test_socket_error(self, mock_connection_class, mock_server_class):
        """Test that ldap3 errors while opening are wrapped."""
        mock_connection = mock_connection_class.return_value
        mock_connection.open.side_effect = LDAPSocketOpenError("connection refused")

        with self.assertRaises(LDAPConnectionError) as context:
            LDAPConnectionFactory(self.settings)()

        self.assertIsInstance(context.exception.__cause__, LDAPException)
        self.assertIn('ldap.example.com:389', str(context.exception))

    @patch('ldap_user_manager.pool.Server')
    @patch('ldap_user_manager.pool.Connection')
    def test_start_tls(self, mock_connection_class, mock_server_class):
        """Test StartTLS negotiation when configured."""
        settings = Settings.from_source({'connection.start.tls': 'true'})
        mock_connection = mock_connection_class.return_value
        mock_connection.open.return_value = True
        mock_connection.start_tls.return_value = True
        mock_connection.bind.return_value = True

        LDAPConnectionFactory(settings)()

        mock_connection.start_tls.assert_called_once()

    @patch('ldap_user_manager.pool.Tls')
    def test_tls_config(self, mock_tls_class):
        """Test TLS configuration creation."""
        settings = Settings.from_source({
            'connection.use.ssl': 'true',
            'connection.verify.ssl': 'false',
            'connection.ca.cert.file': '/etc/ssl/ca.pem',
        })

        LDAPConnectionFactory(settings)._create_tls_config()

        mock_tls_class.assert_called_once_with(validate=ssl.CERT_NONE, ca_certs_file='/etc/ssl/ca.pem')

    def test_no_tls_config_without_ssl(self):
        """Test that plain connections get no TLS configuration."""
        self.assertIsNone(LDAPConnectionFactory(self.settings)._create_tls_config())


if __name__ == '__main__':
    unittest.main()
