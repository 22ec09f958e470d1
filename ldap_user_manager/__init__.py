"""
LDAP User Manager - Directory-backed user accounts for a file-transfer service.

This package stores user accounts as entries in an LDAP directory and provides
lookup, listing, creation, removal and credential verification on top of a
pooled set of directory connections.
"""

from ldap_user_manager.base import UserManager
from ldap_user_manager.config import ConfigurationError, Settings, load_settings
from ldap_user_manager.errors import (
    ArgumentError,
    AuthenticationFailed,
    MappingError,
    OperationFailed,
    UserManagerError,
)
from ldap_user_manager.models import (
    AnonymousCredentials,
    ConcurrentLoginPermission,
    TransferRatePermission,
    UserRecord,
    UsernamePasswordCredentials,
    WritePermission,
)
from ldap_user_manager.user_manager import LdapUserManager

__version__ = "1.0.0"
__author__ = "LDAP User Manager Team"

__all__ = [
    'AnonymousCredentials',
    'ArgumentError',
    'AuthenticationFailed',
    'ConcurrentLoginPermission',
    'ConfigurationError',
    'LdapUserManager',
    'MappingError',
    'OperationFailed',
    'Settings',
    'TransferRatePermission',
    'UserManager',
    'UserManagerError',
    'UserRecord',
    'UsernamePasswordCredentials',
    'WritePermission',
    'load_settings',
]
