"""
Mapping between LDAP entries and user records.

Authorities are never read from or written to the directory; they are
synthesized from configuration so every user carries the same set.
"""

from typing import Any, Dict, List, Mapping

from ldap_user_manager.config import Settings
from ldap_user_manager.dn import ATTR_UID
from ldap_user_manager.errors import MappingError
from ldap_user_manager.models import (
    Authority,
    ConcurrentLoginPermission,
    TransferRatePermission,
    UserRecord,
    WritePermission,
)

ATTR_OBJECT_CLASS = 'objectClass'
ATTR_CN = 'cn'
ATTR_SN = 'sn'
ATTR_USER_PASSWORD = 'userPassword'
ATTR_UNIX_FILE_PATH = 'unixFilePath'
ATTR_PWD_ATTRIBUTE = 'pwdAttribute'
ATTR_PWD_MAX_IDLE = 'pwdMaxIdle'
ATTR_PWD_LOCKOUT = 'pwdLockout'

OBJECT_CLASS_INET_ORG_PERSON = 'inetOrgPerson'
OBJECT_CLASS_EXTENSIBLE_OBJECT = 'extensibleObject'

# Attributes requested when reading a user entry
USER_ATTRIBUTES = [ATTR_UID, ATTR_UNIX_FILE_PATH, ATTR_PWD_MAX_IDLE, ATTR_PWD_LOCKOUT]

DirectoryEntry = Dict[str, List[str]]


def _values(entry: Mapping[str, Any], name: str) -> List[str]:
    """Return the values of an attribute as a list of strings, matching the name case-insensitively."""
    raw = entry.get(name)
    if raw is None:
        lowered = name.lower()
        for key, value in entry.items():
            if key.lower() == lowered:
                raw = value
                break
    if raw is None:
        return []
    if not isinstance(raw, (list, tuple)):
        raw = [raw]
    return [value.decode('utf-8') if isinstance(value, bytes) else str(value) for value in raw]


def _single(entry: Mapping[str, Any], name: str) -> str:
    values = _values(entry, name)
    if not values:
        raise MappingError(f"Missing attribute {name}")
    return values[0]


def _to_int(name: str, value: str) -> int:
    try:
        return int(value.strip())
    except ValueError:
        raise MappingError(f"Invalid integer in {name}: {value!r}")


def _to_bool(name: str, value: str) -> bool:
    text = value.strip().upper()
    if text == 'TRUE':
        return True
    if text == 'FALSE':
        return False
    raise MappingError(f"Invalid boolean in {name}: {value!r}")


def _from_bool(value: bool) -> str:
    return 'TRUE' if value else 'FALSE'


class EntryMapper:
    """Converts directory entries to user records and back."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def to_user(self, entry: Mapping[str, Any]) -> UserRecord:
        """
        Build a user record from a directory entry.

        Args:
            entry: Attribute name to value(s) mapping

        Returns:
            UserRecord carrying the configured authorities

        Raises:
            MappingError: If a required attribute is missing or cannot be parsed
        """
        return UserRecord(
            name=_single(entry, ATTR_UID),
            home_directory=_single(entry, ATTR_UNIX_FILE_PATH),
            max_idle_time=_to_int(ATTR_PWD_MAX_IDLE, _single(entry, ATTR_PWD_MAX_IDLE)),
            enabled=not _to_bool(ATTR_PWD_LOCKOUT, _single(entry, ATTR_PWD_LOCKOUT)),
            authorities=self.create_authorities(),
        )

    def to_user_name(self, entry: Mapping[str, Any]) -> str:
        return _single(entry, ATTR_UID)

    def to_entry(self, user: UserRecord) -> DirectoryEntry:
        """
        Build the attribute set written when a user is saved.

        Attributes whose value is None are left out of the entry.
        """
        entry = {
            ATTR_OBJECT_CLASS: [OBJECT_CLASS_INET_ORG_PERSON, OBJECT_CLASS_EXTENSIBLE_OBJECT],
            ATTR_UID: [user.name],
            ATTR_CN: [user.name],
            ATTR_SN: [user.name],
            ATTR_USER_PASSWORD: [user.password],
            # Enables the directory's password policy attributes on this entry
            ATTR_PWD_ATTRIBUTE: [ATTR_USER_PASSWORD],
            ATTR_UNIX_FILE_PATH: [user.home_directory],
            ATTR_PWD_MAX_IDLE: [str(user.max_idle_time)],
            ATTR_PWD_LOCKOUT: [_from_bool(not user.enabled)],
        }
        return {name: values for name, values in entry.items() if values[0] is not None}

    def create_authorities(self) -> List[Authority]:
        return [
            WritePermission(),
            ConcurrentLoginPermission(
                self.settings.max_concurrent_logins,
                self.settings.max_concurrent_logins_per_ip),
            TransferRatePermission(
                self.settings.download_rate,
                self.settings.upload_rate),
        ]
