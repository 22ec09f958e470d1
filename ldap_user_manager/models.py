"""
User records, authorities and credentials.

These are plain value objects. A UserRecord is built fresh every time it is
read from the directory and is never cached by the user manager.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Type, TypeVar


class Authority:
    """Base class for permissions and policies attached to a user."""
    pass


@dataclass(frozen=True)
class WritePermission(Authority):
    """Grants write access to the user's home directory."""
    pass


@dataclass(frozen=True)
class ConcurrentLoginPermission(Authority):
    """Limits the number of simultaneous sessions, overall and per client address."""
    max_concurrent_logins: int
    max_concurrent_logins_per_ip: int


@dataclass(frozen=True)
class TransferRatePermission(Authority):
    """Caps download and upload speed in bytes per second."""
    max_download_rate: int
    max_upload_rate: int


AuthorityT = TypeVar('AuthorityT', bound=Authority)


@dataclass
class UserRecord:
    """
    A file-transfer user account.

    Records read from the directory carry no password; the password is only
    used when a record is saved.
    """
    name: str
    password: Optional[str] = None
    home_directory: Optional[str] = None
    max_idle_time: int = 0
    enabled: bool = True
    authorities: List[Authority] = field(default_factory=list)

    def get_authorities(self, kind: Type[AuthorityT]) -> List[AuthorityT]:
        """Return the authorities of the given class, in order."""
        return [authority for authority in self.authorities if isinstance(authority, kind)]

    def __repr__(self) -> str:
        return (f"UserRecord(name={self.name!r}, home_directory={self.home_directory!r}, "
                f"max_idle_time={self.max_idle_time!r}, enabled={self.enabled!r}, "
                f"authorities={self.authorities!r})")


class Credentials:
    """Base class for credentials presented to authenticate()."""
    pass


@dataclass(frozen=True)
class UsernamePasswordCredentials(Credentials):
    username: Optional[str]
    password: Optional[str]

    def __repr__(self) -> str:
        return f"UsernamePasswordCredentials(username={self.username!r})"


@dataclass(frozen=True)
class AnonymousCredentials(Credentials):
    pass
