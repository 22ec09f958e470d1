"""
User manager capability interface.

The hosting file-transfer service depends only on this interface; directory
specifics live in the implementations.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from ldap_user_manager.models import Credentials, UserRecord


class UserManager(ABC):
    """
    Abstract base class for user account stores.

    Implementations raise ArgumentError for missing arguments,
    AuthenticationFailed from authenticate(), and OperationFailed for
    backend faults.
    """

    @abstractmethod
    def get_user_by_name(self, name: str) -> Optional[UserRecord]:
        """
        Look up a user.

        Args:
            name: User name

        Returns:
            The user, or None if no such user exists
        """
        pass

    @abstractmethod
    def get_all_user_names(self) -> List[str]:
        """Return the names of all users, in store order."""
        pass

    @abstractmethod
    def does_exist(self, name: str) -> bool:
        pass

    @abstractmethod
    def delete(self, name: str) -> None:
        pass

    @abstractmethod
    def save(self, user: UserRecord) -> None:
        """Create a user from the given record."""
        pass

    @abstractmethod
    def authenticate(self, credentials: Credentials) -> UserRecord:
        """
        Verify credentials and return the matching user.

        Raises:
            AuthenticationFailed: If the credentials are unsupported or invalid
        """
        pass
