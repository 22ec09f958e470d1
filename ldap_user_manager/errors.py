"""
Exception hierarchy for the LDAP user manager.

Callers only ever see ArgumentError, AuthenticationFailed or OperationFailed
(MappingError is a kind of OperationFailed).
"""


class UserManagerError(Exception):
    """Base exception for user manager errors."""
    pass


class ArgumentError(UserManagerError, ValueError):
    """Raised when a required argument is missing."""
    pass


class OperationFailed(UserManagerError):
    """Raised when a directory operation fails."""
    pass


class MappingError(OperationFailed):
    """Raised when a directory attribute cannot be converted to its expected type."""
    pass


class AuthenticationFailed(UserManagerError):
    """Raised when credentials cannot be verified."""
    pass


def require(value, name: str):
    """Raise ArgumentError if value is None, otherwise return it."""
    if value is None:
        raise ArgumentError(f"{name} is None")
    return value
