"""
authorize-ldap Exception Types

Custom exceptions for directory authentication errors.

Recoverability:
- MissingArgumentsError: caller fixes the request and retries
- InvalidConfigurationError: operator must fix the service settings
- DirectorySearchError: transient or structural, caller may retry
- UserNotFoundError, AuthorizationError, AuthenticationError: terminal
"""

from typing import List, Optional


class AuthorizeLdapError(Exception):
    """Base exception for all authorize-ldap errors."""

    def __init__(self, message: str, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class MissingArgumentsError(AuthorizeLdapError):
    """
    The login request is incomplete.

    Raised before any directory I/O takes place.
    """

    def __init__(self, missing: List[str]) -> None:
        self.missing = list(missing)
        super().__init__(f"Missing required parameters: {', '.join(self.missing)}")


class InvalidConfigurationError(AuthorizeLdapError):
    """
    Service-level settings are unusable.

    The connection could not be opened or the service credentials were
    rejected. Messages never include the service password.
    """

    pass


class DirectorySearchError(AuthorizeLdapError):
    """
    The directory search itself failed.

    Malformed filter, missing search base or a network failure. A search
    returning zero entries is not an error.
    """

    pass


class UserNotFoundError(AuthorizeLdapError):
    """
    No unique directory entry matched the user.

    Zero matches and ambiguous matches are reported the same way.
    """

    def __init__(self, message: str = "User not found") -> None:
        super().__init__(message)


class AuthorizationError(AuthorizeLdapError):
    """The user matched but holds none of the allowed attribute values."""

    def __init__(self, message: str = "User is not authorized") -> None:
        super().__init__(message)


class AuthenticationError(AuthorizeLdapError):
    """
    Credential verification failed.

    The message is always the same so that wrong passwords, locked
    accounts and disabled accounts cannot be told apart by callers.
    """

    MESSAGE = "Invalid credentials"

    def __init__(self) -> None:
        super().__init__(self.MESSAGE)


class StateError(AuthorizeLdapError):
    """
    Invalid state transition.

    An operation was attempted that is not valid in the current login or
    session state.
    """

    pass


class InvariantViolation(AuthorizeLdapError):
    """
    A login invariant was violated.

    Indicates a programming error: the state machine was about to enter a
    state whose context does not satisfy its guarantees.
    """

    pass
