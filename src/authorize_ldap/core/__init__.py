"""
authorize-ldap Core Module

Provides foundational types and abstractions used by the directory session
and the authentication strategy.

Components:
- types: Settings, requests, field maps, entries and identities
- filters: Search filter escaping and rendering
- state_machine: Base state machine with invariant checking
- exceptions: Custom exception types
"""

from authorize_ldap.core.types import (
    ACCESS_TOKEN_PLACEHOLDER,
    ENTRY_DN,
    Attribute,
    CanonicalField,
    DirectoryEntry,
    EntryDN,
    FieldMap,
    Identity,
    LoginRequest,
    ServiceSettings,
    SettingsReport,
)
from authorize_ldap.core.filters import escape_filter_value, render_filter
from authorize_ldap.core.state_machine import StateMachineBase, Transition
from authorize_ldap.core.exceptions import (
    AuthorizeLdapError,
    AuthenticationError,
    AuthorizationError,
    DirectorySearchError,
    InvalidConfigurationError,
    InvariantViolation,
    MissingArgumentsError,
    StateError,
    UserNotFoundError,
)

__all__ = [
    # Types
    "ACCESS_TOKEN_PLACEHOLDER",
    "ENTRY_DN",
    "Attribute",
    "CanonicalField",
    "DirectoryEntry",
    "EntryDN",
    "FieldMap",
    "Identity",
    "LoginRequest",
    "ServiceSettings",
    "SettingsReport",
    # Filters
    "escape_filter_value",
    "render_filter",
    # State Machine
    "StateMachineBase",
    "Transition",
    # Exceptions
    "AuthorizeLdapError",
    "AuthenticationError",
    "AuthorizationError",
    "DirectorySearchError",
    "InvalidConfigurationError",
    "InvariantViolation",
    "MissingArgumentsError",
    "StateError",
    "UserNotFoundError",
]
