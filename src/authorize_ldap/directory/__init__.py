"""
authorize-ldap Directory Module

Connection-level access to an LDAP server via ldap3.

Components:
- session: DirectorySession (service bind, search, rebind, close) and the
  non-raising validate_settings health check
"""

from authorize_ldap.directory.session import (
    ConnectionFactory,
    DirectorySession,
    SessionState,
    build_connection,
    validate_settings,
)

__all__ = [
    "ConnectionFactory",
    "DirectorySession",
    "SessionState",
    "build_connection",
    "validate_settings",
]
