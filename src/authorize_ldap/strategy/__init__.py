"""
authorize-ldap Strategy Module

Directory authentication built on top of a DirectorySession.

Components:
- ldap: LDAPStrategy (login, get_user, resolve_user, check) and the
  per-call LoginStateMachine
- verification: Bind and NTLM passthrough credential verifiers
- types: Login states, context and events
"""

from authorize_ldap.strategy.ldap import (
    LDAPStrategy,
    LoginStateMachine,
    create_ldap_strategy,
    map_entry,
)
from authorize_ldap.strategy.types import LoginContext, LoginState
from authorize_ldap.strategy.verification import (
    BindVerifier,
    CredentialVerifier,
    PassthroughVerifier,
    select_verifier,
)

__all__ = [
    "LDAPStrategy",
    "LoginStateMachine",
    "create_ldap_strategy",
    "map_entry",
    "LoginContext",
    "LoginState",
    "BindVerifier",
    "CredentialVerifier",
    "PassthroughVerifier",
    "select_verifier",
]
