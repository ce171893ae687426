"""
authorize-ldap - Directory Authentication Strategy

Authenticates users against an LDAP-compatible directory and returns a
normalized identity record.

Flow:
- Service bind with a privileged search account
- Templated user search with injection-safe username escaping
- Attribute mapping onto a fixed identity schema plus custom fields
- Attribute-based allow-list authorization
- Credential verification by rebinding as the user, or NTLM passthrough

Example Usage:
    from authorize_ldap import LDAPStrategy, LoginRequest, ServiceSettings

    settings = ServiceSettings(
        url="ldap.example.com",
        port=389,
        service_username="svc",
        service_password="svcpw",
    )
    strategy = LDAPStrategy(settings=settings)

    identity = strategy.login(LoginRequest(
        username="jdoe",
        credential="secret",
        search_filter="(sAMAccountName={username})",
        search_base="dc=example,dc=com",
        field_map={
            "id": "sAMAccountName",
            "display_name": "dn",
            "username": "sAMAccountName",
            "email": "mail",
            "firstname": "givenName",
            "lastname": "sn",
        },
    ))
    print(f"Authenticated as {identity.display_name}")
"""

from authorize_ldap.core.types import (
    Identity,
    LoginRequest,
    ServiceSettings,
    SettingsReport,
)
from authorize_ldap.core.exceptions import (
    AuthorizeLdapError,
    AuthenticationError,
    AuthorizationError,
    DirectorySearchError,
    InvalidConfigurationError,
    MissingArgumentsError,
    UserNotFoundError,
)
from authorize_ldap.directory.session import DirectorySession, validate_settings
from authorize_ldap.strategy.ldap import (
    LDAPStrategy,
    LoginStateMachine,
    create_ldap_strategy,
)

__version__ = "0.1.0"

__all__ = [
    # Main API
    "LDAPStrategy",
    "create_ldap_strategy",
    "LoginStateMachine",
    "DirectorySession",
    "validate_settings",
    # Types
    "Identity",
    "LoginRequest",
    "ServiceSettings",
    "SettingsReport",
    # Exceptions
    "AuthorizeLdapError",
    "AuthenticationError",
    "AuthorizationError",
    "DirectorySearchError",
    "InvalidConfigurationError",
    "MissingArgumentsError",
    "UserNotFoundError",
    # Metadata
    "__version__",
]
