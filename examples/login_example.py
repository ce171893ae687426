#!/usr/bin/env python3
"""
LDAP Login Example

Demonstrates how to use authorize-ldap's LDAPStrategy to authenticate a
user against a directory server.

Features:
1. Settings loaded from the nested configuration layout
2. Settings health check before the first login
3. Allow-list authorization on memberOf
4. Credential verification by rebinding as the user
5. State machine trace export for auditing

Configure the directory through environment variables:
    LDAP_URL, LDAP_PORT, LDAP_SERVICE_DN, LDAP_SERVICE_PASSWORD,
    LDAP_SEARCH_BASE, LDAP_USERNAME, LDAP_PASSWORD
"""

import getpass
import os

from authorize_ldap import (
    AuthorizeLdapError,
    LoginRequest,
    LoginStateMachine,
    create_ldap_strategy,
)


def main():
    """Demonstrate a directory login."""

    print("=" * 70)
    print("authorize-ldap - Directory Login")
    print("=" * 70)
    print()

    # ==========================================================================
    # EXAMPLE 1: Create Strategy
    # ==========================================================================
    print("1. Create LDAP Strategy")
    print("-" * 40)

    strategy = create_ldap_strategy({
        "connection": {
            "url": os.environ.get("LDAP_URL", "ldap://localhost"),
            "port": os.environ.get("LDAP_PORT", "389"),
        },
        "application": {
            "username": os.environ.get("LDAP_SERVICE_DN", "cn=admin,dc=example,dc=com"),
            "password": os.environ.get("LDAP_SERVICE_PASSWORD", "admin"),
            "search_base": os.environ.get("LDAP_SEARCH_BASE", "dc=example,dc=com"),
            "search_name": "(uid={username})",
            "allowed_attributes": os.environ.get("LDAP_ALLOWED", ""),
        },
    })

    print(f"   Server: {strategy.settings.url}:{strategy.settings.port}")
    print(f"   Allow-list: {', '.join(strategy.settings.allowed_attributes) or '(none)'}")
    print()

    # ==========================================================================
    # EXAMPLE 2: Check Settings
    # ==========================================================================
    print("2. Check Settings")
    print("-" * 40)

    report = strategy.check()
    print(f"   Connected: {report.connected}")
    print(f"   Service Bind: {report.authenticated}")
    for error in report.errors:
        print(f"   Error: {error}")
    print()

    if not report.ok:
        print("   Fix the settings above and run again.")
        return

    # ==========================================================================
    # EXAMPLE 3: Login
    # ==========================================================================
    print("3. Login")
    print("-" * 40)

    username = os.environ.get("LDAP_USERNAME") or input("   Username: ")
    password = os.environ.get("LDAP_PASSWORD") or getpass.getpass("   Password: ")

    request = LoginRequest(
        username=username,
        credential=password,
        field_map={
            "id": "uid",
            "display_name": "dn",
            "username": "uid",
            "email": "mail",
            "firstname": "givenName",
            "lastname": "sn",
        },
    )

    machine = LoginStateMachine.create()
    try:
        identity = strategy.login(request, machine=machine)
    except AuthorizeLdapError as e:
        print(f"   Login: FAILED ({type(e).__name__})")
        print(f"   Error: {e.message}")
    else:
        print("   Login: SUCCESS")
        print(f"   Id: {identity.id}")
        print(f"   Display Name: {identity.display_name}")
        print(f"   Email: {identity.email}")
    print(f"   Final State: {machine.state.name}")
    print()

    # ==========================================================================
    # EXAMPLE 4: Export Trace
    # ==========================================================================
    print("4. Export Trace")
    print("-" * 40)
    print(machine.export_trace_json())
    print()


if __name__ == "__main__":
    main()
