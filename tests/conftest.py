"""
Pytest configuration and shared fixtures for authorize-ldap tests.
"""

from typing import Any, Dict, List, Optional

import pytest
from ldap3.core.exceptions import LDAPSocketOpenError

from authorize_ldap.core.types import LoginRequest, ServiceSettings
from authorize_ldap.strategy.ldap import LDAPStrategy


SERVICE_DN = "cn=svc,dc=example,dc=com"
SERVICE_PASSWORD = "svcpw"
USER_DN = "cn=John Doe,dc=example,dc=com"
USER_PASSWORD = "secret"


# =============================================================================
# FAKE DIRECTORY
# =============================================================================


class FakeDirectory:
    """
    In-memory stand-in for a directory server.

    Every search returns all configured entries (tests control the match
    count directly). Binds succeed when the password matches.
    """

    def __init__(
        self,
        entries: Optional[List[Dict[str, Any]]] = None,
        passwords: Optional[Dict[str, str]] = None,
    ) -> None:
        self.entries = entries if entries is not None else []
        self.passwords = passwords if passwords is not None else {}
        self.reachable = True
        self.search_error: Optional[Dict[str, Any]] = None
        self.referrals: List[str] = []
        self.connections: List["FakeConnection"] = []
        self.searches: List[Dict[str, Any]] = []

    def connect(self, settings: ServiceSettings) -> "FakeConnection":
        """Connection factory compatible with DirectorySession."""
        connection = FakeConnection(self, settings)
        self.connections.append(connection)
        return connection

    def check_password(self, user: Optional[str], password: Optional[str]) -> bool:
        if not user or not password:
            return False
        return self.passwords.get(user) == password


class FakeConnection:
    """Subset of the ldap3 Connection API used by DirectorySession."""

    def __init__(self, directory: FakeDirectory, settings: ServiceSettings) -> None:
        self.directory = directory
        self.user = settings.service_username or None
        self.password = settings.service_password or None
        self.version = 3
        self.auto_referrals = False
        self.closed = True
        self.bound = False
        self.result: Dict[str, Any] = {}
        self.response: List[Dict[str, Any]] = []
        self.bind_users: List[Optional[str]] = []
        self.unbind_calls = 0

    def open(self) -> None:
        if not self.directory.reachable:
            raise LDAPSocketOpenError(
                "socket connection error while opening: [Errno 111] Connection refused"
            )
        self.closed = False

    def bind(self) -> bool:
        self.bind_users.append(self.user)
        self.bound = self.directory.check_password(self.user, self.password)
        if self.bound:
            self.result = {"result": 0, "description": "success"}
        else:
            self.result = {"result": 49, "description": "invalidCredentials"}
        return self.bound

    def rebind(self, user: Optional[str] = None, password: Optional[str] = None) -> bool:
        self.user = user
        self.password = password
        return self.bind()

    def search(
        self,
        search_base: str,
        search_filter: str,
        search_scope: Any = None,
        attributes: Optional[List[str]] = None,
    ) -> bool:
        self.directory.searches.append(
            {
                "base": search_base,
                "filter": search_filter,
                "attributes": list(attributes or []),
                "user": self.user,
            }
        )
        if self.directory.search_error is not None:
            self.result = dict(self.directory.search_error)
            self.response = []
            return False

        self.response = [
            {"type": "searchResEntry", "dn": e["dn"], "attributes": e["attributes"]}
            for e in self.directory.entries
        ] + [
            {"type": "searchResRef", "uri": [uri]}
            for uri in self.directory.referrals
        ]
        self.result = {"result": 0, "description": "success"}
        return bool(self.directory.entries)

    def unbind(self) -> bool:
        self.unbind_calls += 1
        self.closed = True
        self.bound = False
        return True


# =============================================================================
# SETTINGS AND REQUEST FIXTURES
# =============================================================================


@pytest.fixture
def user_entry() -> Dict[str, Any]:
    """Directory entry for jdoe."""
    return {
        "dn": USER_DN,
        "attributes": {
            "sAMAccountName": ["jdoe"],
            "mail": ["jdoe@example.com"],
            "givenName": ["John"],
            "sn": ["Doe"],
            "memberOf": ["staff"],
        },
    }


@pytest.fixture
def directory(user_entry: Dict[str, Any]) -> FakeDirectory:
    """Directory holding jdoe and the service account."""
    return FakeDirectory(
        entries=[user_entry],
        passwords={SERVICE_DN: SERVICE_PASSWORD, USER_DN: USER_PASSWORD},
    )


@pytest.fixture
def make_directory():
    """Factory for directories that know the service account."""

    def _make(
        entries: Optional[List[Dict[str, Any]]] = None,
        passwords: Optional[Dict[str, str]] = None,
    ) -> FakeDirectory:
        return FakeDirectory(
            entries=entries,
            passwords={SERVICE_DN: SERVICE_PASSWORD, **(passwords or {})},
        )

    return _make


@pytest.fixture
def settings() -> ServiceSettings:
    """Service settings without an allow-list."""
    return ServiceSettings(
        url="ldap.example.com",
        port=389,
        service_username=SERVICE_DN,
        service_password=SERVICE_PASSWORD,
    )


@pytest.fixture
def field_map() -> Dict[str, str]:
    """Field map with the display name aliased to the entry DN."""
    return {
        "id": "sAMAccountName",
        "display_name": "dn",
        "username": "sAMAccountName",
        "email": "mail",
        "firstname": "givenName",
        "lastname": "sn",
    }


@pytest.fixture
def login_request(field_map: Dict[str, str]) -> LoginRequest:
    """Complete login request for jdoe."""
    return LoginRequest(
        username="jdoe",
        credential=USER_PASSWORD,
        search_filter="(sAMAccountName={username})",
        search_base="dc=example,dc=com",
        field_map=field_map,
    )


@pytest.fixture
def strategy(settings: ServiceSettings, directory: FakeDirectory) -> LDAPStrategy:
    """LDAP strategy wired to the fake directory."""
    return LDAPStrategy(settings=settings, connection_factory=directory.connect)


# =============================================================================
# PYTEST MARKERS
# =============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests requiring a real directory server"
    )
