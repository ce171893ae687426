"""
Unit tests for authorize_ldap.directory.session module.

Tests the service bind, searches, rebinds, cleanup and the settings
health check.
"""

import attrs
import pytest
from returns.result import Failure, Success

from authorize_ldap.core.exceptions import (
    DirectorySearchError,
    InvalidConfigurationError,
    StateError,
)
from authorize_ldap.core.types import ServiceSettings
from authorize_ldap.directory.session import (
    DirectorySession,
    SessionState,
    build_connection,
    validate_settings,
)


class TestBuildConnection:
    """Tests for the ldap3 connection factory."""

    def test_protocol_options(self, settings):
        connection = build_connection(settings)
        assert connection.version == 3
        assert connection.auto_referrals is False
        assert connection.read_only is True
        assert connection.closed

    def test_explicit_port(self):
        connection = build_connection(ServiceSettings(url="ldap.example.com", port=1389))
        assert connection.server.port == 1389

    def test_default_port(self):
        connection = build_connection(ServiceSettings(url="ldap.example.com"))
        assert connection.server.port == 389


class TestDirectorySessionOpen:
    """Tests for opening a session."""

    def test_open_binds_service_account(self, settings, directory):
        session = DirectorySession.open(settings, directory.connect)
        assert session.state == SessionState.SERVICE_BOUND
        assert directory.connections[0].bind_users == [settings.service_username]

    def test_wrong_service_password(self, settings, directory):
        bad = attrs.evolve(settings, service_password="wrong-password")
        with pytest.raises(InvalidConfigurationError) as exc_info:
            DirectorySession.open(bad, directory.connect)
        assert "wrong-password" not in exc_info.value.message
        assert directory.connections[0].unbind_calls == 1

    def test_unreachable_server(self, settings, directory):
        directory.reachable = False
        with pytest.raises(InvalidConfigurationError, match="Unable to connect"):
            DirectorySession.open(settings, directory.connect)

    def test_passthrough_without_password_skips_bind(self, directory):
        settings = ServiceSettings(url="ldap.example.com", ntlm_passthrough=True)
        session = DirectorySession.open(settings, directory.connect)
        assert session.state == SessionState.CONNECTED
        assert directory.connections[0].bind_users == []

    def test_passthrough_with_password_still_binds(self, settings, directory):
        passthrough = attrs.evolve(settings, ntlm_passthrough=True)
        session = DirectorySession.open(passthrough, directory.connect)
        assert session.state == SessionState.SERVICE_BOUND

    def test_connect_twice_rejected(self, settings, directory):
        session = DirectorySession.open(settings, directory.connect)
        with pytest.raises(StateError):
            session.connect(directory.connect)


class TestDirectorySessionSearch:
    """Tests for DirectorySession.search."""

    @pytest.fixture
    def session(self, settings, directory) -> DirectorySession:
        return DirectorySession.open(settings, directory.connect)

    def test_search_returns_entries(self, session):
        entries = session.search("dc=example,dc=com", "(sAMAccountName=jdoe)", ["mail"])
        assert len(entries) == 1
        assert entries[0].dn == "cn=John Doe,dc=example,dc=com"
        assert entries[0].first("mail") == "jdoe@example.com"

    def test_search_requests_default_attributes(self, session, directory):
        session.search("dc=example,dc=com", "(uid=jdoe)", ["mail", "SAMAccountName"])
        assert directory.searches[0]["attributes"] == ["mail", "SAMAccountName", "memberOf"]

    def test_zero_results_is_not_an_error(self, session, directory):
        directory.entries = []
        assert session.search("dc=example,dc=com", "(uid=nobody)", []) == []

    def test_referrals_ignored(self, session, directory):
        directory.referrals = ["ldap://other.example.com/dc=other"]
        entries = session.search("dc=example,dc=com", "(uid=jdoe)", [])
        assert len(entries) == 1

    def test_search_failure(self, session, directory):
        directory.search_error = {"result": 32, "description": "noSuchObject"}
        with pytest.raises(DirectorySearchError) as exc_info:
            session.search("dc=missing", "(uid=jdoe)", [])
        assert exc_info.value.code == 32
        assert "noSuchObject" in exc_info.value.message

    def test_search_after_close(self, session):
        session.close()
        with pytest.raises(StateError):
            session.search("dc=example,dc=com", "(uid=jdoe)", [])


class TestDirectorySessionRebind:
    """Tests for DirectorySession.rebind."""

    @pytest.fixture
    def session(self, settings, directory) -> DirectorySession:
        return DirectorySession.open(settings, directory.connect)

    def test_rebind_success(self, session):
        result = session.rebind("cn=John Doe,dc=example,dc=com", "secret")
        assert isinstance(result, Success)
        assert result.unwrap() == "cn=John Doe,dc=example,dc=com"
        assert session.state == SessionState.USER_BOUND

    def test_rebind_wrong_password(self, session):
        result = session.rebind("cn=John Doe,dc=example,dc=com", "wrong")
        assert isinstance(result, Failure)
        assert result.failure() == "invalidCredentials"

    def test_empty_credential_refused_without_io(self, session, directory):
        result = session.rebind("cn=John Doe,dc=example,dc=com", "")
        assert isinstance(result, Failure)
        assert directory.connections[0].bind_users == [session.settings.service_username]

    def test_no_search_after_rebind(self, session):
        session.rebind("cn=John Doe,dc=example,dc=com", "wrong")
        with pytest.raises(StateError):
            session.search("dc=example,dc=com", "(uid=jdoe)", [])


class TestDirectorySessionClose:
    """Tests for closing a session."""

    def test_close_idempotent(self, settings, directory):
        session = DirectorySession.open(settings, directory.connect)
        session.close()
        session.close()
        assert session.closed
        assert directory.connections[0].unbind_calls == 1

    def test_context_manager_closes_on_error(self, settings, directory):
        with pytest.raises(RuntimeError):
            with DirectorySession.open(settings, directory.connect):
                raise RuntimeError("boom")
        assert directory.connections[0].closed


class TestValidateSettings:
    """Tests for the non-raising settings check."""

    def test_valid_settings(self, settings, directory):
        report = validate_settings(settings, directory.connect)
        assert report.connected
        assert report.authenticated
        assert report.errors == ()
        assert report.ok
        assert directory.connections[0].unbind_calls == 1

    def test_unreachable(self, settings, directory):
        directory.reachable = False
        report = validate_settings(settings, directory.connect)
        assert report.connected is False
        assert report.authenticated is False
        assert len(report.errors) == 1

    def test_rejected_credentials(self, settings, directory):
        bad = attrs.evolve(settings, service_password="wrong-password")
        report = validate_settings(bad, directory.connect)
        assert report.connected
        assert not report.authenticated
        assert "invalidCredentials" in report.errors[0]
        assert all("wrong-password" not in e for e in report.errors)

    def test_factory_error_reported(self, settings):
        def broken_factory(_settings):
            raise ValueError("bad url")

        report = validate_settings(settings, broken_factory)
        assert not report.connected
        assert "bad url" in report.errors[0]

    def test_passthrough_bind_skipped(self, directory):
        settings = ServiceSettings(url="ldap.example.com", ntlm_passthrough=True)
        report = validate_settings(settings, directory.connect)
        assert report.connected
        assert report.bind_skipped
        assert report.ok

    def test_unreachable_real_server(self):
        settings = ServiceSettings(url="ldap://127.0.0.1", port=1, timeout=0.5)
        report = validate_settings(settings)
        assert report.connected is False
        assert report.authenticated is False
        assert report.errors
