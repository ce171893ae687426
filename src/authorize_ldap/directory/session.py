"""
authorize-ldap Directory Session

One live connection to an LDAP server, bound as the service account.

Protocol options:
- LDAPv3
- Referral chasing disabled, so the configured server stays authoritative
- Read-only: no write operation is ever issued

A session is not safe for concurrent use. rebind() replaces the service
identity on the connection with the end user's, after which the session
only accepts close().
"""

from __future__ import annotations

from enum import Enum, auto
from typing import Any, Callable, Iterable, List, Optional

import attrs
import structlog
from ldap3 import NONE, SUBTREE, Connection, Server
from ldap3.core.exceptions import LDAPException
from ldap3.core.results import RESULT_SUCCESS
from returns.result import Failure, Result, Success

from authorize_ldap.core.exceptions import (
    DirectorySearchError,
    InvalidConfigurationError,
    StateError,
)
from authorize_ldap.core.types import DirectoryEntry, ServiceSettings, SettingsReport

logger = structlog.get_logger()

# Builds an unopened ldap3-compatible connection for the given settings.
ConnectionFactory = Callable[[ServiceSettings], Any]


# =============================================================================
# CONNECTION FACTORY
# =============================================================================


def build_connection(settings: ServiceSettings) -> Connection:
    """
    Create an unopened ldap3 connection for the service account.

    Args:
        settings: Directory service settings

    Returns:
        ldap3 Connection (no network I/O has happened yet)
    """
    server = Server(
        settings.url,
        port=settings.port,
        get_info=NONE,
        connect_timeout=settings.timeout,
    )
    return Connection(
        server,
        user=settings.service_username or None,
        password=settings.service_password or None,
        version=3,
        auto_referrals=False,
        read_only=True,
        raise_exceptions=False,
        receive_timeout=settings.timeout,
    )


def _redact(message: str, settings: ServiceSettings) -> str:
    """Remove the service password from a diagnostic message."""
    if settings.service_password:
        return message.replace(settings.service_password, "********")
    return message


def _result_description(connection: Any) -> str:
    result = getattr(connection, "result", None) or {}
    return str(result.get("description") or "unknown")


# =============================================================================
# DIRECTORY SESSION
# =============================================================================


class SessionState(Enum):
    """Authentication state of the underlying connection."""

    CLOSED = auto()
    CONNECTED = auto()  # Opened; service bind skipped (passthrough)
    SERVICE_BOUND = auto()
    USER_BOUND = auto()  # After rebind; no further searches allowed


@attrs.define
class DirectorySession:
    """
    Service-bound directory connection.

    Example:
        with DirectorySession.open(settings) as session:
            entries = session.search(
                "dc=example,dc=com",
                "(sAMAccountName=jdoe)",
                ["mail"],
            )
            outcome = session.rebind(entries[0].dn, "secret")
    """

    settings: ServiceSettings

    _connection: Optional[Any] = attrs.field(default=None, repr=False)
    _state: SessionState = SessionState.CLOSED
    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    @classmethod
    def open(
        cls,
        settings: ServiceSettings,
        connection_factory: Optional[ConnectionFactory] = None,
    ) -> DirectorySession:
        """
        Connect to the directory and perform the service bind.

        The bind is skipped when NTLM passthrough is enabled and no service
        password is configured.

        Raises:
            InvalidConfigurationError: If the connection cannot be opened or
                the service credentials are rejected
        """
        session = cls(settings=settings)
        session.connect(connection_factory or build_connection)
        return session

    @property
    def state(self) -> SessionState:
        """Current connection state."""
        return self._state

    @property
    def closed(self) -> bool:
        return self._state == SessionState.CLOSED

    def connect(self, connection_factory: ConnectionFactory = build_connection) -> None:
        """Open the connection and bind as the service account."""
        if not self.closed:
            raise StateError("Directory session is already connected")

        log = self._logger.bind(url=self.settings.url, port=self.settings.port)

        try:
            self._connection = connection_factory(self.settings)
            self._connection.open()
        except LDAPException as e:
            message = _redact(str(e), self.settings)
            log.error("ldap_connect_failed", error=message)
            self.close()
            raise InvalidConfigurationError(
                f"Unable to connect to directory server {self.settings.url}: {message}"
            ) from e

        self._state = SessionState.CONNECTED

        if self.settings.skips_service_bind:
            log.info("ldap_service_bind_skipped", reason="ntlm_passthrough")
            return

        try:
            bound = self._connection.bind()
            reason = _result_description(self._connection)
        except LDAPException as e:
            bound = False
            reason = _redact(str(e), self.settings)

        if not bound:
            log.error(
                "ldap_service_bind_failed",
                service_username=self.settings.service_username,
                reason=reason,
            )
            self.close()
            raise InvalidConfigurationError(
                f"Invalid LDAP settings, please fix them and try again ({reason})"
            )

        self._state = SessionState.SERVICE_BOUND
        log.debug("ldap_service_bind", service_username=self.settings.service_username)

    def search(
        self,
        base: str,
        search_filter: str,
        attributes: Iterable[str],
    ) -> List[DirectoryEntry]:
        """
        Search the subtree under base.

        The settings' default attributes and authorization attribute are
        always requested in addition to the given ones.

        Args:
            base: Search base DN
            search_filter: Rendered, already escaped filter
            attributes: Attribute names to request

        Returns:
            Matching entries; empty when nothing matched

        Raises:
            DirectorySearchError: If the search operation failed
            StateError: If the session is closed or already rebound
        """
        if self._state not in (SessionState.CONNECTED, SessionState.SERVICE_BOUND):
            raise StateError(f"Cannot search in session state {self._state.name}")

        requested = self._requested_attributes(attributes)
        log = self._logger.bind(base=base, search_filter=search_filter)

        try:
            self._connection.search(
                search_base=base,
                search_filter=search_filter,
                search_scope=SUBTREE,
                attributes=requested,
            )
        except LDAPException as e:
            log.error("ldap_search_failed", error=str(e))
            raise DirectorySearchError(f"Directory search failed: {e}") from e

        result = self._connection.result or {}
        code = result.get("result", RESULT_SUCCESS)
        if code != RESULT_SUCCESS:
            description = _result_description(self._connection)
            log.error("ldap_search_failed", code=code, description=description)
            raise DirectorySearchError(
                f"Directory search failed: {description}", code=code
            )

        entries = [
            DirectoryEntry(dn=item["dn"], attributes=item.get("attributes") or {})
            for item in self._connection.response or []
            if item.get("type") == "searchResEntry"
        ]
        log.debug("ldap_search", matches=len(entries))
        return entries

    def rebind(self, dn: str, credential: str) -> Result[str, str]:
        """
        Bind the connection as dn with the user's credential.

        A rejected credential is an expected outcome and is returned as a
        Failure, never raised. Empty credentials are refused without any
        network I/O, since a simple bind with an empty password is an
        unauthenticated bind.

        Returns:
            Success(dn) if the bind succeeded, Failure(reason) otherwise
        """
        if self._state not in (SessionState.CONNECTED, SessionState.SERVICE_BOUND):
            raise StateError(f"Cannot rebind in session state {self._state.name}")
        if not dn:
            return Failure("empty dn")
        if not credential:
            return Failure("empty credential")

        self._state = SessionState.USER_BOUND

        try:
            bound = self._connection.rebind(user=dn, password=credential)
        except LDAPException as e:
            self._logger.info("ldap_rebind_rejected", dn=dn, reason=type(e).__name__)
            return Failure(type(e).__name__)

        if not bound:
            reason = _result_description(self._connection)
            self._logger.info("ldap_rebind_rejected", dn=dn, reason=reason)
            return Failure(reason)

        self._logger.debug("ldap_rebind", dn=dn)
        return Success(dn)

    def close(self) -> None:
        """Unbind and release the connection. Safe to call repeatedly."""
        connection, self._connection = self._connection, None
        self._state = SessionState.CLOSED
        if connection is None:
            return
        try:
            connection.unbind()
        except LDAPException as e:
            self._logger.debug("ldap_unbind_failed", error=str(e))
        self._logger.debug("ldap_session_closed", url=self.settings.url)

    def _requested_attributes(self, attributes: Iterable[str]) -> List[str]:
        requested: List[str] = []
        extra = list(self.settings.default_attributes) + [self.settings.authorization_attribute]
        for name in list(attributes) + extra:
            if name and name.lower() not in (r.lower() for r in requested):
                requested.append(name)
        return requested

    def __enter__(self) -> DirectorySession:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


# =============================================================================
# SETTINGS HEALTH CHECK
# =============================================================================


def validate_settings(
    settings: ServiceSettings,
    connection_factory: Optional[ConnectionFactory] = None,
) -> SettingsReport:
    """
    Probe the directory with the given settings.

    Never raises: every failure is reported in SettingsReport.errors.

    Args:
        settings: Settings to check
        connection_factory: Connection builder (defaults to ldap3)

    Returns:
        SettingsReport with connected/authenticated flags and errors
    """
    factory = connection_factory or build_connection
    errors: List[str] = []
    connected = False
    authenticated = False
    connection = None

    try:
        connection = factory(settings)
        connection.open()
        connected = True
    except Exception as e:
        errors.append(
            _redact(f"Unable to connect to {settings.url}: {e}", settings)
        )

    if connected and not settings.skips_service_bind:
        try:
            authenticated = bool(connection.bind())
            if not authenticated:
                errors.append(
                    f"Service bind rejected: {_result_description(connection)}"
                )
        except Exception as e:
            errors.append(_redact(f"Service bind failed: {e}", settings))

    if connection is not None:
        try:
            connection.unbind()
        except Exception as e:
            logger.debug("ldap_unbind_failed", error=str(e))

    logger.info(
        "ldap_settings_checked",
        url=settings.url,
        connected=connected,
        authenticated=authenticated,
        errors=len(errors),
    )
    return SettingsReport(
        connected=connected,
        authenticated=authenticated,
        bind_skipped=connected and settings.skips_service_bind,
        errors=errors,
    )
