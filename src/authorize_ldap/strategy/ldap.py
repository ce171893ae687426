"""
authorize-ldap LDAP Strategy

Authenticate a user against an LDAP directory and return a normalized
Identity.

Login flow:
1. Validate the request (no network I/O for incomplete requests)
2. Open a dedicated DirectorySession (service bind)
3. Render the search filter with the escaped username and search
4. Require exactly one matching entry
5. Map the entry onto the identity fields
6. Check the allow-list against the authorization attribute
7. Verify the credential by rebinding as the user (or trust passthrough)
8. Close the session, whatever happened

Security Considerations:
- Usernames are escaped before filter interpolation
- Ambiguous matches are rejected like missing users
- Authentication failures carry one uniform message
- Each call gets its own connection, so concurrent logins never share
  bind state
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Tuple, Union

import attrs
import structlog
from returns.result import Failure, Result

from authorize_ldap.core.exceptions import (
    AuthenticationError,
    AuthorizationError,
    AuthorizeLdapError,
    MissingArgumentsError,
    StateError,
    UserNotFoundError,
)
from authorize_ldap.core.filters import has_username_placeholder, render_filter
from authorize_ldap.core.state_machine import StateMachineBase, TransitionEntry
from authorize_ldap.core.types import (
    CanonicalField,
    DirectoryEntry,
    FieldMap,
    Identity,
    LoginRequest,
    ServiceSettings,
    SettingsReport,
    split_tags,
)
from authorize_ldap.directory.session import (
    ConnectionFactory,
    DirectorySession,
    validate_settings,
)
from authorize_ldap.strategy.types import (
    CredentialVerified,
    LoginCompleted,
    LoginContext,
    LoginFailed,
    LoginState,
    RequestValidated,
    UserAuthorized,
    UserResolved,
)
from authorize_ldap.strategy.verification import select_verifier

logger = structlog.get_logger()


# =============================================================================
# LOGIN STATE MACHINE
# =============================================================================


@attrs.define
class LoginStateMachine(StateMachineBase[LoginState, Any, LoginContext]):
    """
    State machine for a single login attempt.

    States:
    - INITIAL: Nothing checked yet
    - VALIDATED: Request is complete
    - RESOLVED: Exactly one entry found and mapped
    - AUTHORIZED: Allow-list check passed
    - VERIFIED: Credential accepted
    - DONE: Identity returned
    - FAILED: Some stage failed
    """

    def __attrs_post_init__(self) -> None:
        self.add_invariant("resolved_has_identity", self._resolved_has_identity)
        self.add_invariant("done_requires_verification", self._done_requires_verification)

    @classmethod
    def create(cls) -> LoginStateMachine:
        return cls(_state=LoginState.INITIAL, _context=LoginContext())

    def initial_state(self) -> LoginState:
        return LoginState.INITIAL

    def transition_table(
        self,
    ) -> Dict[Tuple[LoginState, type], TransitionEntry]:
        table: Dict[Tuple[LoginState, type], TransitionEntry] = {
            (LoginState.INITIAL, RequestValidated): (
                LoginState.VALIDATED,
                self._handle_validated,
            ),
            (LoginState.VALIDATED, UserResolved): (
                LoginState.RESOLVED,
                self._handle_resolved,
            ),
            (LoginState.RESOLVED, UserAuthorized): (
                LoginState.AUTHORIZED,
                self._handle_authorized,
            ),
            (LoginState.AUTHORIZED, CredentialVerified): (
                LoginState.VERIFIED,
                self._handle_verified,
            ),
            (LoginState.VERIFIED, LoginCompleted): (
                LoginState.DONE,
                lambda event, ctx: ctx,
            ),
        }
        for state in LoginState:
            if not state.is_terminal:
                table[(state, LoginFailed)] = (LoginState.FAILED, self._handle_failed)
        return table

    @staticmethod
    def _handle_validated(event: RequestValidated, ctx: LoginContext) -> LoginContext:
        return attrs.evolve(ctx, username=event.username)

    @staticmethod
    def _handle_resolved(event: UserResolved, ctx: LoginContext) -> LoginContext:
        return attrs.evolve(ctx, dn=event.dn, display_name=event.display_name)

    @staticmethod
    def _handle_authorized(event: UserAuthorized, ctx: LoginContext) -> LoginContext:
        return attrs.evolve(ctx, matched_tags=event.matched_tags)

    @staticmethod
    def _handle_verified(event: CredentialVerified, ctx: LoginContext) -> LoginContext:
        return attrs.evolve(ctx, verification=event.method, verified=True)

    @staticmethod
    def _handle_failed(event: LoginFailed, ctx: LoginContext) -> LoginContext:
        return attrs.evolve(ctx, failed_stage=event.stage, error_type=event.error_type)

    @staticmethod
    def _resolved_has_identity(state: LoginState, ctx: LoginContext) -> bool:
        """Invariant: past resolution there is a DN and a display name."""
        if state in (
            LoginState.RESOLVED,
            LoginState.AUTHORIZED,
            LoginState.VERIFIED,
            LoginState.DONE,
        ):
            return bool(ctx.dn) and bool(ctx.display_name)
        return True

    @staticmethod
    def _done_requires_verification(state: LoginState, ctx: LoginContext) -> bool:
        """Invariant: no identity is handed out without verification."""
        if state == LoginState.DONE:
            return ctx.verified
        return True


# =============================================================================
# ENTRY MAPPING
# =============================================================================


def map_entry(entry: DirectoryEntry, field_map: FieldMap) -> Identity:
    """
    Map a directory entry onto an Identity.

    Canonical fields take the first attribute value. Missing values become
    "" except username and email, which become None. Custom fields become
    "" when missing.
    """
    values: Dict[str, Optional[str]] = {}
    for canonical in CanonicalField:
        source = field_map.canonical.get(canonical)
        value = entry.resolve(source) if source is not None else None
        if value is None and not canonical.nullable:
            value = ""
        values[canonical.value] = value

    custom = {
        key: entry.resolve(source) or ""
        for key, source in field_map.custom.items()
    }

    return Identity(
        id=values["id"],
        display_name=values["display_name"],
        username=values["username"],
        email=values["email"],
        firstname=values["firstname"],
        lastname=values["lastname"],
        custom=custom,
    )


# =============================================================================
# LDAP STRATEGY
# =============================================================================


@attrs.define
class LDAPStrategy:
    """
    Directory authentication strategy.

    Stateless apart from its settings: every call opens and closes its own
    DirectorySession, so one strategy can serve concurrent requests.

    Example:
        strategy = LDAPStrategy(settings=ServiceSettings(
            url="ldap://ldap.example.com",
            port=389,
            service_username="svc",
            service_password="svcpw",
        ))
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
    """

    settings: ServiceSettings
    connection_factory: Optional[ConnectionFactory] = None

    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    # -------------------------------------------------------------------------
    # Request handling
    # -------------------------------------------------------------------------

    def apply_defaults(self, request: LoginRequest) -> LoginRequest:
        """Fill an omitted search base or filter from the settings."""
        changes = {}
        if not request.search_base and self.settings.search_base:
            changes["search_base"] = self.settings.search_base
        if not request.search_filter and self.settings.search_filter:
            changes["search_filter"] = self.settings.search_filter
        return attrs.evolve(request, **changes) if changes else request

    def validate_request(self, request: LoginRequest, require_credential: bool = True) -> None:
        """
        Check that the request is complete.

        Raises:
            MissingArgumentsError: Listing every missing piece
        """
        missing = []
        if not request.username:
            missing.append("username")
        if (
            require_credential
            and request.credential is None
            and not self.settings.ntlm_passthrough
        ):
            missing.append("credential")
        if not request.search_filter:
            missing.append("search_filter")
        elif not has_username_placeholder(request.search_filter):
            missing.append("search_filter {username} placeholder")
        if not request.search_base:
            missing.append("search_base")
        missing.extend(
            f"field_map -> {name}" for name in request.field_map.missing_fields()
        )

        if missing:
            self._logger.info("login_request_invalid", missing=missing)
            raise MissingArgumentsError(missing)

    # -------------------------------------------------------------------------
    # Directory lookups
    # -------------------------------------------------------------------------

    def open_session(self) -> DirectorySession:
        """Open a new service-bound session."""
        return DirectorySession.open(self.settings, self.connection_factory)

    def find_entry(self, session: DirectorySession, request: LoginRequest) -> DirectoryEntry:
        """
        Search for the user's entry.

        Raises:
            DirectorySearchError: If the search failed
            UserNotFoundError: Unless exactly one entry matched
        """
        search_filter = render_filter(request.search_filter, request.username)
        entries = session.search(
            request.search_base,
            search_filter,
            request.field_map.requested_attributes(),
        )

        if len(entries) != 1:
            self._logger.info(
                "ldap_user_not_found",
                username=request.username,
                matches=len(entries),
            )
            raise UserNotFoundError()

        return entries[0]

    def map_identity(self, entry: DirectoryEntry, field_map: FieldMap) -> Identity:
        """
        Map the entry and require a display name.

        Raises:
            UserNotFoundError: If the DN or the display name is empty
        """
        identity = map_entry(entry, field_map)
        if not entry.dn or not identity.display_name:
            self._logger.warning("ldap_entry_without_display_name", dn=entry.dn)
            raise UserNotFoundError("Directory entry has no display name")
        return identity

    def authorize(self, entry: DirectoryEntry) -> Tuple[str, ...]:
        """
        Apply the allow-list.

        Returns:
            Allowed tags held by the user, in allow-list order (empty when
            no allow-list is configured)

        Raises:
            AuthorizationError: If an allow-list is set and nothing matches
        """
        allowed = self.settings.allowed_attributes
        if not allowed:
            return ()

        held = split_tags(entry.values(self.settings.authorization_attribute))
        matched = tuple(tag for tag in split_tags(allowed) if tag in held)
        if not matched:
            self._logger.info(
                "ldap_user_not_authorized",
                dn=entry.dn,
                attribute=self.settings.authorization_attribute,
            )
            raise AuthorizationError()
        return matched

    def resolve_user(
        self, session: DirectorySession, request: LoginRequest
    ) -> Tuple[DirectoryEntry, Identity]:
        """
        Find, map and authorize the user without checking a credential.

        Raises:
            DirectorySearchError, UserNotFoundError, AuthorizationError
        """
        entry = self.find_entry(session, request)
        identity = self.map_identity(entry, request.field_map)
        self.authorize(entry)
        return entry, identity

    # -------------------------------------------------------------------------
    # Public operations
    # -------------------------------------------------------------------------

    def login(
        self,
        request: LoginRequest,
        machine: Optional[LoginStateMachine] = None,
    ) -> Identity:
        """
        Authenticate a user.

        Args:
            request: Login request
            machine: Optional state machine to record the login trace in

        Returns:
            The user's Identity

        Raises:
            MissingArgumentsError: Incomplete request
            InvalidConfigurationError: Service connection or bind failed
            DirectorySearchError: Search failed
            UserNotFoundError: Zero or several matching entries
            AuthorizationError: Allow-list check failed
            AuthenticationError: Credential rejected
        """
        machine = machine or LoginStateMachine.create()
        request = self.apply_defaults(request)
        log = self._logger.bind(username=request.username)
        log.info("login_start", passthrough=self.settings.ntlm_passthrough)

        stage = "validate"
        try:
            self.validate_request(request)
            verifier = select_verifier(self.settings, request)
            self._advance(machine, RequestValidated(username=request.username))

            with self.open_session() as session:
                stage = "resolve"
                entry = self.find_entry(session, request)
                identity = self.map_identity(entry, request.field_map)
                self._advance(
                    machine,
                    UserResolved(dn=entry.dn, display_name=identity.display_name),
                )

                stage = "authorize"
                matched = self.authorize(entry)
                self._advance(machine, UserAuthorized(matched_tags=matched))

                stage = "verify"
                outcome: Result[str, str] = verifier.verify(session, entry)

            if isinstance(outcome, Failure):
                log.warning("login_rejected", dn=entry.dn, method=verifier.method)
                raise AuthenticationError()

            self._advance(machine, CredentialVerified(method=verifier.method))
            self._advance(machine, LoginCompleted())

        except AuthorizeLdapError as e:
            machine.process_event(LoginFailed(stage=stage, error_type=type(e).__name__))
            log.info("login_failed", stage=stage, error=type(e).__name__)
            raise

        log.info("login_success", dn=entry.dn, method=verifier.method)
        return identity

    def get_user(self, request: LoginRequest) -> Identity:
        """
        Look up a user without verifying a credential.

        Raises:
            MissingArgumentsError, InvalidConfigurationError,
            DirectorySearchError, UserNotFoundError, AuthorizationError
        """
        request = self.apply_defaults(request)
        self.validate_request(request, require_credential=False)
        with self.open_session() as session:
            _, identity = self.resolve_user(session, request)
        return identity

    def check(self) -> SettingsReport:
        """Run the settings health check. Never raises."""
        return validate_settings(self.settings, self.connection_factory)

    @staticmethod
    def _advance(machine: LoginStateMachine, event: Any) -> None:
        result = machine.process_event(event)
        if isinstance(result, Failure):
            raise StateError(result.failure())


# =============================================================================
# FACTORY FUNCTIONS
# =============================================================================


def create_ldap_strategy(
    settings: Union[ServiceSettings, Mapping[str, Any]],
    connection_factory: Optional[ConnectionFactory] = None,
) -> LDAPStrategy:
    """
    Create an LDAP strategy.

    Args:
        settings: ServiceSettings, or the nested configuration mapping
            accepted by ServiceSettings.from_mapping
        connection_factory: Connection builder (defaults to ldap3)

    Returns:
        Configured LDAPStrategy

    Example:
        strategy = create_ldap_strategy({
            "connection": {"url": "ldap.example.com", "port": 389},
            "application": {
                "username": "svc",
                "password": "svcpw",
                "allowed_attributes": "staff,contractor",
            },
        })
    """
    if not isinstance(settings, ServiceSettings):
        settings = ServiceSettings.from_mapping(settings)
    return LDAPStrategy(settings=settings, connection_factory=connection_factory)
