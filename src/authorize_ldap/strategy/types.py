"""
authorize-ldap Login Types

States, context and events of the per-call login state machine.

    INITIAL -> VALIDATED -> RESOLVED -> AUTHORIZED -> VERIFIED -> DONE

Any stage may move to FAILED. Terminal states accept no further events.
"""

from __future__ import annotations

from enum import Enum, auto
from typing import Optional, Tuple

import attrs


# =============================================================================
# LOGIN STATE MACHINE
# =============================================================================


class LoginState(Enum):
    """Login protocol states."""

    INITIAL = auto()
    VALIDATED = auto()
    RESOLVED = auto()
    AUTHORIZED = auto()
    VERIFIED = auto()
    DONE = auto()
    FAILED = auto()

    @property
    def is_terminal(self) -> bool:
        return self in (LoginState.DONE, LoginState.FAILED)


@attrs.define
class LoginContext:
    """
    Login context.

    Holds only identifiers and outcomes, never credentials or attribute
    values, so that traces are safe to export.
    """

    username: str = ""
    dn: str = ""
    display_name: str = ""
    matched_tags: Tuple[str, ...] = ()
    verification: str = ""
    verified: bool = False
    failed_stage: Optional[str] = None
    error_type: Optional[str] = None


# =============================================================================
# LOGIN EVENTS (for state machine)
# =============================================================================


@attrs.define(frozen=True, slots=True)
class RequestValidated:
    """Event: The request passed validation."""

    username: str


@attrs.define(frozen=True, slots=True)
class UserResolved:
    """Event: Exactly one entry matched and was mapped to an identity."""

    dn: str
    display_name: str


@attrs.define(frozen=True, slots=True)
class UserAuthorized:
    """Event: The allow-list check passed."""

    matched_tags: Tuple[str, ...] = ()


@attrs.define(frozen=True, slots=True)
class CredentialVerified:
    """Event: The credential (or passthrough assertion) was accepted."""

    method: str


@attrs.define(frozen=True, slots=True)
class LoginCompleted:
    """Event: The identity was handed back to the caller."""


@attrs.define(frozen=True, slots=True)
class LoginFailed:
    """Event: A stage failed."""

    stage: str
    error_type: str
