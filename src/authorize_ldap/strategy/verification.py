"""
authorize-ldap Credential Verification

Two ways to verify a resolved user:

- BindVerifier: bind as the user's DN with the supplied password
- PassthroughVerifier: trust an assertion from an upstream transport that
  already authenticated the user (NTLM/Kerberos negotiation)

WARNING: Passthrough skips cryptographic verification entirely. It is only
selected when the service settings enable it explicitly AND the request
carries no credential.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

import attrs
import structlog
from attrs import field
from returns.result import Failure, Result, Success

from authorize_ldap.core.exceptions import MissingArgumentsError
from authorize_ldap.core.types import DirectoryEntry, LoginRequest, ServiceSettings
from authorize_ldap.directory.session import DirectorySession

logger = structlog.get_logger()


class CredentialVerifier(ABC):
    """Verification strategy for a resolved directory entry."""

    method: str = ""

    @abstractmethod
    def verify(self, session: DirectorySession, entry: DirectoryEntry) -> Result[str, str]:
        """
        Verify the user behind entry.

        Returns:
            Success(dn) if verified, Failure(reason) otherwise
        """
        ...


@attrs.define(frozen=True, slots=True)
class BindVerifier(CredentialVerifier):
    """Verify by binding as the entry's DN."""

    credential: str = field(repr=False)

    method = "bind"

    def verify(self, session: DirectorySession, entry: DirectoryEntry) -> Result[str, str]:
        return session.rebind(entry.dn, self.credential)


@attrs.define(frozen=True, slots=True)
class PassthroughVerifier(CredentialVerifier):
    """Accept or reject based on an upstream transport assertion."""

    asserted: bool

    method = "ntlm_passthrough"

    def verify(self, session: DirectorySession, entry: DirectoryEntry) -> Result[str, str]:
        logger.warning(
            "ntlm_passthrough_trusted",
            dn=entry.dn,
            asserted=self.asserted,
        )
        if self.asserted:
            return Success(entry.dn)
        return Failure("transport did not assert authentication")


def select_verifier(settings: ServiceSettings, request: LoginRequest) -> CredentialVerifier:
    """
    Choose how to verify the request.

    An explicit credential always wins. Passthrough is used only when
    settings.ntlm_passthrough is on and no credential was supplied; the
    asserted outcome is request.transport_authenticated when given,
    otherwise the passthrough flag itself.

    Raises:
        MissingArgumentsError: If there is no credential and passthrough is off
    """
    if request.credential is not None:
        return BindVerifier(credential=request.credential)
    if settings.ntlm_passthrough:
        asserted = request.transport_authenticated
        if asserted is None:
            asserted = settings.ntlm_passthrough
        return PassthroughVerifier(asserted=bool(asserted))
    raise MissingArgumentsError(["credential"])
