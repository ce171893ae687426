"""
authorize-ldap Core Types

Value types shared by the directory session and the authentication
strategy.

Design Principles:
- Immutable: settings, requests, entries and identities are frozen attrs
- Validated: type constraints enforced at construction
- Typed field mapping: canonical fields are an enum, and the entry DN is an
  explicit attribute source rather than a magic attribute name
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

import attrs
from attrs import field, validators

from authorize_ldap.core.exceptions import InvalidConfigurationError

# Placeholder identity token; this package never mints real tokens.
ACCESS_TOKEN_PLACEHOLDER = "ldap"

# Field-map value meaning "use the entry's own DN".
DN_SENTINEL = "dn"

USERNAME_PLACEHOLDER = "{username}"

DEFAULT_AUTHORIZATION_ATTRIBUTE = "memberOf"
DEFAULT_REQUESTED_ATTRIBUTES = ("sAMAccountName",)
DEFAULT_TIMEOUT = 10.0


# =============================================================================
# HELPERS
# =============================================================================


def split_tags(values: Iterable[str]) -> List[str]:
    """
    Split comma-delimited tag values into an ordered, de-duplicated list.

    Examples:
        ["staff,contractor", "staff"] -> ["staff", "contractor"]
        [" admins ", ""] -> ["admins"]
    """
    tags: List[str] = []
    for value in values:
        for tag in str(value).split(","):
            tag = tag.strip()
            if tag and tag not in tags:
                tags.append(tag)
    return tags


def _to_tag_tuple(value: Union[str, Iterable[str], None]) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(split_tags([value]))
    return tuple(split_tags(value))


def _to_port(value: Union[int, str, None]) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(value)


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _to_text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


# =============================================================================
# CONFIGURATION
# =============================================================================


@attrs.define(frozen=True, slots=True)
class ServiceSettings:
    """
    Directory service settings.

    Built once and shared by every login attempt.

    Attributes:
        url: Directory server URL or hostname (e.g., "ldap://dc.example.com")
        port: Server port, None for the protocol default
        service_username: DN (or UPN) of the privileged search account
        service_password: Password of the search account
        allowed_attributes: Tags granting access; empty means everyone passes
        ntlm_passthrough: Trust an upstream NTLM/Kerberos negotiation instead
            of binding with the user's password
        authorization_attribute: Entry attribute holding the user's tags
        default_attributes: Attributes always requested by searches
        timeout: Connect and receive timeout in seconds
        search_base: Default search base for requests that omit one
        search_filter: Default filter template for requests that omit one
    """

    url: str = field(validator=[validators.instance_of(str), validators.min_len(1)])
    port: Optional[int] = field(default=None, converter=_to_port)
    service_username: str = ""
    service_password: str = field(default="", repr=False)
    allowed_attributes: Tuple[str, ...] = field(factory=tuple, converter=_to_tag_tuple)
    ntlm_passthrough: bool = field(default=False, converter=_to_bool)
    authorization_attribute: str = DEFAULT_AUTHORIZATION_ATTRIBUTE
    default_attributes: Tuple[str, ...] = field(
        default=DEFAULT_REQUESTED_ATTRIBUTES, converter=_to_tag_tuple
    )
    timeout: float = field(default=DEFAULT_TIMEOUT, converter=float)
    search_base: str = ""
    search_filter: str = ""

    @property
    def skips_service_bind(self) -> bool:
        """Passthrough mode without a service password connects unbound."""
        return self.ntlm_passthrough and not self.service_password

    @classmethod
    def from_mapping(cls, settings: Mapping[str, Any]) -> ServiceSettings:
        """
        Create settings from the nested configuration layout.

        Expected layout:
            {
                "connection": {"url": ..., "port": ...},
                "application": {
                    "username": ..., "password": ...,
                    "allowed_attributes": "staff,contractor",
                    "ntlm_passthrough": False,
                    "search_base": ..., "search_name": ...,
                },
            }

        Raises:
            InvalidConfigurationError: If a required key is missing
        """
        connection = settings.get("connection") or {}
        application = settings.get("application") or {}
        passthrough = _to_bool(application.get("ntlm_passthrough", False))

        missing = []
        if not connection.get("url"):
            missing.append("connection -> url")
        if not passthrough:
            for key in ("username", "password"):
                if application.get(key) is None:
                    missing.append(f"application -> {key}")
        if missing:
            raise InvalidConfigurationError(
                f"Missing required parameters ({', '.join(missing)})"
            )

        search_filter = application.get("search_filter") or application.get("search_name") or ""
        optional = {
            key: application[key]
            for key in ("authorization_attribute", "default_attributes", "timeout")
            if application.get(key) is not None
        }

        try:
            return cls(
                url=str(connection["url"]),
                port=connection.get("port"),
                service_username=str(application.get("username") or ""),
                service_password=str(application.get("password") or ""),
                allowed_attributes=application.get("allowed_attributes"),
                ntlm_passthrough=passthrough,
                search_base=str(application.get("search_base") or ""),
                search_filter=str(search_filter),
                **optional,
            )
        except (TypeError, ValueError) as e:
            raise InvalidConfigurationError(f"Invalid LDAP settings: {e}") from e


# =============================================================================
# FIELD MAPPING
# =============================================================================


class CanonicalField(Enum):
    """Identity fields every field map must provide."""

    ID = "id"
    DISPLAY_NAME = "display_name"
    USERNAME = "username"
    EMAIL = "email"
    FIRSTNAME = "firstname"
    LASTNAME = "lastname"

    @property
    def nullable(self) -> bool:
        """Return True if a missing attribute maps to None instead of ""."""
        return self in (CanonicalField.USERNAME, CanonicalField.EMAIL)


@attrs.define(frozen=True, slots=True)
class EntryDN:
    """Attribute source resolving to the entry's distinguished name."""

    def __str__(self) -> str:
        return DN_SENTINEL


ENTRY_DN = EntryDN()


@attrs.define(frozen=True, slots=True)
class Attribute:
    """Attribute source resolving to the first value of a named attribute."""

    name: str = field(validator=[validators.instance_of(str), validators.min_len(1)])

    def __str__(self) -> str:
        return self.name


AttributeSource = Union[Attribute, EntryDN]


def parse_source(value: Union[str, AttributeSource]) -> AttributeSource:
    """Parse a field-map value; "dn" (any case) selects the entry DN."""
    if isinstance(value, (Attribute, EntryDN)):
        return value
    if value.strip().lower() == DN_SENTINEL:
        return ENTRY_DN
    return Attribute(value.strip())


@attrs.define(frozen=True, slots=True)
class FieldMap:
    """
    Mapping from identity fields to directory attribute sources.

    canonical holds the six identity fields, custom holds any extra
    caller-defined fields carried through to Identity.custom.
    """

    canonical: Mapping[CanonicalField, AttributeSource] = field(factory=dict)
    custom: Mapping[str, AttributeSource] = field(factory=dict)

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Union[str, AttributeSource]]) -> FieldMap:
        """
        Build a field map from a flat {field: attribute} mapping.

        Empty values are treated as absent.
        """
        canonical: Dict[CanonicalField, AttributeSource] = {}
        custom: Dict[str, AttributeSource] = {}
        for key, value in mapping.items():
            if value is None or value == "":
                continue
            source = parse_source(value)
            try:
                canonical[CanonicalField(key)] = source
            except ValueError:
                custom[key] = source
        return cls(canonical=canonical, custom=custom)

    def missing_fields(self) -> List[str]:
        """Return names of canonical fields with no source."""
        return [f.value for f in CanonicalField if f not in self.canonical]

    def requested_attributes(self) -> List[str]:
        """Return attribute names to request, in field order."""
        names: List[str] = []
        sources = list(self.canonical.values()) + list(self.custom.values())
        for source in sources:
            if isinstance(source, Attribute) and source.name not in names:
                names.append(source.name)
        return names


def _to_field_map(value: Union[FieldMap, Mapping[str, Any], None]) -> FieldMap:
    if isinstance(value, FieldMap):
        return value
    return FieldMap.from_mapping(value or {})


# =============================================================================
# REQUEST AND RESULT TYPES
# =============================================================================


@attrs.define(frozen=True, slots=True)
class LoginRequest:
    """
    A single login or lookup request.

    Attributes:
        username: Raw username; escaped before it reaches the filter
        credential: Password to verify, None in passthrough mode
        search_filter: Filter template containing "{username}"
        search_base: Subtree root to search under
        field_map: Identity field mapping (plain mappings are converted)
        transport_authenticated: Upstream assertion used in passthrough mode
    """

    username: Optional[str] = None
    credential: Optional[str] = field(default=None, repr=False)
    search_filter: str = ""
    search_base: str = ""
    field_map: FieldMap = field(factory=FieldMap, converter=_to_field_map)
    transport_authenticated: Optional[bool] = None


def _normalize_attributes(attributes: Mapping[str, Any]) -> Dict[str, Tuple[str, ...]]:
    normalized: Dict[str, Tuple[str, ...]] = {}
    for name, raw in attributes.items():
        if raw is None:
            values: Tuple[str, ...] = ()
        elif isinstance(raw, (list, tuple)):
            values = tuple(_to_text(v) for v in raw)
        else:
            values = (_to_text(raw),)
        normalized[name.lower()] = values
    return normalized


@attrs.define(frozen=True, slots=True)
class DirectoryEntry:
    """
    One search result.

    Attribute names are case-insensitive, so they are stored lower-cased.
    Every attribute is multi-valued.
    """

    dn: str
    attributes: Mapping[str, Tuple[str, ...]] = field(
        factory=dict, converter=_normalize_attributes
    )

    def values(self, name: str) -> Tuple[str, ...]:
        """Return all values of an attribute (empty if absent)."""
        return self.attributes.get(name.lower(), ())

    def first(self, name: str) -> Optional[str]:
        """Return the first value of an attribute, or None."""
        values = self.values(name)
        return values[0] if values else None

    def resolve(self, source: AttributeSource) -> Optional[str]:
        """Resolve a field-map source against this entry."""
        if isinstance(source, EntryDN):
            return self.dn
        return self.first(source.name)


@attrs.define(frozen=True, slots=True)
class Identity:
    """
    Normalized identity of an authenticated (or looked up) user.

    username and email are None when the mapped attribute is absent; the
    other canonical fields fall back to "".
    """

    id: str
    display_name: str
    username: Optional[str] = None
    email: Optional[str] = None
    firstname: str = ""
    lastname: str = ""
    access_token: str = ACCESS_TOKEN_PLACEHOLDER
    custom: Mapping[str, str] = field(factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a plain dictionary for the host's session layer."""
        return {
            "id": self.id,
            "display_name": self.display_name,
            "username": self.username,
            "email": self.email,
            "firstname": self.firstname,
            "lastname": self.lastname,
            "access_token": self.access_token,
            "custom": dict(self.custom),
        }


@attrs.define(frozen=True, slots=True)
class SettingsReport:
    """Outcome of a settings health check."""

    connected: bool = False
    authenticated: bool = False
    bind_skipped: bool = False
    errors: Tuple[str, ...] = field(factory=tuple, converter=tuple)

    @property
    def ok(self) -> bool:
        """True when the settings are usable for logins."""
        return self.connected and (self.authenticated or self.bind_skipped) and not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "connected": self.connected,
            "authenticated": self.authenticated,
            "bind_skipped": self.bind_skipped,
            "errors": list(self.errors),
        }
