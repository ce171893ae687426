"""
authorize-ldap Search Filter Helpers

Escaping and template rendering for user search filters.

The username is escaped before it is substituted into the template, so a
username can never change the parenthesis or operator structure of the
filter. Only "{username}" is substituted; any other brace text in the
template is left as-is.
"""

from __future__ import annotations

from ldap3.utils.conv import escape_filter_chars

from authorize_ldap.core.types import USERNAME_PLACEHOLDER

# Characters with special meaning in an LDAP filter (RFC 4515).
FILTER_METACHARACTERS = ("\\", "*", "(", ")", "\x00")


def escape_filter_value(value: str) -> str:
    """
    Escape filter metacharacters as backslash-hex sequences.

    Examples:
        "jdoe" -> "jdoe"
        "j*)(uid=*" -> "j\\2a\\29\\28uid=\\2a"
    """
    return escape_filter_chars(value)


def has_username_placeholder(template: str) -> bool:
    """Return True if the template contains the "{username}" placeholder."""
    return USERNAME_PLACEHOLDER in template


def render_filter(template: str, username: str) -> str:
    """
    Substitute the escaped username into a filter template.

    Args:
        template: Filter template, e.g. "(sAMAccountName={username})"
        username: Raw, unescaped username

    Returns:
        Rendered search filter
    """
    return template.replace(USERNAME_PLACEHOLDER, escape_filter_value(username))
