"""Normalization helpers for Matrix user identifiers."""

from __future__ import annotations

DEFAULT_DOMAIN = "matrix.org"


def normalize_user_id(user_id: str, *, default_domain: str = DEFAULT_DOMAIN) -> str:
    """Return a fully-qualified `@localpart:domain` user id.

    Prefixes the `@` sigil when missing and appends `:default_domain` when the
    identifier carries no server part.
    """

    normalized = user_id.strip()
    if not normalized or normalized == "@":
        raise ValueError("user id cannot be blank")
    if not normalized.startswith("@"):
        normalized = f"@{normalized}"
    if ":" not in normalized:
        normalized = f"{normalized}:{default_domain}"
    return normalized


def server_name_of(user_id: str) -> str:
    """Return the server part of a fully-qualified user id."""

    _, _, server_name = user_id.partition(":")
    if not server_name:
        raise ValueError(f"user id has no server part: {user_id}")
    return server_name
