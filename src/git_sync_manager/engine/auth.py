"""Authenticated remote URLs.

Credentials are injected as URL userinfo. The resulting URL is a secret:
log ``redact_url(url)`` instead, never the URL itself.
"""

from __future__ import annotations

from urllib.parse import quote, urlsplit, urlunsplit

_HTTP_SCHEMES = ("http", "https")


def build_authenticated_url(base_url: str, username: str, token: str) -> str:
    """Embed *username* and *token* into *base_url*.

    Both parts are percent-encoded. Any userinfo already present in the URL
    is replaced. URLs that do not parse as ``http(s)://host/...`` fall back
    to a plain substitution of a leading ``https://``; local paths and other
    schemes come back unchanged.
    """
    if not username and not token:
        return base_url

    userinfo = quote(username, safe="")
    if token:
        userinfo = f"{userinfo}:{quote(token, safe='')}"

    try:
        parts = urlsplit(base_url)
    except ValueError:
        parts = None

    if parts is not None and parts.scheme in _HTTP_SCHEMES and parts.hostname:
        host = parts.netloc.rpartition("@")[2]
        return urlunsplit(
            (parts.scheme, f"{userinfo}@{host}", parts.path, parts.query, parts.fragment)
        )

    if base_url.startswith("https://"):
        return base_url.replace("https://", f"https://{userinfo}@", 1)
    return base_url


def redact_url(url: str) -> str:
    """Return *url* with any password in its userinfo replaced by ``***``."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    if "@" not in parts.netloc:
        return url
    userinfo, _, host = parts.netloc.rpartition("@")
    user, sep, _secret = userinfo.partition(":")
    masked = f"{user}:***" if sep else user
    return urlunsplit((parts.scheme, f"{masked}@{host}", parts.path, parts.query, parts.fragment))
