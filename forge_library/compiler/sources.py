"""Checks for caller-supplied module source URLs.

Custom module repositories come straight from the caller, so they are
treated as untrusted. They are never interpolated into script text; the
build script receives them as positional arguments. This module decides
which URLs are acceptable in the first place.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from urllib.parse import urlsplit

_UNSAFE_CHARS = re.compile(r"[\s\x00-\x1f\x7f'\"`$\\;|&<>(){}]")


@dataclass
class SourceCheck:
    """Outcome of checking one source URL.

    Attributes:
        url: URL as supplied
        host: Lower-cased host name, when one could be parsed
        reason: Why the URL was rejected, None when accepted
    """

    url: str
    host: str | None = None
    reason: str | None = None

    @property
    def ok(self) -> bool:
        return self.reason is None


def check_source_url(url: str, allowed_hosts: list[str] | tuple[str, ...] = ()) -> SourceCheck:
    """Check that a custom module URL is safe to hand to git clone.

    Accepted URLs use https, carry no credentials, point at a repository
    path and contain no whitespace, control or shell metacharacters. When
    allowed_hosts is non-empty the host must be one of them.

    Args:
        url: Repository URL supplied by the caller
        allowed_hosts: Permitted host names (empty means any host)

    Returns:
        SourceCheck with reason set when the URL is rejected

    Examples:
        >>> check_source_url("https://github.com/vozlt/nginx-module-vts.git", ["github.com"]).ok
        True
        >>> check_source_url("git://github.com/x/y.git").reason
        'only https URLs are allowed'
    """
    if not url:
        return SourceCheck(url=url, reason="URL is empty")
    if url.startswith("-"):
        return SourceCheck(url=url, reason="URL must not start with '-'")
    if _UNSAFE_CHARS.search(url):
        return SourceCheck(url=url, reason="URL contains whitespace, control or shell characters")

    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError as e:
        return SourceCheck(url=url, reason=f"URL could not be parsed: {e}")

    if parts.scheme.lower() != "https":
        return SourceCheck(url=url, reason="only https URLs are allowed")
    if parts.username is not None or parts.password is not None:
        return SourceCheck(url=url, reason="credentials in URLs are not allowed")

    host = (parts.hostname or "").lower()
    if not host:
        return SourceCheck(url=url, reason="URL has no host")
    if port is not None and port != 443:
        return SourceCheck(url=url, host=host, reason="non-standard ports are not allowed")
    if allowed_hosts and host not in {h.lower() for h in allowed_hosts}:
        return SourceCheck(url=url, host=host, reason=f"host '{host}' is not in the allowed source hosts")

    path = parts.path.strip("/")
    if not path or "/" not in path:
        return SourceCheck(url=url, host=host, reason="URL must point at a repository (owner/name)")
    if ".." in path.split("/"):
        return SourceCheck(url=url, host=host, reason="URL path must not contain '..'")
    if parts.query or parts.fragment:
        return SourceCheck(url=url, host=host, reason="query strings and fragments are not allowed")

    return SourceCheck(url=url, host=host)
