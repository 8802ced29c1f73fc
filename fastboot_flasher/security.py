"""Input sanitisation for paths and URLs handed to subprocesses and HTTP."""

from __future__ import annotations

import re
from collections.abc import Sequence
from urllib.parse import urlsplit

MAX_PATH_LENGTH = 4096

ALLOWED_URL_SCHEMES = ("http", "https")

# Traversal, NUL and shell metacharacters
_DANGEROUS_PATH_PATTERNS = (
    re.compile(r"\.\.[/\\]"),
    re.compile(r"\x00"),
    re.compile(r"[|&;`$(){}*?<>]"),
)


def is_safe_file_path(path: str) -> bool:
    """Check a user-supplied path before it is passed to fastboot.

    Args:
        path: Path as entered by the user.

    Returns:
        False for empty or overlong paths, traversal, NUL bytes or shell
        metacharacters.
    """
    if not path or len(path) > MAX_PATH_LENGTH:
        return False
    return not any(pattern.search(path) for pattern in _DANGEROUS_PATH_PATTERNS)


def _host_matches(host: str, domain: str) -> bool:
    domain = domain.lower().lstrip(".")
    return host == domain or host.endswith("." + domain)


def is_allowed_url(url: str, allowed_domains: Sequence[str] | None = None) -> bool:
    """Check that a URL may be downloaded.

    Args:
        url: URL to check.
        allowed_domains: Domains (and their subdomains) that are allowed;
            any host is allowed if empty or None.

    Returns:
        True for http/https URLs with a host on the allow-list.
    """
    try:
        parts = urlsplit(url)
    except ValueError:
        return False

    if parts.scheme.lower() not in ALLOWED_URL_SCHEMES or not parts.hostname:
        return False

    if not allowed_domains:
        return True

    host = parts.hostname.lower()
    return any(_host_matches(host, domain) for domain in allowed_domains)


__all__ = ["ALLOWED_URL_SCHEMES", "MAX_PATH_LENGTH", "is_allowed_url", "is_safe_file_path"]
