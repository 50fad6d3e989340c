"""Canonical form of submitted URLs.

normalize_url() trims the input, requires an absolute URL (scheme and host),
drops the fragment and tracking parameters, lower-cases the host and returns
the re-serialized string. It is idempotent.
"""

from urllib.parse import urlsplit, urlunsplit
import re

from guardiao.config import TRACKING_PARAMS


class InvalidInput(ValueError):
    """Base class for input rejected before any scoring happens."""

    code = "invalid_input"


class InvalidURL(InvalidInput):
    code = "invalid_url"


_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*$")


def normalize_url(value, tracking_params=TRACKING_PARAMS) -> str:
    url = str(value or "").strip()
    if not url or any(c.isspace() for c in url):
        raise InvalidURL(f"not a URL: {value!r}")

    try:
        parts = urlsplit(url)
        host = parts.hostname
        port = parts.port
    except ValueError as e:
        raise InvalidURL(f"malformed URL {value!r}: {e}")

    if not parts.scheme or not _SCHEME_RE.match(parts.scheme) or not host:
        raise InvalidURL(f"URL needs a scheme and a host: {value!r}")

    netloc = host.lower()
    if ":" in netloc:
        # IPv6 literal
        netloc = f"[{netloc}]"
    if port is not None:
        netloc = f"{netloc}:{port}"
    if "@" in parts.netloc:
        userinfo = parts.netloc.rsplit("@", 1)[0]
        netloc = f"{userinfo}@{netloc}"

    path = parts.path or "/"

    kept = []
    for pair in parts.query.split("&"):
        if not pair:
            continue
        key = pair.split("=", 1)[0]
        if key in tracking_params:
            continue
        kept.append(pair)
    query = "&".join(kept)

    return urlunsplit((parts.scheme.lower(), netloc, path, query, ""))
