"""URL normalization and crawl scope policy.

Every check in this module is pure. Together they are the only gate between
"a link was seen on a page" and "a link is scheduled for loading".
"""

import re
from typing import Optional
from urllib.parse import quote, urlsplit, urlunsplit

from crawlite.errors import InvalidURLError


_HTTP_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)
_ANY_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.\-]*://", re.IGNORECASE)
# Schemes written without "//" (mailto:x, tel:x); a bare "host:port" must not match
_OPAQUE_SCHEME_RE = re.compile(r"^(mailto|tel|sms|javascript|data|about|blob|file):", re.IGNORECASE)

DEFAULT_PORTS = {"http": 80, "https": 443}

# Characters left unescaped when re-quoting a path; '%' keeps existing escapes intact
_PATH_SAFE_CHARS = "/%:@!$&'()*+,;=-._~"

NON_HTML_EXTENSIONS = frozenset({
    # Documents
    'pdf', 'doc', 'docx', 'xls', 'xlsx', 'ppt', 'pptx', 'odt', 'ods', 'odp',
    'rtf', 'txt', 'csv',
    # Archives
    'zip', 'rar', '7z', 'tar', 'gz', 'bz2', 'xz',
    # Executables and installers
    'exe', 'msi', 'dmg', 'apk',
    # Video
    'mp4', 'webm', 'mkv', 'mov', 'avi', 'wmv', 'flv', 'm4v',
    # Audio
    'mp3', 'wav', 'flac', 'ogg', 'm4a',
})


def normalize_url(raw: str) -> str:
    """Normalize a URL into its canonical identity form.

    Bare domains get ``https://`` prepended. The scheme and host are
    lowercased, default ports and the fragment are dropped, and trailing
    slashes are removed from the path. The result is idempotent:
    ``normalize_url(normalize_url(u)) == normalize_url(u)``.

    Args:
        raw: URL as written in a link, sitemap or user input

    Returns:
        Normalized URL string

    Raises:
        InvalidURLError: If the input cannot be parsed as an http(s) URL
    """
    if not isinstance(raw, str):
        raise InvalidURLError(repr(raw), "URL must be a string")

    value = raw.strip()
    if not value:
        raise InvalidURLError(raw, "empty URL")

    if not _HTTP_SCHEME_RE.match(value):
        if _ANY_SCHEME_RE.match(value) or _OPAQUE_SCHEME_RE.match(value):
            raise InvalidURLError(raw, "unsupported scheme")
        value = f"https://{value}"

    try:
        parts = urlsplit(value)
        port = parts.port
    except ValueError as e:
        raise InvalidURLError(raw, str(e)) from e

    host = parts.hostname
    if not host or any(ch.isspace() for ch in parts.netloc):
        raise InvalidURLError(raw, "missing or malformed host")

    scheme = parts.scheme.lower()
    netloc = f"[{host}]" if ":" in host else host
    if port is not None and port != DEFAULT_PORTS.get(scheme):
        netloc = f"{netloc}:{port}"
    if parts.username:
        userinfo = parts.username
        if parts.password:
            userinfo = f"{userinfo}:{parts.password}"
        netloc = f"{userinfo}@{netloc}"

    path = quote(parts.path, safe=_PATH_SAFE_CHARS).rstrip("/")
    return urlunsplit((scheme, netloc, path, parts.query, ""))


def safe_normalize_url(raw: str) -> str:
    """Normalize a URL, returning an empty string when it does not parse."""
    try:
        return normalize_url(raw)
    except InvalidURLError:
        return ""


def _strip_www(host: str) -> str:
    return host[4:] if host.startswith("www.") else host


def host_of(url: str) -> str:
    """Return the lowercase hostname of a URL with a leading ``www.`` removed.

    Returns an empty string for URLs that do not parse.
    """
    normalized = safe_normalize_url(url)
    if not normalized:
        return ""
    return _strip_www(urlsplit(normalized).hostname or "")


def is_internal(url: str, base_host: str) -> bool:
    """Check whether a URL is http(s) and lives on ``base_host``."""
    if not base_host or not isinstance(url, str):
        return False
    if _ANY_SCHEME_RE.match(url.strip()) and not _HTTP_SCHEME_RE.match(url.strip()):
        return False
    return host_of(url) == _strip_www(base_host.lower())


def folder_boundary_of(seed_path: str) -> str:
    """Compute the folder a folder-restricted crawl may not leave.

    The boundary is the directory that contains the seed resource:
    ``/blog/post`` and ``/blog/index.html`` both give ``/blog``, while a
    path with a trailing slash names the directory itself (``/blog/`` gives
    ``/blog``). The site root gives ``""``, which admits every path.

    Args:
        seed_path: Path component of the seed URL, before normalization

    Returns:
        Folder boundary without a trailing slash
    """
    path = (seed_path or "/").split("?", 1)[0].split("#", 1)[0]
    if not path.startswith("/"):
        path = f"/{path}"

    if path.endswith("/"):
        return path.rstrip("/")

    parent, _, _last = path.rpartition("/")
    return parent.rstrip("/")


def _path_of(url: str) -> Optional[str]:
    normalized = safe_normalize_url(url)
    if not normalized:
        return None
    return urlsplit(normalized).path.rstrip("/")


def is_under_folder(url: str, boundary: str) -> bool:
    """Check whether a URL's path equals ``boundary`` or is nested under it."""
    path = _path_of(url)
    if path is None:
        return False
    boundary = (boundary or "").rstrip("/")
    if not boundary:
        return True
    return path == boundary or path.startswith(f"{boundary}/")


def is_non_html_resource(url: str) -> bool:
    """Check whether a URL points at a document, archive, executable or media file."""
    try:
        path = urlsplit(url.strip()).path
    except (AttributeError, ValueError):
        return False

    last_segment = path.rsplit("/", 1)[-1].lower()
    if "." not in last_segment:
        return False
    return last_segment.rsplit(".", 1)[-1] in NON_HTML_EXTENSIONS


def with_default_scheme(raw: str) -> str:
    """Trim a user-supplied URL and prepend ``https://`` when it has no http(s) scheme."""
    value = (raw or "").strip()
    if value and not _HTTP_SCHEME_RE.match(value):
        value = f"https://{value}"
    return value
