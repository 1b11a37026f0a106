"""Shared URL utilities: normalize URLs and derive stable node IDs."""

from __future__ import annotations

from urllib.parse import urljoin, urlparse

from qamap.utils.hashing import hash_string

_SKIP_EXTENSIONS = (
    ".png", ".jpg", ".jpeg", ".gif", ".svg", ".ico", ".webp",
    ".css", ".js", ".map", ".woff", ".woff2", ".ttf", ".eot",
    ".pdf", ".zip", ".tar", ".gz", ".mp3", ".mp4", ".webm",
    ".xml", ".rss", ".atom", ".json",
)


def _path_and_query(parsed) -> str:
    path = parsed.path.rstrip("/") or "/"
    if not parsed.query:
        return path
    return path + "?" + "&".join(sorted(parsed.query.split("&")))


def node_id_from_url(url: str) -> str:
    """Stable node ID: hash of the normalized path plus sorted query string.

    The scheme and host are left out, so ``http`` and ``https`` links to the
    same page share one node.
    """
    parsed = urlparse(url)
    if not parsed.scheme:
        return hash_string(url)
    return hash_string(_path_and_query(parsed))


def extract_route(url: str, base_url: str) -> str:
    """Strip the base URL, leaving the route (``/`` for the root)."""
    base = base_url.rstrip("/")
    route = url[len(base):] if url.startswith(base) else urlparse(url).path
    return route or "/"


def resolve_url(href: str, base_url: str) -> str:
    return urljoin(base_url, href)


def is_same_origin(base_url: str, candidate_url: str) -> bool:
    return urlparse(base_url).netloc == urlparse(candidate_url).netloc


def is_valid_page_url(url: str) -> bool:
    """Filter out non-page URLs."""
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https"):
        return False
    path_lower = parsed.path.lower()
    return not any(path_lower.endswith(ext) for ext in _SKIP_EXTENSIONS)
