"""
Image id and fetch URL helpers for Schedules Direct artwork.

Artwork descriptors reference images either by absolute URL
(``https://json.schedulesdirect.org/20141201/image/<id>.jpg?token=...``) or
by bare id. Cached files and index entries always use the bare id.
"""

from __future__ import annotations

from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from guideart import __version__

PROJECT_URL = "https://github.com/guideart/guideart"
DEFAULT_SD_BASE_URL = "https://json.schedulesdirect.org/20141201/"

_IMAGE_SUFFIX = ".jpg"


def _is_absolute(uri: str) -> bool:
    return uri.startswith("http://") or uri.startswith("https://")


def _strip_suffix(value: str) -> str:
    if value.endswith(_IMAGE_SUFFIX):
        return value[: -len(_IMAGE_SUFFIX)]
    return value


def image_id_from_uri(uri: str) -> str:
    """
    Extract the image id from a bare id or an absolute image URL.

    Parameters
    ----------
    uri : str
        Bare id (``abc123`` or ``abc123.jpg``) or absolute URL.

    Returns
    -------
    str
        Last path segment without the ``.jpg`` suffix; empty for blank input.

    Examples
    --------
    >>> image_id_from_uri("https://json.schedulesdirect.org/20141201/image/abc.jpg?token=x")
    'abc'
    >>> image_id_from_uri("abc.jpg")
    'abc'
    """
    uri = uri.strip()
    if _is_absolute(uri):
        path = urlsplit(uri).path.strip("/")
        return _strip_suffix(path.rsplit("/", 1)[-1])
    return _strip_suffix(uri)


def build_fetch_url(uri: str, token: str, base_url: str = DEFAULT_SD_BASE_URL) -> str:
    """
    Build the URL used to download an image with a fresh token.

    Absolute URLs keep their path and get their ``token`` query parameter
    replaced (or added). Bare ids are expanded to the canonical
    ``{base}image/{id}.jpg?token=...`` form.

    Parameters
    ----------
    uri : str
        Candidate uri or bare image id.
    token : str
        Current upstream session token.
    base_url : str, optional
        Schedules Direct API base URL, ending in ``/``.

    Returns
    -------
    str
        Fully qualified image URL.
    """
    uri = uri.strip()
    if _is_absolute(uri):
        parts = urlsplit(uri)
        query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != "token"]
        query.append(("token", token))
        return urlunsplit(
            (parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment)
        )

    if not base_url.endswith("/"):
        base_url += "/"
    image_id = _strip_suffix(uri)
    return f"{base_url}image/{image_id}{_IMAGE_SUFFIX}?{urlencode({'token': token})}"


def user_agent() -> str:
    """Versioned User-Agent sent with every upstream request."""
    return f"guideart/{__version__} ({PROJECT_URL})"
