from __future__ import annotations
import re
from urllib.parse import urlsplit, urlunsplit, unquote_plus

# Parámetros de tracking que nunca forman parte de la identidad de un artículo
TRACKING_PARAMS = frozenset({
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_term",
    "utm_content",
    "gclid",
    "fbclid",
    "spm",
    "igshid",
    "mc_eid",
})

DEFAULT_PORTS = {"http": "80", "https": "443"}

_URLISH = re.compile(r"^https?://", re.IGNORECASE)
_AMP_SUFFIX = re.compile(r"(?:/amp)+/*$")


def looks_like_url(value: str | None) -> bool:
    return bool(value) and bool(_URLISH.match(value))


def _normalize_netloc(scheme: str, netloc: str) -> str:
    userinfo, sep, hostport = netloc.rpartition("@")
    hostport = hostport.lower()
    host, colon, port = hostport.rpartition(":")
    if colon and port.isdigit() and port == DEFAULT_PORTS.get(scheme):
        hostport = host
    return f"{userinfo}{sep}{hostport}"


def _strip_tracking(query: str) -> str:
    # Se conservan los pares originales (orden, repetidos, encoding)
    kept = []
    for pair in query.split("&"):
        if not pair:
            continue
        key = unquote_plus(pair.split("=", 1)[0])
        if key in TRACKING_PARAMS:
            continue
        kept.append(pair)
    return "&".join(kept)


def canonicalize_url(url: str | None) -> str | None:
    """
    Forma canónica de una URL para almacenamiento y comparación de identidad.

    Reglas, en orden:
    - se descarta el fragmento (#...)
    - se eliminan los parámetros de tracking (utm_*, gclid, fbclid, ...)
    - si no queda ningún parámetro se descarta el query string
    - se colapsa el sufijo /amp del path
    - se quita el slash final en paths que no son la raíz

    Si el string no es una URL absoluta parseable se devuelve tal cual.
    """
    if not url:
        return None

    try:
        parts = urlsplit(url.strip())
    except ValueError:
        return url

    if not parts.scheme or not parts.netloc:
        return url

    scheme = parts.scheme.lower()
    netloc = _normalize_netloc(scheme, parts.netloc)
    query = _strip_tracking(parts.query)

    path = _AMP_SUFFIX.sub("", parts.path)
    if len(path) > 1:
        path = path.rstrip("/")
    if not path:
        path = "/"

    return urlunsplit((scheme, netloc, path, query, ""))
