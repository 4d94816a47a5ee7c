from __future__ import annotations

import re
from urllib.parse import urlparse, urlunparse

URL_PATTERN = re.compile(r"https?://[^\s<>\"')\]]+", re.IGNORECASE)
TRAILING_PUNCTUATION = ".,;:!?"
MAX_QUERY_URLS = 3


def is_valid_url(url: str) -> bool:
    """Basic URL validation."""
    try:
        result = urlparse(url)
        return all([result.scheme in ("http", "https"), result.netloc])
    except Exception:
        return False


def hostname(url: str) -> str:
    """Lowercased hostname with a leading ``www.`` removed."""
    try:
        host = (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""
    if host.startswith("www."):
        host = host[4:]
    return host


def normalize_url(url: str) -> str:
    """Canonical form used as a source identity key.

    Scheme and host are lowercased, ``www.`` and default ports dropped,
    fragments removed and trailing slashes trimmed from the path.
    """
    raw = (url or "").strip()
    try:
        parsed = urlparse(raw)
    except ValueError:
        return raw
    if not parsed.scheme or not parsed.netloc:
        return raw

    scheme = parsed.scheme.lower()
    host = hostname(raw)
    port = parsed.port
    if port and not ((scheme == "http" and port == 80) or (scheme == "https" and port == 443)):
        host = f"{host}:{port}"
    path = parsed.path.rstrip("/")
    return urlunparse((scheme, host, path, "", parsed.query, ""))


def extract_urls_from_query(query: str, limit: int = MAX_QUERY_URLS) -> list[str]:
    """Pull explicit http(s) URLs out of free text, in order, without duplicates."""
    found: list[str] = []
    seen: set[str] = set()
    for match in URL_PATTERN.findall(query or ""):
        url = match.rstrip(TRAILING_PUNCTUATION)
        if not is_valid_url(url):
            continue
        key = normalize_url(url)
        if key in seen:
            continue
        seen.add(key)
        found.append(url)
        if len(found) >= limit:
            break
    return found


def clean_content(text: str, max_length: int = 8000) -> str:
    """Clean scraped content: collapse whitespace, trim to max length."""
    text = re.sub(r"\s+", " ", text).strip()
    if len(text) > max_length:
        text = text[:max_length] + "..."
    return text


def truncate(text: str, max_length: int) -> str:
    """Trim to at most ``max_length`` characters, ellipsis included."""
    if max_length <= 0 or len(text) <= max_length:
        return text
    if max_length <= 3:
        return text[:max_length]
    return text[: max_length - 3].rstrip() + "..."


def favicon_url(url: str) -> str | None:
    host = hostname(url)
    if not host:
        return None
    return f"https://www.google.com/s2/favicons?domain={host}&sz=64"


def first_sentence(text: str, max_length: int = 100) -> str:
    cleaned = re.sub(r"\s+", " ", text or "").strip()
    if not cleaned:
        return ""
    match = re.search(r"(.+?[.!?])(\s|$)", cleaned)
    sentence = match.group(1) if match else cleaned
    return truncate(sentence, max_length)
