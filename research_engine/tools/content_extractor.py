from __future__ import annotations

import re
from dataclasses import dataclass

from bs4 import BeautifulSoup

NAV_MARKERS = (
    "main menu",
    "navigation",
    "jump to content",
    "cookie",
    "subscribe",
    "sign in",
)
BOILERPLATE_TAGS = ("script", "style", "noscript", "nav", "header", "footer", "aside", "form", "svg")
DEFAULT_MAX_CHARS = 20000


@dataclass
class ExtractedContent:
    url: str
    title: str
    text: str
    method: str
    fallback_used: bool
    raw_length: int
    extracted_length: int


def _normalize_text(text: str) -> str:
    text = text.replace("\xa0", " ")
    text = re.sub(r"\r\n?", "\n", text)
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def _truncate(text: str, max_chars: int) -> str:
    if max_chars <= 0 or len(text) <= max_chars:
        return text
    return text[:max_chars] + "..."


def _extract_title(raw_content: str) -> str:
    soup = BeautifulSoup(raw_content, "html.parser")
    title = soup.title.string if soup.title and soup.title.string else ""
    return _normalize_text(title)


def _looks_low_quality(text: str, min_chars: int) -> bool:
    if len(text) < min_chars:
        return True
    normalized = text.lower()
    marker_hits = sum(normalized.count(marker) for marker in NAV_MARKERS)
    return marker_hits >= 4 and len(text) < 2500


def _extract_with_trafilatura(raw_html: str, url: str) -> str:
    import trafilatura

    extracted = trafilatura.extract(raw_html, url=url, output_format="txt")
    if not isinstance(extracted, str):
        return ""
    return _normalize_text(extracted)


def _extract_with_soup(raw_html: str) -> str:
    soup = BeautifulSoup(raw_html, "html.parser")
    for tag in soup(BOILERPLATE_TAGS):
        tag.decompose()
    root = soup.find("article") or soup.find("main") or soup.body or soup
    return _normalize_text(root.get_text("\n"))


def looks_like_html(raw_content: str) -> bool:
    lowered = raw_content[:2000].lower()
    return "<html" in lowered or "<body" in lowered or "<!doctype html" in lowered


def extract_main_content(
    url: str,
    raw_content: str,
    *,
    max_chars: int = DEFAULT_MAX_CHARS,
    min_chars: int = 100,
) -> ExtractedContent:
    """Extract main article text from a fetched page.

    HTML goes through trafilatura first and falls back to a BeautifulSoup
    text dump with boilerplate tags removed. Markdown or plain text input is
    only normalized.
    """
    if not looks_like_html(raw_content):
        text = _truncate(_normalize_text(raw_content), max_chars)
        return ExtractedContent(
            url=url,
            title="",
            text=text,
            method="raw",
            fallback_used=False,
            raw_length=len(raw_content),
            extracted_length=len(text),
        )

    title = _extract_title(raw_content)
    primary_text = _extract_with_trafilatura(raw_content, url)
    if primary_text and not _looks_low_quality(primary_text, min_chars):
        clipped = _truncate(primary_text, max_chars)
        return ExtractedContent(
            url=url,
            title=title,
            text=clipped,
            method="trafilatura",
            fallback_used=False,
            raw_length=len(raw_content),
            extracted_length=len(clipped),
        )

    soup_text = _extract_with_soup(raw_content)
    best = soup_text if len(soup_text) > len(primary_text) else primary_text
    clipped = _truncate(best, max_chars)
    return ExtractedContent(
        url=url,
        title=title,
        text=clipped,
        method="beautifulsoup" if best is soup_text else "trafilatura",
        fallback_used=True,
        raw_length=len(raw_content),
        extracted_length=len(clipped),
    )
