from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any

from research_engine.tools.web_utils import hostname, normalize_url, truncate


@dataclass(frozen=True)
class Source:
    """A candidate web page.

    Created unscraped by a search provider and replaced at most once by the
    source processor with a scraped (or failed) copy. Never mutated.
    """

    url: str
    title: str = ""
    description: str = ""
    extracted_text: str = ""
    markdown: str = ""
    favicon: str | None = None
    screenshot: str | None = None
    scraped: bool = False
    summary: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    @property
    def key(self) -> str:
        return normalize_url(self.url)

    @property
    def hostname(self) -> str:
        return hostname(self.url)

    @property
    def content(self) -> str:
        """Best available text for grounding."""
        return self.markdown or self.extracted_text or self.description

    @property
    def relevance(self) -> float:
        return float(self.metadata.get("relevance", 0.0))

    def updated(self, **changes: Any) -> "Source":
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "url": self.url,
            "title": self.title,
            "description": self.description,
            "scraped": self.scraped,
            "summary": self.summary,
        }
        if self.favicon:
            data["favicon"] = self.favicon
        if self.screenshot:
            data["screenshot"] = self.screenshot
        if self.error:
            data["error"] = self.error
        return data


@dataclass(frozen=True)
class ConversationTurn:
    query: str
    response: str = ""

    def bounded(self, char_limit: int) -> "ConversationTurn":
        return ConversationTurn(
            query=truncate(self.query, char_limit),
            response=truncate(self.response, char_limit),
        )


@dataclass(frozen=True)
class ResearchQuery:
    text: str
    context: tuple[ConversationTurn, ...] = ()

    @classmethod
    def build(
        cls,
        text: str,
        context: list[ConversationTurn] | list[dict[str, str]] | None = None,
        *,
        char_limit: int = 500,
        max_turns: int = 5,
    ) -> "ResearchQuery":
        turns: list[ConversationTurn] = []
        for item in context or []:
            if isinstance(item, ConversationTurn):
                turn = item
            else:
                turn = ConversationTurn(
                    query=str(item.get("query", "")),
                    response=str(item.get("response", "")),
                )
            turns.append(turn.bounded(char_limit))
        if max_turns >= 0:
            turns = turns[-max_turns:] if max_turns else []
        return cls(text=text.strip(), context=tuple(turns))
