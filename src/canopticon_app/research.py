#!filepath: src/canopticon_app/research.py
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Protocol, Sequence
from urllib.parse import quote_plus

import feedparser
import requests

from canopticon_app.utils.logger import get_logger
from canopticon_app.utils.text import strip_html

logger = get_logger(__name__)


class ResearchProvider(Protocol):
    """Supplies background context for synthesis."""

    def research(self, queries: Sequence[str]) -> str: ...


class NullResearch:
    """No external context."""

    def research(self, queries: Sequence[str]) -> str:
        return ""


@dataclass(frozen=True, slots=True)
class NewsRssResearch:
    """Recent coverage from a news search RSS endpoint.

    A failing query contributes nothing; research is optional context and
    never blocks synthesis.

    Attributes:
        base_url: Search feed url, the encoded query is appended.
        suffix: Query string appended after the query.
        timeout_seconds: Request timeout.
        per_query: Snippets kept per query.
    """

    base_url: str = "https://news.google.com/rss/search?q="
    suffix: str = "&hl=en-CA&gl=CA&ceid=CA:en"
    timeout_seconds: float = 8.0
    per_query: int = 3

    def research(self, queries: Sequence[str]) -> str:
        blocks: List[str] = []
        for q in queries:
            q = str(q or "").strip()
            if not q:
                continue
            block = self._search(q)
            if block:
                blocks.append(block)
        return "\n\n".join(blocks)

    def _search(self, query: str) -> str:
        url = f"{self.base_url}{quote_plus(query + ' when:7d')}{self.suffix}"
        try:
            r = requests.get(url, timeout=float(self.timeout_seconds))
            r.raise_for_status()
        except requests.RequestException as e:
            logger.warning(f"Research query failed, query={query}, err={e}")
            return ""

        feed = feedparser.parse(r.content)
        snippets = []
        for entry in list(feed.entries or [])[: int(self.per_query)]:
            snippets.append(
                "\n".join(
                    [
                        f"SOURCE: {strip_html(entry.get('title', ''))}",
                        f"DATE: {entry.get('published', '')}",
                        f"SUMMARY: {strip_html(entry.get('summary', ''))}",
                    ]
                )
            )
        if not snippets:
            return ""
        return f'--- CONTEXT ON: "{query}" ---\n' + "\n\n".join(snippets)
