#!filepath: src/canopticon_app/ingestion/rss_fetcher.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Iterable, Optional

import feedparser

from canopticon_app.errors import FetchError
from canopticon_app.ingestion.base import BaseFetcher
from canopticon_app.models import FetchedItem
from canopticon_app.utils.dates import parse_any_date_to_iso, to_iso
from canopticon_app.utils.text import strip_html


def _entry_get(entry: Any, key: str) -> str:
    if isinstance(entry, dict):
        return str(entry.get(key) or "").strip()
    return str(getattr(entry, key, "") or "").strip()


def _entry_published_iso(entry: Any) -> Optional[str]:
    for k in ("published", "updated"):
        iso = parse_any_date_to_iso(_entry_get(entry, k))
        if iso:
            return iso

    for k in ("published_parsed", "updated_parsed"):
        t = entry.get(k) if isinstance(entry, dict) else getattr(entry, k, None)
        if t:
            try:
                return to_iso(datetime(*t[:6], tzinfo=timezone.utc))
            except (TypeError, ValueError):
                continue

    return None


def _entry_body(entry: Any) -> str:
    content = entry.get("content") if isinstance(entry, dict) else None
    if isinstance(content, list):
        for part in content:
            value = part.get("value") if isinstance(part, dict) else None
            if value:
                return strip_html(str(value))
    return strip_html(_entry_get(entry, "summary") or _entry_get(entry, "description"))


class RssFetcher(BaseFetcher):
    """RSS and Atom feeds, bytes fetched with requests and parsed by feedparser."""

    def iter_entries(self) -> Iterable[Any]:
        url = str(self.config.get("feed_url") or self.source.url).strip()
        self.logger.info(f"RSS fetch, source={self.source.name}, url={url}")

        r = self.http_get(
            url, accept="application/rss+xml, application/atom+xml, application/xml"
        )
        feed = feedparser.parse(r.content)
        entries = list(getattr(feed, "entries", []) or [])

        if not entries and getattr(feed, "bozo", False):
            err = getattr(feed, "bozo_exception", None)
            raise FetchError(self.source.name, f"unparseable feed, err={err}")

        self.logger.debug(f"RSS entries, source={self.source.name}, count={len(entries)}")
        return entries

    def entry_to_item(self, entry: Any) -> Optional[FetchedItem]:
        title = strip_html(_entry_get(entry, "title"))
        link = _entry_get(entry, "link")
        if not title or not link:
            return None

        return FetchedItem(
            title=title,
            body=_entry_body(entry),
            url=link,
            published_at=_entry_published_iso(entry),
        )
