#!filepath: src/canopticon_app/ingestion/json_api_fetcher.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Mapping, Optional
from canopticon_app.errors import FetchError
from canopticon_app.ingestion.base import BaseFetcher
from canopticon_app.models import FetchedItem, SourceKind
from canopticon_app.utils.dates import parse_any_date_to_iso
from canopticon_app.utils.text import strip_html
from canopticon_app.utils.url import absolute_url


@dataclass(frozen=True, slots=True)
class FieldMap:
    """Where to find item fields in a JSON payload.

    Attributes:
        items_key: Dotted path to the item list, empty when the payload is the list.
        title: Dotted path of the title.
        body: Dotted path of the body text.
        url: Dotted path of the item url.
        published_at: Dotted path of the publication date.
        url_base: Prefix joined to relative item urls.
    """

    items_key: str = "items"
    title: str = "title"
    body: str = "body"
    url: str = "url"
    published_at: str = "published_at"
    url_base: str = ""


_DEFAULTS: Dict[SourceKind, FieldMap] = {
    SourceKind.API: FieldMap(),
    SourceKind.SOCIAL: FieldMap(
        items_key="data", title="", body="text", url="url", published_at="created_at"
    ),
}


def _dig(obj: Any, path: str) -> Any:
    if not path:
        return obj
    cur = obj
    for part in path.split("."):
        if isinstance(cur, Mapping):
            cur = cur.get(part)
        elif isinstance(cur, list) and part.isdigit() and int(part) < len(cur):
            cur = cur[int(part)]
        else:
            return None
    return cur


def _as_text(value: Any, lang: str) -> str:
    # bilingual payloads carry {"en": ..., "fr": ...}
    if isinstance(value, Mapping):
        value = value.get(lang) or next((v for v in value.values() if v), "")
    return strip_html(str(value or ""))


class JsonApiFetcher(BaseFetcher):
    """JSON endpoints: parliamentary open data and social feeds.

    Field locations come from `source.config`, keys named after FieldMap
    attributes. Extra query parameters go under `params`.
    """

    def iter_entries(self) -> Iterable[Any]:
        params = self.config.get("params")
        payload = self.http_get_json(
            self.source.url, params=dict(params) if isinstance(params, Mapping) else None
        )

        fm = self.field_map
        items = _dig(payload, fm.items_key)
        if items is None and isinstance(payload, list):
            items = payload
        if not isinstance(items, list):
            raise FetchError(
                self.source.name, f"items not found, items_key={fm.items_key or '<root>'}"
            )

        self.logger.debug(f"JSON entries, source={self.source.name}, count={len(items)}")
        return items

    @property
    def field_map(self) -> FieldMap:
        base = _DEFAULTS.get(self.source.kind, FieldMap())
        cfg = self.config
        return FieldMap(
            items_key=str(cfg.get("items_key", base.items_key) or ""),
            title=str(cfg.get("title_field", base.title) or ""),
            body=str(cfg.get("body_field", base.body) or ""),
            url=str(cfg.get("url_field", base.url) or ""),
            published_at=str(cfg.get("date_field", base.published_at) or ""),
            url_base=str(cfg.get("url_base", base.url_base) or ""),
        )

    def entry_to_item(self, entry: Any) -> Optional[FetchedItem]:
        if not isinstance(entry, Mapping):
            return None

        fm = self.field_map
        lang = str(self.config.get("lang") or "en")

        body = _as_text(_dig(entry, fm.body), lang)
        title = _as_text(_dig(entry, fm.title), lang) if fm.title else ""
        if not title and self.source.kind is SourceKind.SOCIAL:
            title = body[:120].rstrip()

        prefix = str(self.config.get("title_prefix") or "")
        if prefix and title:
            title = f"{prefix}{title}"

        url = str(_dig(entry, fm.url) or "").strip()
        url = absolute_url(url, fm.url_base)
        if not title or not url:
            return None

        published = _dig(entry, fm.published_at) if fm.published_at else None
        return FetchedItem(
            title=title,
            body=body,
            url=url,
            published_at=parse_any_date_to_iso(str(published or "")),
        )
