#!filepath: src/canopticon_app/ingestion/base.py
from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

import requests

from canopticon_app.errors import FetchError
from canopticon_app.models import FetchedItem, Source
from canopticon_app.utils.logger import get_logger
from canopticon_app.utils.url import canonicalize_url

DEFAULT_TIMEOUT_SECONDS = 8.0
DEFAULT_USER_AGENT = "canopticon-ingest/1.0"


@dataclass(frozen=True, slots=True)
class FetchOptions:
    """HTTP options shared by all fetchers.

    Attributes:
        timeout_seconds: Bound for every request.
        user_agent: User agent header.
        max_items: Cap on items returned per fetch.
    """

    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    user_agent: str = DEFAULT_USER_AGENT
    max_items: int = 50


class BaseFetcher(ABC):
    """Base for fetchers with a stable signature.

    Subclasses yield raw entries and convert each into a FetchedItem. Any
    network or parse failure surfaces as FetchError for the whole source;
    entries that cannot be converted are dropped one by one.
    """

    def __init__(self, source: Source, options: Optional[FetchOptions] = None) -> None:
        self.source = source
        self.options = options or FetchOptions()
        self.config: Dict[str, Any] = dict(source.config or {})
        self.logger = get_logger(f"canopticon_app.ingestion.{source.name}")

    @abstractmethod
    def iter_entries(self) -> Iterable[Any]:
        """Iterate raw entries from the source.

        Raises:
            FetchError: On transport or parse failure.
        """
        raise NotImplementedError

    @abstractmethod
    def entry_to_item(self, entry: Any) -> Optional[FetchedItem]:
        """Convert a raw entry, None to drop it."""
        raise NotImplementedError

    def fetch(self) -> List[FetchedItem]:
        """Fetch and normalize up to `max_items` items.

        Returns:
            List[FetchedItem]: Normalized items, source order kept.

        Raises:
            FetchError: When the source cannot be read at all.
        """
        out: List[FetchedItem] = []
        for entry in self.iter_entries():
            if len(out) >= int(self.options.max_items):
                break
            try:
                item = self.entry_to_item(entry)
            except (KeyError, TypeError, ValueError) as e:
                self.logger.debug(f"Entry dropped, source={self.source.name}, err={e}")
                continue
            if item is None:
                continue
            out.append(
                FetchedItem(
                    title=item.title.strip(),
                    body=item.body.strip(),
                    url=canonicalize_url(item.url) or item.url,
                    published_at=item.published_at,
                )
            )
        self.logger.debug(f"Fetched, source={self.source.name}, items={len(out)}")
        return out

    def http_get(
        self, url: str, *, accept: str, params: Optional[Dict[str, Any]] = None
    ) -> requests.Response:
        """GET with the bounded timeout, raising FetchError on any failure."""
        try:
            r = requests.get(
                url,
                params=params,
                timeout=float(self.options.timeout_seconds),
                headers={"User-Agent": self.options.user_agent, "Accept": accept},
            )
            r.raise_for_status()
        except requests.Timeout as e:
            raise FetchError(
                self.source.name, f"timeout after {self.options.timeout_seconds}s"
            ) from e
        except requests.RequestException as e:
            raise FetchError(self.source.name, str(e)) from e
        return r

    def http_get_json(self, url: str, *, params: Optional[Dict[str, Any]] = None) -> Any:
        r = self.http_get(url, accept="application/json", params=params)
        try:
            return r.json()
        except (json.JSONDecodeError, ValueError) as e:
            raise FetchError(self.source.name, f"invalid json, err={e}") from e
