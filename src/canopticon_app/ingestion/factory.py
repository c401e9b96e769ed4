#!filepath: src/canopticon_app/ingestion/factory.py
from __future__ import annotations

from typing import Callable, Dict, Optional, Type

from canopticon_app.ingestion.base import BaseFetcher, FetchOptions
from canopticon_app.ingestion.json_api_fetcher import JsonApiFetcher
from canopticon_app.ingestion.rss_fetcher import RssFetcher
from canopticon_app.models import Source, SourceKind

FetcherFactory = Callable[[Source], BaseFetcher]

FETCHERS: Dict[SourceKind, Type[BaseFetcher]] = {
    SourceKind.RSS: RssFetcher,
    SourceKind.API: JsonApiFetcher,
    SourceKind.SOCIAL: JsonApiFetcher,
}


def fetcher_for(source: Source, options: Optional[FetchOptions] = None) -> BaseFetcher:
    """Pick the fetcher class for a source kind.

    Args:
        source: Source to read.
        options: Shared HTTP options.

    Returns:
        BaseFetcher: Ready to fetch.
    """
    cls = FETCHERS.get(source.kind)
    if cls is None:
        raise ValueError(f"No fetcher for kind, kind={source.kind}")
    return cls(source, options)


def default_fetcher_factory(options: FetchOptions) -> FetcherFactory:
    def _factory(source: Source) -> BaseFetcher:
        return fetcher_for(source, options)

    return _factory
