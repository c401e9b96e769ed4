#!filepath: tests/test_fetchers.py
from __future__ import annotations

import json
from typing import Any, Dict

import pytest
import requests

from canopticon_app.errors import FetchError
from canopticon_app.ingestion.base import FetchOptions
from canopticon_app.ingestion.factory import fetcher_for
from canopticon_app.ingestion.json_api_fetcher import JsonApiFetcher
from canopticon_app.ingestion.rss_fetcher import RssFetcher
from canopticon_app.models import Source, SourceKind

RSS = b"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0"><channel><title>Politics</title>
<item>
  <title>Bill C-11 passes third reading</title>
  <link>https://www.cbc.ca/news/politics/c11?utm_source=rss</link>
  <description>&lt;p&gt;The House of Commons passed the bill.&lt;/p&gt;</description>
  <pubDate>Tue, 02 Jan 2024 15:04:05 GMT</pubDate>
</item>
<item>
  <title></title>
  <link>https://www.cbc.ca/news/politics/untitled</link>
</item>
</channel></rss>
"""

BILLS = {
    "objects": [
        {
            "number": "C-11",
            "name": {"en": "An Act to amend the Broadcasting Act", "fr": "Loi modifiant"},
            "short_title": {"en": "Online Streaming Act", "fr": ""},
            "url": "/bills/44-1/C-11/",
            "introduced": "2024-01-02",
        }
    ]
}


class _Resp:
    def __init__(self, status: int, content: bytes) -> None:
        self.status_code = status
        self.content = content

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self) -> Any:
        return json.loads(self.content)


def _patch_get(monkeypatch: pytest.MonkeyPatch, resp: Any) -> Dict[str, Any]:
    seen: Dict[str, Any] = {}

    def _get(url, **kwargs):
        seen["url"] = url
        seen.update(kwargs)
        if isinstance(resp, Exception):
            raise resp
        return resp

    monkeypatch.setattr("canopticon_app.ingestion.base.requests.get", _get)
    return seen


def _source(kind: SourceKind, config: Dict[str, Any] | None = None) -> Source:
    return Source(id=1, name="Test", url="https://feeds.example/x", kind=kind, config=config or {})


def test_factory_picks_fetcher_by_kind() -> None:
    assert isinstance(fetcher_for(_source(SourceKind.RSS)), RssFetcher)
    assert isinstance(fetcher_for(_source(SourceKind.API)), JsonApiFetcher)
    assert isinstance(fetcher_for(_source(SourceKind.SOCIAL)), JsonApiFetcher)


def test_rss_items_are_normalized(monkeypatch: pytest.MonkeyPatch) -> None:
    seen = _patch_get(monkeypatch, _Resp(200, RSS))

    items = RssFetcher(_source(SourceKind.RSS), FetchOptions(timeout_seconds=3)).fetch()

    assert seen["timeout"] == 3
    assert len(items) == 1
    it = items[0]
    assert it.title == "Bill C-11 passes third reading"
    assert it.body == "The House of Commons passed the bill."
    assert it.url == "https://www.cbc.ca/news/politics/c11"
    assert it.published_at.startswith("2024-01-02T15:04:05")


def test_rss_max_items_is_respected(monkeypatch: pytest.MonkeyPatch) -> None:
    _patch_get(monkeypatch, _Resp(200, RSS))

    items = RssFetcher(_source(SourceKind.RSS), FetchOptions(max_items=0)).fetch()

    assert items == []


@pytest.mark.parametrize(
    "resp",
    [requests.Timeout("read timed out"), requests.ConnectionError("refused"), _Resp(503, b"")],
)
def test_transport_failures_raise_fetch_error(monkeypatch: pytest.MonkeyPatch, resp: Any) -> None:
    _patch_get(monkeypatch, resp)

    with pytest.raises(FetchError) as exc:
        RssFetcher(_source(SourceKind.RSS)).fetch()

    assert exc.value.source_name == "Test"


def test_garbage_feed_raises_fetch_error(monkeypatch: pytest.MonkeyPatch) -> None:
    _patch_get(monkeypatch, _Resp(200, b"<html><body>not a feed"))

    with pytest.raises(FetchError):
        RssFetcher(_source(SourceKind.RSS)).fetch()


def test_json_api_maps_fields(monkeypatch: pytest.MonkeyPatch) -> None:
    _patch_get(monkeypatch, _Resp(200, json.dumps(BILLS).encode("utf8")))
    src = _source(
        SourceKind.API,
        {
            "items_key": "objects",
            "title_field": "short_title",
            "body_field": "name",
            "date_field": "introduced",
            "url_base": "https://openparliament.ca",
            "title_prefix": "Legislation: ",
        },
    )

    (it,) = JsonApiFetcher(src).fetch()

    assert it.title == "Legislation: Online Streaming Act"
    assert it.body == "An Act to amend the Broadcasting Act"
    assert it.url == "https://openparliament.ca/bills/44-1/C-11"
    assert it.published_at.startswith("2024-01-02")


def test_json_api_missing_items_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    _patch_get(monkeypatch, _Resp(200, b'{"unexpected": true}'))

    with pytest.raises(FetchError):
        JsonApiFetcher(_source(SourceKind.API)).fetch()


def test_invalid_json_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    _patch_get(monkeypatch, _Resp(200, b"not json"))

    with pytest.raises(FetchError):
        JsonApiFetcher(_source(SourceKind.API)).fetch()
