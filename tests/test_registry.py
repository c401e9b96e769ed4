#!filepath: tests/test_registry.py
from __future__ import annotations

from pathlib import Path

import pytest

from canopticon_app.db.store import Store
from canopticon_app.errors import NotFoundError
from canopticon_app.models import SourceKind
from canopticon_app.registry import SourceRegistry

SOURCES = """
sources:
  - name: CBC Politics
    url: https://www.cbc.ca/cmlink/rss-politics
    kind: rss
    priority: 10
  - name: Parliament of Canada
    url: https://api.openparliament.ca/bills/?format=json
    kind: api
    priority: 5
    config:
      items_key: objects
  - name: Broken
    kind: carrier-pigeon
    url: https://example.org
  - url: https://example.org/nameless
"""


def test_sync_creates_then_updates(store: Store, tmp_path: Path) -> None:
    path = tmp_path / "sources.yaml"
    path.write_text(SOURCES, encoding="utf8")
    reg = SourceRegistry(store)

    first = reg.sync_from_yaml(path)
    assert (first.created, first.updated, first.invalid) == (2, 0, 2)

    active = reg.list_active()
    assert [s.name for s in active] == ["Parliament of Canada", "CBC Politics"]
    assert active[0].kind is SourceKind.API
    assert active[0].config == {"items_key": "objects"}

    path.write_text(SOURCES.replace("priority: 10", "priority: 1"), encoding="utf8")
    second = reg.sync_from_yaml(path)
    assert (second.created, second.updated) == (0, 2)
    assert reg.list_active()[0].name == "CBC Politics"


def test_deactivated_source_is_not_listed(store: Store) -> None:
    reg = SourceRegistry(store)
    src = reg.add(name="Wire", url="https://wire.example/rss", kind=SourceKind.RSS)

    reg.set_active(src.id, False)

    assert reg.list_active() == []
    assert len(reg.list_all()) == 1


def test_unknown_source_raises(store: Store) -> None:
    with pytest.raises(NotFoundError):
        SourceRegistry(store).get(42)


def test_missing_file_is_reported_invalid(store: Store, tmp_path: Path) -> None:
    res = SourceRegistry(store).sync_from_yaml(tmp_path / "absent.yaml")

    assert res.invalid == 1
    assert res.created == 0
