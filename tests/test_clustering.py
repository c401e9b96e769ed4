#!filepath: tests/test_clustering.py
from __future__ import annotations

import pytest
from conftest import Feeds, add_source, ctx_for, item

from canopticon_app.deps import PipelineDeps
from canopticon_app.errors import PersistenceError
from canopticon_app.modules.clustering_stage import ClusteringStage, Features, similarity
from canopticon_app.modules.ingestion_stage import IngestionStage
from canopticon_app.models import RawArticle
from canopticon_app.settings import ClusteringConfig

BILL_BODY = "Members of Parliament voted on the legislation late in the evening. " * 3
FIRE_BODY = "Crews battled flames near the highway while residents left by bus. " * 3


def _raw(title: str, body: str = "") -> RawArticle:
    return RawArticle(
        id=0, source_id=0, url="", title=title, body=body, content_hash="", fetched_at=""
    )


def _ingest(deps: PipelineDeps, feeds: Feeds, items) -> None:
    add_source(deps.store, f"Wire {deps.store.count_raw_articles()}")
    name = deps.store.list_sources()[-1].name
    feeds.items[name] = items
    IngestionStage(ctx_for(deps)).run()


def test_similar_headlines_match() -> None:
    cfg = ClusteringConfig()
    a = Features.of(_raw("Bill C-11 passes third reading in House of Commons"))
    b = Features.of(_raw("House of Commons passes Bill C-11 on third reading"))
    c = Features.of(_raw("Wildfire forces evacuation of northern town"))

    assert similarity(a, b, cfg) >= cfg.headline_threshold
    assert similarity(a, c, cfg) == 0.0


def test_shared_entities_match_when_headlines_differ() -> None:
    cfg = ClusteringConfig()
    a = Features.of(_raw("Senate vote scheduled", "Trudeau and Poilievre clash over Bill C-11 in Ottawa."))
    b = Features.of(_raw("Opposition digs in", "Poilievre says Trudeau rushed Bill C-11 through Ottawa."))

    assert similarity(a, b, cfg) >= cfg.entity_threshold


def test_one_event_from_three_sources_forms_one_cluster(deps: PipelineDeps, feeds: Feeds) -> None:
    _ingest(
        deps,
        feeds,
        [
            item("Bill C-11 passes third reading in House of Commons", BILL_BODY, "https://a.example/1"),
            item("House of Commons passes Bill C-11 on third reading", BILL_BODY + " Vote.", "https://b.example/1"),
            item("Bill C-11 clears third reading in the Commons", BILL_BODY + " Tally.", "https://c.example/1"),
            item("Wildfire forces evacuation of northern town", FIRE_BODY, "https://d.example/1"),
        ],
    )

    res = ClusteringStage(ctx_for(deps)).run()

    assert res.clusters_created == 2
    assert res.articles_consumed == 4
    assert deps.store.count_raw_articles(unprocessed_only=True) == 0
    sizes = sorted(len(deps.store.cluster_members(c.id)) for c in deps.store.list_clusters_without_signal(10))
    assert sizes == [1, 3]


def test_second_run_is_a_noop(deps: PipelineDeps, feeds: Feeds) -> None:
    _ingest(deps, feeds, [item("Wildfire forces evacuation of northern town", FIRE_BODY, "https://d.example/1")])

    first = ClusteringStage(ctx_for(deps)).run()
    second = ClusteringStage(ctx_for(deps)).run()

    assert first.clusters_created == 1
    assert second.clusters_created == 0
    assert second.articles_consumed == 0
    assert deps.store.count_clusters() == 1


def test_late_article_joins_open_cluster(deps: PipelineDeps, feeds: Feeds) -> None:
    _ingest(deps, feeds, [item("Bill C-11 passes third reading in House of Commons", BILL_BODY, "https://a.example/1")])
    ClusteringStage(ctx_for(deps)).run()

    _ingest(deps, feeds, [item("House of Commons passes Bill C-11 on third reading", BILL_BODY + " Late.", "https://b.example/1")])
    res = ClusteringStage(ctx_for(deps)).run()

    assert res.clusters_created == 0
    assert res.articles_merged == 1
    assert deps.store.count_clusters() == 1


def test_failed_cluster_write_leaves_articles_unprocessed(
    deps: PipelineDeps, feeds: Feeds, monkeypatch: pytest.MonkeyPatch
) -> None:
    _ingest(
        deps,
        feeds,
        [
            item("Bill C-11 passes third reading in House of Commons", BILL_BODY, "https://a.example/1"),
            item("House of Commons passes Bill C-11 on third reading", BILL_BODY + " Vote.", "https://b.example/1"),
        ],
    )
    before = deps.store.count_raw_articles(unprocessed_only=True)

    def _broken(self, cluster_id: int, raw_article_id: int) -> None:
        raise PersistenceError("disk I/O error")

    monkeypatch.setattr(type(deps.store), "add_cluster_member", _broken)

    with pytest.raises(PersistenceError):
        ClusteringStage(ctx_for(deps)).run()

    assert before == 2
    assert deps.store.count_raw_articles(unprocessed_only=True) == before
    assert deps.store.count_clusters() == 0
