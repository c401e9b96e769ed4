#!filepath: tests/test_orchestrator.py
from __future__ import annotations

from typing import Any, Mapping

import pytest
from conftest import (
    SCORING_MODEL,
    SYNTHESIS_MODEL,
    FakeModel,
    Feeds,
    add_source,
    item,
    make_signal,
    ok,
    scoring_payload,
    synthesis_payload,
)

from canopticon_app.cycle_log import get_cycle_logs, health_status
from canopticon_app.deps import PipelineDeps
from canopticon_app.errors import PersistenceError
from canopticon_app.llm.client import ModelResult
from canopticon_app.models import SignalStatus
from canopticon_app.modules.base import CycleOptions
from canopticon_app.orchestrator import AutomationOrchestrator
from canopticon_app.utils.dates import iso_ago

BILL_BODY = "Members of Parliament voted on the legislation late in the evening. " * 3
FIRE_BODY = "Crews battled flames near the highway while residents left by bus. " * 3


def _score_by_headline(prompt: str, input_json: Mapping[str, Any]) -> ModelResult:
    headline = str(input_json["headline"])
    if "C-11" in headline:
        return ok(scoring_payload(88, headline=headline, priority="high"))
    return ok(scoring_payload(50, headline=headline))


def _newsroom(deps: PipelineDeps, feeds: Feeds, model: FakeModel) -> None:
    add_source(deps.store, "CBC Politics", priority=1)
    add_source(deps.store, "Global News", priority=2)
    add_source(deps.store, "CTV News", priority=3)
    feeds.items["CBC Politics"] = [
        item("Bill C-11 passes third reading in House of Commons", BILL_BODY, "https://cbc.example/c11"),
    ]
    feeds.items["Global News"] = [
        item("House of Commons passes Bill C-11 on third reading", BILL_BODY + " Vote.", "https://global.example/c11"),
        item("Wildfire forces evacuation of northern town", FIRE_BODY, "https://global.example/fire"),
    ]
    feeds.items["CTV News"] = [
        item("Bill C-11 clears third reading in the Commons", BILL_BODY + " Tally.", "https://ctv.example/c11"),
    ]
    model.script[SCORING_MODEL] = _score_by_headline
    model.script[SYNTHESIS_MODEL] = [ok(synthesis_payload())]


def test_full_cycle_publishes_the_significant_event(
    deps: PipelineDeps, feeds: Feeds, model: FakeModel
) -> None:
    _newsroom(deps, feeds, model)

    summary = AutomationOrchestrator(deps).run_cycle(CycleOptions(significance_threshold=65))

    assert summary.success
    assert summary.items_ingested == 4
    assert summary.clusters_formed == 2
    assert summary.signals_scored == 2
    assert summary.signals_approved == 1
    assert summary.articles_synthesized == 1
    assert summary.articles_published == 1
    assert summary.errors == 0

    published = deps.store.list_signals(status=SignalStatus.PUBLISHED)
    assert [s.confidence_score for s in published] == [88]
    (held,) = deps.store.list_signals(status=SignalStatus.PENDING)
    assert held.confidence_score == 50

    article = deps.store.article_for_signal(published[0].id)
    assert article is not None and not article.is_draft

    # one scoring call per cluster, one synthesis call for the approved signal
    assert len(model.calls_for(SCORING_MODEL)) == 2
    assert len(model.calls_for(SYNTHESIS_MODEL)) == 1


def test_second_cycle_adds_nothing(deps: PipelineDeps, feeds: Feeds, model: FakeModel) -> None:
    _newsroom(deps, feeds, model)
    orch = AutomationOrchestrator(deps)
    orch.run_cycle()

    again = orch.run_cycle()

    assert again.success
    assert again.items_ingested == 0
    assert again.clusters_formed == 0
    assert again.signals_scored == 0
    assert again.articles_synthesized == 0
    assert deps.store.count_clusters() == 2


def test_summary_shape(deps: PipelineDeps) -> None:
    body = AutomationOrchestrator(deps).run_cycle().as_dict()

    assert body["success"] is True
    assert set(body) == {"success", "cycleId", "stats"}
    assert set(body["stats"]) == {
        "itemsIngested",
        "itemsSkipped",
        "clustersFormed",
        "signalsScored",
        "signalsDegraded",
        "signalsApproved",
        "signalsRejected",
        "articlesSynthesized",
        "articlesPublished",
        "errors",
        "errorMessages",
        "durationMs",
    }


def test_failing_source_is_counted_and_cycle_continues(
    deps: PipelineDeps, feeds: Feeds, model: FakeModel
) -> None:
    _newsroom(deps, feeds, model)
    feeds.fail("Global News", "timeout after 8.0s")

    summary = AutomationOrchestrator(deps).run_cycle()

    assert summary.success
    assert summary.errors == 1
    assert "Global News" in summary.error_messages[0]
    assert summary.items_ingested == 2
    assert summary.articles_published == 1

    logs = get_cycle_logs(deps.store, summary.cycle_id)
    assert logs[0].message.startswith("Cycle started")
    assert logs[-1].message.startswith("Cycle completed")
    assert health_status(deps.store).status.value == "degraded"


def test_crashing_stage_does_not_stop_later_stages(
    deps: PipelineDeps, feeds: Feeds, model: FakeModel, monkeypatch: pytest.MonkeyPatch
) -> None:
    _newsroom(deps, feeds, model)

    def _boom(self):
        raise RuntimeError("clustering exploded")

    monkeypatch.setattr("canopticon_app.orchestrator.ClusteringStage.run", _boom)

    summary = AutomationOrchestrator(deps).run_cycle()

    assert summary.success
    assert summary.items_ingested == 4
    assert summary.clusters_formed == 0
    assert summary.errors == 1
    assert "clustering" in summary.error_messages[0]


def test_store_failure_aborts_cycle(
    deps: PipelineDeps, feeds: Feeds, model: FakeModel, monkeypatch: pytest.MonkeyPatch
) -> None:
    _newsroom(deps, feeds, model)

    def _broken(self, limit):
        raise PersistenceError("database is locked")

    monkeypatch.setattr(type(deps.store), "list_clusters_without_signal", _broken)

    summary = AutomationOrchestrator(deps).run_cycle()

    assert summary.success is False
    assert summary.items_ingested == 4
    assert summary.signals_scored == 0
    assert summary.articles_synthesized == 0
    assert any("scoring" in m for m in summary.error_messages)


def test_cycle_finishes_signal_stranded_in_processing(deps: PipelineDeps) -> None:
    sid = make_signal(deps.store, status=SignalStatus.PROCESSING)
    deps.store.insert_article(
        signal_id=sid,
        slug="stranded-draft",
        headline="Stranded draft",
        summary="Left behind by a failed write.",
        content={"type": "doc", "content": []},
        topics=[],
        entities=[],
        reading_time=1,
    )
    deps.store.conn.execute(
        "UPDATE signals SET updated_at = ? WHERE id = ?;", (iso_ago(hours=2), sid)
    )
    deps.store.conn.commit()

    summary = AutomationOrchestrator(deps).run_cycle(CycleOptions(enable_auto_publish=True))

    assert summary.success
    assert summary.articles_published == 1
    assert deps.store.get_signal(sid).status is SignalStatus.PUBLISHED
