#!filepath: tests/test_scoring.py
from __future__ import annotations

import pytest
from conftest import (
    SCORING_MODEL,
    FakeModel,
    Feeds,
    add_source,
    ctx_for,
    fail,
    item,
    ok,
    scoring_payload,
)

from canopticon_app.deps import PipelineDeps
from canopticon_app.models import Priority, SignalStatus
from canopticon_app.modules.clustering_stage import ClusteringStage
from canopticon_app.modules.ingestion_stage import IngestionStage
from canopticon_app.modules.scoring_stage import ScoringOutput, ScoringStage

BODY = "Members of Parliament voted on the legislation late in the evening. " * 3


def _one_cluster(deps: PipelineDeps, feeds: Feeds) -> None:
    add_source(deps.store, "Wire")
    feeds.items["Wire"] = [item("Bill C-11 passes third reading", BODY, "https://a.example/1")]
    IngestionStage(ctx_for(deps)).run()
    ClusteringStage(ctx_for(deps)).run()


def test_output_clamps_score_and_derives_priority() -> None:
    out = ScoringOutput.model_validate({"significance_score": 140, "priority": "urgent"})
    assert out.significance_score == 100
    assert out.priority is Priority.CRITICAL

    low = ScoringOutput.model_validate({"significance_score": "-3"})
    assert low.significance_score == 0
    assert low.priority is Priority.LOW


def test_output_rejects_non_numeric_score() -> None:
    with pytest.raises(ValueError):
        ScoringOutput.model_validate({"significance_score": "very high"})


def test_scored_signal_is_inserted_pending(deps: PipelineDeps, feeds: Feeds, model: FakeModel) -> None:
    _one_cluster(deps, feeds)
    model.script[SCORING_MODEL] = [ok(scoring_payload(82, priority="high"))]

    res = ScoringStage(ctx_for(deps)).run()

    assert (res.scored, res.degraded) == (1, 0)
    (sig,) = deps.store.list_signals()
    assert sig.status is SignalStatus.PENDING
    assert sig.scored is True
    assert sig.confidence_score == 82
    assert sig.priority is Priority.HIGH
    assert sig.source_name == "Wire"
    assert "SOURCE_COUNT" not in model.calls[0].prompt


def test_invalid_output_is_retried_with_stricter_prompt(
    deps: PipelineDeps, feeds: Feeds, model: FakeModel
) -> None:
    _one_cluster(deps, feeds)
    model.script[SCORING_MODEL] = [ok({"verdict": "big"}), ok(scoring_payload(70))]

    res = ScoringStage(ctx_for(deps)).run()

    assert res.scored == 1
    calls = model.calls_for(SCORING_MODEL)
    assert len(calls) == 2
    assert "could not be parsed" not in calls[0].prompt
    assert "could not be parsed" in calls[1].prompt


def test_two_failures_insert_unscored_placeholder(
    deps: PipelineDeps, feeds: Feeds, model: FakeModel
) -> None:
    _one_cluster(deps, feeds)
    model.script[SCORING_MODEL] = [fail("timeout")]

    ctx = ctx_for(deps)
    res = ScoringStage(ctx).run()

    assert (res.scored, res.degraded) == (0, 1)
    (sig,) = deps.store.list_signals()
    assert sig.scored is False
    assert sig.confidence_score == 0
    assert sig.priority is Priority.LOW
    assert sig.status is SignalStatus.PENDING
    assert ctx.log.errors == []

    # placeholder clusters are not scored again
    again = ScoringStage(ctx_for(deps)).run()
    assert (again.scored, again.degraded) == (0, 0)
    assert len(model.calls_for(SCORING_MODEL)) == 2
