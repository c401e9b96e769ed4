#!filepath: src/canopticon_app/orchestrator.py
from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional, TypeVar

from canopticon_app.cycle_log import CYCLE_COMPLETED, CYCLE_STARTED, CycleLogger
from canopticon_app.deps import PipelineDeps
from canopticon_app.errors import PersistenceError
from canopticon_app.modules.base import CycleOptions, StageContext
from canopticon_app.modules.clustering_stage import ClusteringStage
from canopticon_app.modules.ingestion_stage import IngestionStage
from canopticon_app.modules.publishing_stage import PublishingStage
from canopticon_app.modules.scoring_stage import ScoringStage
from canopticon_app.modules.synthesis_stage import SynthesisStage
from canopticon_app.modules.triage import SignalStateMachine
from canopticon_app.utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class CycleSummary:
    """Counters of one automation cycle."""

    cycle_id: str
    success: bool = True
    items_ingested: int = 0
    items_skipped: int = 0
    clusters_formed: int = 0
    signals_scored: int = 0
    signals_degraded: int = 0
    signals_approved: int = 0
    signals_rejected: int = 0
    articles_synthesized: int = 0
    articles_published: int = 0
    errors: int = 0
    error_messages: List[str] = field(default_factory=list)
    duration_ms: int = 0

    def as_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        return {
            "success": d.pop("success"),
            "cycleId": d.pop("cycle_id"),
            "stats": {
                "itemsIngested": d["items_ingested"],
                "itemsSkipped": d["items_skipped"],
                "clustersFormed": d["clusters_formed"],
                "signalsScored": d["signals_scored"],
                "signalsDegraded": d["signals_degraded"],
                "signalsApproved": d["signals_approved"],
                "signalsRejected": d["signals_rejected"],
                "articlesSynthesized": d["articles_synthesized"],
                "articlesPublished": d["articles_published"],
                "errors": d["errors"],
                "errorMessages": list(d["error_messages"]),
                "durationMs": d["duration_ms"],
            },
        }


class CycleAborted(Exception):
    """Raised internally when a fatal error ends the cycle."""


@dataclass(slots=True)
class AutomationOrchestrator:
    """Recovers stalled signals, then runs every stage in sequence.

    A stage that blows up is logged and counted, later stages still run on
    whatever state is already persisted. A PersistenceError ends the cycle.
    """

    deps: PipelineDeps

    def default_options(self) -> CycleOptions:
        return CycleOptions.from_config(self.deps.settings.config.automation)

    def run_cycle(self, options: Optional[CycleOptions] = None) -> CycleSummary:
        opts = options or self.default_options()
        log = CycleLogger(self.deps.store)
        ctx = StageContext(deps=self.deps, log=log, options=opts)
        summary = CycleSummary(cycle_id=log.cycle_id)
        t0 = time.perf_counter()

        log.info(
            f"{CYCLE_STARTED}, threshold={opts.significance_threshold}, auto_publish={opts.enable_auto_publish}, batch_size={opts.batch_size}"
        )

        try:
            self._run_stages(ctx, summary)
        except CycleAborted:
            summary.success = False

        summary.errors = len(log.errors)
        summary.error_messages = list(log.errors)
        summary.duration_ms = int((time.perf_counter() - t0) * 1000)

        if summary.success:
            log.info(
                f"{CYCLE_COMPLETED}, ingested={summary.items_ingested}, clusters={summary.clusters_formed}, scored={summary.signals_scored}, approved={summary.signals_approved}, synthesized={summary.articles_synthesized}, published={summary.articles_published}, errors={summary.errors}"
            )
        else:
            logger.error(
                f"Cycle aborted, cycle_id={summary.cycle_id}, errors={summary.errors}"
            )
        return summary

    def _run_stages(self, ctx: StageContext, summary: CycleSummary) -> None:
        cfg = ctx.config
        opts = ctx.options
        sm = SignalStateMachine(ctx.store)

        rescued = self._stage(
            ctx, "recovery", lambda: sm.rescue_stalled(int(cfg.triage.stall_minutes))
        )
        if rescued:
            ctx.log.warning(f"Stalled signals recovered, count={rescued}")

        ingest = self._stage(ctx, "ingestion", IngestionStage(ctx).run)
        if ingest is not None:
            summary.items_ingested = ingest.inserted
            summary.items_skipped = ingest.skipped

        clustered = self._stage(ctx, "clustering", ClusteringStage(ctx).run)
        if clustered is not None:
            summary.clusters_formed = clustered.clusters_created

        scored = self._stage(ctx, "scoring", ScoringStage(ctx).run)
        if scored is not None:
            summary.signals_scored = scored.scored
            summary.signals_degraded = scored.degraded

        triaged = self._stage(
            ctx,
            "triage",
            lambda: sm.auto_triage(
                threshold=opts.significance_threshold,
                reject_below=int(cfg.triage.reject_below),
                grace_minutes=int(cfg.triage.grace_minutes),
            ),
        )
        if triaged is not None:
            summary.signals_approved = triaged.approved
            summary.signals_rejected = triaged.rejected
            ctx.log.info(
                f"Triage finished, approved={triaged.approved}, rejected={triaged.rejected}, held={triaged.held}"
            )

        synthesized = self._stage(ctx, "synthesis", SynthesisStage(ctx).run)
        if synthesized is not None:
            summary.articles_synthesized = sum(1 for r in synthesized if r.success)
            summary.articles_published = sum(1 for r in synthesized if r.published)

        if opts.enable_auto_publish:
            published = self._stage(ctx, "publishing", PublishingStage(ctx).run)
            if published is not None:
                summary.articles_published += published

    def _stage(
        self, ctx: StageContext, name: str, fn: Callable[[], T]
    ) -> Optional[T]:
        try:
            return fn()
        except PersistenceError as e:
            ctx.log.error(f"Store failure, stage={name}, err={e}")
            raise CycleAborted(name) from e
        except Exception as e:
            logger.error(f"Stage crashed, stage={name}, err={e}", exc_info=True)
            ctx.log.error(f"Stage failed, stage={name}, err={e}")
            return None
