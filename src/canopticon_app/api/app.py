#!filepath: src/canopticon_app/api/app.py
from __future__ import annotations

import threading
from typing import Any, Dict, Optional

from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from canopticon_app.cycle_log import (
    CycleLogger,
    HealthState,
    get_cycle_logs,
    health_status,
)
from canopticon_app.deps import PipelineDeps
from canopticon_app.errors import (
    ClaimConflict,
    InvalidTransition,
    NotFoundError,
    PersistenceError,
)
from canopticon_app.models import Article, Signal, SignalStatus
from canopticon_app.modules.base import CycleOptions, StageContext
from canopticon_app.modules.publishing_stage import publish_article
from canopticon_app.modules.synthesis_stage import ArticleSynthesizer
from canopticon_app.modules.triage import SignalStateMachine
from canopticon_app.orchestrator import AutomationOrchestrator
from canopticon_app.utils.logger import get_logger

logger = get_logger(__name__)

_HEALTH_CODES = {
    HealthState.HEALTHY: 200,
    HealthState.DEGRADED: 202,
    HealthState.UNHEALTHY: 503,
}


def _envelope(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": message, **extra},
    )


def signal_to_dict(s: Signal) -> Dict[str, Any]:
    return {
        "id": s.id,
        "clusterId": s.cluster_id,
        "headline": s.headline,
        "summary": s.summary,
        "url": s.url,
        "sourceName": s.source_name,
        "priority": s.priority.value,
        "status": s.status.value,
        "confidenceScore": s.confidence_score,
        "scored": s.scored,
        "entities": sorted(s.entities),
        "topics": sorted(s.topics),
        "createdAt": s.created_at,
        "updatedAt": s.updated_at,
    }


def article_to_dict(a: Article) -> Dict[str, Any]:
    return {
        "id": a.id,
        "signalId": a.signal_id,
        "slug": a.slug,
        "headline": a.headline,
        "summary": a.summary,
        "content": a.content,
        "topics": sorted(a.topics),
        "entities": sorted(a.entities),
        "readingTime": a.reading_time,
        "isDraft": a.is_draft,
        "publishedAt": a.published_at,
        "createdAt": a.created_at,
    }


def create_app(deps: PipelineDeps) -> FastAPI:
    """Build the HTTP surface around already wired dependencies.

    Handlers are thin pass-throughs. Store access is serialized with one lock
    since the sqlite connection is shared.
    """
    app = FastAPI(
        title="Canopticon API",
        description="Automation trigger and operator actions for the signal pipeline",
        version="0.1.0",
    )
    app.state.deps = deps
    lock = threading.Lock()
    orchestrator = AutomationOrchestrator(deps)
    triage_cfg = deps.settings.config.triage
    logs_cfg = deps.settings.config.logs

    @app.exception_handler(InvalidTransition)
    async def _invalid_transition(request: Request, exc: InvalidTransition) -> JSONResponse:
        return _envelope(409, str(exc), current=exc.current, target=exc.target)

    @app.exception_handler(ClaimConflict)
    async def _claim_conflict(request: Request, exc: ClaimConflict) -> JSONResponse:
        return _envelope(409, str(exc), current=exc.current)

    @app.exception_handler(NotFoundError)
    async def _not_found(request: Request, exc: NotFoundError) -> JSONResponse:
        return _envelope(404, str(exc))

    @app.exception_handler(RequestValidationError)
    async def _validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        fields = [".".join(str(p) for p in e.get("loc", ())) for e in exc.errors()]
        return _envelope(422, "Invalid request parameters", fields=fields)

    @app.exception_handler(PersistenceError)
    async def _persistence(request: Request, exc: PersistenceError) -> JSONResponse:
        logger.error(f"Store failure, path={request.url.path}, err={exc}")
        return _envelope(500, "Storage unavailable")

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
        logger.error(f"Unhandled error, path={request.url.path}, err={exc}", exc_info=True)
        return _envelope(500, "Internal server error")

    @app.post("/automation/run")
    def run_automation(
        significanceThreshold: int = Query(
            deps.settings.config.automation.significance_threshold, ge=0, le=100
        ),
        enableAutoPublish: bool = Query(deps.settings.config.automation.enable_auto_publish),
        batchSize: int = Query(deps.settings.config.automation.batch_size, ge=1, le=100),
    ) -> JSONResponse:
        opts = CycleOptions(
            significance_threshold=significanceThreshold,
            enable_auto_publish=enableAutoPublish,
            batch_size=batchSize,
        )
        with lock:
            summary = orchestrator.run_cycle(opts)
        body = summary.as_dict()
        if not summary.success:
            first = summary.error_messages[0] if summary.error_messages else "Cycle failed"
            return JSONResponse(status_code=500, content={**body, "error": first})
        return JSONResponse(status_code=200, content=body)

    @app.get("/automation/run")
    def run_hint() -> Dict[str, str]:
        return {"status": "ok", "message": "Use POST to trigger an automation cycle"}

    @app.get("/automation/health")
    def automation_health() -> JSONResponse:
        with lock:
            report = health_status(
                deps.store,
                window=int(logs_cfg.health_window),
                unhealthy_errors=int(logs_cfg.unhealthy_errors),
            )
        return JSONResponse(status_code=_HEALTH_CODES[report.status], content=report.as_dict())

    @app.get("/automation/logs/{cycle_id}")
    def automation_logs(cycle_id: str) -> Dict[str, Any]:
        with lock:
            rows = get_cycle_logs(deps.store, cycle_id)
        return {"cycleId": cycle_id, "logs": [r.as_dict() for r in rows], "total": len(rows)}

    @app.get("/signals")
    def list_signals(
        status: Optional[SignalStatus] = Query(None),
        limit: int = Query(50, ge=1, le=500),
    ) -> Dict[str, Any]:
        with lock:
            rows = deps.store.list_signals(status=status, limit=limit)
        return {"signals": [signal_to_dict(s) for s in rows], "total": len(rows)}

    @app.post("/signals/rescue")
    def rescue_stalled(
        stallMinutes: int = Query(triage_cfg.stall_minutes, ge=1),
    ) -> Dict[str, Any]:
        with lock:
            count = SignalStateMachine(deps.store).rescue_stalled(stallMinutes)
        return {"success": True, "rescued": count}

    @app.post("/signals/{signal_id}/approve")
    def approve_signal(signal_id: int) -> Dict[str, Any]:
        with lock:
            sig = SignalStateMachine(deps.store).approve(signal_id)
        return {"success": True, "signal": signal_to_dict(sig)}

    @app.post("/signals/{signal_id}/reject")
    def reject_signal(signal_id: int) -> Dict[str, Any]:
        with lock:
            sig = SignalStateMachine(deps.store).reject(signal_id)
        return {"success": True, "signal": signal_to_dict(sig)}

    @app.post("/signals/{signal_id}/archive")
    def archive_signal(signal_id: int) -> Dict[str, Any]:
        with lock:
            sig = SignalStateMachine(deps.store).archive(signal_id)
        return {"success": True, "signal": signal_to_dict(sig)}

    @app.post("/signals/{signal_id}/rescue")
    def rescue_signal(signal_id: int) -> Dict[str, Any]:
        with lock:
            sig = SignalStateMachine(deps.store).rescue(signal_id)
        return {"success": True, "signal": signal_to_dict(sig)}

    @app.post("/signals/{signal_id}/synthesize")
    def synthesize_signal(signal_id: int) -> JSONResponse:
        opts = CycleOptions.from_config(deps.settings.config.automation)
        with lock:
            ctx = StageContext(deps=deps, log=CycleLogger(deps.store), options=opts)
            res = ArticleSynthesizer(ctx).synthesize(signal_id)
        if res.not_found:
            return _envelope(404, res.error or "Signal not found")
        if not res.success:
            return _envelope(409 if res.skipped else 502, res.error or "Synthesis failed")
        return JSONResponse(
            status_code=200,
            content={"success": True, "articleId": res.article_id, "published": res.published},
        )

    @app.delete("/signals/{signal_id}")
    def delete_signal(signal_id: int) -> Dict[str, Any]:
        with lock:
            SignalStateMachine(deps.store).delete(signal_id)
        return {"success": True, "deleted": signal_id}

    @app.post("/articles/{article_id}/publish")
    def publish(article_id: int) -> Dict[str, Any]:
        with lock:
            article = publish_article(deps.store, article_id)
        return {"success": True, "article": article_to_dict(article)}

    return app
