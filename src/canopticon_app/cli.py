#!filepath: src/canopticon_app/cli.py
from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import typer
from rich.console import Console
from rich.table import Table

from canopticon_app.cycle_log import get_cycle_logs, health_status, prune_logs
from canopticon_app.db.migrate import recreate_schema
from canopticon_app.deps import PipelineDeps, build_deps
from canopticon_app.errors import PipelineError
from canopticon_app.modules.base import CycleOptions
from canopticon_app.modules.triage import SignalStateMachine
from canopticon_app.orchestrator import AutomationOrchestrator
from canopticon_app.registry import SourceRegistry
from canopticon_app.settings import SettingsError, get_settings
from canopticon_app.utils.logger import get_logger

app = typer.Typer(help="Canopticon news signal pipeline")
logger = get_logger(__name__)
console = Console()


def _deps() -> PipelineDeps:
    try:
        return build_deps()
    except (SettingsError, PipelineError) as e:
        logger.error(f"Failed to start, err={e}")
        raise typer.Exit(code=2) from e


def _emit(payload: Dict[str, Any]) -> None:
    sys.stdout.write(json.dumps(payload, ensure_ascii=False, indent=2))
    sys.stdout.write("\n")


@app.command("init-db")
def init_db(
    reset: bool = typer.Option(False, "--reset", help="Drop and recreate all tables"),
) -> None:
    """Create the database schema."""
    settings = get_settings()
    if reset:
        recreate_schema(str(settings.db_path)).close()
        logger.warning(f"Database recreated, db={settings.db_path}")
        return
    deps = _deps()
    deps.close()
    logger.info(f"Database ready, db={settings.db_path}")


@app.command("sync-sources")
def sync_sources(
    path: Optional[Path] = typer.Argument(None, help="Sources YAML, configured path by default"),
) -> None:
    """Upsert sources from YAML into the registry."""
    deps = _deps()
    try:
        target = path or deps.settings.sources_path
        res = SourceRegistry(deps.store).sync_from_yaml(target)
        logger.info(
            f"Sources synced, path={target}, created={res.created}, updated={res.updated}, invalid={res.invalid}"
        )
    finally:
        deps.close()


@app.command("sources")
def list_sources() -> None:
    """Show registered sources."""
    deps = _deps()
    try:
        table = Table(title="Sources")
        for col in ("id", "name", "kind", "active", "priority", "url"):
            table.add_column(col)
        for s in SourceRegistry(deps.store).list_all():
            table.add_row(
                str(s.id), s.name, s.kind.value, "yes" if s.active else "no", str(s.priority), s.url
            )
        console.print(table)
    finally:
        deps.close()


@app.command("run-cycle")
def run_cycle(
    threshold: Optional[int] = typer.Option(None, min=0, max=100, help="Significance threshold"),
    auto_publish: Optional[bool] = typer.Option(None, "--auto-publish/--no-auto-publish"),
    batch_size: Optional[int] = typer.Option(None, min=1, max=100),
) -> None:
    """Run one automation cycle and print its summary."""
    deps = _deps()
    try:
        orch = AutomationOrchestrator(deps)
        base = orch.default_options()
        opts = CycleOptions(
            significance_threshold=base.significance_threshold if threshold is None else threshold,
            enable_auto_publish=base.enable_auto_publish if auto_publish is None else auto_publish,
            batch_size=base.batch_size if batch_size is None else batch_size,
        )
        summary = orch.run_cycle(opts)
        _emit(summary.as_dict())
        if not summary.success:
            raise typer.Exit(code=1)
    finally:
        deps.close()


@app.command("rescue")
def rescue(
    stall_minutes: Optional[int] = typer.Option(None, min=1),
) -> None:
    """Unstick processing signals idle past the stall window."""
    deps = _deps()
    try:
        minutes = stall_minutes or int(deps.settings.config.triage.stall_minutes)
        n = SignalStateMachine(deps.store).rescue_stalled(minutes)
        logger.info(f"Rescue finished, rescued={n}, stall_minutes={minutes}")
    finally:
        deps.close()


@app.command("logs")
def logs(cycle_id: str) -> None:
    """Print the log entries of one cycle."""
    deps = _deps()
    try:
        rows = get_cycle_logs(deps.store, cycle_id)
        table = Table(title=f"Cycle {cycle_id}")
        for col in ("createdAt", "level", "message"):
            table.add_column(col)
        for r in rows:
            table.add_row(r.created_at, r.level.value, r.message)
        console.print(table)
    finally:
        deps.close()


@app.command("health")
def health() -> None:
    """Print pipeline health derived from recent log rows."""
    deps = _deps()
    try:
        cfg = deps.settings.config.logs
        report = health_status(
            deps.store, window=int(cfg.health_window), unhealthy_errors=int(cfg.unhealthy_errors)
        )
        _emit(report.as_dict())
    finally:
        deps.close()


@app.command("prune-logs")
def prune(
    days: Optional[int] = typer.Option(None, min=1, help="Retention in days"),
) -> None:
    """Delete cycle log rows older than the retention window."""
    deps = _deps()
    try:
        prune_logs(deps.store, days or int(deps.settings.config.logs.retention_days))
    finally:
        deps.close()


@app.command("serve")
def serve(
    host: str = typer.Option("127.0.0.1"),
    port: int = typer.Option(8000),
) -> None:
    """Serve the HTTP API."""
    import uvicorn

    from canopticon_app.api.app import create_app

    deps = _deps()
    try:
        uvicorn.run(create_app(deps), host=host, port=port, log_config=None)
    finally:
        deps.close()


if __name__ == "__main__":
    app()
