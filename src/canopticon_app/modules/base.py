#!filepath: src/canopticon_app/modules/base.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from canopticon_app.cycle_log import CycleLogger
from canopticon_app.db.store import Store
from canopticon_app.deps import PipelineDeps
from canopticon_app.settings import AppConfig, AutomationConfig


class Stage(Protocol):
    """A pipeline stage."""

    def run(self) -> Any:
        """Run the stage.

        Returns:
            Stage specific result with counters.
        """


@dataclass(frozen=True, slots=True)
class CycleOptions:
    """Per cycle overrides of the automation defaults."""

    significance_threshold: int = 65
    enable_auto_publish: bool = True
    batch_size: int = 10

    @classmethod
    def from_config(cls, cfg: AutomationConfig) -> CycleOptions:
        return cls(
            significance_threshold=int(cfg.significance_threshold),
            enable_auto_publish=bool(cfg.enable_auto_publish),
            batch_size=int(cfg.batch_size),
        )


@dataclass(frozen=True, slots=True)
class StageContext:
    """Shared context passed to stages."""

    deps: PipelineDeps
    log: CycleLogger
    options: CycleOptions

    @property
    def store(self) -> Store:
        return self.deps.store

    @property
    def config(self) -> AppConfig:
        return self.deps.settings.config
