#!filepath: src/canopticon_app/deps.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from canopticon_app.db.store import Store, open_store
from canopticon_app.ingestion.base import FetchOptions
from canopticon_app.ingestion.factory import FetcherFactory, default_fetcher_factory
from canopticon_app.llm.client import ChatModelClient, ModelCaller
from canopticon_app.research import NewsRssResearch, NullResearch, ResearchProvider
from canopticon_app.settings import Settings, get_settings
from canopticon_app.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(slots=True)
class PipelineDeps:
    """Everything a cycle needs, built once per process and passed down.

    Attributes:
        store: Persistence.
        model: Model caller used by scoring and synthesis.
        settings: Loaded settings.
        research: Background research for synthesis.
        fetcher_factory: Builds a fetcher per source.
    """

    store: Store
    model: ModelCaller
    settings: Settings
    fetcher_factory: FetcherFactory
    research: ResearchProvider = field(default_factory=NullResearch)

    def close(self) -> None:
        self.store.close()


def build_deps(
    settings: Optional[Settings] = None,
    *,
    store: Optional[Store] = None,
    model: Optional[ModelCaller] = None,
    research: Optional[ResearchProvider] = None,
    fetcher_factory: Optional[FetcherFactory] = None,
) -> PipelineDeps:
    """Wire the pipeline from settings, keeping any collaborator passed in.

    Args:
        settings: Settings, the cached process settings when omitted.
        store: Existing store.
        model: Model caller.
        research: Research provider.
        fetcher_factory: Fetcher factory.

    Returns:
        PipelineDeps: Ready to run cycles.
    """
    s = settings or get_settings()
    cfg = s.config

    if store is None:
        store = open_store(str(s.db_path))

    if model is None:
        model = ChatModelClient(
            base_url=cfg.llm.base_url,
            api_key=cfg.llm.api_key,
            timeout_seconds=int(cfg.llm.timeout_seconds),
            temperature=float(cfg.llm.temperature),
            max_tokens=cfg.llm.max_tokens,
        )

    if research is None:
        research = (
            NewsRssResearch(
                base_url=cfg.research.base_url,
                timeout_seconds=float(cfg.ingestion.timeout_seconds),
            )
            if cfg.research.enabled
            else NullResearch()
        )

    if fetcher_factory is None:
        fetcher_factory = default_fetcher_factory(
            FetchOptions(
                timeout_seconds=float(cfg.ingestion.timeout_seconds),
                user_agent=cfg.ingestion.user_agent,
                max_items=int(cfg.ingestion.max_items_per_source),
            )
        )

    logger.debug(
        f"Deps built, db={s.db_path}, llm_base_url={cfg.llm.base_url}, research={type(research).__name__}"
    )
    return PipelineDeps(
        store=store,
        model=model,
        settings=s,
        fetcher_factory=fetcher_factory,
        research=research,
    )
