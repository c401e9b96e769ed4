#!filepath: src/canopticon_app/modules/ingestion_stage.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, Optional

from canopticon_app.errors import FetchError, PersistenceError
from canopticon_app.models import FetchedItem, Source
from canopticon_app.modules.base import Stage, StageContext
from canopticon_app.registry import SourceRegistry
from canopticon_app.utils.dates import parse_iso, utc_now, utc_now_iso
from canopticon_app.utils.logger import get_logger
from canopticon_app.utils.text import content_hash

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class SourceRunResult:
    """Outcome of one source poll."""

    source_name: str
    inserted: int
    skipped: int
    ok: bool
    error_message: Optional[str] = None


@dataclass(slots=True)
class IngestionResult:
    inserted: int = 0
    skipped: int = 0
    errors: int = 0
    per_source: Dict[str, SourceRunResult] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class IngestionStage(Stage):
    """Polls active sources in priority order and stores new raw articles.

    A failing source is logged and counted once; the next source still runs.
    """

    ctx: StageContext

    def run(self) -> IngestionResult:
        sources = SourceRegistry(self.ctx.store).list_active()
        result = IngestionResult()
        if not sources:
            self.ctx.log.info("Ingestion skipped, no active sources")
            return result

        for source in sources:
            r = self._run_one(source)
            result.per_source[source.name] = r
            result.inserted += r.inserted
            result.skipped += r.skipped
            if not r.ok:
                result.errors += 1

        self.ctx.log.info(
            f"Ingestion finished, sources={len(sources)}, inserted={result.inserted}, skipped={result.skipped}, errors={result.errors}"
        )
        return result

    def _run_one(self, source: Source) -> SourceRunResult:
        try:
            fetcher = self.ctx.deps.fetcher_factory(source)
            items = fetcher.fetch()
        except FetchError as e:
            msg = f"Source fetch failed, source={source.name}, err={e}"
            self.ctx.log.error(msg)
            return SourceRunResult(source.name, 0, 0, ok=False, error_message=msg)
        except PersistenceError:
            raise
        except Exception as e:
            msg = f"Source fetch crashed, source={source.name}, err={e}"
            logger.error(msg, exc_info=True)
            self.ctx.log.error(msg)
            return SourceRunResult(source.name, 0, 0, ok=False, error_message=msg)

        inserted = 0
        skipped = 0
        for item in items:
            if self._store_item(source, item):
                inserted += 1
            else:
                skipped += 1

        logger.info(
            f"Source ingested, source={source.name}, fetched={len(items)}, inserted={inserted}, skipped={skipped}"
        )
        return SourceRunResult(source.name, inserted, skipped, ok=True)

    def _store_item(self, source: Source, item: FetchedItem) -> bool:
        reason = self._gate(source, item)
        if reason:
            logger.debug(f"Item skipped, source={source.name}, reason={reason}, url={item.url}")
            return False

        new_id = self.ctx.store.insert_raw_article_if_new(
            source_id=source.id,
            url=item.url,
            title=item.title,
            body=item.body,
            content_hash=content_hash(item.title, item.body),
            published_at=item.published_at,
            fetched_at=utc_now_iso(),
        )
        if new_id is None:
            logger.debug(f"Duplicate skipped, source={source.name}, url={item.url}")
            return False
        return True

    def _gate(self, source: Source, item: FetchedItem) -> Optional[str]:
        # per source config may relax the global gates
        cfg = self.ctx.config.ingestion
        min_body = int(source.config.get("min_body_chars", cfg.min_body_chars))
        max_age = int(source.config.get("max_age_hours", cfg.max_age_hours))
        if not item.title.strip():
            return "missing_title"
        if len(item.body) < min_body:
            return "body_too_short"
        published = parse_iso(item.published_at)
        cutoff = utc_now() - timedelta(hours=max_age)
        if published is not None and published < cutoff:
            return "too_old"
        return None

