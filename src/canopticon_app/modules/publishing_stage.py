#!filepath: src/canopticon_app/modules/publishing_stage.py
from __future__ import annotations

from dataclasses import dataclass

from canopticon_app.db.store import Store
from canopticon_app.errors import InvalidTransition, NotFoundError
from canopticon_app.models import Article, SignalStatus
from canopticon_app.modules.base import Stage, StageContext
from canopticon_app.modules.triage import SignalStateMachine
from canopticon_app.utils.dates import utc_now_iso
from canopticon_app.utils.logger import get_logger

logger = get_logger(__name__)

_PUBLISHABLE = {SignalStatus.APPROVED, SignalStatus.PROCESSING, SignalStatus.PUBLISHED}


def publish_article(store: Store, article_id: int) -> Article:
    """Publish a draft and move its signal to published, atomically.

    Publishing an article that is already live only brings its signal in
    line.

    Raises:
        NotFoundError: Unknown article.
        InvalidTransition: The linked signal is not approved or processing.
    """
    article = store.get_article(article_id)
    if article is None:
        raise NotFoundError(f"Article not found, id={article_id}")

    sm = SignalStateMachine(store)
    signal = store.get_signal(article.signal_id) if article.signal_id else None
    if signal is not None and signal.status not in _PUBLISHABLE:
        raise InvalidTransition(
            signal.id, signal.status.value, SignalStatus.PUBLISHED.value
        )

    with store.transaction():
        if article.is_draft:
            store.mark_article_published(article.id, utc_now_iso())
        if signal is not None and signal.status is not SignalStatus.PUBLISHED:
            sm.publish(signal.id)

    logger.info(f"Article published, article_id={article.id}, signal_id={article.signal_id}")
    published = store.get_article(article.id)
    if published is None:
        raise NotFoundError(f"Article not found, id={article_id}")
    return published


@dataclass(frozen=True, slots=True)
class PublishingStage(Stage):
    """Publishes drafts left behind while their signal is still approved."""

    ctx: StageContext

    def run(self) -> int:
        if not self.ctx.options.enable_auto_publish:
            return 0

        drafts = self.ctx.store.list_publishable_drafts(self.ctx.options.batch_size)
        published = 0
        for article in drafts:
            try:
                publish_article(self.ctx.store, article.id)
                published += 1
            except InvalidTransition as e:
                self.ctx.log.warning(
                    f"Draft not published, article_id={article.id}, err={e}"
                )

        if drafts:
            self.ctx.log.info(f"Publishing finished, drafts={len(drafts)}, published={published}")
        return published
