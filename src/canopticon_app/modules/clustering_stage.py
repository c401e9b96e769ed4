#!filepath: src/canopticon_app/modules/clustering_stage.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import FrozenSet, List, Optional, Tuple

from canopticon_app.models import RawArticle
from canopticon_app.modules.base import Stage, StageContext
from canopticon_app.settings import ClusteringConfig
from canopticon_app.utils.dates import to_iso, utc_now, utc_now_iso
from canopticon_app.utils.logger import get_logger
from canopticon_app.utils.text import extract_entities, headline_tokens, jaccard, overlap

logger = get_logger(__name__)

ENTITY_BODY_CHARS = 400


@dataclass(frozen=True, slots=True)
class Features:
    tokens: FrozenSet[str]
    entities: FrozenSet[str]

    @classmethod
    def of(cls, item: RawArticle) -> Features:
        return cls(
            tokens=headline_tokens(item.title),
            entities=extract_entities(f"{item.title}\n{item.body[:ENTITY_BODY_CHARS]}"),
        )


def similarity(a: Features, b: Features, cfg: ClusteringConfig) -> float:
    """Match strength, 0.0 when the pair is not the same event.

    Headline token Jaccard counts on its own; entity overlap counts only with
    enough shared entities.
    """
    best = 0.0
    h = jaccard(a.tokens, b.tokens)
    if h >= float(cfg.headline_threshold):
        best = h
    shared = len(a.entities & b.entities)
    if shared >= int(cfg.min_shared_entities):
        e = overlap(a.entities, b.entities)
        if e >= float(cfg.entity_threshold):
            best = max(best, e)
    return best


@dataclass(slots=True)
class _Group:
    cluster_id: Optional[int]
    size: int
    features: List[Features] = field(default_factory=list)
    new_members: List[RawArticle] = field(default_factory=list)

    def score(self, f: Features, cfg: ClusteringConfig) -> float:
        return max((similarity(f, g, cfg) for g in self.features), default=0.0)


@dataclass(frozen=True, slots=True)
class ClusteringResult:
    clusters_created: int = 0
    articles_merged: int = 0
    articles_consumed: int = 0


@dataclass(frozen=True, slots=True)
class ClusteringStage(Stage):
    """Groups unprocessed raw articles into event clusters.

    Input is read oldest first and assigned greedily in one pass, so the same
    backlog always yields the same clusters. Recent clusters with room can
    absorb new items; those items create no new signal.
    """

    ctx: StageContext

    def run(self) -> ClusteringResult:
        cfg = self.ctx.config.clustering
        store = self.ctx.store

        items = store.list_unprocessed_raw_articles(self.ctx.options.batch_size)
        if not items:
            return ClusteringResult()

        groups = self._open_groups(cfg)
        for item in items:
            f = Features.of(item)
            target = self._best_group(groups, f, cfg)
            if target is None:
                target = _Group(cluster_id=None, size=0)
                groups.append(target)
            target.features.append(f)
            target.new_members.append(item)
            target.size += 1

        created = 0
        merged = 0
        consumed = 0
        for g in groups:
            if not g.new_members:
                continue
            cluster_id, is_new = self._persist(g)
            consumed += len(g.new_members)
            if is_new:
                created += 1
            else:
                merged += len(g.new_members)
            logger.debug(
                f"Cluster written, cluster_id={cluster_id}, new={is_new}, members={len(g.new_members)}"
            )

        self.ctx.log.info(
            f"Clustering finished, consumed={consumed}, clusters_created={created}, merged={merged}"
        )
        return ClusteringResult(
            clusters_created=created, articles_merged=merged, articles_consumed=consumed
        )

    def _open_groups(self, cfg: ClusteringConfig) -> List[_Group]:
        if int(cfg.window_hours) <= 0:
            return []
        since = to_iso(utc_now() - timedelta(hours=int(cfg.window_hours)))
        groups: List[_Group] = []
        for cluster, size in self.ctx.store.list_open_clusters(
            since_iso=since, max_size=int(cfg.max_cluster_size)
        ):
            members = self.ctx.store.cluster_members(cluster.id)
            groups.append(
                _Group(
                    cluster_id=cluster.id,
                    size=size,
                    features=[Features.of(m) for m in members],
                )
            )
        return groups

    def _best_group(
        self, groups: List[_Group], f: Features, cfg: ClusteringConfig
    ) -> Optional[_Group]:
        best: Optional[_Group] = None
        best_score = 0.0
        for g in groups:
            if g.size >= int(cfg.max_cluster_size):
                continue
            s = g.score(f, cfg)
            # strict comparison keeps the earliest group on ties
            if s > best_score:
                best, best_score = g, s
        return best

    def _persist(self, g: _Group) -> Tuple[int, bool]:
        store = self.ctx.store
        with store.transaction():
            is_new = g.cluster_id is None
            cluster_id = g.cluster_id
            if cluster_id is None:
                cluster_id = store.create_cluster(g.new_members[0].title, utc_now_iso())
            for m in g.new_members:
                store.add_cluster_member(cluster_id, m.id)
            store.mark_raw_processed(m.id for m in g.new_members)
        g.cluster_id = cluster_id
        return cluster_id, is_new
