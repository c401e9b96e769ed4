#!filepath: src/canopticon_app/modules/scoring_stage.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from canopticon_app.errors import ParseError, PersistenceError
from canopticon_app.models import Cluster, Priority, RawArticle
from canopticon_app.modules.base import Stage, StageContext
from canopticon_app.prompts.template import PromptTemplate, load_prompt
from canopticon_app.utils.logger import get_logger
from canopticon_app.utils.retry import run_with_retry
from canopticon_app.utils.text import extract_entities

logger = get_logger(__name__)

EXCERPT_CHARS = 1000
MAX_EXCERPTS = 3

STRICT_SUFFIX = (
    "\n\nIMPORTANT: your previous answer could not be parsed. Reply with one "
    "JSON object only, no prose and no code fences. `significance_score` must "
    "be an integer between 0 and 100."
)


def _clean_list(v: Any) -> List[str]:
    if v is None:
        return []
    if isinstance(v, str):
        v = v.split(",")
    if not isinstance(v, (list, tuple, set)):
        raise ValueError("expected a list of strings")
    out: List[str] = []
    seen = set()
    for x in v:
        s = str(x or "").strip()
        if s and s.casefold() not in seen:
            seen.add(s.casefold())
            out.append(s)
    return out


class ScoringOutput(BaseModel):
    """Validated scoring response.

    Scores outside 0..100 are clamped; an unknown priority is derived from
    the score.
    """

    significance_score: int
    priority: Optional[Priority] = None
    headline: str = ""
    summary: str = ""
    entities: List[str] = Field(default_factory=list)
    topics: List[str] = Field(default_factory=list)

    model_config = {"extra": "ignore"}

    @field_validator("significance_score", mode="before")
    @classmethod
    def _clamp(cls, v: Any) -> int:
        if isinstance(v, bool):
            raise ValueError("significance_score must be numeric")
        score = int(round(float(v)))
        return max(0, min(100, score))

    @field_validator("priority", mode="before")
    @classmethod
    def _priority(cls, v: Any) -> Optional[str]:
        s = str(v or "").strip().lower()
        return s if s in {p.value for p in Priority} else None

    @field_validator("entities", "topics", mode="before")
    @classmethod
    def _lists(cls, v: Any) -> List[str]:
        return _clean_list(v)

    @field_validator("headline", "summary", mode="before")
    @classmethod
    def _text(cls, v: Any) -> str:
        return str(v or "").strip()

    @model_validator(mode="after")
    def _fill_priority(self) -> ScoringOutput:
        if self.priority is None:
            self.priority = Priority.from_score(self.significance_score)
        return self


@dataclass(frozen=True, slots=True)
class ScoringResult:
    scored: int = 0
    degraded: int = 0


def build_scoring_input(cluster: Cluster, members: List[RawArticle]) -> Dict[str, Any]:
    """Model input for one cluster.

    Args:
        cluster: Cluster being scored.
        members: Its raw articles, oldest first.

    Returns:
        Dict[str, Any]: Headline, distinct source names and body excerpts
        capped per member and in count.
    """
    sources: List[str] = []
    for m in members:
        if m.source_name and m.source_name not in sources:
            sources.append(m.source_name)
    return {
        "headline": cluster.representative_title,
        "sources": sources,
        "excerpts": [
            {"source": m.source_name, "title": m.title, "text": m.body[:EXCERPT_CHARS]}
            for m in members[:MAX_EXCERPTS]
        ],
    }


@dataclass(frozen=True, slots=True)
class ScoringStage(Stage):
    """Scores clusters that have no signal yet and inserts one signal each.

    Two attempts per cluster, the second with a stricter instruction. When
    both fail the cluster still gets a pending, unscored placeholder so it is
    visible to operators and never retried automatically.
    """

    ctx: StageContext

    def run(self) -> ScoringResult:
        store = self.ctx.store
        clusters = store.list_clusters_without_signal(self.ctx.options.batch_size)
        if not clusters:
            return ScoringResult()

        template = load_prompt("scoring", self.ctx.deps.settings.prompts_dir)

        scored = 0
        degraded = 0
        for cluster in clusters:
            members = store.cluster_members(cluster.id)
            out = self._score(template, cluster, members)
            if out is not None:
                self._insert(cluster, members, out)
                scored += 1
            else:
                self._insert_placeholder(cluster, members)
                degraded += 1

        self.ctx.log.info(f"Scoring finished, scored={scored}, degraded={degraded}")
        return ScoringResult(scored=scored, degraded=degraded)

    def _score(
        self, template: PromptTemplate, cluster: Cluster, members: List[RawArticle]
    ) -> Optional[ScoringOutput]:
        model_name = self.ctx.config.llm.scoring_model
        input_json = build_scoring_input(cluster, members)

        def _attempt(attempt: int) -> ScoringOutput:
            prompt = template.render({"SOURCE_COUNT": str(max(1, len(members)))})
            if attempt > 1:
                prompt += STRICT_SUFFIX
            res = self.ctx.deps.model.call_model(prompt, input_json, model_name)
            if not res.success or res.data is None:
                raise ParseError(res.error or "model call failed")
            try:
                return ScoringOutput.model_validate(res.data)
            except ValidationError as e:
                raise ParseError(f"invalid scoring output, errors={e.error_count()}") from e

        try:
            return run_with_retry(_attempt, attempts=2, retry_on=(ParseError,), logger=logger)
        except ParseError as e:
            self.ctx.log.warning(
                f"Scoring degraded, cluster_id={cluster.id}, err={e}"
            )
            return None
        except PersistenceError:
            raise
        except Exception as e:
            logger.error(f"Scoring crashed, cluster_id={cluster.id}, err={e}", exc_info=True)
            self.ctx.log.error(f"Scoring crashed, cluster_id={cluster.id}, err={e}")
            return None

    def _insert(
        self, cluster: Cluster, members: List[RawArticle], out: ScoringOutput
    ) -> None:
        primary = members[0] if members else None
        signal_id = self.ctx.store.insert_signal(
            cluster_id=cluster.id,
            headline=out.headline or cluster.representative_title,
            summary=out.summary or (primary.body[:300] if primary else ""),
            url=primary.url if primary else "",
            source_name=primary.source_name if primary else "",
            priority=out.priority or Priority.from_score(out.significance_score),
            confidence_score=out.significance_score,
            scored=True,
            entities=out.entities,
            topics=out.topics,
        )
        logger.info(
            f"Signal scored, signal_id={signal_id}, cluster_id={cluster.id}, score={out.significance_score}"
        )

    def _insert_placeholder(self, cluster: Cluster, members: List[RawArticle]) -> None:
        primary = members[0] if members else None
        entities = extract_entities(" ".join(m.title for m in members))
        self.ctx.store.insert_signal(
            cluster_id=cluster.id,
            headline=cluster.representative_title,
            summary=primary.body[:300] if primary else "",
            url=primary.url if primary else "",
            source_name=primary.source_name if primary else "",
            priority=Priority.LOW,
            confidence_score=0,
            scored=False,
            entities=entities,
            topics=(),
        )
