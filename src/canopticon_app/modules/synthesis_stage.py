#!filepath: src/canopticon_app/modules/synthesis_stage.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from canopticon_app.errors import (
    ClaimConflict,
    NotFoundError,
    ParseError,
    PersistenceError,
)
from canopticon_app.models import RawArticle, Signal, SignalStatus
from canopticon_app.modules.base import Stage, StageContext
from canopticon_app.modules.publishing_stage import publish_article
from canopticon_app.modules.triage import SignalStateMachine
from canopticon_app.prompts.template import load_prompt
from canopticon_app.utils.logger import get_logger
from canopticon_app.utils.retry import run_with_retry
from canopticon_app.utils.text import reading_time_minutes, slugify

logger = get_logger(__name__)

STRICT_SUFFIX = (
    "\n\nIMPORTANT: your previous answer could not be parsed. Reply with one "
    "JSON object only, no prose and no code fences, with non-empty "
    "`headline`, `summary` and `sections`."
)


class Section(BaseModel):
    heading: str = ""
    paragraphs: List[str] = Field(min_length=1)

    @field_validator("paragraphs", mode="before")
    @classmethod
    def _paragraphs(cls, v: Any) -> List[str]:
        if isinstance(v, str):
            v = [p for p in v.split("\n\n")]
        if not isinstance(v, list):
            raise ValueError("paragraphs must be a list")
        return [str(p).strip() for p in v if str(p or "").strip()]


class SynthesisOutput(BaseModel):
    """Validated article draft returned by the model."""

    headline: str = Field(min_length=1)
    summary: str = Field(min_length=1)
    sections: List[Section] = Field(min_length=1)
    topics: List[str] = Field(default_factory=list)
    entities: List[str] = Field(default_factory=list)

    model_config = {"extra": "ignore"}

    @field_validator("headline", "summary", mode="before")
    @classmethod
    def _text(cls, v: Any) -> str:
        return str(v or "").strip()

    @field_validator("topics", "entities", mode="before")
    @classmethod
    def _lists(cls, v: Any) -> List[str]:
        if not isinstance(v, list):
            return []
        return [str(x).strip() for x in v if str(x or "").strip()]

    def plain_text(self) -> str:
        parts = [self.headline, self.summary]
        for s in self.sections:
            parts.append(s.heading)
            parts.extend(s.paragraphs)
        return "\n".join(p for p in parts if p)


def _text_node(text: str) -> Dict[str, Any]:
    return {"type": "text", "text": text}


def build_document(out: SynthesisOutput) -> Dict[str, Any]:
    """Structured rich text document with heading and paragraph nodes."""
    nodes: List[Dict[str, Any]] = []
    for s in out.sections:
        if s.heading:
            nodes.append(
                {
                    "type": "heading",
                    "attrs": {"level": 2},
                    "content": [_text_node(s.heading)],
                }
            )
        for p in s.paragraphs:
            nodes.append({"type": "paragraph", "content": [_text_node(p)]})
    return {"type": "doc", "content": nodes}


@dataclass(frozen=True, slots=True)
class SynthesisResult:
    success: bool
    article_id: Optional[int] = None
    published: bool = False
    skipped: bool = False
    not_found: bool = False
    error: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ArticleSynthesizer:
    """Turns one approved signal into a draft article.

    The signal is claimed first; whatever happens afterwards it ends up either
    published or back in approved.
    """

    ctx: StageContext

    def synthesize(self, signal_id: int) -> SynthesisResult:
        sm = SignalStateMachine(self.ctx.store)
        try:
            signal = sm.claim(signal_id)
        except ClaimConflict as e:
            logger.info(f"Synthesis skipped, signal_id={signal_id}, status={e.current}")
            return SynthesisResult(success=False, skipped=True, error=str(e))
        except NotFoundError as e:
            return SynthesisResult(success=False, not_found=True, error=str(e))

        try:
            return self._produce(sm, signal)
        except PersistenceError:
            raise
        except Exception as e:
            self._release(sm, signal_id)
            msg = f"Synthesis failed, signal_id={signal_id}, err={e}"
            if not isinstance(e, ParseError):
                logger.error(msg, exc_info=True)
            self.ctx.log.error(msg)
            return SynthesisResult(success=False, error=str(e))

    def _produce(self, sm: SignalStateMachine, signal: Signal) -> SynthesisResult:
        out = self._generate(signal)
        store = self.ctx.store

        content = build_document(out)
        article_id = store.insert_article(
            signal_id=signal.id,
            slug=self._unique_slug(out.headline),
            headline=out.headline,
            summary=out.summary,
            content=content,
            topics=out.topics or sorted(signal.topics),
            entities=out.entities or sorted(signal.entities),
            reading_time=reading_time_minutes(out.plain_text()),
            is_draft=True,
        )
        logger.info(f"Draft article stored, article_id={article_id}, signal_id={signal.id}")

        if self.ctx.options.enable_auto_publish:
            publish_article(store, article_id)
            return SynthesisResult(success=True, article_id=article_id, published=True)

        sm.release(signal.id)
        return SynthesisResult(success=True, article_id=article_id)

    def _generate(self, signal: Signal) -> SynthesisOutput:
        cfg = self.ctx.config
        template = load_prompt("synthesis", self.ctx.deps.settings.prompts_dir)
        prompt_base = template.render(
            {
                "MIN_WORDS": str(cfg.synthesis.min_words),
                "MAX_WORDS": str(cfg.synthesis.max_words),
            }
        )
        input_json = self._input(signal)

        def _attempt(attempt: int) -> SynthesisOutput:
            prompt = prompt_base + (STRICT_SUFFIX if attempt > 1 else "")
            res = self.ctx.deps.model.call_model(
                prompt, input_json, cfg.llm.synthesis_model
            )
            if not res.success or res.data is None:
                raise ParseError(res.error or "model call failed")
            try:
                return SynthesisOutput.model_validate(res.data)
            except ValidationError as e:
                raise ParseError(
                    f"invalid synthesis output, errors={e.error_count()}"
                ) from e

        return run_with_retry(_attempt, attempts=2, retry_on=(ParseError,), logger=logger)

    def _input(self, signal: Signal) -> Dict[str, Any]:
        cfg = self.ctx.config
        members: List[RawArticle] = []
        if signal.cluster_id is not None:
            members = self.ctx.store.cluster_members(signal.cluster_id)

        research = ""
        if cfg.research.max_queries > 0:
            queries = [signal.headline, *sorted(signal.entities)]
            research = self.ctx.deps.research.research(
                queries[: int(cfg.research.max_queries)]
            )

        return {
            "headline": signal.headline,
            "summary": signal.summary,
            "entities": sorted(signal.entities),
            "topics": sorted(signal.topics),
            "sources": [
                {
                    "source": m.source_name,
                    "title": m.title,
                    "url": m.url,
                    "text": m.body[: int(cfg.synthesis.excerpt_chars)],
                }
                for m in members
            ],
            "research": research,
        }

    def _unique_slug(self, headline: str) -> str:
        slug = slugify(headline)
        n = 2
        candidate = slug
        while self.ctx.store.slug_exists(candidate):
            candidate = f"{slug}-{n}"
            n += 1
        return candidate

    def _release(self, sm: SignalStateMachine, signal_id: int) -> None:
        sig = self.ctx.store.get_signal(signal_id)
        if sig is not None and sig.status is SignalStatus.PROCESSING:
            sm.release(signal_id)


@dataclass(frozen=True, slots=True)
class SynthesisStage(Stage):
    """Writes articles for approved signals that have none yet."""

    ctx: StageContext

    def run(self) -> List[SynthesisResult]:
        signals = self.ctx.store.list_approved_without_article(
            self.ctx.options.batch_size
        )
        synth = ArticleSynthesizer(self.ctx)
        results = [synth.synthesize(s.id) for s in signals]

        if signals:
            ok = sum(1 for r in results if r.success)
            self.ctx.log.info(
                f"Synthesis finished, candidates={len(signals)}, synthesized={ok}, failed={len(results) - ok}"
            )
        return results
