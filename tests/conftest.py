#!filepath: tests/conftest.py
from __future__ import annotations

import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

import pytest

from canopticon_app.cycle_log import CycleLogger
from canopticon_app.db.store import Store, open_store
from canopticon_app.deps import PipelineDeps, build_deps
from canopticon_app.errors import FetchError
from canopticon_app.ingestion.base import BaseFetcher
from canopticon_app.llm.client import ModelResult
from canopticon_app.models import FetchedItem, Priority, SignalStatus, Source, SourceKind
from canopticon_app.modules.base import CycleOptions, StageContext
from canopticon_app.research import NullResearch
from canopticon_app.settings import AppConfig, Settings
from canopticon_app.utils.dates import utc_now_iso
from canopticon_app.utils.project_paths import ProjectPaths

SCORING_MODEL = "gpt-4o-mini"
SYNTHESIS_MODEL = "gpt-4o"

Script = Union[List[ModelResult], Callable[[str, Mapping[str, Any]], ModelResult]]


def pytest_configure() -> None:
    """Ensure src layout is importable during tests."""
    root = Path(__file__).resolve().parents[1]
    src = (root / "src").resolve()
    if str(src) not in sys.path:
        sys.path.insert(0, str(src))


def ok(data: Dict[str, Any]) -> ModelResult:
    return ModelResult(success=True, data=data, model="fake")


def fail(error: str = "model unavailable") -> ModelResult:
    return ModelResult.failure(error, model="fake")


@dataclass
class Call:
    prompt: str
    input_json: Dict[str, Any]
    model_name: str


@dataclass
class FakeModel:
    """Scripted model. A list is consumed in order, its last entry repeats."""

    script: Dict[str, Script] = field(default_factory=dict)
    calls: List[Call] = field(default_factory=list)

    def call_model(
        self, prompt: str, input_json: Mapping[str, Any], model_name: str
    ) -> ModelResult:
        self.calls.append(Call(prompt, dict(input_json), model_name))
        step = self.script.get(model_name)
        if callable(step):
            return step(prompt, input_json)
        if isinstance(step, list) and step:
            return step.pop(0) if len(step) > 1 else step[0]
        return fail(f"unscripted model, name={model_name}")

    def calls_for(self, model_name: str) -> List[Call]:
        return [c for c in self.calls if c.model_name == model_name]


class StaticFetcher(BaseFetcher):
    """Serves canned items, or raises, per source name."""

    def __init__(self, source: Source, feeds: Dict[str, Any]) -> None:
        super().__init__(source)
        self.feeds = feeds

    def iter_entries(self) -> Iterable[Any]:
        entry = self.feeds.get(self.source.name, [])
        if isinstance(entry, Exception):
            raise entry
        return list(entry)

    def entry_to_item(self, entry: Any) -> Optional[FetchedItem]:
        return entry


@dataclass
class Feeds:
    items: Dict[str, Union[List[FetchedItem], Exception]] = field(default_factory=dict)

    def factory(self, source: Source) -> BaseFetcher:
        return StaticFetcher(source, self.items)

    def fail(self, source_name: str, message: str = "connection refused") -> None:
        self.items[source_name] = FetchError(source_name, message)


def item(title: str, body: str, url: str, published_at: Optional[str] = None) -> FetchedItem:
    return FetchedItem(
        title=title,
        body=body,
        url=url,
        published_at=published_at or utc_now_iso(),
    )


def scoring_payload(score: int, **extra: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "significance_score": score,
        "headline": "Scored headline",
        "summary": "Scored summary.",
        "entities": ["Parliament of Canada"],
        "topics": ["Legislation"],
    }
    payload.update(extra)
    return payload


def synthesis_payload(headline: str = "Bill C-11 passes the House") -> Dict[str, Any]:
    return {
        "headline": headline,
        "summary": "The House of Commons passed the bill on third reading.",
        "sections": [
            {"heading": "What happened", "paragraphs": ["The vote passed.", "It now goes to the Senate."]},
            {"heading": "What comes next", "paragraphs": ["Senators will study it in committee."]},
        ],
        "topics": ["Legislation"],
        "entities": ["House of Commons", "C-11"],
    }


@pytest.fixture()
def settings(tmp_path) -> Settings:
    return Settings(config=AppConfig(), paths=ProjectPaths(root=tmp_path))


@pytest.fixture()
def store() -> Iterable[Store]:
    s = open_store(":memory:")
    yield s
    s.close()


@pytest.fixture()
def model() -> FakeModel:
    return FakeModel()


@pytest.fixture()
def feeds() -> Feeds:
    return Feeds()


@pytest.fixture()
def deps(settings: Settings, store: Store, model: FakeModel, feeds: Feeds) -> PipelineDeps:
    return build_deps(
        settings,
        store=store,
        model=model,
        research=NullResearch(),
        fetcher_factory=feeds.factory,
    )


def add_source(store: Store, name: str, *, priority: int = 100, active: bool = True) -> int:
    return store.insert_source(
        name=name,
        url=f"https://example.org/{name.lower().replace(' ', '-')}.xml",
        kind=SourceKind.RSS,
        active=active,
        priority=priority,
    )


def ctx_for(deps: PipelineDeps, **options: Any) -> StageContext:
    return StageContext(deps=deps, log=CycleLogger(deps.store), options=CycleOptions(**options))


def make_signal(
    store: Store,
    *,
    score: int = 80,
    scored: bool = True,
    status: SignalStatus = SignalStatus.PENDING,
    headline: str = "Bill C-11 passes third reading",
    created_at: Optional[str] = None,
) -> int:
    signal_id = store.insert_signal(
        cluster_id=None,
        headline=headline,
        summary="The House of Commons passed the bill.",
        url="https://example.org/c-11",
        source_name="Wire",
        priority=Priority.from_score(score),
        confidence_score=score,
        scored=scored,
        entities=["c-11"],
        topics=["Legislation"],
        status=status,
        created_at=created_at,
    )
    assert signal_id is not None
    return signal_id
