#!filepath: src/canopticon_app/models.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional


class SourceKind(str, Enum):
    """Kinds of content origin."""

    RSS = "rss"
    API = "api"
    SOCIAL = "social"


class SignalStatus(str, Enum):
    """Lifecycle states of a signal."""

    PENDING = "pending"
    PROCESSING = "processing"
    APPROVED = "approved"
    PUBLISHED = "published"
    ARCHIVED = "archived"
    REJECTED = "rejected"


class Priority(str, Enum):
    """Priority tier assigned by the scoring model."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @classmethod
    def coerce(cls, raw: Any, default: Optional["Priority"] = None) -> "Priority":
        s = str(raw or "").strip().lower()
        for p in cls:
            if p.value == s:
                return p
        return default or cls.MEDIUM

    @classmethod
    def from_score(cls, score: int) -> "Priority":
        if score >= 85:
            return cls.CRITICAL
        if score >= 65:
            return cls.HIGH
        if score >= 40:
            return cls.MEDIUM
        return cls.LOW


class LogLevel(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class Source:
    """A configured content origin.

    Attributes:
        id: Row id, 0 before insert.
        name: Unique display name.
        url: Feed or API endpoint.
        kind: Source kind.
        active: Whether ingestion polls it.
        priority: Polling order, lower first.
        config: Fetcher specific options.
    """

    id: int
    name: str
    url: str
    kind: SourceKind
    active: bool = True
    priority: int = 100
    config: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class FetchedItem:
    """Normalized item returned by a fetcher."""

    title: str
    body: str
    url: str
    published_at: Optional[str] = None


@dataclass(frozen=True, slots=True)
class RawArticle:
    id: int
    source_id: int
    url: str
    title: str
    body: str
    content_hash: str
    fetched_at: str
    published_at: Optional[str] = None
    is_processed: bool = False
    source_name: str = ""


@dataclass(frozen=True, slots=True)
class Cluster:
    id: int
    representative_title: str
    created_at: str


@dataclass(frozen=True, slots=True)
class ClusterArticle:
    cluster_id: int
    raw_article_id: int


@dataclass(frozen=True, slots=True)
class Signal:
    """A scored unit of news significance.

    Attributes:
        confidence_score: Significance 0..100, only meaningful when scored.
        scored: False for placeholders created after scoring failed.
    """

    id: int
    cluster_id: Optional[int]
    headline: str
    summary: str
    url: str
    source_name: str
    priority: Priority
    status: SignalStatus
    confidence_score: int
    scored: bool
    entities: FrozenSet[str]
    topics: FrozenSet[str]
    created_at: str
    updated_at: str


@dataclass(frozen=True, slots=True)
class Article:
    id: int
    signal_id: Optional[int]
    slug: str
    headline: str
    summary: str
    content: Dict[str, Any]
    topics: FrozenSet[str]
    entities: FrozenSet[str]
    reading_time: int
    is_draft: bool
    published_at: Optional[str]
    created_at: str


@dataclass(frozen=True, slots=True)
class CycleLog:
    id: int
    cycle_id: str
    level: LogLevel
    message: str
    created_at: str

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "cycleId": self.cycle_id,
            "level": self.level.value,
            "message": self.message,
            "createdAt": self.created_at,
        }
