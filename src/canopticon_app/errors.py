#!filepath: src/canopticon_app/errors.py
from __future__ import annotations

from typing import Optional


class PipelineError(Exception):
    """Base class for pipeline errors."""


class FetchError(PipelineError):
    """A source could not be fetched or parsed. Soft failure, per source."""

    def __init__(self, source_name: str, message: str) -> None:
        super().__init__(f"source={source_name}, err={message}")
        self.source_name = source_name


class ParseError(PipelineError):
    """Model output could not be parsed or validated."""


class PersistenceError(PipelineError):
    """The store is unavailable or rejected a write. Fatal to the cycle."""


class NotFoundError(PipelineError):
    """A referenced record does not exist."""


class InvalidTransition(PipelineError):
    """A signal status transition was attempted from a state that forbids it."""

    def __init__(self, signal_id: int, current: Optional[str], target: str) -> None:
        super().__init__(
            f"Invalid transition, signal_id={signal_id}, current={current}, target={target}"
        )
        self.signal_id = signal_id
        self.current = current
        self.target = target


class ClaimConflict(PipelineError):
    """Another cycle already owns the signal. Treated as a skip."""

    def __init__(self, signal_id: int, current: Optional[str]) -> None:
        super().__init__(f"Claim conflict, signal_id={signal_id}, current={current}")
        self.signal_id = signal_id
        self.current = current
