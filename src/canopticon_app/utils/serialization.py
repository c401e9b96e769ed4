#!filepath: src/canopticon_app/utils/serialization.py
from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Mapping

import yaml

from canopticon_app.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class LoadResult:
    """Structured result for config file loads.

    Args:
        data: Parsed payload when successful.
        path: File path attempted.
        ok: Whether parsing succeeded.
    """

    data: dict[str, Any]
    path: Path
    ok: bool


def load_yaml_dict(path: Path) -> LoadResult:
    """Load a YAML file and return a dictionary payload.

    Args:
        path: Path to a YAML file.

    Returns:
        LoadResult: Parsed data and status.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        logger.error(f"Failed to read YAML, path={path}, err={exc}")
        return LoadResult(data={}, path=path, ok=False)

    try:
        raw = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        logger.error(f"Failed to parse YAML, path={path}, err={exc}")
        return LoadResult(data={}, path=path, ok=False)

    if raw is None:
        return LoadResult(data={}, path=path, ok=True)

    if not isinstance(raw, Mapping):
        logger.error(
            f"Invalid YAML, path={path}, expected mapping, got={type(raw).__name__}"
        )
        return LoadResult(data={}, path=path, ok=False)

    return LoadResult(data=dict(raw), path=path, ok=True)


def dumps_list(values: Iterable[str]) -> str:
    """Serialize a string collection as a sorted JSON array."""
    return json.dumps(sorted({str(v) for v in values if str(v).strip()}), ensure_ascii=False)


def loads_list(raw: Any) -> frozenset[str]:
    """Parse a JSON array column back into a frozenset."""
    s = str(raw or "").strip()
    if not s:
        return frozenset()
    try:
        parsed = json.loads(s)
    except json.JSONDecodeError:
        return frozenset()
    if not isinstance(parsed, list):
        return frozenset()
    return frozenset(str(x) for x in parsed if str(x).strip())


def loads_dict(raw: Any) -> dict[str, Any]:
    s = str(raw or "").strip()
    if not s:
        return {}
    try:
        parsed = json.loads(s)
    except json.JSONDecodeError:
        return {}
    return dict(parsed) if isinstance(parsed, dict) else {}
