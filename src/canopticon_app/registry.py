#!filepath: src/canopticon_app/registry.py
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from canopticon_app.db.store import Store
from canopticon_app.errors import NotFoundError
from canopticon_app.models import Source, SourceKind
from canopticon_app.utils.logger import get_logger
from canopticon_app.utils.serialization import load_yaml_dict

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class SyncResult:
    """Outcome of a sources.yaml sync."""

    created: int = 0
    updated: int = 0
    invalid: int = 0


class SourceRegistry:
    """Catalog of content origins.

    Sources are only ever added or deactivated, never removed, so raw
    articles keep a valid origin.
    """

    def __init__(self, store: Store) -> None:
        self._store = store

    def add(
        self,
        *,
        name: str,
        url: str,
        kind: SourceKind,
        active: bool = True,
        priority: int = 100,
        config: Optional[Dict[str, Any]] = None,
    ) -> Source:
        clean_name = str(name or "").strip()
        if not clean_name:
            raise ValueError("Source name must not be empty")
        source_id = self._store.insert_source(
            name=clean_name,
            url=str(url).strip(),
            kind=kind,
            active=active,
            priority=priority,
            config=config,
        )
        logger.info(f"Source added, id={source_id}, name={clean_name}, kind={kind.value}")
        return self.get(source_id)

    def get(self, source_id: int) -> Source:
        src = self._store.get_source(source_id)
        if src is None:
            raise NotFoundError(f"Source not found, id={source_id}")
        return src

    def list_active(self) -> List[Source]:
        """Active sources, lower priority number first, then id."""
        return self._store.list_sources(active_only=True)

    def list_all(self) -> List[Source]:
        return self._store.list_sources()

    def set_active(self, source_id: int, active: bool) -> Source:
        if not self._store.set_source_active(source_id, active):
            raise NotFoundError(f"Source not found, id={source_id}")
        logger.info(f"Source toggled, id={source_id}, active={active}")
        return self.get(source_id)

    def sync_from_yaml(self, path: Path) -> SyncResult:
        """Upsert sources declared in a YAML file, matched by name.

        Args:
            path: File with a top level `sources` list.

        Returns:
            SyncResult: Counters.
        """
        res = load_yaml_dict(path)
        if not res.ok:
            return SyncResult(invalid=1)

        entries = res.data.get("sources", [])
        if not isinstance(entries, list):
            logger.error(f"Invalid sources file, sources is not a list, path={path}")
            return SyncResult(invalid=1)

        created = 0
        updated = 0
        invalid = 0
        for entry in entries:
            parsed = _parse_entry(entry)
            if parsed is None:
                invalid += 1
                logger.warning(f"Invalid source entry skipped, entry={entry!r}")
                continue

            existing = self._store.get_source_by_name(parsed["name"])
            if existing is None:
                self._store.insert_source(**parsed)
                created += 1
                continue

            self._store.update_source(
                existing.id,
                url=parsed["url"],
                kind=parsed["kind"],
                priority=parsed["priority"],
                config=parsed["config"],
            )
            if existing.active != parsed["active"]:
                self._store.set_source_active(existing.id, parsed["active"])
            updated += 1

        logger.info(
            f"Sources synced, path={path}, created={created}, updated={updated}, invalid={invalid}"
        )
        return SyncResult(created=created, updated=updated, invalid=invalid)


def _parse_entry(entry: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(entry, Mapping):
        return None

    name = str(entry.get("name") or "").strip()
    url = str(entry.get("url") or "").strip()
    if not name or not url:
        return None

    try:
        kind = SourceKind(str(entry.get("kind") or "rss").strip().lower())
    except ValueError:
        return None

    try:
        priority = int(entry.get("priority", 100))
    except (TypeError, ValueError):
        return None

    cfg = entry.get("config")
    return {
        "name": name,
        "url": url,
        "kind": kind,
        "active": bool(entry.get("active", True)),
        "priority": priority,
        "config": dict(cfg) if isinstance(cfg, Mapping) else {},
    }
