#!filepath: src/canopticon_app/utils/project_paths.py
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

ROOT_ENV = "CANOPTICON_ROOT"
ROOT_MARKERS: Tuple[str, ...] = ("configs/default.yaml", "pyproject.toml")


@dataclass(frozen=True, slots=True)
class ProjectPaths:
    """Where config files, the database and prompt overrides live.

    Relative values from the YAML config are anchored at `root`, so the CLI
    and the API behave the same whatever directory they are started from.
    """

    root: Path

    @property
    def configs_dir(self) -> Path:
        return (self.root / "configs").resolve()

    @property
    def data_dir(self) -> Path:
        return (self.root / "data").resolve()

    def config_file(self, profile: Optional[str] = None) -> Path:
        """`default.yaml`, or the `config.<profile>.yaml` overlay."""
        name = f"config.{profile}.yaml" if profile else "default.yaml"
        return self.configs_dir / name

    @classmethod
    def discover(cls, start: Optional[Path] = None) -> ProjectPaths:
        """Find the deployment root.

        `CANOPTICON_ROOT` wins when set. Otherwise walk up from `start` (or
        this file) to the first directory holding a root marker, falling back
        to the working directory for installed copies.
        """
        env_root = str(os.getenv(ROOT_ENV, "") or "").strip()
        if env_root:
            return cls(root=Path(env_root).expanduser().resolve())

        here = (start or Path(__file__)).resolve()
        for candidate in (here, *here.parents):
            if any((candidate / m).exists() for m in ROOT_MARKERS):
                return cls(root=candidate)
        return cls(root=Path.cwd().resolve())

    def resolve_relative(self, value: str | Path) -> Path:
        p = Path(value).expanduser()
        return p.resolve() if p.is_absolute() else (self.root / p).resolve()
