#!filepath: src/canopticon_app/prompts/template.py
from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

_PLACEHOLDER_RE = re.compile(r"\{\{([A-Z0-9_]+)\}\}")

PACKAGED_DIR = Path(__file__).resolve().parent


@dataclass(frozen=True, slots=True)
class PromptTemplate:
    """Strict prompt template renderer.

    Placeholders must be uppercase tokens wrapped as {{TOKEN}}.

    Args:
        name: Template identifier used for error messages.
        text: Raw template contents.

    Raises:
        ValueError: If placeholders are missing or left unresolved.
    """

    name: str
    text: str

    @property
    def placeholders(self) -> set[str]:
        """Return the placeholders declared in the template."""
        return {m.group(1) for m in _PLACEHOLDER_RE.finditer(self.text or "")}

    def render(self, values: Mapping[str, str]) -> str:
        """Render the template using provided placeholder values.

        Args:
            values: Mapping placeholder name to replacement text.

        Returns:
            str: Rendered prompt with no unresolved placeholders.

        Raises:
            ValueError: If a placeholder has no value or survives rendering.
        """
        missing = sorted([p for p in self.placeholders if p not in values])
        if missing:
            raise ValueError(
                f"Prompt {self.name} missing values for {', '.join(missing)}"
            )

        out = self.text
        for k, v in values.items():
            out = out.replace(f"{{{{{k}}}}}", str(v or ""))

        leftover = _PLACEHOLDER_RE.search(out or "")
        if leftover:
            raise ValueError(
                f"Prompt {self.name} unresolved placeholder {leftover.group(0)}"
            )

        return out


def load_prompt(name: str, prompts_dir: Optional[Path] = None) -> PromptTemplate:
    """Load `<name>.md`, preferring an override directory over the packaged copy.

    Args:
        name: Prompt name without extension.
        prompts_dir: Optional directory with operator edited prompts.

    Returns:
        PromptTemplate: Loaded template.

    Raises:
        FileNotFoundError: If no copy exists.
    """
    candidates = []
    if prompts_dir is not None:
        candidates.append(Path(prompts_dir) / f"{name}.md")
    candidates.append(PACKAGED_DIR / f"{name}.md")

    for p in candidates:
        if p.exists():
            return PromptTemplate(name=name, text=p.read_text(encoding="utf-8"))

    raise FileNotFoundError(f"Prompt not found, name={name}")
