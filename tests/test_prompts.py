#!filepath: tests/test_prompts.py
from __future__ import annotations

from pathlib import Path

import pytest

from canopticon_app.prompts.template import PromptTemplate, load_prompt


def test_render_replaces_placeholders() -> None:
    t = PromptTemplate(name="t", text="Between {{MIN_WORDS}} and {{MAX_WORDS}} words.")

    assert t.placeholders == {"MIN_WORDS", "MAX_WORDS"}
    assert t.render({"MIN_WORDS": "350", "MAX_WORDS": "550"}) == "Between 350 and 550 words."


def test_render_requires_every_value() -> None:
    t = PromptTemplate(name="t", text="{{A}} and {{B}}")

    with pytest.raises(ValueError, match="missing values for B"):
        t.render({"A": "x"})


def test_packaged_prompts_load() -> None:
    scoring = load_prompt("scoring")
    synthesis = load_prompt("synthesis")

    assert "SOURCE_COUNT" in scoring.placeholders
    assert {"MIN_WORDS", "MAX_WORDS"} <= synthesis.placeholders


def test_override_directory_wins(tmp_path: Path) -> None:
    (tmp_path / "scoring.md").write_text("Custom {{SOURCE_COUNT}}", encoding="utf-8")

    t = load_prompt("scoring", tmp_path)

    assert t.render({"SOURCE_COUNT": "2"}) == "Custom 2"


def test_unknown_prompt_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_prompt("nope", tmp_path)
