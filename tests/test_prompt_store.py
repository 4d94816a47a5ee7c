from __future__ import annotations

import json
import os

import pytest

from research_engine.services.prompt_store import PromptCatalog, render_prompt


def test_render_prompt_from_packaged_catalog():
    rendered = render_prompt("follow_up.user", query="q", answer="a", count=3)

    assert "Original question: q" in rendered
    assert "Suggest 3 short follow-up questions" in rendered


def test_synthesis_system_prompt_includes_date():
    assert "Today's date is" in render_prompt("synthesis.system", today="Monday, January 01, 2024")
    assert "Monday, January 01, 2024" in render_prompt("synthesis.system", today="Monday, January 01, 2024")


def test_missing_key_and_value_errors(tmp_path):
    path = tmp_path / "prompts.json"
    path.write_text(json.dumps({"greeting": {"user": "Hello $name"}, "nested": {"obj": {}}}), encoding="utf-8")
    catalog = PromptCatalog(path)

    with pytest.raises(KeyError, match="Prompt key not found"):
        catalog.render("greeting.system")
    with pytest.raises(KeyError, match="Missing template value 'name'"):
        catalog.render("greeting.user")
    with pytest.raises(TypeError):
        catalog.render("nested.obj")


def test_catalog_reloads_when_file_changes(tmp_path):
    path = tmp_path / "prompts.json"
    path.write_text(json.dumps({"p": "one"}), encoding="utf-8")
    catalog = PromptCatalog(path)
    assert catalog.render("p") == "one"

    path.write_text(json.dumps({"p": "two"}), encoding="utf-8")
    stat = path.stat()
    os.utime(path, ns=(stat.st_atime_ns, stat.st_mtime_ns + 1_000_000))

    assert catalog.render("p") == "two"
