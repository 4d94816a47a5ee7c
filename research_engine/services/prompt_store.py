from __future__ import annotations

import json
from datetime import date
from pathlib import Path
from string import Template
from typing import Any

PROMPTS_PATH = Path(__file__).resolve().parents[1] / "prompts" / "prompts.json"


class PromptCatalog:
    """JSON prompt catalog rendered with ``string.Template``.

    The file is re-read whenever its mtime changes, so prompts can be edited
    while the server runs.
    """

    def __init__(self, path: Path = PROMPTS_PATH):
        self.path = Path(path)
        self._cache: dict[str, Any] | None = None
        self._mtime_ns: int | None = None

    def _load(self) -> dict[str, Any]:
        mtime_ns = self.path.stat().st_mtime_ns
        if self._cache is not None and self._mtime_ns == mtime_ns:
            return self._cache

        payload = json.loads(self.path.read_text(encoding="utf-8"))
        if not isinstance(payload, dict):
            raise ValueError("Prompt catalog must be a JSON object.")
        self._cache = payload
        self._mtime_ns = mtime_ns
        return payload

    def entry(self, key: str) -> str:
        node: Any = self._load()
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                raise KeyError(f"Prompt key not found: {key}")
            node = node[part]
        if not isinstance(node, str):
            raise TypeError(f"Prompt key must map to a string: {key}")
        return node

    def render(self, key: str, **values: Any) -> str:
        values.setdefault("today", date.today().strftime("%A, %B %d, %Y"))
        template = Template(self.entry(key))
        try:
            return template.substitute(**values)
        except KeyError as exc:
            missing = str(exc.args[0])
            raise KeyError(f"Missing template value '{missing}' for prompt '{key}'") from exc

    def clear(self) -> None:
        self._cache = None
        self._mtime_ns = None


_default_catalog = PromptCatalog()


def render_prompt(key: str, **values: Any) -> str:
    return _default_catalog.render(key, **values)


def clear_prompt_cache() -> None:
    _default_catalog.clear()
