"""Prompt template loading and rendering.

Templates are YAML documents with ``system`` and ``user`` text. Both parts
may contain ``{name}`` placeholders; everything else, including the JSON
examples shown to the backend, is passed through untouched.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ruamel.yaml import YAML

from cartographer.observability.logging import get_logger

log = get_logger(__name__)

TEMPLATES_PATH = Path(__file__).parent / "templates"

_PLACEHOLDER = re.compile(r"\{([a-zA-Z_][a-zA-Z0-9_]*)\}")


def safe_format(text: str, context: dict[str, Any]) -> str:
    """Substitute ``{name}`` placeholders present in *context*.

    Unknown placeholders and literal braces are left intact, so templates
    never need ``{{`` escaping around JSON.
    """

    def _replace(match: re.Match[str]) -> str:
        key = match.group(1)
        return str(context[key]) if key in context else match.group(0)

    return _PLACEHOLDER.sub(_replace, text)


@dataclass(frozen=True)
class PromptTemplate:
    """One request shape: system instructions plus a user message."""

    name: str
    description: str
    system: str
    user: str

    @property
    def placeholders(self) -> frozenset[str]:
        """Placeholder names used by either part."""
        return frozenset(_PLACEHOLDER.findall(self.system + "\n" + self.user))

    def render(self, **context: Any) -> tuple[str, str]:
        """Fill both parts from *context*.

        Missing placeholders are logged and left in place.

        Returns:
            Tuple of (system, user) text.
        """
        missing = self.placeholders - context.keys()
        if missing:
            log.debug("template_placeholders_missing", template=self.name, missing=sorted(missing))
        return safe_format(self.system, context), safe_format(self.user, context)


class TemplateNotFoundError(Exception):
    """Raised when no file exists for a template name."""

    def __init__(self, template_name: str, path: Path) -> None:
        self.template_name = template_name
        self.path = path
        super().__init__(f"Template not found: {template_name} at {path}")


class TemplateParseError(Exception):
    """Raised when a template file is empty or not valid YAML."""

    def __init__(self, template_name: str, reason: str) -> None:
        self.template_name = template_name
        self.reason = reason
        super().__init__(f"Failed to parse template '{template_name}': {reason}")


class PromptLoader:
    """Reads templates from a directory and caches them by name.

    Attributes:
        templates_path: Directory holding ``<name>.yaml`` files.
    """

    def __init__(self, templates_path: Path = TEMPLATES_PATH) -> None:
        self.templates_path = templates_path
        self._yaml = YAML(typ="safe")
        self._cache: dict[str, PromptTemplate] = {}

    def _path_for(self, template_name: str) -> Path:
        return self.templates_path / f"{template_name}.yaml"

    def _read(self, template_name: str, path: Path) -> PromptTemplate:
        try:
            with path.open("r", encoding="utf-8") as f:
                data = self._yaml.load(f)
        except Exception as e:
            raise TemplateParseError(template_name, str(e)) from e

        if not isinstance(data, dict):
            reason = "Empty file" if data is None else "Expected a mapping at top level"
            raise TemplateParseError(template_name, reason)

        return PromptTemplate(
            name=str(data.get("name", template_name)),
            description=str(data.get("description", "")),
            system=str(data.get("system", "")),
            user=str(data.get("user", "")),
        )

    def load(self, template_name: str) -> PromptTemplate:
        """Load a template by name (without the .yaml extension).

        Raises:
            TemplateNotFoundError: If the template file doesn't exist.
            TemplateParseError: If the template cannot be parsed.
        """
        cached = self._cache.get(template_name)
        if cached is not None:
            return cached

        path = self._path_for(template_name)
        if not path.exists():
            raise TemplateNotFoundError(template_name, path)

        template = self._read(template_name, path)
        self._cache[template_name] = template
        return template

    def exists(self, template_name: str) -> bool:
        return self._path_for(template_name).exists()

    def list_templates(self) -> list[str]:
        """Names of the templates on disk, sorted."""
        if not self.templates_path.is_dir():
            return []
        return sorted(p.stem for p in self.templates_path.glob("*.yaml") if p.is_file())

    def clear_cache(self) -> None:
        self._cache.clear()


_default_loader: PromptLoader | None = None


def get_loader() -> PromptLoader:
    """Shared loader over the packaged templates."""
    global _default_loader
    if _default_loader is None:
        _default_loader = PromptLoader()
    return _default_loader
