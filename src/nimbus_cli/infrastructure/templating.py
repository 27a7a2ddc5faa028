"""Templating engine (Jinja2) for app-specific naming conventions.

Used to derive manifest refs from an app version, e.g. ``releases_v{{ major }}``.
Undefined variables raise instead of rendering empty.
"""
from __future__ import annotations

from typing import Any

from jinja2 import Environment, StrictUndefined, Template, TemplateError

_env = Environment(undefined=StrictUndefined, autoescape=False, keep_trailing_newline=False)

_CACHE: dict[str, Template] = {}


def _get_template(source: str) -> Template:
    tmpl = _CACHE.get(source)
    if tmpl is None:
        tmpl = _env.from_string(source)
        _CACHE[source] = tmpl
    return tmpl


def version_context(version: str) -> dict[str, Any]:
    """Split ``120.0.1`` into the variables templates may use."""
    parts = version.strip().split(".")
    padded = parts + [""] * (3 - len(parts))
    return {
        "version": version.strip(),
        "major": padded[0],
        "minor": padded[1],
        "patch": padded[2],
    }


def render_string(source: str, ctx: dict[str, Any]) -> str:
    """Render ``source`` with ``ctx``; raises ``TemplateError`` on undefined names."""
    return _get_template(source).render(**ctx).strip()


__all__ = ["TemplateError", "render_string", "version_context"]
