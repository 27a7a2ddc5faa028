"""File-system helpers for recipe and feature-config JSON payloads."""
from __future__ import annotations

from pathlib import Path
from typing import Any

import orjson

from nimbus_cli.domain.errors import PayloadError


def read_json(path: str | Path) -> Any:
    p = Path(path)
    try:
        return orjson.loads(p.read_bytes())
    except FileNotFoundError as exc:
        raise PayloadError(f"File not found: {p}", identifier=str(p)) from exc
    except OSError as exc:
        raise PayloadError(f"Cannot read {p}: {exc.strerror or exc}", identifier=str(p)) from exc
    except orjson.JSONDecodeError as exc:
        raise PayloadError(f"Invalid JSON in {p}: {exc}", identifier=str(p)) from exc


def write_json(path: str | Path, data: Any) -> Path:
    p = Path(path)
    try:
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(orjson.dumps(data, option=orjson.OPT_INDENT_2))
    except OSError as exc:
        raise PayloadError(f"Cannot write {p}: {exc.strerror or exc}", identifier=str(p)) from exc
    return p


def load_recipes(path: str | Path) -> list[dict[str, Any]]:
    """Read recipes from ``{"data": [...]}``, a bare list, or a single recipe object."""
    data = read_json(path)
    if isinstance(data, dict) and isinstance(data.get("data"), list):
        data = data["data"]
    if isinstance(data, list):
        if not all(isinstance(r, dict) for r in data):
            raise PayloadError(f"Recipe list in {path} contains non-object entries", identifier=str(path))
        return list(data)
    if isinstance(data, dict):
        return [data]
    raise PayloadError(f"Recipe file {path} must hold an object or a list", identifier=str(path))


def write_recipes(path: str | Path, recipes: list[dict[str, Any]]) -> Path:
    return write_json(path, {"data": recipes})


def dumps_compact(data: Any) -> str:
    return orjson.dumps(data).decode("utf-8")


__all__ = ["dumps_compact", "load_recipes", "read_json", "write_json", "write_recipes"]
