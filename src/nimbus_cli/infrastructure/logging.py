"""Logging & console helpers.

Features:
    * RichHandler based console logging (color, tracebacks)
    * Optional JSON logging mode (``NIMBUS_CLI_LOG_JSON=1``) for machine ingest
    * Optional plain file log when ``LOG_DIR`` is set
    * ``get_console`` / ``render_panel`` so service layers never import rich directly
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel

_INITIALIZED = False
_JSON_MODE = False
_CONSOLE: Console | None = None


class _JsonHandler(logging.Handler):
    def emit(self, record: logging.LogRecord) -> None:  # pragma: no cover - simple
        try:
            data = {
                "level": record.levelname,
                "name": record.name,
                "message": record.getMessage(),
            }
            if record.exc_info:
                data["exc_info"] = logging.Formatter().formatException(record.exc_info)
            print(json.dumps(data, ensure_ascii=False))
        except Exception:  # pragma: no cover
            self.handleError(record)


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in {"1", "true", "yes", "on"}


def setup_logging(level: str | None = None, json_mode: bool | None = None) -> None:
    global _INITIALIZED, _JSON_MODE
    if _INITIALIZED:
        return
    _JSON_MODE = json_mode if json_mode is not None else _env_flag("NIMBUS_CLI_LOG_JSON")
    lvl_name = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    lvl = getattr(logging, lvl_name, logging.INFO)
    handlers: list[logging.Handler] = []
    if _JSON_MODE:
        handlers.append(_JsonHandler())
    else:
        handlers.append(
            RichHandler(console=Console(stderr=True), rich_tracebacks=True, markup=False, show_path=False)
        )
    log_dir = os.getenv("LOG_DIR")
    if log_dir:
        try:
            Path(log_dir).mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(Path(log_dir) / "nimbus-cli.log", encoding="utf-8")
            file_handler.setFormatter(
                logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")
            )
            handlers.append(file_handler)
        except OSError as exc:  # pragma: no cover
            logging.getLogger(__name__).debug("File logging setup failed: %s", exc)
    logging.basicConfig(level=lvl, handlers=handlers, force=True, format="%(message)s", datefmt="%H:%M:%S")
    _INITIALIZED = True


def get_console() -> Console:
    """Return the shared rich Console used for operator-facing output."""
    global _CONSOLE
    if _CONSOLE is None:
        _CONSOLE = Console()
    return _CONSOLE


def render_panel(title: str, body: str, *, style: str = "cyan") -> None:
    if _JSON_MODE:
        logging.getLogger("nimbus_cli.console").info("%s | %s", title, body)
        return
    get_console().print(Panel.fit(body, title=title, border_style=style))


__all__ = [
    "get_console",
    "render_panel",
    "setup_logging",
]
