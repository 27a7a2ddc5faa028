"""Runtime context & bootstrap utilities (dotenv + YAML config + logging)."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

from nimbus_cli.domain.errors import ConfigurationError
from nimbus_cli.domain.models import AppSettings, Platform
from nimbus_cli.infrastructure.logging import setup_logging

DEFAULT_CONFIG_PATH = Path(__file__).parent / "configs" / "default.yaml"
_MERGED_SECTIONS = ("servers", "collections", "apps")


class ManifestLocation(BaseModel):
    repo: str
    path: str
    version_ref: str | None = None  # Jinja2 template over version/major/minor/patch


class AppDefinition(BaseModel):
    platform: Platform
    channels: dict[str, str]
    activity: str | None = None
    manifest: ManifestLocation | None = None


class ToolConfig(BaseModel):
    servers: dict[str, str] = Field(default_factory=dict)
    collections: dict[str, str] = Field(default_factory=dict)
    timeout_seconds: float = 30.0
    apps: dict[str, AppDefinition] = Field(default_factory=dict)

    @property
    def server_tags(self) -> set[str]:
        return set(self.servers)

    def app_settings(self, app: str, channel: str) -> AppSettings:
        definition = self.apps.get(app)
        if definition is None:
            raise ConfigurationError(
                f"Unknown app '{app}' (known: {', '.join(sorted(self.apps))})", identifier=app
            )
        app_id = definition.channels.get(channel)
        if app_id is None:
            raise ConfigurationError(
                f"Unknown channel '{channel}' for {app} (known: {', '.join(sorted(definition.channels))})",
                identifier=channel,
            )
        manifest = definition.manifest
        return AppSettings(
            name=app,
            channel=channel,
            app_id=app_id,
            platform=definition.platform,
            activity=definition.activity,
            manifest_repo=manifest.repo if manifest else None,
            manifest_path=manifest.path if manifest else None,
            version_ref=manifest.version_ref if manifest else None,
        )


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"Cannot load config {path}: {exc}", identifier=str(path)) from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config root must be a mapping: {path}", identifier=str(path))
    return data


def merge_config(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    out = dict(base)
    for key, value in override.items():
        if key in _MERGED_SECTIONS and isinstance(value, dict):
            out[key] = {**(base.get(key) or {}), **value}
        else:
            out[key] = value
    return out


def load_config(path: Path | None = None) -> ToolConfig:
    raw = _read_yaml(DEFAULT_CONFIG_PATH)
    if path is not None:
        if not path.exists():
            raise ConfigurationError(f"Config file not found: {path}", identifier=str(path))
        raw = merge_config(raw, _read_yaml(path))
    timeout = os.getenv("NIMBUS_CLI_TIMEOUT")
    if timeout:
        try:
            raw["timeout_seconds"] = float(timeout)
        except ValueError as exc:
            raise ConfigurationError(
                f"NIMBUS_CLI_TIMEOUT must be a number of seconds, got '{timeout}'",
                identifier="NIMBUS_CLI_TIMEOUT",
            ) from exc
    try:
        return ToolConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigurationError(
            f"Invalid configuration: {exc}", identifier=str(path or DEFAULT_CONFIG_PATH)
        ) from exc


class AppContext:
    _instance: AppContext | None = None

    def __init__(self, config: ToolConfig):
        self.config = config

    @classmethod
    def init(cls, config: ToolConfig) -> AppContext:
        if cls._instance is None:
            cls._instance = cls(config)
        return cls._instance

    @classmethod
    def get(cls) -> AppContext:
        if cls._instance is None:
            raise RuntimeError("AppContext not initialized")
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        cls._instance = None


def bootstrap(force: bool = False) -> AppContext:
    if not force:
        try:
            return AppContext.get()
        except RuntimeError:
            pass
    else:
        AppContext.reset()
    load_dotenv(override=False)
    setup_logging()
    cfg = os.getenv("NIMBUS_CLI_CONFIG")
    config = load_config(Path(cfg) if cfg else None)
    return AppContext.init(config)


__all__ = [
    "AppContext",
    "AppDefinition",
    "ManifestLocation",
    "ToolConfig",
    "bootstrap",
    "load_config",
    "merge_config",
]
