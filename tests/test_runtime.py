"""Config loading, overrides and app lookup."""

from __future__ import annotations

from pathlib import Path

import pytest

from nimbus_cli.domain.errors import ConfigurationError
from nimbus_cli.runtime import AppContext, bootstrap, load_config, merge_config


def test_default_config() -> None:
    config = load_config()
    assert config.servers["release"] == "https://firefox.settings.services.mozilla.com"
    assert config.collections == {"default": "nimbus-mobile-experiments", "preview": "nimbus-preview"}
    assert {"fenix", "firefox_ios"} <= set(config.apps)
    assert config.server_tags >= {"release", "stage"}


def test_app_settings_from_channel() -> None:
    settings = load_config().app_settings("fenix", "developer")
    assert settings.platform == "android"
    assert settings.app_id == "org.mozilla.fenix.debug"
    assert settings.manifest_repo == "mozilla-mobile/firefox-android"
    assert settings.version_ref == "releases_v{{ major }}"


@pytest.mark.parametrize(("app", "channel"), [("nope", "developer"), ("fenix", "nope")])
def test_unknown_app_or_channel(app: str, channel: str) -> None:
    with pytest.raises(ConfigurationError) as exc:
        load_config().app_settings(app, channel)
    assert exc.value.identifier == "nope"


def test_merge_config_merges_known_sections() -> None:
    base = {"servers": {"release": "r", "stage": "s"}, "timeout_seconds": 30}
    merged = merge_config(base, {"servers": {"local": "http://localhost:8888"}, "timeout_seconds": 5})
    assert merged == {"servers": {"release": "r", "stage": "s", "local": "http://localhost:8888"}, "timeout_seconds": 5}


def test_override_file_adds_server(tmp_path: Path) -> None:
    path = tmp_path / "nimbus.yaml"
    path.write_text("servers:\n  local: http://localhost:8888\n", encoding="utf-8")
    config = load_config(path)
    assert "local" in config.server_tags
    assert "release" in config.server_tags


def test_missing_override_file(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError):
        load_config(tmp_path / "missing.yaml")


def test_timeout_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("NIMBUS_CLI_TIMEOUT", "2.5")
    assert load_config().timeout_seconds == 2.5


def test_bootstrap_reads_config_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    path = tmp_path / "nimbus.yaml"
    path.write_text("timeout_seconds: 7\n", encoding="utf-8")
    monkeypatch.setenv("NIMBUS_CLI_CONFIG", str(path))
    monkeypatch.chdir(tmp_path)
    try:
        ctx = bootstrap(force=True)
        assert ctx.config.timeout_seconds == 7
        assert bootstrap() is ctx
    finally:
        AppContext.reset()


def test_bad_timeout_is_configuration_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("NIMBUS_CLI_TIMEOUT", "soon")
    with pytest.raises(ConfigurationError) as exc:
        load_config()
    assert exc.value.identifier == "NIMBUS_CLI_TIMEOUT"


@pytest.mark.parametrize("body", ["timeout_seconds: forever\n", "servers: [\n"])
def test_invalid_override_is_configuration_error(tmp_path: Path, body: str) -> None:
    path = tmp_path / "nimbus.yaml"
    path.write_text(body, encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_config(path)
