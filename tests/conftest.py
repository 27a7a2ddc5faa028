"""
Shared pytest fixtures for nimbus-cli tests.

Every external collaborator (recipe server, manifest loader, device transport)
is replaced by an in-memory fake that appends to one shared ``calls`` list, so
tests can assert on the exact cross-collaborator order of operations.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import orjson
import pytest

from nimbus_cli.domain.errors import PayloadError, TransportError
from nimbus_cli.domain.models import AppSettings, ManifestSource, ServerAddress, SlugAddress
from nimbus_cli.infrastructure.manifest_loader import FeatureManifest
from nimbus_cli.services.address import AddressParser
from nimbus_cli.services.commands import CommandBuilder
from nimbus_cli.services.orchestrator import SessionOrchestrator
from nimbus_cli.services.validator import FmlValidator


# =============================================================================
# Test Data
# =============================================================================

MANIFEST_DATA: dict[str, Any] = {
    "features": {
        "homescreen": {
            "variables": {
                "sections-enabled": {"type": "Map<HomeScreenSection, Boolean>"},
                "title": {"type": "Option<String>"},
            }
        },
        "onboarding": {
            "variables": {
                "cards": {"type": "List<OnboardingCard>"},
                "enabled": {"type": "Boolean"},
                "max-cards": {"type": "Int"},
            }
        },
    },
    "enums": {
        "HomeScreenSection": {"variants": {"top-sites": {}, "jump-back-in": {}, "pocket": {}}},
    },
    "objects": {
        "OnboardingCard": {"fields": {"title": {"type": "Text"}, "order": {"type": "Int"}}},
    },
}


def make_recipe(
    slug: str,
    *,
    branches: tuple[str, ...] = ("control", "treatment"),
    feature_id: str = "homescreen",
    value: dict[str, Any] | None = None,
    app_name: str = "fenix",
    is_rollout: bool = False,
) -> dict[str, Any]:
    return {
        "slug": slug,
        "id": slug,
        "appName": app_name,
        "isRollout": is_rollout,
        "isEnrollmentPaused": True,
        "targeting": "app_version|versionCompare('200.!') >= 0",
        "bucketConfig": {
            "randomizationUnit": "nimbus_id",
            "namespace": f"{slug}-ns",
            "start": 4000,
            "count": 500,
            "total": 10000,
        },
        "featureIds": [feature_id],
        "branches": [
            {
                "slug": b,
                "ratio": 1,
                "features": [{"featureId": feature_id, "value": value if value is not None else {}}],
            }
            for b in branches
        ],
    }


# =============================================================================
# Fakes
# =============================================================================


class FakeRemote:
    def __init__(self, calls: list[tuple], recipes: dict[str, dict[str, Any]] | None = None):
        self.calls = calls
        self.recipes = recipes or {}
        self.fail_with: Exception | None = None

    def list_recipes(self, address: ServerAddress) -> list[dict[str, Any]]:
        self.calls.append(("list_recipes", str(address)))
        if self.fail_with:
            raise self.fail_with
        return list(self.recipes.values())

    def get_recipe(self, address: SlugAddress) -> dict[str, Any]:
        self.calls.append(("get_recipe", str(address)))
        if self.fail_with:
            raise self.fail_with
        if address.slug not in self.recipes:
            raise PayloadError(f"No recipe '{address}'", identifier=str(address))
        return self.recipes[address.slug]


class FakeManifests:
    def __init__(self, calls: list[tuple], data: dict[str, Any] | None = None):
        self.calls = calls
        self.data = data if data is not None else MANIFEST_DATA

    def load(self, source: ManifestSource) -> FeatureManifest:
        self.calls.append(("load_manifest", source.kind))
        manifest = FeatureManifest(source=source.label)
        manifest.merge(self.data)
        return manifest


class FakeTransport:
    def __init__(self, calls: list[tuple]):
        self.calls = calls
        self.fail_on: str | None = None
        self.payloads: list[dict[str, Any]] = []
        self.device_calls: list[tuple] = []

    def _record(self, name: str, *args: Any) -> None:
        self.calls.append((name, *args))
        self.device_calls.append((name, *args))
        if self.fail_on == name:
            raise TransportError(name, "device went away")

    def reset_app(self) -> None:
        self._record("reset_app")

    def terminate_app(self) -> None:
        self._record("terminate_app")

    def clear_enrollments(self) -> None:
        self._record("clear_enrollments")

    def apply_experiments(self, payload: dict[str, Any]) -> None:
        self.payloads.append(payload)
        self._record("apply_experiments", tuple(r["slug"] for r in payload["data"]))

    def unenroll(self) -> None:
        self._record("unenroll")

    def log_state(self) -> None:
        self._record("log_state")

    def launch_app(self) -> None:
        self._record("launch_app")

    def send_deeplink(self, url: str) -> None:
        self._record("send_deeplink", url)

    def capture_logs(self, path: Path) -> None:
        self._record("capture_logs", str(path))

    def tail_logs(self) -> None:
        self._record("tail_logs")


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def app_settings() -> AppSettings:
    return AppSettings(
        name="fenix",
        channel="developer",
        app_id="org.mozilla.fenix.debug",
        platform="android",
        activity="org.mozilla.fenix.HomeActivity",
        manifest_repo="mozilla-mobile/firefox-android",
        manifest_path="fenix/app/nimbus.fml.yaml",
        version_ref="releases_v{{ major }}",
    )


@pytest.fixture
def builder(app_settings: AppSettings) -> CommandBuilder:
    return CommandBuilder(app_settings, AddressParser())


@pytest.fixture
def calls() -> list[tuple]:
    return []


@pytest.fixture
def remote(calls: list[tuple]) -> FakeRemote:
    return FakeRemote(
        calls,
        {
            "my-experiment": make_recipe("my-experiment", value={"title": "Hello"}),
            "my-rollout": make_recipe(
                "my-rollout", branches=("rollout",), feature_id="onboarding",
                value={"enabled": True}, is_rollout=True,
            ),
            "ios-only": make_recipe("ios-only", app_name="firefox_ios"),
        },
    )


@pytest.fixture
def manifests(calls: list[tuple]) -> FakeManifests:
    return FakeManifests(calls)


@pytest.fixture
def transport(calls: list[tuple]) -> FakeTransport:
    return FakeTransport(calls)


@pytest.fixture
def orchestrator(
    app_settings: AppSettings,
    remote: FakeRemote,
    manifests: FakeManifests,
    transport: FakeTransport,
) -> SessionOrchestrator:
    return SessionOrchestrator(
        app=app_settings,
        remote=remote,
        manifests=manifests,
        validator=FmlValidator(),
        transport=transport,
    )


@pytest.fixture
def write_json(tmp_path: Path):
    def _write(name: str, data: Any) -> Path:
        p = tmp_path / name
        p.write_bytes(orjson.dumps(data))
        return p

    return _write
