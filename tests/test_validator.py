"""Feature config validation against the FML type grammar."""

from __future__ import annotations

from typing import Any

import pytest

from nimbus_cli.infrastructure.manifest_loader import FeatureManifest
from nimbus_cli.services.validator import FmlValidator, _split_generic

from .conftest import MANIFEST_DATA


@pytest.fixture
def manifest() -> FeatureManifest:
    m = FeatureManifest(source="test")
    m.merge(MANIFEST_DATA)
    return m


def _errors(manifest: FeatureManifest, feature_id: str, value: Any) -> list[str]:
    return FmlValidator().validate(manifest, label="t", feature_id=feature_id, value=value).errors


@pytest.mark.parametrize(
    ("type_name", "expected"),
    [
        ("Int", ("Int", [])),
        ("Option<String>", ("Option", ["String"])),
        ("Map<String, List<Int>>", ("Map", ["String", "List<Int>"])),
        ("Map<Map<A, B>, C>", ("Map", ["Map<A, B>", "C"])),
    ],
)
def test_split_generic(type_name: str, expected: tuple[str, list[str]]) -> None:
    assert _split_generic(type_name) == expected


@pytest.mark.parametrize(
    ("feature_id", "value"),
    [
        ("homescreen", {}),
        ("homescreen", {"title": None}),
        ("homescreen", {"title": "Hi", "sections-enabled": {"pocket": False, "top-sites": True}}),
        ("onboarding", {"enabled": True, "max-cards": 2}),
        ("onboarding", {"cards": [{"title": "Welcome", "order": 1}, {"order": 2}]}),
    ],
)
def test_valid_configs(manifest: FeatureManifest, feature_id: str, value: dict) -> None:
    assert _errors(manifest, feature_id, value) == []


def test_unknown_feature(manifest: FeatureManifest) -> None:
    (error,) = _errors(manifest, "nope", {})
    assert "not in the manifest" in error


def test_non_object_config(manifest: FeatureManifest) -> None:
    assert _errors(manifest, "homescreen", ["a"]) == ["feature config must be a JSON object"]


def test_unknown_variable(manifest: FeatureManifest) -> None:
    assert _errors(manifest, "homescreen", {"colour": "red"}) == ["unknown variable 'colour'"]


@pytest.mark.parametrize(
    ("value", "fragment"),
    [
        ({"enabled": "yes"}, "enabled: expected Boolean"),
        ({"max-cards": True}, "max-cards: expected Int"),
        ({"max-cards": None}, "null is only allowed"),
        ({"cards": {"title": "x"}}, "cards: expected List<OnboardingCard>"),
        ({"cards": [{"order": "1"}]}, "cards[0].order: expected Int"),
        ({"cards": [{"colour": "red"}]}, "unknown field 'colour'"),
    ],
)
def test_type_errors(manifest: FeatureManifest, value: dict, fragment: str) -> None:
    errors = _errors(manifest, "onboarding", value)
    assert any(fragment in e for e in errors), errors


def test_map_enum_keys(manifest: FeatureManifest) -> None:
    errors = _errors(manifest, "homescreen", {"sections-enabled": {"bogus": True, "pocket": "no"}})
    assert any("'bogus' is not a variant of HomeScreenSection" in e for e in errors)
    assert any("sections-enabled.pocket: expected Boolean" in e for e in errors)


def test_unknown_types_are_accepted() -> None:
    m = FeatureManifest(source="test")
    m.merge({"features": {"f": {"variables": {"v": {"type": "SomeFutureType"}}}}})
    assert _errors(m, "f", {"v": 123}) == []


def test_result_carries_label(manifest: FeatureManifest) -> None:
    result = FmlValidator().validate(manifest, label="exp/control", feature_id="homescreen", value={})
    assert result.ok
    assert (result.label, result.feature_id) == ("exp/control", "homescreen")
