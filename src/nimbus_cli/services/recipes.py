"""Pure transforms over Nimbus recipe dicts (no I/O)."""
from __future__ import annotations

import copy
from collections.abc import Iterable
from typing import Any, NamedTuple

from nimbus_cli.domain.errors import PayloadError
from nimbus_cli.domain.models import AppSettings, SlugAddress

FULL_BUCKET = 10_000
SCHEMA_VERSION = "1.12.0"


class ValidationTarget(NamedTuple):
    label: str
    feature_id: str
    value: Any


def find_recipe(recipes: Iterable[dict[str, Any]], address: SlugAddress, *, source: str) -> dict[str, Any]:
    for r in recipes:
        if r.get("slug") == address.slug or r.get("id") == address.slug:
            return r
    raise PayloadError(f"No recipe '{address.slug}' in {source}", identifier=str(address))


def branch_slugs(recipe: dict[str, Any]) -> list[str]:
    return [b.get("slug", "") for b in recipe.get("branches") or []]


def _branch_features(branch: dict[str, Any]) -> list[dict[str, Any]]:
    # pre-1.8 recipes carry a single "feature" object
    if "features" in branch:
        return list(branch.get("features") or [])
    if branch.get("feature"):
        return [branch["feature"]]
    return []


def _apply_overrides(
    recipe: dict[str, Any], branch: str, *, preserve_targeting: bool, preserve_bucketing: bool
) -> dict[str, Any]:
    out = copy.deepcopy(recipe)
    if not preserve_targeting:
        out["targeting"] = "true"
        out["isEnrollmentPaused"] = False
    if not preserve_bucketing:
        bucket = dict(out.get("bucketConfig") or {})
        total = int(bucket.get("total") or FULL_BUCKET)
        bucket.update({"start": 0, "count": total, "total": total})
        out["bucketConfig"] = bucket
        for b in out.get("branches") or []:
            b["ratio"] = 1 if b.get("slug") == branch else 0
    return out


def prepare_experiment(
    recipe: dict[str, Any],
    branch: str,
    *,
    preserve_targeting: bool = False,
    preserve_bucketing: bool = False,
) -> dict[str, Any]:
    """Copy of ``recipe`` that enrolls any client into ``branch``."""
    slugs = branch_slugs(recipe)
    if branch not in slugs:
        raise PayloadError(
            f"Branch '{branch}' not in '{recipe.get('slug')}' (branches: {', '.join(slugs) or 'none'})",
            identifier=branch,
        )
    return _apply_overrides(
        recipe, branch, preserve_targeting=preserve_targeting, preserve_bucketing=preserve_bucketing
    )


def prepare_rollout(
    recipe: dict[str, Any],
    *,
    preserve_targeting: bool = False,
    preserve_bucketing: bool = False,
) -> dict[str, Any]:
    slug = recipe.get("slug", "?")
    if not recipe.get("isRollout"):
        raise PayloadError(f"'{slug}' is not a rollout", identifier=slug)
    slugs = branch_slugs(recipe)
    if len(slugs) != 1:
        raise PayloadError(f"Rollout '{slug}' must have exactly one branch", identifier=slug)
    return _apply_overrides(
        recipe, slugs[0], preserve_targeting=preserve_targeting, preserve_bucketing=preserve_bucketing
    )


def build_feature_test_recipe(
    app: AppSettings, feature_id: str, branches: list[tuple[str, Any]]
) -> dict[str, Any]:
    """Synthetic experiment with one branch per feature config; first branch enrolled."""
    slug = f"{feature_id}-test"
    recipe = {
        "schemaVersion": SCHEMA_VERSION,
        "slug": slug,
        "id": slug,
        "userFacingName": f"Testing the {feature_id} feature",
        "userFacingDescription": f"Testing the {feature_id} feature",
        "appName": app.name,
        "appId": app.app_id,
        "channel": app.channel,
        "isEnrollmentPaused": False,
        "isRollout": False,
        "probeSets": [],
        "outcomes": [],
        "featureIds": [feature_id],
        "bucketConfig": {
            "randomizationUnit": "nimbus_id",
            "namespace": f"{app.name}-{feature_id}-test",
            "start": 0,
            "count": FULL_BUCKET,
            "total": FULL_BUCKET,
        },
        "branches": [
            {"slug": name, "ratio": 1, "features": [{"featureId": feature_id, "value": value}]}
            for name, value in branches
        ],
        "targeting": "true",
        "startDate": None,
        "endDate": None,
        "proposedDuration": 7,
        "proposedEnrollment": 7,
        "referenceBranch": branches[0][0] if branches else None,
    }
    return prepare_experiment(recipe, branches[0][0])


def validation_targets(recipe: dict[str, Any], branches: Iterable[str] | None = None) -> list[ValidationTarget]:
    """Feature configs of the given branches (all branches when ``None``)."""
    wanted = set(branches) if branches is not None else None
    out: list[ValidationTarget] = []
    slug = recipe.get("slug", "?")
    for b in recipe.get("branches") or []:
        if wanted is not None and b.get("slug") not in wanted:
            continue
        for f in _branch_features(b):
            out.append(ValidationTarget(f"{slug}/{b.get('slug')}", f.get("featureId", ""), f.get("value")))
    return out


def summarize(recipe: dict[str, Any]) -> dict[str, Any]:
    """Row for the ``list`` table."""
    features = recipe.get("featureIds") or sorted(
        {f.get("featureId", "") for b in recipe.get("branches") or [] for f in _branch_features(b)}
    )
    return {
        "slug": recipe.get("slug", ""),
        "type": "rollout" if recipe.get("isRollout") else "experiment",
        "features": list(features),
        "branches": branch_slugs(recipe),
        "paused": bool(recipe.get("isEnrollmentPaused")),
    }


__all__ = [
    "ValidationTarget",
    "branch_slugs",
    "build_feature_test_recipe",
    "find_recipe",
    "prepare_experiment",
    "prepare_rollout",
    "summarize",
    "validation_targets",
]
