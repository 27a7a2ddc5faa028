"""Default feature-config validator against a feature manifest.

Checks that the feature exists, that only declared variables are set, and the
value types for the FML type grammar (``Option<T>``, ``List<T>``,
``Map<K, V>``, enums, objects). Unknown type names are accepted.
"""
from __future__ import annotations

from typing import Any, Protocol

from nimbus_cli.domain.models import FeatureValidation
from nimbus_cli.infrastructure.manifest_loader import FeatureManifest

_STRING_TYPES = {"String", "Text", "Image"}


class ManifestValidator(Protocol):
    def validate(
        self, manifest: FeatureManifest, *, label: str, feature_id: str, value: Any
    ) -> FeatureValidation:  # pragma: no cover - interface
        ...


def _split_generic(type_name: str) -> tuple[str, list[str]]:
    """``Map<String, List<Int>>`` -> (``Map``, [``String``, ``List<Int>``])."""
    if "<" not in type_name or not type_name.endswith(">"):
        return type_name, []
    head, inner = type_name.split("<", 1)
    inner = inner[:-1]
    args: list[str] = []
    depth = 0
    current = ""
    for ch in inner:
        if ch == "," and depth == 0:
            args.append(current.strip())
            current = ""
            continue
        if ch == "<":
            depth += 1
        elif ch == ">":
            depth -= 1
        current += ch
    if current.strip():
        args.append(current.strip())
    return head.strip(), args


class FmlValidator:
    def validate(
        self, manifest: FeatureManifest, *, label: str, feature_id: str, value: Any
    ) -> FeatureValidation:
        errors: list[str] = []
        feature = manifest.features.get(feature_id)
        if feature is None:
            errors.append(f"feature '{feature_id}' is not in the manifest")
        elif not isinstance(value, dict):
            errors.append("feature config must be a JSON object")
        else:
            variables = feature.get("variables") or {}
            for key, val in value.items():
                decl = variables.get(key)
                if decl is None:
                    errors.append(f"unknown variable '{key}'")
                    continue
                self._check(manifest, decl.get("type", ""), val, key, errors)
        return FeatureValidation(label=label, feature_id=feature_id, errors=errors)

    def _check(
        self, manifest: FeatureManifest, type_name: str, val: Any, where: str, errors: list[str]
    ) -> None:
        head, args = _split_generic(str(type_name))
        if head == "Option":
            if val is not None and args:
                self._check(manifest, args[0], val, where, errors)
            return
        if val is None:
            errors.append(f"{where}: null is only allowed for Option types")
            return
        if head == "Boolean":
            ok = isinstance(val, bool)
        elif head == "Int":
            ok = isinstance(val, int) and not isinstance(val, bool)
        elif head in _STRING_TYPES:
            ok = isinstance(val, str)
        elif head == "List":
            ok = isinstance(val, list)
            if ok and args:
                for i, item in enumerate(val):
                    self._check(manifest, args[0], item, f"{where}[{i}]", errors)
        elif head == "Map":
            ok = isinstance(val, dict)
            if ok and len(args) == 2:
                key_head, _ = _split_generic(args[0])
                enum = manifest.enums.get(key_head)
                for k, item in val.items():
                    if enum is not None and k not in (enum.get("variants") or {}):
                        errors.append(f"{where}: '{k}' is not a variant of {key_head}")
                    self._check(manifest, args[1], item, f"{where}.{k}", errors)
        elif head in manifest.enums:
            variants = manifest.enums[head].get("variants") or {}
            ok = isinstance(val, str) and val in variants
        elif head in manifest.objects:
            ok = isinstance(val, dict)
            if ok:
                fields = manifest.objects[head].get("fields") or {}
                for k, item in val.items():
                    if k not in fields:
                        errors.append(f"{where}: unknown field '{k}' for {head}")
                        continue
                    self._check(manifest, fields[k].get("type", ""), item, f"{where}.{k}", errors)
        else:
            return
        if not ok:
            errors.append(f"{where}: expected {type_name}, got {type(val).__name__}")


__all__ = ["FmlValidator", "ManifestValidator"]
