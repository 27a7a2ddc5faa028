"""Load a feature manifest (FML YAML/JSON) from a file or a fetched ref.

``include`` entries are followed relative to the including document and their
features, enums and objects merged into one ``FeatureManifest``.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any
from urllib.parse import urljoin

import requests
import yaml
from pydantic import BaseModel, Field

from nimbus_cli.domain.errors import ManifestResolutionError, TransportError
from nimbus_cli.domain.models import ManifestSource

logger = logging.getLogger(__name__)


class FeatureManifest(BaseModel):
    """The parts of a feature manifest the validator needs."""

    source: str
    features: dict[str, dict[str, Any]] = Field(default_factory=dict)
    enums: dict[str, dict[str, Any]] = Field(default_factory=dict)
    objects: dict[str, dict[str, Any]] = Field(default_factory=dict)

    def merge(self, other: dict[str, Any]) -> None:
        for section in ("features", "enums", "objects"):
            getattr(self, section).update(other.get(section) or {})


def _parse(text: str, origin: str) -> dict[str, Any]:
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise ManifestResolutionError(f"Manifest {origin} is not valid YAML: {exc}", identifier=origin) from exc
    if not isinstance(data, dict):
        raise ManifestResolutionError(f"Manifest root must be a mapping: {origin}", identifier=origin)
    return data


class ManifestLoader:
    def __init__(self, *, timeout: float = 30.0, session: requests.Session | None = None):
        self.timeout = timeout
        self.session = session or requests.Session()

    def load(self, source: ManifestSource) -> FeatureManifest:
        manifest = FeatureManifest(source=source.label)
        seen: set[str] = set()
        if source.kind == "file" and source.path is not None:
            self._load_file(source.path, manifest, seen)
        elif source.kind == "remote" and source.url is not None:
            self._load_url(source.url, manifest, seen, source=source, root=True)
        else:
            raise ManifestResolutionError(
                f"Manifest source has no location: {source.label}", identifier=source.kind
            )
        logger.info("Loaded manifest %s (%d features)", source.label, len(manifest.features))
        return manifest

    def _load_file(self, path: Path, manifest: FeatureManifest, seen: set[str]) -> None:
        key = str(path.resolve())
        if key in seen:
            return
        seen.add(key)
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ManifestResolutionError(f"Cannot read manifest {path}: {exc}", identifier=str(path)) from exc
        data = _parse(text, str(path))
        manifest.merge(data)
        for inc in data.get("include") or []:
            self._load_file(path.parent / inc, manifest, seen)

    def _load_url(
        self,
        url: str,
        manifest: FeatureManifest,
        seen: set[str],
        *,
        source: ManifestSource,
        root: bool = False,
    ) -> None:
        if url in seen:
            return
        seen.add(url)
        logger.debug("GET %s", url)
        try:
            resp = self.session.get(url, timeout=self.timeout)
        except requests.Timeout as exc:
            raise TransportError("load-manifest", f"timed out after {self.timeout}s ({url})") from exc
        except requests.RequestException as exc:
            raise TransportError("load-manifest", f"{exc} ({url})") from exc
        if resp.status_code == 404:
            if not root:
                raise ManifestResolutionError(
                    f"Included manifest not found at ref '{source.ref}': {url}", identifier=url
                )
            hint = (
                " (derived from --version; this app's branch naming may differ, try --ref)"
                if source.from_version
                else ""
            )
            raise ManifestResolutionError(
                f"Manifest not found at ref '{source.ref}': {url}{hint}",
                identifier=source.ref,
                expected=source.from_version,
            )
        if not resp.ok:
            raise TransportError("load-manifest", f"HTTP {resp.status_code} from {url}")
        data = _parse(resp.text, url)
        manifest.merge(data)
        for inc in data.get("include") or []:
            self._load_url(urljoin(url, inc), manifest, seen, source=source)


__all__ = ["FeatureManifest", "ManifestLoader"]
