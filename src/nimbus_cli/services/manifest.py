"""Resolve manifest flags into exactly one effective manifest source.

Priority (first match wins, no fallback):
    1. ``--manifest FILE``: read the file, never touch the network.
    2. ``--version`` without ``--ref``: derive the ref from the app's template.
    3. ``--ref`` literally, defaulting to ``main``.
"""
from __future__ import annotations

import logging

from nimbus_cli.domain.errors import ManifestResolutionError
from nimbus_cli.domain.models import DEFAULT_REF, AppSettings, ManifestReference, ManifestSource
from nimbus_cli.infrastructure.templating import TemplateError, render_string, version_context

logger = logging.getLogger(__name__)

RAW_GITHUB = "https://raw.githubusercontent.com"


def manifest_url(repo: str, ref: str, path: str) -> str:
    return f"{RAW_GITHUB}/{repo}/{ref}/{path.lstrip('/')}"


def derive_ref(template: str, version: str) -> str:
    """Apply an app's release-branch template to a version string."""
    try:
        ref = render_string(template, version_context(version))
    except TemplateError as exc:
        raise ManifestResolutionError(
            f"Cannot derive a manifest ref from version '{version}': {exc}",
            identifier=version,
            expected=True,
        ) from exc
    if not ref:
        raise ManifestResolutionError(
            f"Version '{version}' produced an empty manifest ref",
            identifier=version,
            expected=True,
        )
    return ref


def resolve_manifest(reference: ManifestReference, app: AppSettings) -> ManifestSource:
    if reference.explicit_file is not None:
        if reference.app_version or reference.ref_spec:
            logger.debug("--manifest given; ignoring --version/--ref")
        return ManifestSource(kind="file", path=reference.explicit_file)

    if not app.manifest_repo or not app.manifest_path:
        raise ManifestResolutionError(
            f"App '{app.name}' has no manifest location configured; pass --manifest",
            identifier=app.name,
        )

    from_version = False
    if reference.app_version and reference.ref_spec is None:
        if not app.version_ref:
            raise ManifestResolutionError(
                f"App '{app.name}' has no version template; pass --ref instead of --version",
                identifier=app.name,
            )
        ref = derive_ref(app.version_ref, reference.app_version)
        from_version = True
        logger.info("Version %s maps to manifest ref %s", reference.app_version, ref)
    else:
        ref = reference.ref_spec or DEFAULT_REF
    return ManifestSource(
        kind="remote",
        url=manifest_url(app.manifest_repo, ref, app.manifest_path),
        ref=ref,
        from_version=from_version,
    )


__all__ = ["RAW_GITHUB", "derive_ref", "manifest_url", "resolve_manifest"]
