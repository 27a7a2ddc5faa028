"""Domain models (Pydantic) for addresses, manifest sources and operator commands.

Each command variant owns only the fields relevant to it; the ``Command`` union
is discriminated on ``kind`` so illegal field combinations cannot be built.
"""
from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field

from nimbus_cli.domain.errors import ValidationError

CollectionTag = Literal["preview"]
Platform = Literal["android", "ios"]

DEFAULT_REF = "main"


# -------------------- Addresses -------------------- #


class ServerAddress(BaseModel):
    """Server plus optional collection; ``None`` server means the production default."""

    model_config = {"frozen": True}

    server: str | None = None
    collection: CollectionTag | None = None

    def segments(self) -> list[str]:
        return [s for s in (self.server, self.collection) if s]

    def __str__(self) -> str:
        return "/".join(self.segments())


class SlugAddress(ServerAddress):
    """Experiment or rollout identifier: ``[server/][preview/]slug``."""

    slug: str = Field(min_length=1)

    @property
    def server_address(self) -> ServerAddress:
        return ServerAddress(server=self.server, collection=self.collection)

    def __str__(self) -> str:
        return "/".join([*self.segments(), self.slug])


# -------------------- Manifests -------------------- #


class ManifestReference(BaseModel):
    """Operator's manifest flags before resolution."""

    explicit_file: Path | None = None
    ref_spec: str | None = None
    app_version: str | None = None


class ManifestSource(BaseModel):
    """The single effective manifest source a reference resolves to."""

    model_config = {"frozen": True}

    kind: Literal["file", "remote"]
    path: Path | None = None
    url: str | None = None
    ref: str | None = None
    from_version: bool = False

    @property
    def label(self) -> str:
        if self.kind == "file":
            return str(self.path)
        return f"{self.url} (ref {self.ref})"


# -------------------- Requests -------------------- #


class OpenOptions(BaseModel):
    deeplink: str | None = None
    reset_app: bool = False
    no_clobber: bool = False


class EnrollmentRequest(BaseModel):
    """Experiment plus rollouts to enroll; ``file`` replaces the server as payload source."""

    experiment: SlugAddress
    branch: str
    rollouts: list[SlugAddress] = Field(default_factory=list)
    preserve_targeting: bool = False
    preserve_bucketing: bool = False
    preserve_nimbus_db: bool = False
    file: Path | None = None
    no_validate: bool = False


class FeatureTestRequest(BaseModel):
    feature_id: str
    branch_files: list[tuple[str, Path]]

    @property
    def branch_names(self) -> list[str]:
        return [name for name, _ in self.branch_files]

    @classmethod
    def from_files(cls, feature_id: str, files: list[Path]) -> FeatureTestRequest:
        """Derive one branch per file from its base name, keeping file order."""
        if not files:
            raise ValidationError(
                f"At least one feature config file is required for '{feature_id}'",
                identifier=feature_id,
            )
        pairs: list[tuple[str, Path]] = []
        seen: dict[str, Path] = {}
        for f in files:
            name = Path(f).stem
            if name in seen:
                raise ValidationError(
                    f"Files {seen[name]} and {f} both map to branch '{name}'",
                    identifier=str(f),
                )
            seen[name] = Path(f)
            pairs.append((name, Path(f)))
        return cls(feature_id=feature_id, branch_files=pairs)


class FeatureValidation(BaseModel):
    """Outcome of checking one feature config against the manifest."""

    label: str  # branch slug or file the config came from
    feature_id: str
    errors: list[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


# -------------------- Commands -------------------- #


class ApplyFileCommand(BaseModel):
    kind: Literal["apply-file"] = "apply-file"
    file: Path
    preserve_nimbus_db: bool = False


class CaptureLogsCommand(BaseModel):
    kind: Literal["capture-logs"] = "capture-logs"
    file: Path


class EnrollCommand(BaseModel):
    kind: Literal["enroll"] = "enroll"
    request: EnrollmentRequest
    open: OpenOptions = Field(default_factory=OpenOptions)
    manifest: ManifestSource | None = None  # None when validation is skipped


class FetchCommand(BaseModel):
    kind: Literal["fetch"] = "fetch"
    file: Path
    server: ServerAddress | None = None
    recipes: list[SlugAddress] = Field(default_factory=list)


class ListCommand(BaseModel):
    kind: Literal["list"] = "list"
    server: ServerAddress = Field(default_factory=ServerAddress)
    file: Path | None = None


class LogStateCommand(BaseModel):
    kind: Literal["log-state"] = "log-state"


class OpenCommand(BaseModel):
    kind: Literal["open"] = "open"
    open: OpenOptions = Field(default_factory=OpenOptions)


class ResetAppCommand(BaseModel):
    kind: Literal["reset-app"] = "reset-app"


class TailLogsCommand(BaseModel):
    kind: Literal["tail-logs"] = "tail-logs"


class TestFeatureCommand(BaseModel):
    __test__ = False  # keep pytest from collecting this model

    kind: Literal["test-feature"] = "test-feature"
    request: FeatureTestRequest
    open: OpenOptions = Field(default_factory=OpenOptions)
    no_validate: bool = False
    manifest: ManifestSource | None = None


class UnenrollCommand(BaseModel):
    kind: Literal["unenroll"] = "unenroll"


class ValidateCommand(BaseModel):
    kind: Literal["validate"] = "validate"
    experiment: SlugAddress
    file: Path | None = None
    manifest: ManifestSource


Command = Annotated[
    Union[
        ApplyFileCommand,
        CaptureLogsCommand,
        EnrollCommand,
        FetchCommand,
        ListCommand,
        LogStateCommand,
        OpenCommand,
        ResetAppCommand,
        TailLogsCommand,
        TestFeatureCommand,
        UnenrollCommand,
        ValidateCommand,
    ],
    Field(discriminator="kind"),
]


class AppSettings(BaseModel):
    """Per-invocation view of the configured app for ``--app``/``--channel``."""

    name: str
    channel: str
    app_id: str
    platform: Platform
    activity: str | None = None
    manifest_repo: str | None = None
    manifest_path: str | None = None
    version_ref: str | None = None

    def recipe_matches(self, recipe: dict[str, Any]) -> bool:
        return recipe.get("appName") == self.name


__all__ = [
    "DEFAULT_REF",
    "AppSettings",
    "ApplyFileCommand",
    "CaptureLogsCommand",
    "CollectionTag",
    "Command",
    "EnrollCommand",
    "EnrollmentRequest",
    "FeatureTestRequest",
    "FeatureValidation",
    "FetchCommand",
    "ListCommand",
    "LogStateCommand",
    "ManifestReference",
    "ManifestSource",
    "OpenCommand",
    "OpenOptions",
    "Platform",
    "ResetAppCommand",
    "ServerAddress",
    "SlugAddress",
    "TailLogsCommand",
    "TestFeatureCommand",
    "UnenrollCommand",
    "ValidateCommand",
]
