"""Session orchestration: turn a resolved command into an ordered step list and run it.

Responsibilities:
    * ``plan_steps`` maps each command variant to an explicit, ordered list of
      ``Step`` values. Ordering invariants live here and nowhere else:
      payload preparation and validation precede every device step; reset (or
      else terminate) precedes the enrollment-db clear, which precedes the
      primary action, which precedes any deeplink.
    * ``SessionOrchestrator.execute`` runs the steps strictly one after another
      against the external collaborators. The first failing step stops the
      sequence; completed steps are never rolled back.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Protocol

from nimbus_cli.domain.errors import ManifestResolutionError, NimbusCliError, PayloadError, ValidationError
from nimbus_cli.domain.models import (
    AppSettings,
    ApplyFileCommand,
    CaptureLogsCommand,
    Command,
    EnrollCommand,
    FeatureValidation,
    FetchCommand,
    ListCommand,
    LogStateCommand,
    ManifestSource,
    OpenCommand,
    OpenOptions,
    ResetAppCommand,
    ServerAddress,
    SlugAddress,
    TailLogsCommand,
    TestFeatureCommand,
    UnenrollCommand,
    ValidateCommand,
)
from nimbus_cli.infrastructure.device import DeviceTransport
from nimbus_cli.infrastructure.fs import load_recipes, read_json, write_recipes
from nimbus_cli.infrastructure.manifest_loader import FeatureManifest
from nimbus_cli.services import recipes as rx
from nimbus_cli.services.validator import ManifestValidator

logger = logging.getLogger(__name__)


class StepKind(str, Enum):
    FETCH_RECIPES = "fetch-recipes"
    READ_RECIPES = "read-recipes"
    READ_FEATURE_FILES = "read-feature-files"
    PREPARE_PAYLOAD = "prepare-payload"
    LOAD_MANIFEST = "load-manifest"
    VALIDATE_FEATURES = "validate-features"
    WRITE_FILE = "write-file"
    RESET_APP = "reset-app"
    TERMINATE_APP = "terminate-app"
    CLEAR_ENROLLMENTS = "clear-enrollments"
    APPLY_EXPERIMENTS = "apply-experiments"
    UNENROLL = "unenroll"
    LOG_STATE = "log-state"
    LAUNCH_APP = "launch-app"
    SEND_DEEPLINK = "send-deeplink"
    CAPTURE_LOGS = "capture-logs"
    TAIL_LOGS = "tail-logs"


@dataclass(frozen=True, slots=True)
class Step:
    kind: StepKind
    path: Path | None = None
    addresses: tuple[SlugAddress, ...] = ()
    server: ServerAddress | None = None
    manifest: ManifestSource | None = None
    deeplink: str | None = None
    only_app: bool = False  # drop recipes for other apps

    @property
    def label(self) -> str:
        detail = ""
        if self.addresses:
            detail = ", ".join(str(a) for a in self.addresses)
        elif self.path is not None:
            detail = str(self.path)
        elif self.manifest is not None:
            detail = self.manifest.label
        elif self.deeplink:
            detail = self.deeplink
        elif self.server is not None:
            detail = str(self.server) or "release"
        return f"{self.kind.value} ({detail})" if detail else self.kind.value

    def require_path(self) -> Path:
        if self.path is None:
            raise PayloadError(f"{self.kind.value} has no file to work on", identifier=self.kind.value)
        return self.path


# ----------------------------- Planning ----------------------------- #


def _launch_prefix(opts: OpenOptions, *, clear_db: bool) -> list[Step]:
    steps: list[Step] = []
    if opts.reset_app:
        # a reset app starts fresh, so terminating first is moot
        steps.append(Step(StepKind.RESET_APP))
    elif not opts.no_clobber:
        steps.append(Step(StepKind.TERMINATE_APP))
    if clear_db:
        steps.append(Step(StepKind.CLEAR_ENROLLMENTS))
    return steps


def _validation(manifest: ManifestSource | None) -> list[Step]:
    if manifest is None:
        return []
    return [Step(StepKind.LOAD_MANIFEST, manifest=manifest), Step(StepKind.VALIDATE_FEATURES)]


def _deeplink(opts: OpenOptions) -> list[Step]:
    return [Step(StepKind.SEND_DEEPLINK, deeplink=opts.deeplink)] if opts.deeplink else []


def plan_steps(command: Command) -> list[Step]:
    if isinstance(command, EnrollCommand):
        req = command.request
        addresses = (req.experiment, *req.rollouts)
        source = (
            Step(StepKind.READ_RECIPES, path=req.file, addresses=addresses)
            if req.file is not None
            else Step(StepKind.FETCH_RECIPES, addresses=addresses)
        )
        return [
            source,
            Step(StepKind.PREPARE_PAYLOAD),
            *_validation(command.manifest),
            *_launch_prefix(command.open, clear_db=not req.preserve_nimbus_db),
            Step(StepKind.APPLY_EXPERIMENTS),
            *_deeplink(command.open),
        ]
    if isinstance(command, TestFeatureCommand):
        return [
            Step(StepKind.READ_FEATURE_FILES),
            Step(StepKind.PREPARE_PAYLOAD),
            *_validation(command.manifest),
            *_launch_prefix(command.open, clear_db=True),
            Step(StepKind.APPLY_EXPERIMENTS),
            *_deeplink(command.open),
        ]
    if isinstance(command, ApplyFileCommand):
        return [
            Step(StepKind.READ_RECIPES, path=command.file),
            Step(StepKind.PREPARE_PAYLOAD),
            *_launch_prefix(OpenOptions(), clear_db=not command.preserve_nimbus_db),
            Step(StepKind.APPLY_EXPERIMENTS),
        ]
    if isinstance(command, ValidateCommand):
        source = (
            Step(StepKind.READ_RECIPES, path=command.file, addresses=(command.experiment,))
            if command.file is not None
            else Step(StepKind.FETCH_RECIPES, addresses=(command.experiment,))
        )
        return [source, *_validation(command.manifest)]
    if isinstance(command, FetchCommand):
        source = (
            Step(StepKind.FETCH_RECIPES, addresses=tuple(command.recipes))
            if command.recipes
            else Step(StepKind.FETCH_RECIPES, server=command.server or ServerAddress(), only_app=True)
        )
        return [source, Step(StepKind.WRITE_FILE, path=command.file)]
    if isinstance(command, ListCommand):
        if command.file is not None:
            return [Step(StepKind.READ_RECIPES, path=command.file, only_app=True)]
        return [Step(StepKind.FETCH_RECIPES, server=command.server, only_app=True)]
    if isinstance(command, OpenCommand):
        opts = command.open
        final = _deeplink(opts) or [Step(StepKind.LAUNCH_APP)]
        return [*_launch_prefix(opts, clear_db=False), *final]
    if isinstance(command, UnenrollCommand):
        return [Step(StepKind.TERMINATE_APP), Step(StepKind.UNENROLL)]
    if isinstance(command, LogStateCommand):
        return [Step(StepKind.TERMINATE_APP), Step(StepKind.LOG_STATE)]
    if isinstance(command, ResetAppCommand):
        return [Step(StepKind.RESET_APP)]
    if isinstance(command, CaptureLogsCommand):
        return [Step(StepKind.CAPTURE_LOGS, path=command.file)]
    if isinstance(command, TailLogsCommand):
        return [Step(StepKind.TAIL_LOGS)]
    raise TypeError(f"Unsupported command: {type(command).__name__}")  # pragma: no cover


# ----------------------------- Execution ----------------------------- #


class RecipeSource(Protocol):
    def list_recipes(self, address: ServerAddress) -> list[dict[str, Any]]: ...
    def get_recipe(self, address: SlugAddress) -> dict[str, Any]: ...


class ManifestSourceLoader(Protocol):
    def load(self, source: ManifestSource) -> FeatureManifest: ...


@dataclass(slots=True)
class CommandResult:
    command: Any
    plan: list[Step]
    completed: list[Step] = field(default_factory=list)
    failed_step: Step | None = None
    error: NimbusCliError | None = None
    recipes: list[dict[str, Any]] = field(default_factory=list)
    validations: list[FeatureValidation] = field(default_factory=list)
    written: Path | None = None

    @property
    def succeeded(self) -> bool:
        return self.failed_step is None


@dataclass(slots=True)
class _Session:
    command: Any
    recipes: list[dict[str, Any]] = field(default_factory=list)
    feature_configs: list[tuple[str, Path, Any]] = field(default_factory=list)
    payload: dict[str, Any] | None = None
    targets: list[rx.ValidationTarget] = field(default_factory=list)
    manifest: FeatureManifest | None = None
    validations: list[FeatureValidation] = field(default_factory=list)
    written: Path | None = None


class SessionOrchestrator:
    """Sequential executor of step plans against the external collaborators."""

    def __init__(
        self,
        *,
        app: AppSettings,
        remote: RecipeSource,
        manifests: ManifestSourceLoader,
        validator: ManifestValidator,
        transport: DeviceTransport,
    ):
        self.app = app
        self.remote = remote
        self.manifests = manifests
        self.validator = validator
        self.transport = transport
        self._handlers: dict[StepKind, Callable[[Step, _Session], None]] = {
            StepKind.FETCH_RECIPES: self._fetch_recipes,
            StepKind.READ_RECIPES: self._read_recipes,
            StepKind.READ_FEATURE_FILES: self._read_feature_files,
            StepKind.PREPARE_PAYLOAD: self._prepare_payload,
            StepKind.LOAD_MANIFEST: self._load_manifest,
            StepKind.VALIDATE_FEATURES: self._validate_features,
            StepKind.WRITE_FILE: self._write_file,
            StepKind.RESET_APP: lambda step, s: self.transport.reset_app(),
            StepKind.TERMINATE_APP: lambda step, s: self.transport.terminate_app(),
            StepKind.CLEAR_ENROLLMENTS: lambda step, s: self.transport.clear_enrollments(),
            StepKind.APPLY_EXPERIMENTS: self._apply_experiments,
            StepKind.UNENROLL: lambda step, s: self.transport.unenroll(),
            StepKind.LOG_STATE: lambda step, s: self.transport.log_state(),
            StepKind.LAUNCH_APP: lambda step, s: self.transport.launch_app(),
            StepKind.SEND_DEEPLINK: lambda step, s: self.transport.send_deeplink(step.deeplink or ""),
            StepKind.CAPTURE_LOGS: lambda step, s: self.transport.capture_logs(step.require_path()),
            StepKind.TAIL_LOGS: lambda step, s: self.transport.tail_logs(),
        }

    def execute(self, command: Command) -> CommandResult:
        plan = plan_steps(command)
        result = CommandResult(command=command, plan=plan)
        session = _Session(command=command)
        logger.debug("Plan for %s: %s", command.kind, " -> ".join(s.kind.value for s in plan))
        for step in plan:
            logger.debug("Running %s", step.label)
            try:
                self._handlers[step.kind](step, session)
            except NimbusCliError as exc:
                logger.error("Step %s failed: %s", step.label, exc)
                result.failed_step = step
                result.error = exc
                break
            result.completed.append(step)
            logger.info("Done: %s", step.label)
        result.recipes = session.recipes
        result.validations = session.validations
        result.written = session.written
        return result

    # --------------------------- step handlers --------------------------- #

    def _fetch_recipes(self, step: Step, s: _Session) -> None:
        if step.addresses:
            s.recipes = [self.remote.get_recipe(a) for a in step.addresses]
            return
        recipes = self.remote.list_recipes(step.server or ServerAddress())
        s.recipes = [r for r in recipes if self.app.recipe_matches(r)] if step.only_app else recipes

    def _read_recipes(self, step: Step, s: _Session) -> None:
        path = step.require_path()
        recipes = load_recipes(path)
        if step.addresses:
            # slugs only select recipes from the file; their server part is a label
            s.recipes = [rx.find_recipe(recipes, a, source=str(path)) for a in step.addresses]
        elif step.only_app:
            s.recipes = [r for r in recipes if self.app.recipe_matches(r)]
        else:
            s.recipes = recipes

    def _read_feature_files(self, step: Step, s: _Session) -> None:
        cmd: TestFeatureCommand = s.command
        s.feature_configs = [(name, path, read_json(path)) for name, path in cmd.request.branch_files]

    def _prepare_payload(self, step: Step, s: _Session) -> None:
        cmd = s.command
        if isinstance(cmd, EnrollCommand):
            req = cmd.request
            experiment = rx.prepare_experiment(
                s.recipes[0],
                req.branch,
                preserve_targeting=req.preserve_targeting,
                preserve_bucketing=req.preserve_bucketing,
            )
            rollouts = [
                rx.prepare_rollout(
                    r,
                    preserve_targeting=req.preserve_targeting,
                    preserve_bucketing=req.preserve_bucketing,
                )
                for r in s.recipes[1:]
            ]
            s.payload = {"data": [experiment, *rollouts]}
            s.targets = rx.validation_targets(experiment, [req.branch])
            for r in rollouts:
                s.targets.extend(rx.validation_targets(r))
        elif isinstance(cmd, TestFeatureCommand):
            feature_id = cmd.request.feature_id
            recipe = rx.build_feature_test_recipe(
                self.app, feature_id, [(name, value) for name, _, value in s.feature_configs]
            )
            s.recipes = [recipe]
            s.payload = {"data": [recipe]}
            s.targets = [
                rx.ValidationTarget(str(path), feature_id, value) for _, path, value in s.feature_configs
            ]
        else:
            s.payload = {"data": s.recipes}

    def _load_manifest(self, step: Step, s: _Session) -> None:
        if step.manifest is None:
            raise ManifestResolutionError("No manifest source to load", identifier=step.kind.value)
        s.manifest = self.manifests.load(step.manifest)

    def _validate_features(self, step: Step, s: _Session) -> None:
        if s.manifest is None:
            raise ManifestResolutionError(
                "No manifest loaded to validate against", identifier=step.kind.value
            )
        targets = s.targets if s.payload is not None else rx.validation_targets(s.recipes[0])
        s.validations = [
            self.validator.validate(s.manifest, label=t.label, feature_id=t.feature_id, value=t.value)
            for t in targets
        ]
        failures = [v for v in s.validations if not v.ok]
        if failures:
            raise ValidationError(
                f"{len(failures)} of {len(s.validations)} feature configs failed validation: "
                + "; ".join(f"{v.label} [{v.feature_id}]" for v in failures),
                identifier=failures[0].label,
                failures=failures,
            )

    def _write_file(self, step: Step, s: _Session) -> None:
        path = step.require_path()
        s.written = write_recipes(path, s.recipes)
        logger.info("Wrote %d recipes to %s", len(s.recipes), path)

    def _apply_experiments(self, step: Step, s: _Session) -> None:
        if s.payload is None:
            raise PayloadError("No payload prepared to apply", identifier=step.kind.value)
        self.transport.apply_experiments(s.payload)


__all__ = ["CommandResult", "SessionOrchestrator", "Step", "StepKind", "plan_steps"]
