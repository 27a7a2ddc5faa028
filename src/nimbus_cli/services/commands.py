"""Build resolved ``Command`` variants from raw operator input.

This is the Parsed -> Resolved transition: every slug and manifest flag is
resolved here, and flag conflicts are rejected, before anything touches the
network or the device. Errors raised here are terminal for the command.
"""
from __future__ import annotations

import logging
from pathlib import Path

from nimbus_cli.domain.errors import ConflictError
from nimbus_cli.domain.models import (
    AppSettings,
    ApplyFileCommand,
    CaptureLogsCommand,
    EnrollCommand,
    EnrollmentRequest,
    FeatureTestRequest,
    FetchCommand,
    ListCommand,
    LogStateCommand,
    ManifestReference,
    ManifestSource,
    OpenCommand,
    OpenOptions,
    ResetAppCommand,
    TailLogsCommand,
    TestFeatureCommand,
    UnenrollCommand,
    ValidateCommand,
)
from nimbus_cli.services.address import AddressParser
from nimbus_cli.services.manifest import resolve_manifest

logger = logging.getLogger(__name__)


class CommandBuilder:
    def __init__(self, app: AppSettings, parser: AddressParser | None = None):
        self.app = app
        self.parser = parser or AddressParser()

    def _manifest(self, reference: ManifestReference | None) -> ManifestSource:
        return resolve_manifest(reference or ManifestReference(), self.app)

    def apply_file(self, file: Path, *, preserve_nimbus_db: bool = False) -> ApplyFileCommand:
        return ApplyFileCommand(file=file, preserve_nimbus_db=preserve_nimbus_db)

    def capture_logs(self, file: Path) -> CaptureLogsCommand:
        return CaptureLogsCommand(file=file)

    def enroll(
        self,
        experiment: str,
        *,
        branch: str,
        rollouts: list[str] | None = None,
        preserve_targeting: bool = False,
        preserve_bucketing: bool = False,
        preserve_nimbus_db: bool = False,
        file: Path | None = None,
        no_validate: bool = False,
        open: OpenOptions | None = None,
        manifest: ManifestReference | None = None,
    ) -> EnrollCommand:
        request = EnrollmentRequest(
            experiment=self.parser.parse_slug(experiment),
            branch=branch,
            rollouts=self.parser.parse_many(rollouts or []),
            preserve_targeting=preserve_targeting,
            preserve_bucketing=preserve_bucketing,
            preserve_nimbus_db=preserve_nimbus_db,
            file=file,
            no_validate=no_validate,
        )
        if file is not None:
            logger.debug("Payload comes from %s; slugs used for lookup only", file)
        return EnrollCommand(
            request=request,
            open=open or OpenOptions(),
            manifest=None if no_validate else self._manifest(manifest),
        )

    def fetch(self, file: Path, *, server: str | None = None, recipes: list[str] | None = None) -> FetchCommand:
        if server is not None and recipes:
            raise ConflictError("--server", "--recipe")
        if recipes:
            return FetchCommand(file=file, recipes=self.parser.parse_many(recipes))
        return FetchCommand(file=file, server=self.parser.parse_server(server))

    def list_recipes(self, server: str | None = None, *, file: Path | None = None) -> ListCommand:
        if file is not None and server:
            logger.warning("Listing from %s; ignoring server '%s'", file, server)
        return ListCommand(server=self.parser.parse_server(server), file=file)

    def log_state(self) -> LogStateCommand:
        return LogStateCommand()

    def open_app(self, open: OpenOptions | None = None) -> OpenCommand:
        opts = open or OpenOptions()
        if opts.reset_app and opts.no_clobber:
            logger.info("--reset-app takes precedence over --no-clobber")
        return OpenCommand(open=opts)

    def reset_app(self) -> ResetAppCommand:
        return ResetAppCommand()

    def tail_logs(self) -> TailLogsCommand:
        return TailLogsCommand()

    def test_feature(
        self,
        feature_id: str,
        files: list[Path],
        *,
        no_validate: bool = False,
        open: OpenOptions | None = None,
        manifest: ManifestReference | None = None,
    ) -> TestFeatureCommand:
        request = FeatureTestRequest.from_files(feature_id, files)
        return TestFeatureCommand(
            request=request,
            open=open or OpenOptions(),
            no_validate=no_validate,
            manifest=None if no_validate else self._manifest(manifest),
        )

    def unenroll(self) -> UnenrollCommand:
        return UnenrollCommand()

    def validate(
        self,
        experiment: str,
        *,
        file: Path | None = None,
        manifest: ManifestReference | None = None,
    ) -> ValidateCommand:
        return ValidateCommand(
            experiment=self.parser.parse_slug(experiment),
            file=file,
            manifest=self._manifest(manifest),
        )


__all__ = ["CommandBuilder"]
