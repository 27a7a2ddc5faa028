"""Nimbus command line tool for mobile apps.

Invocation: ``nimbus-cli --app APP --channel CHANNEL [--device-id ID] <command> ...``
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated

import typer
from rich.markup import escape
from rich.table import Table

from nimbus_cli.domain.errors import ManifestResolutionError, NimbusCliError
from nimbus_cli.domain.models import AppSettings, Command, FeatureValidation, ManifestReference, OpenOptions
from nimbus_cli.infrastructure.device import transport_for
from nimbus_cli.infrastructure.logging import get_console, render_panel
from nimbus_cli.infrastructure.manifest_loader import ManifestLoader
from nimbus_cli.infrastructure.remote_settings import RemoteSettingsClient
from nimbus_cli.runtime import AppContext, ToolConfig, bootstrap
from nimbus_cli.services.address import AddressParser
from nimbus_cli.services.commands import CommandBuilder
from nimbus_cli.services.orchestrator import CommandResult, SessionOrchestrator
from nimbus_cli.services.recipes import summarize
from nimbus_cli.services.validator import FmlValidator

app = typer.Typer(help="Mozilla Nimbus' command line tool for mobile apps", no_args_is_help=True)


@dataclass(slots=True)
class _Globals:
    app: str
    channel: str
    device_id: str | None


@app.callback()
def init(
    ctx: typer.Context,
    app_name: Annotated[
        str, typer.Option("--app", "-a", metavar="APP", help="The app name according to Nimbus.")
    ],
    channel: Annotated[
        str,
        typer.Option(
            "--channel",
            "-c",
            metavar="CHANNEL",
            help="The channel according to Nimbus. This determines which app to talk to.",
        ),
    ],
    device_id: Annotated[
        str | None,
        typer.Option(
            "--device-id",
            "-d",
            metavar="DEVICE_ID",
            help="The device id of the simulator, emulator or device.",
        ),
    ] = None,
) -> None:
    """Bootstrap environment (dotenv + config + logging) before any command."""
    try:
        bootstrap()
    except NimbusCliError as exc:
        _report_failure("resolve", exc)
        raise typer.Exit(code=1) from exc
    ctx.obj = _Globals(app=app_name, channel=channel, device_id=device_id)


# ---------------------------- shared options ---------------------------- #

ManifestOpt = Annotated[
    Path | None,
    typer.Option("--manifest", metavar="MANIFEST_FILE", help="An optional manifest file", rich_help_panel="Manifest"),
]
VersionOpt = Annotated[
    str | None,
    typer.Option(
        "--version",
        metavar="APP_VERSION",
        help="App version; derives the manifest ref from an app specific template. "
        "Branch naming is inconsistent, so this is not always reliable.",
        rich_help_panel="Manifest",
    ),
]
RefOpt = Annotated[
    str | None,
    typer.Option(
        "--ref",
        metavar="REF",
        help="Branch/tag/commit of the manifest to fetch from GitHub [default: main]",
        rich_help_panel="Manifest",
    ),
]
DeeplinkOpt = Annotated[
    str | None,
    typer.Option("--deeplink", metavar="DEEPLINK", help="If present, launch with this link.", rich_help_panel="Open"),
]
ResetAppOpt = Annotated[
    bool,
    typer.Option("--reset-app", help="Reset the app to its initial state before launching", rich_help_panel="Open"),
]
NoValidateOpt = Annotated[
    bool, typer.Option("--no-validate", help="Don't validate the feature config files before enrolling")
]
PreserveDbOpt = Annotated[
    bool,
    typer.Option(
        "--preserve-nimbus-db",
        help="Keep existing enrollments and experiments before enrolling. Unlikely what you want.",
    ),
]


def _manifest_ref(manifest: Path | None, version: str | None, ref: str | None) -> ManifestReference:
    return ManifestReference(explicit_file=manifest, app_version=version, ref_spec=ref)


# ------------------------------ execution ------------------------------ #


def _orchestrator_factory(settings: AppSettings, config: ToolConfig, device_id: str | None) -> SessionOrchestrator:
    return SessionOrchestrator(
        app=settings,
        remote=RemoteSettingsClient(
            servers=config.servers, collections=config.collections, timeout=config.timeout_seconds
        ),
        manifests=ManifestLoader(timeout=config.timeout_seconds),
        validator=FmlValidator(),
        transport=transport_for(settings, device_id=device_id, timeout=config.timeout_seconds),
    )


def _report_failure(step: str, exc: NimbusCliError) -> None:
    body = f"[bold]{escape(step)}[/bold] failed\n{escape(str(exc))}"
    if isinstance(exc, ManifestResolutionError) and exc.expected:
        body += "\n[dim]The ref was derived from --version; pass --ref or --manifest to pick the manifest.[/dim]"
    render_panel("failed", body, style="red")


def _validation_table(validations: list[FeatureValidation]) -> None:
    table = Table(title="Feature validation")
    for col in ("Source", "Feature", "Result", "Errors"):
        table.add_column(col)
    for v in validations:
        result = "[green]valid[/green]" if v.ok else "[red]invalid[/red]"
        table.add_row(escape(v.label), v.feature_id, result, escape("\n".join(v.errors)) or "-")
    get_console().print(table)


def _execute(ctx: typer.Context, build: Callable[[CommandBuilder], Command]) -> CommandResult:
    g: _Globals = ctx.obj
    config = AppContext.get().config
    try:
        settings = config.app_settings(g.app, g.channel)
        command = build(CommandBuilder(settings, AddressParser(config.server_tags)))
    except NimbusCliError as exc:
        _report_failure("resolve", exc)
        raise typer.Exit(code=1) from exc
    result = _orchestrator_factory(settings, config, g.device_id).execute(command)
    if result.validations:
        _validation_table(result.validations)
    failed, error = result.failed_step, result.error
    if failed is not None and error is not None:
        _report_failure(failed.label, error)
        raise typer.Exit(code=1)
    return result


def _done(result: CommandResult, summary: str) -> None:
    steps = " -> ".join(s.kind.value for s in result.completed)
    render_panel("done", f"[bold cyan]{summary}[/bold cyan]\n[dim]{steps}[/dim]", style="green")


# ------------------------------- commands ------------------------------- #


@app.command("apply-file")
def apply_file_cmd(
    ctx: typer.Context,
    file: Annotated[Path, typer.Argument(help="The filename to be loaded into the SDK.")],
    preserve_nimbus_db: PreserveDbOpt = False,
) -> None:
    """Send a complete JSON file to the Nimbus SDK and apply it immediately."""
    result = _execute(ctx, lambda b: b.apply_file(file, preserve_nimbus_db=preserve_nimbus_db))
    _done(result, f"Applied {file}")


@app.command("capture-logs")
def capture_logs_cmd(
    ctx: typer.Context,
    file: Annotated[Path, typer.Argument(help="The file to put the logs.")],
) -> None:
    """Capture the logs into a file."""
    result = _execute(ctx, lambda b: b.capture_logs(file))
    _done(result, f"Logs written to {file}")


@app.command("enroll")
def enroll_cmd(
    ctx: typer.Context,
    experiment: Annotated[
        str, typer.Argument(metavar="SLUG", help="The experiment slug, including the server and collection.")
    ],
    branch: Annotated[str, typer.Option("--branch", "-b", metavar="BRANCH", help="The branch slug.")],
    rollouts: Annotated[
        list[str] | None,
        typer.Argument(metavar="ROLLOUTS", help="Optional rollout slugs, including the server and collection."),
    ] = None,
    preserve_targeting: Annotated[
        bool, typer.Option("--preserve-targeting", help="Preserves the original experiment targeting")
    ] = False,
    preserve_bucketing: Annotated[
        bool, typer.Option("--preserve-bucketing", help="Preserves the original experiment bucketing")
    ] = False,
    deeplink: DeeplinkOpt = None,
    reset_app: ResetAppOpt = False,
    preserve_nimbus_db: PreserveDbOpt = False,
    file: Annotated[
        Path | None,
        typer.Option("--file", "-f", metavar="FILE", help="Instead of fetching from the server, use a file instead"),
    ] = None,
    no_validate: NoValidateOpt = False,
    manifest: ManifestOpt = None,
    version: VersionOpt = None,
    ref: RefOpt = None,
) -> None:
    """Enroll into an experiment or a rollout.

    The slug combines the actual slug and the server it came from: release/stage
    select the server, preview selects the preview collection, e.g. $slug,
    preview/$slug, stage/$slug, stage/preview/$slug.
    """
    result = _execute(
        ctx,
        lambda b: b.enroll(
            experiment,
            branch=branch,
            rollouts=rollouts,
            preserve_targeting=preserve_targeting,
            preserve_bucketing=preserve_bucketing,
            preserve_nimbus_db=preserve_nimbus_db,
            file=file,
            no_validate=no_validate,
            open=OpenOptions(deeplink=deeplink, reset_app=reset_app),
            manifest=_manifest_ref(manifest, version, ref),
        ),
    )
    _done(result, f"Enrolled in {experiment} ({branch})")


@app.command("fetch")
def fetch_cmd(
    ctx: typer.Context,
    file: Annotated[Path, typer.Argument(help="The file to download the recipes to.")],
    server: Annotated[
        str | None,
        typer.Option("--server", "-s", metavar="SERVER", help="An optional server slug, e.g. release or stage/preview."),
    ] = None,
    recipes: Annotated[
        list[str] | None,
        typer.Option(
            "--recipe",
            "-r",
            metavar="RECIPE",
            help="A recipe slug including server; repeat per recipe. Cannot be used with --server.",
        ),
    ] = None,
) -> None:
    """Fetch one or more experiments and put them in a file."""
    result = _execute(ctx, lambda b: b.fetch(file, server=server, recipes=recipes))
    _done(result, f"Wrote {len(result.recipes)} recipes to {file}")


@app.command("list")
def list_cmd(
    ctx: typer.Context,
    server: Annotated[
        str | None, typer.Argument(help="A server slug e.g. preview, release, stage, stage/preview")
    ] = None,
    file: Annotated[Path | None, typer.Option("--file", "-f", metavar="FILE", help="An optional file")] = None,
) -> None:
    """List the experiments from a server."""
    result = _execute(ctx, lambda b: b.list_recipes(server, file=file))
    if not result.recipes:
        get_console().print("[yellow]No recipes found[/yellow]")
        return
    table = Table(title=f"Recipes for {ctx.obj.app}")
    for col in ("Slug", "Type", "Features", "Branches", "Paused"):
        table.add_column(col)
    for row in (summarize(r) for r in result.recipes):
        table.add_row(
            row["slug"],
            row["type"],
            ", ".join(row["features"]),
            ", ".join(row["branches"]),
            "yes" if row["paused"] else "",
        )
    get_console().print(table)


@app.command("log-state")
def log_state_cmd(ctx: typer.Context) -> None:
    """Print the state of the Nimbus database to logs. This restarts the app."""
    result = _execute(ctx, lambda b: b.log_state())
    _done(result, "Requested state dump")


@app.command("open")
def open_cmd(
    ctx: typer.Context,
    deeplink: DeeplinkOpt = None,
    reset_app: ResetAppOpt = False,
    no_clobber: Annotated[
        bool,
        typer.Option(
            "--no-clobber",
            help="Do not terminate the app if it is already running before sending the deeplink.",
        ),
    ] = False,
) -> None:
    """Open the app without changing the state of experiment enrollments."""
    opts = OpenOptions(deeplink=deeplink, reset_app=reset_app, no_clobber=no_clobber)
    result = _execute(ctx, lambda b: b.open_app(opts))
    _done(result, "Opened app")


@app.command("reset-app")
def reset_app_cmd(ctx: typer.Context) -> None:
    """Reset the app back to its just installed state."""
    result = _execute(ctx, lambda b: b.reset_app())
    _done(result, "App reset")


@app.command("tail-logs")
def tail_logs_cmd(ctx: typer.Context) -> None:
    """Follow the logs for the given app."""
    _execute(ctx, lambda b: b.tail_logs())


@app.command("test-feature")
def test_feature_cmd(
    ctx: typer.Context,
    feature_id: Annotated[str, typer.Argument(help="The identifier of the feature to configure")],
    files: Annotated[
        list[Path], typer.Argument(help="One or more feature config files; one branch per file, named after it.")
    ],
    deeplink: DeeplinkOpt = None,
    reset_app: ResetAppOpt = False,
    no_validate: NoValidateOpt = False,
    manifest: ManifestOpt = None,
    version: VersionOpt = None,
    ref: RefOpt = None,
) -> None:
    """Configure an application feature with one or more feature config files."""
    result = _execute(
        ctx,
        lambda b: b.test_feature(
            feature_id,
            files,
            no_validate=no_validate,
            open=OpenOptions(deeplink=deeplink, reset_app=reset_app),
            manifest=_manifest_ref(manifest, version, ref),
        ),
    )
    _done(result, f"Testing {feature_id} with {len(files)} branch(es)")


@app.command("unenroll")
def unenroll_cmd(ctx: typer.Context) -> None:
    """Unenroll from all experiments and rollouts."""
    result = _execute(ctx, lambda b: b.unenroll())
    _done(result, "Unenrolled from everything")


@app.command("validate")
def validate_cmd(
    ctx: typer.Context,
    experiment: Annotated[
        str, typer.Argument(metavar="SLUG", help="The experiment slug, including the server and collection.")
    ],
    file: Annotated[
        Path | None,
        typer.Option("--file", metavar="EXPERIMENTS_FILE", help="An optional file from which to get the experiment"),
    ] = None,
    manifest: ManifestOpt = None,
    version: VersionOpt = None,
    ref: RefOpt = None,
) -> None:
    """Validate an experiment against a feature manifest."""
    result = _execute(
        ctx, lambda b: b.validate(experiment, file=file, manifest=_manifest_ref(manifest, version, ref))
    )
    _done(result, f"{experiment} is valid")


def main() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
