"""Device transports: how commands reach the app on a device, emulator or simulator.

Android goes through ``adb`` and launch-intent extras; iOS simulators through
``xcrun simctl`` and launch arguments. Both speak the SDK's ``nimbus-cli``
launch protocol (version 1): experiments JSON, ``reset-db``, ``log-state``.
Every call is bounded by ``timeout`` except log tailing, which streams until
interrupted.
"""
from __future__ import annotations

import logging
import shlex
import shutil
import subprocess
from collections.abc import Sequence
from pathlib import Path
from typing import Any, Protocol

from nimbus_cli.domain.errors import TransportError
from nimbus_cli.domain.models import AppSettings
from nimbus_cli.infrastructure.fs import dumps_compact

logger = logging.getLogger(__name__)

CLI_PROTOCOL_VERSION = 1


class DeviceTransport(Protocol):
    def reset_app(self) -> None: ...
    def terminate_app(self) -> None: ...
    def clear_enrollments(self) -> None: ...
    def apply_experiments(self, payload: dict[str, Any]) -> None: ...
    def unenroll(self) -> None: ...
    def log_state(self) -> None: ...
    def launch_app(self) -> None: ...
    def send_deeplink(self, url: str) -> None: ...
    def capture_logs(self, path: Path) -> None: ...
    def tail_logs(self) -> None: ...


def _run(
    args: Sequence[str],
    *,
    operation: str,
    timeout: float | None,
    check: bool = True,
) -> subprocess.CompletedProcess[str]:
    logger.debug("$ %s", shlex.join(args))
    try:
        proc = subprocess.run(list(args), capture_output=True, text=True, timeout=timeout)
    except FileNotFoundError as exc:
        raise TransportError(operation, f"'{args[0]}' not found on PATH") from exc
    except subprocess.TimeoutExpired as exc:
        raise TransportError(operation, f"timed out after {timeout}s") from exc
    if check and proc.returncode != 0:
        detail = (proc.stderr or proc.stdout or "").strip()
        raise TransportError(operation, f"exit status {proc.returncode}: {detail}")
    return proc


def _write_log(path: Path, text: str) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
    except OSError as exc:
        raise TransportError("capture-logs", f"cannot write {path}: {exc.strerror or exc}") from exc
    logger.info("Wrote logs to %s", path)


def _stream(args: Sequence[str], *, operation: str) -> None:
    logger.debug("$ %s", shlex.join(args))
    try:
        subprocess.run(list(args), check=False)
    except FileNotFoundError as exc:
        raise TransportError(operation, f"'{args[0]}' not found on PATH") from exc
    except KeyboardInterrupt:
        logger.info("Stopped tailing logs")


class AndroidTransport:
    def __init__(self, app: AppSettings, *, device_id: str | None = None, timeout: float = 30.0):
        self.package = app.app_id
        self.activity = app.activity or f"{app.app_id}.App"
        self.device_id = device_id
        self.timeout = timeout

    def _adb(self, *args: str) -> list[str]:
        base = ["adb"]
        if self.device_id:
            base += ["-s", self.device_id]
        return base + list(args)

    def _shell(self, operation: str, *args: str) -> subprocess.CompletedProcess[str]:
        return _run(self._adb("shell", *args), operation=operation, timeout=self.timeout)

    def _start(self, operation: str, *extras: str) -> None:
        self._shell(
            operation,
            "am", "start",
            "-n", f"{self.package}/{self.activity}",
            "-a", "android.intent.action.MAIN",
            "-c", "android.intent.category.LAUNCHER",
            "--esn", "nimbus-cli",
            "--ei", "version", str(CLI_PROTOCOL_VERSION),
            *extras,
        )

    def reset_app(self) -> None:
        self._shell("reset-app", "pm", "clear", self.package)

    def terminate_app(self) -> None:
        self._shell("terminate-app", "am", "force-stop", self.package)

    def clear_enrollments(self) -> None:
        self._start("clear-enrollments", "--ez", "reset-db", "true")

    def apply_experiments(self, payload: dict[str, Any]) -> None:
        # adb shell re-parses its arguments on the device
        self._start("apply-experiments", "--es", "experiments", shlex.quote(dumps_compact(payload)))

    def unenroll(self) -> None:
        self._start("unenroll", "--es", "experiments", shlex.quote(dumps_compact({"data": []})))

    def log_state(self) -> None:
        self._start("log-state", "--ez", "log-state", "true")

    def launch_app(self) -> None:
        self._start("launch-app")

    def send_deeplink(self, url: str) -> None:
        self._shell(
            "send-deeplink",
            "am", "start", "-a", "android.intent.action.VIEW", "-d", shlex.quote(url), self.package,
        )

    def capture_logs(self, path: Path) -> None:
        proc = _run(self._adb("logcat", "-d"), operation="capture-logs", timeout=self.timeout)
        _write_log(path, proc.stdout)

    def tail_logs(self) -> None:
        _stream(self._adb("logcat"), operation="tail-logs")


class IosTransport:
    def __init__(self, app: AppSettings, *, device_id: str | None = None, timeout: float = 30.0):
        self.bundle = app.app_id
        self.device = device_id or "booted"
        self.timeout = timeout

    def _simctl(self, operation: str, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
        return _run(["xcrun", "simctl", *args], operation=operation, timeout=self.timeout, check=check)

    def _launch(self, operation: str, *args: str) -> None:
        self._simctl(
            operation,
            "launch", self.device, self.bundle,
            "--nimbus-cli", "--version", str(CLI_PROTOCOL_VERSION),
            *args,
        )

    def reset_app(self) -> None:
        self.terminate_app()
        proc = self._simctl("reset-app", "get_app_container", self.device, self.bundle, "data")
        container = Path(proc.stdout.strip())
        if not container.is_dir():
            raise TransportError("reset-app", f"no data container at {container}")
        for child in container.iterdir():
            if child.is_dir():
                shutil.rmtree(child)
            else:
                child.unlink()
        logger.info("Cleared data container %s", container)

    def terminate_app(self) -> None:
        # simctl fails when the app is not running; that is not an error here
        self._simctl("terminate-app", "terminate", self.device, self.bundle, check=False)

    def clear_enrollments(self) -> None:
        self._launch("clear-enrollments", "--reset-db")

    def apply_experiments(self, payload: dict[str, Any]) -> None:
        self._launch("apply-experiments", "--experiments", dumps_compact(payload))

    def unenroll(self) -> None:
        self._launch("unenroll", "--experiments", dumps_compact({"data": []}))

    def log_state(self) -> None:
        self._launch("log-state", "--log-state")

    def launch_app(self) -> None:
        self._launch("launch-app")

    def send_deeplink(self, url: str) -> None:
        self._simctl("send-deeplink", "openurl", self.device, url)

    def capture_logs(self, path: Path) -> None:
        proc = self._simctl(
            "capture-logs", "spawn", self.device, "log", "show", "--style", "compact", "--last", "10m"
        )
        _write_log(path, proc.stdout)

    def tail_logs(self) -> None:
        _stream(
            ["xcrun", "simctl", "spawn", self.device, "log", "stream", "--style", "compact"],
            operation="tail-logs",
        )


def transport_for(app: AppSettings, *, device_id: str | None, timeout: float) -> DeviceTransport:
    if app.platform == "android":
        return AndroidTransport(app, device_id=device_id, timeout=timeout)
    return IosTransport(app, device_id=device_id, timeout=timeout)


__all__ = ["AndroidTransport", "DeviceTransport", "IosTransport", "transport_for"]
