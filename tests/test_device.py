"""Device transports: the adb / simctl invocations each operation produces."""

from __future__ import annotations

import subprocess
from pathlib import Path

import orjson
import pytest

from nimbus_cli.domain.errors import TransportError
from nimbus_cli.domain.models import AppSettings
from nimbus_cli.infrastructure import device
from nimbus_cli.infrastructure.device import AndroidTransport, IosTransport, transport_for


class _Recorder:
    def __init__(self) -> None:
        self.args: list[list[str]] = []
        self.returncode = 0
        self.stdout = ""
        self.raises: Exception | None = None

    def __call__(self, args, **kwargs) -> subprocess.CompletedProcess[str]:
        self.args.append(args)
        if self.raises is not None:
            raise self.raises
        return subprocess.CompletedProcess(args, self.returncode, stdout=self.stdout, stderr="boom")


@pytest.fixture
def run(monkeypatch: pytest.MonkeyPatch) -> _Recorder:
    recorder = _Recorder()
    monkeypatch.setattr(device.subprocess, "run", recorder)
    return recorder


@pytest.fixture
def ios_settings(app_settings: AppSettings) -> AppSettings:
    return app_settings.model_copy(
        update={"name": "firefox_ios", "platform": "ios", "app_id": "org.mozilla.ios.Fennec", "activity": None}
    )


def test_transport_for_platform(app_settings: AppSettings, ios_settings: AppSettings) -> None:
    assert isinstance(transport_for(app_settings, device_id=None, timeout=1), AndroidTransport)
    assert isinstance(transport_for(ios_settings, device_id=None, timeout=1), IosTransport)


# ------------------------------ android ------------------------------ #


def test_android_targets_device(app_settings: AppSettings, run: _Recorder) -> None:
    AndroidTransport(app_settings, device_id="emulator-5554").terminate_app()
    assert run.args == [
        ["adb", "-s", "emulator-5554", "shell", "am", "force-stop", "org.mozilla.fenix.debug"]
    ]


def test_android_reset_clears_package(app_settings: AppSettings, run: _Recorder) -> None:
    AndroidTransport(app_settings).reset_app()
    assert run.args == [["adb", "shell", "pm", "clear", "org.mozilla.fenix.debug"]]


def test_android_apply_experiments_uses_launch_protocol(app_settings: AppSettings, run: _Recorder) -> None:
    AndroidTransport(app_settings).apply_experiments({"data": [{"slug": "a"}]})
    (args,) = run.args
    assert args[:4] == ["adb", "shell", "am", "start"]
    assert "org.mozilla.fenix.debug/org.mozilla.fenix.HomeActivity" in args
    assert args[args.index("--esn") + 1] == "nimbus-cli"
    assert args[args.index("--ei") + 1 : args.index("--ei") + 3] == ["version", "1"]
    quoted = args[args.index("experiments") + 1]
    assert quoted.startswith("'") and quoted.endswith("'")
    assert orjson.loads(quoted[1:-1]) == {"data": [{"slug": "a"}]}


def test_android_clear_enrollments(app_settings: AppSettings, run: _Recorder) -> None:
    AndroidTransport(app_settings).clear_enrollments()
    assert run.args[0][-3:] == ["--ez", "reset-db", "true"]


def test_android_deeplink(app_settings: AppSettings, run: _Recorder) -> None:
    AndroidTransport(app_settings).send_deeplink("fenix://home")
    assert run.args[0][-3:] == ["-d", "fenix://home", "org.mozilla.fenix.debug"]
    assert "android.intent.action.VIEW" in run.args[0]


def test_android_capture_logs(app_settings: AppSettings, run: _Recorder, tmp_path: Path) -> None:
    run.stdout = "I/Nimbus: hello\n"
    out = tmp_path / "logs" / "capture.txt"
    AndroidTransport(app_settings).capture_logs(out)
    assert run.args == [["adb", "logcat", "-d"]]
    assert out.read_text(encoding="utf-8") == "I/Nimbus: hello\n"


# -------------------------------- ios -------------------------------- #


def test_ios_launch_arguments(ios_settings: AppSettings, run: _Recorder) -> None:
    IosTransport(ios_settings).log_state()
    assert run.args == [
        [
            "xcrun", "simctl", "launch", "booted", "org.mozilla.ios.Fennec",
            "--nimbus-cli", "--version", "1", "--log-state",
        ]
    ]


def test_ios_apply_experiments_passes_raw_json(ios_settings: AppSettings, run: _Recorder) -> None:
    IosTransport(ios_settings, device_id="SIM-1").apply_experiments({"data": []})
    (args,) = run.args
    assert args[3] == "SIM-1"
    assert orjson.loads(args[-1]) == {"data": []}


def test_ios_terminate_tolerates_not_running(ios_settings: AppSettings, run: _Recorder) -> None:
    run.returncode = 3
    IosTransport(ios_settings).terminate_app()
    assert run.args[0][2] == "terminate"


def test_ios_reset_empties_data_container(ios_settings: AppSettings, run: _Recorder, tmp_path: Path) -> None:
    (tmp_path / "Library").mkdir()
    (tmp_path / "Library" / "prefs.plist").write_text("x")
    (tmp_path / "top.txt").write_text("x")
    run.stdout = f"{tmp_path}\n"
    IosTransport(ios_settings).reset_app()
    assert list(tmp_path.iterdir()) == []
    assert [a[2] for a in run.args] == ["terminate", "get_app_container"]


# ------------------------------ failures ------------------------------ #


def test_nonzero_exit_is_transport_error(app_settings: AppSettings, run: _Recorder) -> None:
    run.returncode = 1
    with pytest.raises(TransportError) as exc:
        AndroidTransport(app_settings).log_state()
    assert exc.value.operation == "log-state"
    assert "boom" in str(exc.value)


@pytest.mark.parametrize(
    ("raised", "fragment"),
    [
        (FileNotFoundError("adb"), "not found on PATH"),
        (subprocess.TimeoutExpired(["adb"], 2), "timed out after 2"),
    ],
)
def test_process_failures(app_settings: AppSettings, run: _Recorder, raised: Exception, fragment: str) -> None:
    run.raises = raised
    with pytest.raises(TransportError) as exc:
        AndroidTransport(app_settings, timeout=2).reset_app()
    assert exc.value.operation == "reset-app"
    assert fragment in str(exc.value)


def test_capture_logs_unwritable_target(app_settings: AppSettings, run: _Recorder, tmp_path: Path) -> None:
    blocker = tmp_path / "file"
    blocker.write_text("x")
    with pytest.raises(TransportError) as exc:
        AndroidTransport(app_settings).capture_logs(blocker / "logs.txt")
    assert exc.value.operation == "capture-logs"
