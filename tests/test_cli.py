import sys
import time

from typer.testing import CliRunner

from stagehand.cli.main import app
from stagehand.runtime.lifecycle_contracts import ProvisionResult, ProvisionState
from stagehand.runtime.service import (
    ServiceHandle,
    allocate_ephemeral_port,
    is_process_alive,
    service_metadata_path,
    start_service,
    stop_service,
    write_service_metadata,
)
from stagehand.utils.diagnostics import DownloadError, ProbeTimeoutError

runner = CliRunner()


def _combined_output(result) -> str:
    return f"{result.stdout}{getattr(result, 'stderr', '')}"


class _FakeController:
    """Stands in for LifecycleController and records how the CLI built it."""

    instances = []
    result = ProvisionResult(state=ProvisionState.DONE, exit_code=0)

    def __init__(self, build_dir, cache_dir, context):
        self.build_dir = build_dir
        self.cache_dir = cache_dir
        self.context = context
        _FakeController.instances.append(self)

    def run(self):
        return _FakeController.result


def _install_fake_controller(monkeypatch, result):
    _FakeController.instances = []
    _FakeController.result = result
    monkeypatch.setattr("stagehand.cli.main.LifecycleController", _FakeController)


def test_provision_help():
    result = runner.invoke(app, ["provision", "--help"])
    assert result.exit_code == 0
    assert "Install the runtime and artifact" in result.stdout


def test_provision_missing_build_dir(tmp_path):
    result = runner.invoke(app, ["provision", str(tmp_path / "missing"), str(tmp_path / "cache")])
    assert result.exit_code == 1
    assert "does not exist" in _combined_output(result)


def test_provision_success_exits_zero(monkeypatch, build_dir, cache_dir):
    _install_fake_controller(monkeypatch, ProvisionResult(state=ProvisionState.DONE, exit_code=0))

    result = runner.invoke(app, ["provision", str(build_dir), str(cache_dir)])

    assert result.exit_code == 0
    controller = _FakeController.instances[0]
    assert controller.build_dir == build_dir.resolve()
    assert controller.cache_dir == cache_dir.resolve()
    assert controller.context.settings.artifact_version == "2.21.1"


def test_provision_reads_yaml_and_version_override(monkeypatch, build_dir, cache_dir):
    (build_dir / "stagehand.yaml").write_text(
        """
stagehand:
  artifact_version: "2.22.0"
service:
  probe_attempts: 3
"""
    )
    _install_fake_controller(monkeypatch, ProvisionResult(state=ProvisionState.DONE, exit_code=0))

    result = runner.invoke(
        app,
        ["provision", str(build_dir), str(cache_dir), "--artifact-version", "2.23.0"],
    )

    assert result.exit_code == 0
    context = _FakeController.instances[0].context
    assert context.settings.artifact_version == "2.23.0"
    assert context.service.probe_attempts == 3


def test_provision_failure_propagates_exit_code(monkeypatch, build_dir, cache_dir):
    diagnostic = ProbeTimeoutError("Service never answered").to_diagnostic(severity="critical")
    _install_fake_controller(
        monkeypatch,
        ProvisionResult(state=ProvisionState.PROBE_FAILED, exit_code=1, diagnostics=[diagnostic]),
    )

    result = runner.invoke(app, ["provision", str(build_dir), str(cache_dir)])

    assert result.exit_code == 1
    assert "probe_failed" in _combined_output(result)


def test_provision_missing_explicit_config_is_rejected(build_dir, cache_dir):
    result = runner.invoke(
        app,
        ["provision", str(build_dir), str(cache_dir), "--config", str(build_dir / "nope.yaml")],
    )

    assert result.exit_code != 0


def test_resolve_prints_cached_path(monkeypatch, cache_dir):
    calls = []

    def fake_resolve(self, version, target_dir):
        calls.append((version, target_dir))
        return target_dir / f"webapp-{version}.zip"

    monkeypatch.setattr("stagehand.artifacts.cache.ArtifactCache.resolve", fake_resolve)

    result = runner.invoke(app, ["resolve", str(cache_dir), "--artifact-version", "2.21.1"])

    assert result.exit_code == 0
    assert calls == [("2.21.1", cache_dir.resolve())]
    assert "webapp-2.21.1.zip" in result.stdout


def test_resolve_download_error_exits_one(monkeypatch, cache_dir):
    def failing_resolve(self, version, target_dir):
        raise DownloadError("mirror unreachable")

    monkeypatch.setattr("stagehand.artifacts.cache.ArtifactCache.resolve", failing_resolve)

    result = runner.invoke(app, ["resolve", str(cache_dir)])

    assert result.exit_code == 1
    assert "mirror unreachable" in _combined_output(result)


def test_stop_without_metadata(build_dir):
    result = runner.invoke(app, ["stop", str(build_dir)])

    assert result.exit_code == 0
    assert "No service metadata" in _combined_output(result)


def test_stop_clears_stale_metadata(build_dir, monkeypatch):
    state_dir = build_dir / ".stagehand"
    write_service_metadata(
        state_dir,
        ServiceHandle(pid=424242, port=8123, log_path="service.log", started_at="2026-02-25T00:00:00Z"),
    )
    monkeypatch.setattr("stagehand.runtime.service.is_process_alive", lambda pid: False)

    result = runner.invoke(app, ["stop", str(build_dir)])

    assert result.exit_code == 0
    assert not service_metadata_path(state_dir).exists()


def test_stop_leaves_reused_pid_untouched(build_dir):
    state_dir = build_dir / ".stagehand"
    unrelated = start_service(
        [sys.executable, "-c", "import time; time.sleep(60)"],
        port=allocate_ephemeral_port(),
        log_path=build_dir / "unrelated.log",
    )
    recorded = unrelated.model_copy(update={"process_created": unrelated.process_created - 3600})
    write_service_metadata(state_dir, recorded)

    try:
        result = runner.invoke(app, ["stop", str(build_dir), "--grace-seconds", "1"])

        assert result.exit_code == 0
        assert is_process_alive(unrelated.pid) is True
        assert not service_metadata_path(state_dir).exists()
    finally:
        stop_service(unrelated, grace_seconds=5)


def test_stop_terminates_running_service(build_dir):
    state_dir = build_dir / ".stagehand"
    handle = start_service(
        [sys.executable, "-c", "import time; time.sleep(60)"],
        port=allocate_ephemeral_port(),
        log_path=state_dir / "service.log",
    )
    write_service_metadata(state_dir, handle)

    result = runner.invoke(app, ["stop", str(build_dir), "--grace-seconds", "5"])

    assert result.exit_code == 0
    deadline = time.monotonic() + 5
    while is_process_alive(handle.pid) and time.monotonic() < deadline:
        time.sleep(0.02)
    assert is_process_alive(handle.pid) is False
    assert not service_metadata_path(state_dir).exists()
