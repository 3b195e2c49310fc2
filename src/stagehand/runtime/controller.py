from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

from stagehand.artifacts.cache import ArtifactCache
from stagehand.cli.formatter import OutputFormatter
from stagehand.core.context import ProvisionContext
from stagehand.infrastructure.staging import StagingLayout
from stagehand.runtime.environment import scoped_environ
from stagehand.runtime.installer import CommandRuntimeInstaller, RuntimeInstaller
from stagehand.runtime.lifecycle_contracts import (
    ProvisionResult,
    ProvisionState,
    exit_code_for,
    transition_provision_state,
)
from stagehand.runtime.service import (
    ServiceHandle,
    ServiceState,
    StopOutcome,
    allocate_ephemeral_port,
    build_launch_command,
    clear_service_metadata,
    inspect_service_state,
    probe_service,
    start_service,
    stop_service,
    write_service_metadata,
)
from stagehand.utils.diagnostics import (
    ConfigCallbackError,
    DownloadError,
    InstallError,
    ProbeTimeoutError,
    ProvisionDiagnostic,
    ServiceStartError,
    StagehandError,
)

ConfigureCallback = Callable[[], bool]
CommandBuilder = Callable[[StagingLayout, int], List[str]]


@dataclass(frozen=True)
class ProvisionLifecycleEvent:
    """Host-facing state transition payload."""

    previous: ProvisionState
    current: ProvisionState


class ScriptCallback:
    """Runs a configuration script as a subprocess inheriting the current environment."""

    def __init__(self, script: Path, cwd: Optional[Path] = None) -> None:
        self.script = script
        self.cwd = cwd

    def __call__(self) -> bool:
        OutputFormatter.log(f"Running configuration script {self.script}...")
        completed = subprocess.run(
            [str(self.script)],
            cwd=str(self.cwd) if self.cwd is not None else None,
            env=os.environ.copy(),
            check=False,
        )
        return completed.returncode == 0


def discover_config_script(build_dir: Path, script: str) -> Optional[ScriptCallback]:
    """Return a callback for the configuration script, or None when it does not exist."""
    path = Path(script)
    if not path.is_absolute():
        path = build_dir / path
    if not path.is_file():
        return None
    return ScriptCallback(path.resolve(), cwd=build_dir)


class LifecycleController:
    """Installs, resolves and places the artifact, then drives the transient configuration service.

    The controller is strictly sequential. At most one service is live at a
    time, the scratch directory is always removed, and the data-directory
    override is always restored.
    """

    def __init__(
        self,
        build_dir: Path,
        cache_dir: Path,
        context: Optional[ProvisionContext] = None,
        installer: Optional[RuntimeInstaller] = None,
        cache: Optional[ArtifactCache] = None,
        configure: Optional[ConfigureCallback] = None,
        command_builder: CommandBuilder = build_launch_command,
        port_allocator: Callable[[], int] = allocate_ephemeral_port,
        on_transition: Optional[Callable[[ProvisionLifecycleEvent], None]] = None,
    ) -> None:
        self.build_dir = build_dir
        self.cache_dir = cache_dir
        self.context = context if context is not None else ProvisionContext.from_build_dir(build_dir)

        settings = self.context.settings
        download = self.context.download
        self.layout = StagingLayout(build_dir, artifact_name=settings.artifact_name, data_dir=settings.data_dir)
        self.installer = installer if installer is not None else CommandRuntimeInstaller(settings.installer_command)
        self.cache = cache if cache is not None else ArtifactCache(
            url_template=settings.artifact_url_template,
            artifact_name=settings.artifact_name,
            attempts=download.attempts,
            retry_delay_seconds=download.retry_delay_seconds,
            timeout_seconds=download.timeout_seconds,
        )
        self.configure = configure
        self.command_builder = command_builder
        self.port_allocator = port_allocator
        self.on_transition = on_transition

        self.state = ProvisionState.IDLE
        self.diagnostics: List[ProvisionDiagnostic] = []
        self.artifact_path: Optional[Path] = None
        self.configured = False

    def run(self) -> ProvisionResult:
        """Run the whole pipeline once and report its terminal state."""
        settings = self.context.settings
        version = settings.artifact_version
        scratch = self.cache.scratch_dir(version, self.cache_dir)

        try:
            self._transition(ProvisionState.INSTALLING)
            try:
                self.installer.install(self.layout, settings)
            except InstallError as exc:
                return self._fail(ProvisionState.INSTALL_FAILED, exc)
            OutputFormatter.log("Runtime installed.", severity="success")

            self._transition(ProvisionState.RESOLVING)
            try:
                archive = self.cache.resolve(version, self.cache_dir)
                scratch = self.cache.unpack(archive, version, self.cache_dir)
                extracted = self.cache.find_artifact(scratch, settings.artifact_pattern)
                self.artifact_path = self.layout.place_artifact(extracted, version)
            except DownloadError as exc:
                return self._fail(ProvisionState.DOWNLOAD_FAILED, exc)

            self._transition(ProvisionState.PLACED)
            OutputFormatter.log(
                f"Placed {self.artifact_path.name} (alias {self.layout.artifact_alias.name}).",
                severity="success",
            )

            callback = self._resolve_callback()
            if callback is None:
                OutputFormatter.log("No configuration script found; skipping transient configuration.")
                self._transition(ProvisionState.DONE)
            else:
                self._run_configuration(callback)

            return self._result()
        finally:
            if self.layout.remove_tree(scratch):
                OutputFormatter.log(f"Removed scratch directory {scratch}.")

    def _resolve_callback(self) -> Optional[ConfigureCallback]:
        if self.configure is not None:
            return self.configure
        return discover_config_script(self.build_dir, self.context.configure.script)

    def _run_configuration(self, callback: ConfigureCallback) -> None:
        service = self.context.service
        self._transition(ProvisionState.CONFIGURING_STARTING)
        self._reclaim_leftover_service()

        port = self.port_allocator()
        try:
            handle: Optional[ServiceHandle] = start_service(
                self.command_builder(self.layout, port),
                port,
                self.layout.service_log,
                cwd=self.build_dir,
                host=service.host,
            )
        except ServiceStartError as exc:
            self._record(exc, severity="warning", suggestion="Check the installed runtime and launcher.")
            self._transition(ProvisionState.SERVICE_START_FAILED)
            OutputFormatter.log(f"{exc.message} Continuing without configuration.", severity="warning")
            return

        write_service_metadata(self.layout.state_dir, handle)
        OutputFormatter.log(f"Started service pid={handle.pid} on port {handle.port}.")

        failure: Optional[ConfigCallbackError] = None
        try:
            self._transition(ProvisionState.CONFIGURING_PROBING)
            if not probe_service(
                handle,
                attempts=service.probe_attempts,
                warmup_seconds=service.warmup_seconds,
                interval_seconds=service.probe_interval_seconds,
                timeout_seconds=service.probe_timeout_seconds,
                transport_retries=service.transport_retries,
            ):
                raise ProbeTimeoutError(
                    f"Service on port {port} did not respond after {service.probe_attempts} attempts."
                )
            OutputFormatter.log(f"Service reachable at {handle.url}.", severity="success")

            data_dir = self.layout.data_dir.resolve()
            overrides = {
                self.context.settings.data_dir_env: str(data_dir),
                "PORT": str(port),
            }
            with scoped_environ(overrides):
                self._transition(ProvisionState.CONFIGURING_ACTIVE)
                try:
                    try:
                        self.layout.ensure_dir(data_dir)
                    except OSError as exc:
                        failure = ConfigCallbackError(f"Data directory {data_dir} could not be created: {exc}")
                    else:
                        failure = self._invoke(callback)
                finally:
                    self._shutdown(handle)
                    handle = None
                    self._transition(ProvisionState.CONFIGURING_STOPPED)
        except ProbeTimeoutError as exc:
            OutputFormatter.print_log_tail(Path(handle.log_path))
            self._record(exc, severity="critical", suggestion=f"Inspect {handle.log_path}.")
            self._transition(ProvisionState.PROBE_FAILED)
            return
        finally:
            if handle is not None:
                self._shutdown(handle)

        if failure is None:
            self.configured = True
            OutputFormatter.log("Configuration applied.", severity="success")
            self._transition(ProvisionState.DONE)
        elif self.context.configure.fail_on_error:
            self._record(failure, severity="error")
            self._transition(ProvisionState.CONFIGURE_FAILED)
        else:
            self._record(failure, severity="warning", suggestion="Set configure.fail_on_error to abort instead.")
            OutputFormatter.log(f"{failure.message} Continuing without configuration.", severity="warning")
            self._transition(ProvisionState.DONE)

    def _invoke(self, callback: ConfigureCallback) -> Optional[ConfigCallbackError]:
        try:
            succeeded = bool(callback())
        except Exception as exc:
            return ConfigCallbackError(f"Configuration callback raised {type(exc).__name__}: {exc}")
        if not succeeded:
            return ConfigCallbackError("Configuration callback reported failure.")
        return None

    def _reclaim_leftover_service(self) -> None:
        state = inspect_service_state(self.layout.state_dir)
        if state.state == ServiceState.RUNNING and state.handle is not None:
            OutputFormatter.log(
                f"Found a service left running by an earlier build (pid={state.handle.pid}); stopping it first.",
                severity="warning",
            )
            self._shutdown(state.handle)
        elif state.state == ServiceState.STALE:
            OutputFormatter.log(f"Discarding stale service metadata: {state.reason}")
            clear_service_metadata(self.layout.state_dir)

    def _shutdown(self, handle: ServiceHandle) -> StopOutcome:
        OutputFormatter.log(f"Stopping service pid={handle.pid}...")
        outcome = stop_service(handle, grace_seconds=self.context.service.grace_seconds)
        clear_service_metadata(self.layout.state_dir)
        if outcome == StopOutcome.FORCED:
            OutputFormatter.log(
                f"Service pid={handle.pid} ignored SIGTERM for {self.context.service.grace_seconds}s; killed.",
                severity="warning",
            )
        else:
            OutputFormatter.log(f"Service pid={handle.pid} stopped ({outcome.value}).")
        return outcome

    def _transition(self, target: ProvisionState) -> None:
        previous = self.state
        self.state = transition_provision_state(previous, target)
        if self.on_transition is not None:
            self.on_transition(ProvisionLifecycleEvent(previous=previous, current=target))

    def _record(self, exc: StagehandError, severity: str, suggestion: Optional[str] = None) -> None:
        self.diagnostics.append(exc.to_diagnostic(severity=severity, suggestion=suggestion))

    def _fail(self, state: ProvisionState, exc: StagehandError) -> ProvisionResult:
        OutputFormatter.log(exc.message, severity="critical")
        self._record(exc, severity="critical")
        self._transition(state)
        return self._result()

    def _result(self) -> ProvisionResult:
        return ProvisionResult(
            state=self.state,
            exit_code=exit_code_for(self.state),
            configured=self.configured,
            artifact_path=str(self.artifact_path) if self.artifact_path is not None else None,
            diagnostics=list(self.diagnostics),
        )
