from __future__ import annotations

import json
import os
import signal
import socket
import subprocess
import time
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional, Sequence

import httpx
import psutil
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from stagehand.infrastructure.staging import StagingLayout
from stagehand.utils.diagnostics import ServiceStartError

PROCESS_CREATED_TOLERANCE_SECONDS = 1.0


class ServiceHandle(BaseModel):
    """Identity of one detached service process."""

    model_config = ConfigDict(frozen=True)

    pid: int = Field(gt=0)
    port: int = Field(ge=1, le=65535)
    log_path: str
    started_at: str
    process_created: Optional[float] = None
    host: str = "localhost"

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"


class ServiceState(str, Enum):
    """Classification of persisted service metadata/liveness state."""

    ABSENT = "absent"
    RUNNING = "running"
    STALE = "stale"


class ServiceStateResult(BaseModel):
    """Result payload from inspecting persisted service metadata."""

    state: ServiceState
    handle: ServiceHandle | None = None
    metadata_path: str
    reason: str


class StopOutcome(str, Enum):
    """How a stop request ended."""

    ALREADY_EXITED = "already_exited"
    GRACEFUL = "graceful"
    FORCED = "forced"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def allocate_ephemeral_port(host: str = "127.0.0.1") -> int:
    """Ask the OS for a currently free local port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((host, 0))
        return int(sock.getsockname()[1])


def is_process_alive(pid: int) -> bool:
    """Return True when a process id appears to be alive on this host.

    Exited children of this process are reaped first so they do not linger as
    zombies that still answer signal 0.
    """
    if pid <= 0:
        return False

    try:
        reaped_pid, _ = os.waitpid(pid, os.WNOHANG)
    except ChildProcessError:
        pass
    else:
        if reaped_pid == pid:
            return False

    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False

    return True


def process_created_at(pid: int) -> Optional[float]:
    """Return the OS creation time of pid, or None when it cannot be read."""
    try:
        return psutil.Process(pid).create_time()
    except psutil.Error:
        return None


def owns_process(handle: ServiceHandle) -> bool:
    """Return True when handle.pid still names the process start_service launched.

    Pids are recycled, so liveness alone does not prove identity; the creation
    time recorded at launch has to match the running process.
    """
    if handle.process_created is None:
        return False

    current = process_created_at(handle.pid)
    if current is None:
        return False

    return abs(current - handle.process_created) < PROCESS_CREATED_TOLERANCE_SECONDS


def build_launch_command(layout: StagingLayout, port: int) -> list[str]:
    """Return the command that serves the staged artifact on port."""
    return [
        str(layout.runtime_bin),
        "-jar",
        str(layout.launcher_jar),
        "--port",
        str(port),
        str(layout.artifact_alias),
    ]


def start_service(
    command: Sequence[str],
    port: int,
    log_path: Path,
    cwd: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
    host: str = "localhost",
) -> ServiceHandle:
    """Launch command detached from this process and return its handle without waiting for readiness."""
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with log_path.open("ab") as log_file:
            process = subprocess.Popen(
                list(command),
                stdin=subprocess.DEVNULL,
                stdout=log_file,
                stderr=subprocess.STDOUT,
                cwd=str(cwd) if cwd is not None else None,
                env=dict(env) if env is not None else None,
                start_new_session=True,
            )
    except (OSError, ValueError, subprocess.SubprocessError) as exc:
        raise ServiceStartError(f"Failed to launch service: {exc}") from exc

    if not process.pid or process.pid <= 0:
        raise ServiceStartError("Service launch did not produce a process id.")

    return ServiceHandle(
        pid=process.pid,
        port=port,
        log_path=str(log_path),
        started_at=utc_now_iso(),
        process_created=process_created_at(process.pid),
        host=host,
    )


def probe_service(
    handle: ServiceHandle,
    attempts: int = 10,
    warmup_seconds: float = 5.0,
    interval_seconds: float = 1.0,
    timeout_seconds: float = 5.0,
    transport_retries: int = 3,
    transport: Optional[httpx.BaseTransport] = None,
) -> bool:
    """Return True as soon as the service answers any HTTP request.

    Reachability is the readiness signal, so every status code counts.
    """
    if warmup_seconds > 0:
        time.sleep(warmup_seconds)

    if transport is None:
        transport = httpx.HTTPTransport(retries=transport_retries)

    with httpx.Client(transport=transport, timeout=timeout_seconds) as client:
        for attempt in range(1, attempts + 1):
            try:
                client.get(handle.url)
            except httpx.HTTPError:
                if attempt < attempts and interval_seconds > 0:
                    time.sleep(interval_seconds)
                continue
            return True

    return False


def stop_service(
    handle: ServiceHandle,
    grace_seconds: float = 30.0,
    poll_interval_seconds: float = 0.2,
) -> StopOutcome:
    """Terminate the service: SIGTERM first, SIGKILL only if it outlives the grace window."""
    if not is_process_alive(handle.pid):
        return StopOutcome.ALREADY_EXITED

    try:
        os.kill(handle.pid, signal.SIGTERM)
    except ProcessLookupError:
        return StopOutcome.ALREADY_EXITED

    deadline = time.monotonic() + grace_seconds
    while time.monotonic() < deadline:
        if not is_process_alive(handle.pid):
            return StopOutcome.GRACEFUL
        time.sleep(min(poll_interval_seconds, max(deadline - time.monotonic(), 0)))

    if not is_process_alive(handle.pid):
        return StopOutcome.GRACEFUL

    try:
        os.kill(handle.pid, signal.SIGKILL)
    except ProcessLookupError:
        return StopOutcome.GRACEFUL

    # Reap the killed child when it is ours.
    for _ in range(50):
        if not is_process_alive(handle.pid):
            break
        time.sleep(0.02)

    return StopOutcome.FORCED


def service_metadata_path(state_dir: Path) -> Path:
    """Return the service metadata file path for a state directory."""
    return state_dir / "service.json"


def write_service_metadata(state_dir: Path, handle: ServiceHandle) -> Path:
    """Persist the handle of the live service."""
    metadata_file = service_metadata_path(state_dir)
    metadata_file.parent.mkdir(parents=True, exist_ok=True)
    metadata_file.write_text(handle.model_dump_json(indent=2), encoding="utf-8")
    return metadata_file


def clear_service_metadata(state_dir: Path) -> bool:
    """Remove persisted service metadata; returns whether a file was removed."""
    metadata_file = service_metadata_path(state_dir)
    if metadata_file.exists():
        metadata_file.unlink()
        return True
    return False


def inspect_service_state(state_dir: Path) -> ServiceStateResult:
    """Decide whether persisted metadata names a service this build may stop.

    RUNNING is returned only when the recorded pid is alive and is still the
    process that was launched. A dead pid, unreadable metadata, or a pid that
    now belongs to another process is STALE: the metadata is safe to discard
    and nothing should be signalled.
    """
    metadata_file = service_metadata_path(state_dir)
    if not metadata_file.exists():
        return ServiceStateResult(
            state=ServiceState.ABSENT,
            handle=None,
            metadata_path=str(metadata_file),
            reason="Service metadata file not found.",
        )

    try:
        payload = json.loads(metadata_file.read_text(encoding="utf-8"))
        handle = ServiceHandle.model_validate(payload)
    except (OSError, json.JSONDecodeError, ValidationError) as exc:
        return ServiceStateResult(
            state=ServiceState.STALE,
            handle=None,
            metadata_path=str(metadata_file),
            reason=f"Invalid service metadata payload: {exc}",
        )

    if not is_process_alive(handle.pid):
        return ServiceStateResult(
            state=ServiceState.STALE,
            handle=handle,
            metadata_path=str(metadata_file),
            reason=f"Service process pid={handle.pid} is not alive.",
        )

    if not owns_process(handle):
        return ServiceStateResult(
            state=ServiceState.STALE,
            handle=handle,
            metadata_path=str(metadata_file),
            reason=f"Process pid={handle.pid} is not the recorded service; leaving it alone.",
        )

    return ServiceStateResult(
        state=ServiceState.RUNNING,
        handle=handle,
        metadata_path=str(metadata_file),
        reason="Service process is alive.",
    )
