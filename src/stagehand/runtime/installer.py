from __future__ import annotations

import os
import shlex
import subprocess
from typing import Optional, Protocol

from stagehand.cli.formatter import OutputFormatter
from stagehand.core.models import StagehandSettings
from stagehand.infrastructure.staging import StagingLayout
from stagehand.utils.diagnostics import InstallError


class RuntimeInstaller(Protocol):
    """Installs the language runtime and process launcher into a staging layout."""

    def install(self, layout: StagingLayout, settings: StagehandSettings) -> None:
        ...


class CommandRuntimeInstaller:
    """Runs an external installer command, then checks that its output landed in the layout.

    Without a command the runtime is expected to be staged already, and only
    the check runs.
    """

    def __init__(self, command: Optional[str] = None) -> None:
        self.command = command

    def install(self, layout: StagingLayout, settings: StagehandSettings) -> None:
        if self.command:
            self._run_command(layout, settings)

        missing = [path for path in (layout.runtime_bin, layout.launcher_jar) if not path.exists()]
        if missing:
            names = ", ".join(str(path) for path in missing)
            raise InstallError(f"Runtime installation incomplete; missing: {names}")

    def _run_command(self, layout: StagingLayout, settings: StagehandSettings) -> None:
        env = os.environ.copy()
        env["STAGEHAND_RUNTIME_VERSION"] = settings.runtime_version
        env["STAGEHAND_LAUNCHER_VERSION"] = settings.launcher_version
        env["STAGEHAND_BUILD_DIR"] = str(layout.build_dir)

        OutputFormatter.log(
            f"Installing runtime {settings.runtime_version} with launcher {settings.launcher_version}..."
        )
        try:
            subprocess.run(
                shlex.split(self.command),
                cwd=str(layout.build_dir),
                env=env,
                check=True,
            )
        except subprocess.CalledProcessError as exc:
            raise InstallError(f"Runtime installer exited with status {exc.returncode}.") from exc
        except OSError as exc:
            raise InstallError(f"Runtime installer could not be executed: {exc}") from exc
