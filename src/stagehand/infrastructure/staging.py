import os
import shutil
from pathlib import Path


class StagingLayout:
    """
    File placement inside a build directory.

    Layout:
        .runtime/bin/java          installed runtime
        .runtime/launcher.jar      process launcher
        app/<name>-<version>.war   version-qualified artifact
        app/<name>.war             stable alias pointing at the current version
        .stagehand/                service log and metadata
    """

    def __init__(self, build_dir: Path, artifact_name: str = "webapp", data_dir: str = "data"):
        self.build_dir = build_dir
        self.artifact_name = artifact_name
        self._data_dir = data_dir

    @property
    def runtime_dir(self) -> Path:
        return self.build_dir / ".runtime"

    @property
    def runtime_bin(self) -> Path:
        return self.runtime_dir / "bin" / "java"

    @property
    def launcher_jar(self) -> Path:
        return self.runtime_dir / "launcher.jar"

    @property
    def app_dir(self) -> Path:
        return self.build_dir / "app"

    @property
    def state_dir(self) -> Path:
        return self.build_dir / ".stagehand"

    @property
    def service_log(self) -> Path:
        return self.state_dir / "service.log"

    @property
    def data_dir(self) -> Path:
        return self.build_dir / self._data_dir

    @property
    def artifact_alias(self) -> Path:
        return self.app_dir / f"{self.artifact_name}.war"

    def versioned_artifact(self, version: str) -> Path:
        return self.app_dir / f"{self.artifact_name}-{version}.war"

    def ensure_dir(self, path: Path) -> Path:
        path.mkdir(parents=True, exist_ok=True)
        return path

    def place_artifact(self, source: Path, version: str) -> Path:
        """Move an extracted artifact under its versioned name and repoint the alias at it."""
        self.ensure_dir(self.app_dir)
        target = self.versioned_artifact(version)
        if target.exists() or target.is_symlink():
            target.unlink()
        shutil.move(str(source), str(target))
        self.link_alias(target)
        return target

    def link_alias(self, target: Path) -> Path:
        """(Re)point the stable alias at target using a relative symlink."""
        alias = self.artifact_alias
        if alias.is_symlink() or alias.exists():
            alias.unlink()
        alias.symlink_to(os.path.relpath(target, alias.parent))
        return alias

    def remove_tree(self, path: Path) -> bool:
        """Remove a directory tree; returns whether anything was removed."""
        if not path.exists():
            return False
        shutil.rmtree(path)
        return True
