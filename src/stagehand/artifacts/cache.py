from __future__ import annotations

import shutil
import time
from pathlib import Path, PurePosixPath
from typing import Optional
from urllib.parse import urlparse

import httpx

from stagehand.cli.formatter import OutputFormatter
from stagehand.core.models import DEFAULT_ARTIFACT_URL_TEMPLATE
from stagehand.utils.diagnostics import DownloadError

TRANSIENT_STATUS_CODES = {408, 429}


class _TransientDownloadFailure(Exception):
    """One download attempt failed in a way worth retrying."""


class ArtifactCache:
    """Resolves versioned artifact archives into a local cache directory.

    A cache hit is decided by file presence alone. Downloads are streamed to a
    ``.part`` sibling and only renamed onto the cache path once the body is
    complete, so an interrupted download never leaves a file that passes the
    presence check.
    """

    def __init__(
        self,
        url_template: str = DEFAULT_ARTIFACT_URL_TEMPLATE,
        artifact_name: str = "webapp",
        attempts: int = 3,
        retry_delay_seconds: float = 1.0,
        timeout_seconds: float = 60.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.url_template = url_template
        self.artifact_name = artifact_name
        self.attempts = max(1, attempts)
        self.retry_delay_seconds = retry_delay_seconds
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    def download_url(self, version: str) -> str:
        return self.url_template.format(version=version)

    def cache_path(self, version: str, cache_dir: Path) -> Path:
        """Return the deterministic cache file path for a version."""
        file_name = PurePosixPath(urlparse(self.download_url(version)).path).name
        if not file_name:
            file_name = f"{self.artifact_name}-{version}.archive"
        return cache_dir / file_name

    def scratch_dir(self, version: str, cache_dir: Path) -> Path:
        """Return the per-version directory an archive is unpacked into."""
        return cache_dir / f"{self.artifact_name}-{version}"

    def resolve(self, version: str, cache_dir: Path) -> Path:
        """Return the cached archive for version, downloading it when absent."""
        path = self.cache_path(version, cache_dir)
        if path.exists():
            OutputFormatter.log(f"Using cached artifact {path.name}.")
            return path

        url = self.download_url(version)
        cache_dir.mkdir(parents=True, exist_ok=True)
        partial = path.with_name(path.name + ".part")

        OutputFormatter.log(f"Downloading artifact {version} from {url}...")
        last_error = "no attempt made"
        with httpx.Client(
            transport=self.transport,
            timeout=self.timeout_seconds,
            follow_redirects=True,
        ) as client:
            for attempt in range(1, self.attempts + 1):
                try:
                    self._download(client, url, partial)
                except _TransientDownloadFailure as exc:
                    last_error = str(exc)
                except httpx.HTTPError as exc:
                    last_error = f"{type(exc).__name__}: {exc}"
                except OSError as exc:
                    partial.unlink(missing_ok=True)
                    raise DownloadError(f"Could not write artifact download to {partial}: {exc}") from exc
                except BaseException:
                    partial.unlink(missing_ok=True)
                    raise
                else:
                    partial.replace(path)
                    OutputFormatter.log(f"Downloaded {path.name}.", severity="success")
                    return path

                partial.unlink(missing_ok=True)
                if attempt < self.attempts:
                    OutputFormatter.log(
                        f"Download attempt {attempt}/{self.attempts} failed ({last_error}); retrying...",
                        severity="warning",
                    )
                    time.sleep(self.retry_delay_seconds)

        raise DownloadError(
            f"Failed to download artifact {version} from {url} after {self.attempts} attempts: {last_error}"
        )

    def unpack(self, archive: Path, version: str, cache_dir: Path) -> Path:
        """Unpack archive into a fresh scratch directory and return it."""
        scratch = self.scratch_dir(version, cache_dir)
        if scratch.exists():
            shutil.rmtree(scratch)
        scratch.mkdir(parents=True)

        try:
            shutil.unpack_archive(str(archive), str(scratch))
        except (shutil.ReadError, ValueError, OSError) as exc:
            raise DownloadError(f"Cached archive {archive} could not be unpacked: {exc}") from exc

        return scratch

    def find_artifact(self, scratch: Path, pattern: str = "*.war") -> Path:
        """Return the single artifact of interest inside an unpacked archive."""
        matches = sorted(path for path in scratch.rglob(pattern) if path.is_file())
        if not matches:
            raise DownloadError(f"No file matching '{pattern}' found in unpacked archive {scratch}.")
        return matches[0]

    def _download(self, client: httpx.Client, url: str, destination: Path) -> None:
        with client.stream("GET", url) as response:
            status = response.status_code
            if status >= 500 or status in TRANSIENT_STATUS_CODES:
                raise _TransientDownloadFailure(f"HTTP {status}")
            if status >= 400:
                raise DownloadError(f"Artifact download from {url} was rejected with HTTP {status}.")

            with destination.open("wb") as handle:
                for chunk in response.iter_bytes():
                    handle.write(chunk)
