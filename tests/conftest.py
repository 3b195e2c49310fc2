import io
import sys
import zipfile
from pathlib import Path

import pytest

# Ensure src/ is in the python path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from stagehand.core.context import ProvisionContext


def make_war_zip(war_name: str = "webapp.war", payload: bytes = b"WAR-CONTENT") -> bytes:
    """Build an in-memory zip archive holding a single war file under a nested directory."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr(f"dist/{war_name}", payload)
        archive.writestr("dist/README.txt", "release notes")
    return buffer.getvalue()


@pytest.fixture
def build_dir(tmp_path):
    """
    Returns a temporary directory to act as the staging BUILD_DIR.
    """
    path = tmp_path / "build"
    path.mkdir()
    return path


@pytest.fixture
def cache_dir(tmp_path):
    """
    Returns a temporary directory to act as the persistent CACHE_DIR.
    """
    path = tmp_path / "cache"
    path.mkdir()
    return path


@pytest.fixture
def fast_context():
    """
    A provisioning context with every wait shortened so lifecycle tests run quickly.
    """
    return ProvisionContext(
        config_dict={
            "stagehand": {"artifact_url_template": "https://artifacts.test/webapp/{version}/webapp-{version}.zip"},
            "download": {"retry_delay_seconds": 0},
            "service": {
                "host": "127.0.0.1",
                "warmup_seconds": 0,
                "probe_interval_seconds": 0,
                "probe_timeout_seconds": 0.5,
                "transport_retries": 0,
                "grace_seconds": 2,
            },
        }
    )
