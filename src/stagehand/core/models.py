from typing import Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_ARTIFACT_VERSION = "2.21.1"
DEFAULT_ARTIFACT_URL_TEMPLATE = "https://releases.stagehand.dev/webapp/{version}/webapp-{version}.zip"


class StagehandSettings(BaseSettings):
    """
    Provisioning inputs (the 'stagehand' section in stagehand.yaml).

    Every field can also be supplied through a STAGEHAND_-prefixed environment
    variable, e.g. STAGEHAND_ARTIFACT_VERSION.
    """
    model_config = SettingsConfigDict(env_prefix='STAGEHAND_', extra='ignore')

    artifact_version: str = DEFAULT_ARTIFACT_VERSION
    artifact_url_template: str = DEFAULT_ARTIFACT_URL_TEMPLATE
    artifact_name: str = "webapp"
    artifact_pattern: str = "*.war"
    runtime_version: str = "17"
    launcher_version: str = "9.0.83.1"
    installer_command: Optional[str] = None
    data_dir: str = "data"
    data_dir_env: str = "APP_DATA_DIR"


class DownloadSettings(BaseModel):
    """
    Artifact download policy (the 'download' section in stagehand.yaml).
    """
    model_config = ConfigDict(extra='ignore')

    attempts: int = Field(default=3, ge=1)
    retry_delay_seconds: float = Field(default=1.0, ge=0)
    timeout_seconds: float = Field(default=60.0, gt=0)


class ServiceSettings(BaseModel):
    """
    Transient service probe and shutdown policy (the 'service' section in stagehand.yaml).
    """
    model_config = ConfigDict(extra='ignore')

    host: str = "localhost"
    warmup_seconds: float = Field(default=5.0, ge=0)
    probe_attempts: int = Field(default=10, ge=1)
    probe_interval_seconds: float = Field(default=1.0, ge=0)
    probe_timeout_seconds: float = Field(default=5.0, gt=0)
    transport_retries: int = Field(default=3, ge=0)
    grace_seconds: float = Field(default=30.0, ge=0)


class ConfigureSettings(BaseModel):
    """
    Configuration script discovery and failure policy (the 'configure' section in stagehand.yaml).
    """
    model_config = ConfigDict(extra='ignore')

    script: str = "stagehand/configure"
    fail_on_error: bool = False
