from pathlib import Path
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field, ConfigDict
from stagehand.config.loader import load_config
from stagehand.core.models import StagehandSettings, DownloadSettings, ServiceSettings, ConfigureSettings


CONFIG_FILE_NAME = "stagehand.yaml"


class ProvisionContext(BaseModel):
    """
    The resolved settings for one provisioning run.
    """
    model_config = ConfigDict(extra="forbid")

    # Provisioning Inputs (Maps to 'stagehand' section)
    settings: StagehandSettings = Field(default_factory=StagehandSettings)

    # Download Policy (Maps to 'download' section)
    download: DownloadSettings = Field(default_factory=DownloadSettings)

    # Service Policy (Maps to 'service' section)
    service: ServiceSettings = Field(default_factory=ServiceSettings)

    # Configuration Script Policy (Maps to 'configure' section)
    configure: ConfigureSettings = Field(default_factory=ConfigureSettings)

    def __init__(self, config_dict: Optional[Dict[str, Any]] = None, **data: Any):
        """
        Initialize the context, optionally with a configuration dictionary.
        """
        if config_dict:
            # Seed fields from config_dict if not explicitly provided in data
            if 'settings' not in data:
                data['settings'] = StagehandSettings(**(config_dict.get('stagehand') or {}))
            if 'download' not in data:
                data['download'] = DownloadSettings(**(config_dict.get('download') or {}))
            if 'service' not in data:
                data['service'] = ServiceSettings(**(config_dict.get('service') or {}))
            if 'configure' not in data:
                data['configure'] = ConfigureSettings(**(config_dict.get('configure') or {}))

        super().__init__(**data)

    @classmethod
    def from_build_dir(cls, build_dir: Path, config_path: Optional[Path] = None) -> "ProvisionContext":
        """Load stagehand.yaml from the build directory, or from an explicit path."""
        path = config_path if config_path is not None else build_dir / CONFIG_FILE_NAME
        return cls(config_dict=load_config(path))

    def with_artifact_version(self, version: Optional[str]) -> "ProvisionContext":
        """Return a copy with the artifact version overridden when one is given."""
        if not version:
            return self
        settings = self.settings.model_copy(update={"artifact_version": version})
        return self.model_copy(update={"settings": settings})
