from typing import Optional
from pydantic import BaseModel

class ProvisionDiagnostic(BaseModel):
    """
    Standardized report entry for a provisioning phase that failed or degraded.
    """
    phase: str
    error_code: str
    message: str
    severity: str = "error" # 'error', 'warning', 'critical'
    suggestion: Optional[str] = None

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message} (during {self.phase})"

class StagehandError(Exception):
    """
    Base exception for provisioning failures, carrying the phase that raised it.
    """
    error_code = "ERR_PROVISION"
    phase = "provision"

    def __init__(self, message: str, phase: str = None):
        self.message = message
        if phase is not None:
            self.phase = phase
        super().__init__(message)

    def to_diagnostic(self, severity: str = "error", suggestion: Optional[str] = None) -> ProvisionDiagnostic:
        return ProvisionDiagnostic(
            phase=self.phase,
            error_code=self.error_code,
            message=self.message,
            severity=severity,
            suggestion=suggestion,
        )

class InstallError(StagehandError):
    """The language runtime or launcher could not be installed. Fatal."""
    error_code = "ERR_INSTALL"
    phase = "installing"

class DownloadError(StagehandError):
    """The artifact could not be downloaded or unpacked. Fatal."""
    error_code = "ERR_DOWNLOAD"
    phase = "resolving"

class ServiceStartError(StagehandError):
    """The transient service did not produce a usable process. Recoverable."""
    error_code = "ERR_SERVICE_START"
    phase = "configuring_starting"

class ProbeTimeoutError(StagehandError):
    """The transient service never became reachable. Fatal."""
    error_code = "ERR_PROBE_TIMEOUT"
    phase = "configuring_probing"

class ConfigCallbackError(StagehandError):
    """The configuration callback reported failure or raised."""
    error_code = "ERR_CONFIG_CALLBACK"
    phase = "configuring_active"
