from __future__ import annotations

from stagehand.artifacts.cache import ArtifactCache
from stagehand.core.context import ProvisionContext
from stagehand.runtime.controller import LifecycleController
from stagehand.runtime.lifecycle_contracts import ProvisionResult, ProvisionState

__version__ = "0.3.0"

__all__ = [
	"ArtifactCache",
	"LifecycleController",
	"ProvisionContext",
	"ProvisionResult",
	"ProvisionState",
	"__version__",
]
