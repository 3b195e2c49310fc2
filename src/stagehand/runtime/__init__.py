"""Transient service lifecycle contracts and components."""

from stagehand.runtime.controller import (
	LifecycleController,
	ProvisionLifecycleEvent,
	ScriptCallback,
	discover_config_script,
)
from stagehand.runtime.lifecycle_contracts import ProvisionResult, ProvisionState
from stagehand.runtime.service import (
	ServiceHandle,
	ServiceState,
	ServiceStateResult,
	StopOutcome,
	allocate_ephemeral_port,
	inspect_service_state,
	is_process_alive,
	owns_process,
	probe_service,
	start_service,
	stop_service,
)

__all__ = [
	"LifecycleController",
	"ProvisionLifecycleEvent",
	"ProvisionResult",
	"ProvisionState",
	"ScriptCallback",
	"ServiceHandle",
	"ServiceState",
	"ServiceStateResult",
	"StopOutcome",
	"allocate_ephemeral_port",
	"discover_config_script",
	"inspect_service_state",
	"is_process_alive",
	"owns_process",
	"probe_service",
	"start_service",
	"stop_service",
]
