import pytest

from stagehand.runtime.lifecycle_contracts import (
    TERMINAL_STATES,
    ProvisionState,
    exit_code_for,
    transition_provision_state,
)


def _walk(*states: ProvisionState) -> ProvisionState:
    current = ProvisionState.IDLE
    for state in states:
        current = transition_provision_state(current, state)
    return current


def test_transition_contract_happy_path_without_configuration():
    final = _walk(
        ProvisionState.INSTALLING,
        ProvisionState.RESOLVING,
        ProvisionState.PLACED,
        ProvisionState.DONE,
    )
    assert final == ProvisionState.DONE


def test_transition_contract_full_configuration_path():
    final = _walk(
        ProvisionState.INSTALLING,
        ProvisionState.RESOLVING,
        ProvisionState.PLACED,
        ProvisionState.CONFIGURING_STARTING,
        ProvisionState.CONFIGURING_PROBING,
        ProvisionState.CONFIGURING_ACTIVE,
        ProvisionState.CONFIGURING_STOPPED,
        ProvisionState.DONE,
    )
    assert final == ProvisionState.DONE


def test_transition_contract_rejects_configure_before_probe():
    current = _walk(
        ProvisionState.INSTALLING,
        ProvisionState.RESOLVING,
        ProvisionState.PLACED,
        ProvisionState.CONFIGURING_STARTING,
    )

    with pytest.raises(ValueError):
        transition_provision_state(current, ProvisionState.CONFIGURING_ACTIVE)


def test_transition_contract_rejects_leaving_active_without_stop():
    current = _walk(
        ProvisionState.INSTALLING,
        ProvisionState.RESOLVING,
        ProvisionState.PLACED,
        ProvisionState.CONFIGURING_STARTING,
        ProvisionState.CONFIGURING_PROBING,
        ProvisionState.CONFIGURING_ACTIVE,
    )

    with pytest.raises(ValueError):
        transition_provision_state(current, ProvisionState.DONE)


def test_transition_contract_terminal_states_are_final():
    with pytest.raises(ValueError):
        transition_provision_state(ProvisionState.PROBE_FAILED, ProvisionState.CONFIGURING_STOPPED)
    with pytest.raises(ValueError):
        transition_provision_state(ProvisionState.DONE, ProvisionState.INSTALLING)


def test_exit_codes_for_terminal_states():
    assert exit_code_for(ProvisionState.DONE) == 0
    assert exit_code_for(ProvisionState.SERVICE_START_FAILED) == 0
    assert exit_code_for(ProvisionState.INSTALL_FAILED) == 1
    assert exit_code_for(ProvisionState.DOWNLOAD_FAILED) == 1
    assert exit_code_for(ProvisionState.PROBE_FAILED) == 1
    assert exit_code_for(ProvisionState.CONFIGURE_FAILED) == 1
    assert ProvisionState.CONFIGURING_ACTIVE not in TERMINAL_STATES


def test_exit_code_for_non_terminal_state_raises():
    with pytest.raises(ValueError):
        exit_code_for(ProvisionState.CONFIGURING_PROBING)
