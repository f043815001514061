import pytest

from orc8r_deploy.state import (
    ReleaseAction,
    ReleaseState,
    ResourceState,
    StoreAction,
    decide_release_action,
    decide_store_action,
    release_state,
)


@pytest.mark.parametrize(
    "state, readable, expected",
    [
        (ResourceState.ABSENT, False, StoreAction.FRESH_INSTALL),
        (ResourceState.HEALTHY, True, StoreAction.SKIP_AND_RECONCILE),
        (ResourceState.HEALTHY, False, StoreAction.REINSTALL),
        (ResourceState.UNHEALTHY, False, StoreAction.REINSTALL),
        (ResourceState.UNHEALTHY, True, StoreAction.REINSTALL),
    ],
)
def test_decide_store_action(state, readable, expected):
    assert decide_store_action(state, readable) is expected


def test_release_state_from_signals():
    assert release_state(False, 3) is ReleaseState.NOT_INSTALLED
    assert release_state(True, 0) is ReleaseState.INSTALLED_UNHEALTHY
    assert release_state(True, 1) is ReleaseState.INSTALLED_HEALTHY


def test_decide_release_action():
    assert decide_release_action(ReleaseState.NOT_INSTALLED) is ReleaseAction.INSTALL
    assert decide_release_action(ReleaseState.INSTALLED_UNHEALTHY) is ReleaseAction.REINSTALL
    assert decide_release_action(ReleaseState.INSTALLED_HEALTHY) is ReleaseAction.UPGRADE


def test_absent_store_with_leftover_release_record_is_reinstalled():
    assert decide_store_action(ResourceState.ABSENT, False, True) is StoreAction.REINSTALL
    assert decide_store_action(ResourceState.ABSENT, False, False) is StoreAction.FRESH_INSTALL
    assert decide_store_action(ResourceState.HEALTHY, True, True) is StoreAction.SKIP_AND_RECONCILE
