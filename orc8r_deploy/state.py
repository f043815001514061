"""Observed states, the actions they map to, and the pure decision functions.

Nothing here talks to the cluster, so every branch of the convergence logic
can be exercised without one.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

RUNNING_PHASE = "Running"


class ResourceState(str, Enum):
    ABSENT = "absent"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


@dataclass(frozen=True)
class ProbeResult:
    """One observation of a resource. Never cached across steps."""

    state: ResourceState
    namespace: str
    selector: str
    pod_name: Optional[str] = None
    phase: Optional[str] = None

    @property
    def healthy(self) -> bool:
        return self.state is ResourceState.HEALTHY

    def describe(self) -> str:
        if self.state is ResourceState.ABSENT:
            return f"absent ({self.namespace}/{self.selector})"
        if self.state is ResourceState.HEALTHY:
            return f"healthy ({self.pod_name})"
        return f"unhealthy ({self.pod_name}: {self.phase})"


class ReleaseState(str, Enum):
    NOT_INSTALLED = "not-installed"
    INSTALLED_UNHEALTHY = "installed-unhealthy"
    INSTALLED_HEALTHY = "installed-healthy"


class StoreAction(str, Enum):
    FRESH_INSTALL = "fresh-install"
    SKIP_AND_RECONCILE = "skip-and-reconcile"
    REINSTALL = "reinstall"


class ReleaseAction(str, Enum):
    INSTALL = "install"
    REINSTALL = "reinstall"
    UPGRADE = "upgrade"


def release_state(release_exists: bool, ready_pods: int) -> ReleaseState:
    """Fold the package manager and pod-count signals into one state."""
    if not release_exists:
        return ReleaseState.NOT_INSTALLED
    if ready_pods <= 0:
        return ReleaseState.INSTALLED_UNHEALTHY
    return ReleaseState.INSTALLED_HEALTHY


def decide_store_action(
    state: ResourceState,
    credential_readable: bool = False,
    release_recorded: bool = False,
) -> StoreAction:
    """
    absent, no release record       → fresh install
    absent, release record left     → reinstall (interrupted run)
    healthy + live credential read  → skip, reconcile the credential
    healthy + credential unreadable → reinstall (inconsistent)
    unhealthy                       → reinstall
    """
    if state is ResourceState.ABSENT:
        return StoreAction.REINSTALL if release_recorded else StoreAction.FRESH_INSTALL
    if state is ResourceState.HEALTHY and credential_readable:
        return StoreAction.SKIP_AND_RECONCILE
    return StoreAction.REINSTALL


def decide_release_action(state: ReleaseState) -> ReleaseAction:
    if state is ReleaseState.NOT_INSTALLED:
        return ReleaseAction.INSTALL
    if state is ReleaseState.INSTALLED_UNHEALTHY:
        return ReleaseAction.REINSTALL
    return ReleaseAction.UPGRADE
