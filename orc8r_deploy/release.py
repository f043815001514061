"""Release Convergence Engine.

Three-way branch on release bookkeeping + live pod count:
    not installed                  → install
    installed, zero running pods   → uninstall, settle, install
    installed, ≥1 running pod      → upgrade in place

A plain "install or upgrade" cannot recover a release record whose workloads
never came up after an interrupted run; that record is torn down first.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, Sequence

from orc8r_deploy.common import log
from orc8r_deploy.config import Config
from orc8r_deploy.errors import FatalStepError, HelmError
from orc8r_deploy.helm import Helm
from orc8r_deploy.prober import ResourceProber
from orc8r_deploy.readiness import Readiness, ReadinessGate
from orc8r_deploy.state import ReleaseAction, ReleaseState, decide_release_action, release_state


@dataclass(frozen=True)
class ReleaseSpec:
    release: str
    chart: str
    namespace: str
    pod_selector: str = ""
    health_selector: str = ""
    version: Optional[str] = None
    set_values: dict[str, str] = field(default_factory=dict)


def application_spec(cfg: Config) -> ReleaseSpec:
    return ReleaseSpec(
        release=cfg.release_name,
        chart=str(cfg.chart_dir),
        namespace=cfg.namespace,
        pod_selector="",
        health_selector="app.kubernetes.io/component=orchestrator",
    )


def cert_manager_spec(cfg: Config) -> ReleaseSpec:
    return ReleaseSpec(
        release="cert-manager",
        chart="jetstack/cert-manager",
        namespace=cfg.cert_manager_namespace,
        pod_selector="app.kubernetes.io/instance=cert-manager",
        health_selector="app.kubernetes.io/instance=cert-manager",
        version=cfg.cert_manager_version,
        set_values={"installCRDs": "true"},
    )


class ReleaseConvergenceEngine:
    def __init__(
        self,
        spec: ReleaseSpec,
        *,
        cfg: Config,
        helm: Helm,
        prober: ResourceProber,
        gate: ReadinessGate,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.spec = spec
        self.cfg = cfg
        self.helm = helm
        self.prober = prober
        self.gate = gate
        self._sleep = sleep

    @property
    def step(self) -> str:
        return f"release/{self.spec.release}"

    def observe(self) -> ReleaseState:
        spec = self.spec
        exists = self.helm.release_exists(spec.release, spec.namespace)
        running = self.prober.count_running(spec.namespace, spec.pod_selector) if exists else 0
        state = release_state(exists, running)
        log.info("  → %s: %s (%d running pod(s))", spec.release, state.value, running)
        return state

    def converge(self, values_files: Sequence[Path] = ()) -> ReleaseAction:
        action = decide_release_action(self.observe())
        log.info("  → %s: %s", self.spec.release, action.value)

        if action is ReleaseAction.UPGRADE:
            self._upgrade(values_files)
            return action

        if action is ReleaseAction.REINSTALL:
            log.warning("  ⚠ %s has a release record but no running pods, reinstalling", self.spec.release)
            try:
                self.helm.uninstall(self.spec.release, self.spec.namespace)
            except HelmError as exc:
                raise FatalStepError(self.step, f"uninstall failed: {exc}") from exc
            delay = self.cfg.settle_policy.delay(1)
            log.info("  → Settling %.0fs after uninstall", delay)
            self._sleep(delay)

        self._install(values_files)
        return action

    def _kwargs(self, values_files: Sequence[Path]) -> dict:
        return {
            "values_files": list(values_files),
            "set_values": dict(self.spec.set_values),
            "version": self.spec.version,
            "timeout": self.cfg.helm_timeout,
        }

    def _install(self, values_files: Sequence[Path]) -> None:
        spec = self.spec
        try:
            self.helm.install(spec.release, spec.chart, spec.namespace, **self._kwargs(values_files))
        except HelmError as exc:
            raise FatalStepError(self.step, str(exc)) from exc
        log.info("  ✓ Release '%s' installed", spec.release)

    def _upgrade(self, values_files: Sequence[Path]) -> None:
        spec = self.spec
        try:
            self.helm.upgrade(spec.release, spec.chart, spec.namespace, **self._kwargs(values_files))
            log.info("  ✓ Release '%s' upgraded", spec.release)
            return
        except HelmError as exc:
            log.warning("  ⚠ helm upgrade %s failed: %s, checking readiness", spec.release, exc)
            error = exc

        readiness = self.gate.await_ready(
            spec.namespace,
            spec.health_selector,
            self.cfg.readiness_attempts,
            self.cfg.readiness_policy,
        )
        if readiness is Readiness.TIMEOUT:
            raise FatalStepError(self.step, f"upgrade failed and workloads not ready: {error}")
        log.warning("  ⚠ %s upgrade error tolerated, workloads still ready", spec.release)
