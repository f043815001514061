"""Stateful Store Installer: one instance per backing database.

The store, not the Vault, is authoritative for its own password: whenever a
store is found running (before or after an install) its live credential is
read back from the chart-managed secret, written into the Vault, and every
dependent secret is re-synced from it.

Decision table (see ``state.decide_store_action``):
    absent, no release record           → fresh install
    absent, release record left behind  → uninstall, settle, fresh install
    running + credential readable       → skip install, reconcile credential
    running + credential unreadable     → uninstall, settle, fresh install
    present but not running             → uninstall, settle, fresh install
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from orc8r_deploy.common import log
from orc8r_deploy.config import Config
from orc8r_deploy.errors import FatalStepError, HelmError
from orc8r_deploy.helm import Helm
from orc8r_deploy.prober import POD, ResourceProber
from orc8r_deploy.readiness import Readiness, ReadinessGate
from orc8r_deploy.state import ResourceState, StoreAction, decide_store_action
from orc8r_deploy.synchronizer import SecretSynchronizer
from orc8r_deploy.values import render_mysql_values, render_postgres_values, write_values
from orc8r_deploy.vault import NMS_DB_PASSWORD, ORC8R_DB_PASSWORD, CredentialVault


@dataclass(frozen=True)
class StoreSpec:
    """Everything that differs between the two store instances."""

    release: str
    chart: str
    namespace: str
    credential_key: str
    secret_name: str
    secret_key: str
    service_host: str
    username: str
    database: str
    render_values: Callable[..., dict]

    @property
    def selector(self) -> str:
        return f"app.kubernetes.io/instance={self.release}"


def postgres_spec(db_namespace: str) -> StoreSpec:
    return StoreSpec(
        release="orc8r-postgres",
        chart="bitnami/postgresql",
        namespace=db_namespace,
        credential_key=ORC8R_DB_PASSWORD,
        secret_name="orc8r-postgres-postgresql",
        secret_key="password",
        service_host=f"orc8r-postgres-postgresql.{db_namespace}.svc.cluster.local",
        username="orc8r",
        database="orc8r",
        render_values=render_postgres_values,
    )


def mysql_spec(db_namespace: str) -> StoreSpec:
    return StoreSpec(
        release="nms-mysql",
        chart="bitnami/mysql",
        namespace=db_namespace,
        credential_key=NMS_DB_PASSWORD,
        secret_name="nms-mysql",
        secret_key="mysql-password",
        service_host=f"nms-mysql.{db_namespace}.svc.cluster.local",
        username="nms",
        database="nms",
        render_values=render_mysql_values,
    )


class StatefulStoreInstaller:
    def __init__(
        self,
        spec: StoreSpec,
        *,
        cfg: Config,
        helm: Helm,
        prober: ResourceProber,
        gate: ReadinessGate,
        synchronizer: SecretSynchronizer,
        vault: CredentialVault,
        dependents: Sequence[Callable[[], None]] = (),
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.spec = spec
        self.cfg = cfg
        self.helm = helm
        self.prober = prober
        self.gate = gate
        self.synchronizer = synchronizer
        self.vault = vault
        self.dependents = list(dependents)
        self._sleep = sleep

    @property
    def step(self) -> str:
        return f"store/{self.spec.release}"

    def converge(self) -> StoreAction:
        """Bring the store to Running exactly once. Returns the path taken."""
        spec = self.spec
        observed = self.prober.probe(POD, spec.namespace, spec.selector)
        log.info("  → %s: %s", spec.release, observed.describe())

        live: Optional[str] = None
        recorded = False
        if observed.state is ResourceState.HEALTHY:
            live = self.read_live_credential()
        elif observed.state is ResourceState.ABSENT:
            recorded = self.helm.release_exists(spec.release, spec.namespace)
        action = decide_store_action(observed.state, live is not None, recorded)
        log.info("  → %s: %s", spec.release, action.value)

        if action is StoreAction.SKIP_AND_RECONCILE:
            self.reconcile(live)
            log.info("  ✓ %s already running, install skipped", spec.release)
            return action

        if action is StoreAction.REINSTALL:
            if observed.state is ResourceState.HEALTHY:
                log.warning(
                    "  ⚠ %s is running but secret %s/%s has no '%s', reinstalling",
                    spec.release, spec.namespace, spec.secret_name, spec.secret_key,
                )
            elif observed.state is ResourceState.ABSENT:
                log.warning("  ⚠ %s has a release record but no pods, reinstalling", spec.release)
            else:
                log.warning("  ⚠ %s is %s, reinstalling", spec.release, observed.describe())
            self.uninstall_and_settle()

        self.fresh_install()
        return action

    def read_live_credential(self) -> Optional[str]:
        return self.synchronizer.read_field(
            self.spec.secret_name, self.spec.namespace, self.spec.secret_key
        )

    def reconcile(self, live: str) -> None:
        """Make the Vault and every dependent secret carry ``live``."""
        if self.vault.update(self.spec.credential_key, live):
            log.warning(
                "  ⚠ %s live credential differs from the generated one, record updated",
                self.spec.release,
            )
        for sync_dependent in self.dependents:
            sync_dependent()

    def uninstall_and_settle(self) -> None:
        try:
            self.helm.uninstall(self.spec.release, self.spec.namespace)
        except HelmError as exc:
            raise FatalStepError(self.step, f"uninstall failed: {exc}") from exc
        delay = self.cfg.settle_policy.delay(1)
        log.info("  → Settling %.0fs after uninstall", delay)
        self._sleep(delay)

    def fresh_install(self) -> None:
        spec = self.spec
        values_file = write_values(
            self.cfg.store_values_file(spec.release),
            spec.render_values(
                username=spec.username,
                password=self.vault.get(spec.credential_key),
                database=spec.database,
            ),
        )

        log.info("  → helm install %s (%s)", spec.release, spec.chart)
        try:
            self.helm.install(
                spec.release,
                spec.chart,
                spec.namespace,
                values_files=[values_file],
                timeout=self.cfg.helm_timeout,
            )
        except HelmError as exc:
            raise FatalStepError(self.step, str(exc)) from exc

        readiness = self.gate.await_ready(
            spec.namespace,
            spec.selector,
            self.cfg.readiness_attempts,
            self.cfg.readiness_policy,
        )
        if readiness is Readiness.TIMEOUT:
            raise FatalStepError(self.step, f"{spec.release} did not reach Running")

        live = self.read_live_credential()
        if live is None:
            log.warning(
                "  ⚠ %s: secret %s/%s unreadable after install, keeping recorded credential",
                spec.release, spec.namespace, spec.secret_name,
            )
            for sync_dependent in self.dependents:
                sync_dependent()
            return
        self.reconcile(live)
        log.info("  ✓ %s installed", spec.release)
