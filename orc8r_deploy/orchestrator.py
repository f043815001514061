"""
Convergence pass — runs every step in dependency order.

    host/charts → vault → pki → lease → secrets → cert-manager
      → store/orc8r-postgres, store/nms-mysql (feed back into vault + envdir secret)
      → values → release/orc8r → readiness → admin-bootstrap → report

Each step runs inside a StepRunner: start/success/failure is logged and the
JSON status file is rewritten. Any FatalStepError stops the pass.
Re-running the pass is always safe and converges on the same resource set.
"""

from __future__ import annotations

import os
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from kubernetes import client as k8s_client
from kubernetes import config as k8s_config

from orc8r_deploy import host
from orc8r_deploy.admin import ExecFn, PostInstallConfigurator
from orc8r_deploy.common import StepJournal, StepRunner, log
from orc8r_deploy.config import Config, DeploymentTarget
from orc8r_deploy.errors import FatalStepError
from orc8r_deploy.helm import Helm
from orc8r_deploy.lease import RunLease
from orc8r_deploy.pki import PkiMaterialSet, build_pki, build_store_tls
from orc8r_deploy.prober import ResourceProber
from orc8r_deploy.readiness import Readiness, ReadinessGate
from orc8r_deploy.release import ReleaseConvergenceEngine, application_spec, cert_manager_spec
from orc8r_deploy.report import REQUIRED_COMPONENTS, component_selector, discover_endpoints, print_credentials_report
from orc8r_deploy.stores import StatefulStoreInstaller, mysql_spec, postgres_spec
from orc8r_deploy.synchronizer import (
    CERTS_SECRET,
    CONFIGS_SECRET,
    DB_TLS_SECRET,
    ENVDIR_SECRET,
    LEGACY_CONFIGS_SECRET,
    SecretSynchronizer,
    envdir_fields,
)
from orc8r_deploy.values import render_app_values, render_metricsd, write_values
from orc8r_deploy.vault import ADMIN_PASSWORD, NMS_DB_PASSWORD, ORC8R_DB_PASSWORD, CredentialVault


@dataclass
class DeployContext:
    """State threaded through every step, passed by reference.

    Written only by:
        vault       by the vault step; fields updated by the store installers
        pki         by the pki step
        results     by each step, under its own name
    Every other attribute is read-only after construction.
    """

    cfg: Config
    target: DeploymentTarget
    core_v1: k8s_client.CoreV1Api
    coordination_v1: k8s_client.CoordinationV1Api
    helm: Helm
    sleep: Callable[[float], None] = time.sleep
    exec_fn: Optional[ExecFn] = None

    vault: Optional[CredentialVault] = None
    pki: Optional[PkiMaterialSet] = None
    results: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.prober = ResourceProber(self.core_v1)
        self.gate = ReadinessGate(self.prober, sleep=self.sleep)
        self.synchronizer = SecretSynchronizer(self.core_v1)


# =============================================================================
# Steps
# =============================================================================

def step_vault(ctx: DeployContext) -> None:
    ctx.vault = CredentialVault.load_or_create(
        ctx.cfg.credentials_file,
        ctx.target,
        ssm_prefix=ctx.cfg.ssm_prefix,
        region=ctx.cfg.aws_region,
    )


def step_pki(ctx: DeployContext) -> None:
    ctx.pki = build_pki(ctx.target.domain)
    log.info("  ✓ %d PKI files generated", len(ctx.pki.files()))


def sync_envdir(ctx: DeployContext) -> None:
    """Re-sync the one secret that embeds the orc8r store password."""
    ctx.synchronizer.sync(
        ENVDIR_SECRET,
        ctx.cfg.namespace,
        envdir_fields(
            ctx.vault.get(ORC8R_DB_PASSWORD),
            postgres_spec(ctx.cfg.db_namespace).service_host,
        ),
    )


def step_secrets(ctx: DeployContext) -> None:
    ns = ctx.cfg.namespace
    sync = ctx.synchronizer.sync

    sync(CERTS_SECRET, ns, ctx.pki.files())
    sync_envdir(ctx)
    sync(DB_TLS_SECRET, ns, build_store_tls(ctx.pki, ctx.cfg.db_namespace))
    sync(CONFIGS_SECRET, ns, {"metricsd.yml": render_metricsd().encode()})
    if ctx.synchronizer.delete(LEGACY_CONFIGS_SECRET, ns):
        log.info("  ✓ Removed legacy secret %s", LEGACY_CONFIGS_SECRET)


def _engine(ctx: DeployContext, spec) -> ReleaseConvergenceEngine:
    return ReleaseConvergenceEngine(
        spec, cfg=ctx.cfg, helm=ctx.helm, prober=ctx.prober, gate=ctx.gate, sleep=ctx.sleep,
    )


def step_cert_manager(ctx: DeployContext) -> None:
    action = _engine(ctx, cert_manager_spec(ctx.cfg)).converge()
    ctx.results["cert-manager"] = action.value


def store_installers(ctx: DeployContext) -> list[StatefulStoreInstaller]:
    common = dict(
        cfg=ctx.cfg,
        helm=ctx.helm,
        prober=ctx.prober,
        gate=ctx.gate,
        synchronizer=ctx.synchronizer,
        vault=ctx.vault,
        sleep=ctx.sleep,
    )
    return [
        StatefulStoreInstaller(
            postgres_spec(ctx.cfg.db_namespace),
            dependents=[lambda: sync_envdir(ctx)],
            **common,
        ),
        # NMS password only flows into the values file, rendered after this step
        StatefulStoreInstaller(mysql_spec(ctx.cfg.db_namespace), **common),
    ]


def _converge_store(ctx: DeployContext, installer: StatefulStoreInstaller) -> str:
    action = installer.converge()
    ctx.results[installer.spec.release] = action.value
    return action.value


def step_values(ctx: DeployContext) -> None:
    values = render_app_values(
        domain=ctx.target.domain,
        service_type=ctx.cfg.service_type,
        mysql_host=mysql_spec(ctx.cfg.db_namespace).service_host,
        mysql_password=ctx.vault.get(NMS_DB_PASSWORD),
    )
    write_values(ctx.cfg.values_file, values)
    log.info("  ✓ Values written to %s", ctx.cfg.values_file)


def step_release(ctx: DeployContext) -> None:
    action = _engine(ctx, application_spec(ctx.cfg)).converge([ctx.cfg.values_file])
    ctx.results["release"] = action.value


def step_readiness(ctx: DeployContext) -> None:
    for component in REQUIRED_COMPONENTS:
        readiness = ctx.gate.await_ready(
            ctx.cfg.namespace,
            component_selector(component),
            ctx.cfg.readiness_attempts,
            ctx.cfg.readiness_policy,
        )
        if readiness is Readiness.TIMEOUT:
            raise FatalStepError("readiness", f"{component} did not reach Running")


def step_admin(ctx: DeployContext) -> None:
    configurator = PostInstallConfigurator(
        ctx.core_v1, ctx.prober, ctx.cfg.namespace, exec_fn=ctx.exec_fn,
    )
    result = configurator.bootstrap_admin(ctx.target.admin_email, ctx.vault.get(ADMIN_PASSWORD))
    ctx.results["admin"] = result.outcome.value
    if not result.ok:
        raise FatalStepError("admin-bootstrap", "create_admin_user.sh outcome could not be classified")


def step_report(ctx: DeployContext) -> None:
    ctx.vault.record_endpoints(
        discover_endpoints(ctx.core_v1, ctx.cfg.namespace, ctx.target.domain)
    )
    print_credentials_report(ctx.vault)


# =============================================================================
# Orchestrator
# =============================================================================

def converge(ctx: DeployContext, journal: Optional[StepJournal] = None) -> DeployContext:
    """One full convergence pass against an already reachable cluster."""
    with StepRunner("credential-vault", journal):
        step_vault(ctx)
    with StepRunner("pki", journal):
        step_pki(ctx)

    ctx.synchronizer.ensure_namespace(ctx.cfg.namespace)
    lease = RunLease(
        ctx.coordination_v1, ctx.cfg.namespace, duration_seconds=ctx.cfg.lease_seconds,
    )
    with StepRunner("run-lease", journal):
        lease.acquire()

    steps: list[tuple[str, Callable[[], Optional[str]]]] = [
        ("secrets", lambda: step_secrets(ctx)),
        ("cert-manager", lambda: step_cert_manager(ctx)),
    ]
    steps += [(i.step, lambda i=i: _converge_store(ctx, i)) for i in store_installers(ctx)]
    steps += [
        ("values", lambda: step_values(ctx)),
        ("release/orc8r", lambda: step_release(ctx)),
        ("readiness", lambda: step_readiness(ctx)),
        ("admin-bootstrap", lambda: step_admin(ctx)),
        ("report", lambda: step_report(ctx)),
    ]

    try:
        for name, run_step in steps:
            with StepRunner(name, journal) as step:
                # A run that lost its lease stops before mutating anything else
                lease.renew()
                action = run_step()
                if action is not None:
                    step.details["action"] = action
    finally:
        lease.release()

    return ctx


def build_context(cfg: Config, target: DeploymentTarget) -> DeployContext:
    os.environ["KUBECONFIG"] = cfg.kubeconfig
    k8s_config.load_kube_config(config_file=cfg.kubeconfig)
    return DeployContext(
        cfg=cfg,
        target=target,
        core_v1=k8s_client.CoreV1Api(),
        coordination_v1=k8s_client.CoordinationV1Api(),
        helm=Helm(cfg.kubeconfig),
    )


def run(cfg: Config, target: DeploymentTarget) -> DeployContext:
    """Host preparation, then a convergence pass."""
    journal = StepJournal(cfg.status_file, ssm_prefix=cfg.ssm_prefix, region=cfg.aws_region)
    cfg.print_banner(target)

    if cfg.skip_host_setup:
        log.info("Host setup skipped (--skip-host-setup)")
        log.info("")
    else:
        with StepRunner("host", journal):
            host.prepare_host(cfg)

    helm = Helm(cfg.kubeconfig)
    with StepRunner("charts", journal):
        host.prepare_charts(cfg, helm)

    return converge(build_context(cfg, target), journal)
