"""Run configuration sourced from environment variables.

Environment overrides:
    ORC8R_WORK_DIR        — state directory            (default: ~/.orc8r-deploy)
    KUBECONFIG            — kubeconfig path            (default: ~/.kube/config)
    MAGMA_REPO            — chart source repository    (default: github.com/magma/magma)
    MAGMA_DIR             — local checkout             (default: <work>/magma)
    ORC8R_NAMESPACE       — application namespace      (default: orc8r)
    DB_NAMESPACE          — store namespace            (default: db)
    CERT_MANAGER_VERSION  — cert-manager chart version (default: v1.5.3)
    SERVICE_TYPE          — controller service type    (default: NodePort)
    HELM_TIMEOUT          — helm --wait timeout        (default: 10m)
    READINESS_ATTEMPTS    — readiness probe budget     (default: 60)
    READINESS_INTERVAL    — seconds between probes     (default: 10)
    SETTLE_SECONDS        — wait after uninstall       (default: 15)
    BACKOFF               — constant | exponential     (default: constant)
    SSM_PREFIX            — mirror creds/status to SSM (default: disabled)
    AWS_REGION            — SSM region                 (default: eu-west-1)
    LEASE_SECONDS         — advisory lock duration     (default: 3600)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from orc8r_deploy.common import log, utc_now
from orc8r_deploy.errors import InvalidTargetError


@dataclass(frozen=True)
class DeploymentTarget:
    """Domain + administrator email. Immutable for the run."""

    domain: str
    admin_email: str

    def __post_init__(self) -> None:
        if not self.domain or not self.domain.strip():
            raise InvalidTargetError("domain name is required")
        if not self.admin_email or "@" not in self.admin_email:
            raise InvalidTargetError(f"invalid administrator email: {self.admin_email!r}")


@dataclass(frozen=True)
class BackoffPolicy:
    """Delay schedule for polling and settle waits.

    ``constant`` always waits ``base`` seconds; ``exponential`` waits
    ``base * factor ** (attempt - 1)`` capped at ``maximum``.
    """

    kind: str = "constant"
    base: float = 10.0
    factor: float = 2.0
    maximum: float = 60.0

    def __post_init__(self) -> None:
        if self.kind not in ("constant", "exponential"):
            raise ValueError(f"unknown backoff kind: {self.kind}")

    def delay(self, attempt: int) -> float:
        """Seconds to wait after the given 1-based attempt."""
        if self.kind == "constant":
            return self.base
        return min(self.base * self.factor ** max(attempt - 1, 0), self.maximum)


def _default_work_dir() -> str:
    return os.getenv("ORC8R_WORK_DIR", str(Path.home() / ".orc8r-deploy"))


@dataclass
class Config:
    """Deployment configuration sourced from environment variables."""

    work_dir: str = field(default_factory=_default_work_dir)
    kubeconfig: str = field(
        default_factory=lambda: os.getenv("KUBECONFIG", str(Path.home() / ".kube" / "config"))
    )
    magma_repo: str = field(
        default_factory=lambda: os.getenv("MAGMA_REPO", "https://github.com/magma/magma.git")
    )
    magma_dir: str = field(
        default_factory=lambda: os.getenv("MAGMA_DIR", str(Path(_default_work_dir()) / "magma"))
    )
    namespace: str = field(default_factory=lambda: os.getenv("ORC8R_NAMESPACE", "orc8r"))
    db_namespace: str = field(default_factory=lambda: os.getenv("DB_NAMESPACE", "db"))
    cert_manager_version: str = field(
        default_factory=lambda: os.getenv("CERT_MANAGER_VERSION", "v1.5.3")
    )
    service_type: str = field(default_factory=lambda: os.getenv("SERVICE_TYPE", "NodePort"))
    helm_timeout: str = field(default_factory=lambda: os.getenv("HELM_TIMEOUT", "10m"))
    readiness_attempts: int = field(
        default_factory=lambda: int(os.getenv("READINESS_ATTEMPTS", "60"))
    )
    readiness_interval: float = field(
        default_factory=lambda: float(os.getenv("READINESS_INTERVAL", "10"))
    )
    settle_seconds: float = field(
        default_factory=lambda: float(os.getenv("SETTLE_SECONDS", "15"))
    )
    backoff: str = field(default_factory=lambda: os.getenv("BACKOFF", "constant"))
    ssm_prefix: str = field(default_factory=lambda: os.getenv("SSM_PREFIX", ""))
    aws_region: str = field(default_factory=lambda: os.getenv("AWS_REGION", "eu-west-1"))
    lease_seconds: int = field(default_factory=lambda: int(os.getenv("LEASE_SECONDS", "3600")))

    release_name: str = "orc8r"
    cert_manager_namespace: str = "cert-manager"
    skip_host_setup: bool = False
    dry_run: bool = False
    verbose: bool = False

    @property
    def work_path(self) -> Path:
        return Path(self.work_dir)

    @property
    def credentials_file(self) -> Path:
        return self.work_path / "credentials.json"

    @property
    def status_file(self) -> Path:
        return self.work_path / "deploy-status.json"

    @property
    def chart_root(self) -> Path:
        return Path(self.magma_dir) / "orc8r" / "cloud" / "helm"

    @property
    def chart_dir(self) -> Path:
        return self.chart_root / "orc8r"

    @property
    def values_file(self) -> Path:
        return self.work_path / "orc8r-values.yaml"

    def store_values_file(self, release: str) -> Path:
        return self.work_path / f"{release}-values.yaml"

    @property
    def readiness_policy(self) -> BackoffPolicy:
        return BackoffPolicy(kind=self.backoff, base=self.readiness_interval)

    @property
    def settle_policy(self) -> BackoffPolicy:
        return BackoffPolicy(kind="constant", base=self.settle_seconds)

    def print_banner(self, target: DeploymentTarget) -> None:
        log.info("=== Magma Orchestrator + NMS Deployment ===")
        log.info("Domain:       %s", target.domain)
        log.info("Admin email:  %s", target.admin_email)
        log.info("Namespace:    %s (stores in %s)", self.namespace, self.db_namespace)
        log.info("Work dir:     %s", self.work_dir)
        log.info("Kubeconfig:   %s", self.kubeconfig)
        log.info("Triggered:    %s", utc_now())
        log.info("")

    def print_dry_run(self) -> None:
        log.info("=== DRY RUN (no changes will be made) ===")
        log.info("  magma_dir:          %s (exists: %s)", self.magma_dir, Path(self.magma_dir).exists())
        log.info("  chart_dir:          %s", self.chart_dir)
        log.info("  values_file:        %s", self.values_file)
        log.info("  credentials_file:   %s (exists: %s)", self.credentials_file, self.credentials_file.exists())
        log.info("  cert-manager:       %s", self.cert_manager_version)
        log.info("  service_type:       %s", self.service_type)
        log.info("  readiness:          %d x %ss (%s)", self.readiness_attempts, self.readiness_interval, self.backoff)
        log.info("  settle:             %ss", self.settle_seconds)
        log.info("  ssm_prefix:         %s", self.ssm_prefix or "(none)")
        log.info("  skip_host_setup:    %s", self.skip_host_setup)
