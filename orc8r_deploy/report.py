"""Final credential report and the read-only diagnostic (status) mode."""

from __future__ import annotations

from typing import Optional

from kubernetes import client as k8s_client

from orc8r_deploy.common import log, utc_now
from orc8r_deploy.config import Config
from orc8r_deploy.helm import Helm
from orc8r_deploy.prober import POD, ResourceProber
from orc8r_deploy.stores import mysql_spec, postgres_spec
from orc8r_deploy.vault import ADMIN_PASSWORD, NMS_DB_PASSWORD, ORC8R_DB_PASSWORD, CredentialVault

REQUIRED_COMPONENTS = ["magmalte", "orchestrator", "obsidian", "service-registry"]


def component_selector(component: str) -> str:
    return f"app.kubernetes.io/component={component}"


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------
def _node_address(core_v1: k8s_client.CoreV1Api) -> Optional[str]:
    nodes = core_v1.list_node().items
    for wanted in ("ExternalIP", "InternalIP"):
        for node in nodes:
            for addr in (node.status.addresses or []) if node.status else []:
                if addr.type == wanted:
                    return addr.address
    return None


def discover_endpoints(core_v1: k8s_client.CoreV1Api, namespace: str, domain: str) -> dict[str, str]:
    """NMS URL plus every externally reachable service port of the namespace."""
    endpoints = {"nms": f"https://{domain}"}
    services = core_v1.list_namespaced_service(namespace=namespace).items
    node_ip: Optional[str] = None

    for svc in services:
        name = svc.metadata.name
        spec = svc.spec
        if spec.type == "LoadBalancer":
            ingress = (svc.status.load_balancer.ingress or []) if svc.status and svc.status.load_balancer else []
            if ingress:
                host = ingress[0].ip or ingress[0].hostname
                for port in spec.ports or []:
                    endpoints[f"{name}:{port.port}"] = f"{host}:{port.port}"
        elif spec.type == "NodePort":
            if node_ip is None:
                node_ip = _node_address(core_v1) or domain
            for port in spec.ports or []:
                if port.node_port:
                    endpoints[f"{name}:{port.port}"] = f"{node_ip}:{port.node_port}"
    return endpoints


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------
def print_credentials_report(vault: CredentialVault) -> None:
    log.info("=== Deployment Summary ===")
    log.info("")
    for name, address in sorted(vault.endpoints.items()):
        log.info("  %-28s %s", name, address)
    log.info("")
    log.info("🌐 Access NMS at:            %s", vault.endpoints.get("nms", f"https://{vault.target.domain}"))
    log.info("👤 Admin Email:              %s", vault.target.admin_email)
    log.info("🔑 Admin Password:           %s", vault.get(ADMIN_PASSWORD))
    log.info("🐘 Orchestrator DB Password: %s", vault.get(ORC8R_DB_PASSWORD))
    log.info("🐬 NMS MySQL Password:       %s", vault.get(NMS_DB_PASSWORD))
    log.info("")
    log.info("Credentials saved to %s", vault.path)
    log.info("✓ Magma Orchestrator + NMS deployment complete (%s)", utc_now())


def run_status(cfg: Config, core_v1: k8s_client.CoreV1Api, helm: Helm) -> bool:
    """Inspect without mutating. Returns True when every tracked workload runs."""
    prober = ResourceProber(core_v1)
    log.info("=== Magma deployment status (%s) ===", utc_now())
    log.info("")

    log.info("=== Helm Releases ===")
    for rel in helm.list_releases():
        log.info("  %-16s %-14s %-10s %s", rel.get("name"), rel.get("namespace"), rel.get("status"), rel.get("chart"))
    log.info("")

    checks = [(s.release, s.namespace, s.selector) for s in (postgres_spec(cfg.db_namespace), mysql_spec(cfg.db_namespace))]
    checks += [(c, cfg.namespace, component_selector(c)) for c in REQUIRED_COMPONENTS]

    log.info("=== Workloads ===")
    all_healthy = True
    for name, namespace, selector in checks:
        observed = prober.probe(POD, namespace, selector)
        marker = "✓" if observed.healthy else "⚠"
        all_healthy = all_healthy and observed.healthy
        log.info("  %s %-18s %s", marker, name, observed.describe())
    log.info("")

    log.info("=== Pods ===")
    for namespace in (cfg.namespace, cfg.db_namespace, cfg.cert_manager_namespace):
        try:
            pods = core_v1.list_namespaced_pod(namespace=namespace).items
        except k8s_client.ApiException as exc:
            if exc.status != 404:
                raise
            pods = []
        running = sum(1 for p in pods if p.status and p.status.phase == "Running")
        log.info("  %-14s %d/%d running", namespace, running, len(pods))
    log.info("")

    if cfg.credentials_file.exists():
        log.info("Credential record: %s", cfg.credentials_file)
    else:
        log.info("No credential record at %s", cfg.credentials_file)
    return all_healthy
