"""
Host preparation — everything the convergence pass needs from the machine.

- Host resource check (warn only)
- k3s and helm installed when missing
- kubeconfig copied from the k3s admin config
- Magma chart checkout, deprecated API versions patched
- Helm repositories registered, chart dependencies fetched

Idempotent: every action checks before it changes anything.
"""

from __future__ import annotations

import os
import shutil
from pathlib import Path

from orc8r_deploy.common import log, run_cmd
from orc8r_deploy.config import Config
from orc8r_deploy.helm import Helm

# =============================================================================
# Configuration
# =============================================================================

K3S_ADMIN_CONF = "/etc/rancher/k3s/k3s.yaml"
K3S_INSTALL = "curl -sfL https://get.k3s.io | sh -"
HELM_INSTALL = "curl -fsSL https://raw.githubusercontent.com/helm/helm/main/scripts/get-helm-3 | bash"

HELM_REPOS = {
    "jetstack": "https://charts.jetstack.io",
    "bitnami": "https://charts.bitnami.com/bitnami",
}

MIN_CPUS = 2
MIN_MEMORY_GIB = 4
MIN_DISK_GIB = 20

DEPRECATED_APIS = {"policy/v1beta1": "policy/v1"}


# =============================================================================
# Checks
# =============================================================================

def _memory_gib() -> float:
    try:
        for line in Path("/proc/meminfo").read_text().splitlines():
            if line.startswith("MemTotal:"):
                return int(line.split()[1]) / (1024 * 1024)
    except FileNotFoundError:
        pass
    return 0.0


def check_host_resources(path: str = "/") -> list[str]:
    """Returns a list of shortfalls. Non-fatal: k3s may still schedule."""
    warnings = []
    cpus = os.cpu_count() or 0
    if cpus < MIN_CPUS:
        warnings.append(f"{cpus} CPU(s), {MIN_CPUS} recommended")
    memory = _memory_gib()
    if memory and memory < MIN_MEMORY_GIB:
        warnings.append(f"{memory:.1f} GiB memory, {MIN_MEMORY_GIB} GiB recommended")
    free_disk = shutil.disk_usage(path).free / 1024 ** 3
    if free_disk < MIN_DISK_GIB:
        warnings.append(f"{free_disk:.1f} GiB free disk, {MIN_DISK_GIB} GiB recommended")

    for w in warnings:
        log.warning("  ⚠ %s", w)
    if not warnings:
        log.info("  ✓ Host resources: %d CPU, %.1f GiB memory, %.0f GiB free disk", cpus, memory, free_disk)
    return warnings


# =============================================================================
# Logic
# =============================================================================

def ensure_binary(name: str, install_script: str) -> None:
    path = shutil.which(name)
    if path:
        log.info("  ✓ %s -> %s", name, path)
        return
    log.info("  → Installing %s", name)
    run_cmd(install_script, shell=True, capture=False)
    log.info("  ✓ %s installed", name)


def configure_kubeconfig(cfg: Config) -> None:
    """Copy the k3s admin config to the user's kubeconfig with 0600."""
    config_path = Path(cfg.kubeconfig)
    config_path.parent.mkdir(parents=True, exist_ok=True)

    if os.geteuid() == 0:
        shutil.copyfile(K3S_ADMIN_CONF, config_path)
    else:
        run_cmd(["sudo", "cp", K3S_ADMIN_CONF, str(config_path)])
        run_cmd(["sudo", "chown", f"{os.getuid()}:{os.getgid()}", str(config_path)])
    config_path.chmod(0o600)
    os.environ["KUBECONFIG"] = str(config_path)

    # Persist KUBECONFIG across sessions (only once)
    export_line = f"export KUBECONFIG={config_path}"
    bashrc = Path.home() / ".bashrc"
    content = bashrc.read_text() if bashrc.exists() else ""
    if export_line not in content:
        with bashrc.open("a") as f:
            f.write(f"\n{export_line}\n")
    log.info("  ✓ kubeconfig at %s", config_path)


def checkout_charts(cfg: Config) -> None:
    magma_dir = Path(cfg.magma_dir)
    if (magma_dir / ".git").exists():
        log.info("  ✓ Chart checkout present: %s", magma_dir)
        return
    magma_dir.parent.mkdir(parents=True, exist_ok=True)
    run_cmd(["git", "clone", "--depth=1", cfg.magma_repo, str(magma_dir)], capture=False)
    log.info("  ✓ Cloned %s", cfg.magma_repo)


def patch_deprecated_apis(chart_dir: Path) -> int:
    """Rewrite removed apiVersions in chart templates. Returns files patched."""
    patched = 0
    for path in Path(chart_dir).rglob("*"):
        if not path.is_file() or path.suffix not in (".yaml", ".yml", ".tpl"):
            continue
        text = path.read_text()
        new_text = text
        for old, new in DEPRECATED_APIS.items():
            new_text = new_text.replace(old, new)
        if new_text != text:
            path.write_text(new_text)
            patched += 1
    if patched:
        log.info("  ✓ Patched deprecated apiVersions in %d file(s)", patched)
    return patched


def register_helm_repos(helm: Helm) -> None:
    for name, url in HELM_REPOS.items():
        helm.repo_add(name, url)
    helm.repo_update()
    log.info("  ✓ Helm repos: %s", ", ".join(HELM_REPOS))


# =============================================================================
# Main
# =============================================================================

def prepare_host(cfg: Config) -> None:
    check_host_resources()
    ensure_binary("k3s", K3S_INSTALL)
    configure_kubeconfig(cfg)
    ensure_binary("helm", HELM_INSTALL)


def prepare_charts(cfg: Config, helm: Helm) -> None:
    checkout_charts(cfg)
    patch_deprecated_apis(cfg.chart_dir)
    register_helm_repos(helm)
    helm.dependency_update(cfg.chart_dir)
