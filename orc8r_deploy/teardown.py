"""Teardown — remove every release, namespace and local artefact of a deployment.

The inverse of a convergence pass. Not part of the convergence logic: it
only calls helm/kubectl and deletes files.
"""

from __future__ import annotations

import shutil
import time
from pathlib import Path
from typing import Callable

from orc8r_deploy.common import log, run_cmd
from orc8r_deploy.config import Config
from orc8r_deploy.helm import Helm

K3S_UNINSTALL = "/usr/local/bin/k3s-uninstall.sh"
ABORT_WINDOW_SECONDS = 5


def releases(cfg: Config) -> list[tuple[str, str]]:
    return [
        (cfg.release_name, cfg.namespace),
        ("orc8r-postgres", cfg.db_namespace),
        ("nms-mysql", cfg.db_namespace),
        ("cert-manager", cfg.cert_manager_namespace),
    ]


def run_teardown(
    cfg: Config,
    helm: Helm,
    *,
    assume_yes: bool = False,
    purge_host: bool = False,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    if not assume_yes:
        log.warning(
            "⚠ This will uninstall all Magma components%s. "
            "Press Ctrl+C to cancel, or wait %d seconds to proceed...",
            " and remove k3s" if purge_host else "",
            ABORT_WINDOW_SECONDS,
        )
        sleep(ABORT_WINDOW_SECONDS)

    log.info("=== Uninstalling Helm releases ===")
    for release, namespace in releases(cfg):
        helm.uninstall(release, namespace)
    log.info("")

    log.info("=== Deleting namespaces ===")
    kube_env = {"KUBECONFIG": cfg.kubeconfig}
    for namespace in (cfg.namespace, cfg.db_namespace, cfg.cert_manager_namespace):
        run_cmd(
            ["kubectl", "delete", "namespace", namespace, "--ignore-not-found"],
            check=False, env=kube_env,
        )
        log.info("  ✓ namespace/%s", namespace)
    log.info("")

    if purge_host:
        log.info("=== Uninstalling k3s ===")
        if Path(K3S_UNINSTALL).exists():
            run_cmd([K3S_UNINSTALL], check=False, capture=False)
        else:
            log.info("  k3s not found or already uninstalled")
        Path(cfg.kubeconfig).unlink(missing_ok=True)
        log.info("")

    log.info("=== Removing local state ===")
    cfg.credentials_file.unlink(missing_ok=True)
    for path in (cfg.values_file, *(cfg.store_values_file(r) for r, _ in releases(cfg)[1:3])):
        path.unlink(missing_ok=True)
    if Path(cfg.magma_dir).exists():
        shutil.rmtree(cfg.magma_dir)
    log.info("  ✓ %s cleaned", cfg.work_dir)
    log.info("")
    log.info("✓ Reset complete")
