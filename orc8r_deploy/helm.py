"""Thin wrapper around the helm 3 binary."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Callable, Optional, Sequence

from orc8r_deploy.common import CmdResult, log, run_cmd
from orc8r_deploy.errors import HelmError


class Helm:
    def __init__(self, kubeconfig: str, *, runner: Callable[..., CmdResult] = run_cmd):
        self.kubeconfig = kubeconfig
        self._runner = runner

    def _helm(self, args: list[str], *, check: bool = True, timeout: int = 1200) -> CmdResult:
        cmd = ["helm", *args]
        result = self._runner(
            cmd, check=False, timeout=timeout, env={"KUBECONFIG": self.kubeconfig}
        )
        if check and result.returncode != 0:
            raise HelmError(" ".join(cmd), result.returncode, result.stderr)
        return result

    # ------------------------------------------------------------------
    # Repositories / charts
    # ------------------------------------------------------------------
    def repo_add(self, name: str, url: str) -> None:
        self._helm(["repo", "add", name, url, "--force-update"])

    def repo_update(self) -> None:
        self._helm(["repo", "update"])

    def dependency_update(self, chart_dir: Path) -> None:
        self._helm(["dependency", "update", str(chart_dir)])

    # ------------------------------------------------------------------
    # Releases
    # ------------------------------------------------------------------
    def release_exists(self, release: str, namespace: str) -> bool:
        return self._helm(["status", release, "-n", namespace], check=False).returncode == 0

    def install(self, release: str, chart: str, namespace: str, **kwargs) -> CmdResult:
        return self._helm(["install", *self._release_args(release, chart, namespace, **kwargs)])

    def upgrade(self, release: str, chart: str, namespace: str, *, check: bool = True, **kwargs) -> CmdResult:
        return self._helm(
            ["upgrade", *self._release_args(release, chart, namespace, **kwargs)], check=check
        )

    def uninstall(self, release: str, namespace: str) -> bool:
        """Uninstall if present. Returns True when something was removed."""
        if not self.release_exists(release, namespace):
            log.debug("  release %s/%s not installed", namespace, release)
            return False
        self._helm(["uninstall", release, "-n", namespace, "--wait"])
        log.info("  ✓ Release '%s' uninstalled", release)
        return True

    def list_releases(self, namespace: Optional[str] = None) -> list[dict]:
        args = ["list", "-o", "json"]
        args += ["-n", namespace] if namespace else ["--all-namespaces"]
        result = self._helm(args, check=False)
        if result.returncode != 0 or not result.stdout.strip():
            return []
        return json.loads(result.stdout)

    @staticmethod
    def _release_args(
        release: str,
        chart: str,
        namespace: str,
        *,
        values_files: Sequence[Path] = (),
        set_values: Optional[dict[str, str]] = None,
        version: Optional[str] = None,
        wait: bool = True,
        timeout: str = "10m",
        create_namespace: bool = True,
    ) -> list[str]:
        args = [release, chart, "--namespace", namespace]
        if create_namespace:
            args.append("--create-namespace")
        if version:
            args += ["--version", version]
        for values_file in values_files:
            args += ["-f", str(values_file)]
        for key, value in (set_values or {}).items():
            args += ["--set", f"{key}={value}"]
        if wait:
            args += ["--wait", "--timeout", timeout]
        return args
