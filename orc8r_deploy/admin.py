"""Post-Install Configurator: create the NMS admin account.

The in-cluster script only reports free text. It is classified once, here,
into ``AdminBootstrapResult``; nothing downstream looks at the raw output.
Output that matches no known pattern is never taken as success: the script
is re-run with ``bash -x`` for diagnostics and that result is returned.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from kubernetes import client as k8s_client
from kubernetes.stream import stream as k8s_stream

from orc8r_deploy.common import log
from orc8r_deploy.errors import FatalStepError
from orc8r_deploy.prober import POD, ResourceProber

CREATE_ADMIN_SCRIPT = "magmalte/scripts/create_admin_user.sh"
MAGMALTE_SELECTOR = "app.kubernetes.io/component=magmalte"

EXISTS_PATTERNS = tuple(re.compile(p) for p in (
    r"\balready exists\b",
    r"\balready registered\b",
    r"\bmust be unique\b",
    r"\bduplicate entry\b",
))
FAILED_PATTERNS = tuple(re.compile(p) for p in (
    r"\bunsuccessful\b",
    r"\bnot (?:been )?created\b",
    r"\bfail(?:s|ed|ure)?\b",
    r"\berror\b",
    r"\bfalse\b",
    r"\b(?:cannot|could not|unable to)\b",
))
CREATED_PATTERNS = tuple(re.compile(p) for p in (
    r"\buser created\b",
    r"\bcreated (?:admin|user)\b",
    r"\bsuccessfully created\b",
))


class AdminOutcome(str, Enum):
    CREATED = "created"
    ALREADY_EXISTS = "already-exists"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class AdminBootstrapResult:
    outcome: AdminOutcome
    raw_output: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome is not AdminOutcome.UNKNOWN


def classify(output: str) -> AdminBootstrapResult:
    text = (output or "").lower()
    if any(p.search(text) for p in EXISTS_PATTERNS):
        return AdminBootstrapResult(AdminOutcome.ALREADY_EXISTS)
    # Failure wording vetoes any success phrase in the same output
    if any(p.search(text) for p in FAILED_PATTERNS):
        return AdminBootstrapResult(AdminOutcome.UNKNOWN, raw_output=output)
    if any(p.search(text) for p in CREATED_PATTERNS):
        return AdminBootstrapResult(AdminOutcome.CREATED)
    return AdminBootstrapResult(AdminOutcome.UNKNOWN, raw_output=output or "")


ExecFn = Callable[[str, str, list[str]], str]


class PostInstallConfigurator:
    def __init__(
        self,
        core_v1: k8s_client.CoreV1Api,
        prober: ResourceProber,
        namespace: str,
        *,
        exec_fn: Optional[ExecFn] = None,
    ):
        self.core_v1 = core_v1
        self.prober = prober
        self.namespace = namespace
        self._exec = exec_fn or self._stream_exec

    def bootstrap_admin(self, email: str, password: str) -> AdminBootstrapResult:
        pod = self._magmalte_pod()
        command = [CREATE_ADMIN_SCRIPT, email, password]

        log.info("  → Creating NMS admin %s in %s", email, pod)
        result = classify(self._exec(pod, self.namespace, command))
        if result.ok:
            log.info("  ✓ Admin user: %s", result.outcome.value)
            return result

        log.warning("  ⚠ Unrecognised output from %s, re-running with tracing", CREATE_ADMIN_SCRIPT)
        log.debug("  output: %s", result.raw_output)
        diagnostic = classify(self._exec(pod, self.namespace, ["bash", "-x", *command]))
        if diagnostic.ok:
            log.info("  ✓ Admin user: %s (diagnostic run)", diagnostic.outcome.value)
        else:
            log.error("  ✗ Admin bootstrap outcome unknown:\n%s", diagnostic.raw_output)
        return diagnostic

    def _magmalte_pod(self) -> str:
        observed = self.prober.probe(POD, self.namespace, MAGMALTE_SELECTOR)
        if not observed.healthy:
            raise FatalStepError("admin-bootstrap", f"magmalte pod is {observed.describe()}")
        return observed.pod_name

    def _stream_exec(self, pod: str, namespace: str, command: list[str]) -> str:
        return k8s_stream(
            self.core_v1.connect_get_namespaced_pod_exec,
            pod,
            namespace,
            command=command,
            stderr=True,
            stdin=False,
            stdout=True,
            tty=False,
        )
