"""Resource State Prober: the single query primitive of the installer.

Absence is an ordinary outcome, returned as a value. The prober performs
exactly one API read per call; retrying is the caller's business.
"""

from __future__ import annotations

from kubernetes import client as k8s_client

from orc8r_deploy.state import RUNNING_PHASE, ProbeResult, ResourceState

POD = "pod"
SECRET = "secret"


class ResourceProber:
    """Probes pods (by label selector) and secrets (by name)."""

    def __init__(self, core_v1: k8s_client.CoreV1Api):
        self.core_v1 = core_v1

    def probe(self, kind: str, namespace: str, selector: str) -> ProbeResult:
        if kind == POD:
            return self._probe_pods(namespace, selector)
        if kind == SECRET:
            return self._probe_secret(namespace, selector)
        raise ValueError(f"unsupported resource kind: {kind}")

    def _probe_pods(self, namespace: str, selector: str) -> ProbeResult:
        try:
            pods = self.core_v1.list_namespaced_pod(
                namespace=namespace, label_selector=selector
            ).items
        except k8s_client.ApiException as exc:
            if exc.status == 404:
                return ProbeResult(ResourceState.ABSENT, namespace, selector)
            raise

        if not pods:
            return ProbeResult(ResourceState.ABSENT, namespace, selector)

        pod = pods[0]
        phase = pod.status.phase if pod.status else None
        state = ResourceState.HEALTHY if phase == RUNNING_PHASE else ResourceState.UNHEALTHY
        return ProbeResult(state, namespace, selector, pod_name=pod.metadata.name, phase=phase)

    def _probe_secret(self, namespace: str, name: str) -> ProbeResult:
        # Secrets have no phase: present means healthy
        try:
            self.core_v1.read_namespaced_secret(name=name, namespace=namespace)
        except k8s_client.ApiException as exc:
            if exc.status == 404:
                return ProbeResult(ResourceState.ABSENT, namespace, name)
            raise
        return ProbeResult(ResourceState.HEALTHY, namespace, name)

    def count_running(self, namespace: str, selector: str = "") -> int:
        """Number of pods in the Running phase; a missing namespace counts 0."""
        try:
            pods = self.core_v1.list_namespaced_pod(
                namespace=namespace, label_selector=selector
            ).items
        except k8s_client.ApiException as exc:
            if exc.status == 404:
                return 0
            raise
        return sum(1 for pod in pods if pod.status and pod.status.phase == RUNNING_PHASE)
