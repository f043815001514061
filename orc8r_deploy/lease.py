"""Advisory run lock backed by a coordination.k8s.io Lease.

Two convergence passes against the same namespace would race on the
delete-then-create secret syncs. The lease is acquired before any mutation
and renewed before every step. It is deleted when the run ends, unless
another run has taken it over by then. A lease left behind by a crashed run
is taken over once it has expired.
"""

from __future__ import annotations

import os
import socket
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from kubernetes import client as k8s_client

from orc8r_deploy.common import log
from orc8r_deploy.errors import LeaseHeldError

LEASE_NAME = "orc8r-deploy-lock"


def default_holder() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


class RunLease:
    def __init__(
        self,
        coordination_v1: k8s_client.CoordinationV1Api,
        namespace: str,
        *,
        duration_seconds: int = 3600,
        holder: Optional[str] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.api = coordination_v1
        self.namespace = namespace
        self.duration_seconds = duration_seconds
        self.holder = holder or default_holder()
        self._clock = clock

    def __enter__(self) -> "RunLease":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False

    def _body(self, now: datetime, resource_version: Optional[str] = None) -> k8s_client.V1Lease:
        return k8s_client.V1Lease(
            metadata=k8s_client.V1ObjectMeta(
                name=LEASE_NAME,
                namespace=self.namespace,
                resource_version=resource_version,
            ),
            spec=k8s_client.V1LeaseSpec(
                holder_identity=self.holder,
                lease_duration_seconds=self.duration_seconds,
                acquire_time=now,
                renew_time=now,
            ),
        )

    def acquire(self) -> None:
        now = self._clock()
        try:
            self.api.create_namespaced_lease(namespace=self.namespace, body=self._body(now))
            log.info("  ✓ Run lease acquired (%s)", self.holder)
            return
        except k8s_client.ApiException as exc:
            if exc.status != 409:
                raise

        current = self.api.read_namespaced_lease(name=LEASE_NAME, namespace=self.namespace)
        spec = current.spec
        holder = spec.holder_identity or ""
        renewed = spec.renew_time or spec.acquire_time
        duration = spec.lease_duration_seconds or self.duration_seconds
        expired = renewed is None or renewed + timedelta(seconds=duration) < now

        if holder != self.holder and not expired:
            raise LeaseHeldError(holder, self.namespace)

        if holder != self.holder:
            log.warning("  ⚠ Taking over expired run lease held by %s", holder)
        self.api.replace_namespaced_lease(
            name=LEASE_NAME,
            namespace=self.namespace,
            body=self._body(now, current.metadata.resource_version),
        )
        log.info("  ✓ Run lease acquired (%s)", self.holder)

    def _read(self) -> Optional[k8s_client.V1Lease]:
        try:
            return self.api.read_namespaced_lease(name=LEASE_NAME, namespace=self.namespace)
        except k8s_client.ApiException as exc:
            if exc.status == 404:
                return None
            raise

    def renew(self) -> None:
        """Push renew_time forward; fails if the lease is no longer ours."""
        current = self._read()
        holder = (current.spec.holder_identity or "") if current is not None else ""
        if holder != self.holder:
            raise LeaseHeldError(holder or "(nobody)", self.namespace)
        current.spec.renew_time = self._clock()
        self.api.replace_namespaced_lease(name=LEASE_NAME, namespace=self.namespace, body=current)
        log.debug("  run lease renewed")

    def release(self) -> None:
        """Delete the lease, but only while this run still holds it."""
        current = self._read()
        if current is None:
            return
        holder = current.spec.holder_identity or ""
        if holder != self.holder:
            log.warning("  ⚠ Run lease now held by %s, leaving it in place", holder)
            return
        try:
            self.api.delete_namespaced_lease(name=LEASE_NAME, namespace=self.namespace)
        except k8s_client.ApiException as exc:
            if exc.status != 404:
                raise
        log.debug("  run lease released")
