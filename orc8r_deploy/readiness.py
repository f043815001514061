"""Readiness Gate: bounded polling until a workload reports Running."""

from __future__ import annotations

import time
from enum import Enum
from typing import Callable

from orc8r_deploy.common import log
from orc8r_deploy.config import BackoffPolicy
from orc8r_deploy.prober import POD, ResourceProber


class Readiness(str, Enum):
    READY = "ready"
    TIMEOUT = "timeout"


class ReadinessGate:
    def __init__(
        self,
        prober: ResourceProber,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.prober = prober
        self._sleep = sleep

    def await_ready(
        self,
        namespace: str,
        selector: str,
        max_attempts: int,
        interval: BackoffPolicy,
    ) -> Readiness:
        """Probe up to ``max_attempts`` times, sleeping between failed attempts.

        Exactly ``max_attempts`` probes are made when the workload never
        becomes ready; no sleep follows the final probe.
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

        for attempt in range(1, max_attempts + 1):
            result = self.prober.probe(POD, namespace, selector)
            if result.healthy:
                log.info("  ✓ %s ready (%s, attempt %d)", selector, result.pod_name, attempt)
                return Readiness.READY
            if attempt == max_attempts:
                break
            delay = interval.delay(attempt)
            log.info(
                "  → Waiting for %s: %s (attempt %d/%d, next in %.0fs)",
                selector, result.describe(), attempt, max_attempts, delay,
            )
            self._sleep(delay)

        log.warning("  ⚠ %s not ready after %d attempts", selector, max_attempts)
        return Readiness.TIMEOUT
