"""
Common utilities for the convergence steps.

Provides logging setup, subprocess execution, SSM helpers, and the step
runner that times every step and writes its status to a JSON file.

Usage from a step:
    from orc8r_deploy.common import StepRunner, run_cmd, log
"""

from __future__ import annotations

import json
import logging
import os
import subprocess
import sys
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from orc8r_deploy.errors import DeployError, FatalStepError

log = logging.getLogger("orc8r-deploy")


# =============================================================================
# Logging
# =============================================================================

def configure_logging(verbose: bool = False) -> None:
    """Plain message lines on stdout; -v switches to DEBUG."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        stream=sys.stdout,
        force=True,
    )
    # kubernetes/urllib3 are chatty at DEBUG
    for noisy in ("kubernetes", "urllib3", "botocore", "boto3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


# =============================================================================
# Command Execution
# =============================================================================

@dataclass
class CmdResult:
    """Result of a subprocess execution."""
    returncode: int
    stdout: str
    stderr: str
    command: str
    duration_seconds: float

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def run_cmd(
    cmd: Union[list[str], str],
    *,
    shell: bool = False,
    check: bool = True,
    timeout: int = 900,
    env: Optional[dict] = None,
    capture: bool = True,
) -> CmdResult:
    """
    Execute a command with logging and timing.

    Args:
        cmd: Command as list of args or string (if shell=True).
        shell: Run through shell interpreter.
        check: Raise on non-zero exit code.
        timeout: Seconds before killing the process.
        env: Additional environment variables (merged with os.environ).
        capture: Capture stdout/stderr (False to stream live).

    Raises:
        subprocess.CalledProcessError: If check=True and command fails.
    """
    cmd_str = cmd if isinstance(cmd, str) else " ".join(cmd)
    log.debug("  $ %s", cmd_str)

    merged_env = {**os.environ, **(env or {})}
    start = time.monotonic()

    try:
        result = subprocess.run(
            cmd,
            shell=shell,
            capture_output=capture,
            text=True,
            timeout=timeout,
            env=merged_env,
        )
    except subprocess.TimeoutExpired:
        log.error("  ✗ Command timed out after %ds: %s", timeout, cmd_str)
        raise

    cmd_result = CmdResult(
        returncode=result.returncode,
        stdout=result.stdout if capture else "",
        stderr=result.stderr if capture else "",
        command=cmd_str,
        duration_seconds=round(time.monotonic() - start, 2),
    )

    if result.returncode != 0:
        log.debug(
            "  command failed (exit %d, %.1fs): %s",
            result.returncode, cmd_result.duration_seconds,
            cmd_result.stderr[:500],
        )
        if check:
            raise subprocess.CalledProcessError(
                result.returncode, cmd,
                output=result.stdout, stderr=result.stderr,
            )

    return cmd_result


# =============================================================================
# SSM Parameter Store Helpers
# =============================================================================

def _ssm_client(region: str):
    import boto3
    return boto3.client("ssm", region_name=region)


def ssm_get(name: str, *, region: str, decrypt: bool = True) -> Optional[str]:
    """Get an SSM parameter value. Returns None if not found."""
    from botocore.exceptions import ClientError

    try:
        resp = _ssm_client(region).get_parameter(Name=name, WithDecryption=decrypt)
    except ClientError as exc:
        if exc.response["Error"]["Code"] == "ParameterNotFound":
            return None
        raise
    return resp["Parameter"]["Value"]


def ssm_put(name: str, value: str, *, region: str, param_type: str = "String") -> None:
    """Write an SSM parameter (creates or overwrites)."""
    _ssm_client(region).put_parameter(
        Name=name,
        Value=value,
        Type=param_type,
        Overwrite=True,
    )


# =============================================================================
# Step Status Reporting
# =============================================================================

@dataclass
class StepStatus:
    """Status of a single convergence step."""
    step_name: str
    status: str  # "running", "success", "failed"
    started_at: str = ""
    completed_at: str = ""
    duration_seconds: float = 0.0
    error: str = ""
    details: dict = field(default_factory=dict)


def write_status(status_file: Path, statuses: list[StepStatus]) -> None:
    """Write step statuses to the status file (JSON)."""
    data = {
        "updated_at": datetime.now(timezone.utc).isoformat(),
        "steps": [asdict(s) for s in statuses],
    }
    status_file.parent.mkdir(parents=True, exist_ok=True)
    status_file.write_text(json.dumps(data, indent=2))


# =============================================================================
# Step Runner
# =============================================================================

class StepRunner:
    """
    Context manager for running a convergence step with timing and status reporting.

    Usage:
        with StepRunner("install-stores", journal) as step:
            # ... step logic ...
            step.details["orc8r-postgres"] = "skipped"

        # On success: step.status = "success"
        # On exception: step.status = "failed", re-raised as FatalStepError
    """

    def __init__(self, step_name: str, journal: Optional["StepJournal"] = None):
        self.step_name = step_name
        self.journal = journal
        self._status = StepStatus(step_name=step_name, status="running")
        self._start_time = 0.0
        self.details: dict = {}

    def __enter__(self):
        log.info("=== %s ===", self.step_name)
        self._status.started_at = datetime.now(timezone.utc).isoformat()
        self._start_time = time.monotonic()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration = time.monotonic() - self._start_time
        self._status.duration_seconds = round(duration, 2)
        self._status.completed_at = datetime.now(timezone.utc).isoformat()
        self._status.details = self.details

        if exc_type is None:
            self._status.status = "success"
            log.info("✓ %s (%.1fs)", self.step_name, duration)
            log.info("")
            self._record()
            return False

        self._status.status = "failed"
        self._status.error = str(exc_val)
        log.error("✗ %s FAILED after %.1fs: %s", self.step_name, duration, exc_val)
        self._record()

        if isinstance(exc_val, FatalStepError) or not isinstance(exc_val, Exception):
            return False
        if isinstance(exc_val, (DeployError, subprocess.CalledProcessError, OSError)):
            raise FatalStepError(self.step_name, str(exc_val)) from exc_val
        return False  # Unexpected errors propagate untouched

    def _record(self) -> None:
        if self.journal is not None:
            self.journal.record(self._status)

    @property
    def status(self) -> StepStatus:
        return self._status


class StepJournal:
    """Accumulates step statuses; persists them and optionally mirrors to SSM."""

    def __init__(self, status_file: Path, *, ssm_prefix: str = "", region: str = ""):
        self.status_file = status_file
        self.ssm_prefix = ssm_prefix
        self.region = region
        self.statuses: list[StepStatus] = []

    def record(self, status: StepStatus) -> None:
        self.statuses.append(status)
        write_status(self.status_file, self.statuses)

        if not self.ssm_prefix:
            return
        # Publish progress to SSM for remote monitoring
        try:
            ssm_put(
                f"{self.ssm_prefix}/deploy/step-status",
                json.dumps({
                    "step": status.step_name,
                    "index": len(self.statuses),
                    "status": status.status,
                    "duration": status.duration_seconds,
                }),
                region=self.region,
            )
        except Exception as exc:
            log.warning("  ⚠ SSM status publish failed: %s", exc)
