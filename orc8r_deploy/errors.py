"""Exception taxonomy for the installer.

Only fatal conditions are raised. Resources found unhealthy or inconsistent
are repaired in place and never surface as exceptions.
"""

from __future__ import annotations


class DeployError(Exception):
    """Base class for every error the installer raises on purpose."""


class InvalidTargetError(DeployError):
    """Entry arguments (domain / admin email) are missing or malformed."""


class FatalStepError(DeployError):
    """A step failed with no fallback path. The run stops with exit 1."""

    def __init__(self, step: str, message: str):
        super().__init__(f"{step}: {message}")
        self.step = step
        self.message = message


class HelmError(DeployError):
    """The helm binary exited non-zero."""

    def __init__(self, command: str, returncode: int, stderr: str = ""):
        detail = stderr.strip().splitlines()[-1] if stderr.strip() else "no output"
        super().__init__(f"helm failed (exit {returncode}): {detail}")
        self.command = command
        self.returncode = returncode
        self.stderr = stderr


class LeaseHeldError(DeployError):
    """Another convergence pass holds the advisory lock for this namespace."""

    def __init__(self, holder: str, namespace: str):
        super().__init__(
            f"lease in namespace '{namespace}' is held by '{holder}'; "
            f"another run is in progress"
        )
        self.holder = holder
        self.namespace = namespace
