"""Credential Vault: the local authoritative record of generated secrets.

Values are generated once and persisted to a JSON file readable only by the
owner. A re-run loads the record instead of regenerating it. A store that
already exists is authoritative for its own password, so the store installer
may overwrite a field through :meth:`CredentialVault.update`.
"""

from __future__ import annotations

import json
import os
import secrets
from pathlib import Path
from typing import Optional

from orc8r_deploy.common import log, ssm_put
from orc8r_deploy.config import DeploymentTarget
from orc8r_deploy.errors import FatalStepError

ORC8R_DB_PASSWORD = "orc8r-db-password"
NMS_DB_PASSWORD = "nms-db-password"
ADMIN_PASSWORD = "admin-password"

CREDENTIAL_KEYS = (ORC8R_DB_PASSWORD, NMS_DB_PASSWORD, ADMIN_PASSWORD)


def generate_password() -> str:
    """24 hex characters, same shape as ``openssl rand -hex 12``."""
    return secrets.token_hex(12)


class CredentialVault:
    """Persisted mapping of credential key → secret value."""

    def __init__(
        self,
        path: Path,
        target: DeploymentTarget,
        credentials: dict[str, str],
        endpoints: Optional[dict[str, str]] = None,
        *,
        ssm_prefix: str = "",
        region: str = "",
    ):
        self.path = Path(path)
        self.target = target
        self._credentials = dict(credentials)
        self.endpoints: dict[str, str] = dict(endpoints or {})
        self.ssm_prefix = ssm_prefix
        self.region = region

    @classmethod
    def load_or_create(
        cls,
        path: Path,
        target: DeploymentTarget,
        *,
        ssm_prefix: str = "",
        region: str = "",
    ) -> "CredentialVault":
        """Load the record for ``target`` or generate a fresh one.

        Missing keys in an older record are generated and added. A record
        written for a different domain is refused.
        """
        path = Path(path)
        stored: dict = {}
        if path.exists():
            stored = json.loads(path.read_text())
            if stored.get("domain") != target.domain:
                raise FatalStepError(
                    "credential-vault",
                    f"{path} belongs to domain '{stored.get('domain')}', not "
                    f"'{target.domain}'; tear down or move it first",
                )
            log.info("  ✓ Loaded credential record %s", path)

        credentials = dict(stored.get("credentials", {}))
        generated = [k for k in CREDENTIAL_KEYS if not credentials.get(k)]
        for key in generated:
            credentials[key] = generate_password()

        vault = cls(
            path,
            target,
            credentials,
            stored.get("endpoints"),
            ssm_prefix=ssm_prefix,
            region=region,
        )
        if generated or stored.get("admin_email") != target.admin_email:
            if generated:
                log.info("  ✓ Generated %d credential(s): %s", len(generated), ", ".join(generated))
            vault.save()
        return vault

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------
    def get(self, key: str) -> str:
        return self._credentials[key]

    def update(self, key: str, value: str) -> bool:
        """Overwrite a field. Returns True when the stored value changed."""
        if key not in CREDENTIAL_KEYS:
            raise KeyError(key)
        if not value:
            raise ValueError(f"refusing to store an empty value for {key}")
        if self._credentials.get(key) == value:
            return False
        self._credentials[key] = value
        self.save()
        return True

    def record_endpoints(self, endpoints: dict[str, str]) -> None:
        self.endpoints.update(endpoints)
        self.save()

    def as_dict(self) -> dict:
        return {
            "domain": self.target.domain,
            "admin_email": self.target.admin_email,
            "credentials": dict(self._credentials),
            "endpoints": dict(self.endpoints),
        }

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def save(self) -> None:
        """Rewrite the record atomically with 0600 permissions."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        os.chmod(self.path.parent, 0o700)

        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as fh:
            json.dump(self.as_dict(), fh, indent=2)
        os.chmod(tmp, 0o600)
        os.replace(tmp, self.path)

        if self.ssm_prefix:
            self._publish_to_ssm()

    def _publish_to_ssm(self) -> None:
        for key, value in self._credentials.items():
            ssm_put(
                f"{self.ssm_prefix}/{key}",
                value,
                region=self.region,
                param_type="SecureString",
            )
        log.debug("  credentials mirrored to SSM under %s", self.ssm_prefix)
