"""Secret Synchronizer: materialise Vault and PKI output as cluster secrets.

Every sync deletes the existing secret (absence is fine) and creates it
fresh, so no field of an older payload can survive a value change.
"""

from __future__ import annotations

import base64
from typing import Optional

from kubernetes import client as k8s_client

from orc8r_deploy.common import log

CERTS_SECRET = "orc8r-secrets-certs"
ENVDIR_SECRET = "orc8r-secrets-envdir"
DB_TLS_SECRET = "orc8r-secrets-db-tls"
CONFIGS_SECRET = "orc8r-secrets-configs-orc8r"
LEGACY_CONFIGS_SECRET = "orc8r-secrets-configs"

CONTROLLER_SERVICES = ",".join([
    "ACCESSD",
    "ACTIVATIOND",
    "AGGREGATOR",
    "BOOTSTRAPPER",
    "CERTIFIER",
    "DEVICE",
    "DISPATCHER",
    "EVENTD",
    "LOGS",
    "METRICSD",
    "OBSIDIAN",
    "POLICYDB",
    "SERVICE_REGISTRY",
    "SMSSTORE",
    "STATE",
    "STREAMER",
    "SUBSCRIBERDB",
    "SWAGGER",
    "UPGRADE",
    "CONFIGURATION",
    "METERINGD_RECORDS",
    "DIRECTORYD",
])


class SecretSynchronizer:
    def __init__(self, core_v1: k8s_client.CoreV1Api):
        self.core_v1 = core_v1
        self._namespaces_seen: set[str] = set()

    def sync(self, name: str, namespace: str, fields: dict[str, bytes]) -> None:
        """Delete-if-exists, then create ``name`` with exactly ``fields``."""
        self.ensure_namespace(namespace)
        self.delete(name, namespace)

        secret = k8s_client.V1Secret(
            metadata=k8s_client.V1ObjectMeta(name=name, namespace=namespace),
            type="Opaque",
            data={k: base64.b64encode(v).decode() for k, v in fields.items()},
        )
        self.core_v1.create_namespaced_secret(namespace=namespace, body=secret)
        log.info("  ✓ %s/%s synced (%d keys)", namespace, name, len(fields))

    def delete(self, name: str, namespace: str) -> bool:
        """Idempotent delete. Returns True if a secret was removed."""
        try:
            self.core_v1.delete_namespaced_secret(name=name, namespace=namespace)
        except k8s_client.ApiException as exc:
            if exc.status == 404:
                return False
            raise
        log.debug("  deleted secret %s/%s", namespace, name)
        return True

    def read_field(self, name: str, namespace: str, key: str) -> Optional[str]:
        """Decoded value of one secret field, or None when unreadable/empty."""
        try:
            secret = self.core_v1.read_namespaced_secret(name=name, namespace=namespace)
        except k8s_client.ApiException as exc:
            if exc.status == 404:
                return None
            raise
        raw = (secret.data or {}).get(key)
        if not raw:
            return None
        value = base64.b64decode(raw).decode()
        return value or None

    def ensure_namespace(self, namespace: str) -> None:
        """Create the namespace if it doesn't exist."""
        if namespace in self._namespaces_seen:
            return
        try:
            self.core_v1.read_namespace(name=namespace)
        except k8s_client.ApiException as exc:
            if exc.status != 404:
                raise
            self.core_v1.create_namespace(
                body=k8s_client.V1Namespace(
                    metadata=k8s_client.V1ObjectMeta(name=namespace)
                )
            )
            log.info("  ✓ Namespace '%s' created", namespace)
        self._namespaces_seen.add(namespace)


# ---------------------------------------------------------------------------
# Application secret bundles
# ---------------------------------------------------------------------------
def database_source(password: str, host: str, *, user: str = "orc8r", dbname: str = "orc8r") -> str:
    return f"dbname={dbname} user={user} password={password} host={host}"


def envdir_fields(password: str, host: str) -> dict[str, bytes]:
    return {
        "DATABASE_SOURCE": database_source(password, host).encode(),
        "CONTROLLER_SERVICES": CONTROLLER_SERVICES.encode(),
    }
