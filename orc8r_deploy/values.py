"""Rendered documents: helm values files and the metricsd configuration.

All of them are regenerated on every run from the current Vault state.
"""

from __future__ import annotations

import os
from pathlib import Path

import yaml

from orc8r_deploy.synchronizer import CERTS_SECRET, CONFIGS_SECRET, ENVDIR_SECRET

NMS_NGINX_IMAGE = {
    "repository": "bitnami/nginx",
    "tag": "1.25.3-debian-11-r13",
    "pullPolicy": "IfNotPresent",
}


def render_app_values(
    *,
    domain: str,
    service_type: str,
    mysql_host: str,
    mysql_password: str,
    mysql_db: str = "nms",
    mysql_user: str = "nms",
) -> dict:
    """Values for the orc8r umbrella chart.

    Secrets are created outside of helm (``secrets.create: false``) and
    referenced by name.
    """
    return {
        "domain": domain,
        "proxy": {"controller": {"service": {"type": service_type}}},
        "nginx": {"spec": {"hostname": domain}},
        "nms": {
            "magmalte": {
                "manifests": {"secrets": True},
                "env": {
                    "api_host": domain,
                    "mysql_host": mysql_host,
                    "mysql_db": mysql_db,
                    "mysql_user": mysql_user,
                    "mysql_pass": mysql_password,
                },
            },
            "nginx": {
                "env": {"NMS_USE_SSL": False},
                "image": dict(NMS_NGINX_IMAGE),
            },
        },
        "secrets": {
            "create": False,
            "certs": CERTS_SECRET,
            "envdir": ENVDIR_SECRET,
            "configs": CONFIGS_SECRET,
        },
    }


def render_postgres_values(*, username: str, password: str, database: str) -> dict:
    return {
        "auth": {
            "username": username,
            "password": password,
            "database": database,
        },
    }


def render_mysql_values(*, username: str, password: str, database: str) -> dict:
    return {
        "auth": {
            "username": username,
            "password": password,
            "database": database,
        },
    }


def render_metricsd() -> str:
    # Service names are relative to the orc8r release namespace
    return yaml.safe_dump(
        {
            "profile": "prometheus",
            "prometheusQueryAddress": "http://orc8r-prometheus:9090",
            "prometheusPushAddresses": ["http://orc8r-prometheus-cache:9091/metrics"],
            "alertmanagerApiURL": "http://orc8r-alertmanager:9093/api/v2/alerts",
            "prometheusConfigServiceURL": "http://orc8r-config-manager:9100",
            "alertmanagerConfigServiceURL": "http://orc8r-config-manager:9101",
        },
        sort_keys=False,
    )


def write_values(path: Path, values: dict) -> Path:
    """Write a values document readable only by the owner (it embeds passwords)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w") as fh:
        yaml.safe_dump(values, fh, sort_keys=False, default_flow_style=False)
    os.chmod(path, 0o600)
    return path
