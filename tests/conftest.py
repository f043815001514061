import base64
from pathlib import Path
from types import SimpleNamespace

import pytest
import yaml
from kubernetes import client as k8s_client

from orc8r_deploy.config import Config, DeploymentTarget
from orc8r_deploy.errors import HelmError


def _not_found():
    return k8s_client.ApiException(status=404, reason="Not Found")


def _conflict():
    return k8s_client.ApiException(status=409, reason="Conflict")


def _matches(labels, selector):
    if not selector:
        return True
    wanted = dict(part.split("=", 1) for part in selector.split(","))
    return all(labels.get(k) == v for k, v in wanted.items())


def make_secret(name, namespace, fields):
    return k8s_client.V1Secret(
        metadata=k8s_client.V1ObjectMeta(name=name, namespace=namespace),
        data={k: base64.b64encode(v.encode()).decode() for k, v in fields.items()},
    )


def secret_fields(secret):
    return {k: base64.b64decode(v).decode() for k, v in (secret.data or {}).items()}


class FakeCoreV1:
    """In-memory stand-in for kubernetes.client.CoreV1Api."""

    def __init__(self):
        self.namespaces = set()
        self.pods = {}
        self.secrets = {}
        self.services = {}
        self.nodes = [
            SimpleNamespace(status=SimpleNamespace(addresses=[
                SimpleNamespace(type="InternalIP", address="10.0.0.5"),
            ])),
        ]
        self.calls = []

    # pods
    def add_pod(self, namespace, name, labels, phase="Running"):
        self.namespaces.add(namespace)
        self.pods[(namespace, name)] = SimpleNamespace(
            metadata=SimpleNamespace(name=name, labels=dict(labels)),
            status=SimpleNamespace(phase=phase),
        )

    def remove_pods(self, namespace, selector):
        for key in [k for k, p in self.pods.items()
                    if k[0] == namespace and _matches(p.metadata.labels, selector)]:
            del self.pods[key]

    def list_namespaced_pod(self, namespace, label_selector=""):
        self.calls.append(("list_pods", namespace, label_selector))
        items = [p for (ns, _), p in sorted(self.pods.items())
                 if ns == namespace and _matches(p.metadata.labels, label_selector)]
        return SimpleNamespace(items=items)

    # namespaces
    def read_namespace(self, name):
        if name not in self.namespaces:
            raise _not_found()
        return SimpleNamespace(metadata=SimpleNamespace(name=name))

    def create_namespace(self, body):
        self.namespaces.add(body.metadata.name)

    # secrets
    def create_namespaced_secret(self, namespace, body):
        self.calls.append(("create_secret", namespace, body.metadata.name))
        key = (namespace, body.metadata.name)
        if key in self.secrets:
            raise _conflict()
        self.secrets[key] = body

    def delete_namespaced_secret(self, name, namespace):
        self.calls.append(("delete_secret", namespace, name))
        if (namespace, name) not in self.secrets:
            raise _not_found()
        del self.secrets[(namespace, name)]

    def read_namespaced_secret(self, name, namespace):
        try:
            return self.secrets[(namespace, name)]
        except KeyError:
            raise _not_found() from None

    # services / nodes
    def list_namespaced_service(self, namespace):
        return SimpleNamespace(items=list(self.services.get(namespace, [])))

    def list_node(self):
        return SimpleNamespace(items=self.nodes)


class FakeCoordinationV1:
    def __init__(self):
        self.leases = {}

    def create_namespaced_lease(self, namespace, body):
        key = (namespace, body.metadata.name)
        if key in self.leases:
            raise _conflict()
        self.leases[key] = body

    def read_namespaced_lease(self, name, namespace):
        try:
            return self.leases[(namespace, name)]
        except KeyError:
            raise _not_found() from None

    def replace_namespaced_lease(self, name, namespace, body):
        self.leases[(namespace, name)] = body

    def delete_namespaced_lease(self, name, namespace):
        if (namespace, name) not in self.leases:
            raise _not_found()
        del self.leases[(namespace, name)]


ORC8R_COMPONENTS = ["magmalte", "orchestrator", "obsidian", "service-registry"]


class FakeHelm:
    """Helm stand-in whose installs materialise pods/secrets like the real charts.

    Set ``live_passwords[release]`` to make the chart-managed secret carry a
    value other than the requested one.
    """

    def __init__(self, core):
        self.core = core
        self.releases = {}
        self.calls = []
        self.fail_install = set()
        self.fail_upgrade = set()
        self.install_phase = {}
        self.live_passwords = {}

    def release_exists(self, release, namespace):
        return (namespace, release) in self.releases

    def install(self, release, chart, namespace, **kwargs):
        self.calls.append(("install", release))
        if release in self.fail_install:
            raise HelmError(f"helm install {release}", 1, "Error: boom")
        if (namespace, release) in self.releases:
            raise HelmError(
                f"helm install {release}", 1,
                "Error: INSTALLATION FAILED: cannot re-use a name that is still in use",
            )
        self.releases[(namespace, release)] = {"chart": chart, **kwargs}
        self._materialise(release, namespace, kwargs)

    def upgrade(self, release, chart, namespace, **kwargs):
        self.calls.append(("upgrade", release))
        if release in self.fail_upgrade:
            raise HelmError(f"helm upgrade {release}", 1, "Error: UPGRADE FAILED")
        self.releases[(namespace, release)] = {"chart": chart, **kwargs}

    def uninstall(self, release, namespace):
        self.calls.append(("uninstall", release))
        if (namespace, release) not in self.releases:
            return False
        del self.releases[(namespace, release)]
        self.core.remove_pods(namespace, f"app.kubernetes.io/instance={release}")
        return True

    def list_releases(self, namespace=None):
        return [{"name": r, "namespace": ns, "status": "deployed", "chart": v["chart"]}
                for (ns, r), v in self.releases.items()]

    def actions(self, release):
        return [action for action, name in self.calls if name == release]

    def _materialise(self, release, namespace, kwargs):
        phase = self.install_phase.get(release, "Running")
        instance = {"app.kubernetes.io/instance": release}
        if release == "orc8r":
            for component in ORC8R_COMPONENTS:
                self.core.add_pod(namespace, f"orc8r-{component}-0",
                                  {**instance, "app.kubernetes.io/component": component}, phase)
            self.core.services[namespace] = [SimpleNamespace(
                metadata=SimpleNamespace(name="orc8r-nginx-proxy"),
                spec=SimpleNamespace(type="NodePort", ports=[SimpleNamespace(port=443, node_port=30443)]),
                status=None,
            )]
            return

        self.core.add_pod(namespace, f"{release}-0", instance, phase)
        values = {}
        for values_file in kwargs.get("values_files", []):
            values.update(yaml.safe_load(Path(values_file).read_text()) or {})
        requested = values.get("auth", {}).get("password", "")
        password = self.live_passwords.get(release, requested)
        if release == "orc8r-postgres":
            self.core.secrets[(namespace, "orc8r-postgres-postgresql")] = make_secret(
                "orc8r-postgres-postgresql", namespace, {"password": password},
            )
        elif release == "nms-mysql":
            self.core.secrets[(namespace, "nms-mysql")] = make_secret(
                "nms-mysql", namespace, {"mysql-password": password},
            )


@pytest.fixture
def core():
    return FakeCoreV1()


@pytest.fixture
def coordination():
    return FakeCoordinationV1()


@pytest.fixture
def helm(core):
    return FakeHelm(core)


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def cfg(tmp_path):
    return Config(
        work_dir=str(tmp_path / "work"),
        magma_dir=str(tmp_path / "magma"),
        namespace="orc8r",
        db_namespace="db",
        readiness_attempts=3,
        readiness_interval=5,
        settle_seconds=15,
        backoff="constant",
        ssm_prefix="",
    )


@pytest.fixture
def target():
    return DeploymentTarget("example.org", "a@b.com")
