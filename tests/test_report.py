from types import SimpleNamespace

from orc8r_deploy.report import REQUIRED_COMPONENTS, discover_endpoints, run_status


def _service(name, type_, ports, ingress=None):
    status = None
    if ingress is not None:
        status = SimpleNamespace(load_balancer=SimpleNamespace(ingress=ingress))
    return SimpleNamespace(
        metadata=SimpleNamespace(name=name),
        spec=SimpleNamespace(type=type_, ports=ports),
        status=status,
    )


def test_endpoints(core):
    core.services["orc8r"] = [
        _service("orc8r-clientcert-nginx", "LoadBalancer",
                 [SimpleNamespace(port=443, node_port=None)],
                 [SimpleNamespace(ip="203.0.113.7", hostname=None)]),
        _service("orc8r-bootstrap", "NodePort", [SimpleNamespace(port=8444, node_port=30444)]),
        _service("orc8r-internal", "ClusterIP", [SimpleNamespace(port=9180, node_port=None)]),
    ]

    assert discover_endpoints(core, "orc8r", "example.org") == {
        "nms": "https://example.org",
        "orc8r-clientcert-nginx:443": "203.0.113.7:443",
        "orc8r-bootstrap:8444": "10.0.0.5:30444",
    }


def test_pending_load_balancer_is_skipped(core):
    core.services["orc8r"] = [_service("lb", "LoadBalancer", [SimpleNamespace(port=443, node_port=None)], [])]

    assert discover_endpoints(core, "orc8r", "example.org") == {"nms": "https://example.org"}


def test_status_is_read_only(cfg, core, helm):
    assert run_status(cfg, core, helm) is False

    for release in ("orc8r-postgres", "nms-mysql"):
        core.add_pod("db", f"{release}-0", {"app.kubernetes.io/instance": release})
    for component in REQUIRED_COMPONENTS:
        core.add_pod("orc8r", component, {"app.kubernetes.io/component": component})

    assert run_status(cfg, core, helm) is True
    assert helm.calls == []
    assert core.secrets == {}
