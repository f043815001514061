import pytest

from orc8r_deploy.errors import FatalStepError
from orc8r_deploy.prober import ResourceProber
from orc8r_deploy.readiness import ReadinessGate
from orc8r_deploy.release import ReleaseConvergenceEngine, application_spec, cert_manager_spec
from orc8r_deploy.state import ReleaseAction

ORC8R_INSTANCE = {"app.kubernetes.io/instance": "orc8r"}


def _engine(spec, cfg, core, helm, sleeps):
    prober = ResourceProber(core)
    return ReleaseConvergenceEngine(
        spec,
        cfg=cfg,
        helm=helm,
        prober=prober,
        gate=ReadinessGate(prober, sleep=sleeps.append),
        sleep=sleeps.append,
    )


@pytest.fixture
def engine(cfg, core, helm, sleeps):
    return _engine(application_spec(cfg), cfg, core, helm, sleeps)


def test_not_installed_installs(engine, helm, cfg, tmp_path):
    values = tmp_path / "v.yaml"

    assert engine.converge([values]) is ReleaseAction.INSTALL

    assert helm.actions("orc8r") == ["install"]
    assert helm.releases[("orc8r", "orc8r")]["values_files"] == [values]


def test_record_without_running_pods_is_reinstalled(engine, helm, sleeps):
    helm.releases[("orc8r", "orc8r")] = {"chart": "orc8r"}

    assert engine.converge() is ReleaseAction.REINSTALL

    assert helm.actions("orc8r") == ["uninstall", "install"]
    assert sleeps == [15]


def test_running_release_is_upgraded(engine, helm, core):
    helm.releases[("orc8r", "orc8r")] = {"chart": "orc8r"}
    core.add_pod("orc8r", "orc8r-orchestrator-0",
                 {**ORC8R_INSTANCE, "app.kubernetes.io/component": "orchestrator"})

    assert engine.converge() is ReleaseAction.UPGRADE

    assert helm.actions("orc8r") == ["upgrade"]


def test_upgrade_error_tolerated_when_still_ready(engine, helm, core):
    helm.releases[("orc8r", "orc8r")] = {"chart": "orc8r"}
    helm.fail_upgrade.add("orc8r")
    core.add_pod("orc8r", "orc8r-orchestrator-0",
                 {**ORC8R_INSTANCE, "app.kubernetes.io/component": "orchestrator"})

    assert engine.converge() is ReleaseAction.UPGRADE


def test_upgrade_error_fatal_when_not_ready(engine, helm, core, sleeps):
    helm.releases[("orc8r", "orc8r")] = {"chart": "orc8r"}
    helm.fail_upgrade.add("orc8r")
    core.add_pod("orc8r", "orc8r-magmalte-0",
                 {**ORC8R_INSTANCE, "app.kubernetes.io/component": "magmalte"})

    with pytest.raises(FatalStepError, match="upgrade failed"):
        engine.converge()
    assert sleeps == [5, 5]


def test_cert_manager_installs_crds_at_pinned_version(cfg, core, helm, sleeps):
    engine = _engine(cert_manager_spec(cfg), cfg, core, helm, sleeps)

    assert engine.converge() is ReleaseAction.INSTALL

    release = helm.releases[("cert-manager", "cert-manager")]
    assert release["chart"] == "jetstack/cert-manager"
    assert release["set_values"] == {"installCRDs": "true"}
    assert release["version"] == "v1.5.3"


def test_cert_manager_second_pass_upgrades(cfg, core, helm, sleeps):
    engine = _engine(cert_manager_spec(cfg), cfg, core, helm, sleeps)

    engine.converge()
    assert engine.converge() is ReleaseAction.UPGRADE
    assert helm.actions("cert-manager") == ["install", "upgrade"]
