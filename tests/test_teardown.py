from pathlib import Path

from orc8r_deploy import teardown
from orc8r_deploy.teardown import run_teardown


def test_teardown_removes_releases_namespaces_and_state(cfg, helm, sleeps, monkeypatch):
    commands = []
    monkeypatch.setattr(teardown, "run_cmd", lambda cmd, **kw: commands.append(cmd))
    helm.releases[("db", "orc8r-postgres")] = {"chart": "bitnami/postgresql"}
    cfg.work_path.mkdir(parents=True)
    cfg.credentials_file.write_text("{}")
    cfg.values_file.write_text("domain: x")
    cfg.store_values_file("nms-mysql").write_text("auth: {}")
    Path(cfg.magma_dir).mkdir()

    run_teardown(cfg, helm, sleep=sleeps.append)

    assert sleeps == [5]
    assert [name for action, name in helm.calls] == ["orc8r", "orc8r-postgres", "nms-mysql", "cert-manager"]
    assert helm.releases == {}
    assert [c[3] for c in commands] == ["orc8r", "db", "cert-manager"]
    assert not cfg.credentials_file.exists()
    assert not cfg.values_file.exists()
    assert not cfg.store_values_file("nms-mysql").exists()


def test_teardown_yes_skips_abort_window(cfg, helm, sleeps, monkeypatch):
    monkeypatch.setattr(teardown, "run_cmd", lambda cmd, **kw: None)

    run_teardown(cfg, helm, assume_yes=True, sleep=sleeps.append)

    assert sleeps == []
