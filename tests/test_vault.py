import json
import stat

import pytest

from orc8r_deploy.config import DeploymentTarget
from orc8r_deploy.errors import FatalStepError, InvalidTargetError
from orc8r_deploy.vault import (
    ADMIN_PASSWORD,
    CREDENTIAL_KEYS,
    NMS_DB_PASSWORD,
    ORC8R_DB_PASSWORD,
    CredentialVault,
)


def test_generates_three_hex_passwords(tmp_path, target):
    vault = CredentialVault.load_or_create(tmp_path / "creds.json", target)

    values = [vault.get(k) for k in CREDENTIAL_KEYS]
    assert len(set(values)) == 3
    for value in values:
        assert len(value) == 24
        int(value, 16)


def test_record_is_owner_only(tmp_path, target):
    path = tmp_path / "state" / "creds.json"
    CredentialVault.load_or_create(path, target)

    assert stat.S_IMODE(path.stat().st_mode) == 0o600
    assert stat.S_IMODE(path.parent.stat().st_mode) == 0o700


def test_reload_never_regenerates(tmp_path, target):
    path = tmp_path / "creds.json"
    first = CredentialVault.load_or_create(path, target)
    second = CredentialVault.load_or_create(path, target)

    assert second.as_dict() == first.as_dict()


def test_update_overwrites_and_persists(tmp_path, target):
    path = tmp_path / "creds.json"
    vault = CredentialVault.load_or_create(path, target)

    assert vault.update(ORC8R_DB_PASSWORD, "P1") is True
    assert vault.update(ORC8R_DB_PASSWORD, "P1") is False

    stored = json.loads(path.read_text())
    assert stored["credentials"][ORC8R_DB_PASSWORD] == "P1"
    assert CredentialVault.load_or_create(path, target).get(ORC8R_DB_PASSWORD) == "P1"


def test_update_rejects_unknown_key_and_empty_value(tmp_path, target):
    vault = CredentialVault.load_or_create(tmp_path / "creds.json", target)

    with pytest.raises(KeyError):
        vault.update("bogus", "x")
    with pytest.raises(ValueError):
        vault.update(NMS_DB_PASSWORD, "")


def test_endpoints_are_appended(tmp_path, target):
    path = tmp_path / "creds.json"
    vault = CredentialVault.load_or_create(path, target)
    vault.record_endpoints({"nms": "https://example.org"})

    stored = json.loads(path.read_text())
    assert stored["endpoints"] == {"nms": "https://example.org"}
    assert stored["domain"] == "example.org"
    assert stored["admin_email"] == "a@b.com"
    assert stored["credentials"][ADMIN_PASSWORD] == vault.get(ADMIN_PASSWORD)


def test_record_for_other_domain_is_refused(tmp_path, target):
    path = tmp_path / "creds.json"
    CredentialVault.load_or_create(path, target)

    with pytest.raises(FatalStepError, match="belongs to domain"):
        CredentialVault.load_or_create(path, DeploymentTarget("other.org", "a@b.com"))


def test_missing_key_in_old_record_is_filled(tmp_path, target):
    path = tmp_path / "creds.json"
    path.write_text(json.dumps({
        "domain": "example.org",
        "admin_email": "a@b.com",
        "credentials": {ORC8R_DB_PASSWORD: "keepme"},
    }))

    vault = CredentialVault.load_or_create(path, target)

    assert vault.get(ORC8R_DB_PASSWORD) == "keepme"
    assert vault.get(NMS_DB_PASSWORD)
    assert vault.get(ADMIN_PASSWORD)


def test_ssm_mirror(tmp_path, target, monkeypatch):
    puts = []
    monkeypatch.setattr(
        "orc8r_deploy.vault.ssm_put",
        lambda name, value, **kw: puts.append((name, kw["param_type"])),
    )

    CredentialVault.load_or_create(tmp_path / "c.json", target, ssm_prefix="/magma/dev", region="eu-west-1")

    assert sorted(puts) == sorted((f"/magma/dev/{k}", "SecureString") for k in CREDENTIAL_KEYS)


@pytest.mark.parametrize("domain, email", [("", "a@b.com"), ("example.org", ""), ("example.org", "nope")])
def test_target_validation(domain, email):
    with pytest.raises(InvalidTargetError):
        DeploymentTarget(domain, email)
