from orc8r_deploy.synchronizer import (
    CONTROLLER_SERVICES,
    SecretSynchronizer,
    database_source,
    envdir_fields,
)

from conftest import make_secret, secret_fields


def test_sync_creates_namespace_and_secret(core):
    SecretSynchronizer(core).sync("s", "orc8r", {"a": b"1"})

    assert "orc8r" in core.namespaces
    assert secret_fields(core.secrets[("orc8r", "s")]) == {"a": "1"}


def test_second_sync_leaves_only_second_field_set(core):
    sync = SecretSynchronizer(core)

    sync.sync("s", "orc8r", {"old": b"1", "shared": b"x"})
    sync.sync("s", "orc8r", {"shared": b"y", "new": b"2"})

    assert secret_fields(core.secrets[("orc8r", "s")]) == {"shared": "y", "new": "2"}


def test_sync_is_delete_then_create(core):
    sync = SecretSynchronizer(core)
    sync.sync("s", "orc8r", {"a": b"1"})
    core.calls.clear()

    sync.sync("s", "orc8r", {"a": b"2"})

    assert core.calls == [("delete_secret", "orc8r", "s"), ("create_secret", "orc8r", "s")]


def test_delete_absent_secret_is_not_an_error(core):
    assert SecretSynchronizer(core).delete("missing", "orc8r") is False


def test_read_field(core):
    core.secrets[("db", "pg")] = make_secret("pg", "db", {"password": "P1", "empty": ""})
    sync = SecretSynchronizer(core)

    assert sync.read_field("pg", "db", "password") == "P1"
    assert sync.read_field("pg", "db", "empty") is None
    assert sync.read_field("pg", "db", "nope") is None
    assert sync.read_field("missing", "db", "password") is None


def test_envdir_embeds_password_and_services():
    fields = envdir_fields("secret123", "pg.db.svc.cluster.local")

    assert fields["DATABASE_SOURCE"].decode() == database_source("secret123", "pg.db.svc.cluster.local")
    assert b"password=secret123" in fields["DATABASE_SOURCE"]
    assert fields["CONTROLLER_SERVICES"].decode() == CONTROLLER_SERVICES
    assert len(CONTROLLER_SERVICES.split(",")) == 22
