from sqlmodel import Session

import cleanup
import db
import r2_client


def test_purge_deletes_r2_prefixes(store, engine, monkeypatch):
    deleted = []

    def fake_delete(prefix):
        deleted.append(prefix)
        return {"originals/": 3, "transformed/": 2}[prefix]

    monkeypatch.setattr(r2_client, "r2_enabled", lambda: True)
    monkeypatch.setattr(r2_client, "delete_prefix", fake_delete)

    stats = cleanup.purge_all(store, engine)

    assert deleted == ["originals/", "transformed/"]
    assert stats["r2_originals"] == 3
    assert stats["r2_transformed"] == 2


def test_purge_continues_after_r2_failure(store, engine, monkeypatch):
    def broken(prefix):
        raise RuntimeError("r2 unreachable")

    monkeypatch.setattr(r2_client, "r2_enabled", lambda: True)
    monkeypatch.setattr(r2_client, "delete_prefix", broken)
    store.create("abc", short_id="s")
    with Session(engine) as session:
        db.record_transformation(session, "abc", "s", email="a@example.com")
        db.upsert_user(session, "a@example.com")

    stats = cleanup.purge_all(store, engine)

    assert stats == {
        "r2_originals": 0,
        "r2_transformed": 0,
        "kv_keys": 2,
        "db_transformations": 1,
        "db_users": 1,
    }
    assert store.get("abc") is None


def test_purge_skips_kv_entries_already_expired(store, engine, clock):
    store.create("abc", short_id="s")
    with Session(engine) as session:
        db.record_transformation(session, "abc", "s")
    clock.advance(86400)

    stats = cleanup.purge_all(store, engine)

    assert stats["kv_keys"] == 0
    assert stats["db_transformations"] == 1
