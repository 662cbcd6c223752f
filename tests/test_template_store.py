import os
import stat
from datetime import datetime

import numpy as np
import pytest

from conftest import OWNER, unit
from privacy_shield.exceptions import PersistenceLoadFailed
from privacy_shield.template_store import SCHEMA_VERSION, TemplateStore
from privacy_shield.types import EnrolledIdentity


@pytest.fixture(autouse=True)
def no_env_key(monkeypatch):
    monkeypatch.delenv("PRIVACY_SHIELD_EMBED_KEY", raising=False)


def make_store(tmp_path):
    return TemplateStore(tmp_path / "faces.db", tmp_path / ".embedding.key")


def test_round_trip_preserves_vectors_and_timestamps(tmp_path):
    created = datetime(2024, 3, 1, 9, 30, 0)
    identity = EnrolledIdentity("owner", (OWNER, unit(3)), created_at=created, updated_at=created)
    make_store(tmp_path).save_all({"owner": identity})

    loaded = make_store(tmp_path).load()

    assert list(loaded) == ["owner"]
    assert loaded["owner"].created_at == created
    assert len(loaded["owner"].embeddings) == 2
    np.testing.assert_array_equal(loaded["owner"].embeddings[1], unit(3))


def test_schema_version_is_recorded(tmp_path):
    assert make_store(tmp_path).schema_version() == SCHEMA_VERSION


def test_embeddings_are_not_stored_in_plain_text(tmp_path):
    vector = np.full(8, 0.125, dtype=np.float32)
    make_store(tmp_path).save_all({"owner": EnrolledIdentity("owner", (vector,))})

    assert vector.tobytes() not in (tmp_path / "faces.db").read_bytes()


def test_clear_removes_everything(tmp_path):
    store = make_store(tmp_path)
    store.save_all({"owner": EnrolledIdentity("owner", (OWNER,))})

    store.clear()

    assert store.load() == {}


def test_lost_key_fails_load(tmp_path):
    make_store(tmp_path).save_all({"owner": EnrolledIdentity("owner", (OWNER,))})
    (tmp_path / ".embedding.key").unlink()

    with pytest.raises(PersistenceLoadFailed):
        make_store(tmp_path).load()


def test_corrupt_database_file_is_reported(tmp_path):
    (tmp_path / "faces.db").write_bytes(b"definitely not sqlite" * 64)

    with pytest.raises(PersistenceLoadFailed):
        make_store(tmp_path)


def test_unknown_schema_version_fails_load(tmp_path):
    store = make_store(tmp_path)
    with store._connect() as conn:
        conn.execute("UPDATE schema_meta SET value = '99' WHERE key = 'version'")

    with pytest.raises(PersistenceLoadFailed):
        store.load()


def test_identity_needs_embeddings():
    with pytest.raises(ValueError):
        EnrolledIdentity("owner", ())


def test_malformed_key_file_is_reported(tmp_path):
    (tmp_path / ".embedding.key").write_bytes(b"not-a-fernet-key")

    with pytest.raises(PersistenceLoadFailed):
        make_store(tmp_path)


def test_malformed_env_key_is_reported(tmp_path, monkeypatch):
    monkeypatch.setenv("PRIVACY_SHIELD_EMBED_KEY", "short")

    with pytest.raises(PersistenceLoadFailed):
        make_store(tmp_path)


def test_invalid_timestamp_fails_load(tmp_path):
    store = make_store(tmp_path)
    store.save_all({"owner": EnrolledIdentity("owner", (OWNER,))})
    with store._connect() as conn:
        conn.execute("UPDATE identity_embeddings SET created_at = 'yesterday'")

    with pytest.raises(PersistenceLoadFailed):
        store.load()


@pytest.mark.skipif(os.name == "nt", reason="POSIX permissions")
def test_new_key_file_is_private(tmp_path):
    make_store(tmp_path)

    assert stat.S_IMODE((tmp_path / ".embedding.key").stat().st_mode) == 0o600
