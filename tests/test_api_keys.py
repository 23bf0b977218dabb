"""Tests for API key hashing and the JSON-backed key store."""

import json

import pytest

from starchain.service.api_keys import (
    DEFAULT_KEY_NAME,
    APIKeyStore,
    compare_keys,
    generate_api_key,
    generate_secret_hash,
)


@pytest.fixture
def store(tmp_path):
    return APIKeyStore(tmp_path / "api.json")


class TestSecretHash:
    def test_hash_verifies_only_its_key(self):
        key = generate_api_key()
        stored = generate_secret_hash(key)

        assert compare_keys(stored, key) is True
        assert compare_keys(stored, generate_api_key()) is False

    def test_hash_format_is_hex_digest_dot_salt(self):
        digest, salt = generate_secret_hash("abc").split(".")
        assert len(digest) == 128
        assert len(salt) == 16
        int(digest, 16)
        int(salt, 16)

    def test_same_key_gets_distinct_salts(self):
        assert generate_secret_hash("abc") != generate_secret_hash("abc")

    def test_malformed_stored_hash_never_matches(self):
        assert compare_keys("no-separator", "abc") is False
        assert compare_keys("zz.0011", "abc") is False
        assert compare_keys("abcd.", "abc") is False


class TestAPIKeyStore:
    def test_missing_file_creates_default_key(self, store, tmp_path):
        records = store.get_api_keys()

        assert len(records) == 1
        assert records[0].key_name == DEFAULT_KEY_NAME
        on_disk = json.loads((tmp_path / "api.json").read_text())
        assert on_disk[0]["keyName"] == DEFAULT_KEY_NAME
        assert set(on_disk[0]) == {"keyName", "apiKey", "apiSecret", "createdAt", "id"}

    def test_default_key_is_stable_across_reads(self, store):
        first = store.get_api_keys()
        second = store.get_api_keys()
        assert [r.id for r in first] == [r.id for r in second]

    def test_corrupted_file_is_regenerated(self, store, tmp_path):
        (tmp_path / "api.json").write_text("{not json")
        records = store.get_api_keys()
        assert [r.key_name for r in records] == [DEFAULT_KEY_NAME]

    def test_unwritable_directory_still_yields_default_key(self, tmp_path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")
        store = APIKeyStore(blocker / "api.json")

        records = store.get_api_keys()

        assert [r.key_name for r in records] == [DEFAULT_KEY_NAME]
        assert compare_keys(records[0].api_secret, records[0].api_key) is True

    def test_add_rename_delete(self, store):
        store.get_api_keys()
        records = store.add_api_key("ci")
        assert [r.key_name for r in records] == [DEFAULT_KEY_NAME, "ci"]

        ci_id = records[1].id
        records = store.update_api_key(ci_id, "deploy")
        assert records[1].key_name == "deploy"
        assert store.get_api_keys()[1].key_name == "deploy"

        records = store.delete_api_key(ci_id)
        assert [r.key_name for r in records] == [DEFAULT_KEY_NAME]

    def test_update_unknown_id_returns_empty(self, store):
        store.get_api_keys()
        assert store.update_api_key("missing", "x") == []
        assert len(store.get_api_keys()) == 1

    def test_verify_api_key(self, store):
        record = store.add_api_key("ci")[-1]

        found = store.verify_api_key(record.api_key)
        assert found is not None
        assert found.id == record.id
        assert store.verify_api_key("not-a-key") is None

    def test_replace_all_api_keys(self, store):
        records = store.add_api_key("a")
        store.replace_all_api_keys(records[1:])
        assert [r.key_name for r in store.get_api_keys()] == ["a"]

    def test_created_at_uses_short_date(self, store):
        created_at = store.get_api_keys()[0].created_at
        day, month, year = created_at.split("-")
        assert len(day) == 2 and len(month) == 3 and len(year) == 2
