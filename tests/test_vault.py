"""Tests for credential encryption, key file handling and redaction."""

import os
import stat

import pytest

from starchain.config import Settings
from starchain.service.errors import PluginNotFoundError
from starchain.service.vault import (
    REDACTED_CREDENTIAL_VALUE,
    CredentialVault,
    redact_credential_with_password_type,
)
from starchain.storage.models import InputParam


class OpenAIApi:
    name = "openAIApi"
    label = "OpenAI API"
    inputs = [
        InputParam(name="openAIApiKey", label="Key", type="password"),
        InputParam(name="organization", label="Org", type="string"),
    ]


COMPONENT_CREDENTIALS = {"openAIApi": OpenAIApi()}


@pytest.fixture
def settings(tmp_path):
    return Settings(database_path=str(tmp_path))


def test_encrypt_then_decrypt(settings):
    vault = CredentialVault(settings)
    blob = vault.encrypt_credential_data({"openAIApiKey": "sk-123", "organization": "acme"})

    assert "sk-123" not in blob
    assert vault.decrypt_credential_data(blob) == {"openAIApiKey": "sk-123", "organization": "acme"}


def test_key_file_is_generated_once(settings, tmp_path):
    vault = CredentialVault(settings)
    first = vault.get_encryption_key()

    key_file = tmp_path / "encryption.key"
    assert key_file.read_text() == first
    assert stat.S_IMODE(os.stat(key_file).st_mode) == 0o600
    assert CredentialVault(settings).get_encryption_key() == first


def test_key_survives_process_restart(settings):
    blob = CredentialVault(settings).encrypt_credential_data({"a": "b"})
    assert CredentialVault(settings).decrypt_credential_data(blob) == {"a": "b"}


def test_secretkey_overwrite_takes_precedence(tmp_path):
    settings = Settings(database_path=str(tmp_path), secretkey_overwrite="from-env")
    vault = CredentialVault(settings)

    assert vault.get_encryption_key() == "from-env"
    assert not (tmp_path / "encryption.key").exists()


def test_secretkey_path_moves_key_file(tmp_path):
    settings = Settings(database_path=str(tmp_path / "db"), secretkey_path=str(tmp_path / "keys"))
    CredentialVault(settings).get_encryption_key()
    assert (tmp_path / "keys" / "encryption.key").exists()


def test_wrong_key_yields_empty_result(settings):
    blob = CredentialVault(settings, key_material="key-one").encrypt_credential_data({"a": 1})
    assert CredentialVault(settings, key_material="key-two").decrypt_credential_data(blob) == {}


def test_corrupted_blob_yields_empty_result(settings):
    vault = CredentialVault(settings)
    assert vault.decrypt_credential_data("not-a-token") == {}
    assert vault.decrypt_credential_data("") == {}


def test_non_string_blob_yields_empty_result(settings):
    vault = CredentialVault(settings)
    assert vault.decrypt_credential_data(None) == {}
    assert vault.decrypt_credential_data(b"bytes-token") == {}


def test_unwritable_key_location_yields_empty_result(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("")
    vault = CredentialVault(Settings(database_path=str(blocker)))

    assert vault.decrypt_credential_data("gAAAAA-token") == {}


def test_decrypt_redacts_password_fields(settings):
    vault = CredentialVault(settings)
    blob = vault.encrypt_credential_data({"openAIApiKey": "sk-123", "organization": "acme"})

    plain = vault.decrypt_credential_data(blob, "openAIApi", COMPONENT_CREDENTIALS)

    assert plain == {"openAIApiKey": REDACTED_CREDENTIAL_VALUE, "organization": "acme"}


def test_decrypt_with_unknown_credential_type_yields_empty_result(settings):
    vault = CredentialVault(settings)
    blob = vault.encrypt_credential_data({"openAIApiKey": "sk-123"})
    assert vault.decrypt_credential_data(blob, "unknownApi", COMPONENT_CREDENTIALS) == {}


def test_redact_leaves_input_untouched():
    original = {"openAIApiKey": "sk-123"}
    redacted = redact_credential_with_password_type("openAIApi", original, COMPONENT_CREDENTIALS)

    assert redacted["openAIApiKey"] == REDACTED_CREDENTIAL_VALUE
    assert original == {"openAIApiKey": "sk-123"}


def test_redact_unknown_credential_raises():
    with pytest.raises(PluginNotFoundError):
        redact_credential_with_password_type("missing", {}, COMPONENT_CREDENTIALS)


def test_transform_to_credential_record(settings):
    vault = CredentialVault(settings)
    record = vault.transform_to_credential_record("My key", "openAIApi", {"openAIApiKey": "sk"})

    assert record.name == "My key"
    assert record.credential_name == "openAIApi"
    assert record.id
    assert vault.decrypt_credential_data(record.encrypted_data) == {"openAIApiKey": "sk"}


def test_transform_without_data_leaves_blob_empty(settings):
    record = CredentialVault(settings).transform_to_credential_record("empty", "openAIApi")
    assert record.encrypted_data == ""
