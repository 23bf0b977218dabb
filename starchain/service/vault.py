"""Credential encryption, decryption and redaction.

Credentials are stored as a Fernet token of their JSON-encoded fields.
The key material comes from ``SECRETKEY_OVERWRITE`` when set, otherwise
from ``encryption.key`` which is generated on first use.
"""

from __future__ import annotations

import base64
import hashlib
import json
import os
import secrets
import threading
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from cryptography.fernet import Fernet, InvalidToken

from starchain.config import Settings
from starchain.logging import get_logger
from starchain.service.errors import PluginNotFoundError
from starchain.storage.models import CredentialRecord

REDACTED_CREDENTIAL_VALUE = "_STARCHAIN_BLANK_07167752-1a71-43b1-bf8f-4f32252165db"

logger = get_logger(__name__)


def generate_encrypt_key() -> str:
    return base64.b64encode(secrets.token_bytes(24)).decode("ascii")


def _derive_cipher_key(key_material: str) -> bytes:
    return base64.urlsafe_b64encode(hashlib.sha256(key_material.encode()).digest())


def _password_fields(credential: Any) -> set[str]:
    return {
        param.name
        for param in getattr(credential, "inputs", None) or []
        if param.type == "password"
    }


def redact_credential_with_password_type(
    credential_name: str,
    decrypted: Mapping[str, Any],
    component_credentials: Mapping[str, Any],
) -> Dict[str, Any]:
    """Replace every password-typed field with the redaction sentinel.

    Raises:
        PluginNotFoundError: ``credential_name`` is not a known credential type.
    """
    credential = component_credentials.get(credential_name)
    if credential is None:
        raise PluginNotFoundError(
            f"Credential {credential_name} not found", detail={"name": credential_name}
        )
    password_fields = _password_fields(credential)
    plain = dict(decrypted)
    for key in plain:
        if key in password_fields:
            plain[key] = REDACTED_CREDENTIAL_VALUE
    return plain


class CredentialVault:
    """Symmetric encryption of credential data with a process-wide key."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        key_path: Optional[Path] = None,
        key_material: Optional[str] = None,
    ) -> None:
        self.settings = settings or Settings()
        self.key_path = Path(key_path) if key_path else self.settings.encryption_key_path()
        self._key_material = key_material
        self._fernet: Optional[Fernet] = None
        self._lock = threading.Lock()

    def get_encryption_key(self) -> str:
        """Return the key material, creating ``encryption.key`` if needed."""
        if self._key_material:
            return self._key_material
        if self.settings.secretkey_overwrite:
            return self.settings.secretkey_overwrite
        try:
            material = self.key_path.read_text(encoding="utf-8").strip()
            if material:
                return material
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("encryption_key_read_failed", path=str(self.key_path), error=str(exc))

        material = generate_encrypt_key()
        self.key_path.parent.mkdir(parents=True, exist_ok=True)
        self.key_path.write_text(material, encoding="utf-8")
        os.chmod(self.key_path, 0o600)
        logger.info("encryption_key_generated", path=str(self.key_path))
        return material

    def _cipher(self) -> Fernet:
        with self._lock:
            if self._fernet is None:
                self._fernet = Fernet(_derive_cipher_key(self.get_encryption_key()))
            return self._fernet

    def encrypt_credential_data(self, plain_data: Mapping[str, Any]) -> str:
        token = self._cipher().encrypt(json.dumps(dict(plain_data)).encode("utf-8"))
        return token.decode("utf-8")

    def decrypt_credential_data(
        self,
        encrypted_data: str,
        credential_name: Optional[str] = None,
        component_credentials: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Decrypt a credential blob; returns {} when it cannot be read.

        An empty result means "unavailable", never "valid but empty". With
        ``credential_name`` and ``component_credentials`` the password-typed
        fields are redacted before returning.
        """
        if not isinstance(encrypted_data, str):
            logger.warning(
                "credential_decrypt_failed",
                credential_name=credential_name,
                error_type=type(encrypted_data).__name__,
            )
            return {}
        try:
            raw = self._cipher().decrypt(encrypted_data.encode("utf-8"))
            plain = json.loads(raw.decode("utf-8"))
            if not isinstance(plain, dict):
                raise ValueError("credential payload is not an object")
            if credential_name and component_credentials is not None:
                return redact_credential_with_password_type(
                    credential_name, plain, component_credentials
                )
            return plain
        except (InvalidToken, ValueError, UnicodeDecodeError, PluginNotFoundError, OSError) as exc:
            logger.warning(
                "credential_decrypt_failed",
                credential_name=credential_name,
                error_type=type(exc).__name__,
            )
            return {}

    def transform_to_credential_record(
        self, name: str, credential_name: str, plain_data: Optional[Mapping[str, Any]] = None
    ) -> CredentialRecord:
        encrypted = self.encrypt_credential_data(plain_data) if plain_data else ""
        return CredentialRecord(
            name=name, credential_name=credential_name, encrypted_data=encrypted
        )
