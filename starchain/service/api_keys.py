from __future__ import annotations

import base64
import hmac
import json
import os
import secrets
import tempfile
import threading
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from argon2.low_level import Type, hash_secret_raw

from starchain.logging import get_logger
from starchain.storage.models import APIKeyRecord

DEFAULT_KEY_NAME = "DefaultKey"
SECRET_HASH_LENGTH = 64
SALT_BYTES = 8
# argon2id cost parameters (same as argon2-cffi PasswordHasher defaults)
ARGON2_TIME_COST = 3
ARGON2_MEMORY_COST = 65536
ARGON2_PARALLELISM = 4

logger = get_logger(__name__)


def generate_api_key() -> str:
    return base64.b64encode(secrets.token_bytes(32)).decode("ascii")


def _derive(api_key: str, salt: str) -> bytes:
    return hash_secret_raw(
        secret=api_key.encode("utf-8"),
        salt=salt.encode("utf-8"),
        time_cost=ARGON2_TIME_COST,
        memory_cost=ARGON2_MEMORY_COST,
        parallelism=ARGON2_PARALLELISM,
        hash_len=SECRET_HASH_LENGTH,
        type=Type.ID,
    )


def generate_secret_hash(api_key: str) -> str:
    """Hash an API key as ``<hex digest>.<hex salt>`` with a fresh salt."""
    salt = secrets.token_hex(SALT_BYTES)
    return f"{_derive(api_key, salt).hex()}.{salt}"


def compare_keys(stored_key: str, supplied_key: str) -> bool:
    """Check ``supplied_key`` against a stored ``hash.salt`` in constant time."""
    hashed, sep, salt = stored_key.partition(".")
    if not sep or not salt:
        return False
    try:
        expected = bytes.fromhex(hashed)
    except ValueError:
        return False
    return hmac.compare_digest(expected, _derive(supplied_key, salt))


def _new_record(key_name: str) -> APIKeyRecord:
    api_key = generate_api_key()
    return APIKeyRecord(
        key_name=key_name,
        api_key=api_key,
        api_secret=generate_secret_hash(api_key),
        created_at=datetime.now().strftime("%d-%b-%y"),
        id=secrets.token_hex(16),
    )


class APIKeyStore:
    """Ordered API key list persisted as one JSON file.

    The file is read on every call and rewritten whole on every change. A
    missing or unreadable file is replaced by a single default key so the
    system always has at least one valid key.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.RLock()

    def _write(self, records: List[APIKeyRecord]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps([r.to_dict() for r in records])
        fd, tmp_path = tempfile.mkstemp(
            dir=str(self.path.parent), prefix=".api_", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
            os.replace(tmp_path, self.path)
        except Exception:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def get_api_keys(self) -> List[APIKeyRecord]:
        with self._lock:
            try:
                raw = json.loads(self.path.read_text(encoding="utf-8"))
                if not isinstance(raw, list):
                    raise ValueError("api key file must hold a list")
                return [APIKeyRecord.from_dict(item) for item in raw]
            except (OSError, ValueError, KeyError, TypeError) as exc:
                logger.warning(
                    "api_keys_unreadable",
                    path=str(self.path),
                    error_type=type(exc).__name__,
                )
                records = [_new_record(DEFAULT_KEY_NAME)]
                self.replace_all_api_keys(records)
                return records

    def add_api_key(self, key_name: str) -> List[APIKeyRecord]:
        with self._lock:
            records = self.get_api_keys() + [_new_record(key_name)]
            self._write(records)
            logger.info("api_key_added", key_name=key_name)
            return records

    def update_api_key(self, key_id: str, new_key_name: str) -> List[APIKeyRecord]:
        with self._lock:
            records = self.get_api_keys()
            for record in records:
                if record.id == key_id:
                    record.key_name = new_key_name
                    break
            else:
                return []
            self._write(records)
            return records

    def delete_api_key(self, key_id: str) -> List[APIKeyRecord]:
        with self._lock:
            records = [r for r in self.get_api_keys() if r.id != key_id]
            self._write(records)
            logger.info("api_key_deleted", key_id=key_id)
            return records

    def replace_all_api_keys(self, records: List[APIKeyRecord]) -> None:
        with self._lock:
            try:
                self._write(list(records))
            except OSError as exc:
                logger.error("api_keys_write_failed", path=str(self.path), error=str(exc))

    def verify_api_key(self, supplied_key: str) -> Optional[APIKeyRecord]:
        """Return the record owning ``supplied_key`` if its secret hash matches."""
        for record in self.get_api_keys():
            if hmac.compare_digest(
                record.api_key.encode("utf-8"), supplied_key.encode("utf-8")
            ) and compare_keys(
                record.api_secret, supplied_key
            ):
                return record
        return None
