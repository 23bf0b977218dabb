from __future__ import annotations

import threading
from typing import Any, Dict, Optional

LLM_CACHE = "llm"
EMBEDDING_CACHE = "embedding"


class CachePool:
    """Key/value memo space that node plugins use for expensive objects.

    The engine only hands the pool to plugins; what is stored, and when it
    goes stale, is entirely up to the plugin that wrote it.
    """

    def __init__(self) -> None:
        self._namespaces: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def set(self, namespace: str, key: str, value: Any) -> None:
        with self._lock:
            self._namespaces.setdefault(namespace, {})[key] = value

    def get(self, namespace: str, key: str) -> Optional[Any]:
        with self._lock:
            return self._namespaces.get(namespace, {}).get(key)

    def delete(self, namespace: str, key: str) -> None:
        with self._lock:
            self._namespaces.get(namespace, {}).pop(key, None)

    def clear(self, namespace: Optional[str] = None) -> None:
        with self._lock:
            if namespace is None:
                self._namespaces.clear()
            else:
                self._namespaces.pop(namespace, None)

    def add_llm_cache(self, chatflow_id: str, value: Any) -> None:
        self.set(LLM_CACHE, chatflow_id, value)

    def get_llm_cache(self, chatflow_id: str) -> Optional[Any]:
        return self.get(LLM_CACHE, chatflow_id)

    def delete_llm_cache(self, chatflow_id: str) -> None:
        self.delete(LLM_CACHE, chatflow_id)

    def add_embedding_cache(self, chatflow_id: str, value: Any) -> None:
        self.set(EMBEDDING_CACHE, chatflow_id, value)

    def get_embedding_cache(self, chatflow_id: str) -> Optional[Any]:
        return self.get(EMBEDDING_CACHE, chatflow_id)

    def delete_embedding_cache(self, chatflow_id: str) -> None:
        self.delete(EMBEDDING_CACHE, chatflow_id)
