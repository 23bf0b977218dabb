from __future__ import annotations

import threading

from starchain.config import get_settings, reset_settings_cache
from starchain.logging import get_logger
from starchain.service.api_keys import APIKeyStore
from starchain.service.cache_pool import CachePool
from starchain.service.chatflow_pool import ChatflowPool
from starchain.service.engine import FlowEngine
from starchain.service.plugins import PluginRegistry
from starchain.service.vault import CredentialVault
from starchain.storage.memory import MemoryStore

logger = get_logger(__name__)


class Runtime:
    """Holds singleton service instances for the embedding application."""

    def __init__(self):
        self.settings = get_settings()
        logger.info(
            "runtime_init_started",
            database_path=self.settings.database_path,
            test_mode=self.settings.test_mode,
        )

        self.store = MemoryStore()
        if self.settings.flow_config_path:
            try:
                self.store.load_config(self.settings.flow_config_path)
            except Exception as exc:
                logger.error(
                    "runtime_flow_config_failed",
                    path=self.settings.flow_config_path,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                raise

        self.registry = PluginRegistry()
        for plugin_path in self.settings.plugin_paths:
            self.registry.discover(plugin_path)

        self.vault = CredentialVault(self.settings)
        self.api_keys = APIKeyStore(self.settings.api_key_path())
        self.chatflow_pool = ChatflowPool()
        self.cache_pool = CachePool()
        self.engine = FlowEngine(
            self.store,
            self.registry,
            self.chatflow_pool,
            self.cache_pool,
            vault=self.vault,
            settings=self.settings,
        )
        logger.info(
            "runtime_init_completed",
            flows=len(self.store.flows),
            nodes=len(self.registry.component_nodes),
            credentials=len(self.registry.component_credentials),
        )


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton in a thread-safe manner."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime

    with _runtime_lock:
        reset_settings_cache()
        runtime = Runtime()
        return runtime
