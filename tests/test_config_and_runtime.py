"""Tests for environment-driven settings and runtime wiring."""

import json
import textwrap

import pytest
from pydantic import ValidationError

from starchain.config import DEFAULT_MAX_LOOP, Settings, get_settings, reset_settings_cache
from starchain.service.runtime import get_runtime, reset_runtime_for_tests
from starchain.storage.models import IncomingInput


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for name in (
        "SECRETKEY_PATH",
        "SECRETKEY_OVERWRITE",
        "APIKEY_PATH",
        "FLOW_CONFIG_PATH",
        "PLUGIN_PATHS",
        "MAX_LOOP",
        "REUSE_REQUIRES_SAME_OVERRIDE",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("DATABASE_PATH", str(tmp_path))
    reset_settings_cache()
    return monkeypatch


class TestSettings:
    def test_defaults(self, clean_env, tmp_path):
        settings = get_settings()
        assert settings.max_loop == DEFAULT_MAX_LOOP
        assert settings.plugin_paths == []
        assert settings.encryption_key_path() == tmp_path / "encryption.key"
        assert settings.api_key_path() == tmp_path / "api.json"

    def test_env_overrides(self, clean_env, tmp_path):
        clean_env.setenv("MAX_LOOP", "5")
        clean_env.setenv("PLUGIN_PATHS", "/opt/nodes, /opt/more ,")
        clean_env.setenv("APIKEY_PATH", str(tmp_path / "keys"))
        clean_env.setenv("REUSE_REQUIRES_SAME_OVERRIDE", "true")

        settings = get_settings()

        assert settings.max_loop == 5
        assert settings.plugin_paths == ["/opt/nodes", "/opt/more"]
        assert settings.api_key_path() == tmp_path / "keys" / "api.json"
        assert settings.reuse_requires_same_override is True

    def test_dotenv_file_is_read(self, clean_env, tmp_path):
        (tmp_path / ".env").write_text("MAX_LOOP=7\n")
        assert get_settings().max_loop == 7

    def test_environment_beats_dotenv(self, clean_env, tmp_path):
        (tmp_path / ".env").write_text("MAX_LOOP=7\n")
        clean_env.setenv("MAX_LOOP", "1")
        assert get_settings().max_loop == 1

    def test_blank_overwrite_is_ignored(self):
        assert Settings(secretkey_overwrite="   ").secretkey_overwrite is None

    def test_negative_max_loop_rejected(self):
        with pytest.raises(ValidationError):
            Settings(max_loop=-1)

    def test_settings_are_cached(self, clean_env):
        assert get_settings() is get_settings()
        first = get_settings()
        reset_settings_cache()
        assert get_settings() is not first


class TestRuntime:
    def test_runtime_is_singleton(self):
        assert get_runtime() is get_runtime()

    def test_runtime_loads_flows_and_plugins(self, clean_env, tmp_path):
        plugins = tmp_path / "nodes"
        plugins.mkdir()
        (plugins / "echo.py").write_text(
            textwrap.dedent(
                """
                class EchoChain:
                    name = "echoChain"
                    version = 1
                    label = "Echo"
                    category = "Chains"
                    inputs = []

                    def init(self, node_data, question, context):
                        return question

                    def run(self, node_data, question, options):
                        return "echo: " + question

                node_class = EchoChain
                """
            )
        )
        flow_file = tmp_path / "flows.json"
        flow_file.write_text(
            json.dumps(
                {
                    "chatflows": {
                        "echo-flow": {
                            "nodes": [{"id": "echo_0", "data": {"id": "echo_0", "name": "echoChain"}}],
                            "edges": [],
                        }
                    }
                }
            )
        )
        clean_env.setenv("PLUGIN_PATHS", str(plugins))
        clean_env.setenv("FLOW_CONFIG_PATH", str(flow_file))

        runtime = reset_runtime_for_tests()

        assert "echo-flow" in runtime.store.flows
        assert runtime.registry.resolve("echoChain").label == "Echo"
        assert runtime.engine.settings is runtime.settings
        assert runtime.vault.key_path == tmp_path / "encryption.key"

    async def test_runtime_engine_predicts(self, clean_env, tmp_path):
        plugins = tmp_path / "nodes"
        plugins.mkdir()
        (plugins / "upper.py").write_text(
            textwrap.dedent(
                """
                class Upper:
                    name = "upper"
                    label = "Upper"
                    category = "Chains"
                    inputs = []

                    def init(self, node_data, question, context):
                        return None

                    async def run(self, node_data, question, options):
                        return question.upper()

                node_class = Upper
                """
            )
        )
        clean_env.setenv("PLUGIN_PATHS", str(plugins))
        runtime = reset_runtime_for_tests()
        runtime.store.save_flow(
            "f", {"nodes": [{"id": "upper_0", "data": {"name": "upper"}}], "edges": []}
        )

        assert await runtime.engine.predict("f", IncomingInput(question="hey")) == "HEY"

    def test_missing_flow_config_fails_startup(self, clean_env, tmp_path):
        clean_env.setenv("FLOW_CONFIG_PATH", str(tmp_path / "missing.json"))
        with pytest.raises(FileNotFoundError):
            reset_runtime_for_tests()
