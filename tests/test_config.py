"""
Tests for server and client configuration.
"""

import json

import pytest

from bazel_lsp.config import Config
from bazel_lsp.lsp.config import (
    DEFAULT_EXECUTABLE,
    DEFAULT_SELECTOR,
    DEFAULT_SERVER_ID,
    ServerConfig,
    load_server_config,
)

ENV_KEYS = [
    "BAZEL_LSP_SERVER_PATH",
    "BAZEL_LSP_SERVER_ARGS",
    "BAZEL_LSP_DEBUG",
    "BAZEL_LSP_STARTUP_TIMEOUT",
    "BAZEL_LSP_SHUTDOWN_TIMEOUT",
    "BAZEL_LSP_LOG_LEVEL",
    "BAZEL_LSP_LOG_DIR",
    "BAZEL_LSP_JSON_LOGS",
    "BAZEL_LSP_CONFIG",
    "BAZEL_LSP_INSTALL_ROOT",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


class TestServerConfig:
    def test_defaults(self):
        config = ServerConfig()
        assert config.id == DEFAULT_SERVER_ID
        assert config.executable == DEFAULT_EXECUTABLE
        assert config.selector == DEFAULT_SELECTOR
        assert [p.glob for p in config.watch_patterns] == ["**/WORKSPACE"]
        assert config.options.debug is False

    def test_env_overrides(self):
        config = ServerConfig().with_env_overrides({
            "BAZEL_LSP_SERVER_PATH": "/opt/bazel-lsp/server",
            "BAZEL_LSP_SERVER_ARGS": "--stdio --log 'a b'",
            "BAZEL_LSP_DEBUG": "true",
            "BAZEL_LSP_STARTUP_TIMEOUT": "12.5",
        })
        assert config.executable == "/opt/bazel-lsp/server"
        assert config.args == ["--stdio", "--log", "a b"]
        assert config.options.debug is True
        assert config.startup_timeout == 12.5
        assert config.shutdown_timeout == 5.0

    def test_env_overrides_do_not_mutate_original(self):
        original = ServerConfig()
        original.with_env_overrides({"BAZEL_LSP_DEBUG": "1", "BAZEL_LSP_SERVER_PATH": "/x"})
        assert original.options.debug is False
        assert original.executable == DEFAULT_EXECUTABLE

    def test_env_overrides_copy_mutable_fields(self):
        original = ServerConfig(args=["--stdio"])
        original.options.env["RUST_LOG"] = "info"

        config = original.with_env_overrides({})
        config.options.env["RUST_LOG"] = "debug"
        config.args.append("--verbose")

        assert original.options.env == {"RUST_LOG": "info"}
        assert original.args == ["--stdio"]

    def test_from_dict_keeps_defaults_for_missing_keys(self):
        config = ServerConfig.from_dict({
            "executable": "bazel-lsp-server",
            "selector": [{"language": "starlark"}],
            "env": {"RUST_LOG": "debug"},
            "debug": True,
            "debug_args": ["--wait-for-debugger"],
        })
        assert config.executable == "bazel-lsp-server"
        assert config.selector.to_list() == [{"language": "starlark"}]
        assert config.options.env == {"RUST_LOG": "debug"}
        assert config.options.debug_args == ["--wait-for-debugger"]
        assert config.watch_patterns == ServerConfig().watch_patterns
        assert config.startup_timeout == 30.0

    def test_dict_round_trip(self):
        config = ServerConfig(args=["--stdio"], initialization_options={"bazel": "bazelisk"})
        assert ServerConfig.from_dict(config.to_dict()) == config


class TestLoadServerConfig:
    def test_from_file(self, tmp_path):
        path = tmp_path / "server.json"
        path.write_text(json.dumps({"name": "Custom", "watch": ["**/WORKSPACE", "**/*.bzl"]}))

        config = load_server_config(str(path), install_root="/opt/client")
        assert config.name == "Custom"
        assert [p.glob for p in config.watch_patterns] == ["**/WORKSPACE", "**/*.bzl"]
        assert config.install_root == "/opt/client"

    def test_file_install_root_wins(self, tmp_path):
        path = tmp_path / "server.json"
        path.write_text(json.dumps({"install_root": "/from/file"}))
        assert load_server_config(str(path), install_root="/from/cli").install_root == "/from/file"

    def test_environment_applied(self, monkeypatch):
        monkeypatch.setenv("BAZEL_LSP_SERVER_PATH", "/usr/local/bin/bazel-lsp-server")
        assert load_server_config().executable == "/usr/local/bin/bazel-lsp-server"


class TestClientConfig:
    def test_defaults(self):
        config = Config()
        assert config.log_level == "INFO"
        assert config.log_dir is None
        assert config.json_logs is False

    def test_from_environment(self, monkeypatch):
        monkeypatch.setenv("BAZEL_LSP_LOG_LEVEL", "debug")
        monkeypatch.setenv("BAZEL_LSP_JSON_LOGS", "true")
        monkeypatch.setenv("BAZEL_LSP_INSTALL_ROOT", "/opt/client")

        config = Config()
        assert config.log_level == "DEBUG"
        assert config.json_logs is True
        assert config.install_root == "/opt/client"
