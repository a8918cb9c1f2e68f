"""
LSP Server configuration - how to launch the Bazel language server and what it serves.
"""

import json
import os
import shlex
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from bazel_lsp.lsp.document_router import DocumentFilter, DocumentSelector
from bazel_lsp.lsp.file_watch import WatchPattern
from bazel_lsp.lsp.launcher import ProcessOptions

DEFAULT_SERVER_ID = "bazelLanguageServer"
DEFAULT_SERVER_NAME = "Bazel Language Server"
# Relative to the client's installation root
DEFAULT_EXECUTABLE = os.path.join("..", "server", "target", "debug", "server")

DEFAULT_SELECTOR = DocumentSelector(
    (
        DocumentFilter(scheme="file", language="starlark"),
        DocumentFilter(scheme="file", language="plaintext", pattern="**/WORKSPACE"),
        DocumentFilter(scheme="file", language="plaintext", pattern="**/BUILD"),
        DocumentFilter(scheme="file", language="plaintext", pattern="**/BUILD.bazel"),
        DocumentFilter(scheme="file", language="plaintext", pattern="**/*.bzl"),
        DocumentFilter(scheme="file", pattern="**/tools/build_rules/prelude_bazel"),
    )
)

# TODO: watch .bazelrc files as well
DEFAULT_WATCH_PATTERNS = (WatchPattern("**/WORKSPACE"),)


@dataclass
class ServerConfig:
    """Configuration for one language server session."""

    id: str = DEFAULT_SERVER_ID
    name: str = DEFAULT_SERVER_NAME
    executable: str = DEFAULT_EXECUTABLE
    args: List[str] = field(default_factory=list)
    install_root: Optional[str] = None
    selector: DocumentSelector = DEFAULT_SELECTOR
    watch_patterns: Tuple[WatchPattern, ...] = DEFAULT_WATCH_PATTERNS
    options: ProcessOptions = field(default_factory=ProcessOptions)
    initialization_options: Optional[Dict] = None
    startup_timeout: float = 30.0
    shutdown_timeout: float = 5.0

    def with_env_overrides(self, environ: Optional[Dict[str, str]] = None) -> "ServerConfig":
        """
        Apply BAZEL_LSP_* environment overrides.

        BAZEL_LSP_SERVER_PATH=/opt/bazel-lsp/server
        BAZEL_LSP_SERVER_ARGS="--stdio --verbose"
        """
        env = os.environ if environ is None else environ
        config = replace(
            self,
            args=list(self.args),
            options=replace(
                self.options,
                env=dict(self.options.env),
                debug_args=list(self.options.debug_args),
            ),
        )

        if env.get("BAZEL_LSP_SERVER_PATH"):
            config.executable = env["BAZEL_LSP_SERVER_PATH"]
        if env.get("BAZEL_LSP_SERVER_ARGS"):
            config.args = shlex.split(env["BAZEL_LSP_SERVER_ARGS"])
        if env.get("BAZEL_LSP_DEBUG"):
            config.options.debug = env["BAZEL_LSP_DEBUG"].lower() in ("1", "true", "yes")
        if env.get("BAZEL_LSP_STARTUP_TIMEOUT"):
            config.startup_timeout = float(env["BAZEL_LSP_STARTUP_TIMEOUT"])
        if env.get("BAZEL_LSP_SHUTDOWN_TIMEOUT"):
            config.shutdown_timeout = float(env["BAZEL_LSP_SHUTDOWN_TIMEOUT"])
        return config

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "name": self.name,
            "executable": self.executable,
            "args": list(self.args),
            "install_root": self.install_root,
            "selector": self.selector.to_list(),
            "watch": [p.glob for p in self.watch_patterns],
            "env": dict(self.options.env),
            "debug": self.options.debug,
            "debug_args": list(self.options.debug_args),
            "initialization_options": self.initialization_options,
            "startup_timeout": self.startup_timeout,
            "shutdown_timeout": self.shutdown_timeout,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "ServerConfig":
        """Build from a dict; missing keys keep their defaults."""
        defaults = cls()
        selector = data.get("selector")
        watch = data.get("watch")
        return cls(
            id=data.get("id", defaults.id),
            name=data.get("name", defaults.name),
            executable=data.get("executable", defaults.executable),
            args=list(data.get("args", [])),
            install_root=data.get("install_root"),
            selector=DocumentSelector.from_list(selector) if selector is not None else defaults.selector,
            watch_patterns=tuple(WatchPattern(g) for g in watch) if watch is not None else defaults.watch_patterns,
            options=ProcessOptions(
                env=dict(data.get("env", {})),
                cwd=data.get("cwd"),
                debug=bool(data.get("debug", False)),
                debug_args=list(data.get("debug_args", [])),
            ),
            initialization_options=data.get("initialization_options"),
            startup_timeout=float(data.get("startup_timeout", defaults.startup_timeout)),
            shutdown_timeout=float(data.get("shutdown_timeout", defaults.shutdown_timeout)),
        )


def load_server_config(
    path: Optional[str] = None, install_root: Optional[str] = None
) -> ServerConfig:
    """
    Load the server configuration.

    Args:
        path: Optional JSON file with ServerConfig fields
        install_root: Installation root for relative executable paths

    Returns:
        Config with environment overrides applied
    """
    if path:
        config = ServerConfig.from_dict(json.loads(Path(path).read_text(encoding="utf-8")))
    else:
        config = ServerConfig()
    if install_root and not config.install_root:
        config.install_root = install_root
    return config.with_env_overrides()
