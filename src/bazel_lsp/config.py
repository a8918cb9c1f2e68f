"""
Configuration management for the Bazel language client.

Loads client-wide settings from environment variables. Server settings live
in bazel_lsp.lsp.config.
"""

import os
from dataclasses import dataclass
from typing import Optional


@dataclass
class Config:
    """Client configuration."""

    log_level: str = "INFO"
    log_dir: Optional[str] = None
    json_logs: bool = False
    config_file: Optional[str] = None
    install_root: Optional[str] = None

    def __init__(self):
        """Initialize config from environment variables."""
        self.log_level = os.getenv("BAZEL_LSP_LOG_LEVEL", "INFO").upper()
        self.log_dir = os.getenv("BAZEL_LSP_LOG_DIR") or None
        self.json_logs = os.getenv("BAZEL_LSP_JSON_LOGS", "false").lower() == "true"
        self.config_file = os.getenv("BAZEL_LSP_CONFIG") or None
        self.install_root = os.getenv("BAZEL_LSP_INSTALL_ROOT") or None
