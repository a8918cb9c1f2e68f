"""
CLI module for bazel-lsp - command-line interface and terminal UI.
"""

from bazel_lsp.cli import ui
from bazel_lsp.cli.commands import main

__all__ = ["main", "ui"]
