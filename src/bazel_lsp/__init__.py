"""
bazel-lsp - client for the Bazel language server.

Launches the server, routes editor documents and watched files to it, and
manages the session lifecycle around the Language Server Protocol.
"""

__version__ = "0.1.0"

from bazel_lsp.extension import ExtensionContext, activate, deactivate

__all__ = ["ExtensionContext", "activate", "deactivate", "__version__"]
