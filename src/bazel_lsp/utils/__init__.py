"""
Utilities module - logging.
"""

from bazel_lsp.utils.logger import logger, ClientLogger, JsonFormatter

__all__ = ["logger", "ClientLogger", "JsonFormatter"]
