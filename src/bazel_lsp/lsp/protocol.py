"""
LSP Protocol definitions - JSON-RPC 2.0 messages and Content-Length framing.

Implements the Language Server Protocol message types and encoding.
"""

from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path
from typing import Dict, Any, Optional, List
from urllib.parse import urlparse, unquote
import json

from bazel_lsp.lsp.errors import ProtocolError

JSONRPC_VERSION = "2.0"
HEADER_SEPARATOR = b"\r\n\r\n"
# Headers are a couple of short lines; anything larger is garbage on the wire.
MAX_HEADER_BYTES = 4096


@dataclass
class Position:
    """LSP Position (0-indexed line and character)."""

    line: int
    character: int

    def to_dict(self) -> Dict[str, int]:
        return {"line": self.line, "character": self.character}

    @classmethod
    def from_dict(cls, data: Dict) -> "Position":
        return cls(line=data["line"], character=data["character"])


@dataclass
class Range:
    """LSP Range with start and end positions."""

    start: Position
    end: Position

    def to_dict(self) -> Dict:
        return {"start": self.start.to_dict(), "end": self.end.to_dict()}

    @classmethod
    def from_dict(cls, data: Dict) -> "Range":
        return cls(
            start=Position.from_dict(data["start"]), end=Position.from_dict(data["end"])
        )


@dataclass
class Location:
    """LSP Location - file URI with range."""

    uri: str
    range: Range

    def to_file_path(self) -> str:
        """Convert URI to file path."""
        return uri_to_path(self.uri)

    def to_dict(self) -> Dict:
        return {"uri": self.uri, "range": self.range.to_dict()}

    @classmethod
    def from_dict(cls, data: Dict) -> "Location":
        return cls(uri=data["uri"], range=Range.from_dict(data["range"]))

    @classmethod
    def from_result(cls, result: Any) -> Optional["Location"]:
        """Parse a definition result (Location, Location[] or LocationLink[])."""
        if not result:
            return None

        # Handle array (multiple definitions)
        if isinstance(result, list):
            result = result[0]

        # Handle LocationLink format
        if "targetUri" in result:
            range_data = result.get("targetSelectionRange") or result.get("targetRange")
            return cls(uri=result["targetUri"], range=Range.from_dict(range_data))

        if "uri" in result:
            return cls.from_dict(result)

        return None


class FileChangeType(IntEnum):
    """Kinds of workspace/didChangeWatchedFiles events."""

    CREATED = 1
    CHANGED = 2
    DELETED = 3


class TextDocumentSyncKind(IntEnum):
    """How the server wants document content synchronised."""

    NONE = 0
    FULL = 1
    INCREMENTAL = 2


class LSPMessage:
    """LSP-specific message formatting."""

    @staticmethod
    def request(method: str, params: Optional[Any], request_id: int) -> Dict:
        message = {"jsonrpc": JSONRPC_VERSION, "id": request_id, "method": method}
        if params is not None:
            message["params"] = params
        return message

    @staticmethod
    def notification(method: str, params: Optional[Any] = None) -> Dict:
        message = {"jsonrpc": JSONRPC_VERSION, "method": method}
        if params is not None:
            message["params"] = params
        return message

    @staticmethod
    def response(request_id: Any, result: Any = None) -> Dict:
        return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}

    @staticmethod
    def error_response(request_id: Any, code: int, message: str) -> Dict:
        return {
            "jsonrpc": JSONRPC_VERSION,
            "id": request_id,
            "error": {"code": code, "message": message},
        }

    @staticmethod
    def initialize_params(
        root_path: str,
        process_id: Optional[int],
        client_name: str,
        initialization_options: Optional[Dict] = None,
    ) -> Dict:
        """Build initialize request params for a single-root workspace."""
        root_uri = path_to_uri(root_path)
        params = {
            "processId": process_id,
            "clientInfo": {"name": client_name},
            "rootPath": root_path,
            "rootUri": root_uri,
            "workspaceFolders": [{"uri": root_uri, "name": Path(root_path).name}],
            "capabilities": {
                "workspace": {
                    "workspaceFolders": True,
                    "didChangeWatchedFiles": {"dynamicRegistration": False},
                },
                "textDocument": {
                    "synchronization": {
                        "dynamicRegistration": False,
                        "didSave": False,
                    },
                    "definition": {"linkSupport": True},
                    "publishDiagnostics": {"relatedInformation": False},
                },
                "window": {"showMessage": {}},
            },
        }
        if initialization_options is not None:
            params["initializationOptions"] = initialization_options
        return params

    @staticmethod
    def encode(message: Dict) -> bytes:
        """Encode message with Content-Length header (LSP wire format)."""
        content = json.dumps(message, separators=(",", ":")).encode("utf-8")
        header = f"Content-Length: {len(content)}\r\n\r\n".encode("ascii")
        return header + content


class MessageFramer:
    """
    Incremental deframer for Content-Length framed JSON-RPC.

    Bytes are fed in arbitrary chunks; complete messages come out in wire order.
    Any malformed frame raises ProtocolError and leaves the framer unusable.
    """

    def __init__(self):
        self._buffer = b""

    def feed(self, data: bytes) -> List[Dict]:
        self._buffer += data
        messages = []

        while True:
            header_end = self._buffer.find(HEADER_SEPARATOR)
            if header_end < 0:
                if len(self._buffer) > MAX_HEADER_BYTES:
                    raise ProtocolError("Header block exceeds size limit")
                break

            content_length = self._parse_headers(self._buffer[:header_end])
            message_start = header_end + len(HEADER_SEPARATOR)
            message_end = message_start + content_length

            if len(self._buffer) < message_end:
                break  # Wait for more data

            body = self._buffer[message_start:message_end]
            self._buffer = self._buffer[message_end:]
            messages.append(self._parse_body(body))

        return messages

    @property
    def pending_bytes(self) -> int:
        return len(self._buffer)

    @staticmethod
    def _parse_headers(raw: bytes) -> int:
        try:
            header = raw.decode("ascii")
        except UnicodeDecodeError as e:
            raise ProtocolError(f"Non-ASCII header: {e}") from e

        content_length = None
        for line in header.split("\r\n"):
            name, sep, value = line.partition(":")
            if not sep:
                raise ProtocolError(f"Malformed header line: {line!r}")
            if name.strip().lower() == "content-length":
                try:
                    content_length = int(value.strip())
                except ValueError as e:
                    raise ProtocolError(f"Invalid Content-Length: {value.strip()!r}") from e

        if content_length is None:
            raise ProtocolError("Missing Content-Length header")
        if content_length < 0:
            raise ProtocolError(f"Negative Content-Length: {content_length}")
        return content_length

    @staticmethod
    def _parse_body(body: bytes) -> Dict:
        try:
            message = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ProtocolError(f"Undecodable message body: {e}") from e
        if not isinstance(message, dict):
            raise ProtocolError(f"Expected a JSON object, got {type(message).__name__}")
        return message


def path_to_uri(path: str) -> str:
    """Convert file path to file:// URI."""
    return Path(path).resolve().as_uri()


def uri_to_path(uri: str) -> str:
    """Convert file:// URI to file path."""
    parsed = urlparse(uri)
    if parsed.scheme != "file":
        return uri
    return unquote(parsed.path)


def uri_scheme(uri: str) -> str:
    return urlparse(uri).scheme


# LSP Error Codes
class LSPErrorCodes:
    """Standard LSP error codes."""

    ParseError = -32700
    InvalidRequest = -32600
    MethodNotFound = -32601
    InvalidParams = -32602
    InternalError = -32603
    ServerNotInitialized = -32002
    UnknownErrorCode = -32001
    RequestCancelled = -32800
    ContentModified = -32801
