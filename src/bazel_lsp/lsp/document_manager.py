"""
Document Manager - tracks open documents for LSP synchronization.
"""

from dataclasses import dataclass
from typing import Callable, Dict, Optional, Set
import logging

from bazel_lsp.lsp.document_router import TextDocument
from bazel_lsp.lsp.protocol import TextDocumentSyncKind

logger = logging.getLogger(__name__)


@dataclass
class DocumentState:
    """State of an open document."""

    uri: str
    version: int
    content: str
    language: Optional[str]


class DocumentManager:
    """
    Manages document state for LSP synchronization.

    LSP requires servers to be notified when documents are:
    - Opened (textDocument/didOpen)
    - Changed (textDocument/didChange)
    - Closed (textDocument/didClose)

    This manager tracks document state and sends appropriate notifications.
    Callers decide whether a document is in scope; everything handed to this
    class is forwarded.
    """

    def __init__(
        self,
        send_notification: Callable[[str, Dict], None],
        sync_kind: Callable[[], TextDocumentSyncKind] = lambda: TextDocumentSyncKind.FULL,
        open_close: Callable[[], bool] = lambda: True,
    ):
        """
        Args:
            send_notification: Sends a notification to the server
            sync_kind: How didChange content is sent; NONE sends no didChange
            open_close: Whether the server wants didOpen and didClose
        """
        self._send_notification = send_notification
        self._sync_kind = sync_kind
        self._open_close = open_close
        self._documents: Dict[str, DocumentState] = {}

    def open_document(self, document: TextDocument) -> bool:
        """
        Open a document and notify the language server.

        Returns:
            True if a didOpen was sent, False if the document was already open
        """
        if document.uri in self._documents:
            return False

        if self._open_close():
            self._send_notification(
                "textDocument/didOpen",
                {
                    "textDocument": {
                        "uri": document.uri,
                        "languageId": document.language_id or "",
                        "version": document.version,
                        "text": document.text,
                    }
                },
            )

        self._documents[document.uri] = DocumentState(
            uri=document.uri,
            version=document.version,
            content=document.text,
            language=document.language_id,
        )
        logger.debug(f"Opened document: {document.uri}")
        return True

    def change_document(self, document: TextDocument) -> bool:
        """Send the new content of a document, opening it first if needed."""
        state = self._documents.get(document.uri)
        if state is None:
            return self.open_document(document)

        if document.version <= state.version:
            logger.debug(f"Ignoring stale change for {document.uri} (v{document.version})")
            return False

        state.version = document.version
        state.content = document.text

        # Incremental servers also accept a range-less full replacement
        if self._sync_kind() != TextDocumentSyncKind.NONE:
            self._send_notification(
                "textDocument/didChange",
                {
                    "textDocument": {"uri": document.uri, "version": document.version},
                    "contentChanges": [{"text": document.text}],
                },
            )
        return True

    def close_document(self, uri: str) -> bool:
        """Close a document and notify the language server."""
        if uri not in self._documents:
            return False

        del self._documents[uri]
        if self._open_close():
            self._send_notification("textDocument/didClose", {"textDocument": {"uri": uri}})
        logger.debug(f"Closed document: {uri}")
        return True

    def is_open(self, uri: str) -> bool:
        """Check if a document is open."""
        return uri in self._documents

    def get_document(self, uri: str) -> Optional[DocumentState]:
        """Get document state if open."""
        return self._documents.get(uri)

    def list_open_documents(self) -> Set[str]:
        """List all open document URIs."""
        return set(self._documents.keys())

    def forget_all(self):
        """Drop all state without notifying. Used when the server goes away."""
        self._documents.clear()
