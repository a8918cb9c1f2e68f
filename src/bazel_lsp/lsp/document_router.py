"""
Document Router - decides which documents and files belong to a session.

A selector is an ordered list of filters. A filter matches when every field
it sets matches (unset fields are wildcards); a selector matches when any of
its filters does.
"""

from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import PurePosixPath
from typing import Dict, Iterable, List, Optional, Tuple

import pathspec

from bazel_lsp.lsp.protocol import uri_scheme, uri_to_path


@dataclass
class TextDocument:
    """A document as reported by the host."""

    uri: str
    language_id: Optional[str] = None
    version: int = 0
    text: str = ""

    @property
    def scheme(self) -> str:
        return uri_scheme(self.uri)

    @property
    def path(self) -> str:
        return uri_to_path(self.uri)


@dataclass(frozen=True)
class DocumentFilter:
    """One selector rule: (language, scheme, glob pattern), each optional."""

    language: Optional[str] = None
    scheme: Optional[str] = None
    pattern: Optional[str] = None

    def matches(self, document: TextDocument, workspace_root: Optional[str] = None) -> bool:
        if self.language and self.language != document.language_id:
            return False
        if self.scheme and self.scheme != document.scheme:
            return False
        if self.pattern and not glob_match(self.pattern, document.path, workspace_root):
            return False
        return True

    def to_dict(self) -> Dict[str, str]:
        return {
            key: value
            for key, value in (
                ("language", self.language),
                ("scheme", self.scheme),
                ("pattern", self.pattern),
            )
            if value
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "DocumentFilter":
        return cls(
            language=data.get("language"),
            scheme=data.get("scheme"),
            pattern=data.get("pattern"),
        )


@dataclass(frozen=True)
class DocumentSelector:
    """Ordered, immutable set of document filters."""

    filters: Tuple[DocumentFilter, ...] = field(default_factory=tuple)

    def matches(self, document: TextDocument, workspace_root: Optional[str] = None) -> bool:
        return any(f.matches(document, workspace_root) for f in self.filters)

    def to_list(self) -> List[Dict[str, str]]:
        return [f.to_dict() for f in self.filters]

    @classmethod
    def from_list(cls, rules: Iterable) -> "DocumentSelector":
        """Build from dicts or DocumentFilter instances."""
        return cls(
            tuple(r if isinstance(r, DocumentFilter) else DocumentFilter.from_dict(r) for r in rules)
        )

    def __len__(self) -> int:
        return len(self.filters)


def matches(
    document: TextDocument, selector: DocumentSelector, workspace_root: Optional[str] = None
) -> bool:
    """True iff at least one filter in `selector` matches `document`."""
    return selector.matches(document, workspace_root)


class DocumentRouter:
    """Routes host documents into a session based on its selector."""

    def __init__(self, selector: DocumentSelector, workspace_root: Optional[str] = None):
        self.selector = selector
        self.workspace_root = workspace_root

    def is_in_scope(self, document: TextDocument) -> bool:
        return self.selector.matches(document, self.workspace_root)




# --- Glob matching ---


def glob_match(pattern: str, path: str, workspace_root: Optional[str] = None) -> bool:
    """
    Match a filesystem path against a glob pattern.

    Supports *, **, ?, [...] classes and {a,b} alternation. The pattern is
    anchored at workspace_root when the path lies beneath it, otherwise at /.
    Matching follows gitignore rules, so a pattern that matches a directory
    also matches everything below it.
    """
    return _compile_glob(pattern).match_file(_anchor(path, workspace_root))


def _anchor(path: str, workspace_root: Optional[str]) -> str:
    posix = PurePosixPath(path.replace("\\", "/"))
    if workspace_root:
        root = PurePosixPath(workspace_root.replace("\\", "/"))
        try:
            return str(posix.relative_to(root))
        except ValueError:
            pass
    return str(posix).lstrip("/")


@lru_cache(maxsize=256)
def _compile_glob(pattern: str) -> pathspec.PathSpec:
    # A leading / keeps gitwildmatch from matching slash-free patterns at any depth
    lines = ["/" + p for p in _expand_braces(pattern.lstrip("/"))]
    return pathspec.PathSpec.from_lines(pathspec.patterns.GitWildMatchPattern, lines)


def _expand_braces(pattern: str) -> List[str]:
    """'BUILD{,.bazel}' -> ['BUILD', 'BUILD.bazel']. Braces do not nest."""
    start = pattern.find("{")
    end = pattern.find("}", start + 1)
    if start < 0 or end < 0:
        return [pattern]
    head, body, tail = pattern[:start], pattern[start + 1 : end], pattern[end + 1 :]
    return [head + alt + rest for alt in body.split(",") for rest in _expand_braces(tail)]
