"""Exception hierarchy shared by the store, repository, document and task index."""

from __future__ import annotations

from typing import Optional


class RepositoryError(Exception):
    """Base exception for notestore operations."""
    pass


class PathEscapeError(RepositoryError):
    """Raised when a path would resolve outside the store root."""

    def __init__(self, path: str, root: Optional[str] = None):
        self.path = path
        self.root = root
        if root:
            super().__init__(f"Path escapes root {root}: {path}")
        else:
            super().__init__(f"Path escapes root: {path}")


class StoreIOError(RepositoryError):
    """Raised when an underlying filesystem operation fails.

    Carries the operation name and the root-relative path so callers can
    report what failed without parsing the message.
    """

    def __init__(self, operation: str, path: str, cause: Exception):
        self.operation = operation
        self.path = path
        self.cause = cause
        super().__init__(f"{operation} {path}: {getattr(cause, 'strerror', None) or cause}")

    @property
    def not_found(self) -> bool:
        return isinstance(self.cause, FileNotFoundError)


class NotFoundError(RepositoryError):
    """Base for lookups that found nothing."""
    pass


class DocumentNotFoundError(NotFoundError):
    """Raised when an id matches neither a document nor a directory."""

    def __init__(self, doc_id: str):
        self.doc_id = doc_id
        super().__init__(f"Document not found: {doc_id}")


class TaskNotFoundError(NotFoundError):
    """Raised when a task ordinal is outside the document's task list."""

    def __init__(self, ordinal: int, count: int):
        self.ordinal = ordinal
        self.count = count
        super().__init__(f"Task {ordinal} not found (document has {count} tasks)")


class RecordNotFoundError(NotFoundError):
    """Raised when a CSV row index is outside the document's records."""

    def __init__(self, row: int, count: int):
        self.row = row
        self.count = count
        super().__init__(f"Record index {row} out of range (document has {count} records)")


class ColumnNotFoundError(NotFoundError):
    """Raised when a CSV column index is outside a record."""

    def __init__(self, column: int, count: int):
        self.column = column
        self.count = count
        super().__init__(f"Column index {column} out of range (record has {count} columns)")
