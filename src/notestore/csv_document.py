"""Record and cell access for CSV documents, with a JSON metadata sidecar."""

from __future__ import annotations

import csv
import io
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from .document import Document
from .errors import ColumnNotFoundError, RecordNotFoundError, StoreIOError

logger = logging.getLogger(__name__)

METADATA_SUFFIX = ".meta.json"


class CellType(str, Enum):
    """Declared type of a CSV column."""
    TEXT = "text"
    DATE = "date"
    TIME = "time"
    BOOL = "bool"
    NUMBER = "number"


@dataclass
class CSVMetadata:
    """Display and typing hints stored next to a CSV document."""
    title: str = ""
    description: str = ""
    sort_column: str = ""
    sort_desc: bool = False
    column_types: dict[int, CellType] = field(default_factory=dict)
    headers: list[str] = field(default_factory=list)
    custom: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Serialize, leaving out empty fields."""
        data: dict[str, Any] = {}
        if self.title:
            data["title"] = self.title
        if self.description:
            data["description"] = self.description
        if self.sort_column:
            data["sort_column"] = self.sort_column
        if self.sort_desc:
            data["sort_desc"] = True
        if self.column_types:
            data["column_types"] = {str(k): v.value for k, v in sorted(self.column_types.items())}
        if self.headers:
            data["headers"] = list(self.headers)
        if self.custom:
            data["custom"] = dict(self.custom)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CSVMetadata:
        """Build from a parsed sidecar; JSON object keys for column types are strings."""
        column_types = {
            int(k): CellType(v)
            for k, v in (data.get("column_types") or {}).items()
        }
        return cls(
            title=data.get("title", ""),
            description=data.get("description", ""),
            sort_column=data.get("sort_column", ""),
            sort_desc=bool(data.get("sort_desc", False)),
            column_types=column_types,
            headers=list(data.get("headers") or []),
            custom=dict(data.get("custom") or {}),
        )


class CSVDocument:
    """Rows and cells of a CSV file held by a :class:`Document`.

    Row 0 is the header row. Records are parsed on first access and cached;
    every change rewrites the whole file through ``Document.save``. Like
    Document, not safe for concurrent use.
    """

    def __init__(self, document: Document):
        self.document = document
        self._metadata: Optional[CSVMetadata] = None
        self._records: Optional[list[list[str]]] = None

    def __repr__(self) -> str:
        return f"CSVDocument({self.document.info.path!r})"

    @property
    def metadata_path(self) -> str:
        return self.document.info.path + METADATA_SUFFIX

    # ========== Metadata ==========

    def get_metadata(self) -> CSVMetadata:
        """Load the sidecar, or return empty metadata when there is none.

        Raises:
            StoreIOError: If the sidecar cannot be read or is not valid JSON
        """
        if self._metadata is not None:
            return self._metadata

        store = self.document.repository.store
        path = self.metadata_path
        if not store.exists(path):
            return CSVMetadata()

        try:
            data = json.loads(store.read_text(path))
            metadata = CSVMetadata.from_dict(data)
        except (json.JSONDecodeError, ValueError, TypeError, AttributeError) as e:
            raise StoreIOError("parse", path, e) from e

        self._metadata = metadata
        return metadata

    def save_metadata(self, metadata: CSVMetadata) -> None:
        """Write the sidecar as indented JSON."""
        path = self.metadata_path
        self.document.repository.store.write(path, json.dumps(metadata.to_dict(), indent=2) + "\n")
        self._metadata = metadata
        logger.debug("Saved CSV metadata %s", path)

    # ========== Records ==========

    def get_records(self) -> list[list[str]]:
        """All rows including the header. Empty lines are skipped.

        Raises:
            StoreIOError: If the content is not valid CSV
        """
        if self._records is None:
            self._records = self._parse(self.document.content())
        return self._records

    def _parse(self, content: str) -> list[list[str]]:
        try:
            return [row for row in csv.reader(io.StringIO(content), strict=True) if row]
        except csv.Error as e:
            raise StoreIOError("parse", self.document.info.path, e) from e

    def _save(self, records: list[list[str]]) -> None:
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerows(records)

        self.document.save(buffer.getvalue())
        self._records = records

    def _check_row(self, records: list[list[str]], row: int) -> None:
        if row < 0 or row >= len(records):
            raise RecordNotFoundError(row, len(records))

    def get_record(self, row: int) -> list[str]:
        """Raises RecordNotFoundError when ``row`` is out of range."""
        records = self.get_records()
        self._check_row(records, row)
        return records[row]

    def get_cell(self, row: int, column: int) -> str:
        record = self.get_record(row)
        if column < 0 or column >= len(record):
            raise ColumnNotFoundError(column, len(record))
        return record[column]

    def update_cell(self, row: int, column: int, value: str) -> None:
        records = self.get_records()
        self._check_row(records, row)
        if column < 0 or column >= len(records[row]):
            raise ColumnNotFoundError(column, len(records[row]))

        updated = [list(record) for record in records]
        updated[row][column] = value
        self._save(updated)

    def update_record(self, row: int, values: list[str]) -> None:
        """Replace a whole row; the new row may have a different width."""
        records = self.get_records()
        self._check_row(records, row)

        updated = list(records)
        updated[row] = list(values)
        self._save(updated)

    def add_record(self, values: list[str]) -> None:
        """Append a row. On an empty document the first row becomes the header."""
        self._save([*self.get_records(), list(values)])

    def delete_record(self, row: int) -> None:
        records = self.get_records()
        self._check_row(records, row)
        self._save(records[:row] + records[row + 1:])

    def record_count(self) -> int:
        """Number of data rows, not counting the header."""
        return max(len(self.get_records()) - 1, 0)

    def column_count(self) -> int:
        """Width of the header row, 0 for an empty document."""
        records = self.get_records()
        return len(records[0]) if records else 0
