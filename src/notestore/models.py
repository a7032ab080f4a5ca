"""Data models for documents, directory nodes, tasks and search matches."""

from __future__ import annotations

import string
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Iterator, Optional


class InsertionStrategy(Enum):
    """Where add_entry places a new entry."""
    SECTION = "section"
    TIMESTAMP = "timestamp"
    PREPEND = "prepend"
    APPEND = "append"


DAY_HEADER_FORMAT = "%A, %B %d, %Y"


def local_now() -> datetime:
    """Get current local time."""
    return datetime.now()


def title_case(text: str) -> str:
    """Turn a file or directory name into a display title."""
    return string.capwords(text.replace("-", " ").replace("_", " "))


def format_day_header(dt: datetime | date) -> str:
    """Format a date the way day headers are written, e.g. 'Monday, September 15, 2025'."""
    return f"{dt:%A}, {dt:%B} {dt.day}, {dt.year}"


def parse_day_header(text: str) -> Optional[date]:
    """Parse the text of a day header; None when it is not a date."""
    try:
        return datetime.strptime(text.strip(), DAY_HEADER_FORMAT).date()
    except ValueError:
        return None


def format_clock(dt: datetime) -> str:
    """Format a time of day as 12-hour clock with seconds, e.g. '03:30:00 PM'."""
    return dt.strftime("%I:%M:%S %p")


def temporal_path(bucket: str, dt: datetime | date) -> str:
    """Compute the monthly file path for a temporal bucket, e.g. 'daily/2025/09-september.md'."""
    return f"{bucket}/{dt.year:04d}/{dt.month:02d}-{dt:%B}.md".lower()


def split_lines(content: str) -> list[str]:
    """Split text into lines, normalizing Windows and legacy Mac line endings."""
    return content.replace("\r\n", "\n").replace("\r", "\n").split("\n")


@dataclass(frozen=True)
class DocumentInfo:
    """Identity and display metadata for one document or directory."""
    id: str
    path: str
    title: str
    title_base: str
    directory_path: str = ""
    depth: int = 0
    is_temporal: bool = False
    is_resource: bool = False
    is_directory: bool = False

    # Temporal files only
    year: Optional[str] = None
    month: Optional[str] = None         # "09"
    month_name: Optional[str] = None    # "September"

    @property
    def name(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    def relative_path(self, resources_directory: str = "resources") -> str:
        """Path relative to the resources directory for resource files, else the root."""
        prefix = resources_directory + "/"
        if self.is_resource and self.path.startswith(prefix):
            return self.path[len(prefix):]
        return self.path

    def to_dict(self) -> dict:
        """Convert info to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "path": self.path,
            "title": self.title,
            "title_base": self.title_base,
            "directory_path": self.directory_path,
            "depth": self.depth,
            "is_temporal": self.is_temporal,
            "is_resource": self.is_resource,
            "is_directory": self.is_directory,
            "year": self.year,
            "month": self.month,
            "month_name": self.month_name,
        }


@dataclass
class DirectoryNode:
    """A directory in the document tree. Children are owned; there is no parent link."""
    name: str
    files: list[DocumentInfo] = field(default_factory=list)
    directories: dict[str, DirectoryNode] = field(default_factory=dict)

    def find(self, parts: list[str]) -> Optional[DirectoryNode]:
        """Walk child names from this node; None when any step is missing."""
        node = self
        for part in parts:
            child = node.directories.get(part)
            if child is None:
                return None
            node = child
        return node

    def walk_files(self) -> Iterator[DocumentInfo]:
        """Yield every file in this subtree, depth first."""
        yield from self.files
        for name in sorted(self.directories):
            yield from self.directories[name].walk_files()

    def copy_shallow(self) -> DirectoryNode:
        """New node sharing children, with its own file list and child map."""
        return DirectoryNode(
            name=self.name,
            files=list(self.files),
            directories=dict(self.directories),
        )


@dataclass(frozen=True)
class Task:
    """A checkbox line in a document, addressed by its 1-based position.

    The ordinal is only valid until the document is next saved.
    """
    id: int
    label: str
    is_checked: bool
    line_index: int
    prefix: str     # e.g. "- " or "  * "
    state: str      # " ", "x" or "X"
    suffix: str     # the rest of the line after "]"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "label": self.label,
            "is_checked": self.is_checked,
            "line_index": self.line_index,
        }


@dataclass(frozen=True)
class SearchMatch:
    """A single line match in a document."""
    line_number: int    # 1-based
    line: str
    match_index: int    # running count of matches within the document
