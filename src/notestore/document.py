"""Document handle - lazy load, normalized save and entry insertion."""

from __future__ import annotations

import logging
import weakref
from dataclasses import dataclass
from datetime import date, datetime
from typing import TYPE_CHECKING, Any, Callable, Optional

from .errors import RepositoryError, StoreIOError
from .front_matter import find_front_matter, parse_front_matter
from .models import (
    DocumentInfo,
    InsertionStrategy,
    format_clock,
    format_day_header,
    local_now,
    parse_day_header,
    split_lines,
)
from .tasks import TaskIndex

if TYPE_CHECKING:
    from .repository import Repository

logger = logging.getLogger(__name__)


EntryFormatter = Callable[[str, datetime], str]


def note_entry_formatter(entry: str, timestamp: datetime) -> str:
    return f"{entry}\n"


def task_entry_formatter(entry: str, timestamp: datetime) -> str:
    return f"- [ ] {entry}"


def timestamp_entry_formatter(entry: str, timestamp: datetime) -> str:
    return f"### {format_clock(timestamp)}\n\n{entry}\n"


@dataclass(frozen=True)
class SectionConfig:
    """Target section for the SECTION strategy."""
    header: str                     # e.g. "## Inbox Dump"
    insert_at_top: bool = True      # False inserts at the bottom of the section
    blank_line_after: bool = False


@dataclass(frozen=True)
class EntryConfig:
    """How add_entry formats and places an entry."""
    strategy: InsertionStrategy
    formatter: EntryFormatter = note_entry_formatter
    timestamp: Optional[datetime] = None    # defaults to now
    section: Optional[SectionConfig] = None

    def resolved_timestamp(self) -> datetime:
        return self.timestamp if self.timestamp is not None else local_now()


def _skip_blank(lines: list[str], pos: int) -> int:
    while pos < len(lines) and lines[pos].strip() == "":
        pos += 1
    return pos


def body_start(lines: list[str]) -> int:
    """Index of the first line after any front matter and the first '# ' title."""
    pos = 0
    bounds = find_front_matter(lines)
    if bounds.found:
        pos = _skip_blank(lines, bounds.end)

    for i in range(pos, len(lines)):
        if lines[i].strip().startswith("# "):
            return _skip_blank(lines, i + 1)

    return pos


def insert_in_section(lines: list[str], block: str, section: SectionConfig) -> list[str]:
    """Insert ``block`` at the top or bottom of a '##' section, creating it if missing."""
    header = section.header.strip()
    trailer = [""] if section.blank_line_after else []

    if header in ("", "##"):
        bounds = find_front_matter(lines)
        if not bounds.found:
            return [block, *trailer, *lines]
        return [*lines[:bounds.end], block, *trailer, *lines[bounds.end:]]

    start = next((i for i, line in enumerate(lines) if line.strip() == header), None)

    if start is None:
        logger.debug("Section %r not found; creating it", header)
        pos = body_start(lines)
        return [*lines[:pos], header, block, *trailer, "", *lines[pos:]]

    end = len(lines)
    for j in range(start + 1, len(lines)):
        if lines[j].strip().startswith("## "):
            end = j
            break

    if section.insert_at_top:
        pos = start + 1
        while pos < end and lines[pos].strip() == "":
            pos += 1
    else:
        pos = end
        while pos > start + 1 and lines[pos - 1].strip() == "":
            pos -= 1

    return [*lines[:pos], block, *trailer, *lines[pos:]]


def insert_by_timestamp(lines: list[str], block: str, timestamp: datetime | date) -> list[str]:
    """Merge ``block`` under its day header, keeping day headers newest first.

    An existing header for the same day receives the entry directly beneath
    it. A new day goes in front of the first header older than it, or at the
    end of the document when no header is older.
    """
    day = timestamp.date() if isinstance(timestamp, datetime) else timestamp
    header = f"## {format_day_header(day)}"

    dated: list[tuple[int, date]] = []
    for i in range(body_start(lines), len(lines)):
        stripped = lines[i].strip()
        if not stripped.startswith("## "):
            continue

        parsed = parse_day_header(stripped[3:])
        if parsed is None:
            continue

        if parsed == day:
            rest = _skip_blank(lines, i + 1)
            return [*lines[:i + 1], "", block, "", *lines[rest:]]

        dated.append((i, parsed))

    for i, parsed in dated:
        if parsed < day:
            return [*lines[:i], header, "", block, "", *lines[i:]]

    result = list(lines)
    while result and result[-1].strip() == "":
        result.pop()
    if result:
        result.append("")
    return [*result, header, "", block]


class Document:
    """One markdown file bound to its index record.

    Content is read on first access. Not safe for concurrent use; callers
    keep one instance per request.
    """

    def __init__(self, info: DocumentInfo, repository: Repository):
        self.info = info
        self._repository = weakref.ref(repository)
        self._content = ""
        self._loaded = False
        self._tasks = TaskIndex(self)

    def __repr__(self) -> str:
        return f"Document({self.info.path!r})"

    @property
    def repository(self) -> Repository:
        repo = self._repository()
        if repo is None:
            raise RepositoryError(f"Repository for {self.info.path} no longer exists")
        return repo

    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def tasks(self) -> TaskIndex:
        return self._tasks

    def _load(self) -> None:
        if self._loaded:
            return

        repo = self.repository
        data = repo.store.read_bytes(self.info.path)

        if repo.codec is not None and repo.codec.is_encrypted(data):
            self._content = repo.codec.decrypt(data)
        else:
            try:
                self._content = data.decode("utf-8")
            except UnicodeDecodeError as e:
                raise StoreIOError("decode", self.info.path, e) from e

        self._loaded = True

    def content(self) -> str:
        self._load()
        return self._content

    def front_matter(self) -> dict[str, Any]:
        return parse_front_matter(self.content())

    def save(self, text: str) -> None:
        """Write ``text`` trimmed, with exactly one trailing newline."""
        normalized = text.strip() + "\n"
        repo = self.repository

        if repo.codec is not None and repo.codec.wants_encryption(normalized):
            repo.store.write(self.info.path, repo.codec.encrypt(normalized))
        else:
            repo.store.write(self.info.path, normalized)

        self._content = normalized
        self._loaded = True
        self._tasks.invalidate()

    def delete(self) -> None:
        """Remove the file and drop it from the repository index."""
        repo = self.repository
        repo.store.remove(self.info.path)
        repo.discard(self.info.id)

        self._content = ""
        self._loaded = False
        self._tasks.invalidate()

    def add_entry(self, entry: str, config: EntryConfig) -> None:
        """Format ``entry`` and insert it according to ``config.strategy``.

        Raises:
            ValueError: If the strategy is unknown, or SECTION has no section
        """
        if not isinstance(config.strategy, InsertionStrategy):
            raise ValueError(f"Unsupported insertion strategy: {config.strategy!r}")
        if config.strategy is InsertionStrategy.SECTION and config.section is None:
            raise ValueError("Section strategy requires a SectionConfig")

        content = self.content()
        timestamp = config.resolved_timestamp()
        formatted = config.formatter(entry, timestamp)

        if content == "":
            self.save(formatted)
            return

        lines = split_lines(content)
        if len(lines) > 1 and lines[-1] == "":
            lines.pop()

        block = formatted.rstrip("\n")

        if config.strategy is InsertionStrategy.PREPEND:
            result = [block, *lines]
        elif config.strategy is InsertionStrategy.APPEND:
            result = [*lines, block]
        elif config.strategy is InsertionStrategy.SECTION:
            result = insert_in_section(lines, block, config.section)
        else:
            result = insert_by_timestamp(lines, block, timestamp)

        self.save("\n".join(result))
        logger.debug("Added %s entry to %s", config.strategy.value, self.info.path)
