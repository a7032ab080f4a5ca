"""Checkbox task index for a single document.

Tasks are addressed by their 1-based position among checkbox lines. The
position is only meaningful until the document is next saved: deleting task 2
turns the old task 3 into task 2.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Optional

from .errors import TaskNotFoundError
from .models import Task, local_now, split_lines

if TYPE_CHECKING:
    from .document import Document


TASK_PATTERN = re.compile(r"^(\s*[-*]\s+)\[([ xX])\](.*)$")
DONE_TAG_PATTERN = re.compile(r"\s*@done\(\d{4}-\d{2}-\d{2}\)")
ARCHIVE_MARK = "✓"


def done_tag() -> str:
    """Completion tag for today, e.g. '@done(2025-09-15)'."""
    return f"@done({local_now():%Y-%m-%d})"


def extract_tasks(lines: list[str]) -> list[Task]:
    """Find every checkbox line, numbering them from 1 in file order."""
    tasks = []
    for i, line in enumerate(lines):
        match = TASK_PATTERN.match(line)
        if match is None:
            continue

        prefix, state, suffix = match.groups()
        tasks.append(Task(
            id=len(tasks) + 1,
            label=suffix.strip(),
            is_checked=state in ("x", "X"),
            line_index=i,
            prefix=prefix,
            state=state,
            suffix=suffix,
        ))

    return tasks


def _render(prefix: str, state: str, label: str) -> str:
    return f"{prefix}[{state}] {label}" if label else f"{prefix}[{state}]"


class TaskIndex:
    """Lazily computed task list, dropped whenever the document saves."""

    def __init__(self, document: Document):
        self._document = document
        self._cache: Optional[list[Task]] = None

    def invalidate(self) -> None:
        self._cache = None

    def all(self) -> list[Task]:
        if self._cache is None:
            self._cache = extract_tasks(split_lines(self._document.content()))
        return list(self._cache)

    def count(self) -> int:
        return len(self.all())

    def get_task(self, ordinal: int) -> Task:
        """Return the task at a 1-based position.

        Raises:
            TaskNotFoundError: If the ordinal is outside [1, count]
        """
        tasks = self.all()
        if ordinal < 1 or ordinal > len(tasks):
            raise TaskNotFoundError(ordinal, len(tasks))
        return tasks[ordinal - 1]

    def _replace_line(self, task: Task, line: str) -> None:
        lines = split_lines(self._document.content())
        lines[task.line_index] = line
        self._document.save("\n".join(lines))

    def toggle(self, ordinal: int) -> Task:
        """Check an open task (tagging it done today) or reopen a checked one."""
        task = self.get_task(ordinal)

        if task.is_checked:
            state = " "
            label = DONE_TAG_PATTERN.sub("", task.suffix).strip()
        else:
            state = "x"
            label = task.suffix.strip()
            if not DONE_TAG_PATTERN.search(label):
                label = f"{label} {done_tag()}".strip()

        line = _render(task.prefix, state, label)
        self._replace_line(task, line)

        return Task(
            id=task.id,
            label=label,
            is_checked=state == "x",
            line_index=task.line_index,
            prefix=task.prefix,
            state=state,
            suffix=line[len(task.prefix) + 3:],
        )

    def update_label(self, ordinal: int, label: str) -> Task:
        """Replace a task's text. Checked tasks keep or gain a done tag."""
        task = self.get_task(ordinal)

        new_label = label.strip()
        if task.is_checked and not DONE_TAG_PATTERN.search(new_label):
            new_label = f"{new_label} {done_tag()}".strip()

        line = _render(task.prefix, task.state, new_label)
        self._replace_line(task, line)

        return Task(
            id=task.id,
            label=new_label,
            is_checked=task.is_checked,
            line_index=task.line_index,
            prefix=task.prefix,
            state=task.state,
            suffix=line[len(task.prefix) + 3:],
        )

    def delete(self, ordinal: int) -> None:
        """Remove a task's line. Later tasks move up one position."""
        task = self.get_task(ordinal)

        lines = split_lines(self._document.content())
        del lines[task.line_index]
        self._document.save("\n".join(lines))

    def archive_completed(self) -> list[str]:
        """Remove every checked task and return them as archive lines.

        The document is only saved when something was archived. Writing the
        returned lines elsewhere is up to the caller.
        """
        remaining = []
        archived = []
        for line in split_lines(self._document.content()):
            match = TASK_PATTERN.match(line)
            if match is not None and match.group(2).strip():
                archived.append(f"- {ARCHIVE_MARK} {match.group(3).strip()}")
            else:
                remaining.append(line)

        if archived:
            self._document.save("\n".join(remaining))

        return archived
