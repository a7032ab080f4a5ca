"""Locking utilities: on-disk write locks and the in-process index lock."""

from __future__ import annotations

import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

import portalocker


def _hidden_sibling(path: Path, suffix: str) -> Path:
    """Return a dot-prefixed sibling so the index never lists it."""
    return path.with_name(f".{path.name}{suffix}")


def lock_path_for(path: Path) -> Path:
    """Path of the lock file guarding writes to ``path``."""
    return _hidden_sibling(path, ".lock")


@contextmanager
def file_lock(path: Path, timeout: float = 10.0) -> Generator[None, None, None]:
    """Hold the writer lock for a document while the block runs.

    The lock lives in ``.<name>.lock`` next to the document and is left in
    place afterwards; the dot prefix keeps it out of the index.

    Args:
        path: Document whose writers are serialized
        timeout: Seconds to wait before giving up

    Raises:
        portalocker.LockException: If another writer still holds the lock
    """
    lock_path = lock_path_for(path)

    if not lock_path.exists():
        lock_path.touch()

    with portalocker.Lock(lock_path, timeout=timeout):
        yield


@contextmanager
def atomic_write(path: Path, mode: str = "w", encoding: str = "utf-8") -> Generator:
    """Yield a handle whose contents replace ``path`` only on a clean exit.

    Output goes to ``.<name>.tmp`` and is moved over the document with
    ``os.replace``. Readers see the old or the new bytes, never a mix. On
    error the temp file is removed and the document is untouched. Text mode
    opens with ``newline=""`` so line endings are written as given.

    Args:
        path: Document to replace
        mode: 'w' for text, 'wb' for bytes
        encoding: Text encoding, unused for bytes

    Yields:
        Handle on the temp file
    """
    tmp_path = _hidden_sibling(path, ".tmp")

    try:
        if "b" in mode:
            with open(tmp_path, mode) as f:
                yield f
        else:
            with open(tmp_path, mode, encoding=encoding, newline="") as f:
                yield f

        os.replace(tmp_path, path)

    except Exception:
        if tmp_path.exists():
            tmp_path.unlink()
        raise


@contextmanager
def locked_atomic_write(path: Path, mode: str = "w", encoding: str = "utf-8", timeout: float = 10.0) -> Generator:
    """Replace a document atomically while holding its writer lock.

    This is how the store writes every document.

    Args:
        path: Document to replace
        mode: 'w' for text, 'wb' for bytes
        encoding: Text encoding, unused for bytes
        timeout: Seconds to wait for the writer lock

    Yields:
        Handle on the temp file
    """
    with file_lock(path, timeout=timeout):
        with atomic_write(path, mode=mode, encoding=encoding) as f:
            yield f


class ReadWriteLock:
    """Many concurrent readers or a single writer.

    Waiting writers block new readers so a steady stream of lookups cannot
    starve a reload. Not reentrant: a holder must not re-acquire.
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Generator[None, None, None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Generator[None, None, None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()
