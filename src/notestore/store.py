"""Sandboxed filesystem access under a single root directory.

Every path handed to the store is relative to its root. Each operation opens
a fresh scoped view of the root, re-resolving and re-checking it, so a root
that is moved or replaced out-of-band is noticed on the next call instead of
being served from a stale handle.
"""

from __future__ import annotations

import errno
import logging
import os
import shutil
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Generator, Iterator, Optional, Union

import portalocker

from .errors import PathEscapeError, StoreIOError
from .locking import lock_path_for, locked_atomic_write

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScanResult:
    """One entry found while walking the store."""
    path: str               # posix, relative to the store root
    name: str
    is_dir: bool
    relative_path: str      # posix, relative to the walk's top directory


@contextmanager
def _wrap_io(operation: str, path: str) -> Generator[None, None, None]:
    """Re-raise filesystem failures as StoreIOError with context."""
    try:
        yield
    except OSError as e:
        raise StoreIOError(operation, path, e) from e
    except portalocker.LockException as e:
        raise StoreIOError(operation, path, e) from e


class SandboxedStore:
    """Path-escape-proof read/write/list/remove operations rooted at one directory."""

    def __init__(self, root: Path, create: bool = True, lock_timeout: float = 10.0):
        self._root = Path(root)
        self.lock_timeout = lock_timeout

        if create:
            with _wrap_io("mkdir", str(self._root)):
                self._root.mkdir(parents=True, exist_ok=True)

        # Fail early on an unusable root
        with self._open_root():
            pass

    @property
    def root(self) -> Path:
        return self._root

    # ========== Root handle ==========

    @contextmanager
    def _open_root(self) -> Iterator[Path]:
        """Resolve and validate the root for the duration of one operation."""
        real = Path(os.path.realpath(self._root))
        if not real.is_dir():
            raise StoreIOError(
                "open root",
                str(self._root),
                NotADirectoryError(errno.ENOTDIR, "root is not a directory", str(self._root)),
            )
        yield real

    def _resolve(self, root: Path, path: str) -> Path:
        """Map a root-relative path to a real path, refusing anything outside the root."""
        if path in ("", "."):
            return root

        normalized = path.replace("\\", "/")
        if os.path.isabs(path) or normalized.startswith("/"):
            raise PathEscapeError(path, str(self._root))

        candidate = Path(os.path.realpath(root / normalized))
        if candidate != root and not candidate.is_relative_to(root):
            raise PathEscapeError(path, str(self._root))

        return candidate

    @staticmethod
    def _relative(root: Path, target: Path) -> str:
        rel = target.relative_to(root).as_posix()
        return "" if rel == "." else rel

    # ========== Reading ==========

    def read_bytes(self, path: str) -> bytes:
        with self._open_root() as root:
            target = self._resolve(root, path)
            with _wrap_io("read", path):
                return target.read_bytes()

    def read_text(self, path: str, encoding: str = "utf-8") -> str:
        return self.read_bytes(path).decode(encoding)

    def exists(self, path: str) -> bool:
        """Check whether a file or directory exists. Missing paths never raise."""
        with self._open_root() as root:
            target = self._resolve(root, path)
            return target.exists()

    def stat(self, path: str) -> os.stat_result:
        with self._open_root() as root:
            target = self._resolve(root, path)
            with _wrap_io("stat", path):
                return target.stat()

    def is_dir(self, path: str) -> bool:
        with self._open_root() as root:
            return self._resolve(root, path).is_dir()

    # ========== Writing ==========

    def write(self, path: str, data: Union[str, bytes]) -> None:
        """Write a whole file atomically, creating it if absent.

        The parent directory must already exist.
        """
        with self._open_root() as root:
            target = self._resolve(root, path)
            if target == root:
                raise StoreIOError("write", path, IsADirectoryError(errno.EISDIR, "is the root", path))

            mode = "wb" if isinstance(data, bytes) else "w"
            with _wrap_io("write", path):
                with locked_atomic_write(target, mode=mode, timeout=self.lock_timeout) as f:
                    f.write(data)

        logger.debug("Wrote %s", path)

    def mkdir_all(self, path: str) -> None:
        with self._open_root() as root:
            target = self._resolve(root, path)
            with _wrap_io("mkdir", path):
                target.mkdir(parents=True, exist_ok=True)

    def create_file_if_not_exists(self, path: str, content: str) -> bool:
        """Write default content unless the file exists. Returns True when created."""
        if self.exists(path):
            return False
        self.write(path, content)
        return True

    def create_directory_if_not_exists(self, path: str) -> bool:
        """Create a directory tree unless present. Returns True when created.

        Raises:
            StoreIOError: If the path exists but is not a directory
        """
        with self._open_root() as root:
            target = self._resolve(root, path)
            if target.exists():
                if not target.is_dir():
                    raise StoreIOError(
                        "mkdir",
                        path,
                        NotADirectoryError(errno.ENOTDIR, "exists but is not a directory", path),
                    )
                return False

            with _wrap_io("mkdir", path):
                target.mkdir(parents=True, exist_ok=True)
            return True

    # ========== Removing ==========

    def remove(self, path: str) -> None:
        """Remove a file or an empty directory."""
        with self._open_root() as root:
            target = self._resolve(root, path)
            if target == root:
                raise StoreIOError("remove", path, PermissionError(errno.EPERM, "refusing to remove root", path))

            with _wrap_io("remove", path):
                if target.is_dir():
                    target.rmdir()
                else:
                    target.unlink()
                    lock_path_for(target).unlink(missing_ok=True)

    def remove_all(self, path: str) -> None:
        """Remove a path and everything under it. Missing paths are not an error."""
        with self._open_root() as root:
            target = self._resolve(root, path)
            if target == root:
                raise StoreIOError("remove", path, PermissionError(errno.EPERM, "refusing to remove root", path))

            with _wrap_io("remove", path):
                if target.is_dir():
                    shutil.rmtree(target)
                elif target.exists():
                    target.unlink()
                    lock_path_for(target).unlink(missing_ok=True)

    # ========== Listing ==========

    def list_dir(self, path: str = ".") -> list[ScanResult]:
        """List the direct children of a directory, sorted by name."""
        with self._open_root() as root:
            target = self._resolve(root, path)
            results = []
            with _wrap_io("list", path):
                with os.scandir(target) as entries:
                    for entry in entries:
                        entry_path = Path(entry.path)
                        if entry.is_symlink() and not self._contains(root, entry_path):
                            continue
                        rel = self._relative(root, entry_path)
                        results.append(ScanResult(
                            path=rel,
                            name=entry.name,
                            is_dir=entry.is_dir(),
                            relative_path=entry.name,
                        ))

            results.sort(key=lambda r: r.name)
            return results

    def walk(self, top: str = ".") -> list[ScanResult]:
        """Recursively list everything under ``top`` in sorted, depth-first order.

        Symlinks pointing outside the root are skipped; symlinked directories
        are listed but not descended into.

        Raises:
            StoreIOError: If ``top`` does not exist or is not a directory
        """
        with self._open_root() as root:
            start = self._resolve(root, top)
            if not start.is_dir():
                cause: OSError
                if start.exists():
                    cause = NotADirectoryError(errno.ENOTDIR, "not a directory", top)
                else:
                    cause = FileNotFoundError(errno.ENOENT, "no such directory", top)
                raise StoreIOError("walk", top, cause)

            def on_error(err: OSError) -> None:
                logger.warning("Skipping unreadable entry during walk: %s", err)

            results = []
            for dirpath, dirnames, filenames in os.walk(start, onerror=on_error):
                dirnames.sort()
                current = Path(dirpath)

                kept = []
                for name in dirnames:
                    child = current / name
                    if child.is_symlink() and not self._contains(root, child):
                        continue
                    kept.append(name)
                    results.append(self._scan_result(root, start, child, True))
                dirnames[:] = kept

                for name in sorted(filenames):
                    child = current / name
                    if child.is_symlink() and not self._contains(root, child):
                        continue
                    results.append(self._scan_result(root, start, child, False))

            return results

    def scan(
        self,
        top: str = ".",
        predicate: Optional[Callable[[ScanResult], bool]] = None,
    ) -> list[ScanResult]:
        """Walk ``top`` and keep the entries accepted by ``predicate``."""
        results = self.walk(top)
        if predicate is None:
            return results
        return [r for r in results if predicate(r)]

    def _scan_result(self, root: Path, start: Path, child: Path, is_dir: bool) -> ScanResult:
        return ScanResult(
            path=self._relative(root, child),
            name=child.name,
            is_dir=is_dir,
            relative_path=self._relative(start, child),
        )

    @staticmethod
    def _contains(root: Path, path: Path) -> bool:
        real = Path(os.path.realpath(path))
        return real == root or real.is_relative_to(root)
