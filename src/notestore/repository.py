"""Repository index - cached tree and flat id lookup of every document under a root."""

from __future__ import annotations

import logging
import posixpath
import re
import time
from datetime import date, datetime
from pathlib import Path
from typing import Iterable, Optional, Union

from .config import RepositoryConfig, load_config
from .csv_document import CSVDocument
from .document import Document
from .encryption import ContentCodec
from .errors import DocumentNotFoundError, NotFoundError, StoreIOError
from .front_matter import render_document
from .locking import ReadWriteLock
from .models import (
    DirectoryNode,
    DocumentInfo,
    SearchMatch,
    split_lines,
    temporal_path,
    title_case,
)
from .store import ScanResult, SandboxedStore

logger = logging.getLogger(__name__)


PLACEHOLDER_ID = "untitled"
TEMP_FILE_SUFFIXES = ("~", ".tmp", ".swp")

_WHITESPACE_RUNS = re.compile(r"[\s_]+")
_INVALID_ID_CHARS = re.compile(r"[^a-z0-9\-./]+")
_HYPHEN_RUNS = re.compile(r"-{2,}")


def _normalize_once(text: str, extensions: Iterable[str]) -> str:
    text = text.lower().replace("\\", "/")
    text = _WHITESPACE_RUNS.sub("-", text)
    text = _INVALID_ID_CHARS.sub("-", text)

    for ext in extensions:
        if text.endswith(ext):
            text = text[:-len(ext)]
            break

    segments = []
    for segment in text.split("/"):
        # No segment may start with a dot
        segment = _HYPHEN_RUNS.sub("-", segment).strip("-").lstrip(".")
        if not segment:
            continue
        segments.append(segment)

    return "/".join(segments)


def canonical_id(path: str, extensions: Iterable[str] = (".md",)) -> str:
    """Turn a path or user-supplied name into a URL-safe document id.

    Lowercases, forces forward slashes, maps whitespace and underscores to
    hyphens, replaces anything outside ``[a-z0-9-./]`` with a hyphen, collapses
    hyphen runs, strips leading dots from each segment, drops empty
    segments and strips the document extension. Total and idempotent; an
    empty result becomes ``"untitled"``.
    Distinct paths can map to the same id.
    """
    exts = tuple(ext.lower() for ext in extensions)
    current = path or ""
    while True:
        normalized = _normalize_once(current, exts)
        if normalized == current:
            break
        current = normalized

    return current or PLACEHOLDER_ID


class Repository:
    """Indexed view of a notes root: core files, resources and temporal archives.

    The tree, the flat index and the reload timestamp are replaced wholesale
    under the write lock; nodes visible to readers are never mutated.
    """

    def __init__(
        self,
        config: RepositoryConfig,
        store: Optional[SandboxedStore] = None,
        codec: Optional[ContentCodec] = None,
    ):
        self.config = config
        self.store = store if store is not None else SandboxedStore(config.root)
        self.codec = codec

        self._lock = ReadWriteLock()
        self._tree = DirectoryNode(name="")
        self._index: dict[str, DocumentInfo] = {}
        self._last_reload: Optional[float] = None

    @classmethod
    def open(
        cls,
        root: Union[str, Path],
        config_path: Optional[Path] = None,
        codec: Optional[ContentCodec] = None,
    ) -> Repository:
        """Load config for ``root``, ensure the layout exists and build the index."""
        config = load_config(Path(root), config_path)
        repo = cls(config, codec=codec)
        repo.initialize()
        repo.reload_all()
        return repo

    def canonical_id(self, path: str) -> str:
        return canonical_id(path, self.config.document_extensions)

    # ========== Layout ==========

    def initialize(self) -> None:
        """Create missing core files and the resources and temporal directories."""
        for name in self.config.core_files:
            title = title_case(self._strip_extension(posixpath.basename(name)))
            content = render_document(title, f"Your {title} file", f"Enter your {title} here...")

            parent = posixpath.dirname(name)
            if parent:
                self.store.mkdir_all(parent)

            if self.store.create_file_if_not_exists(name, content):
                logger.debug("Created core file %s", name)

        directories = [self.config.resources_directory, *self.config.temporal_directories]
        for directory in directories:
            if directory and self.store.create_directory_if_not_exists(directory):
                logger.debug("Created directory %s", directory)

    def _strip_extension(self, name: str) -> str:
        lowered = name.lower()
        for ext in self.config.document_extensions:
            if lowered.endswith(ext.lower()):
                return name[:-len(ext)]
        return name

    def _is_hidden(self, path: str) -> bool:
        return any(part.startswith(".") for part in path.split("/"))

    def _is_indexable(self, result: ScanResult) -> bool:
        if result.is_dir or self._is_hidden(result.path):
            return False
        if result.name.lower().endswith(TEMP_FILE_SUFFIXES):
            return False
        return self.config.is_document_name(result.name)

    def _top_level(self, path: str) -> str:
        """First component of a multi-component path, '' for root-level names."""
        head, sep, _ = path.partition("/")
        return head if sep else ""

    def _build_info(self, path: str) -> DocumentInfo:
        """Derive the metadata record for a document path relative to the root."""
        doc_id = self.canonical_id(path)
        directory = posixpath.dirname(path)
        depth = len(directory.split("/")) if directory else 0
        stem = self._strip_extension(posixpath.basename(path))
        top = self._top_level(path)

        if top and top in self.config.temporal_directories:
            parts = path.split("/")
            year = parts[1] if len(parts) >= 3 else None
            number, sep, name = stem.partition("-")
            if year and sep and number.isdigit():
                month_name = title_case(name)
                title = f"{month_name} {year}"
                month: Optional[str] = number
            else:
                month_name = None
                month = None
                title = title_case(stem)

            return DocumentInfo(
                id=doc_id,
                path=path,
                title=title,
                title_base=title,
                directory_path=directory,
                depth=depth,
                is_temporal=True,
                year=year,
                month=month,
                month_name=month_name,
            )

        is_resource = top == self.config.resources_directory
        inner = path[len(top) + 1:] if is_resource else path
        parts = [title_case(p) for p in self._strip_extension(inner).split("/")]

        return DocumentInfo(
            id=doc_id,
            path=path,
            title="/".join(parts),
            title_base=parts[-1],
            directory_path=directory,
            depth=depth,
            is_resource=is_resource,
        )

    def _directory_info(self, names: list[str]) -> DocumentInfo:
        path = "/".join(names)
        directory = posixpath.dirname(path)
        top = names[0]
        is_temporal = top in self.config.temporal_directories

        return DocumentInfo(
            id=self.canonical_id(path),
            path=path,
            title=title_case(names[-1]),
            title_base=title_case(names[-1]),
            directory_path=directory,
            depth=len(directory.split("/")) if directory else 0,
            is_temporal=is_temporal,
            is_resource=top == self.config.resources_directory and len(names) > 1,
            is_directory=True,
            year=names[1] if is_temporal and len(names) > 1 else None,
        )

    # ========== Scanning ==========

    def _scan(self, top: str) -> tuple[list[str], list[DocumentInfo]]:
        """Walk ``top`` and return visible directory paths and document infos."""
        directories = []
        infos = []
        for result in self.store.walk(top):
            if result.is_dir:
                if not self._is_hidden(result.path):
                    directories.append(result.path)
            elif self._is_indexable(result):
                infos.append(self._build_info(result.path))

        return directories, infos

    def _build_tree(self, directories: list[str], infos: list[DocumentInfo]) -> DirectoryNode:
        root = DirectoryNode(name="")

        for directory in directories:
            node = root
            for part in directory.split("/"):
                node = node.directories.setdefault(part, DirectoryNode(name=part))

        for info in infos:
            node = root
            if info.directory_path:
                for part in info.directory_path.split("/"):
                    node = node.directories.setdefault(part, DirectoryNode(name=part))
            node.files.append(info)

        self._sort_tree(root)
        return root

    def _sort_tree(self, node: DirectoryNode) -> None:
        node.files.sort(key=lambda info: info.title.lower())
        for child in node.directories.values():
            self._sort_tree(child)

    def _build_index(self, infos: Iterable[DocumentInfo]) -> dict[str, DocumentInfo]:
        index: dict[str, DocumentInfo] = {}
        for info in infos:
            if info.id in index:
                logger.debug("Id %s shared by %s and %s", info.id, index[info.id].path, info.path)
            index[info.id] = info
        return index

    def reload_all(self) -> None:
        """Rescan the whole root and swap in a fresh tree and index."""
        directories, infos = self._scan(".")
        tree = self._build_tree(directories, infos)
        index = self._build_index(infos)

        with self._lock.write():
            self._tree = tree
            self._index = index
            self._last_reload = time.monotonic()

        logger.info("Index reloaded with %d documents", len(index))

    def reload_subtree(self, directory_name: str) -> None:
        """Rescan one top-level directory and splice it into the current tree.

        Falls back to a full reload when the directory is missing from disk
        or from the current tree.

        Raises:
            ValueError: If ``directory_name`` is not a single top-level name
        """
        name = directory_name.strip("/")
        if not name or "/" in name:
            raise ValueError(f"Not a top-level directory: {directory_name!r}")

        try:
            directories, infos = self._scan(name)
        except StoreIOError as e:
            if not e.not_found:
                raise
            logger.warning("Subtree %s missing on disk; falling back to full reload", name)
            self.reload_all()
            return

        built = self._build_tree(directories, infos)
        subtree = built.directories.get(name, DirectoryNode(name=name))
        prefix = name + "/"

        spliced = False
        with self._lock.write():
            if name in self._tree.directories:
                root = self._tree.copy_shallow()
                root.directories[name] = subtree

                kept = (info for info in self._index.values() if not info.path.startswith(prefix))
                self._tree = root
                self._index = self._build_index([*kept, *infos])
                spliced = True

        if not spliced:
            logger.warning("Subtree %s not in index; falling back to full reload", name)
            self.reload_all()
            return

        logger.info("Subtree %s reloaded with %d documents", name, len(infos))

    def reload_if_stale(self, max_age: Optional[float] = None) -> bool:
        """Reload everything when the cache is older than ``max_age`` seconds."""
        if max_age is None:
            max_age = self.config.cache_max_age

        with self._lock.read():
            last = self._last_reload

        if last is not None and time.monotonic() - last <= max_age:
            return False

        self.reload_all()
        return True

    # ========== Copy-on-write edits ==========

    def _copy_path(self, root: DirectoryNode, parts: list[str]) -> DirectoryNode:
        """Copy the nodes from ``root`` down to ``parts``; return the copied leaf."""
        node = root
        for part in parts:
            child = node.directories.get(part)
            child = child.copy_shallow() if child is not None else DirectoryNode(name=part)
            node.directories[part] = child
            node = child
        return node

    def _insert_info(self, info: DocumentInfo) -> None:
        """Add one freshly created document without rescanning."""
        parts = info.directory_path.split("/") if info.directory_path else []

        with self._lock.write():
            root = self._tree.copy_shallow()
            node = self._copy_path(root, parts)
            node.files = [f for f in node.files if f.path != info.path]
            node.files.append(info)
            node.files.sort(key=lambda f: f.title.lower())

            index = dict(self._index)
            index[info.id] = info

            self._tree = root
            self._index = index

        logger.debug("Indexed new document %s", info.path)

    def discard(self, doc_id: str) -> bool:
        """Drop one document from the index. Returns False when it was not indexed."""
        key = self.canonical_id(doc_id)

        with self._lock.write():
            info = self._index.get(key)
            if info is None:
                return False

            parts = info.directory_path.split("/") if info.directory_path else []
            if self._tree.find(parts) is not None:
                root = self._tree.copy_shallow()
                node = self._copy_path(root, parts)
                node.files = [f for f in node.files if f.path != info.path]
                self._tree = root

            index = dict(self._index)
            del index[key]
            self._index = index

        logger.debug("Discarded %s from index", info.path)
        return True

    # ========== Lookup ==========

    def _find_directory(self, key: str) -> Optional[list[str]]:
        """Match an id against directory names in the tree."""
        node = self._tree
        names = []
        for part in key.split("/"):
            match = None
            for child_name in sorted(node.directories):
                if canonical_id(child_name, ()) == part:
                    match = child_name
                    break
            if match is None:
                return None
            names.append(match)
            node = node.directories[match]
        return names

    def resolve(self, doc_id: str) -> DocumentInfo:
        """Look up a document id, then a directory id.

        Raises:
            DocumentNotFoundError: If neither exists in the index
        """
        key = self.canonical_id(doc_id)

        with self._lock.read():
            info = self._index.get(key)
            if info is not None:
                return info
            names = self._find_directory(key)

        if names is None:
            raise DocumentNotFoundError(doc_id)

        return self._directory_info(names)

    def resolve_temporal(self, bucket: str, timestamp: Union[datetime, date]) -> tuple[DocumentInfo, bool]:
        """Compute the monthly file for ``timestamp`` and report whether it exists.

        Raises:
            ValueError: If ``bucket`` is not a configured temporal directory
        """
        if bucket not in self.config.temporal_directories:
            raise ValueError(f"Unknown temporal bucket: {bucket}")

        path = temporal_path(bucket, timestamp)
        return self._build_info(path), self.store.exists(path)

    def exists(self, doc_id: str) -> bool:
        key = self.canonical_id(doc_id)
        with self._lock.read():
            if key in self._index:
                return True

        if self.is_temporal(key):
            return self.store.exists(key + self.config.document_extensions[0])
        return False

    def is_temporal(self, doc_id: str) -> bool:
        key = self.canonical_id(doc_id)
        return key.split("/", 1)[0] in self.config.temporal_directories

    def is_temporal_root(self, doc_id: str) -> bool:
        return self.canonical_id(doc_id) in self.config.temporal_directories

    def lookup_page(self, name: str) -> tuple[Optional[DocumentInfo], bool]:
        """Resolve a wikilink target by id, resource id or title."""
        candidates = [
            self.canonical_id(name),
            self.canonical_id(f"{self.config.resources_directory}/{name}"),
        ]
        wanted = name.strip().lower()

        with self._lock.read():
            for key in candidates:
                info = self._index.get(key)
                if info is not None:
                    return info, True

            for info in sorted(self._index.values(), key=lambda i: i.path):
                if info.title.lower() == wanted or info.title_base.lower() == wanted:
                    return info, True

        return None, False

    # ========== Views ==========

    def tree(self) -> DirectoryNode:
        with self._lock.read():
            return self._tree

    def resources_tree(self) -> DirectoryNode:
        with self._lock.read():
            node = self._tree.directories.get(self.config.resources_directory)
        return node if node is not None else DirectoryNode(name=self.config.resources_directory)

    def core_files(self) -> dict[str, DocumentInfo]:
        core = set(self.config.core_files)
        with self._lock.read():
            return {k: v for k, v in self._index.items() if v.path in core}

    def resource_files(self) -> dict[str, DocumentInfo]:
        with self._lock.read():
            return {k: v for k, v in self._index.items() if v.is_resource}

    def temporal_tree(self, bucket: str) -> tuple[list[str], dict[str, list[DocumentInfo]]]:
        """Years newest first, and each year's months newest first.

        Raises:
            ValueError: If ``bucket`` is not a configured temporal directory
        """
        if bucket not in self.config.temporal_directories:
            raise ValueError(f"Unknown temporal bucket: {bucket}")

        with self._lock.read():
            node = self._tree.directories.get(bucket)

        if node is None:
            return [], {}

        files = {
            year: sorted(year_node.files, key=lambda info: info.month or "", reverse=True)
            for year, year_node in node.directories.items()
        }
        years = sorted(files, reverse=True)
        return years, files

    # ========== Documents ==========

    def get_document(self, doc_id: str) -> Document:
        """Wrap an indexed document.

        Raises:
            DocumentNotFoundError: If the id is unknown or names a directory
        """
        info = self.resolve(doc_id)
        if info.is_directory:
            raise DocumentNotFoundError(doc_id)
        return Document(info, self)

    def get_csv_document(self, doc_id: str) -> CSVDocument:
        """Wrap an indexed CSV document for record and cell access."""
        return CSVDocument(self.get_document(doc_id))

    def _path_for_new(self, key: str) -> str:
        ext = self.config.document_extensions[0]

        for name in self.config.core_files:
            if self.canonical_id(name) == key:
                return name

        areas = (self.config.resources_directory, *self.config.temporal_directories)
        if self._top_level(key) in areas:
            return key + ext

        return f"{self.config.resources_directory}/{key}{ext}"

    def get_or_create_document(self, doc_id: str) -> Document:
        """Return the document for ``doc_id``, creating it with a title header if missing."""
        try:
            info = self.resolve(doc_id)
        except NotFoundError:
            info = None

        if info is not None and not info.is_directory:
            return Document(info, self)

        key = self.canonical_id(doc_id)
        path = self._path_for_new(key)
        title = title_case(posixpath.basename(key))

        parent = posixpath.dirname(path)
        if parent:
            self.store.mkdir_all(parent)
        self.store.create_file_if_not_exists(path, f"# {title}\n")
        logger.debug("Created document %s for id %s", path, doc_id)

        top = self._top_level(path)
        if top in (self.config.resources_directory, *self.config.temporal_directories):
            self.reload_subtree(top)
        else:
            self._insert_info(self._build_info(path))

        return Document(self.resolve(path), self)

    def get_or_create_temporal_document(self, bucket: str, timestamp: Union[datetime, date]) -> Document:
        """Return the monthly document for ``timestamp``, creating an empty one if missing."""
        info, existed = self.resolve_temporal(bucket, timestamp)

        if not existed:
            self.store.mkdir_all(info.directory_path)
            self.store.create_file_if_not_exists(info.path, "\n")
            logger.debug("Created temporal document %s", info.path)
            self.reload_subtree(bucket)

        with self._lock.read():
            indexed = self._index.get(info.id)

        return Document(indexed if indexed is not None else info, self)

    # ========== Search ==========

    def search(self, query: str) -> dict[str, list[SearchMatch]]:
        """Case-insensitive line search across every indexed document."""
        needle = query.strip().lower()
        if not needle:
            return {}

        with self._lock.read():
            infos = sorted(self._index.values(), key=lambda i: i.path)

        results: dict[str, list[SearchMatch]] = {}
        for info in infos:
            try:
                content = Document(info, self).content()
            except StoreIOError as e:
                logger.warning("Skipping %s during search: %s", info.path, e)
                continue

            matches = []
            for number, line in enumerate(split_lines(content), start=1):
                if needle in line.lower():
                    matches.append(SearchMatch(number, line, len(matches) + 1))

            if matches:
                results[info.id] = matches

        return results
