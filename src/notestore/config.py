"""Configuration loading for notestore.

Supports two file formats, found by name in the repository root:
1. TOML (``notestore.toml`` / ``.notestore.toml``) - most users
2. JSON (``notestore.json`` / ``.notestore.json``)

Loaded values override the defaults key by key; anything not mentioned keeps
its default.
"""

from __future__ import annotations

import json
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional


DEFAULT_CORE_FILES = ("inbox.md", "active.md")


@dataclass(frozen=True)
class RepositoryConfig:
    """Immutable layout settings for one notes root."""

    root: Path = field(default_factory=Path.cwd)

    # Files always present at the top of the root
    core_files: tuple[str, ...] = DEFAULT_CORE_FILES

    # Directory names (relative to root)
    resources_directory: str = "resources"
    daily_directory: str = "daily"
    journal_directory: str = "journal"

    # What the index treats as a document
    document_extensions: tuple[str, ...] = (".md",)

    # Seconds before reload_if_stale rescans
    cache_max_age: float = 300.0

    @property
    def temporal_directories(self) -> tuple[str, str]:
        return (self.daily_directory, self.journal_directory)

    def is_document_name(self, name: str) -> bool:
        """Check whether a file name carries a document extension."""
        lowered = name.lower()
        return any(lowered.endswith(ext) for ext in self.document_extensions)


def load_toml_config(path: Path) -> dict[str, Any]:
    """Load configuration from TOML file."""
    with open(path, "rb") as f:
        return tomllib.load(f)


def load_json_config(path: Path) -> dict[str, Any]:
    """Load configuration from JSON file."""
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def dict_to_config(data: dict[str, Any], root: Path) -> RepositoryConfig:
    """Convert dictionary to RepositoryConfig, keeping defaults for missing keys."""
    values: dict[str, Any] = {"root": root}

    if "files" in data:
        files = data["files"]
        if "core" in files:
            values["core_files"] = tuple(files["core"])

    if "directories" in data:
        dirs = data["directories"]
        if "resources" in dirs:
            values["resources_directory"] = dirs["resources"]
        if "daily" in dirs:
            values["daily_directory"] = dirs["daily"]
        if "journal" in dirs:
            values["journal_directory"] = dirs["journal"]

    if "index" in data:
        index = data["index"]
        if "extensions" in index:
            values["document_extensions"] = tuple(
                ext if ext.startswith(".") else f".{ext}" for ext in index["extensions"]
            )
        if "max_age" in index:
            values["cache_max_age"] = float(index["max_age"])

    return RepositoryConfig(**values)


def find_config_file(root: Path) -> Optional[Path]:
    """Find configuration file in the notes root.

    Search order:
    1. notestore.toml
    2. notestore.json
    3. .notestore.toml
    4. .notestore.json
    """
    candidates = [
        "notestore.toml",
        "notestore.json",
        ".notestore.toml",
        ".notestore.json",
    ]

    for name in candidates:
        path = root / name
        if path.exists():
            return path

    return None


def load_config(root: Path, config_path: Optional[Path] = None) -> RepositoryConfig:
    """Load repository configuration.

    Args:
        root: Root directory of the notes
        config_path: Optional explicit path to config file

    Returns:
        RepositoryConfig instance

    Raises:
        ValueError: If the config file type is not supported
    """
    if config_path is None:
        config_path = find_config_file(root)

    if config_path is None:
        return RepositoryConfig(root=root)

    suffix = config_path.suffix.lower()

    if suffix == ".toml":
        return dict_to_config(load_toml_config(config_path), root)

    elif suffix == ".json":
        return dict_to_config(load_json_config(config_path), root)

    else:
        raise ValueError(f"Unsupported config file type: {suffix}")
