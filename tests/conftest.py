"""Shared pytest fixtures for notestore tests."""

import tempfile
from pathlib import Path

import pytest

from notestore.config import RepositoryConfig
from notestore.repository import Repository
from notestore.store import SandboxedStore


@pytest.fixture
def temp_root():
    """Create a temporary notes root."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def config(temp_root):
    """Create a test configuration."""
    return RepositoryConfig(root=temp_root)


@pytest.fixture
def store(temp_root):
    """Create a sandboxed store over the temporary root."""
    return SandboxedStore(temp_root)


@pytest.fixture
def repo(config, store):
    """Create an initialized, indexed repository."""
    repository = Repository(config, store=store)
    repository.initialize()
    repository.reload_all()
    return repository


@pytest.fixture
def write_file(temp_root):
    """Write a file under the root, creating parent directories.

    Usage:
        def test_example(write_file):
            write_file("resources/notes.md", "# Notes\\n")
    """
    def _write(relative: str, content: str = "") -> Path:
        path = temp_root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return path

    return _write
