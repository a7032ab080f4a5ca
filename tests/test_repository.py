"""Tests for the repository index."""

import logging
import shutil
import threading
from datetime import datetime

import pytest

from notestore.config import RepositoryConfig
from notestore.errors import DocumentNotFoundError
from notestore.repository import PLACEHOLDER_ID, Repository, canonical_id


class TestCanonicalId:
    """Tests for id normalization."""

    @pytest.mark.parametrize("path,expected", [
        ("inbox.md", "inbox"),
        ("Resources/My Notes.md", "resources/my-notes"),
        ("resources\\sub_dir\\file.md", "resources/sub-dir/file"),
        ("Hello, World!", "hello-world"),
        ("  spaced   out  ", "spaced-out"),
        ("a--b---c", "a-b-c"),
        ("/leading/and/trailing/", "leading/and/trailing"),
        ("../etc/passwd", "etc/passwd"),
        ("a/./b", "a/b"),
        ("notes.md.md", "notes"),
        ("daily/2025/09-September.md", "daily/2025/09-september"),
        ("version-1.2", "version-1.2"),
        ("Café Notes", "caf-notes"),
        (".drafts", "drafts"),
        ("notes/.private plan", "notes/private-plan"),
        ("resources/..hidden/.x.md", "resources/hidden/x"),
    ])
    def test_examples(self, path, expected):
        """Known inputs normalize as expected."""
        assert canonical_id(path) == expected

    @pytest.mark.parametrize("path", ["", "   ", "///", "!!!", ".md", "../..", "...", "./.md"])
    def test_placeholder(self, path):
        """Inputs with nothing usable become the placeholder."""
        assert canonical_id(path) == PLACEHOLDER_ID

    def test_idempotent_examples(self):
        """Normalizing twice changes nothing."""
        for path in ["A B/C_D.md", "x.md.md", "-a-/-b-", "résumé.md"]:
            once = canonical_id(path)
            assert canonical_id(once) == once

    def test_uses_configured_extensions(self, temp_root):
        """The repository strips its own document extensions."""
        config = RepositoryConfig(root=temp_root, document_extensions=(".md", ".markdown"))
        repo = Repository(config)
        assert repo.canonical_id("Notes.markdown") == "notes"


class TestInitialize:
    """Tests for initialize."""

    def test_creates_core_files_and_directories(self, repo, temp_root):
        """Core files get front matter; areas are created."""
        content = (temp_root / "inbox.md").read_text()

        assert content == (
            "---\n"
            "title: Inbox\n"
            "description: Your Inbox file\n"
            "---\n"
            "\n"
            "Enter your Inbox here..."
        )
        assert (temp_root / "active.md").exists()
        assert (temp_root / "resources").is_dir()
        assert (temp_root / "daily").is_dir()
        assert (temp_root / "journal").is_dir()

    def test_idempotent(self, repo, temp_root):
        """Existing core files are left alone."""
        (temp_root / "inbox.md").write_text("# Mine\n")

        repo.initialize()

        assert (temp_root / "inbox.md").read_text() == "# Mine\n"

    def test_core_files_indexed(self, repo):
        """Core files are in the index after a reload."""
        core = repo.core_files()

        assert set(core) == {"inbox", "active"}
        assert core["inbox"].title == "Inbox"
        assert core["inbox"].depth == 0
        assert core["inbox"].directory_path == ""
        assert not core["inbox"].is_resource

    def test_open(self, temp_root):
        """Repository.open loads config, initializes and indexes."""
        (temp_root / "notestore.toml").write_text('[files]\ncore = ["todo.md"]\n')

        repo = Repository.open(temp_root)

        assert (temp_root / "todo.md").exists()
        assert set(repo.core_files()) == {"todo"}


class TestReloadAll:
    """Tests for full reloads."""

    def test_indexes_resources(self, repo, write_file):
        """Resource files get titles from their path."""
        write_file("resources/characters/wile-e_coyote.md", "# Wile\n")

        repo.reload_all()
        info = repo.resolve("resources/characters/wile-e-coyote")

        assert info.path == "resources/characters/wile-e_coyote.md"
        assert info.title == "Characters/Wile E Coyote"
        assert info.title_base == "Wile E Coyote"
        assert info.directory_path == "resources/characters"
        assert info.depth == 2
        assert info.is_resource
        assert not info.is_temporal
        assert info.relative_path() == "characters/wile-e_coyote.md"

    def test_indexes_temporal(self, repo, write_file):
        """Temporal files get month titles."""
        write_file("daily/2025/09-september.md", "\n")

        repo.reload_all()
        info = repo.resolve("daily/2025/09-september")

        assert info.title == "September 2025"
        assert info.year == "2025"
        assert info.month == "09"
        assert info.month_name == "September"
        assert info.is_temporal
        assert not info.is_resource

    def test_skips_hidden_temp_and_other_files(self, repo, write_file):
        """Hidden paths, editor leftovers and non-documents are not indexed."""
        write_file("resources/.hidden/secret.md")
        write_file("resources/.dotfile.md")
        write_file("resources/notes.md~")
        write_file("resources/notes.md.swp")
        write_file("resources/picture.png")
        write_file(".git/notes.md")
        write_file("resources/kept.md")

        repo.reload_all()

        assert set(repo.resource_files()) == {"resources/kept"}

    def test_logs_count(self, repo, caplog):
        """Reloads report how many documents they found."""
        caplog.set_level(logging.INFO, logger="notestore.repository")

        repo.reload_all()

        assert "Index reloaded with 2 documents" in caplog.text

    def test_files_sorted_by_title(self, repo, write_file):
        """Files in a directory node are ordered by title."""
        write_file("resources/zebra.md")
        write_file("resources/Apple.md")
        write_file("resources/mango.md")

        repo.reload_all()
        names = [f.title for f in repo.resources_tree().files]

        assert names == ["Apple", "Mango", "Zebra"]

    def test_empty_directories_in_tree(self, repo):
        """Directories without documents still appear in the tree."""
        tree = repo.tree()
        assert {"resources", "daily", "journal"} <= set(tree.directories)


class TestReloadSubtree:
    """Tests for partial reloads."""

    def test_splices_only_that_subtree(self, repo, write_file):
        """New resource files appear; other subtrees keep their nodes."""
        daily_before = repo.tree().directories["daily"]
        write_file("resources/new.md", "# New\n")
        write_file("journal/2025/01-january.md", "\n")

        repo.reload_subtree("resources")

        assert repo.exists("resources/new")
        assert repo.tree().directories["daily"] is daily_before
        assert repo.temporal_tree("journal") == ([], {})
        assert "inbox" in repo.core_files()

    def test_removed_files_drop_out(self, repo, write_file, temp_root):
        """Files deleted on disk disappear after the subtree reload."""
        write_file("resources/gone.md")
        repo.reload_all()
        (temp_root / "resources" / "gone.md").unlink()

        repo.reload_subtree("resources")

        with pytest.raises(DocumentNotFoundError):
            repo.resolve("resources/gone")

    def test_old_tree_untouched(self, repo, write_file):
        """A reader holding the old tree does not see the splice."""
        old_tree = repo.tree()
        write_file("resources/new.md")

        repo.reload_subtree("resources")

        assert repo.tree() is not old_tree
        assert old_tree.directories["resources"].files == []

    def test_missing_on_disk_falls_back(self, repo, temp_root, caplog):
        """A subtree gone from disk triggers a full reload with a warning."""
        shutil.rmtree(temp_root / "journal")

        repo.reload_subtree("journal")

        assert "falling back to full reload" in caplog.text
        assert "journal" not in repo.tree().directories

    def test_missing_from_tree_falls_back(self, repo, write_file, caplog):
        """A directory created since the last reload triggers a full reload."""
        write_file("archive/old.md", "# Old\n")

        repo.reload_subtree("archive")

        assert "not in index" in caplog.text
        assert repo.resolve("archive/old").path == "archive/old.md"

    def test_rejects_nested_names(self, repo):
        """Only top-level directories can be reloaded."""
        with pytest.raises(ValueError):
            repo.reload_subtree("resources/characters")


class TestReloadIfStale:
    """Tests for reload_if_stale."""

    def test_fresh_cache_not_reloaded(self, repo):
        """A just-reloaded cache is left alone."""
        assert repo.reload_if_stale() is False

    def test_stale_cache_reloaded(self, repo, write_file):
        """An expired cache is rebuilt."""
        write_file("resources/late.md")

        assert repo.reload_if_stale(max_age=-1) is True
        assert repo.exists("resources/late")

    def test_never_loaded(self, config, store):
        """A repository that never reloaded is always stale."""
        repo = Repository(config, store=store)
        assert repo.reload_if_stale() is True


class TestResolve:
    """Tests for resolve and lookups."""

    def test_resolve_normalizes_input(self, repo):
        """Lookups go through canonical ids."""
        assert repo.resolve("Inbox.md").path == "inbox.md"
        assert repo.resolve("  INBOX ").path == "inbox.md"

    def test_resolve_missing(self, repo):
        """Unknown ids raise DocumentNotFoundError."""
        with pytest.raises(DocumentNotFoundError) as exc_info:
            repo.resolve("nothing-here")
        assert exc_info.value.doc_id == "nothing-here"

    def test_resolve_directory(self, repo, write_file):
        """Directories resolve to directory records."""
        write_file("resources/characters/wile.md")
        repo.reload_all()

        info = repo.resolve("resources/characters")

        assert info.is_directory
        assert info.is_resource
        assert info.path == "resources/characters"
        assert info.title == "Characters"

    def test_resolve_directory_by_canonical_name(self, repo, write_file):
        """Directory names are compared by their canonical form."""
        write_file("resources/My Stuff/a.md")
        repo.reload_all()

        info = repo.resolve("resources/my-stuff")

        assert info.is_directory
        assert info.path == "resources/My Stuff"

    def test_resolve_temporal_root(self, repo):
        """Temporal roots are directories too."""
        info = repo.resolve("daily")
        assert info.is_directory
        assert info.is_temporal

    def test_get_document_on_directory(self, repo):
        """get_document refuses directories."""
        with pytest.raises(DocumentNotFoundError):
            repo.get_document("resources")

    def test_get_document(self, repo):
        """get_document wraps an indexed file."""
        doc = repo.get_document("inbox")
        assert doc.info.path == "inbox.md"
        assert not doc.loaded

    def test_temporal_predicates(self, repo):
        """Temporal ids and roots are recognized."""
        assert repo.is_temporal("daily/2025/09-september")
        assert repo.is_temporal("journal")
        assert not repo.is_temporal("resources/daily")
        assert repo.is_temporal_root("daily")
        assert not repo.is_temporal_root("daily/2025")

    def test_exists(self, repo, write_file):
        """exists covers indexed files and temporal files on disk."""
        write_file("daily/2025/09-september.md", "\n")

        assert repo.exists("inbox")
        assert repo.exists("daily/2025/09-september")
        assert not repo.exists("resources/nothing")


class TestTemporal:
    """Tests for temporal resolution and creation."""

    def test_resolve_temporal(self, repo):
        """Temporal paths are computed without creating anything."""
        info, existed = repo.resolve_temporal("daily", datetime(2025, 9, 15, 10, 0))

        assert info.path == "daily/2025/09-september.md"
        assert info.id == "daily/2025/09-september"
        assert info.title == "September 2025"
        assert info.is_temporal
        assert existed is False
        assert not repo.store.exists("daily/2025")

    def test_resolve_temporal_unknown_bucket(self, repo):
        """Unknown buckets are rejected."""
        with pytest.raises(ValueError, match="Unknown temporal bucket"):
            repo.resolve_temporal("weekly", datetime(2025, 9, 15))

    def test_get_or_create_temporal(self, repo, temp_root):
        """Missing monthly files are created and indexed."""
        doc = repo.get_or_create_temporal_document("journal", datetime(2025, 1, 3))

        assert doc.info.path == "journal/2025/01-january.md"
        assert (temp_root / "journal" / "2025" / "01-january.md").read_text() == "\n"
        assert repo.exists("journal/2025/01-january")

        _, existed = repo.resolve_temporal("journal", datetime(2025, 1, 20))
        assert existed is True

    def test_get_or_create_temporal_existing(self, repo, write_file):
        """Existing monthly files are returned untouched."""
        write_file("daily/2025/09-september.md", "# Kept\n")
        repo.reload_all()

        doc = repo.get_or_create_temporal_document("daily", datetime(2025, 9, 2))

        assert doc.content() == "# Kept\n"

    def test_temporal_tree(self, repo, write_file):
        """Years and months are listed newest first."""
        write_file("daily/2024/12-december.md", "\n")
        write_file("daily/2025/01-january.md", "\n")
        write_file("daily/2025/09-september.md", "\n")
        repo.reload_all()

        years, files = repo.temporal_tree("daily")

        assert years == ["2025", "2024"]
        assert [f.month for f in files["2025"]] == ["09", "01"]
        assert [f.title for f in files["2024"]] == ["December 2024"]

    def test_temporal_tree_empty(self, repo):
        """An empty bucket has no years."""
        assert repo.temporal_tree("journal") == ([], {})

    def test_temporal_tree_unknown_bucket(self, repo):
        """Unknown buckets are rejected."""
        with pytest.raises(ValueError):
            repo.temporal_tree("weekly")


class TestGetOrCreateDocument:
    """Tests for get_or_create_document."""

    def test_existing_document(self, repo, temp_root):
        """Existing documents are returned without writing."""
        before = (temp_root / "inbox.md").read_text()

        doc = repo.get_or_create_document("inbox")

        assert doc.info.path == "inbox.md"
        assert (temp_root / "inbox.md").read_text() == before

    def test_new_id_goes_to_resources(self, repo, temp_root):
        """Bare ids become resource files with a title header."""
        doc = repo.get_or_create_document("Project Ideas")

        assert doc.info.path == "resources/project-ideas.md"
        assert (temp_root / "resources" / "project-ideas.md").read_text() == "# Project Ideas\n"
        assert repo.resolve("resources/project-ideas").is_resource

    @pytest.mark.parametrize("doc_id,path", [
        (".drafts", "resources/drafts.md"),
        ("notes/.private plan", "resources/notes/private-plan.md"),
    ])
    def test_dot_prefixed_ids_stay_visible(self, repo, temp_root, doc_id, path):
        """Ids with dot-prefixed segments create indexed files, never hidden ones."""
        doc = repo.get_or_create_document(doc_id)

        assert doc.info.path == path
        assert (temp_root / path).exists()
        assert repo.resolve(doc.info.id).path == path
        assert not list(temp_root.glob("resources/**/.*.md"))

    def test_nested_resource(self, repo, temp_root):
        """Ids inside the resources area keep their directories."""
        doc = repo.get_or_create_document("resources/characters/road-runner")

        assert doc.info.path == "resources/characters/road-runner.md"
        assert doc.info.title == "Characters/Road Runner"
        assert repo.resolve("resources/characters").is_directory

    def test_missing_core_file(self, repo, temp_root):
        """A missing core file is recreated at the root."""
        (temp_root / "active.md").unlink()
        repo.reload_all()

        doc = repo.get_or_create_document("active")

        assert doc.info.path == "active.md"
        assert (temp_root / "active.md").read_text() == "# Active\n"
        assert "active" in repo.core_files()

    def test_new_file_outside_areas_is_inserted(self, repo, store):
        """A core file outside known areas is indexed without a rescan."""
        config = RepositoryConfig(root=store.root, core_files=("inbox.md", "notes/todo.md"))
        repo = Repository(config, store=store)
        repo.initialize()
        repo.reload_all()
        store.remove("notes/todo.md")
        repo.reload_all()

        doc = repo.get_or_create_document("notes/todo")

        assert doc.info.path == "notes/todo.md"
        assert repo.tree().directories["notes"].files[0].path == "notes/todo.md"


class TestDiscardAndDelete:
    """Tests for removing documents from the index."""

    def test_delete_discards(self, repo, write_file):
        """Deleting a document removes it from disk, index and tree."""
        write_file("resources/old.md", "# Old\n")
        repo.reload_all()

        repo.get_document("resources/old").delete()

        assert not repo.exists("resources/old")
        assert not repo.store.exists("resources/old.md")
        assert repo.resources_tree().files == []

    def test_discard_unknown(self, repo):
        """Discarding an unknown id is a no-op."""
        assert repo.discard("resources/nothing") is False


class TestLookupPage:
    """Tests for wikilink resolution."""

    def test_by_id(self, repo):
        """Exact ids resolve."""
        info, found = repo.lookup_page("inbox")
        assert found
        assert info.path == "inbox.md"

    def test_by_resource_name(self, repo, write_file):
        """Names relative to the resources area resolve."""
        write_file("resources/characters/wile.md")
        repo.reload_all()

        info, found = repo.lookup_page("Characters/Wile")

        assert found
        assert info.id == "resources/characters/wile"

    def test_by_title(self, repo, write_file):
        """Titles resolve case-insensitively."""
        write_file("resources/characters/road_runner.md")
        repo.reload_all()

        info, found = repo.lookup_page("road runner")

        assert found
        assert info.path == "resources/characters/road_runner.md"

    def test_not_found(self, repo):
        """Unknown pages report not found."""
        assert repo.lookup_page("Nowhere") == (None, False)


class TestSearch:
    """Tests for full-text search."""

    def test_case_insensitive_lines(self, repo, write_file):
        """Matching lines are reported with 1-based numbers."""
        write_file("resources/animals.md", "# Animals\n\nThe Coyote runs\nno match\ncoyote again\n")
        repo.reload_all()

        results = repo.search("COYOTE")

        matches = results["resources/animals"]
        assert [(m.line_number, m.match_index) for m in matches] == [(3, 1), (5, 2)]
        assert matches[0].line == "The Coyote runs"

    def test_blank_query(self, repo):
        """A blank query finds nothing."""
        assert repo.search("   ") == {}

    def test_no_matches_omitted(self, repo):
        """Documents without matches are not in the results."""
        assert "active" not in repo.search("Inbox")
        assert "inbox" in repo.search("Inbox")

    def test_skips_unreadable(self, repo, write_file, temp_root, caplog):
        """Documents that vanish after indexing are skipped with a warning."""
        write_file("resources/gone.md", "target")
        repo.reload_all()
        (temp_root / "resources" / "gone.md").unlink()

        assert repo.search("target") == {}
        assert "Skipping resources/gone.md" in caplog.text

    def test_skips_undecodable(self, repo, write_file, temp_root, caplog):
        """Documents that are not UTF-8 are skipped with a warning."""
        write_file("resources/binary.md")
        (temp_root / "resources" / "binary.md").write_bytes(b"target \xff")
        repo.reload_all()

        assert repo.search("target") == {}
        assert "Skipping resources/binary.md" in caplog.text


class TestConcurrency:
    """Tests for concurrent readers and reloads."""

    def test_readers_during_reloads(self, repo, write_file):
        """Lookups keep working while reloads swap the index."""
        for i in range(20):
            write_file(f"resources/note-{i}.md", f"# Note {i}\n")
        repo.reload_all()

        errors = []
        stop = threading.Event()

        def reader():
            try:
                while not stop.is_set():
                    assert repo.resolve("inbox").path == "inbox.md"
                    assert repo.resolve("resources/note-5").path == "resources/note-5.md"
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=reader) for _ in range(4)]
        for t in threads:
            t.start()

        for _ in range(10):
            repo.reload_all()
            repo.reload_subtree("resources")

        stop.set()
        for t in threads:
            t.join(timeout=10)

        assert errors == []
