"""Tests for sparse tree patching."""

from __future__ import annotations

from pathlib import Path

import pytest

from wikimark.errors import ConflictError, NotFound
from wikimark.storage.objects import TREE_MODE, TreeEntry
from wikimark.storage.repository import Repository
from wikimark.storage.tree import TreePatcher, patch_tree, split_path


@pytest.fixture
def repo(tmp_path: Path) -> Repository:
    return Repository.open_or_init(tmp_path / "wiki.git")


@pytest.fixture
def base(repo: Repository) -> str:
    """c.md, a/b.md, a/keep.md, z/deep/x.md"""
    return patch_tree(
        repo,
        None,
        {
            "c.md": b"c",
            "a/b.md": b"b",
            "a/keep.md": b"keep",
            "z/deep/x.md": b"x",
        },
    )


def _entry(repo: Repository, tree_id: str, name: bytes) -> TreeEntry:
    return next(e for e in repo.read_tree(tree_id) if e.name == name)


class TestSplitPath:
    def test_segments(self):
        assert split_path("/a/b.md") == [b"a", b"b.md"]

    @pytest.mark.parametrize("path", ["", "/", "a//b.md", "a/../b.md", "./a.md"])
    def test_rejects(self, path):
        with pytest.raises(ValueError):
            split_path(path)


class TestPatch:
    def test_no_changes_keeps_base(self, repo: Repository, base: str):
        assert patch_tree(repo, base, {}) == base

    def test_no_changes_without_base_is_empty_tree(self, repo: Repository):
        assert patch_tree(repo, None, {}) == "4b825dc642cb6eb9a060e54bf8d69288fbee4904"

    def test_builds_nested_from_scratch(self, repo: Repository, base: str):
        names = [e.name for e in repo.read_tree(base)]
        assert names == [b"a", b"c.md", b"z"]
        deep = _entry(repo, _entry(repo, base, b"z").id, b"deep")
        assert deep.mode == TREE_MODE
        assert [e.name for e in repo.read_tree(deep.id)] == [b"x.md"]

    def test_untouched_entries_reused(self, repo: Repository, base: str):
        patched = patch_tree(repo, base, {"a/b.md": b"new"})
        assert _entry(repo, patched, b"c.md") == _entry(repo, base, b"c.md")
        assert _entry(repo, patched, b"z") == _entry(repo, base, b"z")

        old_a = _entry(repo, base, b"a").id
        new_a = _entry(repo, patched, b"a").id
        assert old_a != new_a
        assert _entry(repo, new_a, b"keep.md") == _entry(repo, old_a, b"keep.md")
        assert repo.read_blob(_entry(repo, new_a, b"b.md").id) == b"new"

    def test_insert_keeps_order_at_depth(self, repo: Repository, base: str):
        patched = patch_tree(repo, base, {"z/deep/a.md": b"a", "z/deep/y.md": b"y", "b.md": b"b"})
        deep = _entry(repo, _entry(repo, patched, b"z").id, b"deep").id
        assert [e.name for e in repo.read_tree(deep)] == [b"a.md", b"x.md", b"y.md"]
        assert [e.name for e in repo.read_tree(patched)] == [b"a", b"b.md", b"c.md", b"z"]

    def test_page_next_to_its_directory(self, repo: Repository):
        tree = patch_tree(repo, None, {"docs.md": b"top", "docs/x.md": b"sub"})
        assert [e.name for e in repo.read_tree(tree)] == [b"docs.md", b"docs"]

    def test_insert_page_next_to_existing_directory(self, repo: Repository, base: str):
        patched = patch_tree(repo, base, {"a.md": b"page", "a-b.md": b"x", "a0.md": b"y"})
        names = [e.name for e in repo.read_tree(patched)]
        assert names == [b"a-b.md", b"a.md", b"a", b"a0.md", b"c.md", b"z"]

    def test_rewrite_same_content_is_same_tree(self, repo: Repository, base: str):
        assert patch_tree(repo, base, {"a/b.md": b"b"}) == base

    def test_many_files_in_one_pass(self, repo: Repository, base: str):
        patcher = TreePatcher(repo)
        patcher.upsert("a/one.md", b"1")
        patcher.upsert("a/two.md", b"2")
        patcher.upsert("new/three.md", b"3")
        assert len(patcher) == 3
        patched = patcher.build(base)
        a = _entry(repo, patched, b"a").id
        assert [e.name for e in repo.read_tree(a)] == [b"b.md", b"keep.md", b"one.md", b"two.md"]
        new = _entry(repo, patched, b"new").id
        assert [e.name for e in repo.read_tree(new)] == [b"three.md"]


class TestConflicts:
    def test_file_over_directory(self, repo: Repository, base: str):
        with pytest.raises(ConflictError):
            patch_tree(repo, base, {"a": b"not a dir"})

    def test_directory_over_file(self, repo: Repository, base: str):
        with pytest.raises(ConflictError):
            patch_tree(repo, base, {"c.md/child.md": b"x"})

    def test_pending_file_then_child(self, repo: Repository):
        patcher = TreePatcher(repo)
        patcher.upsert("docs", b"file")
        with pytest.raises(ConflictError):
            patcher.upsert("docs/intro.md", b"x")

    def test_pending_child_then_file(self, repo: Repository):
        patcher = TreePatcher(repo)
        patcher.upsert("docs/intro.md", b"x")
        with pytest.raises(ConflictError):
            patcher.upsert("docs", b"file")


class TestRemove:
    def test_remove_file(self, repo: Repository, base: str):
        patched = patch_tree(repo, base, {"c.md": None})
        assert [e.name for e in repo.read_tree(patched)] == [b"a", b"z"]

    def test_emptied_directories_are_dropped(self, repo: Repository, base: str):
        patched = patch_tree(repo, base, {"z/deep/x.md": None})
        assert [e.name for e in repo.read_tree(patched)] == [b"a", b"c.md"]

    def test_remove_directory(self, repo: Repository, base: str):
        patched = patch_tree(repo, base, {"a": None})
        assert [e.name for e in repo.read_tree(patched)] == [b"c.md", b"z"]

    def test_remove_everything(self, repo: Repository):
        base = patch_tree(repo, None, {"only.md": b"x"})
        assert patch_tree(repo, base, {"only.md": None}) == repo.write_tree([])

    def test_remove_missing(self, repo: Repository, base: str):
        with pytest.raises(NotFound):
            patch_tree(repo, base, {"a/missing.md": None})

    def test_remove_and_add_together(self, repo: Repository, base: str):
        patched = patch_tree(repo, base, {"a/b.md": None, "a/c.md": b"c"})
        a = _entry(repo, patched, b"a").id
        assert [e.name for e in repo.read_tree(a)] == [b"c.md", b"keep.md"]
