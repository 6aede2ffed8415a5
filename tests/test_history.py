"""Tests for the commit engine and the changelog walk."""

from __future__ import annotations

from pathlib import Path

import pytest

from wikimark.errors import RefConflict, SignatureError, StorageError
from wikimark.storage.commit import CommitEngine, make_signature
from wikimark.storage.history import log, rfc2822_date
from wikimark.storage.objects import Commit, Signature
from wikimark.storage.repository import Repository
from wikimark.storage.tree import patch_tree


@pytest.fixture
def repo(tmp_path: Path) -> Repository:
    return Repository.open_or_init(tmp_path / "wiki.git")


@pytest.fixture
def engine(repo: Repository) -> CommitEngine:
    return CommitEngine(repo, "master", "peori.space")


class TestSignature:
    def test_synthesized_email(self):
        sig = make_signature("alice", "peori.space", when=1700000000)
        assert sig.name == "alice"
        assert sig.email == "alice@peori.space"
        assert sig.time == 1700000000

    @pytest.mark.parametrize("author", ["", "   ", "eve <evil>", "line\nbreak", "nul\0"])
    def test_rejects_bad_author(self, author):
        with pytest.raises(SignatureError):
            make_signature(author, "peori.space")

    def test_rejects_lone_surrogate(self):
        with pytest.raises(SignatureError):
            make_signature("bad\udc80", "peori.space")


class TestCommitEngine:
    def test_first_commit_has_no_parent(self, repo: Repository, engine: CommitEngine):
        tree = patch_tree(repo, None, {"home.md": b"home"})
        oid = engine.commit("alice", "first", tree)
        commit = repo.read_commit(oid)
        assert commit.parents == []
        assert commit.tree == tree
        assert commit.author.email == "alice@peori.space"
        assert commit.committer == commit.author
        assert repo.branch_head("master") == oid

    def test_parent_is_previous_head(self, repo: Repository, engine: CommitEngine):
        first = engine.commit("alice", "first", patch_tree(repo, None, {"a.md": b"a"}))
        second = engine.commit("bob", "second", patch_tree(repo, None, {"b.md": b"b"}))
        assert repo.read_commit(second).parents == [first]
        assert engine.head() == second

    def test_stale_parent_is_rejected(self, repo: Repository, engine: CommitEngine):
        tree = patch_tree(repo, None, {"a.md": b"a"})
        first = engine.commit("alice", "first", tree)
        engine.commit("bob", "second", tree, parent=first)
        with pytest.raises(RefConflict):
            engine.commit("carol", "late", tree, parent=first)

    def test_bad_author_writes_nothing(self, repo: Repository, engine: CommitEngine):
        tree = patch_tree(repo, None, {"a.md": b"a"})
        with pytest.raises(SignatureError):
            engine.commit("<nobody>", "msg", tree)
        assert engine.head() is None


class TestLog:
    def test_unborn_branch_is_empty(self, repo: Repository):
        assert list(log(repo, "master")) == []

    def test_newest_first(self, repo: Repository, engine: CommitEngine):
        ids = []
        for i, author in enumerate(["alice", "bob", "carol"]):
            tree = patch_tree(repo, None, {f"{i}.md": b"x"})
            ids.append(engine.commit(author, f"Change {i}\n\nDetails", tree))

        entries = list(log(repo, "master"))
        assert [e.hash for e in entries] == ids[::-1]
        assert [e.author for e in entries] == ["carol", "bob", "alice"]
        assert entries[0].message == "Change 2"

    def test_rfc2822_date_keeps_offset(self):
        sig = Signature("alice", "a@b", 1700000000, 60)
        assert rfc2822_date(sig) == "Tue, 14 Nov 2023 23:13:20 +0100"

    def test_rfc2822_negative_offset(self):
        sig = Signature("alice", "a@b", 1700000000, -210)
        assert rfc2822_date(sig) == "Tue, 14 Nov 2023 18:43:20 -0330"

    def test_missing_ancestor_raises(self, repo: Repository, engine: CommitEngine):
        tree = patch_tree(repo, None, {"a.md": b"a"})
        first = engine.commit("alice", "first", tree)
        engine.commit("bob", "second", tree)
        (repo.path / "objects" / first[:2] / first[2:]).unlink()

        walk = log(repo, "master")
        assert next(walk).author == "bob"
        with pytest.raises(StorageError, match="broken history"):
            next(walk)

    def _root_with_author(self, repo: Repository, sig: Signature) -> str:
        tree = patch_tree(repo, None, {"a.md": b"a"})
        root = repo.write_commit(Commit(tree, [], sig, sig, "imported"))
        repo.advance_branch("master", None, root)
        return tree

    def test_out_of_range_offset_raises(self, repo: Repository, engine: CommitEngine):
        tree = self._root_with_author(repo, Signature("bob", "b@x", 1700000000, 25 * 60))
        engine.commit("alice", "child", tree)

        walk = log(repo, "master")
        assert next(walk).author == "alice"
        with pytest.raises(StorageError, match="broken history"):
            next(walk)

    def test_out_of_range_timestamp_raises(self, repo: Repository, engine: CommitEngine):
        tree = self._root_with_author(repo, Signature("bob", "b@x", 10**12, 0))
        engine.commit("alice", "child", tree)

        walk = log(repo, "master")
        assert next(walk).author == "alice"
        with pytest.raises(StorageError, match="bad date"):
            next(walk)
