"""Sparse tree rewriting.

Pending changes are grouped into a trie with one level per directory, so one
build touches any number of files across directories in a single pass. Only
the trees on the path from a changed leaf up to the root are rewritten;
every other subtree is referenced by its existing id.
"""

from __future__ import annotations

import bisect
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Union

from wikimark.errors import ConflictError, NotFound
from wikimark.storage.objects import BLOB_MODE, TREE_MODE, TreeEntry

if TYPE_CHECKING:
    from wikimark.storage.repository import Repository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Upsert:
    content: bytes


class _Remove:
    def __repr__(self) -> str:
        return "REMOVE"


REMOVE = _Remove()

PendingTree = dict[bytes, Union[_Upsert, _Remove, "PendingTree"]]


def split_path(path: str) -> list[bytes]:
    """Split "a/b.md" into encoded segments, rejecting empty, "." and ".." parts."""
    segments = path.strip("/").split("/")
    if any(s in ("", ".", "..") or "\0" in s for s in segments):
        raise ValueError(f"invalid path {path!r}")
    return [s.encode("utf-8") for s in segments]


class TreePatcher:
    """Collects path changes and applies them on top of a base tree."""

    def __init__(self, repo: Repository) -> None:
        self.repo = repo
        self._pending: PendingTree = {}

    def __len__(self) -> int:
        def count(level: PendingTree) -> int:
            return sum(count(v) if isinstance(v, dict) else 1 for v in level.values())

        return count(self._pending)

    def upsert(self, path: str, content: bytes) -> None:
        """Add or replace the file at `path`."""
        self._insert(path, _Upsert(bytes(content)))

    def remove(self, path: str) -> None:
        """Drop the file or directory at `path`."""
        self._insert(path, REMOVE)

    def _insert(self, path: str, change: _Upsert | _Remove) -> None:
        *parents, leaf = split_path(path)
        level = self._pending
        for segment in parents:
            node = level.setdefault(segment, {})
            if not isinstance(node, dict):
                raise ConflictError(f"{path}: {segment.decode()!r} already has a pending file change")
            level = node
        if isinstance(level.get(leaf), dict):
            raise ConflictError(f"{path} already has pending changes below it")
        level[leaf] = change

    def build(self, base: str | None) -> str:
        """Write the patched tree and return its id; `base=None` starts from an empty tree."""
        if not self._pending:
            return base if base is not None else self.repo.write_tree([])
        oid = self._build_level(self._pending, base, b"")
        if oid is None:
            oid = self.repo.write_tree([])
        logger.debug("Patched tree %s -> %s (%d changes)", base, oid, len(self))
        return oid

    def _build_level(self, pending: PendingTree, tree_id: str | None, prefix: bytes) -> str | None:
        existing = self.repo.read_tree(tree_id) if tree_id is not None else []
        by_name = {e.name: e for e in existing}
        entries: list[TreeEntry] = []

        for name in sorted(pending):
            change = pending[name]
            current = by_name.get(name)
            path = (prefix + name).decode("utf-8", errors="replace")
            if isinstance(change, _Upsert):
                if current is not None and current.is_tree:
                    raise ConflictError(f"{path} is a directory, cannot write a file there")
                entries.append(TreeEntry(name, self.repo.write_blob(change.content), BLOB_MODE))
            elif change is REMOVE:
                if current is None:
                    raise NotFound(f"{path} does not exist")
            else:
                if current is not None and not current.is_tree:
                    raise ConflictError(f"{path} is a file, cannot write a directory there")
                sub = self._build_level(
                    change, current.id if current is not None else None, prefix + name + b"/"
                )
                if sub is not None:
                    entries.append(TreeEntry(name, sub, TREE_MODE))

        entries.sort(key=lambda e: e.sort_key)
        for entry in existing:
            if entry.name in pending:
                continue
            i = bisect.bisect_left(entries, entry.sort_key, key=lambda e: e.sort_key)
            entries.insert(i, entry)

        if not entries:
            return None
        return self.repo.write_tree(entries)


def patch_tree(repo: Repository, base: str | None, changes: Mapping[str, bytes | None]) -> str:
    """Apply `path -> content` upserts (or `path -> None` removals) to `base`."""
    patcher = TreePatcher(repo)
    for path, content in changes.items():
        if content is None:
            patcher.remove(path)
        else:
            patcher.upsert(path, content)
    return patcher.build(base)
