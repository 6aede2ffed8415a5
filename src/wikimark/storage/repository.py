"""Bare repository access: loose objects, branch refs and revision specs."""

from __future__ import annotations

import contextlib
import hashlib
import logging
import os
import re
import tempfile
import zlib
from pathlib import Path

from wikimark.errors import CorruptObject, NotFound, RefConflict, StorageError, TypeMismatch
from wikimark.storage.objects import (
    BLOB,
    COMMIT,
    ID_RE,
    TREE,
    Blob,
    Commit,
    Tree,
    TreeEntry,
    decode,
    encode_commit,
    encode_tree,
    frame,
    hash_object,
    unframe,
)

logger = logging.getLogger(__name__)

DEFAULT_BRANCH = "master"

_SYMREF_PREFIX = "ref: refs/heads/"
_BAD_BRANCH_RE = re.compile(r"(^/|/$|//|\.\.|\.lock$|[\x00-\x20~^:?*\[\\\x7f]|^$)")

_CONFIG = """\
[core]
\trepositoryformatversion = 0
\tfilemode = true
\tbare = true
"""


class Repository:
    """Content-addressed object store plus the branch references pointing into it.

    The handle holds no per-operation state, so one instance can be shared by
    every thread of a process.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    # ── Opening ───────────────────────────────────────────────

    @classmethod
    def open_or_init(cls, path: Path | str, default_branch: str = DEFAULT_BRANCH) -> Repository:
        """Open the bare repository at `path`, creating an empty one if absent."""
        repo = cls(Path(path))
        if (repo.path / "HEAD").exists():
            repo._check_layout()
            logger.info("Opened repository at %s", repo.path)
        else:
            repo._init(default_branch)
            logger.info("Initialized empty repository at %s (branch %s)", repo.path, default_branch)
        return repo

    def _init(self, default_branch: str) -> None:
        self._ref_path(default_branch)
        try:
            for d in ["objects/info", "objects/pack", "refs/heads", "refs/tags"]:
                (self.path / d).mkdir(parents=True, exist_ok=True)
            (self.path / "config").write_text(_CONFIG)
            (self.path / "description").write_text("wikimark pages\n")
            (self.path / "HEAD").write_text(f"{_SYMREF_PREFIX}{default_branch}\n")
        except OSError as e:
            raise StorageError(f"cannot initialize repository at {self.path}: {e}") from e

    def _check_layout(self) -> None:
        try:
            head = (self.path / "HEAD").read_text().strip()
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError(f"cannot read HEAD of {self.path}: {e}") from e
        if not (head.startswith("ref: refs/") or ID_RE.fullmatch(head)):
            raise StorageError(f"malformed HEAD in {self.path}: {head[:60]!r}")
        if not (self.path / "objects").is_dir():
            raise StorageError(f"{self.path} has no objects directory")

    @property
    def head_branch(self) -> str | None:
        """Branch HEAD points to, or None when HEAD is detached."""
        head = (self.path / "HEAD").read_text().strip()
        if head.startswith(_SYMREF_PREFIX):
            return head[len(_SYMREF_PREFIX) :]
        return None

    # ── Objects ───────────────────────────────────────────────

    def _object_path(self, oid: str) -> Path:
        if not isinstance(oid, str) or not ID_RE.fullmatch(oid):
            raise NotFound(f"invalid object id {oid!r}")
        return self.path / "objects" / oid[:2] / oid[2:]

    def contains(self, oid: str) -> bool:
        return self._object_path(oid).exists()

    def _read_raw(self, oid: str) -> tuple[str, bytes]:
        path = self._object_path(oid)
        try:
            compressed = path.read_bytes()
        except FileNotFoundError:
            raise NotFound(f"object {oid} not found") from None
        except OSError as e:
            raise StorageError(f"cannot read object {oid}: {e}") from e
        try:
            raw = zlib.decompress(compressed)
        except zlib.error as e:
            raise CorruptObject(f"object {oid} does not decompress: {e}") from e
        if hashlib.sha1(raw).hexdigest() != oid:
            raise CorruptObject(f"object {oid} does not match its content hash")
        try:
            return unframe(raw)
        except CorruptObject as e:
            raise CorruptObject(f"object {oid}: {e}") from e

    def read_object(self, oid: str) -> Blob | Tree | Commit:
        kind, body = self._read_raw(oid)
        try:
            return decode(kind, body)
        except CorruptObject as e:
            raise CorruptObject(f"{kind} {oid}: {e}") from e

    def _read_kind(self, oid: str, expected: str) -> Blob | Tree | Commit:
        kind, body = self._read_raw(oid)
        if kind != expected:
            raise TypeMismatch(f"object {oid} is a {kind}, expected a {expected}")
        try:
            return decode(kind, body)
        except CorruptObject as e:
            raise CorruptObject(f"{kind} {oid}: {e}") from e

    def read_blob(self, oid: str) -> bytes:
        return self._read_kind(oid, BLOB).data

    def read_tree(self, oid: str) -> list[TreeEntry]:
        return self._read_kind(oid, TREE).entries

    def read_commit(self, oid: str) -> Commit:
        return self._read_kind(oid, COMMIT)

    def _write(self, kind: str, body: bytes) -> str:
        oid = hash_object(kind, body)
        path = self._object_path(oid)
        if path.exists():
            return oid
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=path.parent, prefix="tmp_obj_")
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(zlib.compress(frame(kind, body)))
                os.replace(tmp, path)
            except OSError:
                with contextlib.suppress(OSError):
                    os.unlink(tmp)
                raise
        except OSError as e:
            raise StorageError(f"cannot write {kind} {oid}: {e}") from e
        logger.debug("Wrote %s %s (%d bytes)", kind, oid, len(body))
        return oid

    def write_blob(self, data: bytes) -> str:
        return self._write(BLOB, bytes(data))

    def write_tree(self, entries: list[TreeEntry]) -> str:
        return self._write(TREE, encode_tree(entries))

    def write_commit(self, commit: Commit) -> str:
        return self._write(COMMIT, encode_commit(commit))

    # ── Branch references ─────────────────────────────────────

    def _ref_path(self, branch: str) -> Path:
        if _BAD_BRANCH_RE.search(branch):
            raise NotFound(f"invalid branch name {branch!r}")
        return self.path / "refs" / "heads" / branch

    def _packed_ref(self, branch: str) -> str | None:
        packed = self.path / "packed-refs"
        if not packed.exists():
            return None
        wanted = f"refs/heads/{branch}"
        for line in packed.read_text().splitlines():
            if not line or line[0] in "#^":
                continue
            oid, _, name = line.partition(" ")
            if name == wanted:
                return oid
        return None

    def branch_head(self, branch: str) -> str | None:
        """Commit id the branch points to, None for an unborn branch."""
        path = self._ref_path(branch)
        try:
            value = path.read_text().strip()
        except FileNotFoundError:
            value = self._packed_ref(branch)
            if value is None:
                return None
        except OSError as e:
            raise StorageError(f"cannot read branch {branch}: {e}") from e
        if not ID_RE.fullmatch(value):
            raise StorageError(f"branch {branch} holds a malformed id {value[:60]!r}")
        return value

    def branches(self) -> list[str]:
        heads = self.path / "refs" / "heads"
        names = {
            p.relative_to(heads).as_posix()
            for p in heads.rglob("*")
            if p.is_file() and not p.name.endswith(".lock")
        }
        packed = self.path / "packed-refs"
        if packed.exists():
            for line in packed.read_text().splitlines():
                _, _, name = line.partition(" ")
                if name.startswith("refs/heads/"):
                    names.add(name[len("refs/heads/") :])
        return sorted(names)

    def advance_branch(self, branch: str, expected: str | None, new_head: str) -> None:
        """Point `branch` at `new_head` if it still points at `expected`.

        Compare-and-swap through git's lock file protocol: the `<ref>.lock`
        file is created exclusively, the ref is re-read under it, and the lock
        is renamed over the ref. `expected=None` requires an unborn branch.
        Raises RefConflict when the branch moved or another writer holds the lock.
        """
        if not ID_RE.fullmatch(new_head):
            raise ValueError(f"invalid commit id {new_head!r}")
        ref_path = self._ref_path(branch)
        lock_path = ref_path.with_name(ref_path.name + ".lock")
        try:
            ref_path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            raise RefConflict(f"branch {branch} is locked by another writer") from None
        except OSError as e:
            raise StorageError(f"cannot lock branch {branch}: {e}") from e

        try:
            with os.fdopen(fd, "w") as f:
                current = self.branch_head(branch)
                if current != expected:
                    raise RefConflict(
                        f"branch {branch} moved: expected {expected}, found {current}"
                    )
                f.write(new_head + "\n")
            os.replace(lock_path, ref_path)
        except OSError as e:
            _discard(lock_path)
            raise StorageError(f"cannot update branch {branch}: {e}") from e
        except StorageError:
            _discard(lock_path)
            raise
        logger.debug("Advanced %s: %s -> %s", branch, expected, new_head)

    # ── Revision specs ────────────────────────────────────────

    def resolve_id(self, spec: str) -> str:
        """Resolve "<branch>:<path>" to an object id; an empty path is the root tree."""
        branch, sep, path = spec.partition(":")
        if not sep:
            raise NotFound(f"revision spec {spec!r} has no ':'")
        head = self.branch_head(branch)
        if head is None:
            raise NotFound(f"branch {branch!r} does not exist")
        oid, kind = self.read_commit(head).tree, TREE
        walked: list[str] = []
        for segment in (s for s in path.split("/") if s):
            if kind != TREE:
                raise TypeMismatch(f"{branch}:{'/'.join(walked)} is not a directory")
            entry = Tree(self.read_tree(oid)).find(segment.encode("utf-8"))
            if entry is None:
                raise NotFound(f"{branch}:{path} not found (no {segment!r})")
            oid, kind = entry.id, entry.kind
            walked.append(segment)
        return oid

    def resolve(self, spec: str) -> Blob | Tree | Commit:
        return self.read_object(self.resolve_id(spec))


def _discard(path: Path) -> None:
    with contextlib.suppress(FileNotFoundError):
        path.unlink()
