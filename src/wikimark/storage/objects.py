"""Canonical encoding of git objects: blobs, trees and commits."""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field

from wikimark.errors import CorruptObject

BLOB = "blob"
TREE = "tree"
COMMIT = "commit"
OBJECT_KINDS = (BLOB, TREE, COMMIT)

BLOB_MODE = b"100644"
TREE_MODE = b"40000"
_TREE_MODES = {b"40000", b"040000"}
_GITLINK_MODE = b"160000"

ID_RE = re.compile(r"[0-9a-f]{40}")
_SIGNATURE_RE = re.compile(rb"^(.*) <(.*)> (\d+) ([+-])(\d{2})(\d{2})$")


@dataclass(frozen=True)
class TreeEntry:
    """One named row of a tree; `mode` is kept verbatim so copies stay identical."""

    name: bytes
    id: str
    mode: bytes = BLOB_MODE

    @property
    def kind(self) -> str:
        if self.mode in _TREE_MODES:
            return TREE
        if self.mode == _GITLINK_MODE:
            return COMMIT
        return BLOB

    @property
    def is_tree(self) -> bool:
        return self.kind == TREE

    @property
    def sort_key(self) -> bytes:
        """Name git orders the entry by: directories compare as "name/"."""
        return self.name + b"/" if self.is_tree else self.name


@dataclass
class Blob:
    data: bytes


@dataclass
class Tree:
    entries: list[TreeEntry] = field(default_factory=list)

    def find(self, name: bytes) -> TreeEntry | None:
        for entry in self.entries:
            if entry.name == name:
                return entry
        return None


@dataclass(frozen=True)
class Signature:
    """Author or committer line: name, email, unix time and UTC offset in minutes."""

    name: str
    email: str
    time: int
    offset: int = 0

    def encode(self) -> bytes:
        sign = "-" if self.offset < 0 else "+"
        hours, minutes = divmod(abs(self.offset), 60)
        line = f"{self.name} <{self.email}> {self.time} {sign}{hours:02d}{minutes:02d}"
        return line.encode("utf-8")

    @classmethod
    def decode(cls, raw: bytes) -> Signature:
        m = _SIGNATURE_RE.match(raw)
        if not m:
            raise CorruptObject(f"malformed signature: {raw[:80]!r}")
        name, email, seconds, sign, hours, minutes = m.groups()
        if int(hours) >= 24 or int(minutes) >= 60:
            raise CorruptObject(f"signature offset out of range: {raw[-5:]!r}")
        offset = int(hours) * 60 + int(minutes)
        if sign == b"-":
            offset = -offset
        return cls(
            name=name.decode("utf-8", errors="replace"),
            email=email.decode("utf-8", errors="replace"),
            time=int(seconds),
            offset=offset,
        )


@dataclass
class Commit:
    tree: str
    parents: list[str]
    author: Signature
    committer: Signature
    message: str

    @property
    def summary(self) -> str:
        """First paragraph of the message folded onto one line."""
        paragraph = self.message.strip().split("\n\n", 1)[0]
        return " ".join(line.strip() for line in paragraph.splitlines()).strip()


# ── Object framing ────────────────────────────────────────────


def frame(kind: str, body: bytes) -> bytes:
    """Prefix a body with its "<kind> <size>\\0" header."""
    return f"{kind} {len(body)}\0".encode() + body


def hash_object(kind: str, body: bytes) -> str:
    return hashlib.sha1(frame(kind, body)).hexdigest()


def unframe(raw: bytes) -> tuple[str, bytes]:
    """Split a framed object into its kind and body, checking the declared size."""
    null_index = raw.find(b"\0")
    if null_index < 0:
        raise CorruptObject("object header is not terminated")
    try:
        kind, size = raw[:null_index].decode("ascii").split(" ")
        size = int(size)
    except ValueError as e:
        raise CorruptObject(f"malformed object header: {raw[:null_index][:40]!r}") from e
    if kind not in OBJECT_KINDS:
        raise CorruptObject(f"unknown object type {kind!r}")
    body = raw[null_index + 1 :]
    if len(body) != size:
        raise CorruptObject(f"object size mismatch: header says {size}, got {len(body)}")
    return kind, body


# ── Trees ─────────────────────────────────────────────────────


def encode_tree(entries: list[TreeEntry]) -> bytes:
    out = bytearray()
    for entry in sorted(entries, key=lambda e: e.sort_key):
        out += entry.mode + b" " + entry.name + b"\0" + bytes.fromhex(entry.id)
    return bytes(out)


def decode_tree(body: bytes) -> list[TreeEntry]:
    entries: list[TreeEntry] = []
    pos = 0
    while pos < len(body):
        space = body.find(b" ", pos)
        null = body.find(b"\0", space + 1)
        if space < 0 or null < 0 or null + 21 > len(body):
            raise CorruptObject(f"truncated tree entry at offset {pos}")
        mode = body[pos:space]
        if not mode.isdigit():
            raise CorruptObject(f"bad tree entry mode {mode!r}")
        entries.append(
            TreeEntry(name=body[space + 1 : null], id=body[null + 1 : null + 21].hex(), mode=mode)
        )
        pos = null + 21
    return entries


# ── Commits ───────────────────────────────────────────────────


def encode_commit(commit: Commit) -> bytes:
    lines = [f"tree {commit.tree}".encode()]
    lines += [f"parent {parent}".encode() for parent in commit.parents]
    lines.append(b"author " + commit.author.encode())
    lines.append(b"committer " + commit.committer.encode())
    message = commit.message if commit.message.endswith("\n") else commit.message + "\n"
    return b"\n".join(lines) + b"\n\n" + message.encode("utf-8")


def decode_commit(body: bytes) -> Commit:
    header, sep, message = body.partition(b"\n\n")
    if not sep:
        raise CorruptObject("commit has no message separator")
    tree = None
    parents: list[str] = []
    author = committer = None
    for line in header.split(b"\n"):
        if line.startswith(b" "):
            # continuation of a multi-line header such as gpgsig
            continue
        key, _, value = line.partition(b" ")
        if key == b"tree":
            tree = value.decode("ascii", errors="replace")
        elif key == b"parent":
            parents.append(value.decode("ascii", errors="replace"))
        elif key == b"author":
            author = Signature.decode(value)
        elif key == b"committer":
            committer = Signature.decode(value)
    if tree is None or not ID_RE.fullmatch(tree) or author is None:
        raise CorruptObject("commit is missing its tree or author")
    if any(not ID_RE.fullmatch(p) for p in parents):
        raise CorruptObject("commit has a malformed parent id")
    return Commit(
        tree=tree,
        parents=parents,
        author=author,
        committer=committer or author,
        message=message.decode("utf-8", errors="replace"),
    )


def decode(kind: str, body: bytes) -> Blob | Tree | Commit:
    if kind == BLOB:
        return Blob(body)
    if kind == TREE:
        return Tree(decode_tree(body))
    return decode_commit(body)
