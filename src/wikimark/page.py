"""Page documents: YAML front matter followed by a Markdown body.

    ---
    title: Hello World
    private: false
    tags: [intro]
    ---
    # Hi
    text
"""

from __future__ import annotations

import copy
import re
import unicodedata
from dataclasses import dataclass, field
from typing import Any

import frontmatter
import yaml

from wikimark.errors import FormatError

_DELIMITER = re.compile(r"^---\r?$", re.MULTILINE)
_NON_ALNUM = re.compile(r"[^a-z0-9]+")

_yaml = frontmatter.YAMLHandler()


@dataclass
class Metadata:
    """Front matter fields; keys other than title/private are kept in `extra`."""

    title: str
    private: bool = False
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Metadata:
        data = dict(data)
        title = data.pop("title", None)
        if not isinstance(title, str):
            raise FormatError("front matter needs a string 'title'")
        private = data.pop("private", False)
        if not isinstance(private, bool):
            raise FormatError(f"'private' must be true or false, got {private!r}")
        return cls(title=title, private=private, extra=data)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"title": self.title}
        if self.private:
            data["private"] = True
        data.update(self.extra)
        return data


@dataclass
class RawPage:
    meta: Metadata
    content: str
    # Front matter block as read, with the metadata it decoded to. Reused by
    # serialize() while the metadata is unchanged.
    _source: tuple[str, Metadata] | None = field(default=None, compare=False, repr=False)


@dataclass
class PageEntry:
    """A page listed in a directory."""

    meta: Metadata
    link: str


def parse(text: str) -> RawPage:
    """Split a document into its metadata and Markdown body."""
    opening = _DELIMITER.match(text)
    if opening is None or text[opening.end() : opening.end() + 1] != "\n":
        raise FormatError("missing YAML front matter")
    start = opening.end() + 1
    closing = _DELIMITER.search(text, start)
    if closing is None:
        raise FormatError("malformed YAML front matter: no closing '---'")
    end = closing.end()
    if text[end : end + 1] == "\n":
        end += 1

    try:
        data = _yaml.load(text[start : closing.start()])
    except yaml.YAMLError as e:
        raise FormatError(f"invalid YAML front matter: {e}") from e
    if not isinstance(data, dict):
        raise FormatError("front matter is not a mapping")
    meta = Metadata.from_dict(data)
    return RawPage(meta=meta, content=text[end:], _source=(text[:end], copy.deepcopy(meta)))


def serialize(page: RawPage) -> str:
    """Inverse of parse(): delimiter-wrapped metadata followed by the body."""
    if page._source is not None and page._source[1] == page.meta:
        return page._source[0] + page.content
    metadata = _yaml.export(page.meta.to_dict(), sort_keys=False)
    return "---\n" + metadata + "\n---\n" + page.content


def slug(title: str) -> str:
    """Lowercase ASCII identifier safe for URLs and file names: "Hello, World!" -> "hello-world"."""
    ascii_title = unicodedata.normalize("NFKD", title).encode("ascii", "ignore").decode("ascii")
    return _NON_ALNUM.sub("-", ascii_title.lower()).strip("-")
