"""Error taxonomy shared by the storage, page and rendering layers."""

from __future__ import annotations


class WikiError(Exception):
    """Base class for every failure raised by wikimark."""


class StorageError(WikiError):
    """The repository could not be read or written."""


class NotFound(StorageError):
    """A branch, path segment or object does not exist."""


class TypeMismatch(StorageError):
    """An object has a different kind than the one expected."""


class CorruptObject(StorageError):
    """Stored object bytes do not decode."""


class RefConflict(StorageError):
    """A branch moved between reading its head and advancing it."""


class ConflictError(WikiError):
    """A tree patch puts a blob and a directory at the same name."""


class FormatError(WikiError):
    """Malformed front matter or metadata."""


class EncodingError(WikiError):
    """Blob content is not valid UTF-8 text."""


class SignatureError(WikiError):
    """An author identity cannot be encoded into a commit signature."""
