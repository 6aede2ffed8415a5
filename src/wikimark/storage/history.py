"""First-parent history walk of a branch."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime
from typing import TYPE_CHECKING

from wikimark.errors import StorageError
from wikimark.storage.objects import Signature

if TYPE_CHECKING:
    from wikimark.storage.repository import Repository


@dataclass
class CommitLog:
    """One row of a changelog."""

    author: str
    message: str
    hash: str
    date: str


def rfc2822_date(signature: Signature) -> str:
    """Format a signature's timestamp in its own UTC offset, e.g. "Mon, 20 Nov 2023 10:00:00 +0100"."""
    tz = timezone(timedelta(minutes=signature.offset))
    return format_datetime(datetime.fromtimestamp(signature.time, tz))


def log(repo: Repository, branch: str) -> Iterator[CommitLog]:
    """Yield the branch's commits newest first, following first parents.

    An unborn branch yields nothing. A missing or unreadable ancestor raises
    StorageError instead of ending the walk early.
    """
    oid = repo.branch_head(branch)
    while oid is not None:
        try:
            commit = repo.read_commit(oid)
            date = rfc2822_date(commit.author)
        except StorageError as e:
            raise StorageError(f"broken history on {branch} at {oid}: {e}") from e
        except (ValueError, OverflowError, OSError) as e:
            raise StorageError(f"broken history on {branch} at {oid}: bad date: {e}") from e
        yield CommitLog(
            author=commit.author.name,
            message=commit.summary,
            hash=oid,
            date=date,
        )
        oid = commit.parents[0] if commit.parents else None
