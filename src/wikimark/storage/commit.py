"""Commit engine: wrap a tree into a commit and advance the branch."""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import TYPE_CHECKING

from wikimark.errors import SignatureError
from wikimark.storage.objects import Commit, Signature

if TYPE_CHECKING:
    from wikimark.storage.repository import Repository

logger = logging.getLogger(__name__)

# Default for `parent`: use whatever the branch points to when the commit is made.
CURRENT_HEAD = object()


def make_signature(author: str, email_domain: str, when: float | None = None) -> Signature:
    """Build a signature for `author` with a synthesized `<author>@<domain>` address.

    The timestamp is the local time with its UTC offset, or UTC when the local
    offset cannot be determined.
    """
    if not author or not author.strip():
        raise SignatureError("author is empty")
    if any(c in author for c in "<>\n\r\0"):
        raise SignatureError(f"author {author!r} contains characters not allowed in a signature")
    try:
        author.encode("utf-8")
    except UnicodeEncodeError as e:
        raise SignatureError(f"author {author!r} is not encodable as UTF-8") from e

    seconds = int(time.time() if when is None else when)
    utcoffset = datetime.fromtimestamp(seconds).astimezone().utcoffset()
    offset = int(utcoffset.total_seconds() // 60) if utcoffset is not None else 0
    return Signature(name=author, email=f"{author}@{email_domain}", time=seconds, offset=offset)


class CommitEngine:
    """Creates commits on one branch of a repository."""

    def __init__(self, repo: Repository, branch: str, email_domain: str) -> None:
        self.repo = repo
        self.branch = branch
        self.email_domain = email_domain

    def head(self) -> str | None:
        return self.repo.branch_head(self.branch)

    def commit(
        self,
        author: str,
        message: str,
        tree_id: str,
        parent: str | None | object = CURRENT_HEAD,
    ) -> str:
        """Write a commit of `tree_id` and move the branch to it.

        `parent` is the head the tree was derived from; the branch is only
        advanced if it still points there (RefConflict otherwise). When left
        out, the branch's current head is used.
        """
        signature = make_signature(author, self.email_domain)
        if parent is CURRENT_HEAD:
            parent = self.head()
        commit = Commit(
            tree=tree_id,
            parents=[parent] if parent is not None else [],
            author=signature,
            committer=signature,
            message=message,
        )
        commit_id = self.repo.write_commit(commit)
        self.repo.advance_branch(self.branch, parent, commit_id)
        logger.info("Committed %s on %s by %s: %s", commit_id[:7], self.branch, author, commit.summary)
        return commit_id
