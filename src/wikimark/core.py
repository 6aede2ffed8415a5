"""Wiki facade, the entry point for web handlers and the CLI.

Responsibilities:
1. Read path: resolve a page blob, parse its front matter, render it
2. Listing: parse the front matter of every page in a directory
3. Write path: serialize a page, patch the tree, commit on the branch
4. Lane locks: serialize writers per branch so no edit is lost in-process
5. Changelog: first-parent history of the branch
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping

from wikimark.config import WikiConfig
from wikimark.errors import EncodingError, FormatError, NotFound, TypeMismatch
from wikimark.page import PageEntry, RawPage, parse, serialize, slug
from wikimark.render import Page, init_highlighting, render
from wikimark.storage.commit import CommitEngine
from wikimark.storage.history import CommitLog, log
from wikimark.storage.objects import BLOB, Tree
from wikimark.storage.repository import Repository
from wikimark.storage.tree import patch_tree

logger = logging.getLogger(__name__)

PAGE_SUFFIX = ".md"
EDIT_MESSAGE = 'Edited "{title}" from web'
DELETE_MESSAGE = 'Deleted "{name}" from web'


class Wiki:
    """Pages stored as Markdown files on one branch of a bare repository."""

    def __init__(self, config: WikiConfig) -> None:
        self.config = config
        self.branch = config.storage.branch
        self.repo = Repository.open_or_init(config.storage.repo_path, default_branch=self.branch)
        self.committer = CommitEngine(self.repo, self.branch, config.storage.email_domain)
        self.highlight = init_highlighting(config.render.highlight_style)
        self._lane_locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # ── Lane locks (per-branch serialization) ────────────────

    def _get_lane_lock(self, branch: str) -> threading.Lock:
        with self._locks_guard:
            if branch not in self._lane_locks:
                self._lane_locks[branch] = threading.Lock()
            return self._lane_locks[branch]

    # ── Read path ─────────────────────────────────────────────

    def _spec(self, path: str) -> str:
        return f"{self.branch}:{path}"

    def read_file(self, path: str) -> str:
        """Text content of the file at `path` on the branch."""
        data = self.repo.read_blob(self.repo.resolve_id(self._spec(path)))
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise EncodingError(f"{path} is not UTF-8 text") from e

    def read_page(self, name: str) -> RawPage:
        return parse(self.read_file(name + PAGE_SUFFIX))

    def render_page(self, name: str) -> Page:
        page = self.read_page(name)
        return render(page.content, page.meta, name, self.highlight)

    def list_pages(self, path: str = "", include_private: bool = True) -> list[PageEntry]:
        """Pages directly under `path`, in tree order."""
        try:
            tree = self.repo.resolve(self._spec(path))
        except NotFound:
            if path or self.repo.branch_head(self.branch) is not None:
                raise
            return []
        if not isinstance(tree, Tree):
            raise TypeMismatch(f"{path} is not a directory")

        prefix = path.strip("/") + "/" if path.strip("/") else ""
        entries: list[PageEntry] = []
        for entry in tree.entries:
            name = entry.name.decode("utf-8", errors="replace")
            if entry.kind != BLOB or not name.endswith(PAGE_SUFFIX):
                continue
            data = self.repo.read_blob(entry.id)
            try:
                text = data.decode("utf-8")
            except UnicodeDecodeError as e:
                raise EncodingError(f"{prefix}{name} is not UTF-8 text") from e
            meta = parse(text).meta
            if meta.private and not include_private:
                continue
            entries.append(PageEntry(meta=meta, link=prefix + name[: -len(PAGE_SUFFIX)]))
        return entries

    # ── Write path ────────────────────────────────────────────

    def commit_files(
        self, author: str, message: str, changes: Mapping[str, bytes | str | None]
    ) -> str:
        """Commit `path -> content` upserts and `path -> None` removals in one revision."""
        encoded = {
            path: content.encode("utf-8") if isinstance(content, str) else content
            for path, content in changes.items()
        }
        with self._get_lane_lock(self.branch):
            head = self.committer.head()
            base = self.repo.read_commit(head).tree if head is not None else None
            tree = patch_tree(self.repo, base, encoded)
            return self.committer.commit(author, message, tree, parent=head)

    def save_page(self, author: str, page: RawPage, message: str | None = None) -> str:
        """Store `page` under the slug of its title and return that link."""
        link = slug(page.meta.title)
        if not link:
            raise FormatError(f"title {page.meta.title!r} has no usable characters for a link")
        message = message or EDIT_MESSAGE.format(title=page.meta.title)
        self.commit_files(author, message, {link + PAGE_SUFFIX: serialize(page)})
        return link

    def delete_page(self, author: str, name: str, message: str | None = None) -> str:
        message = message or DELETE_MESSAGE.format(name=name)
        return self.commit_files(author, message, {name + PAGE_SUFFIX: None})

    # ── History ───────────────────────────────────────────────

    def changelog(self, limit: int | None = None) -> list[CommitLog]:
        entries: list[CommitLog] = []
        for entry in log(self.repo, self.branch):
            if limit is not None and len(entries) >= limit:
                break
            entries.append(entry)
        return entries

    def commit_url(self, entry: CommitLog) -> str | None:
        """Link to the commit on an external viewer, when a prefix is configured."""
        if not self.config.commit_url_prefix:
            return None
        return self.config.commit_url_prefix + entry.hash
