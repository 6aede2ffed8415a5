"""Entry point: python -m wikimark <command>

- "pages":               List pages on the configured branch
- "log":                 Show the changelog
- "show NAME":           Print a page's raw Markdown document
- "render NAME":         Print a page rendered to HTML
- "save AUTHOR FILE":    Commit a front-matter document read from FILE ("-" for stdin)
- "delete AUTHOR NAME":  Remove a page
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

from wikimark.config import load_config
from wikimark.errors import WikiError

USAGE = """\
Usage: python -m wikimark <command>
  pages                List pages
  log                  Show the changelog
  show NAME            Print a page's source
  render NAME          Print a page as HTML
  save AUTHOR FILE     Commit a page document ("-" reads stdin)
  delete AUTHOR NAME   Remove a page"""

_ARITY = {"pages": 0, "log": 0, "show": 1, "render": 1, "save": 2, "delete": 2}

logger = logging.getLogger("wikimark")


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _run(cmd: str, args: list[str]) -> None:
    config = load_config()
    _setup_logging(config.log_level)

    from wikimark.core import Wiki
    from wikimark.page import parse, serialize

    wiki = Wiki(config)

    if cmd == "pages":
        for entry in wiki.list_pages():
            flag = " (private)" if entry.meta.private else ""
            print(f"{entry.link}\t{entry.meta.title}{flag}")
    elif cmd == "log":
        for entry in wiki.changelog():
            print(f"{entry.hash[:7]}  {entry.date}  {entry.author}: {entry.message}")
    elif cmd == "show":
        print(serialize(wiki.read_page(args[0])), end="")
    elif cmd == "render":
        page = wiki.render_page(args[0])
        print(json.dumps({"toc": page.toc.to_dict(), "content": page.content}, indent=2))
    elif cmd == "save":
        author, source = args
        text = sys.stdin.read() if source == "-" else Path(source).read_text(encoding="utf-8")
        print(wiki.save_page(author, parse(text)))
    elif cmd == "delete":
        author, name = args
        print(wiki.delete_page(author, name))


def main() -> None:
    cmd = sys.argv[1] if len(sys.argv) > 1 else ""
    args = sys.argv[2:]

    if cmd not in _ARITY or len(args) != _ARITY[cmd]:
        print(USAGE)
        sys.exit(1)

    try:
        _run(cmd, args)
    except (WikiError, OSError) as e:
        logger.error("%s failed: %s", cmd, e)
        sys.exit(2)


if __name__ == "__main__":
    main()
