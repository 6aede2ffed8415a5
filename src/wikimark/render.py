"""Markdown to HTML, building a table of contents and highlighting code blocks.

mistune parses the document and its token walk is replayed, in document
order, as a stream of events through a three-phase machine:

    Normal --CodeStart-->    InCode    --CodeEnd-->    Normal
    Normal --HeadingStart--> InHeading --HeadingEnd--> Normal

Text is highlighted while InCode, collected as the heading title while
InHeading and passed through while Normal. Every other pairing is illegal.
"""

from __future__ import annotations

import functools
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Union

import mistune
from pygments import highlight
from pygments.formatters import HtmlFormatter
from pygments.lexer import Lexer
from pygments.lexers import TextLexer, get_lexer_by_name, get_lexer_for_filename
from pygments.styles import get_style_by_name
from pygments.util import ClassNotFound

from wikimark.page import Metadata, slug

logger = logging.getLogger(__name__)

PLUGINS = ["table", "strikethrough", "url"]
DEFAULT_STYLE = "monokai"


# ── Table of contents ─────────────────────────────────────────


@dataclass
class Section:
    """A TOC node. The root is the page itself at level 0."""

    link: str = ""
    title: str = ""
    level: int = 0
    children: list[Section] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "link": self.link,
            "level": self.level,
            "children": [c.to_dict() for c in self.children],
        }


class TocBuilder:
    """Grows a Section tree one heading at a time."""

    def __init__(self, root: Section) -> None:
        self.root = root
        self._path = [root]

    @property
    def current(self) -> Section:
        return self._path[-1]

    def open(self, level: int) -> Section:
        """Climb to the nearest shallower section and append a new child there."""
        while len(self._path) > 1 and self._path[-1].level >= level:
            self._path.pop()
        node = Section(level=level)
        self._path[-1].children.append(node)
        self._path.append(node)
        return node

    def close(self, title: str) -> Section:
        node = self._path[-1]
        node.title = title
        node.link = slug(title)
        return node


@dataclass
class Page:
    """A rendered page."""

    toc: Section
    content: str


# ── Syntax highlighting ───────────────────────────────────────


@functools.lru_cache(maxsize=128)
def lexer_for(hint: str) -> Lexer:
    """Lexer by language name, then by file extension, then plain text."""
    if hint:
        try:
            return get_lexer_by_name(hint)
        except ClassNotFound:
            pass
        try:
            return get_lexer_for_filename(f"block.{hint}")
        except ClassNotFound:
            pass
    return TextLexer()


class Highlighter:
    """Highlights the text of one code block."""

    def __init__(self, lexer: Lexer, style: type) -> None:
        self.lexer = lexer
        self.formatter = HtmlFormatter(nowrap=True, noclasses=True, style=style)

    def feed(self, text: str) -> str:
        return highlight(text, self.lexer, self.formatter)


class HighlightContext:
    """Style tables shared by every render; never modified after construction."""

    def __init__(self, style: str = DEFAULT_STYLE) -> None:
        self.style_name = style
        try:
            self.style = get_style_by_name(style)
        except ClassNotFound:
            logger.warning("Unknown highlight style %r, falling back to 'default'", style)
            self.style = get_style_by_name("default")
        self.opening = f'<pre class="highlight" style="background-color: {self.style.background_color}">'

    def highlighter(self, hint: str) -> Highlighter:
        return Highlighter(lexer_for(hint), self.style)


_context: HighlightContext | None = None
_context_lock = threading.Lock()


def init_highlighting(style: str = DEFAULT_STYLE) -> HighlightContext:
    """Build the process-wide HighlightContext; later calls return the first one."""
    global _context
    with _context_lock:
        if _context is None:
            _context = HighlightContext(style)
            logger.info("Loaded highlight style %s", style)
        elif style != _context.style_name:
            logger.warning(
                "Highlighting already initialized with %s, ignoring %s", _context.style_name, style
            )
        return _context


def highlighting() -> HighlightContext:
    return _context if _context is not None else init_highlighting()


# ── Phase machine ─────────────────────────────────────────────


@dataclass(frozen=True)
class CodeStart:
    info: str = ""


@dataclass(frozen=True)
class CodeEnd:
    pass


@dataclass(frozen=True)
class HeadingStart:
    level: int


@dataclass(frozen=True)
class HeadingEnd:
    inner: str


@dataclass(frozen=True)
class Text:
    text: str
    markup: str


Event = Union[CodeStart, CodeEnd, HeadingStart, HeadingEnd, Text]


@dataclass(frozen=True)
class Normal:
    pass


@dataclass
class InCode:
    highlighter: Highlighter


@dataclass
class InHeading:
    buffer: list[str] = field(default_factory=list)


Phase = Union[Normal, InCode, InHeading]

NORMAL = Normal()


def transition(
    phase: Phase, event: Event, toc: TocBuilder, context: HighlightContext
) -> tuple[Phase, str]:
    """Return the next phase and the HTML emitted for `event`."""
    if isinstance(event, Text):
        if isinstance(phase, InCode):
            return phase, phase.highlighter.feed(event.text)
        if isinstance(phase, InHeading):
            phase.buffer.append(event.text)
        return phase, event.markup

    if isinstance(phase, Normal):
        if isinstance(event, CodeStart):
            return InCode(context.highlighter(event.info)), context.opening
        if isinstance(event, HeadingStart):
            toc.open(event.level)
            return InHeading(), ""
    elif isinstance(phase, InCode) and isinstance(event, CodeEnd):
        return NORMAL, "</pre>\n"
    elif isinstance(phase, InHeading) and isinstance(event, HeadingEnd):
        node = toc.close("".join(phase.buffer).strip())
        tag = f"h{node.level}"
        if not node.link:
            return NORMAL, f"<{tag}>{event.inner}</{tag}>\n"
        html = (
            f'<{tag} id="{node.link}">{event.inner}'
            f'<a class="anchor" href="#{node.link}">#</a></{tag}>\n'
        )
        return NORMAL, html
    raise ValueError(f"illegal event {event!r} in phase {type(phase).__name__}")


class PageRenderer(mistune.HTMLRenderer):
    """mistune renderer that drives the phase machine from its token walk."""

    def __init__(self, toc: TocBuilder, context: HighlightContext) -> None:
        super().__init__(escape=True)
        self.toc = toc
        self.context = context
        self.phase: Phase = NORMAL

    def advance(self, event: Event) -> str:
        self.phase, html = transition(self.phase, event, self.toc, self.context)
        return html

    def render_token(self, token: dict[str, Any], state: Any) -> str:
        kind = token["type"]
        if kind == "heading":
            html = self.advance(HeadingStart(token["attrs"]["level"]))
            inner = self.render_tokens(token.get("children", []), state)
            return html + self.advance(HeadingEnd(inner))
        if kind == "block_code":
            info = (token.get("attrs") or {}).get("info") or ""
            hint = info.split()[0] if info.strip() else ""
            html = self.advance(CodeStart(hint))
            html += self.advance(Text(token["raw"], ""))
            return html + self.advance(CodeEnd())
        return super().render_token(token, state)

    def text(self, text: str) -> str:
        return self.advance(Text(text, super().text(text)))


def render(
    markdown: str, meta: Metadata, link: str, context: HighlightContext | None = None
) -> Page:
    """Render a page body to HTML plus its TOC, in a single pass."""
    toc = TocBuilder(Section(link=link, title=meta.title, level=0))
    renderer = PageRenderer(toc, context or highlighting())
    md = mistune.create_markdown(renderer=renderer, plugins=PLUGINS)
    return Page(toc=toc.root, content=md(markdown))
