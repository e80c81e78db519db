"""Turn raw message text into safe inline markup.

The pipeline runs once per raw message, in this order:

1. ``:shortcode:`` tokens become their glyph; unknown codes stay as typed.
2. ``& < > " '`` are escaped, ampersand first.
3. Line breaks become ``<br />`` (or a single space for previews).
4. Emoji glyphs become ``<img>`` references to the twemoji asset set.
5. The result is filtered through a tag/attribute allow-list.

Step 5 is authoritative: it strips anything the earlier steps let through.
"""

from __future__ import annotations

import html.parser
import re
from typing import Dict, List, Optional, Sequence, Tuple

import emoji

from .config import DEFAULT_EMOJI_BASE_URL
from .shortcodes import ShortcodeMap

ALLOWED_TAGS = frozenset({"br", "img", "span"})
ALLOWED_ATTRS = frozenset(
    {
        "class",
        "src",
        "alt",
        "draggable",
        "loading",
        "width",
        "height",
        "role",
        "aria-hidden",
        "referrerpolicy",
        "decoding",
    }
)
VOID_TAGS = frozenset({"br", "img"})
# dropped together with everything inside them
DROP_CONTENT_TAGS = frozenset({"script", "style", "iframe", "object", "embed", "noscript", "template", "textarea", "title"})
EMOJI_CLASS = "twemoji-emoji"

_SHORTCODE_RE = re.compile(r":([a-z0-9_+\-]+):", flags=re.IGNORECASE)
_LINE_BREAK_RE = re.compile(r"\r\n|\r|\n")
_ZWJ = "\u200d"
_VS16 = "\ufe0f"


def escape_html(value: str) -> str:
    return (
        value.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&#39;")
    )


def replace_shortcodes(text: str, shortcodes: ShortcodeMap) -> str:
    def _sub(match: re.Match) -> str:
        code = match.group(1)
        char = shortcodes.lookup(code)
        return char if char is not None else f":{code}:"

    return _SHORTCODE_RE.sub(_sub, text)


def emoji_codepoints(glyph: str) -> str:
    """Asset name for ``glyph``: hex codepoints joined by ``-``.

    U+FE0F is dropped unless the sequence contains a zero-width joiner, which
    matches how the twemoji asset files are named.
    """

    if _ZWJ not in glyph:
        glyph = glyph.replace(_VS16, "")
    return "-".join(f"{ord(char):x}" for char in glyph)


class _AllowListSanitizer(html.parser.HTMLParser):
    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self._out: List[str] = []
        self._open: List[str] = []
        self._dropping: List[str] = []

    def handle_starttag(self, tag: str, attrs: List[Tuple[str, Optional[str]]]) -> None:
        self._start(tag, attrs, self_closing=False)

    def handle_startendtag(self, tag: str, attrs: List[Tuple[str, Optional[str]]]) -> None:
        self._start(tag, attrs, self_closing=True)

    def _start(self, tag: str, attrs: Sequence[Tuple[str, Optional[str]]], *, self_closing: bool) -> None:
        tag = tag.lower()
        if self._dropping:
            if tag == self._dropping[-1] and not self_closing:
                self._dropping.append(tag)
            return
        if tag in DROP_CONTENT_TAGS:
            if not self_closing:
                self._dropping.append(tag)
            return
        if tag not in ALLOWED_TAGS:
            return
        rendered = "".join(self._attribute(name, value) for name, value in attrs)
        if tag in VOID_TAGS:
            self._out.append(f"<{tag}{rendered} />")
            return
        self._out.append(f"<{tag}{rendered}>")
        if self_closing:
            self._out.append(f"</{tag}>")
        else:
            self._open.append(tag)

    @staticmethod
    def _attribute(name: str, value: Optional[str]) -> str:
        name = name.lower()
        if name not in ALLOWED_ATTRS:
            return ""
        value = value or ""
        if name == "src" and not _safe_src(value):
            return ""
        return f' {name}="{escape_html(value)}"'

    def handle_endtag(self, tag: str) -> None:
        tag = tag.lower()
        if self._dropping:
            if tag == self._dropping[-1]:
                self._dropping.pop()
            return
        if tag in VOID_TAGS or tag not in self._open:
            return
        while self._open:
            current = self._open.pop()
            self._out.append(f"</{current}>")
            if current == tag:
                break

    def handle_data(self, data: str) -> None:
        if self._dropping:
            return
        self._out.append(escape_html(data))

    def result(self) -> str:
        self.close()
        while self._open:
            self._out.append(f"</{self._open.pop()}>")
        return "".join(self._out)


def _safe_src(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered.startswith(("https://", "http://")):
        return True
    return lowered.startswith("/") and not lowered.startswith("//")


def sanitize(markup: str) -> str:
    """Keep only allow-listed tags and attributes; every text node is re-escaped."""

    sanitizer = _AllowListSanitizer()
    sanitizer.feed(markup)
    return sanitizer.result()


class MessageRenderer:
    def __init__(
        self,
        shortcodes: ShortcodeMap | None = None,
        *,
        image_base_url: str = DEFAULT_EMOJI_BASE_URL,
        image_folder: str = "svg",
        image_ext: str = ".svg",
    ) -> None:
        self.shortcodes = shortcodes if shortcodes is not None else ShortcodeMap()
        self.image_base_url = image_base_url if image_base_url.endswith("/") else image_base_url + "/"
        self.image_folder = image_folder
        self.image_ext = image_ext

    def emoji_src(self, glyph: str) -> str:
        folder = f"{self.image_folder}/" if self.image_folder else ""
        return f"{self.image_base_url}{folder}{emoji_codepoints(glyph)}{self.image_ext}"

    def _emoji_image(self, glyph: str, _data: Dict) -> str:
        return (
            f'<img class="{EMOJI_CLASS}" draggable="false" alt="{glyph}" '
            f'src="{escape_html(self.emoji_src(glyph))}" loading="lazy" />'
        )

    def render(self, text: str, *, preserve_line_breaks: bool = True) -> str:
        content = replace_shortcodes(text or "", self.shortcodes)
        escaped = escape_html(content)
        normalized = _LINE_BREAK_RE.sub("<br />" if preserve_line_breaks else " ", escaped)
        with_images = emoji.replace_emoji(normalized, replace=self._emoji_image)
        return sanitize(with_images)

    def preview(self, text: str) -> str:
        return self.render(text, preserve_line_breaks=False)


def render_message(text: str, shortcodes: ShortcodeMap, *, preserve_line_breaks: bool = True) -> str:
    return MessageRenderer(shortcodes).render(text, preserve_line_breaks=preserve_line_breaks)
