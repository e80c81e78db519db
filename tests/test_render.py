import pytest

from dm_client.render import MessageRenderer, emoji_codepoints, escape_html, render_message, sanitize
from dm_client.shortcodes import ShortcodeMap

GRINNING = "\U0001F600"
BASE = "https://cdn.test/twemoji/"


@pytest.fixture
def renderer():
    return MessageRenderer(ShortcodeMap.from_mapping({"smile": GRINNING}), image_base_url=BASE)


def test_shortcode_escape_and_line_break_pipeline(renderer):
    rendered = renderer.render(":smile: hi\n<b>")

    assert "<b>" not in rendered
    assert "&lt;b&gt;" in rendered
    assert "<br />" in rendered
    assert f'alt="{GRINNING}"' in rendered
    assert f'src="{BASE}svg/1f600.svg"' in rendered
    assert rendered.endswith(" hi<br />&lt;b&gt;")


def test_render_message_helper_matches_renderer():
    shortcodes = ShortcodeMap.from_mapping({"smile": GRINNING})

    rendered = render_message(":smile:", shortcodes)

    assert rendered.startswith('<img class="twemoji-emoji" draggable="false"')
    assert rendered.endswith('loading="lazy" />')


def test_unknown_shortcode_is_left_as_typed(renderer):
    assert renderer.render("hello :nope: there") == "hello :nope: there"


def test_preview_collapses_line_breaks(renderer):
    assert renderer.preview("one\r\ntwo\nthree") == "one two three"


def test_special_characters_are_escaped(renderer):
    rendered = renderer.render("a & b < c > d \"e\" 'f'")

    assert rendered == "a &amp; b &lt; c &gt; d &quot;e&quot; &#39;f&#39;"


def test_markup_in_message_text_never_becomes_tags(renderer):
    rendered = renderer.render('<img src=x onerror="alert(1)"><script>alert(2)</script>')

    assert "<img" not in rendered
    assert "<script" not in rendered
    assert "&lt;script&gt;" in rendered


def test_escape_html_escapes_ampersand_first():
    assert escape_html("&lt;") == "&amp;lt;"


def test_sanitize_drops_disallowed_tags_and_attributes():
    markup = '<span class="x" onclick="evil()">hi</span><b>bold</b><script>alert(1)</script><style>p{}</style>'

    assert sanitize(markup) == '<span class="x">hi</span>bold'


def test_sanitize_rejects_script_urls():
    assert sanitize('<img src="javascript:alert(1)" alt="x">') == '<img alt="x" />'
    assert sanitize('<img src="//evil.test/a.png">') == "<img />"
    assert sanitize('<img src="/assets/a.svg">') == '<img src="/assets/a.svg" />'


def test_sanitize_closes_dangling_spans():
    assert sanitize("<span>open") == "<span>open</span>"


@pytest.mark.parametrize(
    "glyph, expected",
    [
        ("\U0001F600", "1f600"),
        ("\u2764\ufe0f", "2764"),
        ("\U0001F44D\U0001F3FD", "1f44d-1f3fd"),
        ("\U0001F469\u200d\u2764\ufe0f\u200d\U0001F468", "1f469-200d-2764-fe0f-200d-1f468"),
    ],
)
def test_emoji_codepoints(glyph, expected):
    assert emoji_codepoints(glyph) == expected


def test_native_emoji_in_text_becomes_image(renderer):
    rendered = renderer.render("nice \U0001F44D")

    assert rendered.startswith("nice <img ")
    assert f"{BASE}svg/1f44d.svg" in rendered


def test_default_map_resolves_aliases_case_insensitively():
    rendered = MessageRenderer(image_base_url=BASE).render(":LOL:")

    assert "1f602.svg" in rendered
