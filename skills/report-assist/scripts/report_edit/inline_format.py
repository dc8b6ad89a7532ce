"""Inline emphasis formatting for reply text (escape first, then reformat)."""

import re

from utils import sanitize_xml_string


# Order matters: '&' first so later entities are not double-escaped
MARKUP_ESCAPES = (
    ('&', '&amp;'),
    ('<', '&lt;'),
    ('>', '&gt;'),
    ('"', '&quot;'),
    ("'", '&#39;'),
)

# **bold**
BOLD_PATTERN = re.compile(r'\*\*([^*]+)\*\*')

# *italic* not touching another '*' and not padded with whitespace inside,
# so "a * b * c" stays plain text. Content may not cross a tag.
ITALIC_PATTERN = re.compile(r'(?<!\*)\*(?![\s*])([^*<>]+?)(?<!\s)\*(?!\*)')


def escape_markup(text: str) -> str:
    """
    Escape the five markup-significant characters.

    Examples:
        'a < b & "c"' -> 'a &lt; b &amp; &quot;c&quot;'
    """
    for char, entity in MARKUP_ESCAPES:
        text = text.replace(char, entity)
    return text


def apply_emphasis(escaped: str) -> str:
    """
    Rewrite markdown emphasis in already-escaped text.

    Examples:
        "**Critical** risk" -> "<b>Critical</b> risk"
        "an *important* note" -> "an <i>important</i> note"
    """
    result = BOLD_PATTERN.sub(r'<b>\1</b>', escaped)
    return ITALIC_PATTERN.sub(r'<i>\1</i>', result)


def format_inline(text: str) -> str:
    """
    Convert one line of reply text into inline block content.

    Control characters that XML cannot hold are dropped, markup characters are
    escaped, then bold and italic markers become <b>/<i> tags.
    """
    if not text:
        return ''
    return apply_emphasis(escape_markup(sanitize_xml_string(text)))
