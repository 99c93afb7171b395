"""
Input sanitization - strip markup from user supplied text.

    sanitize_text("<b>Senior</b> Dev<script>x</script>")  -> "Senior Devx"

Text is stored as plain text: tags are removed, entities decoded. Decoding
can surface new tags ("&lt;script&gt;"), so cleaning repeats until the
value no longer changes.
"""

import html

import bleach

MAX_PASSES = 4


def _strip_markup(value: str) -> str:
    return bleach.clean(value, tags=set(), attributes={}, strip=True, strip_comments=True)


def sanitize_text(value):
    if not isinstance(value, str) or not value:
        return value
    for _ in range(MAX_PASSES):
        cleaned = html.unescape(_strip_markup(value))
        if cleaned == value:
            return cleaned
        value = cleaned
    # Still changing: keep the escaped form
    return _strip_markup(value)
