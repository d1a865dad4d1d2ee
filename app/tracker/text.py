"""Note length rules."""

from __future__ import annotations

import re

# A mention or URL only counts when it starts the text or follows whitespace;
# the boundary character itself is kept.
_MENTION_RE = re.compile(r"(^|\s)@[a-zA-Z0-9_]+")
_URL_RE = re.compile(r"(^|\s)https?://\S+")


def effective_length(text: str) -> int:
    """Length of ``text`` with @mentions and http(s) URLs not counted."""
    processed = _MENTION_RE.sub(r"\1", text)
    processed = _URL_RE.sub(r"\1", processed)
    return len(processed)
