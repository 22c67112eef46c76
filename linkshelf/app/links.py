"""URL extraction from message bodies."""

from __future__ import annotations

import re
from typing import Dict, List

# Closing parentheses are excluded so "(see https://x.io)" yields "https://x.io".
URL_PATTERN = re.compile(r"\bhttps?://[^\s)]+", re.IGNORECASE)


def extract_links(text: str) -> List[str]:
    """Return the unique URLs in ``text`` in first-seen order."""

    if not text:
        return []
    seen: Dict[str, None] = {}
    for match in URL_PATTERN.finditer(text):
        seen.setdefault(match.group(0), None)
    return list(seen)
