from __future__ import annotations

import math
import re
from typing import Iterable

from ..session.models import Message

JSON_RATIO = 3.0
CODE_RATIO = 3.2
PROSE_RATIO = 3.5

_JSON_LIKE = re.compile(r"^\s*[\[{][\s\S]*[\]}]\s*$")
_CODE_LIKE = re.compile(
    r"```|`[^`\n]+`|[{}\[\]();]|\b(?:def|class|function|const|let|var|import|return|if|else)\b"
)


def estimate_tokens(text: str) -> int:
    """Cheap static estimate: ceil(len / ratio), more conservative for JSON and code."""
    if not text:
        return 0
    if _JSON_LIKE.match(text):
        ratio = JSON_RATIO
    elif _CODE_LIKE.search(text):
        ratio = CODE_RATIO
    else:
        ratio = PROSE_RATIO
    return math.ceil(len(text) / ratio)


def count_tokens(messages: Iterable[Message]) -> int:
    return sum(estimate_tokens(m.content) for m in messages)
