from __future__ import annotations

import math
from typing import Iterable

from .types import UsageEstimate


def estimate_tokens(text: str) -> int:
    if not text:
        return 0

    return math.ceil(len(text) / 4)


def estimate_usage(input_texts: Iterable[str], output_text: str) -> UsageEstimate:
    """Approximate token counts at roughly four characters per token."""

    return UsageEstimate(
        input_tokens=estimate_tokens("".join(input_texts)),
        output_tokens=estimate_tokens(output_text),
    )
