from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache

# Outermost first; a tag closes any open tag of equal or deeper rank.
REPAIRED_TAGS: tuple[str, ...] = ("boltArtifact", "boltAction")

_ATTRIBUTE = re.compile(r"""(\s*)([A-Za-z_:][-\w:.]*)(\s*=\s*)("[^"]*"|'[^']*')""")


@dataclass(slots=True)
class _OpenTag:
    name: str
    rank: int


def sanitize_tagged_output(text: str, tags: tuple[str, ...] = REPAIRED_TAGS) -> str:
    """Repair the tagged blocks models sometimes emit malformed.

    Attributes written without separating whitespace get a single space
    inserted, and an element left open when a sibling or parent element of
    the same family opens or closes gets its closing tag inserted. Text
    outside the targeted tags is never touched, so the pass is idempotent
    and leaves well-formed text unchanged.
    """

    if not text or "<" not in text:
        return text

    pattern = _tag_pattern(tags)
    ranks = {name.lower(): index for index, name in enumerate(tags)}

    pieces: list[str] = []
    stack: list[_OpenTag] = []
    position = 0

    for match in pattern.finditer(text):
        closing = match.group(1) == "/"
        name = match.group(2)
        body = match.group(3)
        rank = ranks[name.lower()]

        if closing:
            if body.strip():
                continue
            pieces.append(text[position : match.start()])
            pieces.extend(_close_through(stack, name))
            pieces.append(match.group(0))
            position = match.end()
            continue

        repaired = _repair_attributes(body)
        if repaired is None:
            continue
        attributes, self_closing = repaired

        pieces.append(text[position : match.start()])
        while stack and stack[-1].rank >= rank:
            pieces.append(f"</{stack.pop().name}>")
        pieces.append(f"<{name}{attributes}>")
        if not self_closing:
            stack.append(_OpenTag(name=name, rank=rank))
        position = match.end()

    pieces.append(text[position:])
    return "".join(pieces)


def _close_through(stack: list[_OpenTag], name: str) -> list[str]:
    lowered = name.lower()
    if not any(entry.name.lower() == lowered for entry in stack):
        return []

    closers: list[str] = []
    while stack:
        entry = stack.pop()
        if entry.name.lower() == lowered:
            break
        closers.append(f"</{entry.name}>")
    return closers


def _repair_attributes(body: str) -> tuple[str, bool] | None:
    content = body.rstrip()
    tail = body[len(content) :]
    self_closing = content.endswith("/")
    if self_closing:
        before_slash = content[:-1]
        content = before_slash.rstrip()
        tail = before_slash[len(content) :] + "/" + tail

    repaired: list[str] = []
    position = 0
    while position < len(content):
        match = _ATTRIBUTE.match(content, position)
        if match is None:
            return None
        gap, attr_name, equals, value = match.groups()
        repaired.append(f"{gap or ' '}{attr_name}{equals}{value}")
        position = match.end()

    return "".join(repaired) + tail, self_closing


@lru_cache(maxsize=8)
def _tag_pattern(tags: tuple[str, ...]) -> re.Pattern[str]:
    names = "|".join(re.escape(name) for name in sorted(tags, key=len, reverse=True))
    return re.compile(
        rf"""<(/?)({names})((?:[^<>"']|"[^"]*"|'[^']*')*)>""",
        re.IGNORECASE,
    )
