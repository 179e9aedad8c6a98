from __future__ import annotations

from typing import Any, Iterable

from .types import Role

TEXT_PART_TYPES = frozenset({"text", "input_text", "output_text"})


def canonical_role(role: str | None, *, assistant_roles: Iterable[str] = ("assistant",)) -> Role:
    """Map a dialect role onto the canonical set.

    There is no separate system channel in a message list, so ``system`` and
    any unrecognized role become ``user``.
    """

    if role is not None and role.lower() in assistant_roles:
        return "assistant"
    return "user"


def extract_text(content: str | list[Any] | None) -> tuple[str, bool]:
    """Concatenate the textual parts of a message, in order.

    Returns the text and whether non-text parts were dropped.
    """

    if content is None:
        return "", False

    if isinstance(content, str):
        return content, False

    parts: list[str] = []
    dropped = False

    for part in content:
        part_type = _field(part, "type")
        text = _field(part, "text")
        if part_type in TEXT_PART_TYPES and isinstance(text, str):
            parts.append(text)
        else:
            dropped = True

    return "".join(parts), dropped


def warning_headers(header_name: str, warnings: list[str]) -> dict[str, str]:
    if not warnings:
        return {}

    value = " | ".join(dedupe_preserve_order(warnings))
    if len(value) > 2048:
        value = value[:2045] + "..."
    return {header_name: value}


def dedupe_preserve_order(items: list[str]) -> list[str]:
    seen: set[str] = set()
    deduped: list[str] = []

    for item in items:
        if item in seen:
            continue
        seen.add(item)
        deduped.append(item)

    return deduped


def _field(part: Any, name: str) -> Any:
    if isinstance(part, dict):
        return part.get(name)
    return getattr(part, name, None)
