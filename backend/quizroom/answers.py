"""Answer normalization.

Every representation a client or a stored quiz may use for an option is
converted to a single canonical form, the zero-based option index, before any
comparison happens. Accepted inputs:

* ``int`` option index (``0`` is the first option),
* a string of ASCII digits (``"2"``),
* an option letter, case-insensitive (``"B"`` is the second option),
* the exact option text, case-insensitive.

Anything else (bools, floats with a fractional part, out-of-range indexes,
unknown text) normalizes to ``None`` and is scored as incorrect.
"""

from __future__ import annotations

from typing import Any, Sequence

from .room_constants import OPTION_LETTERS


def normalize_answer(value: Any, options: Sequence[str]) -> int | None:
    option_count = len(options)
    if option_count == 0 or value is None or isinstance(value, bool):
        return None

    if isinstance(value, float):
        if not value.is_integer():
            return None
        value = int(value)

    if isinstance(value, int):
        return value if 0 <= value < option_count else None

    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None

    if text.isascii() and text.isdigit():
        index = int(text)
        return index if index < option_count else None

    if len(text) == 1 and text.upper() in OPTION_LETTERS:
        index = OPTION_LETTERS.index(text.upper())
        if index < option_count:
            return index

    lowered = text.lower()
    for index, option in enumerate(options):
        if str(option).strip().lower() == lowered:
            return index
    return None


def option_letter(index: int | None) -> str | None:
    if index is None or not 0 <= index < len(OPTION_LETTERS):
        return None
    return OPTION_LETTERS[index]


def is_correct_answer(value: Any, correct_answer: Any, options: Sequence[str]) -> bool:
    submitted = normalize_answer(value, options)
    if submitted is None:
        return False
    return submitted == normalize_answer(correct_answer, options)
