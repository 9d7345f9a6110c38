"""Suggestion post-processing: echo detection and line-suffix trimming."""

from __future__ import annotations


def strip_trailing_blank_lines(lines: list[str]) -> list[str]:
    """Return ``lines`` without trailing whitespace-only lines."""
    end = len(lines)
    while end > 0 and lines[end - 1].strip() == "":
        end -= 1
    return lines[:end]


def _line(lines: list[str], index: int) -> str | None:
    return lines[index] if 0 <= index < len(lines) else None


def _all_match(suggestion: list[str], document: list[str], start: int) -> bool:
    return all(_line(document, start + i) == value for i, value in enumerate(suggestion))


def should_discard(
    suggestion_lines: list[str],
    following_lines: list[str],
    line_prefix: str,
    line_suffix: str,
    is_last_line: bool,
) -> bool:
    """Whether a suggestion merely repeats text already in the document.

    ``following_lines`` are the document lines after the cursor line.
    """
    if not suggestion_lines:
        return True
    if len(suggestion_lines) == 1 and suggestion_lines[0].strip() == "":
        return True
    if is_last_line:
        return False

    first = suggestion_lines[0]
    if (
        len(suggestion_lines) > 1
        and (first.strip() == "" or first.strip() == line_suffix.strip())
        and _all_match(suggestion_lines[1:], following_lines, 0)
    ):
        return True

    if len(suggestion_lines) == 1 and first == line_suffix:
        return True

    anchor = 0
    while anchor < len(following_lines) and following_lines[anchor].strip() == "":
        anchor += 1
    if anchor >= len(following_lines):
        return False

    if line_prefix + first != following_lines[anchor]:
        return False
    if len(suggestion_lines) == 1:
        return True
    if len(suggestion_lines) == 2:
        second = suggestion_lines[1]
        next_line = _line(following_lines, anchor + 1) or ""
        return next_line[: len(second)] == second
    return _all_match(suggestion_lines[1:], following_lines, anchor + 1)


def normalize(suggestion_lines: list[str], line_suffix: str) -> str:
    """Trim a suggestion against the text already right of the cursor."""
    lines = strip_trailing_blank_lines(suggestion_lines)
    if not lines:
        return ""
    if line_suffix.strip() != "":
        first = lines[0]
        if first.endswith(line_suffix):
            return first[: len(first) - len(line_suffix)]
        if len(lines) > 1:
            return first
    return "\n".join(lines)
