"""Multi-strategy search/replace used by the file editing tools.

The model often quotes file content with small deviations: different line
endings, lost indentation, collapsed whitespace, escaped newlines. Each
strategy below is a pure generator that proposes ``(matched_text, new_text)``
candidates for a search string. :func:`replace` walks the strategies in order
(strict to lenient) and stops at the first one that locates anything: a
single location is applied, several are an ambiguity error.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Iterator

Candidate = tuple[str, str]
Replacer = Callable[[str, str, str], Iterator[Candidate]]

NOT_FOUND_MESSAGE = "old_string not found in content"
AMBIGUOUS_MESSAGE = (
    "Found multiple matches for old_string. Provide more surrounding lines in "
    "old_string to identify the correct match, or set replace_all."
)


class PatchError(ValueError):
    pass


class MatchNotFoundError(PatchError):
    pass


class AmbiguousMatchError(PatchError):
    pass


@dataclass(frozen=True)
class StrategyOutcome:
    matched: bool
    result: str | None = None
    reason: str | None = None


def normalize_line_endings(text: str) -> str:
    return text.replace("\r\n", "\n")


def _indent_of(line: str) -> str:
    return line[: len(line) - len(line.lstrip())]


def _search_lines(find: str) -> list[str]:
    lines = find.split("\n")
    if len(lines) > 1 and lines[-1] == "":
        lines.pop()
    return lines


def _reindent(replacement: str, find: str, matched: str) -> str:
    """Shift the replacement from the search text's indentation to the file's.

    Replacement line i borrows the indentation change between search line i
    and matched line i; lines past the end reuse the last pair.
    """
    find_lines = find.split("\n")
    matched_lines = matched.split("\n")
    last = min(len(find_lines), len(matched_lines)) - 1
    out = []
    for i, line in enumerate(replacement.split("\n")):
        j = min(i, last)
        src = _indent_of(find_lines[j])
        dst = _indent_of(matched_lines[j])
        if line.strip() and src != dst and line.startswith(src):
            out.append(dst + line[len(src):])
        else:
            out.append(line)
    return "\n".join(out)


def _collapse(text: str) -> str:
    return " ".join(text.split())


def _squash(text: str) -> str:
    return "".join(text.split())


def _dedent(text: str) -> str:
    lines = text.split("\n")
    nonblank = [line for line in lines if line.strip()]
    if not nonblank:
        return text
    indent = min(len(_indent_of(line)) for line in nonblank)
    return "\n".join(line[indent:] if line.strip() else line for line in lines)


_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "'": "'", '"': '"', "`": "`", "\\": "\\", "\n": "\n", "$": "$"}
_ESCAPE_RE = re.compile(r"\\(n|t|r|'|\"|`|\\|\n|\$)")


def _unescape(text: str) -> str:
    return _ESCAPE_RE.sub(lambda m: _ESCAPES[m.group(1)], text)


def _windows(lines: list[str], size: int) -> Iterator[str]:
    for i in range(len(lines) - size + 1):
        yield "\n".join(lines[i : i + size])


# ---------------------------------------------------------------------------
# strategies
# ---------------------------------------------------------------------------


def simple_replacer(content: str, find: str, replacement: str) -> Iterator[Candidate]:
    yield find, replacement


def line_ending_replacer(content: str, find: str, replacement: str) -> Iterator[Candidate]:
    if "\r\n" in content:
        crlf = normalize_line_endings(find).replace("\n", "\r\n")
        if crlf != find:
            yield crlf, normalize_line_endings(replacement).replace("\n", "\r\n")
    elif "\r\n" in find:
        yield normalize_line_endings(find), normalize_line_endings(replacement)


def line_trimmed_replacer(content: str, find: str, replacement: str) -> Iterator[Candidate]:
    original = content.split("\n")
    search = [line.strip() for line in _search_lines(find)]
    size = len(search)
    for i in range(len(original) - size + 1):
        if all(original[i + j].strip() == search[j] for j in range(size)):
            block = "\n".join(original[i : i + size])
            yield block, _reindent(replacement, find, block)


def block_anchor_replacer(content: str, find: str, replacement: str) -> Iterator[Candidate]:
    """Anchor on the first and last search lines; the lines between may differ
    from the search text in whitespace only (including line breaks)."""
    search = _search_lines(find)
    if len(search) < 3:
        return
    first, last = search[0].strip(), search[-1].strip()
    if not first or not last:
        return
    interior = _squash("".join(search[1:-1]))
    lines = content.split("\n")
    for i, line in enumerate(lines):
        if line.strip() != first:
            continue
        for j in range(i + 2, len(lines)):
            if lines[j].strip() != last:
                continue
            if _squash("".join(lines[i + 1 : j])) == interior:
                block = "\n".join(lines[i : j + 1])
                yield block, _reindent(replacement, find, block)
            break


def whitespace_normalized_replacer(content: str, find: str, replacement: str) -> Iterator[Candidate]:
    target = _collapse(find)
    if not target:
        return
    lines = content.split("\n")
    for line in lines:
        collapsed = _collapse(line)
        if collapsed == target:
            yield line, replacement
        elif target in collapsed:
            pattern = r"\s+".join(re.escape(word) for word in find.split())
            m = re.search(pattern, line)
            if m:
                yield m.group(0), replacement

    size = len(find.split("\n"))
    if size > 1:
        for block in _windows(lines, size):
            if _collapse(block) == target:
                yield block, replacement


def indentation_flexible_replacer(content: str, find: str, replacement: str) -> Iterator[Candidate]:
    target = _dedent(find)
    for block in _windows(content.split("\n"), len(find.split("\n"))):
        if _dedent(block) == target:
            yield block, _reindent(replacement, find, block)


def escape_normalized_replacer(content: str, find: str, replacement: str) -> Iterator[Candidate]:
    unescaped = _unescape(find)
    if unescaped in content:
        yield unescaped, replacement
    for block in _windows(content.split("\n"), len(unescaped.split("\n"))):
        if _unescape(block) == unescaped:
            yield block, replacement


def trimmed_boundary_replacer(content: str, find: str, replacement: str) -> Iterator[Candidate]:
    trimmed = find.strip()
    if trimmed == find or not trimmed:
        return
    if trimmed in content:
        yield trimmed, replacement
    for block in _windows(content.split("\n"), len(find.split("\n"))):
        if block.strip() == trimmed:
            yield block, replacement


def context_aware_replacer(content: str, find: str, replacement: str) -> Iterator[Candidate]:
    """Anchor lines must match; at least half of the non-blank interior lines
    must match too, and the block must have as many lines as the search."""
    search = find.split("\n")
    if len(search) < 3:
        return
    if search[-1] == "":
        search.pop()
    lines = content.split("\n")
    first, last = search[0].strip(), search[-1].strip()
    for i, line in enumerate(lines):
        if line.strip() != first:
            continue
        for j in range(i + 2, len(lines)):
            if lines[j].strip() != last:
                continue
            block_lines = lines[i : j + 1]
            if len(block_lines) == len(search):
                matching = total = 0
                for k in range(1, len(block_lines) - 1):
                    a, b = block_lines[k].strip(), search[k].strip()
                    if a or b:
                        total += 1
                        if a == b:
                            matching += 1
                if total == 0 or matching / total >= 0.5:
                    yield "\n".join(block_lines), replacement
            break


def multi_occurrence_replacer(content: str, find: str, replacement: str) -> Iterator[Candidate]:
    start = 0
    while True:
        index = content.find(find, start)
        if index == -1:
            return
        yield find, replacement
        start = index + len(find)


REPLACERS: list[Replacer] = [
    simple_replacer,
    line_ending_replacer,
    line_trimmed_replacer,
    block_anchor_replacer,
    whitespace_normalized_replacer,
    indentation_flexible_replacer,
    escape_normalized_replacer,
    trimmed_boundary_replacer,
    context_aware_replacer,
    multi_occurrence_replacer,
]


def _locate(content: str, matched: str) -> Iterator[tuple[int, int]]:
    index = content.find(matched)
    while index != -1:
        yield index, index + len(matched)
        index = content.find(matched, index + 1)


def try_strategy(
    strategy: Replacer,
    content: str,
    find: str,
    replacement: str,
    replace_all: bool = False,
) -> StrategyOutcome:
    """Run one strategy and apply it when its match set is unambiguous.

    Every occurrence of every candidate is a location. A span overlapping one
    already found for a different candidate text is the same location. More
    than one location is ambiguous unless ``replace_all`` is set, in which case
    every non-overlapping location is replaced.
    """
    spans: list[tuple[int, int, str, str]] = []
    for matched, new_text in strategy(content, find, replacement):
        if not matched:
            continue
        for start, end in _locate(content, matched):
            if any(
                s < end and start < e and (m != matched or (s, e) == (start, end))
                for s, e, _, m in spans
            ):
                continue
            spans.append((start, end, new_text, matched))

    if not spans:
        return StrategyOutcome(False, reason=NOT_FOUND_MESSAGE)
    if not replace_all:
        if len(spans) > 1:
            return StrategyOutcome(False, reason=AMBIGUOUS_MESSAGE)
        start, end, new_text, _ = spans[0]
        return StrategyOutcome(True, content[:start] + new_text + content[end:])

    out = []
    pos = 0
    for start, end, new_text, _ in sorted(spans):
        if start < pos:
            continue
        out.append(content[pos:start])
        out.append(new_text)
        pos = end
    out.append(content[pos:])
    return StrategyOutcome(True, "".join(out))


def replace(old_content: str, search: str, replacement: str, replace_all: bool = False) -> str:
    """Return ``old_content`` with ``search`` replaced.

    An empty ``search`` stands for the whole file and yields ``replacement``.
    Raises :class:`AmbiguousMatchError` when ``search`` occurs more than once
    verbatim (and ``replace_all`` is off) or when the first strategy that
    matches anything matches several locations, and
    :class:`MatchNotFoundError` when nothing matches at all.
    """
    if search == "":
        return replacement

    if not replace_all:
        first = old_content.find(search)
        if first != -1 and old_content.find(search, first + 1) != -1:
            raise AmbiguousMatchError(AMBIGUOUS_MESSAGE)

    for strategy in REPLACERS:
        outcome = try_strategy(strategy, old_content, search, replacement, replace_all)
        if outcome.matched:
            return outcome.result  # type: ignore[return-value]
        if outcome.reason == AMBIGUOUS_MESSAGE:
            raise AmbiguousMatchError(AMBIGUOUS_MESSAGE)

    raise MatchNotFoundError(NOT_FOUND_MESSAGE)
