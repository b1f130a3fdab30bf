from __future__ import annotations

import pytest

from pydeskagent.patch.replacers import (
    AMBIGUOUS_MESSAGE,
    NOT_FOUND_MESSAGE,
    REPLACERS,
    AmbiguousMatchError,
    MatchNotFoundError,
    PatchError,
    block_anchor_replacer,
    context_aware_replacer,
    escape_normalized_replacer,
    indentation_flexible_replacer,
    line_ending_replacer,
    line_trimmed_replacer,
    multi_occurrence_replacer,
    normalize_line_endings,
    replace,
    simple_replacer,
    trimmed_boundary_replacer,
    try_strategy,
    whitespace_normalized_replacer,
)


class TestStrategyOrder:
    def test_strict_to_lenient(self) -> None:
        assert [r.__name__ for r in REPLACERS] == [
            "simple_replacer",
            "line_ending_replacer",
            "line_trimmed_replacer",
            "block_anchor_replacer",
            "whitespace_normalized_replacer",
            "indentation_flexible_replacer",
            "escape_normalized_replacer",
            "trimmed_boundary_replacer",
            "context_aware_replacer",
            "multi_occurrence_replacer",
        ]

    def test_normalize_line_endings(self) -> None:
        assert normalize_line_endings("a\r\nb\r\n") == "a\nb\n"


class TestSimpleReplacer:
    def test_yields_search_verbatim(self) -> None:
        assert list(simple_replacer("abc", "b", "x")) == [("b", "x")]


class TestLineEndingReplacer:
    def test_crlf_content_with_lf_search(self) -> None:
        assert list(line_ending_replacer("a\r\nb\r\nc", "a\nb", "x\ny")) == [("a\r\nb", "x\r\ny")]

    def test_crlf_search_on_lf_content(self) -> None:
        assert list(line_ending_replacer("a\nb", "a\r\nb", "x\r\ny")) == [("a\nb", "x\ny")]

    def test_nothing_to_normalize(self) -> None:
        assert list(line_ending_replacer("a\nb", "a\nb", "x")) == []

    def test_replace_keeps_crlf(self) -> None:
        assert replace("a\r\nb\r\nc", "a\nb", "x\ny") == "x\r\ny\r\nc"


class TestLineTrimmedReplacer:
    def test_matches_ignoring_line_padding(self) -> None:
        content = "  hello  \n  world  \nend"
        assert list(line_trimmed_replacer(content, "hello\nworld", "bye\nmoon")) == [
            ("  hello  \n  world  ", "  bye\n  moon"),
        ]

    def test_replacement_takes_file_indentation(self) -> None:
        content = "def f():\n    return 1\n"
        out = replace(content, "def f():\nreturn 1", "def f():\nreturn 2")
        assert out == "def f():\n    return 2\n"

    def test_extra_replacement_lines_follow_last_line(self) -> None:
        content = "class A:\n    value = 1\n"
        out = replace(content, "value = 1 ", "value = 2\nother = 3")
        assert out == "class A:\n    value = 2\n    other = 3\n"


class TestBlockAnchorReplacer:
    def test_interior_differs_in_whitespace_only(self) -> None:
        content = "function a() {\n    const x   =  1;\n}\n"
        find = "function a() {\n  const x = 1;\n}"
        candidates = list(block_anchor_replacer(content, find, "function a() {\n  return 2;\n}"))
        assert candidates == [("function a() {\n    const x   =  1;\n}", "function a() {\n    return 2;\n}")]

    def test_interior_line_breaks_may_differ(self) -> None:
        content = "start\na\nb\nend"
        assert [m for m, _ in block_anchor_replacer(content, "start\nab\nend", "x")] == ["start\na\nb\nend"]

    def test_needs_three_lines(self) -> None:
        assert list(block_anchor_replacer("a\nb", "a\nb", "x")) == []

    def test_interior_text_must_match(self) -> None:
        assert list(block_anchor_replacer("start\nfoo\nend", "start\nbar\nend", "x")) == []

    def test_blank_anchor_is_ignored(self) -> None:
        assert list(block_anchor_replacer("\nfoo\nend", "\nfoo\nend", "x")) == []


class TestWhitespaceNormalizedReplacer:
    def test_whole_line(self) -> None:
        assert list(whitespace_normalized_replacer("const   x  =  1", "const x = 1", "y")) == [
            ("const   x  =  1", "y"),
        ]

    def test_substring_of_line(self) -> None:
        candidates = list(whitespace_normalized_replacer("let a =  foo(  1 ) ;", "foo( 1 )", "bar()"))
        assert candidates == [("foo(  1 )", "bar()")]

    def test_replace_uses_it(self) -> None:
        assert replace("const   x  =  1\n", "const x = 1", "const y = 2") == "const y = 2\n"


class TestIndentationFlexibleReplacer:
    def test_block_with_other_base_indent(self) -> None:
        content = "class A:\n    def f(self):\n        return 1\n"
        candidates = list(indentation_flexible_replacer(content, "def f(self):\n    return 1", "def f(self):\n    return 2"))
        assert candidates == [("    def f(self):\n        return 1", "    def f(self):\n        return 2")]


class TestEscapeNormalizedReplacer:
    def test_escaped_newline(self) -> None:
        assert list(escape_normalized_replacer("hello\nworld", "hello\\nworld", "bye"))[0] == ("hello\nworld", "bye")

    def test_replace_uses_it(self) -> None:
        assert replace("hello\nworld", "hello\\nworld", "bye") == "bye"

    def test_no_match(self) -> None:
        assert list(escape_normalized_replacer("hello\nworld", "xyz\\nabc", "bye")) == []


class TestTrimmedBoundaryReplacer:
    def test_padded_search(self) -> None:
        assert list(trimmed_boundary_replacer("hello world", "  hello world  ", "x"))[0] == ("hello world", "x")

    def test_already_trimmed(self) -> None:
        assert list(trimmed_boundary_replacer("hello world", "hello world", "x")) == []


class TestContextAwareReplacer:
    def test_half_of_interior_matches(self) -> None:
        content = "start\n  a\n  b\n  c\nend"
        candidates = list(context_aware_replacer(content, "start\na\nB\nc\nend", "x"))
        assert candidates == [("start\n  a\n  b\n  c\nend", "x")]

    def test_interior_too_different(self) -> None:
        assert list(context_aware_replacer("start\na\nb\nc\nend", "start\nx\ny\nz\nend", "r")) == []

    def test_line_count_must_match(self) -> None:
        assert list(context_aware_replacer("start\na\nb\nend", "start\na\nend", "r")) == []


class TestMultiOccurrenceReplacer:
    def test_every_occurrence(self) -> None:
        assert list(multi_occurrence_replacer("foo bar foo baz foo", "foo", "x")) == [("foo", "x")] * 3


class TestTryStrategy:
    def test_unique_match(self) -> None:
        outcome = try_strategy(simple_replacer, "abc", "b", "x")
        assert outcome.matched and outcome.result == "axc"

    def test_not_found(self) -> None:
        outcome = try_strategy(simple_replacer, "abc", "z", "x")
        assert not outcome.matched and outcome.reason == NOT_FOUND_MESSAGE

    def test_ambiguous(self) -> None:
        outcome = try_strategy(simple_replacer, "abab", "ab", "x")
        assert not outcome.matched and outcome.reason == AMBIGUOUS_MESSAGE

    def test_replace_all(self) -> None:
        outcome = try_strategy(simple_replacer, "abab", "ab", "x", replace_all=True)
        assert outcome.result == "xx"

    def test_fuzzy_locations_are_counted(self) -> None:
        outcome = try_strategy(line_trimmed_replacer, "  x = 1\nb\n    x = 1", "x = 1", "x = 2")
        assert not outcome.matched and outcome.reason == AMBIGUOUS_MESSAGE

    def test_overlapping_candidates_are_one_location(self) -> None:
        outcome = try_strategy(trimmed_boundary_replacer, "  foo\nbar", "  foo  ", "baz")
        assert outcome.result == "  baz\nbar"


class TestReplace:
    def test_empty_search_returns_replacement(self) -> None:
        assert replace("", "", "hello") == "hello"
        assert replace("existing", "", "new") == "new"

    def test_duplicate_search_is_ambiguous(self) -> None:
        with pytest.raises(AmbiguousMatchError):
            replace("foo\nbar\nfoo\n", "foo", "baz")

    def test_replace_all_duplicates(self) -> None:
        assert replace("foo\nbar\nfoo\n", "foo", "baz", replace_all=True) == "baz\nbar\nbaz\n"

    def test_overlapping_occurrences_are_ambiguous(self) -> None:
        with pytest.raises(AmbiguousMatchError):
            replace("aaa", "aa", "b")

    def test_fuzzy_ambiguity(self) -> None:
        with pytest.raises(AmbiguousMatchError):
            replace("a  b\nc\na  b\n", "a b", "x")

    def test_not_found(self) -> None:
        with pytest.raises(MatchNotFoundError) as exc:
            replace("abc", "xyz", "q")
        assert isinstance(exc.value, PatchError)
        assert isinstance(exc.value, ValueError)
        assert str(exc.value) == NOT_FOUND_MESSAGE

    def test_only_the_match_changes(self) -> None:
        content = "alpha\nbeta\ngamma\n"
        assert replace(content, "beta", "delta") == "alpha\ndelta\ngamma\n"

    def test_reapplying_replacement_is_identity(self) -> None:
        edited = replace("alpha\nbeta\ngamma\n", "beta", "delta")
        assert replace(edited, "delta", "delta") == edited

    def test_fuzzy_match_at_two_locations_is_ambiguous(self) -> None:
        content = "a\n  x = 1\nb\n    x = 1\n"
        with pytest.raises(AmbiguousMatchError):
            replace(content, "x = 1 ", "x = 2")

    def test_fuzzy_replace_all_edits_every_location(self) -> None:
        content = "a\n  x = 1\nb\n    x = 1\n"
        assert replace(content, "x = 1 ", "x = 2", replace_all=True) == "a\n  x = 2\nb\n    x = 2\n"
