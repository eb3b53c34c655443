"""Tests for diff anchoring and prompt formatting."""

import pytest


class TestNormalizeCode:
    """Tests for normalize_code."""

    def test_collapses_whitespace_around_punctuation(self):
        """Test that formatting differences normalize away."""
        from review_worker.diff.matcher import normalize_code

        assert normalize_code("  foo( a , b ) ;") == normalize_code("foo(a,b)")

    def test_strips_trailing_comments(self):
        """Test that trailing comments are dropped but strings are kept."""
        from review_worker.diff.matcher import normalize_code

        assert normalize_code("x = 1  # set x") == "x=1"
        assert normalize_code("y = 2 // note") == "y=2"
        assert normalize_code('url = "http://example.com"') == 'url="http://example.com"'
        assert normalize_code("s = 'a # b'") == "s='a # b'"


class TestFindLineInPatch:
    """Tests for find_line_in_patch."""

    def test_single_added_line(self, sample_vulnerable_patch):
        """Test anchoring a one-line snippet on an added line."""
        from review_worker.diff.matcher import find_line_in_patch
        from review_worker.models.findings import Side

        anchor = find_line_in_patch(sample_vulnerable_patch, "def get_user(username):")

        assert anchor is not None
        assert anchor.line == 6
        assert anchor.side == Side.RIGHT
        assert anchor.start_line is None

    def test_multi_line_snippet_spans_range(self, sample_vulnerable_patch):
        """Test that multi-line snippets produce a start and end line."""
        from review_worker.diff.matcher import find_line_in_patch

        snippet = (
            "def get_user(username):\n"
            "    return db.execute(f\"SELECT * FROM users WHERE name = '{username}'\")"
        )
        anchor = find_line_in_patch(sample_vulnerable_patch, snippet)

        assert anchor is not None
        assert anchor.start_line == 6
        assert anchor.line == 7

    def test_escaped_newlines(self, sample_vulnerable_patch):
        """Test snippets that use literal backslash-n sequences."""
        from review_worker.diff.matcher import find_line_in_patch

        snippet = "def get_user(username):\\n    return db.execute(f\"SELECT * FROM users WHERE name = '{username}'\")"
        anchor = find_line_in_patch(sample_vulnerable_patch, snippet)

        assert anchor is not None
        assert anchor.line == 7

    def test_formatting_differences_still_match(self, sample_vulnerable_patch):
        """Test that spacing differences in the snippet are tolerated."""
        from review_worker.diff.matcher import find_line_in_patch

        anchor = find_line_in_patch(sample_vulnerable_patch, "def get_user( username ) :")

        assert anchor is not None
        assert anchor.line == 6

    def test_deleted_line_anchors_left(self, sample_modified_patch):
        """Test that removed lines anchor on the old file."""
        from review_worker.diff.matcher import find_line_in_patch
        from review_worker.models.findings import Side

        anchor = find_line_in_patch(sample_modified_patch, "return sum(values)")

        assert anchor is not None
        assert anchor.side == Side.LEFT
        assert anchor.line == 2

    def test_prefers_changed_lines_over_context(self):
        """Test that an added line wins over an identical context line."""
        from review_worker.diff.matcher import find_line_in_patch

        patch = "@@ -1,2 +1,3 @@\n x = 1\n+x = 1\n y = 2\n"
        anchor = find_line_in_patch(patch, "x = 1")

        assert anchor is not None
        assert anchor.line == 2

    def test_multi_file_diff(self, sample_performance_patch):
        """Test anchoring inside a diff with file headers."""
        from review_worker.diff.matcher import find_line_in_patch

        patch = (
            "diff --git a/utils/processor.py b/utils/processor.py\n"
            "--- a/utils/processor.py\n"
            "+++ b/utils/processor.py\n" + sample_performance_patch
        )
        anchor = find_line_in_patch(patch, "duplicates = []")

        assert anchor is not None
        assert anchor.line == 9

    def test_missing_snippet(self, sample_vulnerable_patch):
        """Test that snippets outside the diff are not anchored."""
        from review_worker.diff.matcher import find_line_in_patch

        assert find_line_in_patch(sample_vulnerable_patch, "print('hello')") is None
        assert find_line_in_patch(sample_vulnerable_patch, "   ") is None
        assert find_line_in_patch("", "x = 1") is None

    @pytest.mark.parametrize("size", [10, 100, 2000])
    def test_every_added_line_anchors_to_its_number(self, size):
        """Test that each added line of a generated patch maps back to its own line."""
        from review_worker.diff.matcher import find_line_in_patch
        from review_worker.models.findings import Side

        body = []
        expected = {}
        new_line = 10
        context_lines = 0
        for i in range(size):
            if i % 5 == 0:
                body.append(f" keep_{i} = load({i})")
                context_lines += 1
                new_line += 1
            body.append(f"+added_{i} = compute({i}, 'value')")
            expected[f"added_{i} = compute({i}, 'value')"] = new_line
            new_line += 1
        header = f"@@ -10,{context_lines} +10,{context_lines + size} @@"
        patch = "\n".join([header, *body]) + "\n"

        # Parsing is per lookup, so large patches are checked at a stride
        items = list(expected.items())
        step = max(1, size // 100)
        for content, line in items[::step] + [items[-1]]:
            anchor = find_line_in_patch(patch, content)

            assert anchor is not None, content
            assert anchor.line == line
            assert anchor.side == Side.RIGHT
            assert anchor.start_line is None


class TestFormatDiffContext:
    """Tests for prompt formatting."""

    def test_review_section_only(self, sample_diffs):
        """Test formatting without reference files."""
        from review_worker.diff.formatter import READ_ONLY_HEADER, REVIEW_HEADER, format_diff_context

        context = format_diff_context(sample_diffs)

        assert context.startswith(REVIEW_HEADER)
        assert READ_ONLY_HEADER not in context
        assert "### FILE: auth/login.py" in context
        assert "### FILE: utils/processor.py" in context

    def test_reference_files_come_first(self, sample_diffs):
        """Test that read-only context precedes the files under review."""
        from review_worker.diff.formatter import READ_ONLY_HEADER, REVIEW_HEADER, format_diff_context

        context = format_diff_context(sample_diffs, {"db.py": "def execute(query): ..."})

        assert context.index(READ_ONLY_HEADER) < context.index("### FILE: db.py")
        assert context.index("### FILE: db.py") < context.index(REVIEW_HEADER)

    def test_truncates_whole_entries(self, sample_diffs):
        """Test that the budget is honored and marked."""
        from review_worker.diff.formatter import TRUNCATION_MARKER, format_diff_context

        budget = len(sample_diffs[0].patch) + 200
        context = format_diff_context(sample_diffs, max_chars=budget)

        assert len(context) <= budget
        assert context.endswith(TRUNCATION_MARKER)
        assert "### FILE: auth/login.py" in context
        assert "### FILE: utils/processor.py" not in context

    def test_reference_truncation(self, sample_diffs):
        """Test that oversized reference files are cut before the diffs."""
        from review_worker.diff.formatter import REFERENCE_TRUNCATION_MARKER, format_diff_context

        context = format_diff_context(
            sample_diffs, {"big.py": "x" * 5000}, max_chars=3000
        )

        assert REFERENCE_TRUNCATION_MARKER in context
        assert "### FILE: big.py" not in context


class TestFormatReplyContext:
    """Tests for reply prompt formatting."""

    def test_includes_history_and_patch(self, sample_vulnerable_patch):
        """Test that the thread is rendered in order under the diff."""
        from review_worker.diff.formatter import format_reply_context

        context = format_reply_context(
            [("reviewer", "Use a parameterized query."), ("alice", "Why?")],
            "auth/login.py",
            sample_vulnerable_patch,
        )

        assert "### FILE: auth/login.py" in context
        assert context.index("reviewer: Use a parameterized query.") < context.index("alice: Why?")
        assert "def get_user" in context

    def test_truncates(self):
        """Test that long threads are truncated."""
        from review_worker.diff.formatter import format_reply_context

        context = format_reply_context([("alice", "y" * 500)], "a.py", "", max_chars=100)

        assert context.endswith("... (truncated)")
