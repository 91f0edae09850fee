"""
Tests for heuristic summarization.
"""

import pytest

from loopflow.config import SummaryConfig
from loopflow.core.summarizer.heuristic import (
    ELLIPSIS,
    HeuristicSummarizer,
    extract_first_sentence,
    is_short_content,
    maybe_generate_summary,
    summarize_insight,
    summarize_task,
    truncate_at_word,
)

LONG_TEXT = (
    "Exponential backoff with jitter keeps retry storms from synchronizing "
    "across clients when an upstream dependency recovers after an outage"
)


@pytest.mark.unit
class TestExtractFirstSentence:
    """Tests for first-sentence extraction."""

    def test_first_sentence(self):
        """Test extraction stops at the first terminator."""
        assert extract_first_sentence("First point. Second point.") == "First point."

    def test_decimal_is_not_a_terminator(self):
        """Test version numbers do not end a sentence."""
        assert extract_first_sentence("Use v2.5 of the client. Then") == "Use v2.5 of the client."

    def test_no_terminator(self):
        """Test whole text is returned when there is no terminator."""
        assert extract_first_sentence("  no terminator here  ") == "no terminator here"

    def test_question_and_exclamation(self):
        """Test ? and ! terminate sentences."""
        assert extract_first_sentence("Why? Because.") == "Why?"
        assert extract_first_sentence("Stop! Now.") == "Stop!"


@pytest.mark.unit
class TestTruncateAtWord:
    """Tests for word-boundary truncation."""

    def test_fits_unchanged(self):
        """Test short text is returned as-is without ellipsis."""
        assert truncate_at_word("short text", 20) == "short text"
        assert truncate_at_word("exactly10!", 10) == "exactly10!"

    def test_cuts_at_word_boundary(self):
        """Test truncation happens at the last space before the cutoff."""
        assert truncate_at_word("hello world foo", 11) == "hello..."

    def test_space_at_cutoff_counts(self):
        """Test a space right after the last fitting character is a boundary."""
        assert truncate_at_word("hello world foo", 14) == "hello world..."

    def test_splits_only_without_space(self):
        """Test a single long word is split when there is no earlier space."""
        assert truncate_at_word("abcdefghij", 6) == "abc..."

    def test_tiny_limits(self):
        """Test limits smaller than the ellipsis still respect max length."""
        assert truncate_at_word("abcdef", 3) == "..."
        assert truncate_at_word("abcdef", 2) == ".."
        assert truncate_at_word("abcdef", 0) == ""

    @pytest.mark.parametrize("max_length", range(1, 140, 7))
    def test_length_bound_and_ellipsis(self, max_length):
        """Test result length never exceeds the limit; ellipsis iff truncated."""
        result = truncate_at_word(LONG_TEXT, max_length)

        assert len(result) <= max_length
        if len(LONG_TEXT) <= max_length:
            assert result == LONG_TEXT
        elif max_length < len(ELLIPSIS):
            assert result == ELLIPSIS[:max_length]
        else:
            assert result.endswith(ELLIPSIS)

    @pytest.mark.parametrize("max_length", [25, 40, 80, 120])
    def test_never_splits_words(self, max_length):
        """Test the kept prefix ends on a whole word."""
        result = truncate_at_word(LONG_TEXT, max_length)
        head = result[: -len(ELLIPSIS)]

        assert LONG_TEXT.startswith(head)
        assert LONG_TEXT[len(head)] == " "


@pytest.mark.unit
class TestSummaries:
    """Tests for insight and task summaries."""

    def test_summarize_insight_first_sentence(self):
        """Test insight summary is the first sentence."""
        assert summarize_insight("Cache keys need versions. Otherwise stale.") == (
            "Cache keys need versions."
        )

    def test_summarize_insight_truncates(self):
        """Test long first sentences are truncated."""
        summary = summarize_insight(LONG_TEXT, max_length=40)

        assert len(summary) <= 40
        assert summary.endswith(ELLIPSIS)

    def test_summarize_task_keeps_prefix(self):
        """Test the [TYPE] prefix survives truncation."""
        summary = summarize_task("[IMPL] Implement the export bundle writer with link closure", 30)

        assert summary.startswith("[IMPL] ")
        assert len(summary) <= 30

    def test_summarize_task_without_prefix(self):
        """Test plain titles are truncated normally."""
        assert summarize_task("Short title") == "Short title"

    def test_short_content_gets_no_summary(self):
        """Test short content is left to stand alone."""
        assert is_short_content("brief")
        assert maybe_generate_summary("brief") is None

    def test_long_content_gets_summary(self):
        """Test long content is summarized within the limit."""
        content = LONG_TEXT + ". " + LONG_TEXT

        summary = maybe_generate_summary(content)

        assert summary is not None
        assert len(summary) <= 100


@pytest.mark.unit
class TestHeuristicSummarizer:
    """Tests for the configurable summarizer."""

    def test_uses_config(self):
        """Test configured limits apply."""
        summarizer = HeuristicSummarizer(SummaryConfig(max_length=30, short_content_threshold=10))

        summary = summarizer.maybe_summarize(LONG_TEXT)

        assert summary is not None
        assert len(summary) <= 30

    def test_task_kind(self):
        """Test task summaries keep the prefix."""
        summarizer = HeuristicSummarizer(SummaryConfig(max_length=20, short_content_threshold=5))

        summary = summarizer.maybe_summarize("[TEST] Cover the upgrade rollback path", kind="task")

        assert summary.startswith("[TEST] ")
        assert len(summary) <= 20

    def test_defaults(self):
        """Test default construction."""
        summarizer = HeuristicSummarizer()

        assert summarizer.summarize_insight("One. Two.") == "One."
        assert summarizer.summarize_task("[DOCS] Readme") == "[DOCS] Readme"
