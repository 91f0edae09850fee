"""
Heuristic summarization for progressive disclosure.

Pure functions, no I/O:
- Insights: first sentence, cut at a word boundary
- Tasks: keep the [TYPE] prefix, shorten the rest
"""

import re

from loopflow.config import SummaryConfig
from loopflow.core.summarizer.base import Summarizer

ELLIPSIS = "..."
DEFAULT_MAX_LENGTH = 100
DEFAULT_SHORT_THRESHOLD = 150

_SENTENCE_END = re.compile(r"[.!?](?=\s|$)")
_TASK_TYPE_PREFIX = re.compile(r"^\[([A-Z]+)\]\s*")


def extract_first_sentence(text: str) -> str:
    """
    Extract the first sentence of text.

    A terminator only counts when followed by whitespace or the end, so
    "v2.5" or "e.g.x" do not end a sentence. Returns the whole stripped
    text when no terminator is found.
    """
    trimmed = text.strip()
    match = _SENTENCE_END.search(trimmed)
    if match:
        return trimmed[: match.end()]
    return trimmed


def truncate_at_word(text: str, max_length: int) -> str:
    """
    Truncate text at a word boundary, adding an ellipsis if truncated.

    Guarantees len(result) <= max_length. A word is only split when no space
    exists before the cutoff.

    Args:
        text: Text to truncate
        max_length: Maximum result length including the ellipsis

    Returns:
        text unchanged if it fits, else a prefix ending in "..."
    """
    if len(text) <= max_length:
        return text

    max_content = max_length - len(ELLIPSIS)
    if max_content <= 0:
        return ELLIPSIS[: max(max_length, 0)]

    # One extra char so a space right at the cutoff counts as a boundary
    window = text[: max_content + 1]
    last_space = window.rfind(" ")
    if last_space > 0:
        head = window[:last_space].rstrip()
        if head:
            return head + ELLIPSIS

    return text[:max_content] + ELLIPSIS


def summarize_insight(content: str, max_length: int = DEFAULT_MAX_LENGTH) -> str:
    """Summarize an insight: first sentence, truncated at a word boundary."""
    return truncate_at_word(extract_first_sentence(content), max_length)


def summarize_task(title: str, max_length: int = DEFAULT_MAX_LENGTH) -> str:
    """Summarize a task title, preserving a leading [TYPE] prefix."""
    title = title.strip()
    match = _TASK_TYPE_PREFIX.match(title)
    if match:
        prefix = match.group(0)
        rest = title[len(prefix):]
        return prefix + truncate_at_word(rest, max_length - len(prefix))
    return truncate_at_word(title, max_length)


def is_short_content(content: str, threshold: int = DEFAULT_SHORT_THRESHOLD) -> bool:
    """Short content is shown as-is in scan results and gets no summary."""
    return len(content.strip()) <= threshold


def maybe_generate_summary(
    content: str,
    kind: str = "insight",
    max_length: int = DEFAULT_MAX_LENGTH,
    threshold: int = DEFAULT_SHORT_THRESHOLD,
) -> str | None:
    """Generate a summary, or None when content is short enough to stand alone."""
    if is_short_content(content, threshold):
        return None
    if kind == "task":
        return summarize_task(content, max_length)
    return summarize_insight(content, max_length)


class HeuristicSummarizer(Summarizer):
    """
    Rule-based summarizer.

    Usage:
        summarizer = HeuristicSummarizer()
        summarizer.summarize_insight("Long text. More text.")
        summarizer.maybe_summarize(content)  # None for short content
    """

    def __init__(self, config: SummaryConfig | None = None):
        """
        Initialize summarizer.

        Args:
            config: Optional summary configuration. Uses defaults if not provided.
        """
        self.config = config or SummaryConfig()

    def summarize_insight(self, content: str) -> str:
        return summarize_insight(content, self.config.max_length)

    def summarize_task(self, title: str) -> str:
        return summarize_task(title, self.config.max_length)

    def maybe_summarize(self, content: str, kind: str = "insight") -> str | None:
        return maybe_generate_summary(
            content,
            kind=kind,
            max_length=self.config.max_length,
            threshold=self.config.short_content_threshold,
        )
