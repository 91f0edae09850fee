"""
Abstract base class for summarizers.

Summarization is a pure function from content to summary. The upgrade
service and flat-file transforms take a Summarizer as a dependency, so a
heuristic or a model-backed implementation can be swapped in without
touching migration logic.
"""

from abc import ABC, abstractmethod


class Summarizer(ABC):
    """Abstract base for summary generation."""

    @abstractmethod
    def summarize_insight(self, content: str) -> str:
        """
        Summarize insight content.

        Args:
            content: Full insight text

        Returns:
            Non-empty summary no longer than the configured maximum
        """
        pass

    @abstractmethod
    def summarize_task(self, title: str) -> str:
        """
        Summarize a task title, keeping any [TYPE] prefix.

        Args:
            title: Task title

        Returns:
            Summary
        """
        pass

    @abstractmethod
    def maybe_summarize(self, content: str, kind: str = "insight") -> str | None:
        """
        Summarize only when content is long enough to need it.

        Args:
            content: Insight content or task title
            kind: "insight" or "task"

        Returns:
            Summary, or None for short content
        """
        pass
