"""
Summarizers for LoopFlow.

Available implementations:
- HeuristicSummarizer: first-sentence / word-boundary rules (default)
"""

from loopflow.core.summarizer.base import Summarizer
from loopflow.core.summarizer.heuristic import (
    HeuristicSummarizer,
    extract_first_sentence,
    is_short_content,
    maybe_generate_summary,
    summarize_insight,
    summarize_task,
    truncate_at_word,
)

__all__ = [
    "Summarizer",
    "HeuristicSummarizer",
    "extract_first_sentence",
    "truncate_at_word",
    "summarize_insight",
    "summarize_task",
    "is_short_content",
    "maybe_generate_summary",
]
