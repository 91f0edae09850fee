"""
LoopFlow - knowledge and task store for AI-assisted development.

Insights and tasks are served through progressive disclosure: scan for
summaries, expand for full records, timeline for chronological context.
"""

__version__ = "0.1.0"
