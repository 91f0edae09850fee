"""
Core components: storage, search, summarization and format handling.
"""
