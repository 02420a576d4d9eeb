"""
Search infrastructure adapters.

This package contains:
- BM25RelevanceRanker: Lexical relevance ranking of local candidates using BM25
"""
