"""
Book metadata consolidation service.

Aggregates book metadata from external providers into a single canonical
record store.
"""

__version__ = "0.1.0"
