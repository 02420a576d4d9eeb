"""
Domain utilities module.

Provides shared utilities for the domain layer that remain
independent of infrastructure concerns.
"""

from .uuid7 import uuid7

__all__ = ["uuid7"]
