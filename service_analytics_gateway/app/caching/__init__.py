"""
Gateway caching package.

Provides the process-local result cache used to absorb bursts of identical
analytics queries. Entries are short-lived and never persisted.
"""

from .result_cache import CacheEntry, ResultCache

__all__ = ["CacheEntry", "ResultCache"]
