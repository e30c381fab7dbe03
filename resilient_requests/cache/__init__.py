"""
Result caching.

Provides the bounded LRU cache used to memoize completed calls.
"""

from .result_cache import MISSING, CacheEntry, ResultCache

__all__ = ["MISSING", "CacheEntry", "ResultCache"]
