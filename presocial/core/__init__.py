"""
Core state-consistency components for the PreSocial service.
"""

from .key_codec import derive_search_key
from .cache import CacheStore, CacheTTL, MemoryCacheBackend, RedisCacheBackend
from .ledger import DirtyLedger
from .comment_tree import build_comment_tree, parse_comment_path

__all__ = [
    "derive_search_key",
    "CacheStore",
    "CacheTTL",
    "MemoryCacheBackend",
    "RedisCacheBackend",
    "DirtyLedger",
    "build_comment_tree",
    "parse_comment_path",
]
