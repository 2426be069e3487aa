"""Store module: content-addressed trees and the fetch cache."""
from pijul_fetch.store.cache import CacheEntry, FetchCache, SqliteFetchCache
from pijul_fetch.store.content import ContentStore, StorePath, hash_tree

__all__ = [
    "CacheEntry",
    "ContentStore",
    "FetchCache",
    "SqliteFetchCache",
    "StorePath",
    "hash_tree",
]
