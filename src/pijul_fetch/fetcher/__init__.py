"""Fetching: the pijul repository probe and the cache-aware resolver."""
from pijul_fetch.core.errors import ChannelMismatchError, ProbeError, StateMismatchError
from pijul_fetch.fetcher.probe import PijulProbe, RepoStatus
from pijul_fetch.fetcher.resolver import FetchResult, Resolver

__all__ = [
    "ChannelMismatchError",
    "FetchResult",
    "PijulProbe",
    "ProbeError",
    "RepoStatus",
    "Resolver",
    "StateMismatchError",
]
