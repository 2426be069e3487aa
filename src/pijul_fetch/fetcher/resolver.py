"""Resolver: materialize pijul descriptors through the two-tier fetch cache.

Two key families are layered on the cache:
- impure key {type, name, url}: latest known answer for a repository,
  provisional and superseded by every fresh clone
- locked key {type, name, channel, state}: one exact snapshot, final

A locked request that hits its locked key never touches the network. An
impure hit is reused only if it agrees with whatever channel/state the
caller pinned. Everything else clones, validates the clone against the
request, and only then writes to the cache.
"""
import logging
import shutil
import tempfile
from pathlib import Path
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict

from pijul_fetch.config import FetchSettings
from pijul_fetch.core.errors import (
    CacheError,
    ChannelMismatchError,
    NarHashMismatchError,
    ProbeError,
    SchemeValidationError,
    StateMismatchError,
)
from pijul_fetch.fetcher.probe import METADATA_DIR, PijulProbe, RepoStatus
from pijul_fetch.inputs.descriptor import INPUT_TYPE, Descriptor
from pijul_fetch.inputs.merge import merge_attrs
from pijul_fetch.inputs.scheme import PijulInputScheme
from pijul_fetch.store.cache import CacheEntry, FetchCache, SqliteFetchCache
from pijul_fetch.store.content import ContentStore, StorePath, is_valid_name

logger = logging.getLogger(__name__)

PROBE_POLICIES = ("strict", "lenient")


class FetchResult(BaseModel):
    """Store path of the materialized tree and the enriched descriptor."""

    model_config = ConfigDict(frozen=True)

    store_path: StorePath
    descriptor: Descriptor


def impure_key(name: str, url: str) -> dict:
    return {"type": INPUT_TYPE, "name": name, "url": url}


def locked_key(name: str, channel: str, state: str) -> dict:
    return {"type": INPUT_TYPE, "name": name, "channel": channel, "state": state}


def _matches_request(info: dict, channel: Optional[str], state: Optional[str]) -> bool:
    """Absent request fields match anything."""
    return (channel is None or info.get("channel") == channel) and (
        state is None or info.get("state") == state
    )


class Resolver:
    """Resolve descriptors to store paths.

    Args:
        scheme: Input scheme used to compute lock status of results
        probe: Repository probe (clone + status)
        cache: Fetch cache holding impure and locked entries
        store: Content store receiving cloned trees
        probe_policy: "strict" fails when a clone reports no status;
            "lenient" returns the tree unresolved when nothing was pinned
    """

    def __init__(
        self,
        scheme: PijulInputScheme,
        probe: PijulProbe,
        cache: FetchCache,
        store: ContentStore,
        probe_policy: str = "strict",
    ):
        if probe_policy not in PROBE_POLICIES:
            raise ValueError(f"probe_policy must be one of {PROBE_POLICIES}, got: {probe_policy}")
        self.scheme = scheme
        self.probe = probe
        self.cache = cache
        self.store = store
        self.probe_policy = probe_policy

    @classmethod
    def from_settings(cls, settings: FetchSettings) -> "Resolver":
        """Wire a resolver from settings."""
        probe = PijulProbe(settings.pijul_program, timeout=settings.pijul_timeout)
        return cls(
            scheme=PijulInputScheme(settings.schema_version, probe=probe),
            probe=probe,
            cache=SqliteFetchCache(settings.cache_path, ttl=settings.impure_ttl),
            store=ContentStore(settings.store_path),
            probe_policy=settings.probe_policy,
        )

    def fetch(
        self,
        descriptor: Descriptor,
        name: Optional[str] = None,
        refresh: bool = False,
    ) -> FetchResult:
        """Materialize ``descriptor`` and return its store path.

        Args:
            descriptor: Input to resolve
            name: Store/cache label (default: derived from the URL)
            refresh: Skip the impure cache entry and clone unless locked

        Returns:
            FetchResult with the descriptor enriched by channel, state,
            lastModified and narHash

        Raises:
            SchemeValidationError: name is not a single path component
            ChannelMismatchError: clone is on a different channel than requested
            StateMismatchError: clone is at a different state than requested
            ProbeError: clone status unreadable (strict policy or pinned request)
            ExecError: pijul clone failed
            AttributeConflictError: descriptor contradicts the fetched metadata
            CacheError: writing the cache failed
        """
        name = name or descriptor.name
        if not is_valid_name(name):
            raise SchemeValidationError(
                f"'{name}' cannot be used as a store name", attribute="name"
            )
        repo_url = descriptor.repo_url
        channel = descriptor.channel
        state = descriptor.state

        if channel is not None and state is not None:
            entry = self._lookup(locked_key(name, channel, state))
            if entry is not None:
                logger.info(f"Using locked cache entry for {name} at {state}")
                return self._result(descriptor, entry.info, entry.store_path)

        if not refresh:
            entry = self._lookup(impure_key(name, repo_url))
            if entry is not None:
                if _matches_request(entry.info, channel, state):
                    logger.info(f"Using cached {name} at {entry.info.get('state')}")
                    return self._result(descriptor, entry.info, entry.store_path)
                logger.info(
                    f"Cached {name} is at {entry.info.get('channel')}/{entry.info.get('state')}, "
                    f"which does not match the request; cloning"
                )

        store_path, status = self._clone(name, repo_url, channel, state)

        if status is None:
            self._check_nar_hash(descriptor, store_path)
            return FetchResult(store_path=store_path, descriptor=descriptor)

        info = status.to_info()
        result = self._result(descriptor, info, store_path)
        self._persist(name, repo_url, status, info, store_path)
        return result

    def _lookup(self, key: dict) -> Optional[CacheEntry]:
        """Cache lookup where read failures and vanished store paths are misses."""
        try:
            entry = self.cache.lookup(key)
        except CacheError as e:
            logger.warning(f"Ignoring unreadable cache entry {key}: {e}")
            return None

        if entry is None:
            return None

        if not self.store.is_valid_path(entry.store_path):
            logger.warning(f"Cached store path {entry.store_path} no longer exists")
            return None

        logger.debug(f"Cache hit for {key}")
        return entry

    def _clone(
        self,
        name: str,
        repo_url: str,
        channel: Optional[str],
        state: Optional[str],
    ) -> Tuple[StorePath, Optional[RepoStatus]]:
        """Clone into a temporary directory, validate, and add to the store."""
        with tempfile.TemporaryDirectory(prefix="pijul-fetch-") as tmpdir:
            repo_dir = Path(tmpdir) / "source"
            self.probe.clone(repo_url, repo_dir, channel=channel, state=state)

            try:
                status = self.probe.get_status(repo_dir)
            except ProbeError as e:
                if self.probe_policy == "strict" or channel is not None or state is not None:
                    raise
                logger.warning(f"No status available for {repo_url}: {e}")
                status = None

            if status is not None:
                if channel is not None and channel != status.channel:
                    raise ChannelMismatchError(channel, status.channel)
                if state is not None and state != status.state:
                    raise StateMismatchError(state, status.state)

            metadata_dir = repo_dir / METADATA_DIR
            if metadata_dir.exists():
                shutil.rmtree(metadata_dir)

            store_path = self.store.add_to_store(name, repo_dir)

        return store_path, status

    def _persist(
        self,
        name: str,
        repo_url: str,
        status: RepoStatus,
        info: dict,
        store_path: StorePath,
    ) -> None:
        """Write the impure entry and, if not yet present, the final locked entry."""
        self.cache.add(impure_key(name, repo_url), info, store_path, False)

        key = locked_key(name, status.channel, status.state)
        if self._lookup(key) is None:
            self.cache.add(key, info, store_path, True)
        else:
            logger.debug(f"Locked entry for {name} at {status.state} already present")

    def _check_nar_hash(self, descriptor: Descriptor, store_path: StorePath) -> None:
        if descriptor.nar_hash is not None and descriptor.nar_hash != store_path.nar_hash:
            raise NarHashMismatchError(descriptor.nar_hash, store_path.nar_hash)

    def _result(self, descriptor: Descriptor, info: dict, store_path: StorePath) -> FetchResult:
        """Merge fetched metadata into the descriptor."""
        self._check_nar_hash(descriptor, store_path)

        attrs = merge_attrs(descriptor.to_attrs(), {
            "channel": info["channel"],
            "state": info["state"],
            "lastModified": info["lastModified"],
            "narHash": store_path.nar_hash,
        })
        enriched = Descriptor.model_validate({**attrs, "locked": self.scheme.is_locked(attrs)})
        return FetchResult(store_path=store_path, descriptor=enriched)
