"""Content-addressed store for materialized source trees.

Storage layout: {root}/{sha256}-{name}/...
Trees are immutable once stored; adding identical content is a no-op.
"""
import hashlib
import logging
import os
import shutil
import stat
import tempfile
from pathlib import Path
from typing import Iterator, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pijul_fetch.core.errors import StoreError

logger = logging.getLogger(__name__)

_HASH_CHUNK = 1 << 16


def is_valid_name(name: str) -> bool:
    """A store name must be usable as a single path component."""
    return bool(name) and "/" not in name and "\0" not in name and name not in (".", "..")


class StorePath(BaseModel):
    """Handle for a tree in the content store: ``<sha256>-<name>``."""

    model_config = ConfigDict(frozen=True)

    digest: str = Field(..., description="SHA-256 of the serialized tree")
    name: str = Field(..., description="Human-readable label")

    @field_validator("digest")
    @classmethod
    def validate_digest(cls, v: str) -> str:
        if len(v) != 64 or not all(c in "0123456789abcdef" for c in v):
            raise ValueError(f"digest must be 64 lowercase hex characters; got '{v}'")
        return v

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not is_valid_name(v):
            raise ValueError(f"invalid store path name '{v}'")
        return v

    @property
    def nar_hash(self) -> str:
        return f"sha256:{self.digest}"

    def __str__(self) -> str:
        return f"{self.digest}-{self.name}"

    @classmethod
    def parse(cls, text: str) -> "StorePath":
        """Parse the ``<digest>-<name>`` string form."""
        digest, sep, name = text.partition("-")
        if not sep:
            raise StoreError(f"malformed store path '{text}'")
        try:
            return cls(digest=digest, name=name)
        except ValueError as e:
            raise StoreError(f"malformed store path '{text}': {e}")


def _walk(directory: Path, prefix: str = "") -> Iterator[Tuple[str, str, os.DirEntry]]:
    """Yield (kind, relative path, entry) in a stable order, not following links."""
    with os.scandir(directory) as it:
        entries = sorted(it, key=lambda e: e.name)
    for entry in entries:
        rel = f"{prefix}{entry.name}"
        if entry.is_symlink():
            yield "symlink", rel, entry
        elif entry.is_dir(follow_symlinks=False):
            yield "dir", rel, entry
            yield from _walk(Path(entry.path), f"{rel}/")
        else:
            yield "file", rel, entry


def hash_tree(root: Path) -> str:
    """Deterministic SHA-256 over a directory tree.

    Covers relative paths, entry kinds, the executable bit, file contents
    and symlink targets. Timestamps and ownership are ignored, so two
    checkouts of the same snapshot hash identically.
    """
    digest = hashlib.sha256()
    for kind, rel, entry in _walk(Path(root)):
        digest.update(f"{kind}\0{rel}\0".encode())
        if kind == "symlink":
            digest.update(os.readlink(entry.path).encode() + b"\0")
        elif kind == "file":
            mode = entry.stat(follow_symlinks=False).st_mode
            digest.update(b"x\0" if mode & stat.S_IXUSR else b"-\0")
            with open(entry.path, "rb") as f:
                for chunk in iter(lambda: f.read(_HASH_CHUNK), b""):
                    digest.update(chunk)
            digest.update(b"\0")
    return digest.hexdigest()


class ContentStore:
    """Directory-backed, content-addressed tree store.

    Args:
        root: Directory holding stored trees
    """

    def __init__(self, root: Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def to_real_path(self, store_path: StorePath) -> Path:
        return self.root / str(store_path)

    def is_valid_path(self, store_path: StorePath) -> bool:
        return self.to_real_path(store_path).is_dir()

    def add_to_store(self, name: str, path: Path) -> StorePath:
        """Copy the tree at ``path`` into the store.

        Returns:
            StorePath addressing the tree's content

        Raises:
            StoreError: if ``path`` is not a directory or the copy fails
        """
        path = Path(path)
        if not path.is_dir():
            raise StoreError(f"cannot add '{path}' to store: not a directory")

        if not is_valid_name(name):
            raise StoreError(f"invalid store path name '{name}'")

        store_path = StorePath(digest=hash_tree(path), name=name)
        dest = self.to_real_path(store_path)

        if dest.exists():
            logger.debug(f"Store path {store_path} already present")
            return store_path

        tmp_dir = Path(tempfile.mkdtemp(prefix=".tmp-", dir=self.root))
        try:
            staged = tmp_dir / "tree"
            shutil.copytree(path, staged, symlinks=True)
            try:
                os.rename(staged, dest)
            except OSError:
                # another writer installed the same content first
                if not dest.is_dir():
                    raise
        except OSError as e:
            raise StoreError(f"failed to add '{path}' to store: {e}")
        finally:
            shutil.rmtree(tmp_dir, ignore_errors=True)

        logger.info(f"Added {path} to store as {store_path}")
        return store_path
