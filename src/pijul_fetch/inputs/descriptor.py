"""Descriptor model: a typed pijul fetch request and its resolved snapshot."""
from pathlib import PurePosixPath
from typing import Literal, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field

INPUT_TYPE = "pijul"
DEFAULT_NAME = "source"


class Descriptor(BaseModel):
    """Pijul input descriptor.

    Before resolution it records what was requested (a URL and optionally a
    channel and/or state). After resolution it is enriched with the exact
    snapshot obtained:
    - channel and state reported by the clone
    - lastModified timestamp of the latest change
    - narHash of the materialized tree

    The wire form is an attribute map (see ``to_attrs``); only the scheme
    adapter converts between the two.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, strict=True)

    type: Literal["pijul"] = Field(default=INPUT_TYPE, description="Input type discriminator")
    url: str = Field(..., description="Repository location without the pijul+ prefix")
    channel: Optional[str] = Field(
        default=None, min_length=1, description="Mutable branch-like pointer"
    )
    state: Optional[str] = Field(
        default=None, min_length=1, description="Immutable snapshot identifier"
    )
    last_modified: Optional[int] = Field(
        default=None,
        alias="lastModified",
        description="Seconds since epoch of the latest change",
    )
    nar_hash: Optional[str] = Field(
        default=None,
        alias="narHash",
        description="Content hash of the materialized tree",
    )
    locked: bool = Field(default=False, description="True when channel and state pin one snapshot")

    def to_attrs(self) -> dict:
        """Convert to the wire attribute map (absent fields omitted)."""
        return self.model_dump(by_alias=True, exclude_none=True, exclude={"locked"})

    @property
    def repo_url(self) -> str:
        """Repository URL with query and fragment removed."""
        return base_url(self.url)

    @property
    def name(self) -> str:
        """Human-readable label used for store paths and cache keys."""
        return derive_name(self.url)


def base_url(url: str) -> str:
    """Strip query and fragment from a URL."""
    return rebuild_url(url, urlparse(url).scheme, "", keep_fragment=False)


def rebuild_url(url: str, scheme: str, query: str, keep_fragment: bool = True) -> str:
    """Replace the scheme and query of ``url``, keeping authority and path verbatim.

    ``urlunparse`` drops an empty authority for schemes it does not know
    (``pijul+file:///x`` would become ``pijul+file:/x``), so the hierarchical
    part is carried over as text.
    """
    parsed = urlparse(url)
    rest = url.split(":", 1)[1] if ":" in url else url
    rest = rest.split("#", 1)[0].split("?", 1)[0]

    result = f"{scheme}:{rest}"
    if query:
        result += f"?{query}"
    if keep_fragment and parsed.fragment:
        result += f"#{parsed.fragment}"
    return result


def derive_name(url: str) -> str:
    """Derive a store name from a repository URL.

    Examples:
        https://example.org/repo -> repo
        ssh://host/path/project.git -> project
        https://example.org/ -> source
    """
    path = urlparse(url).path.rstrip("/")
    name = PurePosixPath(path).name if path else ""
    if name.endswith(".git"):
        name = name[:-4]
    if name in (".", ".."):
        return DEFAULT_NAME
    return name or DEFAULT_NAME
