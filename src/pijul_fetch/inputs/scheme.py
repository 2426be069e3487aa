"""Pijul input scheme: URL and attribute-map adapter for descriptors."""
import logging
from pathlib import Path
from typing import List, Mapping, Optional, Tuple
from urllib.parse import quote, unquote, unquote_plus, urlparse

from pydantic import ValidationError

from pijul_fetch.core.errors import PijulFetchError, SchemeValidationError
from pijul_fetch.inputs.descriptor import INPUT_TYPE, Descriptor, rebuild_url
from pijul_fetch.inputs.schema import CURRENT_SCHEMA_VERSION, InputSchema, get_schema

logger = logging.getLogger(__name__)

SCHEME_PREFIX = "pijul+"
URL_SCHEMES = {"pijul", "pijul+http", "pijul+https", "pijul+ssh", "pijul+file"}

# Query parameters lifted out of the URL into descriptor attributes
RESERVED_PARAMS = ("channel", "state")

# Characters left unescaped when a reserved value is written back to a URL
_RESERVED_SAFE = "/:@"


def split_query(query: str) -> Tuple[dict, List[str]]:
    """Separate reserved parameters from the rest of a raw query string.

    Reserved values are decoded. Every other segment is returned exactly as
    written so it reaches pijul unchanged.

    Examples:
        "channel=feature/x&ref=a%20b&flag" -> ({"channel": "feature/x"}, ["ref=a%20b", "flag"])
    """
    reserved = {}
    kept = []
    if not query:
        return reserved, kept

    for segment in query.split("&"):
        name, _, value = segment.partition("=")
        name = unquote_plus(name)
        if name in RESERVED_PARAMS:
            reserved[name] = unquote_plus(value)
        else:
            kept.append(segment)
    return reserved, kept


class PijulInputScheme:
    """Translate between pijul URLs, attribute maps and descriptors.

    This is the only component that rejects malformed external input. A
    ``None`` return means "not a pijul input" so callers can try other
    schemes; a ``SchemeValidationError`` means "a pijul input, but invalid".

    Args:
        schema_version: Attribute schema revision to validate against
        probe: Probe used for operations on local working copies
    """

    input_type = INPUT_TYPE

    def __init__(self, schema_version: int = CURRENT_SCHEMA_VERSION, probe=None):
        self.schema: InputSchema = get_schema(schema_version)
        self.probe = probe

    def from_url(self, url: str) -> Optional[Descriptor]:
        """Build a descriptor from a ``pijul+<transport>://`` or ``pijul://`` URL.

        Examples:
            pijul+https://example.org/repo?channel=main
              -> url=https://example.org/repo, channel=main
            pijul+ssh://host/repo?state=S1&depth=1
              -> url=ssh://host/repo?depth=1, state=S1
        """
        try:
            parsed = urlparse(url)
        except ValueError as e:
            raise SchemeValidationError(f"cannot parse URL '{url}': {e}")

        if parsed.scheme not in URL_SCHEMES:
            return None

        scheme = parsed.scheme
        if scheme.startswith(SCHEME_PREFIX):
            scheme = scheme[len(SCHEME_PREFIX):]

        reserved, kept = split_query(parsed.query)
        attrs = {"type": INPUT_TYPE, **reserved}
        attrs["url"] = rebuild_url(url, scheme, "&".join(kept))
        return self.from_attrs(attrs)

    def from_attrs(self, attrs: Mapping[str, object]) -> Optional[Descriptor]:
        """Validate an attribute map and build a descriptor.

        Returns:
            Descriptor, or None if ``type`` is not "pijul"

        Raises:
            SchemeValidationError: unknown attribute, bad URL or bad value type
        """
        if attrs.get("type") != INPUT_TYPE:
            return None

        self.schema.check_allowed(attrs)

        for name in RESERVED_PARAMS:
            if attrs.get(name) == "":
                raise SchemeValidationError(
                    f"Pijul input attribute '{name}' must not be empty", attribute=name
                )

        url = attrs.get("url")
        if not isinstance(url, str) or not url:
            raise SchemeValidationError("Pijul input requires a 'url' attribute", attribute="url")
        check_url(url)

        try:
            return Descriptor.model_validate(
                {**attrs, "locked": self.schema.is_locked(attrs)}
            )
        except ValidationError as e:
            raise SchemeValidationError(f"invalid Pijul input attributes: {e}")

    def to_url(self, descriptor: Descriptor) -> str:
        """Inverse of ``from_url``."""
        parsed = urlparse(descriptor.url)

        scheme = parsed.scheme
        if scheme != INPUT_TYPE:
            scheme = SCHEME_PREFIX + scheme

        _, query = split_query(parsed.query)
        for name in RESERVED_PARAMS:
            value = getattr(descriptor, name)
            if value is not None:
                query.append(f"{name}={quote(value, safe=_RESERVED_SAFE)}")

        return rebuild_url(descriptor.url, scheme, "&".join(query))

    def to_attrs(self, descriptor: Descriptor) -> dict:
        return descriptor.to_attrs()

    def is_locked(self, attrs: Mapping[str, object]) -> bool:
        return self.schema.is_locked(attrs)

    def has_complete_info(self, descriptor: Descriptor) -> bool:
        """True if the descriptor already records when its snapshot was made."""
        return descriptor.last_modified is not None

    def get_source_path(self, descriptor: Descriptor) -> Optional[Path]:
        """Local working copy path for unpinned ``file://`` inputs."""
        parsed = urlparse(descriptor.url)
        if parsed.scheme == "file" and descriptor.channel is None and descriptor.state is None:
            return Path(unquote(parsed.path))
        return None

    def mark_changed_file(
        self,
        descriptor: Descriptor,
        file: str,
        commit_msg: Optional[str] = None,
    ) -> None:
        """Add ``file`` to a local working copy and optionally record it.

        Raises:
            PijulFetchError: if the input is not a local working copy
            ExecError: if pijul fails
        """
        source_path = self.get_source_path(descriptor)
        if source_path is None:
            raise PijulFetchError(f"input '{descriptor.url}' is not a local working copy")
        if self.probe is None:
            raise PijulFetchError("no pijul probe configured for this scheme")

        logger.info(f"Adding {file} in {source_path}")
        self.probe.run(["add", "--", file], cwd=source_path)

        if commit_msg:
            self.probe.run(["record", file, "-m", commit_msg], cwd=source_path, interactive=True)


def check_url(url: str) -> None:
    """Ensure a URL is syntactically usable as a repository location."""
    try:
        parsed = urlparse(url)
        parsed.port
    except ValueError as e:
        raise SchemeValidationError(f"cannot parse URL '{url}': {e}", attribute="url")

    if not parsed.scheme or not (parsed.netloc or parsed.path):
        raise SchemeValidationError(f"'{url}' is not a valid URL", attribute="url")
