"""Versioned attribute schemas for pijul inputs.

Each schema revision is a data record: the attributes an input may carry and
the attributes that must all be present for the input to be locked. Adding a
revision means adding an entry to ``SCHEMAS``.
"""
from typing import Dict, FrozenSet, Mapping, Tuple

from pydantic import BaseModel, ConfigDict

from pijul_fetch.core.errors import SchemeValidationError

CURRENT_SCHEMA_VERSION = 3


class InputSchema(BaseModel):
    """Allow-list and lock predicate for one schema revision."""

    model_config = ConfigDict(frozen=True)

    version: int
    allowed: FrozenSet[str]
    lock_attrs: Tuple[str, ...] = ()

    def check_allowed(self, attrs: Mapping[str, object]) -> None:
        """Reject any attribute name outside the allow-list.

        Raises:
            SchemeValidationError: naming the first unsupported attribute
        """
        for name in sorted(attrs):
            if name not in self.allowed:
                raise SchemeValidationError(
                    f"unsupported Pijul input attribute '{name}'",
                    attribute=name,
                )

    def is_locked(self, attrs: Mapping[str, object]) -> bool:
        """True iff every lock attribute carries a concrete, non-empty value.

        Schemas without lock attributes never produce locked inputs.
        """
        if not self.lock_attrs:
            return False
        return all(attrs.get(name) not in (None, "") for name in self.lock_attrs)


SCHEMAS: Dict[int, InputSchema] = {
    1: InputSchema(
        version=1,
        allowed=frozenset({"type", "url", "channel"}),
    ),
    2: InputSchema(
        version=2,
        allowed=frozenset({"type", "url", "channel", "state"}),
        lock_attrs=("channel", "state"),
    ),
    3: InputSchema(
        version=3,
        allowed=frozenset(
            {"type", "url", "channel", "state", "narHash", "lastModified"}
        ),
        lock_attrs=("channel", "state"),
    ),
}


def get_schema(version: int = CURRENT_SCHEMA_VERSION) -> InputSchema:
    """Look up a schema revision by number."""
    try:
        return SCHEMAS[version]
    except KeyError:
        raise SchemeValidationError(f"unknown Pijul input schema version {version}")
