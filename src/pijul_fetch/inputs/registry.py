"""Explicit registry of input schemes.

Built once by the application and passed to whatever needs to turn URLs or
attribute maps into descriptors.
"""
import logging
from typing import Iterable, List, Mapping

from pijul_fetch.core.errors import UnsupportedInputError

logger = logging.getLogger(__name__)


class SchemeRegistry:
    """Ordered collection of input schemes; the first scheme to accept wins."""

    def __init__(self, schemes: Iterable = ()):
        self._schemes: List = []
        for scheme in schemes:
            self.register(scheme)

    def register(self, scheme) -> None:
        logger.debug(f"Registering input scheme '{scheme.input_type}'")
        self._schemes.append(scheme)

    @property
    def schemes(self) -> List:
        return list(self._schemes)

    def input_from_url(self, url: str):
        """Parse ``url`` with the first scheme that recognizes it.

        Raises:
            UnsupportedInputError: if no scheme recognizes the URL
            SchemeValidationError: if the recognizing scheme rejects it
        """
        for scheme in self._schemes:
            descriptor = scheme.from_url(url)
            if descriptor is not None:
                return descriptor
        raise UnsupportedInputError(f"input '{url}' is unsupported")

    def input_from_attrs(self, attrs: Mapping[str, object]):
        """Build a descriptor from attributes with the first matching scheme."""
        for scheme in self._schemes:
            descriptor = scheme.from_attrs(attrs)
            if descriptor is not None:
                return descriptor
        raise UnsupportedInputError(f"input type '{attrs.get('type')}' is unsupported")

    def scheme_for(self, descriptor):
        """Return the scheme that owns ``descriptor``'s type."""
        for scheme in self._schemes:
            if scheme.input_type == descriptor.type:
                return scheme
        raise UnsupportedInputError(f"input type '{descriptor.type}' is unsupported")
