"""Inputs: descriptors, attribute schemas and the pijul URL scheme."""
from pijul_fetch.core.errors import AttributeConflictError, SchemeValidationError
from pijul_fetch.inputs.descriptor import Descriptor
from pijul_fetch.inputs.merge import merge_attrs
from pijul_fetch.inputs.registry import SchemeRegistry
from pijul_fetch.inputs.schema import CURRENT_SCHEMA_VERSION, InputSchema, get_schema
from pijul_fetch.inputs.scheme import PijulInputScheme

__all__ = [
    "AttributeConflictError",
    "CURRENT_SCHEMA_VERSION",
    "Descriptor",
    "InputSchema",
    "PijulInputScheme",
    "SchemeRegistry",
    "SchemeValidationError",
    "get_schema",
    "merge_attrs",
]
