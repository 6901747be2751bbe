"""Utility functions for image references and digests."""

from .digest import calculate_digest, validate_digest, verify_digest
from .reference import ParsedReference, parse_reference, validate_reference

__all__ = [
    "ParsedReference",
    "calculate_digest",
    "parse_reference",
    "validate_digest",
    "validate_reference",
    "verify_digest",
]
