"""Utility functions for remote layer access."""

from .digest import calculate_digest, validate_digest, verify_digest
from .reference import parse_reference, split_repository_tag

__all__ = [
    "calculate_digest",
    "validate_digest",
    "verify_digest",
    "parse_reference",
    "split_repository_tag",
]
