"""Hash validation and comparison helpers.

Every hash that enters the duplicate index passes through these validators.
Malformed input fails closed with InputError; nothing here ever returns a
default that could read as "no duplicate".
"""

from __future__ import annotations

import re

from fxdesk.utils.helpers.exceptions import InputError

PERCEPTUAL_HASH_BITS = 64
CRYPTOGRAPHIC_HASH_LENGTH = 64

_HEX_RE = re.compile(r"^[0-9a-f]+$")
_BITS_RE = re.compile(r"^[01]+$")


def validate_cryptographic_hash(value: str) -> str:
    """Return the lower-cased SHA-256 hex digest or raise InputError."""
    if not isinstance(value, str):
        raise InputError("Cryptographic hash must be a string")
    normalized = value.strip().lower()
    if len(normalized) != CRYPTOGRAPHIC_HASH_LENGTH:
        raise InputError(
            f"Cryptographic hash must be {CRYPTOGRAPHIC_HASH_LENGTH} hex chars, got {len(normalized)}"
        )
    if not _HEX_RE.match(normalized):
        raise InputError("Cryptographic hash contains non-hex characters")
    return normalized


def validate_perceptual_hash(value: str, width: int = PERCEPTUAL_HASH_BITS) -> str:
    """Return the perceptual bit string or raise InputError."""
    if not isinstance(value, str):
        raise InputError("Perceptual hash must be a string")
    normalized = value.strip()
    if len(normalized) != width:
        raise InputError(f"Perceptual hash must be {width} bits wide, got {len(normalized)}")
    if not _BITS_RE.match(normalized):
        raise InputError("Perceptual hash contains characters other than 0 and 1")
    return normalized


def hamming_distance(first: str, second: str) -> int:
    """Count the positions at which two equal-length hashes differ.

    Raises:
        InputError: If the hashes differ in length
    """
    if len(first) != len(second):
        raise InputError(
            f"Cannot compare hashes of different widths ({len(first)} vs {len(second)})"
        )
    return sum(1 for a, b in zip(first, second) if a != b)


def confidence_for_distance(distance: int, threshold: int) -> float:
    """Map a near-duplicate distance to a 0..1 confidence score."""
    if distance == 0:
        return 1.0
    if threshold <= 0:
        return 0.0
    return max(0.0, 1.0 - distance / threshold)


def confidence_description(confidence: float) -> str:
    if confidence >= 0.95:
        return "Very High"
    if confidence >= 0.85:
        return "High"
    if confidence >= 0.70:
        return "Medium"
    if confidence >= 0.50:
        return "Low"
    return "Very Low"


def hash_prefix(value: str, length: int = 16) -> str:
    """Shortened hash for log lines."""
    return f"{value[:length]}..." if value and len(value) > length else value
