"""
Time-ordered identifiers for proposals, votes and audit events

Ids embed a millisecond timestamp in their leading bits (UUIDv7 layout), so
sorting proposal ids sorts them by creation time.
"""

import secrets
import time
import uuid


def generate_id(prefix: str | None = None) -> str:
    """
    Generate a UUIDv7 identifier, optionally prefixed

    Layout: 48 bits unix milliseconds, 4 bits version (7), 12 random bits,
    2 bits variant (10), 62 random bits.

    Args:
        prefix: Optional human-readable prefix, e.g. "prop" -> "prop-0190..."

    Returns:
        Identifier string
    """
    timestamp_ms = int(time.time() * 1000) & 0xFFFFFFFFFFFF
    value = (timestamp_ms << 80) | (0x7 << 76) | (secrets.randbits(12) << 64)
    value |= (0b10 << 62) | secrets.randbits(62)
    identifier = str(uuid.UUID(int=value))
    return f"{prefix}-{identifier}" if prefix else identifier
