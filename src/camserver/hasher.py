from __future__ import annotations

import zlib


def hash_identifier(identifier: str) -> int:
    """Stable 32-bit key for a device identifier string (CRC-32 of its UTF-8 bytes)."""
    return zlib.crc32(identifier.encode("utf-8")) & 0xFFFFFFFF
