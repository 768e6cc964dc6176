"""zlib compression of transport payloads, bounded to a fixed output size."""

import zlib

__all__ = ["BUFFER_SIZE", "CompressionError", "compress", "uncompress"]

BUFFER_SIZE = 2048 * 2048
"""Largest compressed or uncompressed payload accepted (an effective limit on terminal size)."""


class CompressionError(ValueError):
    """Raised when data cannot be compressed or uncompressed within the size limit."""


def compress(data: bytes) -> bytes:
    """Compress ``data`` as a zlib stream."""
    out = zlib.compress(bytes(data))
    if len(out) > BUFFER_SIZE:
        raise CompressionError("compressed data exceeds buffer size")
    return out


def uncompress(data: bytes) -> bytes:
    """Uncompress a complete zlib stream, refusing output larger than BUFFER_SIZE."""
    decompressor = zlib.decompressobj()
    try:
        out = decompressor.decompress(bytes(data), BUFFER_SIZE)
    except zlib.error as exc:
        raise CompressionError(f"invalid compressed data: {exc}") from exc
    if not decompressor.eof:
        if decompressor.unconsumed_tail or len(out) >= BUFFER_SIZE:
            raise CompressionError("uncompressed data exceeds buffer size")
        raise CompressionError("truncated compressed data")
    return out