import zlib

import pytest

from moshkit.compressor import BUFFER_SIZE, CompressionError, compress, uncompress


@pytest.mark.parametrize(
    "data",
    [b"", b"a", b"hello world" * 100, bytes(range(256)) * 10],
)
def test_round_trip(data):
    assert uncompress(compress(data)) == data


def test_compress_produces_zlib_stream():
    out = compress(b"terminal contents")
    assert out[:2] == b"\x78\x9c"
    assert zlib.decompress(out) == b"terminal contents"


def test_uncompress_reads_foreign_zlib_stream():
    assert uncompress(zlib.compress(b"abc", 9)) == b"abc"


def test_uncompress_rejects_garbage():
    with pytest.raises(CompressionError):
        uncompress(b"not a zlib stream at all")


def test_uncompress_rejects_truncated_stream():
    data = compress(b"some data that is long enough" * 20)
    with pytest.raises(CompressionError):
        uncompress(data[:-5])


def test_uncompress_rejects_oversize_output():
    oversized = zlib.compress(b"\0" * (BUFFER_SIZE + 1))
    with pytest.raises(CompressionError):
        uncompress(oversized)


def test_uncompress_accepts_exact_limit():
    data = b"\0" * BUFFER_SIZE
    assert len(uncompress(zlib.compress(data))) == BUFFER_SIZE


def test_compression_error_is_value_error():
    with pytest.raises(ValueError):
        uncompress(b"")