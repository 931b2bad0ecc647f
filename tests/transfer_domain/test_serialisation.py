"""Bitcoin style wire primitives."""

import pytest

from dfi_rewards.serialisation import (
    ByteReader,
    TruncatedPayload,
    encode_custom_tx_script,
    push_data,
    write_compact_size,
    write_varint,
)


@pytest.mark.parametrize(
    "value, encoded",
    [
        (0, "00"),
        (252, "fc"),
        (253, "fdfd00"),
        (0xFFFF, "fdffff"),
        (0x10000, "fe00000100"),
        (0x100000000, "ff0000000001000000"),
    ],
)
def test_compact_size(value, encoded):
    assert write_compact_size(value).hex() == encoded
    assert ByteReader(bytes.fromhex(encoded)).read_compact_size() == value


@pytest.mark.parametrize(
    "value, encoded",
    [
        (0, "00"),
        (1, "01"),
        (127, "7f"),
        (128, "8000"),
        (255, "807f"),
        (256, "8100"),
        (16383, "fe7f"),
        (16384, "ff00"),
        (16511, "ff7f"),
        (65535, "82fe7f"),
    ],
)
def test_varint_vectors(value, encoded):
    """Vectors from Bitcoin Core's serialize.h."""
    assert write_varint(value).hex() == encoded
    assert ByteReader(bytes.fromhex(encoded)).read_varint() == value


def test_push_data_sizes():
    assert push_data(b"\x01" * 75)[:1] == b"\x4b"
    assert push_data(b"\x01" * 76)[:2] == b"\x4c\x4c"
    assert push_data(b"\x01" * 256)[:3] == b"\x4d\x00\x01"


def test_custom_tx_script():
    script = encode_custom_tx_script(ord("8"), b"\xaa\xbb")
    assert script == b"\x6a\x07DfTx8\xaa\xbb"


def test_reader_truncated():
    reader = ByteReader(b"\x05abc")
    with pytest.raises(TruncatedPayload):
        reader.read_bytes()


def test_reader_peek_does_not_advance():
    reader = ByteReader(b"\x00\x01\x02")
    assert reader.peek(2) == b"\x00\x01"
    assert reader.offset == 0
    assert reader.read(3) == b"\x00\x01\x02"
    assert reader.remaining == 0
