"""DeFiChain wire format primitives.

DeFiChain inherits Bitcoin's serialisation:

- vector and byte string lengths use *CompactSize* (1, 3, 5 or 9 bytes)
- token ids in amounts and v4+ transaction outputs use Bitcoin's
  MSB base-128 *VARINT*
- integers are little-endian
- DeFi custom transactions are carried in an ``OP_RETURN`` output whose
  single push is ``b"DfTx" + type byte + payload``
"""

#: Marker prefixing every DeFi custom transaction payload
DFTX_MARKER = b"DfTx"

OP_RETURN = 0x6A
OP_PUSHDATA1 = 0x4C
OP_PUSHDATA2 = 0x4D
OP_PUSHDATA4 = 0x4E


class TruncatedPayload(ValueError):
    """Ran out of bytes while decoding a serialised structure."""


def write_compact_size(value: int) -> bytes:
    """Encode a Bitcoin CompactSize unsigned integer."""
    assert value >= 0, f"CompactSize must be unsigned, got {value}"
    if value < 0xFD:
        return value.to_bytes(1, "little")
    if value <= 0xFFFF:
        return b"\xfd" + value.to_bytes(2, "little")
    if value <= 0xFFFFFFFF:
        return b"\xfe" + value.to_bytes(4, "little")
    return b"\xff" + value.to_bytes(8, "little")


def write_varint(value: int) -> bytes:
    """Encode Bitcoin's MSB base-128 VARINT as used for DeFiChain token ids.

    Unlike LEB128 every continuation byte is offset by one so each integer
    has exactly one encoding.
    """
    assert value >= 0, f"VARINT must be unsigned, got {value}"
    out = []
    first = True
    while True:
        out.append((value & 0x7F) | (0x00 if first else 0x80))
        if value <= 0x7F:
            break
        value = (value >> 7) - 1
        first = False
    return bytes(reversed(out))


def write_bytes(data: bytes) -> bytes:
    """CompactSize length prefixed byte string."""
    return write_compact_size(len(data)) + data


def push_data(data: bytes) -> bytes:
    """Minimal script push of ``data``."""
    length = len(data)
    if length < OP_PUSHDATA1:
        return bytes([length]) + data
    if length <= 0xFF:
        return bytes([OP_PUSHDATA1, length]) + data
    if length <= 0xFFFF:
        return bytes([OP_PUSHDATA2]) + length.to_bytes(2, "little") + data
    return bytes([OP_PUSHDATA4]) + length.to_bytes(4, "little") + data


def encode_custom_tx_script(tx_type: int, payload: bytes) -> bytes:
    """Wrap a DeFi custom transaction payload into its ``OP_RETURN`` script.

    :param tx_type:
        Custom transaction type byte, e.g. ``ord("8")`` for TransferDomain.

    :param payload:
        Serialised custom transaction message.
    """
    return bytes([OP_RETURN]) + push_data(DFTX_MARKER + bytes([tx_type]) + payload)


class ByteReader:
    """Sequential reader over a serialised payload."""

    def __init__(self, data: bytes):
        self.data = data
        self.offset = 0

    def read(self, count: int) -> bytes:
        end = self.offset + count
        if end > len(self.data):
            raise TruncatedPayload(f"Wanted {count} bytes at offset {self.offset}, payload is {len(self.data)} bytes")
        chunk = self.data[self.offset : end]
        self.offset = end
        return chunk

    def read_uint(self, size: int) -> int:
        return int.from_bytes(self.read(size), "little")

    def read_compact_size(self) -> int:
        prefix = self.read_uint(1)
        if prefix < 0xFD:
            return prefix
        return self.read_uint({0xFD: 2, 0xFE: 4, 0xFF: 8}[prefix])

    def read_varint(self) -> int:
        value = 0
        while True:
            byte = self.read_uint(1)
            value = (value << 7) | (byte & 0x7F)
            if byte & 0x80:
                value += 1
            else:
                return value

    def read_bytes(self) -> bytes:
        return self.read(self.read_compact_size())

    def peek(self, count: int) -> bytes:
        return self.data[self.offset : self.offset + count]

    @property
    def remaining(self) -> int:
        return len(self.data) - self.offset
