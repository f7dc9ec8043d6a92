"""
Construct-based wire types for opcode-addressed packets.

Every packet field is one of a small closed set of primitives: little-endian
unsigned integers of 8/16/32/64 bits, fixed-size raw byte arrays, and UTF-8
text terminated by a single 0x00 byte.  Each wire type wraps the matching
``construct`` primitive and exposes the two operations the codec needs:
``write_into(value, buffer)`` appends the encoding to a bytearray, and
``read_from(cursor)`` consumes exactly the bytes of one value from a
forward-only binary stream.

The header layouts (incoming, outgoing and the compression prefix) are also
described here as construct Structs, parameterised by a protocol profile.
"""

from construct import (
    BytesInteger,
    Bytes,
    Const,
    ConstructError,
    CString,
    Int8ul,
    Int16ul,
    Int32ul,
    Int64ul,
    Padding,
    StreamError,
    StringError,
    Struct,
)

from opcodec.errors import EncodeError, InvalidEncoding, UnexpectedEof


# -------------------------------------------------------------------------------
# Primitive wire types
# -------------------------------------------------------------------------------


class WireType:
    """Read/write contract shared by every primitive."""

    name = "wire"

    def __init__(self, subcon):
        self.subcon = subcon

    @property
    def default(self):
        raise NotImplementedError

    def write_into(self, value, buffer: bytearray) -> None:
        try:
            buffer.extend(self.subcon.build(value))
        except (ConstructError, AttributeError, TypeError, ValueError) as e:
            raise EncodeError(f"cannot encode {value!r} as {self.name}: {e}") from e

    def read_from(self, cursor):
        try:
            return self.subcon.parse_stream(cursor)
        except StreamError as e:
            raise UnexpectedEof(f"not enough bytes for {self.name}") from e

    def sized(self, length: int) -> "WireType":
        """The same kind of value, but exactly ``length`` bytes on the wire."""
        raise TypeError(f"{self.name} has a fixed width and cannot be sized")

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


class IntegerType(WireType):
    def __init__(self, name: str, subcon):
        super().__init__(subcon)
        self.name = name
        self.width = subcon.sizeof()

    @property
    def default(self) -> int:
        return 0


class TextType(WireType):
    """UTF-8 text terminated by a single 0x00 byte (no length prefix)."""

    name = "text"

    def __init__(self):
        super().__init__(CString("utf8"))

    @property
    def default(self) -> str:
        return ""

    def read_from(self, cursor) -> str:
        try:
            return self.subcon.parse_stream(cursor)
        except StreamError as e:
            raise UnexpectedEof("text is missing its 0x00 terminator") from e
        except (UnicodeDecodeError, StringError) as e:
            raise InvalidEncoding(f"text is not valid UTF-8: {e}") from e

    def sized(self, length: int) -> "FixedTextType":
        return FixedTextType(length)


class FixedTextType(WireType):
    """UTF-8 text occupying exactly ``length`` bytes, no terminator."""

    def __init__(self, length: int):
        super().__init__(Bytes(length))
        self.length = length
        self.name = f"text[{length}]"

    @property
    def default(self) -> str:
        return ""

    def write_into(self, value, buffer: bytearray) -> None:
        if not isinstance(value, str):
            raise EncodeError(f"cannot encode {value!r} as {self.name}: not a str")
        super().write_into(value.encode("utf-8"), buffer)

    def read_from(self, cursor) -> str:
        raw = super().read_from(cursor)
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise InvalidEncoding(f"text is not valid UTF-8: {e}") from e

    def sized(self, length: int) -> "FixedTextType":
        return FixedTextType(length)


class ByteArrayType(WireType):
    """Raw bytes of an exact declared length, no prefix."""

    def __init__(self, length: int):
        super().__init__(Bytes(length))
        self.length = length
        self.name = f"bytes[{length}]"

    @property
    def default(self) -> bytes:
        return bytes(self.length)

    def sized(self, length: int) -> "ByteArrayType":
        return ByteArrayType(length)


UInt8 = IntegerType("u8", Int8ul)
UInt16 = IntegerType("u16", Int16ul)
UInt32 = IntegerType("u32", Int32ul)
UInt64 = IntegerType("u64", Int64ul)
CText = TextType()


def ByteArray(length: int) -> ByteArrayType:
    if length < 0:
        raise ValueError(f"byte array length must be non-negative, got {length}")
    return ByteArrayType(length)


# -------------------------------------------------------------------------------
# Header structures
# -------------------------------------------------------------------------------

# The length prefix is whatever precedes the opcode; the opcode itself is
# always little-endian.


def _padding(length: int) -> list:
    return [Padding(length)] if length else []


def IncomingHeader(spec) -> Struct:
    """``[size][opcode]``: size counts the bytes after the size field."""
    return Struct(
        "size" / BytesInteger(spec.incoming_opcode_offset, swapped=spec.length_prefix_little),
        "opcode" / BytesInteger(spec.incoming_opcode_length, swapped=True),
        *_padding(
            spec.incoming_header_length - spec.incoming_opcode_offset - spec.incoming_opcode_length
        ),
    )


def OutgoingHeader(spec) -> Struct:
    """``[size][opcode]`` with the wider outgoing opcode slot."""
    return Struct(
        "size" / BytesInteger(spec.outgoing_size_length, swapped=spec.length_prefix_little),
        "opcode" / BytesInteger(spec.outgoing_opcode_length, swapped=True),
    )


def CompressionPrefix(spec) -> Struct:
    """Bytes skipped ahead of a raw deflate stream in a compressed payload.

    The uncompressed size is followed by the two-byte zlib stream header,
    so the remainder is a bare deflate stream.  Only used for building:
    decoding skips these bytes unread, and a bad prefix surfaces as a
    CorruptPayload from the deflate stream, if at all.
    """
    return Struct(
        "uncompressed_size" / Int32ul,
        "zlib_header" / Const(b"\x78\x9c"),
        *_padding(spec.compression_overhead - 6),
    )


def OpcodeField(spec):
    return BytesInteger(spec.incoming_opcode_length, swapped=True)


__all__ = [
    "WireType",
    "IntegerType",
    "TextType",
    "FixedTextType",
    "ByteArrayType",
    "UInt8",
    "UInt16",
    "UInt32",
    "UInt64",
    "CText",
    "ByteArray",
    "IncomingHeader",
    "OutgoingHeader",
    "CompressionPrefix",
    "OpcodeField",
]
