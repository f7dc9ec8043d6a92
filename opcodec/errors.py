"""Exceptions raised by schema construction, encoding and decoding."""

from typing import Optional


class PacketError(Exception):
    """Base class for every error raised by opcodec."""


class SchemaViolation(PacketError):
    """A packet schema is malformed. Raised once, at construction time."""


class UnresolvedDependency(PacketError):
    """A dynamic field's resolver could not be evaluated.

    This is a programming error in the schema, not a problem with the
    input bytes, so it deliberately does not derive from DecodeError.
    """


class EncodeError(PacketError):
    """A record value cannot be written in its declared wire type."""


class DecodeError(PacketError):
    """Malformed input. Carries the field being read and its payload offset.

    ``offset`` counts from the start of the payload, after the header was
    skipped.  For compressed packets that is the inflated payload, not the
    raw buffer.  Header-level errors (``opcode``, ``header``, ``payload``)
    use raw buffer offsets instead.
    """

    def __init__(self, message: str, field: Optional[str] = None, offset: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.field = field
        self.offset = offset

    def locate(self, field: str, offset: int) -> "DecodeError":
        """Attach the enclosing field; nested field names become dotted paths."""
        if self.field is None:
            self.field = field
        else:
            self.field = f"{field}.{self.field}"
        if self.offset is None:
            self.offset = offset
        return self

    def __str__(self) -> str:
        if self.field is None and self.offset is None:
            return self.message
        return f"{self.message} (field={self.field}, offset={self.offset})"


class UnexpectedEof(DecodeError):
    """The buffer ended before the layout was complete."""


class InvalidEncoding(DecodeError):
    """Text bytes are not valid UTF-8."""


class CorruptPayload(DecodeError):
    """A compressed payload failed to inflate."""


__all__ = [
    "PacketError",
    "SchemaViolation",
    "UnresolvedDependency",
    "EncodeError",
    "DecodeError",
    "UnexpectedEof",
    "InvalidEncoding",
    "CorruptPayload",
]
