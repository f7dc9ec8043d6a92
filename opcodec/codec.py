"""
Codec generator.

``compile_schema`` turns a PacketSchema into a PacketCodec.  Compilation
happens once per packet type; the resulting codec is immutable and can be
shared between threads.

Decoding a buffer happens in two steps:

1. Header resolution (``resolve_frame``): work out how many leading bytes
   are framing, read the 16-bit opcode at its fixed offset, and inflate the
   remainder if the schema's compressed opcode matches.
2. Field decoding (``decode_payload``): walk the fields in declaration
   order over a fresh cursor.  Dynamic fields are handed a view of the
   dependency values already decoded and decide whether, and how, they are
   read.

Encoding is the inverse and reuses the same field plan.
"""

import io
import logging
import zlib
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Tuple

from construct import Container, ConstructError, StreamError

from wire_construct import (
    CompressionPrefix,
    IncomingHeader,
    OpcodeField,
    OutgoingHeader,
    WireType,
)

from .errors import (
    CorruptPayload,
    DecodeError,
    EncodeError,
    UnexpectedEof,
    UnresolvedDependency,
)
from .schema import PacketSchema
from .specs import DEFAULT_SPEC, ProtocolSpec

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Frame:
    """A raw buffer split into its header facts and payload bytes."""

    opcode: int
    skip: int
    compressed: bool
    payload: bytes


def login_header_length(login_opcode: int) -> int:
    """Framing length of a login-phase packet.

    The login opcode is truncated to 8 bits before its little-endian length
    is measured, so this is 1 for every opcode.  Opcodes are 16 bits
    everywhere else; the truncation is kept for wire compatibility.
    """
    truncated = login_opcode & 0xFF
    return max(1, (truncated.bit_length() + 7) // 8)


def inflate(data: bytes) -> bytes:
    try:
        return zlib.decompress(data, -zlib.MAX_WBITS)
    except zlib.error as e:
        raise CorruptPayload(f"compressed payload failed to inflate: {e}") from e


def deflate(data: bytes) -> bytes:
    compressor = zlib.compressobj(zlib.Z_DEFAULT_COMPRESSION, zlib.DEFLATED, -zlib.MAX_WBITS)
    return compressor.compress(data) + compressor.flush()


# -------------------------------------------------------------------------------
# Field plan
# -------------------------------------------------------------------------------


class NestedType:
    """Wire type for a field whose type is another schema."""

    def __init__(self, name: str, plans: Tuple["FieldPlan", ...]):
        self.name = name
        self.plans = plans

    @property
    def default(self) -> Container:
        return Container([(plan.name, plan.default) for plan in self.plans])

    def read_from(self, cursor) -> Container:
        return _decode_fields(self.plans, cursor)

    def write_into(self, value, buffer: bytearray) -> None:
        _encode_fields(self.plans, value, buffer)

    def sized(self, length: int):
        raise TypeError(f"nested {self.name} cannot be sized")

    def __repr__(self) -> str:
        return f"<NestedType {self.name}>"


@dataclass(frozen=True)
class FieldPlan:
    name: str
    wire: Any
    deps: Optional[Tuple[Tuple[str, int], ...]] = None
    resolve: Optional[Callable[[Any], Any]] = None

    @property
    def is_dynamic(self) -> bool:
        return self.deps is not None

    @property
    def default(self):
        return self.wire.default

    def shape(self, values: list):
        """Ask the resolver how this field looks, given the values so far.

        Returns the wire type to use, or None when the field is absent.
        """
        view = Container([(name, values[index]) for name, index in self.deps])
        try:
            verdict = self.resolve(view)
        except Exception as e:
            raise UnresolvedDependency(f"{self.name}: resolver failed: {e!r}") from e

        if verdict is None or verdict is False:
            return None
        if verdict is True:
            return self.wire
        if isinstance(verdict, (WireType, NestedType)):
            return verdict
        if isinstance(verdict, int):
            if verdict < 0:
                raise UnresolvedDependency(f"{self.name}: resolver returned negative size {verdict}")
            try:
                return self.wire.sized(verdict)
            except TypeError as e:
                raise UnresolvedDependency(f"{self.name}: {e}") from e
        raise UnresolvedDependency(f"{self.name}: unsupported resolver result {verdict!r}")


def _decode_fields(plans: Tuple[FieldPlan, ...], cursor) -> Container:
    values = []
    for plan in plans:
        start = cursor.tell()
        wire = plan.wire
        if plan.is_dynamic:
            wire = plan.shape(values)
            if wire is None:
                values.append(plan.default)
                continue
        try:
            values.append(wire.read_from(cursor))
        except DecodeError as e:
            e.locate(plan.name, start)
            raise
    return Container([(plan.name, value) for plan, value in zip(plans, values)])


def _encode_fields(plans: Tuple[FieldPlan, ...], record: Mapping, buffer: bytearray) -> None:
    values = []
    for plan in plans:
        try:
            value = record[plan.name]
        except (KeyError, TypeError):
            raise EncodeError(f"record has no value for field {plan.name!r}") from None
        values.append(value)

        wire = plan.wire
        if plan.is_dynamic:
            wire = plan.shape(values)
            if wire is None:
                # later resolvers see what decode will see
                values[-1] = plan.default
                continue
        try:
            wire.write_into(value, buffer)
        except EncodeError as e:
            raise EncodeError(f"{plan.name}: {e}") from e


def _plan(schema: PacketSchema) -> Tuple[FieldPlan, ...]:
    plans = []
    for spec, deps in zip(schema.fields, schema.dependencies):
        wire = NestedType(spec.type.name, _plan(spec.type)) if spec.is_nested else spec.type
        resolve = spec.dynamic.resolve if spec.dynamic is not None else None
        plans.append(FieldPlan(spec.name, wire, deps, resolve))
    return tuple(plans)


# -------------------------------------------------------------------------------
# Codec
# -------------------------------------------------------------------------------


class PacketCodec:
    """Decoder and encoder for one packet type."""

    def __init__(self, schema: PacketSchema, plans: Tuple[FieldPlan, ...], spec: ProtocolSpec):
        self.schema = schema
        self.spec = spec
        self.plans = plans
        self._opcode = OpcodeField(spec)
        self._incoming_header = IncomingHeader(spec)
        self._outgoing_header = OutgoingHeader(spec)
        self._compression_prefix = CompressionPrefix(spec)

    @property
    def name(self) -> str:
        return self.schema.name

    @property
    def header_length(self) -> int:
        if self.schema.is_login_phase:
            return login_header_length(self.schema.login_opcode)
        return self.spec.incoming_header_length

    def __repr__(self) -> str:
        return f"<PacketCodec {self.name} fields={len(self.plans)}>"

    # ---- decoding ----

    def resolve_frame(self, buffer: bytes) -> Frame:
        buffer = bytes(buffer)
        skip = self.header_length

        start = self.spec.incoming_opcode_offset
        end = start + self.spec.incoming_opcode_length
        try:
            opcode = self._opcode.parse(buffer[start:end])
        except StreamError as e:
            raise UnexpectedEof(
                f"buffer of {len(buffer)} bytes is too short for the opcode",
                field="opcode",
                offset=start,
            ) from e

        compressed = self.schema.is_compressible and opcode == self.schema.compressed_opcode
        if compressed:
            skip += self.spec.compression_overhead

        if skip > len(buffer):
            raise UnexpectedEof(
                f"buffer of {len(buffer)} bytes is shorter than its {skip}-byte header",
                field="header",
                offset=len(buffer),
            )

        payload = buffer[skip:]
        if compressed:
            try:
                payload = inflate(payload)
            except CorruptPayload as e:
                e.locate("payload", skip)
                raise
            log.debug(
                "%s: opcode 0x%04x inflated %d -> %d bytes",
                self.name, opcode, len(buffer) - skip, len(payload),
            )
        return Frame(opcode=opcode, skip=skip, compressed=compressed, payload=payload)

    def decode(self, buffer: bytes) -> Container:
        """Decode one complete inbound packet into a record."""
        return self.decode_payload(self.resolve_frame(buffer).payload)

    def decode_payload(self, payload: bytes) -> Container:
        return _decode_fields(self.plans, io.BytesIO(payload))

    # ---- encoding ----

    def encode_payload(self, record: Mapping) -> bytes:
        buffer = bytearray()
        _encode_fields(self.plans, record, buffer)
        return bytes(buffer)

    def encode(self, record: Mapping, opcode: Optional[int] = None) -> bytes:
        """Encode a record as an outgoing packet: ``[size][opcode:4][payload]``.

        Outgoing packets are never compressed.
        """
        if opcode is None:
            opcode = self.schema.world_opcode
        if opcode is None:
            raise EncodeError(f"{self.name}: no opcode given and no world_opcode declared")

        payload = self.encode_payload(record)
        header = self._build(
            self._outgoing_header,
            size=self.spec.outgoing_opcode_length + len(payload),
            opcode=opcode,
        )
        return header + payload

    def encode_incoming(self, record: Mapping, opcode: Optional[int] = None) -> bytes:
        """Encode a record in the shape ``decode`` expects to receive.

        Payloads sent under the compressed opcode get the compression prefix
        and a raw deflate stream.
        """
        if opcode is None:
            opcode = self.schema.world_opcode
        if opcode is None:
            opcode = self.schema.login_opcode
        if opcode is None:
            raise EncodeError(f"{self.name}: no opcode given and no opcode declared")

        payload = self.encode_payload(record)
        compressed = self.schema.is_compressible and opcode == self.schema.compressed_opcode

        if self.schema.is_login_phase:
            if compressed:
                raise EncodeError(
                    f"{self.name}: compressed encoding of login-phase packets is not supported"
                )
            opcode_end = self.spec.incoming_opcode_offset + self.spec.incoming_opcode_length
            if self.header_length + len(payload) < opcode_end:
                raise EncodeError(
                    f"{self.name}: login packet of {self.header_length + len(payload)} bytes "
                    f"does not reach the opcode at bytes "
                    f"{self.spec.incoming_opcode_offset}..{opcode_end}"
                )
            login = self.schema.login_opcode & 0xFF
            return login.to_bytes(self.header_length, "little") + payload

        if compressed:
            payload = self._build(self._compression_prefix, uncompressed_size=len(payload)) + deflate(payload)

        header = self._build(
            self._incoming_header,
            size=self.spec.incoming_header_length - self.spec.incoming_opcode_offset + len(payload),
            opcode=opcode,
        )
        return header + payload

    def _build(self, struct, **values) -> bytes:
        try:
            return struct.build(values)
        except ConstructError as e:
            raise EncodeError(f"{self.name}: cannot build header {values}: {e}") from e


def compile_schema(schema: PacketSchema, spec: ProtocolSpec = DEFAULT_SPEC) -> PacketCodec:
    plans = _plan(schema)
    log.debug(
        "compiled %s: %d fields, %d dynamic, login=%s compressed=%s",
        schema.name,
        len(plans),
        sum(plan.is_dynamic for plan in plans),
        schema.login_opcode,
        schema.compressed_opcode,
    )
    return PacketCodec(schema, plans, spec)


__all__ = [
    "Frame",
    "FieldPlan",
    "NestedType",
    "PacketCodec",
    "compile_schema",
    "login_header_length",
    "inflate",
    "deflate",
]
