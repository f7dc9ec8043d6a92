# dumper.py
import binascii
import logging
from typing import Dict, Iterable, List, Optional

from construct import Container

from opcodec.codec import PacketCodec
from opcodec.errors import DecodeError, UnexpectedEof

log = logging.getLogger(__name__)


def codec_table(codecs: Iterable[PacketCodec]) -> Dict[int, PacketCodec]:
    """Key codecs by the opcodes found at the fixed opcode offset.

    Login-phase packets carry payload bytes at that offset, so they are
    not keyed here; feed them with an explicit codec.
    """
    table = {}
    for codec in codecs:
        schema = codec.schema
        if schema.is_login_phase:
            continue
        for opcode in (schema.world_opcode, schema.compressed_opcode):
            if opcode is None:
                continue
            if opcode in table and table[opcode] is not codec:
                raise ValueError(
                    f"opcode 0x{opcode:04x} claimed by both {table[opcode].name} and {codec.name}"
                )
            table[opcode] = codec
    return table


class PacketDumper:
    """Decode complete inbound packets one at a time and log the result.

    A packet that fails to decode is logged and skipped; it never affects
    the packets fed after it.
    """

    def __init__(self, prefix: str, codecs: Dict[int, PacketCodec], opcode_offset: int = 2):
        self.prefix = prefix
        self.codecs = codecs
        self.opcode_offset = opcode_offset
        self.decoded = 0
        self.errors: List[DecodeError] = []
        self.unknown = 0

    def feed(self, packet: bytes, codec: Optional[PacketCodec] = None) -> Optional[Container]:
        """Decode one packet, returning its record or None if it was dropped."""
        packet = bytes(packet)
        raw = binascii.hexlify(packet).decode()

        if codec is None:
            try:
                codec = self._select(packet)
            except DecodeError as e:
                self.errors.append(e)
                log.warning("%s dropped %d-byte packet: %s; raw: %s", self.prefix, len(packet), e, raw)
                return None

        if codec is None:
            self.unknown += 1
            log.info("%s unknown packet len=%d raw: %s", self.prefix, len(packet), raw)
            return None

        try:
            record = codec.decode(packet)
        except DecodeError as e:
            self.errors.append(e)
            log.warning("%s malformed %s: %s; raw: %s", self.prefix, codec.name, e, raw)
            return None

        self.decoded += 1
        log.info("%s %s len=%d parsed: %s", self.prefix, codec.name, len(packet), dict(record))
        return record

    def feed_all(self, packets: Iterable[bytes]) -> List[Container]:
        records = []
        for packet in packets:
            record = self.feed(packet)
            if record is not None:
                records.append(record)
        return records

    def _select(self, packet: bytes) -> Optional[PacketCodec]:
        end = self.opcode_offset + 2
        if len(packet) < end:
            raise UnexpectedEof(
                f"packet of {len(packet)} bytes has no opcode",
                field="opcode",
                offset=self.opcode_offset,
            )
        opcode = int.from_bytes(packet[self.opcode_offset:end], "little")
        return self.codecs.get(opcode)


__all__ = ["PacketDumper", "codec_table"]
