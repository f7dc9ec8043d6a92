import json
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

SPECS_DIR = Path(__file__).parent / "profiles"


@dataclass(frozen=True)
class ProtocolSpec:
    name: str
    incoming_header_length: int = 4
    incoming_opcode_offset: int = 2
    incoming_opcode_length: int = 2
    outgoing_header_length: int = 6
    outgoing_opcode_length: int = 4
    compression_overhead: int = 6
    length_prefix_byteorder: str = "little"

    def __post_init__(self):
        if self.length_prefix_byteorder not in ("little", "big"):
            raise ValueError(
                f"length_prefix_byteorder must be 'little' or 'big', "
                f"got {self.length_prefix_byteorder!r}"
            )
        if self.incoming_opcode_offset + self.incoming_opcode_length > self.incoming_header_length:
            raise ValueError("incoming opcode does not fit inside the incoming header")
        if self.incoming_opcode_offset < 1:
            raise ValueError("incoming header needs a length prefix before the opcode")
        if self.outgoing_opcode_length >= self.outgoing_header_length:
            raise ValueError("outgoing header needs a length prefix before the opcode")
        # u32 uncompressed size + 2-byte zlib header
        if self.compression_overhead < 6:
            raise ValueError(
                f"compression_overhead must be at least 6, got {self.compression_overhead}"
            )

    @property
    def outgoing_size_length(self) -> int:
        return self.outgoing_header_length - self.outgoing_opcode_length

    @property
    def length_prefix_little(self) -> bool:
        return self.length_prefix_byteorder == "little"


def _read_json(path: Path) -> dict:
    return json.loads(path.read_text(encoding="utf-8"))


def resolve_spec(profile_name: str = "default", specs_dir: Optional[Path] = None) -> ProtocolSpec:
    specs_dir = specs_dir or SPECS_DIR
    spec_path = specs_dir / f"{profile_name}.json"
    if not spec_path.exists():
        raise RuntimeError(f"Spec not found: {spec_path}")

    spec = _read_json(spec_path)
    header = spec.get("header", {})
    compression = spec.get("compression", {})

    return ProtocolSpec(
        name=spec["profile"],
        incoming_header_length=header.get("incoming_length", 4),
        incoming_opcode_offset=header.get("incoming_opcode_offset", 2),
        incoming_opcode_length=header.get("incoming_opcode_length", 2),
        outgoing_header_length=header.get("outgoing_length", 6),
        outgoing_opcode_length=header.get("outgoing_opcode_length", 4),
        length_prefix_byteorder=header.get("length_prefix_byteorder", "little"),
        compression_overhead=compression.get("overhead", 6),
    )


DEFAULT_SPEC = ProtocolSpec(name="default")


__all__ = ["ProtocolSpec", "DEFAULT_SPEC", "resolve_spec"]
