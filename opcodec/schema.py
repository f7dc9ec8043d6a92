"""
Packet schema model.

A PacketSchema describes one packet type: its header options and the
ordered fields of its payload.  Field order is wire order, and it is also
the only source of "earlier field" for dynamic fields, whose layout depends
on values decoded before them.

Schemas are validated once, when they are constructed, and are immutable
afterwards.  Dependency names are resolved to field positions at that
point so the codec never looks a name up while decoding.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, Optional, Tuple, Union

from wire_construct import WireType

from .errors import SchemaViolation


class PacketOption(Enum):
    """Schema-level options a packet type can declare, each at most once."""

    LOGIN_OPCODE = "login_opcode"
    WORLD_OPCODE = "world_opcode"
    COMPRESSED_OPCODE = "compressed_opcode"

    @classmethod
    def parse(cls, key: Union["PacketOption", str]) -> "PacketOption":
        if isinstance(key, cls):
            return key
        try:
            return cls(str(key).lower())
        except ValueError:
            raise SchemaViolation(f"Unexpected option name: {key!r}") from None


@dataclass(frozen=True)
class Dynamic:
    """Marks a field whose presence or size depends on earlier fields.

    ``resolve`` is called with a Container holding only the ``deps`` values
    and returns False/None (absent), True (present, static type), an int
    (present, exactly that many bytes) or a wire type to read instead.
    """

    deps: Tuple[str, ...]
    resolve: Callable[[Any], Any]

    def __post_init__(self):
        if isinstance(self.deps, str):
            object.__setattr__(self, "deps", (self.deps,))
        else:
            object.__setattr__(self, "deps", tuple(self.deps))
        if not self.deps:
            raise SchemaViolation("dynamic field needs at least one dependency")
        if not callable(self.resolve):
            raise SchemaViolation(f"dynamic resolver {self.resolve!r} is not callable")


@dataclass(frozen=True)
class FieldSpec:
    name: str
    type: Union[WireType, "PacketSchema"]
    dynamic: Optional[Dynamic] = None

    @property
    def is_nested(self) -> bool:
        return isinstance(self.type, PacketSchema)


@dataclass(frozen=True)
class PacketSchema:
    name: str
    fields: Tuple[FieldSpec, ...]
    login_opcode: Optional[int] = None
    world_opcode: Optional[int] = None
    compressed_opcode: Optional[int] = None
    # per field: ((dep_name, dep_index), ...) or None for static fields
    dependencies: Tuple[Optional[Tuple[Tuple[str, int], ...]], ...] = field(
        init=False, repr=False, compare=False
    )

    def __post_init__(self):
        object.__setattr__(self, "fields", tuple(self.fields))
        for option in PacketOption:
            value = getattr(self, option.value)
            if value is not None and (
                isinstance(value, bool) or not isinstance(value, int) or value < 0
            ):
                raise SchemaViolation(
                    f"{self.name}: {option.value} must be a non-negative integer, got {value!r}"
                )
        object.__setattr__(self, "dependencies", self._resolve_dependencies())

    def _resolve_dependencies(self):
        positions = {}
        resolved = []
        for index, spec in enumerate(self.fields):
            if not isinstance(spec, FieldSpec):
                raise SchemaViolation(f"{self.name}: {spec!r} is not a FieldSpec")
            if not isinstance(spec.type, (WireType, PacketSchema)):
                raise SchemaViolation(
                    f"{self.name}.{spec.name}: unsupported field type {spec.type!r}"
                )
            if spec.name in positions:
                raise SchemaViolation(f"{self.name}: duplicate field name {spec.name!r}")

            if spec.dynamic is None:
                resolved.append(None)
            else:
                handles = []
                for dep in spec.dynamic.deps:
                    if dep == spec.name:
                        raise SchemaViolation(
                            f"{self.name}.{spec.name}: field cannot depend on itself"
                        )
                    if dep not in positions:
                        raise SchemaViolation(
                            f"{self.name}.{spec.name}: dependency {dep!r} is not an earlier field"
                        )
                    handles.append((dep, positions[dep]))
                resolved.append(tuple(handles))

            positions[spec.name] = index
        return tuple(resolved)

    @classmethod
    def declare(
        cls,
        name: str,
        fields: Iterable[FieldSpec],
        options: Iterable[Tuple[Union[PacketOption, str], int]] = (),
    ) -> "PacketSchema":
        """Build a schema from a list of ``(option, value)`` pairs.

        Each option may be given once; repeating one, or naming an option
        that does not exist, is a SchemaViolation.
        """
        seen = {}
        for key, value in options:
            option = PacketOption.parse(key)
            if option in seen:
                raise SchemaViolation(f"{name}: duplicate option {option.value!r}")
            seen[option] = value
        return cls(
            name=name,
            fields=tuple(fields),
            **{option.value: value for option, value in seen.items()},
        )

    @property
    def is_login_phase(self) -> bool:
        return self.login_opcode is not None

    @property
    def is_compressible(self) -> bool:
        return self.compressed_opcode is not None

    @property
    def field_names(self) -> Tuple[str, ...]:
        return tuple(f.name for f in self.fields)


__all__ = ["PacketOption", "Dynamic", "FieldSpec", "PacketSchema"]
