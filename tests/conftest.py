"""Shared fixtures for opcodec tests."""

import pytest

from opcodec.codec import compile_schema
from opcodec.schema import Dynamic, FieldSpec, PacketSchema
from wire_construct import ByteArray, CText, UInt8, UInt16, UInt32, UInt64


def should_read_nickname(deps) -> bool:
    return deps.nickname_size > 0


@pytest.fixture
def income_schema() -> PacketSchema:
    """Login-phase packet with a nickname read only when its size is set."""
    return PacketSchema.declare(
        "Income",
        [
            FieldSpec("name", CText),
            FieldSpec("age", UInt64),
            FieldSpec("nickname_size", UInt32),
            FieldSpec("nickname", CText, Dynamic(("nickname_size",), should_read_nickname)),
        ],
        options=[("world_opcode", 100), ("login_opcode", 12)],
    )


@pytest.fixture
def income_codec(income_schema):
    return compile_schema(income_schema)


@pytest.fixture
def profile_schema() -> PacketSchema:
    """Standard-header packet whose nickname length comes from an earlier field."""
    return PacketSchema(
        name="Profile",
        fields=(
            FieldSpec("player_id", UInt16),
            FieldSpec("nickname_size", UInt8),
            FieldSpec(
                "nickname",
                CText,
                Dynamic(("nickname_size",), lambda deps: deps.nickname_size or None),
            ),
            FieldSpec("token", ByteArray(4)),
            FieldSpec("tail", UInt8),
        ),
        world_opcode=0x0101,
    )


@pytest.fixture
def profile_codec(profile_schema):
    return compile_schema(profile_schema)


@pytest.fixture
def point_schema() -> PacketSchema:
    return PacketSchema("Point", (FieldSpec("x", UInt16), FieldSpec("y", UInt16)))


@pytest.fixture
def move_schema(point_schema) -> PacketSchema:
    return PacketSchema(
        name="Move",
        fields=(
            FieldSpec("entity_id", UInt32),
            FieldSpec("pos", point_schema),
            FieldSpec("has_target", UInt8),
            FieldSpec("target", point_schema, Dynamic(("has_target",), lambda deps: deps.has_target == 1)),
        ),
        world_opcode=0x0202,
    )


@pytest.fixture
def world_state_schema() -> PacketSchema:
    """Compressible packet: opcode 999 carries a deflated payload."""
    return PacketSchema(
        name="WorldState",
        fields=(
            FieldSpec("tick", UInt32),
            FieldSpec("motd", CText),
            FieldSpec("seed", UInt64),
        ),
        world_opcode=998,
        compressed_opcode=999,
    )


@pytest.fixture
def world_state_codec(world_state_schema):
    return compile_schema(world_state_schema)
