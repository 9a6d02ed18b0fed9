"""On-disk layout of the MFS filesystem: geometry, inode records and the superblock."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from enum import IntEnum

SECTOR_SIZE = 512
BLOCK_SIZE = 512
MAX_PATH = 256
MAX_FILENAME = 32
TOTAL_BLOCKS = 4096
MAX_INODES = 256
INODE_SIZE = 512
MAX_BLOCKS_PER_FILE = 12
POINTERS_PER_BLOCK = BLOCK_SIZE // 4
MAX_MOUNTS = 8

SUPERBLOCK_SECTOR = 0
INODE_START = 1
BLOCK_BITMAP_START = INODE_START + (MAX_INODES * INODE_SIZE + BLOCK_SIZE - 1) // BLOCK_SIZE
INODE_BITMAP_START = BLOCK_BITMAP_START + 1
DATA_START = BLOCK_BITMAP_START + (TOTAL_BLOCKS + 7) // 8 // BLOCK_SIZE + 1

MAGIC = b"MFS"
UNSET = 0xFFFFFFFF


class NodeType(IntEnum):
    """Kind of object an inode describes."""

    FILE = 0
    DIR = 1
    SYMLINK = 2
    BLOCK_DEV = 3
    HARDLINK = 4


_INODE_STRUCT = struct.Struct(
    f"<{MAX_FILENAME}s4I{MAX_BLOCKS_PER_FILE}II{MAX_PATH}sII"
)


def _encode_str(text: str, size: int) -> bytes:
    raw = text.encode("utf-8")[: size - 1]
    return raw.decode("utf-8", "ignore").encode("utf-8")


def _decode_str(raw: bytes) -> str:
    return raw.split(b"\0", 1)[0].decode("utf-8", "replace")


def _pointer(value: int | None) -> int:
    return UNSET if value is None else value


def _optional(value: int) -> int | None:
    return None if value == UNSET else value


@dataclass
class Inode:
    """One inode record; unset block pointers are ``None``."""

    name: str = ""
    type: NodeType = NodeType.FILE
    size: int = 0
    parent: int = 0
    first_child_block: int | None = None
    blocks: list[int | None] = field(
        default_factory=lambda: [None] * MAX_BLOCKS_PER_FILE
    )
    indirect: int | None = None
    symlink_target: str = ""
    link_count: int = 0
    target_inode: int = 0

    def to_bytes(self) -> bytes:
        """Pack the inode into one INODE_SIZE slot."""
        if len(self.blocks) != MAX_BLOCKS_PER_FILE:
            raise ValueError(f"an inode holds exactly {MAX_BLOCKS_PER_FILE} block pointers")
        packed = _INODE_STRUCT.pack(
            _encode_str(self.name, MAX_FILENAME),
            int(self.type),
            self.size,
            self.parent,
            _pointer(self.first_child_block),
            *(_pointer(block) for block in self.blocks),
            _pointer(self.indirect),
            _encode_str(self.symlink_target, MAX_PATH),
            self.link_count,
            self.target_inode,
        )
        return packed.ljust(INODE_SIZE, b"\0")


def unpack_inode(data: bytes) -> Inode:
    """Decode an inode from the start of ``data``."""
    if len(data) < _INODE_STRUCT.size:
        raise ValueError(f"inode record needs {_INODE_STRUCT.size} bytes, got {len(data)}")
    fields = _INODE_STRUCT.unpack_from(bytes(data))
    name, type_value, size, parent, first_child = fields[:5]
    blocks = fields[5 : 5 + MAX_BLOCKS_PER_FILE]
    indirect, target, link_count, target_inode = fields[5 + MAX_BLOCKS_PER_FILE :]
    try:
        node_type = NodeType(type_value)
    except ValueError:
        raise ValueError(f"unknown inode type {type_value}") from None
    return Inode(
        name=_decode_str(name),
        type=node_type,
        size=size,
        parent=parent,
        first_child_block=_optional(first_child),
        blocks=[_optional(block) for block in blocks],
        indirect=_optional(indirect),
        symlink_target=_decode_str(target),
        link_count=link_count,
        target_inode=target_inode,
    )


def root_inode() -> Inode:
    """The inode written at slot 0 by a fresh format."""
    return Inode(name="/", type=NodeType.DIR, parent=0)


def superblock_bytes() -> bytes:
    """A superblock sector carrying the filesystem magic."""
    return MAGIC.ljust(SECTOR_SIZE, b"\0")


def has_magic(sector: bytes) -> bool:
    """Whether a superblock sector starts with the filesystem magic."""
    return bytes(sector[: len(MAGIC)]) == MAGIC