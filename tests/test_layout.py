import struct

import pytest

from mfsdisk import layout
from mfsdisk.layout import Inode, NodeType, has_magic, root_inode, superblock_bytes, unpack_inode


def test_inode_table_fits_between_regions():
    record = root_inode().to_bytes()
    table_sectors = layout.BLOCK_BITMAP_START - layout.INODE_START
    assert len(record) * layout.MAX_INODES == table_sectors * layout.BLOCK_SIZE
    assert layout.BLOCK_BITMAP_START == 257
    assert layout.INODE_BITMAP_START == layout.BLOCK_BITMAP_START + 1
    assert layout.DATA_START == 259


def test_superblock_has_magic():
    sector = superblock_bytes()
    assert len(sector) == 512
    assert sector[:3] == b"MFS"
    assert has_magic(sector)


def test_blank_sector_has_no_magic():
    assert not has_magic(bytes(512))


def test_inode_fills_one_slot():
    assert len(Inode(name="a").to_bytes()) == layout.INODE_SIZE


def test_inode_round_trip():
    original = Inode(
        name="notes.txt",
        type=NodeType.SYMLINK,
        size=1234,
        parent=7,
        first_child_block=3,
        blocks=[5, 6] + [None] * 10,
        indirect=99,
        symlink_target="/home/notes",
        link_count=2,
        target_inode=11,
    )
    assert unpack_inode(original.to_bytes()) == original


def test_unset_pointers_are_stored_as_all_ones():
    data = Inode(name="x").to_bytes()
    assert b"\xff\xff\xff\xff" in data
    decoded = unpack_inode(data)
    assert decoded.first_child_block is None
    assert decoded.indirect is None
    assert all(block is None for block in decoded.blocks)


def test_long_name_is_truncated():
    decoded = unpack_inode(Inode(name="n" * 40).to_bytes())
    assert decoded.name == "n" * (layout.MAX_FILENAME - 1)


def test_root_inode():
    root = unpack_inode(root_inode().to_bytes())
    assert root.name == "/"
    assert root.type is NodeType.DIR
    assert root.parent == 0
    assert root.first_child_block is None
    assert root.blocks == [None] * layout.MAX_BLOCKS_PER_FILE


def test_zeroed_slot_decodes_as_empty_file():
    decoded = unpack_inode(bytes(layout.INODE_SIZE))
    assert decoded.type is NodeType.FILE
    assert decoded.name == ""
    assert decoded.blocks == [0] * layout.MAX_BLOCKS_PER_FILE


def test_unknown_type_rejected():
    data = bytearray(Inode(name="x").to_bytes())
    struct.pack_into("<I", data, layout.MAX_FILENAME, 9)
    with pytest.raises(ValueError):
        unpack_inode(bytes(data))


def test_short_record_rejected():
    with pytest.raises(ValueError):
        unpack_inode(bytes(10))


def test_wrong_block_count_rejected():
    with pytest.raises(ValueError):
        Inode(blocks=[None]).to_bytes()