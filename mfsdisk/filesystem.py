"""The MFS filesystem: inodes, directories, file data, symbolic and hard links."""

from __future__ import annotations

import struct
from collections.abc import Iterator

from mfsdisk.block import BlockDevice
from mfsdisk.layout import (
    BLOCK_BITMAP_START,
    BLOCK_SIZE,
    DATA_START,
    INODE_BITMAP_START,
    INODE_SIZE,
    INODE_START,
    MAX_BLOCKS_PER_FILE,
    MAX_FILENAME,
    MAX_INODES,
    MAX_PATH,
    POINTERS_PER_BLOCK,
    SECTOR_SIZE,
    SUPERBLOCK_SECTOR,
    TOTAL_BLOCKS,
    UNSET,
    Inode,
    NodeType,
    has_magic,
    root_inode,
    superblock_bytes,
    unpack_inode,
)

_POINTER_STRUCT = struct.Struct(f"<{POINTERS_PER_BLOCK}I")
_MAX_LINK_DEPTH = 10
_MAX_FILE_BLOCKS = MAX_BLOCKS_PER_FILE + POINTERS_PER_BLOCK
ROOT = 0


class FsError(Exception):
    """A filesystem operation failed."""


class NotFoundError(FsError):
    """A path or link target does not exist."""


def _split_path(path: str) -> tuple[str, str]:
    head, sep, base = path.rpartition("/")
    if not sep:
        return ".", path
    return (head or "/"), base


def _inode_location(number: int) -> tuple[int, int]:
    byte_offset = number * INODE_SIZE
    return INODE_START + byte_offset // BLOCK_SIZE, byte_offset % BLOCK_SIZE


def _take_bit(bitmap: bytearray, start: int, limit: int) -> int | None:
    for index in range(start, limit):
        byte, bit = divmod(index, 8)
        if not bitmap[byte] & (1 << bit):
            bitmap[byte] |= 1 << bit
            return index
    return None


def _clear_bit(bitmap: bytearray, index: int) -> None:
    byte, bit = divmod(index, 8)
    bitmap[byte] &= ~(1 << bit) & 0xFF


def format_device(device: BlockDevice) -> None:
    """Write an empty filesystem holding only the root directory."""
    zero = bytes(SECTOR_SIZE)
    device.write(SUPERBLOCK_SECTOR, zero)
    device.write(INODE_BITMAP_START, zero)
    device.write(BLOCK_BITMAP_START, zero)
    table_sectors = (MAX_INODES * INODE_SIZE + BLOCK_SIZE - 1) // BLOCK_SIZE
    device.write(INODE_START, bytes(table_sectors * SECTOR_SIZE))
    sector, offset = _inode_location(ROOT)
    buf = bytearray(SECTOR_SIZE)
    buf[offset : offset + INODE_SIZE] = root_inode().to_bytes()[: SECTOR_SIZE - offset]
    device.write(sector, bytes(buf))
    device.write(SUPERBLOCK_SECTOR, superblock_bytes())


def mount(device: BlockDevice) -> FileSystem:
    """Open the filesystem on ``device``; it must carry the magic."""
    if not has_magic(device.read(SUPERBLOCK_SECTOR, 1)):
        raise FsError(f"{device.name}: not an MFS filesystem")
    return FileSystem(device)


class FileSystem:
    """A mounted MFS filesystem on one block device."""

    def __init__(self, device: BlockDevice) -> None:
        self.device = device
        self.current_dir = ROOT
        self._cache: dict[int, Inode] = {}
        self._block_bitmap = bytearray(device.read(BLOCK_BITMAP_START, 1))
        self._inode_bitmap = bytearray(device.read(INODE_BITMAP_START, 1))

    # -- inode table -------------------------------------------------------

    def inode(self, number: int) -> Inode:
        """The cached inode ``number``, loaded from disk on first use."""
        if not 0 <= number < MAX_INODES:
            raise FsError(f"inode {number} out of range")
        node = self._cache.get(number)
        if node is None:
            sector, offset = _inode_location(number)
            raw = self.device.read(sector, max(1, INODE_SIZE // SECTOR_SIZE))
            try:
                node = unpack_inode(raw[offset:])
            except ValueError as exc:
                raise FsError(f"inode {number}: {exc}") from None
            self._cache[number] = node
        return node

    def _save(self, number: int) -> None:
        sector, offset = _inode_location(number)
        count = max(1, INODE_SIZE // SECTOR_SIZE)
        buf = bytearray(self.device.read(sector, count))
        buf[offset : offset + INODE_SIZE] = self._cache[number].to_bytes()
        self.device.write(sector, bytes(buf[: count * SECTOR_SIZE]))

    def _alloc_inode(self) -> int:
        number = _take_bit(self._inode_bitmap, 1, MAX_INODES)
        if number is None:
            raise FsError("no free inodes")
        self.device.write(INODE_BITMAP_START, bytes(self._inode_bitmap))
        return number

    def _free_inode(self, number: int) -> None:
        _clear_bit(self._inode_bitmap, number)
        self.device.write(INODE_BITMAP_START, bytes(self._inode_bitmap))
        self._cache.pop(number, None)

    # -- data blocks -------------------------------------------------------

    def _alloc_block(self) -> int:
        block = _take_bit(self._block_bitmap, 0, TOTAL_BLOCKS)
        if block is None:
            raise FsError("no free blocks")
        self.device.write(BLOCK_BITMAP_START, bytes(self._block_bitmap))
        return block

    def _free_block(self, block: int | None) -> None:
        if block is None or not 0 <= block < TOTAL_BLOCKS:
            return
        _clear_bit(self._block_bitmap, block)
        self.device.write(BLOCK_BITMAP_START, bytes(self._block_bitmap))

    def _read_block(self, block: int) -> bytes:
        return self.device.read(DATA_START + block, 1)

    def _write_block(self, block: int, data: bytes) -> None:
        self.device.write(DATA_START + block, data)

    def _read_pointers(self, block: int) -> list[int]:
        return list(_POINTER_STRUCT.unpack(self._read_block(block)))

    def _write_pointers(self, block: int, pointers: list[int]) -> None:
        self._write_block(block, _POINTER_STRUCT.pack(*pointers))

    # -- directories -------------------------------------------------------

    def children(self, number: int) -> list[int]:
        """Inode numbers listed in directory ``number``; empty for other nodes."""
        node = self.inode(number)
        block = node.first_child_block
        if node.type != NodeType.DIR or block is None or block >= TOTAL_BLOCKS:
            return []
        return [p for p in self._read_pointers(block) if p != UNSET and p < MAX_INODES]

    def _add_child(self, parent: int, child: int) -> None:
        node = self.inode(parent)
        if node.first_child_block is None:
            block = self._alloc_block()
            pointers = [UNSET] * POINTERS_PER_BLOCK
            pointers[0] = child
            self._write_pointers(block, pointers)
            node.first_child_block = block
            self._save(parent)
            return
        pointers = self._read_pointers(node.first_child_block)
        try:
            slot = pointers.index(UNSET)
        except ValueError:
            raise FsError(f"directory {node.name!r} is full") from None
        pointers[slot] = child
        self._write_pointers(node.first_child_block, pointers)

    def _remove_child(self, parent: int, child: int) -> None:
        block = self.inode(parent).first_child_block
        if block is None:
            return
        pointers = self._read_pointers(block)
        if child in pointers:
            pointers[pointers.index(child)] = UNSET
            self._write_pointers(block, pointers)

    def _lookup(self, parent: int, name: str) -> int | None:
        return next((c for c in self.children(parent) if self.inode(c).name == name), None)

    # -- paths -------------------------------------------------------------

    def find_inode(self, path: str) -> int:
        """Resolve ``path``, following symlinks met before its last component."""
        return self._find(path, 0)

    def _find(self, path: str, depth: int) -> int:
        if depth > _MAX_LINK_DEPTH:
            raise FsError("too many levels of links")
        if not path:
            return self.current_dir
        current = ROOT if path.startswith("/") else self.current_dir
        components = [part for part in path.split("/") if part]
        last = len(components) - 1
        for index, component in enumerate(components):
            if component == ".":
                continue
            if component == "..":
                current = self.inode(current).parent
                continue
            found = self._lookup(current, component)
            if found is None:
                raise NotFoundError(f"{path}: not found")
            node = self.inode(found)
            if index < last and node.type == NodeType.SYMLINK:
                resolved = self._find(node.symlink_target, depth + 1)
                if self.inode(resolved).type != NodeType.DIR:
                    raise NotFoundError(f"{path}: not found")
                current = resolved
            else:
                current = found
        return current

    def path_of(self, number: int) -> str:
        """The absolute path of inode ``number`` within this filesystem."""
        names: list[str] = []
        current = number
        while current != ROOT:
            if len(names) >= MAX_INODES:
                raise FsError("directory cycle")
            node = self.inode(current)
            names.append(node.name)
            current = node.parent
        return "/" + "/".join(reversed(names))

    def _create(self, path: str, node_type: NodeType, **attrs) -> int:
        dir_path, base = _split_path(path)
        if not base or base in (".", ".."):
            raise FsError(f"{path}: invalid name")
        parent = self.find_inode(dir_path)
        if self.inode(parent).type != NodeType.DIR:
            raise FsError(f"{dir_path}: not a directory")
        if self._lookup(parent, base) is not None:
            raise FsError(f"{path}: already exists")
        return self._add_node(parent, base, node_type, **attrs)

    def _add_node(self, parent: int, name: str, node_type: NodeType, **attrs) -> int:
        number = self._alloc_inode()
        fields = {"link_count": 1 if node_type == NodeType.FILE else 0, **attrs}
        self._cache[number] = Inode(
            name=name[: MAX_FILENAME - 1], type=node_type, parent=parent, **fields
        )
        self._save(number)
        try:
            self._add_child(parent, number)
        except FsError:
            self._free_inode(number)
            raise
        return number

    def _drop_node(self, number: int) -> None:
        node = self.inode(number)
        self._remove_child(node.parent, number)
        self._free_inode(number)

    def create_file(self, path: str) -> int:
        """Create an empty regular file; return its inode number."""
        return self._create(path, NodeType.FILE)

    def create_dir(self, path: str) -> int:
        """Create an empty directory; return its inode number."""
        return self._create(path, NodeType.DIR)

    # -- file data ---------------------------------------------------------

    def _file(self, path: str) -> int:
        number = self.find_inode(path)
        if self.inode(number).type != NodeType.FILE:
            raise FsError(f"{path}: not a file")
        return number

    def _block_for(self, node: Inode, index: int) -> int:
        if index < MAX_BLOCKS_PER_FILE:
            if node.blocks[index] is None:
                node.blocks[index] = self._alloc_block()
            return node.blocks[index]
        if node.indirect is None:
            block = self._alloc_block()
            self._write_pointers(block, [UNSET] * POINTERS_PER_BLOCK)
            node.indirect = block
        pointers = self._read_pointers(node.indirect)
        slot = index - MAX_BLOCKS_PER_FILE
        if pointers[slot] == UNSET:
            pointers[slot] = self._alloc_block()
            self._write_pointers(node.indirect, pointers)
        return pointers[slot]

    def _existing_block(self, node: Inode, index: int) -> int | None:
        if index < MAX_BLOCKS_PER_FILE:
            return node.blocks[index]
        if node.indirect is None:
            return None
        pointer = self._read_pointers(node.indirect)[index - MAX_BLOCKS_PER_FILE]
        return None if pointer == UNSET else pointer

    def _data_blocks(self, node: Inode) -> Iterator[int]:
        yield from (b for b in node.blocks if b is not None)
        if node.indirect is not None:
            yield from (p for p in self._read_pointers(node.indirect) if p != UNSET)
            yield node.indirect

    def _release_data(self, node: Inode) -> None:
        for block in list(self._data_blocks(node)):
            self._free_block(block)
        node.blocks = [None] * MAX_BLOCKS_PER_FILE
        node.indirect = None

    def _write_data(self, number: int, data: bytes, offset: int = 0) -> int:
        node = self.inode(number)
        end = offset + len(data)
        if end > node.size:
            node.size = end
        written = 0
        try:
            while written < len(data):
                position = offset + written
                index, start = divmod(position, BLOCK_SIZE)
                if index >= _MAX_FILE_BLOCKS:
                    raise FsError("file too large")
                block = self._block_for(node, index)
                take = min(BLOCK_SIZE - start, len(data) - written)
                buf = bytearray(self._read_block(block))
                buf[start : start + take] = data[written : written + take]
                self._write_block(block, bytes(buf))
                written += take
        finally:
            self._save(number)
        return written

    def _read_data(self, number: int, offset: int, size: int) -> bytes:
        node = self.inode(number)
        if offset >= node.size:
            return b""
        size = min(size, node.size - offset)
        out = bytearray()
        while len(out) < size:
            index, start = divmod(offset + len(out), BLOCK_SIZE)
            if index >= _MAX_FILE_BLOCKS:
                break
            block = self._existing_block(node, index)
            if block is None:
                break
            take = min(BLOCK_SIZE - start, size - len(out))
            out += self._read_block(block)[start : start + take]
        return bytes(out)

    def write_file(self, path: str, data: bytes | str) -> int:
        """Write ``data`` at the start of a file; return the bytes written."""
        if isinstance(data, str):
            data = data.encode("utf-8")
        return self._write_data(self._file(path), bytes(data))

    def read_file(self, path: str) -> bytes:
        """The whole content of a regular file."""
        number = self._file(path)
        return self._read_data(number, 0, self.inode(number).size)

    def read_range(self, path: str, offset: int, size: int) -> bytes:
        """Up to ``size`` bytes of a file starting at ``offset``."""
        if offset < 0 or size < 0:
            raise ValueError("offset and size must not be negative")
        return self._read_data(self._file(path), offset, size)

    def file_size(self, path: str) -> int:
        """Size in bytes of a regular file."""
        return self.inode(self._file(path)).size

    # -- removal -----------------------------------------------------------

    def remove_file(self, path: str) -> None:
        """Unlink a file or symlink; file data goes when its last name does."""
        number = self.find_inode(path)
        node = self.inode(number)
        if node.type not in (NodeType.FILE, NodeType.SYMLINK):
            raise FsError(f"{path}: not a file or symlink")
        self._remove_child(node.parent, number)
        if node.type == NodeType.FILE:
            if node.link_count > 1:
                node.link_count -= 1
                self._save(number)
                return
            self._release_data(node)
        self._free_inode(number)

    def remove_dir(self, path: str) -> None:
        """Remove an empty directory."""
        number = self.find_inode(path)
        if number == ROOT:
            raise FsError("cannot remove the root directory")
        node = self.inode(number)
        if node.type != NodeType.DIR:
            raise FsError(f"{path}: not a directory")
        if self.children(number):
            raise FsError(f"{path}: directory not empty")
        self._remove_child(node.parent, number)
        self._free_block(node.first_child_block)
        self._free_inode(number)

    def list_dir(self, path: str) -> list[Inode]:
        """The inodes of a directory's entries, in slot order."""
        number = self.find_inode(path)
        if self.inode(number).type != NodeType.DIR:
            raise FsError(f"{path}: not a directory")
        return [self.inode(child) for child in self.children(number)]

    # -- links -------------------------------------------------------------

    def create_symlink(self, target: str, linkname: str, cwd: str | None = None) -> int:
        """Create ``linkname`` pointing at an existing ``target``."""
        if target.startswith("/"):
            self.find_inode(target)
        else:
            base = cwd if cwd is not None else self.path_of(self.current_dir)
            self.find_inode(base.rstrip("/") + "/" + target)
        if len(target.encode("utf-8")) >= MAX_PATH:
            raise FsError("symlink target too long")
        return self._create(linkname, NodeType.SYMLINK, symlink_target=target)

    def readlink(self, path: str) -> str:
        """The target text stored in a symlink."""
        node = self.inode(self.find_inode(path))
        if node.type != NodeType.SYMLINK:
            raise FsError(f"{path}: not a symlink")
        return node.symlink_target

    def resolve_links(self, number: int) -> int:
        """Follow symlinks and a hard link from ``number`` to the node they name."""
        for _ in range(_MAX_LINK_DEPTH + 1):
            node = self.inode(number)
            if node.type == NodeType.SYMLINK:
                target = node.symlink_target
                if not target.startswith("/"):
                    target = self.path_of(node.parent).rstrip("/") + "/" + target
                try:
                    number = self.find_inode(target)
                except NotFoundError:
                    raise NotFoundError(f"broken symlink {node.name!r}") from None
                continue
            if node.type == NodeType.HARDLINK:
                if not 0 <= node.target_inode < MAX_INODES:
                    raise NotFoundError(f"broken hardlink {node.name!r}")
                return node.target_inode
            return number
        raise FsError("too many levels of links")

    def create_hardlink(self, target: str, link: str) -> int:
        """Create ``link`` as a hard link to the non-directory ``target``."""
        target_number = self.find_inode(target)
        target_node = self.inode(target_number)
        if target_node.type == NodeType.DIR:
            raise FsError("cannot hard link a directory")
        number = self._create(link, NodeType.HARDLINK, target_inode=target_number)
        target_node.link_count += 1
        self._save(target_number)
        return number

    def delete_hardlink(self, path: str) -> None:
        """Remove a hard link; free its target when no name is left."""
        number = self.find_inode(path)
        node = self.inode(number)
        if node.type != NodeType.HARDLINK:
            raise FsError(f"{path}: not a hardlink")
        target = node.target_inode
        target_node = self.inode(target)
        target_node.link_count = max(0, target_node.link_count - 1)
        self._save(target)
        self._drop_node(number)
        if target_node.link_count == 0:
            self._release_data(target_node)
            self._free_inode(target)