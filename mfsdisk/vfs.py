"""Mount table over MFS filesystems, path resolution and the /dev directory."""

from __future__ import annotations

from dataclasses import dataclass

from mfsdisk import filesystem
from mfsdisk.block import SECTOR_SIZE, BlockDevice, BlockRegistry, MemoryBlockDevice
from mfsdisk.filesystem import ROOT, FileSystem, FsError, NotFoundError
from mfsdisk.layout import (
    MAX_BLOCKS_PER_FILE,
    MAX_MOUNTS,
    SUPERBLOCK_SECTOR,
    Inode,
    NodeType,
    has_magic,
)

RAM_DISK_SECTORS = 32 * 1024 * 1024 // SECTOR_SIZE
ROOT_PARTITION = "sda1"
DEV_DIR = "/dev"
DEV_PREFIX = "/dev/"


@dataclass
class _Mount:
    path: str
    fs: FileSystem


class Vfs:
    """Mounted filesystems, the current directory and device nodes."""

    def __init__(self, registry: BlockRegistry | None = None) -> None:
        self.registry = registry if registry is not None else BlockRegistry()
        self.current: FileSystem | None = None
        self._mounts: list[_Mount] = []

    @property
    def mounts(self) -> list[tuple[str, FileSystem]]:
        """The mount points in mount order."""
        return [(entry.path, entry.fs) for entry in self._mounts]

    # -- mount table -------------------------------------------------------

    def mount(self, device: BlockDevice, mount_point: str) -> FileSystem:
        """Mount the filesystem on ``device`` at ``mount_point``."""
        if len(self._mounts) >= MAX_MOUNTS:
            raise FsError(f"no room for more than {MAX_MOUNTS} mounts")
        fs = filesystem.mount(device)
        self._mounts.append(_Mount(mount_point, fs))
        if mount_point == "/":
            self.current = fs
        return fs

    def umount(self, mount_point: str) -> None:
        """Remove a mount; the root and the current filesystem stay."""
        entry = next((m for m in self._mounts if m.path == mount_point), None)
        if entry is None:
            raise NotFoundError(f"not mounted: {mount_point}")
        if mount_point == "/":
            raise FsError("cannot unmount root filesystem")
        if entry.fs is self.current:
            raise FsError("cannot unmount: current directory is on this device")
        self._mounts.remove(entry)

    def _root_mount(self) -> _Mount | None:
        return next((m for m in self._mounts if m.path == "/"), None)

    def _mount_of(self, fs: FileSystem) -> _Mount | None:
        return next((m for m in self._mounts if m.fs is fs), None)

    def resolve(self, path: str) -> tuple[FileSystem, str]:
        """The filesystem holding ``path`` and the path within it."""
        if path.startswith("/"):
            best: _Mount | None = None
            for entry in self._mounts:
                point = entry.path
                if point == "/":
                    continue
                if path.startswith(point) and path[len(point) : len(point) + 1] in ("", "/"):
                    if best is None or len(point) > len(best.path):
                        best = entry
            if best is not None:
                return best.fs, path[len(best.path) :] or "/"
            root = self._root_mount()
            if root is not None:
                return root.fs, path
        if self.current is None:
            raise FsError("no filesystem mounted")
        return self.current, path

    # -- working directory -------------------------------------------------

    def cd(self, path: str) -> None:
        """Change the current directory, crossing mount points."""
        fs, rel = self.resolve(path)
        if path == "..":
            if fs.current_dir != ROOT:
                fs.current_dir = fs.inode(fs.current_dir).parent
                self.current = fs
                return
            for entry in self._mounts:
                if entry.fs is fs and entry.path != "/":
                    outer = self._mounts[0].fs
                    self.current = outer
                    try:
                        outer.current_dir = outer.find_inode(entry.path)
                    except FsError:
                        outer.current_dir = ROOT
                    return
            return
        if rel in ("", "/"):
            fs.current_dir = ROOT
            self.current = fs
            return
        number = fs.resolve_links(fs.find_inode(rel))
        if fs.inode(number).type != NodeType.DIR:
            raise FsError(f"{path}: not a directory")
        fs.current_dir = number
        self.current = fs

    def pwd(self) -> str:
        """The current directory as an absolute path."""
        fs = self.current
        if fs is None:
            return "/"
        entry = self._mount_of(fs)
        point = entry.path if entry is not None else "/"
        if fs.current_dir == ROOT:
            return point if point.endswith("/") else point + "/"
        return point.rstrip("/") + fs.path_of(fs.current_dir)

    # -- files and directories ---------------------------------------------

    def create_file(self, path: str) -> int:
        """Create an empty file; return its inode number."""
        fs, rel = self.resolve(path)
        return fs.create_file(rel)

    def create_dir(self, path: str) -> int:
        """Create an empty directory; return its inode number."""
        fs, rel = self.resolve(path)
        return fs.create_dir(rel)

    def _target(self, path: str) -> tuple[FileSystem, Inode, int]:
        fs, rel = self.resolve(path)
        number = fs.resolve_links(fs.find_inode(rel))
        return fs, fs.inode(number), number

    def _block_devices(self) -> list[BlockDevice]:
        return [*self.registry.devices, *self.registry.partitions]

    def _device_for(self, node: Inode) -> BlockDevice:
        index = node.blocks[0]
        devices = self._block_devices()
        if index is None or not 0 <= index < len(devices):
            raise FsError(f"{node.name}: invalid device")
        return devices[index]

    def write(self, path: str, data: bytes | str) -> int:
        """Write ``data`` to a file or the first sector of a device node."""
        if isinstance(data, str):
            data = data.encode("utf-8")
        data = bytes(data)
        fs, node, number = self._target(path)
        if node.type == NodeType.BLOCK_DEV:
            sector = data[:SECTOR_SIZE]
            self._device_for(node).write(0, sector.ljust(SECTOR_SIZE, b"\0"))
            return len(sector)
        if node.type != NodeType.FILE:
            raise FsError(f"{path}: not a file")
        return fs.write_file(fs.path_of(number), data)

    def read(self, path: str) -> bytes:
        """The content of a file, or the first sector of a device node."""
        fs, node, number = self._target(path)
        if node.type == NodeType.BLOCK_DEV:
            return self._device_for(node).read(0, 1)
        if node.type != NodeType.FILE:
            raise FsError(f"{path}: not a file")
        return fs.read_file(fs.path_of(number))

    def remove_file(self, path: str) -> None:
        """Unlink a file or symlink."""
        fs, rel = self.resolve(path)
        fs.remove_file(rel)

    def remove_dir(self, path: str) -> None:
        """Remove an empty directory."""
        fs, rel = self.resolve(path)
        fs.remove_dir(rel)

    def list(self, path: str) -> list[Inode]:
        """The entries of a directory."""
        fs, rel = self.resolve(path)
        return fs.list_dir(rel)

    def file_size(self, path: str) -> int:
        """Size in bytes of a regular file."""
        fs, rel = self.resolve(path)
        return fs.file_size(rel)

    def read_range(self, path: str, offset: int, size: int) -> bytes:
        """Up to ``size`` bytes of a file starting at ``offset``."""
        fs, rel = self.resolve(path)
        return fs.read_range(rel, offset, size)

    # -- links -------------------------------------------------------------

    def create_symlink(self, target: str, linkname: str) -> int:
        """Create a symbolic link to an existing target."""
        fs, rel = self.resolve(linkname)
        return fs.create_symlink(target, rel)

    def readlink(self, path: str) -> str:
        """The target text of a symlink."""
        fs, rel = self.resolve(path)
        return fs.readlink(rel)

    def create_hardlink(self, target: str, link: str) -> int:
        """Create a hard link; both paths must be on one filesystem."""
        target_fs, target_rel = self.resolve(target)
        link_fs, link_rel = self.resolve(link)
        if target_fs is not link_fs:
            raise FsError("hardlink: target and link must be on same filesystem")
        return target_fs.create_hardlink(target_rel, link_rel)

    def delete_hardlink(self, path: str) -> None:
        """Remove a hard link."""
        fs, rel = self.resolve(path)
        fs.delete_hardlink(rel)

    # -- devices -----------------------------------------------------------

    def format_device(self, path: str) -> BlockDevice:
        """Write an empty filesystem to the device named by ``/dev/<name>``."""
        name = path[len(DEV_PREFIX) :] if path.startswith(DEV_PREFIX) else path
        device = self.registry.find(name)
        if device is None:
            raise NotFoundError(f"{path}: device not found")
        filesystem.format_device(device)
        return device

    def update_devices(self) -> None:
        """Rebuild the device nodes in /dev of the current filesystem."""
        fs = self.current
        if fs is None:
            return
        try:
            dev_dir = fs.find_inode(DEV_DIR)
        except NotFoundError:
            dev_dir = fs.create_dir(DEV_DIR)
        for child in fs.children(dev_dir):
            if fs.inode(child).type == NodeType.BLOCK_DEV:
                fs._drop_node(child)
        for index, device in enumerate(self._block_devices()):
            blocks = [index] + [None] * (MAX_BLOCKS_PER_FILE - 1)
            fs._add_node(dev_dir, device.name, NodeType.BLOCK_DEV, blocks=blocks)

    def remove_device(self, name: str) -> bool:
        """Remove the /dev entry called ``name``; report whether one was there."""
        fs = self.current
        if fs is None:
            return False
        try:
            dev_dir = fs.find_inode(DEV_DIR)
        except NotFoundError:
            return False
        for child in fs.children(dev_dir):
            if fs.inode(child).name == name:
                fs._drop_node(child)
                return True
        return False


def boot(registry: BlockRegistry) -> Vfs:
    """Mount the root filesystem from sda1, or from a RAM disk when there is none."""
    vfs = Vfs(registry)
    root = registry.find_partition(ROOT_PARTITION)
    if root is None:
        root = MemoryBlockDevice("ram", RAM_DISK_SECTORS)
        filesystem.format_device(root)
    elif not has_magic(root.read(SUPERBLOCK_SECTOR, 1)):
        filesystem.format_device(root)
    vfs.mount(root, "/")
    vfs.update_devices()
    return vfs