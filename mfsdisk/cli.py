"""Command line access to MFS filesystems and MBR partitions on disk images."""

from __future__ import annotations

import argparse
import sys
from collections.abc import Callable

from mfsdisk import filesystem
from mfsdisk.block import BlockDevice, BlockError, BlockRegistry, FileBlockDevice
from mfsdisk.filesystem import FileSystem, FsError
from mfsdisk.layout import Inode, NodeType

PROG = "mfsdisk"
DISK_NAME = "sda"

_TYPE_LABELS = {
    NodeType.DIR: "DIR  ",
    NodeType.SYMLINK: "LINK ",
    NodeType.HARDLINK: "HLINK ",
}


def _entry_line(node: Inode) -> str:
    line = _TYPE_LABELS.get(node.type, "FILE ") + node.name
    if node.type == NodeType.SYMLINK:
        line += " -> " + node.symlink_target
    return line


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=PROG, description="Manage MFS filesystems and MBR partitions on a disk image."
    )
    parser.add_argument("image", help="disk image file")
    parser.add_argument(
        "-p", "--partition", type=int, metavar="N",
        help="work on partition N of the image instead of the whole image",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("parts", help="list the partitions in the MBR")
    mkpart = commands.add_parser("mkpart", help="add a Linux partition to the MBR")
    mkpart.add_argument("number", type=int)
    mkpart.add_argument("start", type=int, help="first sector")
    mkpart.add_argument("size_mb", type=int, help="size in megabytes")
    rmpart = commands.add_parser("rmpart", help="delete a partition from the MBR")
    rmpart.add_argument("number", type=int)

    commands.add_parser("format", help="write an empty filesystem")
    ls = commands.add_parser("ls", help="list a directory")
    ls.add_argument("path", nargs="?", default="/")
    for name, help_text in (
        ("mkdir", "create a directory"),
        ("touch", "create an empty file"),
        ("cat", "print a file"),
        ("rm", "remove a file or symlink"),
        ("rmdir", "remove an empty directory"),
        ("readlink", "print the target of a symlink"),
        ("unlink", "remove a hard link"),
        ("size", "print the size of a file"),
    ):
        commands.add_parser(name, help=help_text).add_argument("path")
    write = commands.add_parser("write", help="write text to the start of a file")
    write.add_argument("path")
    write.add_argument("data")
    for name, help_text in (("symlink", "create a symbolic link"), ("link", "create a hard link")):
        sub = commands.add_parser(name, help=help_text)
        sub.add_argument("target")
        sub.add_argument("link")
    return parser


def _target_device(registry: BlockRegistry, disk: BlockDevice, partition: int | None) -> BlockDevice:
    if partition is None:
        return disk
    device = registry.find_partition(f"{disk.name}{partition}")
    if device is None:
        raise BlockError(f"partition {partition} not found")
    return device


def _run_partition_command(args: argparse.Namespace, registry: BlockRegistry, disk: BlockDevice) -> None:
    if args.command == "parts":
        for part in registry.partitions:
            print(f"{part.name} start={part.start_lba} sectors={part.sectors}")
    elif args.command == "mkpart":
        part = registry.create_partition(disk, args.number, args.start, args.size_mb)
        print(f"Partition {part.name} created: start={part.start_lba}, size={args.size_mb} MB")
    else:
        registry.delete_partition(disk, args.number)
        print(f"Partition {args.number} deleted")


def _run_fs_command(args: argparse.Namespace, fs: FileSystem) -> None:
    actions: dict[str, Callable[[], None]] = {
        "ls": lambda: [print(_entry_line(node)) for node in fs.list_dir(args.path)],
        "mkdir": lambda: fs.create_dir(args.path),
        "touch": lambda: fs.create_file(args.path),
        "write": lambda: fs.write_file(args.path, args.data),
        "cat": lambda: print(fs.read_file(args.path).decode("utf-8", "replace")),
        "rm": lambda: fs.remove_file(args.path),
        "rmdir": lambda: fs.remove_dir(args.path),
        "readlink": lambda: print(fs.readlink(args.path)),
        "unlink": lambda: fs.delete_hardlink(args.path),
        "size": lambda: print(fs.file_size(args.path)),
        "symlink": lambda: fs.create_symlink(args.target, args.link, "/"),
        "link": lambda: fs.create_hardlink(args.target, args.link),
    }
    actions[args.command]()


def main(argv: list[str] | None = None) -> int:
    """Run one command against a disk image; return the exit status."""
    args = _build_parser().parse_args(argv)
    try:
        disk = FileBlockDevice(DISK_NAME, args.image)
        registry = BlockRegistry()
        registry.add_device(disk)
        registry.scan_partitions(disk)
        if args.command in ("parts", "mkpart", "rmpart"):
            _run_partition_command(args, registry, disk)
            return 0
        device = _target_device(registry, disk, args.partition)
        if args.command == "format":
            filesystem.format_device(device)
            print("Format complete")
            return 0
        _run_fs_command(args, filesystem.mount(device))
    except (FsError, BlockError, ValueError, OSError) as exc:
        print(f"{PROG}: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())