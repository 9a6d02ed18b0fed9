# mfsdisk

`mfsdisk` works with MFS, a small inode-based filesystem, and with the MBR
partition tables that hold it. It reads and writes disk image files and
in-memory devices. You can use it from Python or from the command line to
inspect an image, prepare one, or change the files inside it.

## What is on disk

- Sectors are 512 bytes. Sector 0 is the superblock, and its first bytes are `MFS`.
- There are 256 inodes of 512 bytes each. Inode 0 is the root directory `/`.
- One block bitmap and one inode bitmap cover 4096 data blocks.
- A file has 12 direct blocks and one indirect block of 128 entries, so the
  largest file is 140 blocks.
- A directory holds at most 128 entries.
- The node types are files, directories, symbolic links, hard links and
  block-device nodes. `mfsdisk.layout.NodeType` lists them.
  `mfsdisk.layout.Inode` is the on-disk inode record.

## Block devices and partitions

`mfsdisk.block` defines three kinds of device:

- `MemoryBlockDevice` is a zero-filled device held in memory.
- `FileBlockDevice` is backed by an existing image file.
- `PartitionDevice` is a window onto part of a parent device.

You give every device its name when you create it.

`BlockRegistry` keeps the whole devices and the partitions found on them. It
reads each device's MBR with `read_mbr` and `parse_mbr`, which return `Mbr` and
`MbrPartition` objects. Each partition it finds is registered under the
parent's name followed by the partition number, for example `sda1`.

```python
from mfsdisk.block import BlockRegistry, MemoryBlockDevice

device = MemoryBlockDevice("sda", 65536)
registry = BlockRegistry()
registry.add_device(device)
registry.create_partition(device, 1, 2048, 16)   # partition 1, start sector, size in MB
part = registry.find_partition("sda1")
```

A new partition gets type `0x83`. Creating a partition raises `BlockError` in
two cases: its slot is already taken, or it overlaps an existing partition. A
partition number outside 1 to 4 raises `ValueError`. `delete_partition` clears
an entry and calls `rescan`, which rebuilds the partition list.

## A single filesystem

```python
from mfsdisk.filesystem import format_device, mount

format_device(part)
fs = mount(part)

fs.create_dir("/docs")
fs.create_file("/docs/note.txt")
fs.write_file("/docs/note.txt", b"hello")
print(fs.read_file("/docs/note.txt"))
print([node.name for node in fs.list_dir("/docs")])

fs.create_symlink("/docs/note.txt", "/latest", "/")
print(fs.readlink("/latest"))
fs.create_hardlink("/docs/note.txt", "/docs/copy")
fs.delete_hardlink("/docs/copy")
```

Missing paths raise `NotFoundError`. Other refusals raise `FsError`, for
example:

- a name that already exists
- removing a directory that is not empty
- following too many levels of links

## Mounts and a working directory

`mfsdisk.vfs.Vfs` mounts several filesystems at different paths:

- An absolute path goes to the longest matching mount point.
- A relative path goes to the filesystem of the current directory.

The `Vfs` also keeps a `/dev` directory that holds a node for every
registered device and partition. `update_devices` rebuilds it and
`remove_device` removes one entry. Reading or writing a device node goes to
sector 0 of that device.

```python
from mfsdisk.vfs import boot

vfs = boot(registry)     # mounts sda1 at /, formatting it if it has no filesystem
vfs.create_dir("/docs")
vfs.cd("/docs")
print(vfs.pwd())
```

When no `sda1` is registered, `boot` uses a 32 MB in-memory disk instead.

## Command line

```
mfsdisk IMAGE [-p N] COMMAND ...
```

The image is opened as device `sda`. Its MBR partitions become available
through `-p N`. Without `-p`, commands work on the whole image.

| Command | What it does |
| --- | --- |
| `parts` | List the partitions |
| `mkpart NUMBER START SIZE_MB` | Create a partition |
| `rmpart NUMBER` | Delete a partition |
| `format` | Write an empty filesystem |
| `ls [PATH]` | List a directory |
| `mkdir PATH` | Create a directory |
| `touch PATH` | Create an empty file |
| `write PATH DATA` | Write DATA to the start of a file |
| `cat PATH` | Print a file |
| `size PATH` | Print the size of a file |
| `rm PATH` | Remove a file or symbolic link |
| `rmdir PATH` | Remove an empty directory |
| `symlink TARGET LINK` | Create a symbolic link |
| `readlink PATH` | Print the target of a symbolic link |
| `link TARGET LINK` | Create a hard link |
| `unlink PATH` | Remove a hard link |

Run `mfsdisk --help` to see all the options. On an error the command prints a
message to standard error and exits with status 1.

## What it does not do

- It does not create image files. `FileBlockDevice` needs an existing file of
  the size you want.
- It does not mount MFS into the operating system. Files are reached only
  through the Python API and the `mfsdisk` command.

## Tests

Install the `test` extra, then run `pytest`.