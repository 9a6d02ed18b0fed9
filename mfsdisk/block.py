"""Block devices, MBR partition tables and the registry of known devices."""

from __future__ import annotations

import struct
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path

SECTOR_SIZE = 512
MBR_SIGNATURE = 0xAA55
MAX_BLOCK_DEVICES = 16
MAX_PARTITIONS = 4
SECTORS_PER_MB = 2048
LINUX_PARTITION_TYPE = 0x83
BOOTSTRAP_SIZE = 446

_ENTRY_STRUCT = struct.Struct("<B3sB3sII")


class BlockError(Exception):
    """A block device or partition table operation failed."""


class BlockDevice(ABC):
    """A device addressed in 512-byte sectors."""

    def __init__(self, name: str, sectors: int = 0) -> None:
        self.name = name
        self.sectors = sectors

    def read(self, lba: int, count: int) -> bytes:
        """Read ``count`` sectors starting at ``lba``."""
        if lba < 0 or count < 0:
            raise ValueError("lba and count must not be negative")
        return self._read(lba, count)

    def write(self, lba: int, data: bytes) -> None:
        """Write whole sectors starting at ``lba``."""
        data = bytes(data)
        if lba < 0:
            raise ValueError("lba must not be negative")
        if len(data) % SECTOR_SIZE:
            raise ValueError(f"data must be a multiple of {SECTOR_SIZE} bytes")
        self._write(lba, data)

    @abstractmethod
    def _read(self, lba: int, count: int) -> bytes: ...

    @abstractmethod
    def _write(self, lba: int, data: bytes) -> None: ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r}, sectors={self.sectors})"


class MemoryBlockDevice(BlockDevice):
    """A device held in memory, zero-filled at creation."""

    def __init__(self, name: str, sectors: int) -> None:
        super().__init__(name, sectors)
        self._data = bytearray(sectors * SECTOR_SIZE)

    def _check(self, lba: int, count: int) -> None:
        if lba + count > self.sectors:
            raise BlockError(f"{self.name}: access beyond sector {self.sectors}")

    def _read(self, lba: int, count: int) -> bytes:
        self._check(lba, count)
        start = lba * SECTOR_SIZE
        return bytes(self._data[start : start + count * SECTOR_SIZE])

    def _write(self, lba: int, data: bytes) -> None:
        self._check(lba, len(data) // SECTOR_SIZE)
        start = lba * SECTOR_SIZE
        self._data[start : start + len(data)] = data


class FileBlockDevice(BlockDevice):
    """A device backed by a disk image file of fixed size."""

    def __init__(self, name: str, path: str | Path) -> None:
        self.path = Path(path)
        super().__init__(name, self.path.stat().st_size // SECTOR_SIZE)

    def _check(self, lba: int, count: int) -> None:
        if lba + count > self.sectors:
            raise BlockError(f"{self.name}: access beyond sector {self.sectors}")

    def _read(self, lba: int, count: int) -> bytes:
        self._check(lba, count)
        with self.path.open("rb") as image:
            image.seek(lba * SECTOR_SIZE)
            data = image.read(count * SECTOR_SIZE)
        if len(data) != count * SECTOR_SIZE:
            raise BlockError(f"{self.name}: short read at sector {lba}")
        return data

    def _write(self, lba: int, data: bytes) -> None:
        self._check(lba, len(data) // SECTOR_SIZE)
        with self.path.open("r+b") as image:
            image.seek(lba * SECTOR_SIZE)
            image.write(data)


class PartitionDevice(BlockDevice):
    """A window onto a parent device starting at ``start_lba``."""

    def __init__(
        self, name: str, parent: BlockDevice, number: int, start_lba: int, sector_count: int
    ) -> None:
        super().__init__(name, sector_count)
        self.parent = parent
        self.number = number
        self.start_lba = start_lba

    def _read(self, lba: int, count: int) -> bytes:
        return self.parent.read(self.start_lba + lba, count)

    def _write(self, lba: int, data: bytes) -> None:
        self.parent.write(self.start_lba + lba, data)


@dataclass
class MbrPartition:
    """One of the four primary partition table entries."""

    status: int = 0
    chs_first: bytes = bytes(3)
    type: int = 0
    chs_last: bytes = bytes(3)
    lba_start: int = 0
    sector_count: int = 0


def _empty_entries() -> list[MbrPartition]:
    return [MbrPartition() for _ in range(MAX_PARTITIONS)]


@dataclass
class Mbr:
    """A master boot record sector."""

    bootstrap: bytes = bytes(BOOTSTRAP_SIZE)
    parts: list[MbrPartition] = field(default_factory=_empty_entries)
    signature: int = 0

    def to_bytes(self) -> bytes:
        """Pack the record into one sector."""
        if len(self.parts) != MAX_PARTITIONS:
            raise ValueError(f"an MBR holds exactly {MAX_PARTITIONS} entries")
        entries = b"".join(
            _ENTRY_STRUCT.pack(
                p.status, p.chs_first, p.type, p.chs_last, p.lba_start, p.sector_count
            )
            for p in self.parts
        )
        bootstrap = bytes(self.bootstrap[:BOOTSTRAP_SIZE]).ljust(BOOTSTRAP_SIZE, b"\0")
        return bootstrap + entries + struct.pack("<H", self.signature)


def parse_mbr(data: bytes) -> Mbr:
    """Decode a 512-byte MBR sector."""
    data = bytes(data)
    if len(data) != SECTOR_SIZE:
        raise ValueError(f"an MBR is {SECTOR_SIZE} bytes, got {len(data)}")
    parts = [
        MbrPartition(*_ENTRY_STRUCT.unpack_from(data, BOOTSTRAP_SIZE + i * _ENTRY_STRUCT.size))
        for i in range(MAX_PARTITIONS)
    ]
    (signature,) = struct.unpack_from("<H", data, SECTOR_SIZE - 2)
    return Mbr(bootstrap=data[:BOOTSTRAP_SIZE], parts=parts, signature=signature)


def read_mbr(device: BlockDevice) -> Mbr:
    """Read and decode sector 0 of ``device``."""
    return parse_mbr(device.read(0, 1))


class BlockRegistry:
    """The whole devices known to the system and the partitions found on them."""

    def __init__(self) -> None:
        self.devices: list[BlockDevice] = []
        self.partitions: list[PartitionDevice] = []

    def add_device(self, device: BlockDevice) -> BlockDevice:
        """Register a whole device."""
        if len(self.devices) >= MAX_BLOCK_DEVICES:
            raise BlockError(f"no room for more than {MAX_BLOCK_DEVICES} devices")
        self.devices.append(device)
        return device

    def _add_partition(
        self, parent: BlockDevice, number: int, start: int, count: int
    ) -> PartitionDevice:
        partition = PartitionDevice(f"{parent.name}{number}", parent, number, start, count)
        self.partitions.append(partition)
        return partition

    def _partition_at(self, device: BlockDevice, start: int) -> PartitionDevice | None:
        return next(
            (p for p in self.partitions if p.parent is device and p.start_lba == start), None
        )

    @staticmethod
    def _table(device: BlockDevice) -> Mbr | None:
        try:
            mbr = read_mbr(device)
        except BlockError:
            return None
        return mbr if mbr.signature == MBR_SIGNATURE else None

    def scan_partitions(self, device: BlockDevice) -> list[PartitionDevice]:
        """Register the partitions of ``device`` not yet known; return the new ones."""
        mbr = self._table(device)
        if mbr is None:
            return []
        added = []
        for number, entry in enumerate(mbr.parts, start=1):
            if entry.type and self._partition_at(device, entry.lba_start) is None:
                added.append(
                    self._add_partition(device, number, entry.lba_start, entry.sector_count)
                )
        return added

    def find(self, name: str) -> BlockDevice | None:
        """Look a name up among whole devices, then partitions."""
        device = next((d for d in self.devices if d.name == name), None)
        return device if device is not None else self.find_partition(name)

    def find_partition(self, name: str) -> PartitionDevice | None:
        """Look a name up among partitions only."""
        return next((p for p in self.partitions if p.name == name), None)

    def create_partition(
        self, device: BlockDevice, part_num: int, start_sector: int, size_mb: int
    ) -> PartitionDevice:
        """Add a Linux partition entry to the MBR of ``device`` and register it."""
        if not 1 <= part_num <= MAX_PARTITIONS:
            raise ValueError("partition number must be 1-4")
        size_sectors = size_mb * SECTORS_PER_MB
        mbr = read_mbr(device)
        existing = mbr.parts[part_num - 1]
        if existing.type:
            raise BlockError(
                f"partition {part_num} already exists (type: {existing.type:#x})"
            )
        end_sector = start_sector + size_sectors
        for number, entry in enumerate(mbr.parts, start=1):
            if not entry.type:
                continue
            part_start = entry.lba_start
            part_end = part_start + entry.sector_count
            if (
                part_start <= start_sector < part_end
                or part_start < end_sector <= part_end
                or (start_sector <= part_start and end_sector >= part_end)
            ):
                raise BlockError(f"new partition overlaps with existing partition {number}")
        mbr.parts[part_num - 1] = MbrPartition(
            type=LINUX_PARTITION_TYPE, lba_start=start_sector, sector_count=size_sectors
        )
        mbr.signature = MBR_SIGNATURE
        device.write(0, mbr.to_bytes())
        self.scan_partitions(device)
        partition = self._partition_at(device, start_sector)
        if partition is None:
            raise BlockError(f"{device.name}: partition {part_num} not found after writing")
        return partition

    def delete_partition(self, device: BlockDevice, part_num: int) -> None:
        """Clear an MBR entry of ``device`` and rebuild the partition list."""
        if not 1 <= part_num <= MAX_PARTITIONS:
            raise ValueError("partition number must be 1-4")
        mbr = read_mbr(device)
        if not mbr.parts[part_num - 1].type:
            raise BlockError(f"partition {part_num} does not exist")
        mbr.parts[part_num - 1] = MbrPartition()
        device.write(0, mbr.to_bytes())
        self.rescan()

    def rescan(self) -> None:
        """Rebuild the partition list from the MBR of every device."""
        self.partitions = []
        for device in self.devices:
            mbr = self._table(device)
            if mbr is None:
                continue
            for number, entry in enumerate(mbr.parts, start=1):
                if entry.type:
                    self._add_partition(device, number, entry.lba_start, entry.sector_count)