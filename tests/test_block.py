import pytest

from mfsdisk.block import (
    MAX_BLOCK_DEVICES,
    MBR_SIGNATURE,
    BlockError,
    BlockRegistry,
    FileBlockDevice,
    MemoryBlockDevice,
    Mbr,
    MbrPartition,
    PartitionDevice,
    parse_mbr,
    read_mbr,
)


def sector(fill):
    return bytes([fill]) * 512


@pytest.fixture
def registry():
    reg = BlockRegistry()
    reg.add_device(MemoryBlockDevice("sda", 8192))
    return reg


def test_memory_round_trip():
    dev = MemoryBlockDevice("ram", 4)
    dev.write(2, sector(7))
    assert dev.read(2, 1) == sector(7)
    assert dev.read(0, 1) == bytes(512)


def test_memory_out_of_bounds():
    dev = MemoryBlockDevice("ram", 4)
    with pytest.raises(BlockError):
        dev.read(3, 2)
    with pytest.raises(BlockError):
        dev.write(4, sector(1))


def test_partial_sector_write_rejected():
    with pytest.raises(ValueError):
        MemoryBlockDevice("ram", 4).write(0, b"abc")


def test_file_device(tmp_path):
    image = tmp_path / "disk.img"
    image.write_bytes(bytes(8 * 512))
    dev = FileBlockDevice("sdb", image)
    assert dev.sectors == 8
    dev.write(1, sector(3) + sector(4))
    assert dev.read(1, 2) == sector(3) + sector(4)
    assert image.read_bytes()[512:1024] == sector(3)
    with pytest.raises(BlockError):
        dev.read(7, 2)


def test_partition_device_offsets_into_parent():
    parent = MemoryBlockDevice("sda", 16)
    part = PartitionDevice("sda1", parent, 1, 10, 4)
    part.write(0, sector(9))
    assert parent.read(10, 1) == sector(9)
    assert part.read(0, 1) == sector(9)


def test_mbr_round_trip_and_signature_bytes():
    mbr = Mbr(
        parts=[MbrPartition(type=0x83, lba_start=1, sector_count=2048)]
        + [MbrPartition() for _ in range(3)],
        signature=MBR_SIGNATURE,
    )
    data = mbr.to_bytes()
    assert len(data) == 512
    assert data[510:512] == MBR_SIGNATURE.to_bytes(2, "little")
    assert parse_mbr(data) == mbr


def test_parse_mbr_wrong_size():
    with pytest.raises(ValueError):
        parse_mbr(bytes(100))


def test_read_mbr_of_blank_device():
    mbr = read_mbr(MemoryBlockDevice("x", 1))
    assert mbr.signature == 0
    assert all(p.type == 0 for p in mbr.parts)


def test_scan_blank_device_finds_nothing(registry):
    assert registry.scan_partitions(registry.find("sda")) == []
    assert registry.partitions == []


def test_create_partition(registry):
    dev = registry.find("sda")
    part = registry.create_partition(dev, 1, 1, 1)
    assert part.name == "sda1"
    assert part.sectors == 2048
    assert part.start_lba == 1
    assert registry.find("sda1") is part
    assert registry.find_partition("sda1") is part
    mbr = read_mbr(dev)
    assert mbr.signature == MBR_SIGNATURE
    assert mbr.parts[0].type == 0x83


def test_find_prefers_devices(registry):
    assert registry.find("sda") is registry.devices[0]
    assert registry.find_partition("sda") is None
    assert registry.find("missing") is None


def test_existing_partition_rejected(registry):
    dev = registry.find("sda")
    registry.create_partition(dev, 1, 1, 1)
    with pytest.raises(BlockError):
        registry.create_partition(dev, 1, 5000, 1)


def test_overlap_rejected(registry):
    dev = registry.find("sda")
    registry.create_partition(dev, 1, 1, 1)
    with pytest.raises(BlockError):
        registry.create_partition(dev, 2, 100, 1)
    assert len(registry.partitions) == 1


def test_bad_partition_number(registry):
    dev = registry.find("sda")
    with pytest.raises(ValueError):
        registry.create_partition(dev, 5, 1, 1)
    with pytest.raises(ValueError):
        registry.delete_partition(dev, 0)


def test_delete_partition(registry):
    dev = registry.find("sda")
    registry.create_partition(dev, 1, 1, 1)
    registry.create_partition(dev, 2, 4000, 1)
    registry.delete_partition(dev, 1)
    assert registry.find("sda1") is None
    assert [p.name for p in registry.partitions] == ["sda2"]
    assert read_mbr(dev).parts[0].type == 0


def test_delete_missing_partition(registry):
    with pytest.raises(BlockError):
        registry.delete_partition(registry.find("sda"), 3)


def test_rescan_rebuilds_from_disk(registry):
    dev = registry.find("sda")
    registry.create_partition(dev, 3, 10, 1)
    fresh = BlockRegistry()
    fresh.add_device(dev)
    fresh.rescan()
    assert [(p.name, p.start_lba, p.sectors) for p in fresh.partitions] == [
        (p.name, p.start_lba, p.sectors) for p in registry.partitions
    ]


def test_scan_does_not_duplicate(registry):
    dev = registry.find("sda")
    registry.create_partition(dev, 1, 1, 1)
    assert registry.scan_partitions(dev) == []
    assert len(registry.partitions) == 1


def test_device_limit():
    reg = BlockRegistry()
    for i in range(MAX_BLOCK_DEVICES):
        reg.add_device(MemoryBlockDevice(f"d{i}", 1))
    with pytest.raises(BlockError):
        reg.add_device(MemoryBlockDevice("extra", 1))
    assert len(reg.devices) == MAX_BLOCK_DEVICES