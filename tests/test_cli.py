import pytest

from mfsdisk.cli import main

SECTOR = 512


@pytest.fixture
def image(tmp_path):
    path = tmp_path / "disk.img"
    path.write_bytes(bytes(4096 * SECTOR))
    return str(path)


@pytest.fixture
def formatted(image, capsys):
    assert main([image, "format"]) == 0
    capsys.readouterr()
    return image


def test_format_then_empty_listing(image, capsys):
    assert main([image, "format"]) == 0
    capsys.readouterr()
    assert main([image, "ls"]) == 0
    assert capsys.readouterr().out == ""


def test_unformatted_image_is_rejected(image, capsys):
    assert main([image, "ls"]) == 1
    assert "not an MFS" in capsys.readouterr().err


def test_missing_image_fails(tmp_path, capsys):
    assert main([str(tmp_path / "absent.img"), "ls"]) == 1
    assert capsys.readouterr().err.startswith("mfsdisk:")


def test_write_and_cat_round_trip(formatted, capsys):
    assert main([formatted, "touch", "/a.txt"]) == 0
    assert main([formatted, "write", "/a.txt", "hello world"]) == 0
    capsys.readouterr()
    assert main([formatted, "cat", "/a.txt"]) == 0
    assert capsys.readouterr().out == "hello world\n"
    assert main([formatted, "size", "/a.txt"]) == 0
    assert capsys.readouterr().out.strip() == str(len("hello world"))


def test_listing_shows_kinds(formatted, capsys):
    main([formatted, "mkdir", "/docs"])
    main([formatted, "touch", "/a.txt"])
    main([formatted, "symlink", "/a.txt", "/l"])
    main([formatted, "link", "/a.txt", "/h"])
    capsys.readouterr()
    assert main([formatted, "ls", "/"]) == 0
    lines = capsys.readouterr().out.splitlines()
    assert lines == ["DIR  docs", "FILE a.txt", "LINK l -> /a.txt", "HLINK h"]


def test_readlink(formatted, capsys):
    main([formatted, "touch", "/a.txt"])
    main([formatted, "symlink", "/a.txt", "/l"])
    capsys.readouterr()
    assert main([formatted, "readlink", "/l"]) == 0
    assert capsys.readouterr().out == "/a.txt\n"
    assert main([formatted, "readlink", "/a.txt"]) == 1


def test_unlink_hardlink_keeps_target(formatted, capsys):
    main([formatted, "touch", "/a.txt"])
    main([formatted, "write", "/a.txt", "data"])
    main([formatted, "link", "/a.txt", "/h"])
    assert main([formatted, "unlink", "/h"]) == 0
    capsys.readouterr()
    assert main([formatted, "cat", "/a.txt"]) == 0
    assert capsys.readouterr().out == "data\n"
    assert main([formatted, "unlink", "/a.txt"]) == 1


def test_remove_file(formatted, capsys):
    main([formatted, "touch", "/a.txt"])
    assert main([formatted, "rm", "/a.txt"]) == 0
    capsys.readouterr()
    assert main([formatted, "cat", "/a.txt"]) == 1
    assert "not found" in capsys.readouterr().err


def test_rmdir_requires_empty(formatted, capsys):
    main([formatted, "mkdir", "/d"])
    main([formatted, "touch", "/d/f"])
    assert main([formatted, "rmdir", "/d"]) == 1
    assert main([formatted, "rm", "/d/f"]) == 0
    assert main([formatted, "rmdir", "/d"]) == 0
    capsys.readouterr()
    main([formatted, "ls"])
    assert capsys.readouterr().out == ""


def test_duplicate_create_fails(formatted):
    assert main([formatted, "mkdir", "/d"]) == 0
    assert main([formatted, "mkdir", "/d"]) == 1


def test_partition_lifecycle(image, capsys):
    assert main([image, "mkpart", "1", "2048", "1"]) == 0
    capsys.readouterr()
    assert main([image, "parts"]) == 0
    out = capsys.readouterr().out
    assert out.startswith("sda1 ")
    assert "start=2048" in out
    assert main([image, "-p", "1", "format"]) == 0
    assert main([image, "-p", "1", "touch", "/f"]) == 0
    assert main([image, "-p", "1", "write", "/f", "part data"]) == 0
    capsys.readouterr()
    assert main([image, "-p", "1", "cat", "/f"]) == 0
    assert capsys.readouterr().out == "part data\n"
    # the whole disk keeps its MBR, not a filesystem
    assert main([image, "ls"]) == 1


def test_remove_partition(image, capsys):
    main([image, "mkpart", "1", "2048", "1"])
    assert main([image, "rmpart", "1"]) == 0
    capsys.readouterr()
    main([image, "parts"])
    assert capsys.readouterr().out == ""
    assert main([image, "rmpart", "1"]) == 1


def test_invalid_partition_number(image, capsys):
    assert main([image, "mkpart", "5", "2048", "1"]) == 1
    assert "1-4" in capsys.readouterr().err


def test_overlapping_partition_rejected(image, capsys):
    assert main([image, "mkpart", "1", "2048", "1"]) == 0
    assert main([image, "mkpart", "2", "3000", "1"]) == 1
    assert "overlaps" in capsys.readouterr().err


def test_unknown_partition_selected(image, capsys):
    assert main([image, "-p", "2", "ls"]) == 1
    assert "partition 2" in capsys.readouterr().err