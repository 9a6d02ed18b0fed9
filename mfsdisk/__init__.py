"""MFS filesystems and MBR partitions on disk images and in-memory devices."""

__version__ = "0.1.0"