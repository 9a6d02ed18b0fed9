[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "mfsdisk"
version = "0.1.0"
description = "Read, write and manage MFS filesystems and MBR partitions on disk images"
requires-python = ">=3.10"
dependencies = []
keywords = ["filesystem", "mbr", "partition", "disk-image", "inode", "vfs"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Filesystems",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
mfsdisk = "mfsdisk.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["mfsdisk"]

[tool.pytest.ini_options]
addopts = "-ra"
