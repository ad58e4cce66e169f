"""On-disk file system format, kernel parameters and shared error types."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from enum import IntEnum

# Kernel parameters.
NPROC = 64
KSTACKSIZE = 4096
NCPU = 8
NOFILE = 16
NFILE = 100
NBUF = 10
NINODE = 50
NDEV = 10
ROOTDEV = 1
MAXARG = 32
LOGSIZE = 10

# On-disk format.
ROOTINO = 1
BSIZE = 512
NDIRECT = 12
NINDIRECT = BSIZE // 4
MAXFILE = NDIRECT + NINDIRECT
DIRSIZ = 14

_SUPERBLOCK = struct.Struct("<4I")
_DINODE = struct.Struct(f"<4hI{NDIRECT + 1}I")
_DIRENT = struct.Struct(f"<H{DIRSIZ}s")

SUPERBLOCK_SIZE = _SUPERBLOCK.size
DINODE_SIZE = _DINODE.size
DIRENT_SIZE = _DIRENT.size

IPB = BSIZE // DINODE_SIZE
BPB = BSIZE * 8


class KernelPanic(Exception):
    """An unrecoverable inconsistency detected by the kernel code."""


class FsError(Exception):
    """A file system operation that failed in an ordinary way."""


class FileType(IntEnum):
    """Type of an inode; a free on-disk inode has type 0."""

    DIR = 1
    FILE = 2
    DEVICE = 3


def _unpack(layout: struct.Struct, data: bytes, what: str) -> tuple:
    if len(data) < layout.size:
        raise ValueError(f"{what} needs {layout.size} bytes, got {len(data)}")
    return layout.unpack_from(data)


@dataclass
class Superblock:
    """File system super block, stored in block 1."""

    size: int = 0
    nblocks: int = 0
    ninodes: int = 0
    nlog: int = 0

    def pack(self) -> bytes:
        return _SUPERBLOCK.pack(self.size, self.nblocks, self.ninodes, self.nlog)

    @classmethod
    def from_bytes(cls, data: bytes) -> Superblock:
        return cls(*_unpack(_SUPERBLOCK, data, "superblock"))


@dataclass
class DiskInode:
    """On-disk inode structure."""

    type: int = 0
    major: int = 0
    minor: int = 0
    nlink: int = 0
    size: int = 0
    addrs: list[int] = field(default_factory=lambda: [0] * (NDIRECT + 1))

    def pack(self) -> bytes:
        if len(self.addrs) != NDIRECT + 1:
            raise ValueError(f"an inode holds exactly {NDIRECT + 1} addresses")
        return _DINODE.pack(
            self.type, self.major, self.minor, self.nlink, self.size, *self.addrs
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> DiskInode:
        type_, major, minor, nlink, size, *addrs = _unpack(_DINODE, data, "inode")
        return cls(type_, major, minor, nlink, size, list(addrs))


@dataclass
class Dirent:
    """Directory entry: an inode number and a name of at most DIRSIZ bytes."""

    inum: int = 0
    name: str = ""

    def pack(self) -> bytes:
        # struct pads with NULs and truncates to DIRSIZ, as strncpy does.
        return _DIRENT.pack(self.inum, self.name.encode("latin-1"))

    @classmethod
    def from_bytes(cls, data: bytes) -> Dirent:
        inum, raw = _unpack(_DIRENT, data, "directory entry")
        return cls(inum, raw.split(b"\0", 1)[0].decode("latin-1"))


@dataclass
class Stat:
    """Metadata about a file as reported by stat."""

    type: int
    dev: int
    ino: int
    nlink: int
    size: int


def iblock(inum: int) -> int:
    """Block holding inode ``inum``."""
    return inum // IPB + 2


def bblock(b: int, ninodes: int) -> int:
    """Bitmap block holding the bit for block ``b``."""
    return b // BPB + ninodes // IPB + 3