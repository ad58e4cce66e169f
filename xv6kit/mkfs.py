"""Build a file system image holding a root directory and a set of files."""

from __future__ import annotations

import struct
import sys
from typing import BinaryIO, Iterable

from .layout import (
    BPB,
    BSIZE,
    DINODE_SIZE,
    IPB,
    LOGSIZE,
    MAXFILE,
    NDIRECT,
    NINDIRECT,
    ROOTINO,
    DiskInode,
    Dirent,
    FileType,
    Superblock,
    iblock,
)

_INDIRECT = struct.Struct(f"<{NINDIRECT}I")


class ImageBuilder:
    """Lays out a fresh file system in a seekable binary file object.

    The constructor writes the zeroed image, the super block and a root
    directory holding "." and ".."; ``finish`` writes the block bitmap.
    """

    def __init__(
        self,
        fileobj: BinaryIO,
        size: int = 1024,
        nblocks: int = 985,
        ninodes: int = 200,
        nlog: int = LOGSIZE,
    ) -> None:
        self.fileobj = fileobj
        self.size = size
        self.nblocks = nblocks
        self.ninodes = ninodes
        self.nlog = nlog
        self.bitblocks = size // BPB + 1
        self.reserved = ninodes // IPB + 3 + self.bitblocks
        self.used_blocks = self.reserved
        self.free_block = self.reserved
        self.free_inode = 1
        if nblocks + self.reserved + nlog != size:
            raise ValueError(
                f"{nblocks} data + {self.reserved} used + {nlog} log blocks != {size}"
            )

        zero = bytes(BSIZE)
        for sec in range(size):
            self.write_sector(sec, zero)
        self.superblock = Superblock(size, nblocks, ninodes, nlog)
        self.write_sector(1, self.superblock.pack().ljust(BSIZE, b"\0"))

        self.root = self.alloc_inode(FileType.DIR)
        if self.root != ROOTINO:
            raise ValueError("root directory did not get the root inode number")
        self.append(self.root, Dirent(self.root, ".").pack())
        self.append(self.root, Dirent(self.root, "..").pack())

    def write_sector(self, sec: int, data: bytes) -> None:
        if len(data) != BSIZE:
            raise ValueError(f"a sector is {BSIZE} bytes, got {len(data)}")
        self.fileobj.seek(sec * BSIZE)
        self.fileobj.write(data)

    def read_sector(self, sec: int) -> bytes:
        self.fileobj.seek(sec * BSIZE)
        data = self.fileobj.read(BSIZE)
        if len(data) != BSIZE:
            raise OSError(f"read: short read of sector {sec}")
        return data

    def read_inode(self, inum: int) -> DiskInode:
        start = (inum % IPB) * DINODE_SIZE
        block = self.read_sector(iblock(inum))
        return DiskInode.from_bytes(block[start:start + DINODE_SIZE])

    def write_inode(self, inum: int, din: DiskInode) -> None:
        sec = iblock(inum)
        start = (inum % IPB) * DINODE_SIZE
        block = bytearray(self.read_sector(sec))
        block[start:start + DINODE_SIZE] = din.pack()
        self.write_sector(sec, bytes(block))

    def alloc_inode(self, type: int) -> int:
        """Allocate the next inode number with one link and return it."""
        inum = self.free_inode
        self.free_inode += 1
        self.write_inode(inum, DiskInode(type=int(type), nlink=1, size=0))
        return inum

    def _take_block(self) -> int:
        block = self.free_block
        self.free_block += 1
        self.used_blocks += 1
        return block

    def append(self, inum: int, data: bytes) -> None:
        """Append ``data`` to the end of inode ``inum``."""
        data = bytes(data)
        din = self.read_inode(inum)
        off = din.size
        pos = 0
        while pos < len(data):
            fbn = off // BSIZE
            if fbn >= MAXFILE:
                raise ValueError("file too large")
            if fbn < NDIRECT:
                if din.addrs[fbn] == 0:
                    din.addrs[fbn] = self._take_block()
                target = din.addrs[fbn]
            else:
                if din.addrs[NDIRECT] == 0:
                    din.addrs[NDIRECT] = self._take_block()
                indirect = list(_INDIRECT.unpack(self.read_sector(din.addrs[NDIRECT])))
                if indirect[fbn - NDIRECT] == 0:
                    indirect[fbn - NDIRECT] = self._take_block()
                    self.write_sector(din.addrs[NDIRECT], _INDIRECT.pack(*indirect))
                target = indirect[fbn - NDIRECT]
            n1 = min(len(data) - pos, (fbn + 1) * BSIZE - off)
            block = bytearray(self.read_sector(target))
            start = off - fbn * BSIZE
            block[start:start + n1] = data[pos:pos + n1]
            self.write_sector(target, bytes(block))
            pos += n1
            off += n1
        din.size = off
        self.write_inode(inum, din)

    def add_file(self, name: str, data: bytes) -> int:
        """Add a file to the root directory; one leading "_" is dropped from its name."""
        if "/" in name:
            raise ValueError(f"{name}: file names may not contain '/'")
        if name.startswith("_"):
            name = name[1:]
        inum = self.alloc_inode(FileType.FILE)
        self.append(self.root, Dirent(inum, name).pack())
        self.append(inum, data)
        return inum

    def write_bitmap(self, used: int) -> int:
        """Mark the first ``used`` blocks in use and return the bitmap's sector."""
        if used >= BPB:
            raise ValueError(f"at most {BPB - 1} blocks can be marked used")
        bitmap = bytearray(BSIZE)
        for i in range(used):
            bitmap[i // 8] |= 1 << (i % 8)
        sector = self.ninodes // IPB + 3
        self.write_sector(sector, bytes(bitmap))
        return sector

    def finish(self) -> int:
        """Round the root directory up to a whole block and write the bitmap."""
        din = self.read_inode(self.root)
        din.size = (din.size // BSIZE + 1) * BSIZE
        self.write_inode(self.root, din)
        return self.write_bitmap(self.used_blocks)


def _build(fileobj: BinaryIO, names: Iterable[str], out=None) -> ImageBuilder:
    builder = ImageBuilder(fileobj)
    if out is not None:
        total = builder.nblocks + builder.reserved + builder.nlog
        print(
            f"used {builder.reserved} (bit {builder.bitblocks} "
            f"ninode {builder.ninodes // IPB + 1}) free {builder.free_block} "
            f"log {builder.nlog} total {total}",
            file=out,
        )
    for name in names:
        name = str(name)
        if "/" in name:
            raise ValueError(f"{name}: file names may not contain '/'")
        with open(name, "rb") as src:
            data = src.read()
        builder.add_file(name, data)
    used = builder.used_blocks
    sector = builder.finish()
    if out is not None:
        print(f"balloc: first {used} blocks have been allocated", file=out)
        print(f"balloc: write bitmap block at sector {sector}", file=out)
    return builder


def build_image(path, files: Iterable) -> None:
    """Write an image at ``path`` holding the named files from the current directory."""
    with open(path, "w+b") as fileobj:
        _build(fileobj, files)


def main(argv=None) -> int:
    args = sys.argv[1:] if argv is None else list(argv)
    if not args:
        print("Usage: mkfs fs.img files...", file=sys.stderr)
        return 1
    image, *names = args
    try:
        with open(image, "w+b") as fileobj:
            _build(fileobj, names, sys.stdout)
    except OSError as exc:
        print(f"{exc.filename or image}: {exc.strerror or exc}", file=sys.stderr)
        return 1
    except ValueError as exc:
        print(f"mkfs: {exc}", file=sys.stderr)
        return 1
    return 0