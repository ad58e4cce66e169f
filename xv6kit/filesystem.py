"""Blocks, inodes, directories and path names on an on-disk file system."""

from __future__ import annotations

import struct
import threading
from dataclasses import dataclass, field
from typing import Callable

from .disk import BufferCache
from .journal import Log
from .layout import (
    BPB,
    BSIZE,
    DINODE_SIZE,
    DIRENT_SIZE,
    DIRSIZ,
    IPB,
    MAXFILE,
    NDEV,
    NDIRECT,
    NINDIRECT,
    NINODE,
    ROOTDEV,
    ROOTINO,
    DiskInode,
    Dirent,
    FileType,
    FsError,
    KernelPanic,
    Stat,
    Superblock,
    bblock,
    iblock,
)

_UINT = struct.Struct("<I")

DeviceRead = Callable[["Inode", int], bytes]
DeviceWrite = Callable[["Inode", bytes], int]


@dataclass(eq=False)
class Inode:
    """In-memory copy of an inode, with its cache reference count and lock state."""

    dev: int = 0
    inum: int = 0
    ref: int = 0
    busy: bool = False
    valid: bool = False
    type: int = 0
    major: int = 0
    minor: int = 0
    nlink: int = 0
    size: int = 0
    addrs: list[int] = field(default_factory=lambda: [0] * (NDIRECT + 1))


def skipelem(path: str) -> tuple[str, str] | None:
    """Split off the first path element, truncated to DIRSIZ characters.

    Returns the element and the rest of the path without leading slashes,
    or None when there is no element left.
    """
    path = path.lstrip("/")
    if not path:
        return None
    name, _, rest = path.partition("/")
    return name[:DIRSIZ], rest.lstrip("/")


def namecmp(s: str, t: str) -> int:
    """Compare two directory entry names over their first DIRSIZ characters."""
    a, b = s[:DIRSIZ], t[:DIRSIZ]
    return (a > b) - (a < b)


def _slot(inum: int) -> slice:
    start = (inum % IPB) * DINODE_SIZE
    return slice(start, start + DINODE_SIZE)


class FileSystem:
    """The file system on one device, with its inode cache and log."""

    def __init__(self, cache: BufferCache, dev: int = ROOTDEV, ninode: int = NINODE) -> None:
        self.cache = cache
        self.dev = dev
        self._inodes = [Inode() for _ in range(ninode)]
        self._cond = threading.Condition()
        self._devsw: dict[int, tuple[DeviceRead | None, DeviceWrite | None]] = {}
        self.log = Log(cache, dev, self.read_superblock())

    def read_superblock(self) -> Superblock:
        bp = self.cache.read(self.dev, 1)
        try:
            return Superblock.from_bytes(bp.data)
        finally:
            self.cache.release(bp)

    def register_device(
        self, major: int, read: DeviceRead | None, write: DeviceWrite | None
    ) -> None:
        """Install the read and write functions for a major device number."""
        if not 0 <= major < NDEV:
            raise ValueError(f"major device number must be below {NDEV}")
        self._devsw[major] = (read, write)

    def _device(self, ip: Inode, which: int):
        handler = None
        if 0 <= ip.major < NDEV and ip.major in self._devsw:
            handler = self._devsw[ip.major][which]
        if handler is None:
            raise FsError(f"no device for major number {ip.major}")
        return handler

    # Blocks.

    def _zero_block(self, bno: int) -> None:
        bp = self.cache.read(self.dev, bno)
        try:
            bp.data[:] = bytes(BSIZE)
            self.log.write(bp)
        finally:
            self.cache.release(bp)

    def alloc_block(self) -> int:
        """Allocate a zeroed disk block and return its number."""
        sb = self.read_superblock()
        for b in range(0, sb.size, BPB):
            bp = self.cache.read(self.dev, bblock(b, sb.ninodes))
            for bi in range(min(BPB, sb.size - b)):
                m = 1 << (bi % 8)
                if not bp.data[bi // 8] & m:
                    bp.data[bi // 8] |= m
                    try:
                        self.log.write(bp)
                    finally:
                        self.cache.release(bp)
                    self._zero_block(b + bi)
                    return b + bi
            self.cache.release(bp)
        raise KernelPanic("balloc: out of blocks")

    def free_block(self, b: int) -> None:
        """Mark a disk block free in the bitmap."""
        sb = self.read_superblock()
        bp = self.cache.read(self.dev, bblock(b, sb.ninodes))
        try:
            bi = b % BPB
            m = 1 << (bi % 8)
            if not bp.data[bi // 8] & m:
                raise KernelPanic("freeing free block")
            bp.data[bi // 8] &= ~m & 0xFF
            self.log.write(bp)
        finally:
            self.cache.release(bp)

    # Inodes.

    def alloc_inode(self, type: int) -> Inode:
        """Allocate a free on-disk inode of the given type and return it unlocked."""
        sb = self.read_superblock()
        for inum in range(1, sb.ninodes):
            bp = self.cache.read(self.dev, iblock(inum))
            try:
                dip = DiskInode.from_bytes(bp.data[_slot(inum)])
                if dip.type == 0:
                    bp.data[_slot(inum)] = DiskInode(type=int(type)).pack()
                    self.log.write(bp)
                    break
            finally:
                self.cache.release(bp)
        else:
            raise KernelPanic("ialloc: no inodes")
        return self.get_inode(inum)

    def update_inode(self, ip: Inode) -> None:
        """Copy a changed in-memory inode to disk."""
        bp = self.cache.read(ip.dev, iblock(ip.inum))
        try:
            dip = DiskInode(ip.type, ip.major, ip.minor, ip.nlink, ip.size, list(ip.addrs))
            bp.data[_slot(ip.inum)] = dip.pack()
            self.log.write(bp)
        finally:
            self.cache.release(bp)

    def get_inode(self, inum: int) -> Inode:
        """Return the cached inode for ``inum``, unlocked, with one more reference."""
        with self._cond:
            empty = None
            for ip in self._inodes:
                if ip.ref > 0 and ip.dev == self.dev and ip.inum == inum:
                    ip.ref += 1
                    return ip
                if empty is None and ip.ref == 0:
                    empty = ip
            if empty is None:
                raise KernelPanic("iget: no inodes")
            empty.dev, empty.inum, empty.ref = self.dev, inum, 1
            empty.busy = empty.valid = False
            return empty

    def dup(self, ip: Inode) -> Inode:
        with self._cond:
            ip.ref += 1
        return ip

    def lock(self, ip: Inode) -> None:
        """Lock an inode, reading it from disk if needed."""
        if ip is None or ip.ref < 1:
            raise KernelPanic("ilock")
        with self._cond:
            while ip.busy:
                self._cond.wait()
            ip.busy = True
        if not ip.valid:
            bp = self.cache.read(ip.dev, iblock(ip.inum))
            try:
                dip = DiskInode.from_bytes(bp.data[_slot(ip.inum)])
            finally:
                self.cache.release(bp)
            ip.type, ip.major, ip.minor = dip.type, dip.major, dip.minor
            ip.nlink, ip.size, ip.addrs = dip.nlink, dip.size, list(dip.addrs)
            ip.valid = True
            if ip.type == 0:
                raise KernelPanic("ilock: no type")

    def unlock(self, ip: Inode) -> None:
        if ip is None or not ip.busy or ip.ref < 1:
            raise KernelPanic("iunlock")
        with self._cond:
            ip.busy = False
            self._cond.notify_all()

    def put(self, ip: Inode) -> None:
        """Drop a reference; free the inode on disk if it was the last link."""
        with self._cond:
            free = ip.ref == 1 and ip.valid and ip.nlink == 0
            if free:
                if ip.busy:
                    raise KernelPanic("iput busy")
                ip.busy = True
        if free:
            self.truncate(ip)
            ip.type = 0
            self.update_inode(ip)
        with self._cond:
            if free:
                ip.busy = ip.valid = False
                self._cond.notify_all()
            ip.ref -= 1

    def unlock_put(self, ip: Inode) -> None:
        self.unlock(ip)
        self.put(ip)

    # Inode contents.

    def block_map(self, ip: Inode, bn: int) -> int:
        """Disk address of block ``bn`` of the inode, allocating it if absent."""
        if bn < NDIRECT:
            if ip.addrs[bn] == 0:
                ip.addrs[bn] = self.alloc_block()
            return ip.addrs[bn]
        bn -= NDIRECT
        if bn < NINDIRECT:
            if ip.addrs[NDIRECT] == 0:
                ip.addrs[NDIRECT] = self.alloc_block()
            bp = self.cache.read(ip.dev, ip.addrs[NDIRECT])
            try:
                (addr,) = _UINT.unpack_from(bp.data, bn * 4)
                if addr == 0:
                    addr = self.alloc_block()
                    _UINT.pack_into(bp.data, bn * 4, addr)
                    self.log.write(bp)
            finally:
                self.cache.release(bp)
            return addr
        raise KernelPanic("bmap: out of range")

    def truncate(self, ip: Inode) -> None:
        """Free all of an inode's blocks and set its size to zero."""
        for i, addr in enumerate(ip.addrs[:NDIRECT]):
            if addr:
                self.free_block(addr)
                ip.addrs[i] = 0
        if ip.addrs[NDIRECT]:
            bp = self.cache.read(ip.dev, ip.addrs[NDIRECT])
            try:
                table = [a for (a,) in _UINT.iter_unpack(bytes(bp.data))]
            finally:
                self.cache.release(bp)
            for addr in table:
                if addr:
                    self.free_block(addr)
            self.free_block(ip.addrs[NDIRECT])
            ip.addrs[NDIRECT] = 0
        ip.size = 0
        self.update_inode(ip)

    def stat(self, ip: Inode) -> Stat:
        return Stat(type=ip.type, dev=ip.dev, ino=ip.inum, nlink=ip.nlink, size=ip.size)

    def read(self, ip: Inode, off: int, n: int) -> bytes:
        """Read up to ``n`` bytes at ``off``; the inode must be locked."""
        if ip.type == FileType.DEVICE:
            return self._device(ip, 0)(ip, n)
        if off < 0 or n < 0 or off > ip.size:
            raise FsError("read out of range")
        n = min(n, ip.size - off)
        out = bytearray()
        while len(out) < n:
            pos = off + len(out)
            bp = self.cache.read(ip.dev, self.block_map(ip, pos // BSIZE))
            try:
                start = pos % BSIZE
                m = min(n - len(out), BSIZE - start)
                out += bp.data[start:start + m]
            finally:
                self.cache.release(bp)
        return bytes(out)

    def write(self, ip: Inode, data: bytes, off: int) -> int:
        """Write ``data`` at ``off``; the inode must be locked, inside a transaction."""
        if ip.type == FileType.DEVICE:
            return self._device(ip, 1)(ip, bytes(data))
        n = len(data)
        if off < 0 or off > ip.size:
            raise FsError("write out of range")
        if off + n > MAXFILE * BSIZE:
            raise FsError("file too large")
        done = 0
        while done < n:
            pos = off + done
            bp = self.cache.read(ip.dev, self.block_map(ip, pos // BSIZE))
            try:
                start = pos % BSIZE
                m = min(n - done, BSIZE - start)
                bp.data[start:start + m] = data[done:done + m]
                self.log.write(bp)
            finally:
                self.cache.release(bp)
            done += m
        if n > 0 and off + n > ip.size:
            ip.size = off + n
            self.update_inode(ip)
        return n

    # Directories.

    def _entries(self, dp: Inode):
        for off in range(0, dp.size, DIRENT_SIZE):
            raw = self.read(dp, off, DIRENT_SIZE)
            if len(raw) != DIRENT_SIZE:
                raise KernelPanic("dirlink read")
            yield off, Dirent.from_bytes(raw)

    def lookup(self, dp: Inode, name: str) -> tuple[Inode, int] | None:
        """Find ``name`` in the locked directory ``dp``.

        Returns the unlocked inode and the byte offset of its entry, or None.
        """
        if dp.type != FileType.DIR:
            raise KernelPanic("dirlookup not DIR")
        for off, de in self._entries(dp):
            if de.inum and namecmp(name, de.name) == 0:
                return self.get_inode(de.inum), off
        return None

    def link(self, dp: Inode, name: str, inum: int) -> None:
        """Add the entry (name, inum) to the locked directory ``dp``."""
        found = self.lookup(dp, name)
        if found is not None:
            self.put(found[0])
            raise FsError(f"{name}: entry exists")
        off = 0
        for off, de in self._entries(dp):
            if de.inum == 0:
                break
        else:
            off = -(-dp.size // DIRENT_SIZE) * DIRENT_SIZE
        if self.write(dp, Dirent(inum, name[:DIRSIZ]).pack(), off) != DIRENT_SIZE:
            raise KernelPanic("dirlink")

    # Paths.

    def _namex(self, path: str, parent: bool, cwd: Inode | None):
        if path.startswith("/") or cwd is None:
            ip = self.get_inode(ROOTINO)
        else:
            ip = self.dup(cwd)
        while (elem := skipelem(path)) is not None:
            name, path = elem
            self.lock(ip)
            if ip.type != FileType.DIR:
                self.unlock_put(ip)
                raise FsError(f"{name}: not in a directory")
            if parent and path == "":
                self.unlock(ip)
                return ip, name
            found = self.lookup(ip, name)
            self.unlock_put(ip)
            if found is None:
                raise FsError(f"{name}: no such file or directory")
            ip = found[0]
        if parent:
            self.put(ip)
            raise FsError("path has no final element")
        return ip

    def namei(self, path: str, cwd: Inode | None = None) -> Inode:
        """Return the unlocked inode named by ``path``; relative to ``cwd`` or the root."""
        return self._namex(path, False, cwd)

    def nameiparent(self, path: str, cwd: Inode | None = None) -> tuple[Inode, str]:
        """Return the unlocked parent directory of ``path`` and the final element."""
        return self._namex(path, True, cwd)