"""An in-memory disk image and the block buffer cache on top of it."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from pathlib import Path

from .layout import BSIZE, NBUF, ROOTDEV, KernelPanic


class Disk:
    """A disk whose sectors live in memory, loaded from and saved to an image."""

    def __init__(self, image: bytes = b"", dev: int = ROOTDEV) -> None:
        self.image = bytearray(image)
        self.dev = dev

    @classmethod
    def from_file(cls, path, dev: int = ROOTDEV) -> Disk:
        return cls(Path(path).read_bytes(), dev)

    def save(self, path) -> None:
        Path(path).write_bytes(bytes(self.image))

    def __len__(self) -> int:
        return len(self.image) // BSIZE

    def _check(self, sector: int) -> int:
        if not 0 <= sector < len(self):
            raise KernelPanic("iderw: sector out of range")
        return sector * BSIZE

    def read_sector(self, sector: int) -> bytes:
        start = self._check(sector)
        return bytes(self.image[start:start + BSIZE])

    def write_sector(self, sector: int, data: bytes) -> None:
        if len(data) != BSIZE:
            raise ValueError(f"a sector is {BSIZE} bytes, got {len(data)}")
        start = self._check(sector)
        self.image[start:start + BSIZE] = data


@dataclass(eq=False)
class Buffer:
    """A cached copy of one disk block."""

    dev: int = -1
    sector: int = 0
    data: bytearray = field(default_factory=lambda: bytearray(BSIZE))
    busy: bool = False
    valid: bool = False
    dirty: bool = False


class BufferCache:
    """A fixed set of buffers kept in most-recently-used order.

    A buffer returned by ``read`` is held exclusively until ``release``;
    another thread asking for the same block waits until then.
    """

    def __init__(self, disk: Disk, nbuf: int = NBUF) -> None:
        self.disk = disk
        self._buffers = [Buffer() for _ in range(nbuf)]  # index 0 is most recent
        self._cond = threading.Condition()

    def _get(self, dev: int, sector: int) -> Buffer:
        with self._cond:
            while True:
                for b in self._buffers:
                    if b.dev == dev and b.sector == sector:
                        if not b.busy:
                            b.busy = True
                            return b
                        self._cond.wait()
                        break
                else:
                    break
            for b in reversed(self._buffers):
                if not b.busy:
                    b.dev, b.sector = dev, sector
                    b.busy, b.valid, b.dirty = True, False, False
                    return b
        raise KernelPanic("bget: no buffers")

    def _sync(self, buf: Buffer) -> None:
        if not buf.busy:
            raise KernelPanic("iderw: buf not busy")
        if buf.valid and not buf.dirty:
            raise KernelPanic("iderw: nothing to do")
        if buf.dev != self.disk.dev:
            raise KernelPanic(f"iderw: request not for disk {self.disk.dev}")
        if buf.dirty:
            self.disk.write_sector(buf.sector, buf.data)
            buf.dirty = False
        else:
            buf.data[:] = self.disk.read_sector(buf.sector)
        buf.valid = True

    def read(self, dev: int, sector: int) -> Buffer:
        """Return a held buffer with the contents of the given sector."""
        buf = self._get(dev, sector)
        if not buf.valid:
            try:
                self._sync(buf)
            except Exception:
                with self._cond:
                    buf.busy = False
                    buf.dev = -1
                    self._cond.notify_all()
                raise
        return buf

    def write(self, buf: Buffer) -> None:
        """Write a held buffer's contents to disk."""
        if not buf.busy:
            raise KernelPanic("bwrite")
        buf.dirty = True
        self._sync(buf)

    def release(self, buf: Buffer) -> None:
        """Give a held buffer back; it becomes the most recently used."""
        if not buf.busy:
            raise KernelPanic("brelse")
        with self._cond:
            self._buffers.remove(buf)
            self._buffers.insert(0, buf)
            buf.busy = False
            self._cond.notify_all()