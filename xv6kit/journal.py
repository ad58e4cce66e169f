"""A redo log that makes groups of block writes atomic.

The on-disk log is a header block holding the sector numbers of the
logged blocks, followed by copies of those blocks. Committing writes the
header, copies the blocks to their home sectors and then clears the
header again; recovery repeats the copy for a header left behind.
"""

from __future__ import annotations

import struct
import threading
from contextlib import contextmanager
from typing import Iterator

from .disk import Buffer, BufferCache
from .layout import BSIZE, LOGSIZE, ROOTDEV, KernelPanic, Superblock

_HEADER = struct.Struct(f"<i{LOGSIZE}i")


class Log:
    """The file system log; at most one transaction is open at a time."""

    def __init__(
        self,
        cache: BufferCache,
        dev: int = ROOTDEV,
        superblock: Superblock | None = None,
    ) -> None:
        if _HEADER.size >= BSIZE:
            raise KernelPanic("initlog: too big logheader")
        self.cache = cache
        self.dev = dev
        if superblock is None:
            bp = cache.read(dev, 1)
            try:
                superblock = Superblock.from_bytes(bp.data)
            finally:
                cache.release(bp)
        self.start = superblock.size - superblock.nlog
        self.size = superblock.nlog
        self.sectors: list[int] = []
        self.in_transaction = False
        self._cond = threading.Condition()
        self.recover()

    def _install(self) -> None:
        """Copy committed blocks from the log to their home sectors."""
        for tail, sector in enumerate(self.sectors):
            lbuf = self.cache.read(self.dev, self.start + tail + 1)
            dbuf = self.cache.read(self.dev, sector)
            try:
                dbuf.data[:] = lbuf.data
                self.cache.write(dbuf)
            finally:
                self.cache.release(lbuf)
                self.cache.release(dbuf)

    def _read_head(self) -> None:
        bp = self.cache.read(self.dev, self.start)
        try:
            n, *sectors = _HEADER.unpack_from(bp.data)
        finally:
            self.cache.release(bp)
        self.sectors = sectors[:n]

    def _write_head(self) -> None:
        bp = self.cache.read(self.dev, self.start)
        try:
            padded = self.sectors + [0] * (LOGSIZE - len(self.sectors))
            bp.data[:_HEADER.size] = _HEADER.pack(len(self.sectors), *padded)
            self.cache.write(bp)
        finally:
            self.cache.release(bp)

    def recover(self) -> None:
        """Install any committed transaction found on disk, then clear the log."""
        self._read_head()
        self._install()
        self.sectors = []
        self._write_head()

    def begin(self) -> None:
        """Start a transaction, waiting for any other one to finish."""
        with self._cond:
            while self.in_transaction:
                self._cond.wait()
            self.in_transaction = True

    def commit(self) -> None:
        """Make the transaction's writes durable and end the transaction."""
        if self.sectors:
            self._write_head()
            self._install()
            self.sectors = []
            self._write_head()
        with self._cond:
            self.in_transaction = False
            self._cond.notify_all()

    @contextmanager
    def transaction(self) -> Iterator[Log]:
        """Run the body of a ``with`` statement as one transaction."""
        self.begin()
        try:
            yield self
        finally:
            self.commit()

    def write(self, buf: Buffer) -> None:
        """Record a modified, held buffer in the log instead of writing it home."""
        if len(self.sectors) >= LOGSIZE or len(self.sectors) >= self.size - 1:
            raise KernelPanic("too big a transaction")
        if not self.in_transaction:
            raise KernelPanic("write outside of trans")
        try:
            i = self.sectors.index(buf.sector)
        except ValueError:
            i = len(self.sectors)
        lbuf = self.cache.read(buf.dev, self.start + i + 1)
        try:
            lbuf.data[:] = buf.data
            self.cache.write(lbuf)
        finally:
            self.cache.release(lbuf)
        if i == len(self.sectors):
            self.sectors.append(buf.sector)