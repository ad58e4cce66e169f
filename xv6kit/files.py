"""Open files and pipes: the table of open files shared by all processes."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import Enum

from .filesystem import FileSystem, Inode
from .layout import BSIZE, LOGSIZE, NFILE, FsError, KernelPanic, Stat

PIPESIZE = 512

# Bytes written per transaction: room for the inode, an indirect block,
# allocation bitmap blocks and two blocks of slop for unaligned writes.
_MAX_WRITE = ((LOGSIZE - 1 - 1 - 2) // 2) * BSIZE


class FileKind(Enum):
    """What an open file refers to."""

    NONE = 0
    PIPE = 1
    INODE = 2


class Pipe:
    """A bounded byte channel between a reading end and a writing end."""

    def __init__(self) -> None:
        self._buf = bytearray()
        self.read_open = True
        self.write_open = True
        self._cond = threading.Condition()

    @property
    def closed(self) -> bool:
        """True once both ends have been closed."""
        return not self.read_open and not self.write_open

    def close(self, writable: bool) -> None:
        """Close the writing end if ``writable`` is true, else the reading end."""
        with self._cond:
            if writable:
                self.write_open = False
            else:
                self.read_open = False
            self._cond.notify_all()

    def write(self, data: bytes) -> int:
        """Write all of ``data``, waiting for the reader while the pipe is full."""
        data = bytes(data)
        done = 0
        with self._cond:
            while done < len(data):
                while len(self._buf) == PIPESIZE:
                    if not self.read_open:
                        raise FsError("pipe: read end closed")
                    self._cond.notify_all()
                    self._cond.wait()
                room = PIPESIZE - len(self._buf)
                chunk = data[done:done + room]
                self._buf += chunk
                done += len(chunk)
            self._cond.notify_all()
        return len(data)

    def read(self, n: int) -> bytes:
        """Read up to ``n`` bytes; empty once the pipe is drained and the writer gone."""
        with self._cond:
            while not self._buf and self.write_open:
                self._cond.wait()
            count = max(n, 0)
            out = bytes(self._buf[:count])
            del self._buf[:count]
            self._cond.notify_all()
        return out


@dataclass(eq=False)
class File:
    """An entry in the open file table."""

    kind: FileKind = FileKind.NONE
    ref: int = 0
    readable: bool = False
    writable: bool = False
    pipe: Pipe | None = None
    ip: Inode | None = None
    off: int = 0


class FileTable:
    """A fixed number of open file slots on top of a file system."""

    def __init__(self, fs: FileSystem | None, nfile: int = NFILE) -> None:
        self.fs = fs
        self._files = [File() for _ in range(nfile)]
        self._lock = threading.Lock()

    def alloc(self) -> File:
        """Take a free slot and return it with one reference."""
        with self._lock:
            for f in self._files:
                if f.ref == 0:
                    f.ref = 1
                    return f
        raise FsError("file table full")

    def dup(self, f: File) -> File:
        """Add a reference to an open file."""
        with self._lock:
            if f.ref < 1:
                raise KernelPanic("filedup")
            f.ref += 1
        return f

    def close(self, f: File) -> None:
        """Drop a reference; on the last one release the pipe end or inode."""
        with self._lock:
            if f.ref < 1:
                raise KernelPanic("fileclose")
            f.ref -= 1
            if f.ref > 0:
                return
            kind, pipe, ip, writable = f.kind, f.pipe, f.ip, f.writable
            f.kind, f.pipe, f.ip = FileKind.NONE, None, None
            f.readable = f.writable = False
            f.off = 0
        if kind is FileKind.PIPE and pipe is not None:
            pipe.close(writable)
        elif kind is FileKind.INODE and ip is not None:
            with self.fs.log.transaction():
                self.fs.put(ip)

    def stat(self, f: File) -> Stat:
        """Metadata of the inode behind an open file."""
        if f.kind is not FileKind.INODE:
            raise FsError("stat: not an inode")
        self.fs.lock(f.ip)
        try:
            return self.fs.stat(f.ip)
        finally:
            self.fs.unlock(f.ip)

    def read(self, f: File, n: int) -> bytes:
        """Read up to ``n`` bytes from the file's current offset."""
        if not f.readable:
            raise FsError("file not open for reading")
        if f.kind is FileKind.PIPE:
            return f.pipe.read(n)
        if f.kind is FileKind.INODE:
            self.fs.lock(f.ip)
            try:
                data = self.fs.read(f.ip, f.off, n)
                f.off += len(data)
            finally:
                self.fs.unlock(f.ip)
            return data
        raise KernelPanic("fileread")

    def write(self, f: File, data: bytes) -> int:
        """Write ``data`` at the file's current offset and return its length."""
        if not f.writable:
            raise FsError("file not open for writing")
        if f.kind is FileKind.PIPE:
            return f.pipe.write(data)
        if f.kind is FileKind.INODE:
            data = bytes(data)
            done = 0
            while done < len(data):
                chunk = data[done:done + _MAX_WRITE]
                with self.fs.log.transaction():
                    self.fs.lock(f.ip)
                    try:
                        r = self.fs.write(f.ip, chunk, f.off)
                        if r > 0:
                            f.off += r
                    finally:
                        self.fs.unlock(f.ip)
                if r != len(chunk):
                    raise KernelPanic("short filewrite")
                done += r
            return len(data)
        raise KernelPanic("filewrite")

    def pipe(self) -> tuple[File, File]:
        """Create a pipe and return its reading and writing files."""
        reader = self.alloc()
        try:
            writer = self.alloc()
        except FsError:
            self.close(reader)
            raise
        p = Pipe()
        reader.kind, reader.readable, reader.writable, reader.pipe = FileKind.PIPE, True, False, p
        writer.kind, writer.readable, writer.writable, writer.pipe = FileKind.PIPE, False, True, p
        return reader, writer