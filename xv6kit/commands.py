"""The ls, cat and echo commands, working on a file system image."""

from __future__ import annotations

import sys
from typing import Iterator

from .console import user_format
from .disk import BufferCache, Disk
from .filesystem import FileSystem, Inode
from .layout import BSIZE, DIRENT_SIZE, DIRSIZ, Dirent, FileType, FsError, Stat

_LS_BUFSIZE = 512
_CAT_BUFSIZE = 512

_USAGE = "usage: echo [arg ...] | ls image [path ...] | cat image [file ...]"


def fmtname(path: str) -> str:
    """The last element of ``path``, blank-padded to DIRSIZ characters."""
    name = path.rsplit("/", 1)[-1]
    if len(name) >= DIRSIZ:
        return name
    return name.ljust(DIRSIZ)


def _line(path: str, st: Stat) -> str:
    return user_format("%s %d %d %d", fmtname(path), st.type, st.ino, st.size)


def _stat(fs: FileSystem, path: str) -> Stat:
    ip = fs.namei(path)
    try:
        fs.lock(ip)
        try:
            return fs.stat(ip)
        finally:
            fs.unlock(ip)
    finally:
        fs.put(ip)


def _dirents(fs: FileSystem, dp: Inode) -> Iterator[Dirent]:
    for off in range(0, dp.size, DIRENT_SIZE):
        raw = fs.read(dp, off, DIRENT_SIZE)
        if len(raw) != DIRENT_SIZE:
            return
        yield Dirent.from_bytes(raw)


def ls(fs: FileSystem, path: str) -> list[str]:
    """List a file or the entries of a directory as "name type inode size" lines.

    Raises FsError if ``path`` cannot be opened.
    """
    try:
        ip = fs.namei(path)
    except FsError:
        raise FsError(f"ls: cannot open {path}") from None

    lines: list[str] = []
    names: list[str] = []
    try:
        fs.lock(ip)
        try:
            st = fs.stat(ip)
            if st.type == FileType.FILE:
                lines.append(_line(path, st))
            elif st.type == FileType.DIR:
                if len(path) + 1 + DIRSIZ + 1 > _LS_BUFSIZE:
                    lines.append("ls: path too long")
                else:
                    names = [de.name[:DIRSIZ] for de in _dirents(fs, ip) if de.inum != 0]
        finally:
            fs.unlock(ip)
    finally:
        fs.put(ip)

    for name in names:
        child = f"{path}/{name}"
        try:
            st = _stat(fs, child)
        except FsError:
            lines.append(f"ls: cannot stat {child}")
            continue
        lines.append(_line(child, st))
    return lines


def cat(fs: FileSystem, path: str) -> bytes:
    """Return the whole contents of the file at ``path``.

    Raises FsError if ``path`` cannot be opened or read.
    """
    try:
        ip = fs.namei(path)
    except FsError:
        raise FsError(f"cat: cannot open {path}") from None
    out = bytearray()
    try:
        fs.lock(ip)
        try:
            while True:
                try:
                    chunk = fs.read(ip, len(out), _CAT_BUFSIZE)
                except FsError:
                    raise FsError("cat: read error") from None
                if not chunk:
                    break
                out += chunk
        finally:
            fs.unlock(ip)
    finally:
        fs.put(ip)
    return bytes(out)


def echo(args) -> str:
    """The arguments separated by spaces, followed by a newline if there are any."""
    args = [str(a) for a in args]
    return "".join(a + (" " if i + 1 < len(args) else "\n") for i, a in enumerate(args))


def _open_fs(image: str) -> FileSystem:
    disk = Disk.from_file(image)
    return FileSystem(BufferCache(disk))


def main(argv=None) -> int:
    args = sys.argv[1:] if argv is None else list(argv)
    if not args:
        print(_USAGE, file=sys.stderr)
        return 1
    command, *rest = args

    if command == "echo":
        sys.stdout.write(echo(rest))
        sys.stdout.flush()
        return 0

    if command not in ("ls", "cat") or not rest:
        print(_USAGE, file=sys.stderr)
        return 1

    image, *paths = rest
    try:
        fs = _open_fs(image)
    except OSError as exc:
        print(f"{image}: {exc.strerror or exc}", file=sys.stderr)
        return 1

    if command == "ls":
        status = 0
        for path in paths or ["."]:
            try:
                lines = ls(fs, path)
            except FsError as exc:
                print(exc, file=sys.stderr)
                status = 1
                continue
            for line in lines:
                print(line)
        sys.stdout.flush()
        return status

    sys.stdout.flush()
    out = sys.stdout.buffer
    if not paths:
        while chunk := sys.stdin.buffer.read(_CAT_BUFSIZE):
            out.write(chunk)
        out.flush()
        return 0
    for path in paths:
        try:
            data = cat(fs, path)
        except FsError as exc:
            out.write(f"{exc}\n".encode("latin-1", "replace"))
            out.flush()
            return 1
        out.write(data)
    out.flush()
    return 0