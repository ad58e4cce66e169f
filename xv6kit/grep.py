"""A small grep supporting the ^ . * $ operators."""

from __future__ import annotations

import io
import sys
from typing import BinaryIO, Iterator

BUFSIZE = 1024


def match(re: str, text: str) -> bool:
    """True if ``re`` matches anywhere in ``text``."""
    if re.startswith("^"):
        return match_here(re[1:], text)
    # The empty string at the end must be tried too.
    return any(match_here(re, text[i:]) for i in range(len(text) + 1))


def match_here(re: str, text: str) -> bool:
    """True if ``re`` matches at the beginning of ``text``."""
    while True:
        if not re:
            return True
        if len(re) > 1 and re[1] == "*":
            return match_star(re[0], re[2:], text)
        if re == "$":
            return text == ""
        if text and re[0] in (".", text[0]):
            re, text = re[1:], text[1:]
            continue
        return False


def match_star(c: str, re: str, text: str) -> bool:
    """True if ``c*`` followed by ``re`` matches at the beginning of ``text``."""
    i = 0
    while True:
        if match_here(re, text[i:]):
            return True
        if i < len(text) and (text[i] == c or c == "."):
            i += 1
        else:
            return False


def grep_lines(pattern: str, data: bytes | BinaryIO) -> Iterator[bytes]:
    """Yield each newline-terminated line that matches, newline included.

    Input is consumed through a buffer of BUFSIZE bytes: text after the
    last newline is dropped, as is any buffer-full that holds no newline.
    """
    stream = io.BytesIO(bytes(data)) if isinstance(data, (bytes, bytearray, memoryview)) else data
    buf = b""
    while True:
        chunk = stream.read(BUFSIZE - len(buf))
        if not chunk:
            break
        buf += chunk
        start = 0
        while (end := buf.find(b"\n", start)) != -1:
            text = buf[start:end].split(b"\0", 1)[0].decode("latin-1")
            if match(pattern, text):
                yield buf[start:end + 1]
            start = end + 1
        buf = buf[start:] if start else b""


def main(argv=None) -> int:
    args = sys.argv[1:] if argv is None else list(argv)
    if not args:
        print("usage: grep pattern [file ...]", file=sys.stderr)
        return 1
    pattern, *paths = args
    out = sys.stdout.buffer
    if not paths:
        out.writelines(grep_lines(pattern, sys.stdin.buffer))
        out.flush()
        return 0
    for path in paths:
        try:
            src = open(path, "rb")
        except OSError:
            out.write(f"grep: cannot open {path}\n".encode("latin-1", "replace"))
            out.flush()
            return 1
        with src:
            out.writelines(grep_lines(pattern, src))
    out.flush()
    return 0