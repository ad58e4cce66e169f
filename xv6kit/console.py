"""Console output formatting, the CGA text screen and line-edited console input."""

from __future__ import annotations

import io
import threading
from typing import Callable, Iterable, TextIO

from .layout import KernelPanic

BACKSPACE = 0x100
INPUT_BUF = 128
COLUMNS = 80
ROWS = 25

LOWER_DIGITS = "0123456789abcdef"
UPPER_DIGITS = "0123456789ABCDEF"

_MASK = 0xFFFFFFFF
_ATTR = 0x0700  # light grey on black


def _control(ch: str) -> int:
    """Code sent by Control plus the given key."""
    return ord(ch) - ord("@")


def _code(c: int | str) -> int:
    return ord(c) if isinstance(c, str) else int(c)


def format_int(x: int, base: int, signed: bool = False, digits: str = LOWER_DIGITS) -> str:
    """Render ``x`` as a 32-bit integer in ``base``.

    With ``signed`` a negative value gets a leading minus sign; otherwise
    the value is shown as an unsigned 32-bit quantity.
    """
    if not 2 <= base <= len(digits):
        raise ValueError(f"base must be between 2 and {len(digits)}")
    x = int(x) & _MASK
    negative = signed and x & 0x80000000
    if negative:
        x = -x & _MASK
    out = []
    while True:
        x, rem = divmod(x, base)
        out.append(digits[rem])
        if x == 0:
            break
    if negative:
        out.append("-")
    return "".join(reversed(out))


def _next(args) -> object:
    try:
        return next(args)
    except StopIteration:
        raise TypeError("not enough arguments for format string") from None


def user_format(fmt: str, *args) -> str:
    """Format like the user-level printf: %d, %x, %p, %s, %c and %%."""
    it = iter(args)
    out: list[str] = []
    pending = False
    for c in fmt:
        if not pending:
            if c == "%":
                pending = True
            else:
                out.append(c)
            continue
        if c == "d":
            out.append(format_int(_next(it), 10, True, UPPER_DIGITS))
        elif c in "xp":
            out.append(format_int(_next(it), 16, False, UPPER_DIGITS))
        elif c == "s":
            s = _next(it)
            out.append("(null)" if s is None else str(s))
        elif c == "c":
            out.append(chr(int(_next(it)) & 0xFF))
        elif c == "%":
            out.append("%")
        else:
            out.append("%" + c)
        pending = False
    return "".join(out)


def kernel_format(fmt: str | None, *args) -> str:
    """Format like the kernel's cprintf: %d, %x, %p, %s and %%."""
    if fmt is None:
        raise KernelPanic("null fmt")
    it = iter(args)
    out: list[str] = []
    chars = iter(fmt)
    for c in chars:
        if c != "%":
            out.append(c)
            continue
        c = next(chars, None)
        if c is None:
            break
        if c == "d":
            out.append(format_int(_next(it), 10, True))
        elif c in "xp":
            out.append(format_int(_next(it), 16, False))
        elif c == "s":
            s = _next(it)
            out.append("(null)" if s is None else str(s))
        elif c == "%":
            out.append("%")
        else:
            out.append("%" + c)
    return "".join(out)


class CgaScreen:
    """An 80-column colour text screen that scrolls after 24 rows."""

    def __init__(self) -> None:
        self.cells = [0] * (COLUMNS * ROWS)
        self.pos = 0

    def putc(self, c: int | str) -> None:
        c = _code(c)
        if c == ord("\n"):
            self.pos += COLUMNS - self.pos % COLUMNS
        elif c == BACKSPACE:
            if self.pos > 0:
                self.pos -= 1
        else:
            self.cells[self.pos] = (c & 0xFF) | _ATTR
            self.pos += 1

        if self.pos // COLUMNS >= ROWS - 1:
            used = (ROWS - 1) * COLUMNS
            self.cells[:used - COLUMNS] = self.cells[COLUMNS:used]
            self.pos -= COLUMNS
            self.cells[self.pos:used] = [0] * (used - self.pos)
        self.cells[self.pos] = ord(" ") | _ATTR

    def text(self) -> str:
        """The visible characters, one line per row, without trailing blanks."""
        rows = []
        for start in range(0, COLUMNS * ROWS, COLUMNS):
            row = self.cells[start:start + COLUMNS]
            rows.append("".join(chr(cell & 0xFF) if cell & 0xFF else " " for cell in row).rstrip())
        while rows and not rows[-1]:
            rows.pop()
        return "\n".join(rows)


class Console:
    """The console device: echoes to a serial stream and the screen, edits input lines."""

    def __init__(
        self,
        output: TextIO | None = None,
        procdump: Callable[[], None] | None = None,
    ) -> None:
        self.output = io.StringIO() if output is None else output
        self.procdump = procdump
        self.screen = CgaScreen()
        self._lock = threading.RLock()
        self._cond = threading.Condition()
        self._buf = bytearray(INPUT_BUF)
        self._r = 0  # read index
        self._w = 0  # write index
        self._e = 0  # edit index

    def putc(self, c: int | str) -> None:
        """Write one character to the serial stream and the screen."""
        c = _code(c)
        with self._lock:
            if c == BACKSPACE:
                self.output.write("\b \b")
            else:
                self.output.write(chr(c & 0xFF))
            self.screen.putc(c)

    def cprintf(self, fmt: str | None, *args) -> None:
        text = kernel_format(fmt, *args)
        with self._lock:
            for ch in text:
                self.putc(ch)

    def interrupt(self, chars: Iterable[int | str] | str) -> None:
        """Handle typed characters; a negative code ends the batch."""
        with self._cond:
            for item in chars:
                c = _code(item)
                if c < 0:
                    break
                if c == _control("P"):
                    if self.procdump is not None:
                        self.procdump()
                elif c == _control("U"):
                    while self._e != self._w and self._buf[(self._e - 1) % INPUT_BUF] != ord("\n"):
                        self._e -= 1
                        self.putc(BACKSPACE)
                elif c in (_control("H"), 0x7F):
                    if self._e != self._w:
                        self._e -= 1
                        self.putc(BACKSPACE)
                elif c != 0 and self._e - self._r < INPUT_BUF:
                    if c == ord("\r"):
                        c = ord("\n")
                    self._buf[self._e % INPUT_BUF] = c & 0xFF
                    self._e += 1
                    self.putc(c)
                    if c in (ord("\n"), _control("D")) or self._e == self._r + INPUT_BUF:
                        self._w = self._e
                        self._cond.notify_all()

    def read(self, n: int) -> bytes:
        """Read up to ``n`` bytes of completed input, stopping after a newline.

        Waits until a line is available. Control-D marks end of input.
        """
        target = n
        out = bytearray()
        with self._cond:
            while n > 0:
                while self._r == self._w:
                    self._cond.wait()
                c = self._buf[self._r % INPUT_BUF]
                self._r += 1
                if c == _control("D"):
                    if n < target:
                        # Keep the ^D so that the next read returns nothing.
                        self._r -= 1
                    break
                out.append(c)
                n -= 1
                if c == ord("\n"):
                    break
        return bytes(out)

    def write(self, data: bytes | str) -> int:
        if isinstance(data, str):
            data = data.encode("latin-1")
        with self._lock:
            for b in data:
                self.putc(b & 0xFF)
        return len(data)