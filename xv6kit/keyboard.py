"""Decoding of PC keyboard scan codes into characters."""

from __future__ import annotations

from typing import Iterable, Iterator

NO = 0

SHIFT = 1 << 0
CTL = 1 << 1
ALT = 1 << 2
CAPSLOCK = 1 << 3
NUMLOCK = 1 << 4
SCROLLLOCK = 1 << 5
E0ESC = 1 << 6

KEY_HOME = 0xE0
KEY_END = 0xE1
KEY_UP = 0xE2
KEY_DN = 0xE3
KEY_LF = 0xE4
KEY_RT = 0xE5
KEY_PGUP = 0xE6
KEY_PGDN = 0xE7
KEY_INS = 0xE8
KEY_DEL = 0xE9


def _control(ch: str) -> int:
    return (ord(ch) - ord("@")) & 0xFF


def _table(first: list[int], extra: dict[int, int]) -> list[int]:
    table = first + [NO] * (256 - len(first))
    for code, value in extra.items():
        table[code] = value
    return table


_ESCAPED = {
    0xC8: KEY_UP, 0xD0: KEY_DN,
    0xC9: KEY_PGUP, 0xD1: KEY_PGDN,
    0xCB: KEY_LF, 0xCD: KEY_RT,
    0x97: KEY_HOME, 0xCF: KEY_END,
    0xD2: KEY_INS, 0xD3: KEY_DEL,
}

_KEYPAD = "\0" * 7 + "7" + "89-456+1" + "230.\0\0\0\0"

SHIFTCODE = _table([], {0x1D: CTL, 0x2A: SHIFT, 0x36: SHIFT, 0x38: ALT, 0x9D: CTL, 0xB8: ALT})
TOGGLECODE = _table([], {0x3A: CAPSLOCK, 0x45: NUMLOCK, 0x46: SCROLLLOCK})

NORMALMAP = _table(
    [ord(c) for c in (
        "\0\x1b123456" "7890-=\b\t" "qwertyui" "op[]\n\0as"
        "dfghjkl;" "'`\0\\zxcv" "bnm,./\0*" "\0 \0\0\0\0\0\0" + _KEYPAD
    )],
    {0x9C: ord("\n"), 0xB5: ord("/"), **_ESCAPED},
)

SHIFTMAP = _table(
    [ord(c) for c in (
        "\0\x1b!@#$%^" "&*()_+\b\t" "QWERTYUI" "OP{}\n\0AS"
        "DFGHJKL:" "\"~\0|ZXCV" "BNM<>?\0*" "\0 \0\0\0\0\0\0" + _KEYPAD
    )],
    {0x9C: ord("\n"), 0xB5: ord("/"), **_ESCAPED},
)

CTLMAP = _table(
    [NO] * 16
    + [_control(c) for c in "QWERTYUI"]
    + [_control("O"), _control("P"), NO, NO, ord("\r"), NO, _control("A"), _control("S")]
    + [_control(c) for c in "DFGHJKL"] + [NO]
    + [NO, NO, NO, _control("\\")] + [_control(c) for c in "ZXCV"]
    + [_control(c) for c in "BNM"] + [NO, NO, _control("/"), NO, NO],
    {0x9C: ord("\r"), 0xB5: _control("/"), **_ESCAPED},
)

_CHARCODE = (NORMALMAP, SHIFTMAP, CTLMAP, CTLMAP)


class Keyboard:
    """Tracks modifier state across scan codes and turns key presses into codes."""

    def __init__(self) -> None:
        self.shift = 0

    def decode(self, data: int) -> int:
        """Process one scan code byte; return the character code, or 0 for none."""
        if not 0 <= data <= 0xFF:
            raise ValueError("a scan code is a single byte")
        if data == 0xE0:
            self.shift |= E0ESC
            return 0
        if data & 0x80:
            # Key released.
            if not self.shift & E0ESC:
                data &= 0x7F
            self.shift &= ~(SHIFTCODE[data] | E0ESC)
            return 0
        if self.shift & E0ESC:
            data |= 0x80
            self.shift &= ~E0ESC

        self.shift |= SHIFTCODE[data]
        self.shift ^= TOGGLECODE[data]
        c = _CHARCODE[self.shift & (CTL | SHIFT)][data]
        if self.shift & CAPSLOCK:
            if ord("a") <= c <= ord("z"):
                c -= ord("a") - ord("A")
            elif ord("A") <= c <= ord("Z"):
                c += ord("a") - ord("A")
        return c

    def chars(self, scancodes: Iterable[int]) -> Iterator[int]:
        """Yield the character codes produced by a sequence of scan codes."""
        for data in scancodes:
            c = self.decode(data)
            if c:
                yield c