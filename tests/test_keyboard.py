import pytest

from xv6kit.console import Console
from xv6kit.keyboard import CAPSLOCK, KEY_DEL, KEY_UP, Keyboard

A = 0x1E
LSHIFT = 0x2A
LCTRL = 0x1D
CAPS = 0x3A


def test_plain_letter():
    assert Keyboard().decode(A) == ord("a")


def test_shift_press_and_release():
    kb = Keyboard()
    assert kb.decode(LSHIFT) == 0
    assert kb.decode(A) == ord("A")
    assert kb.decode(LSHIFT | 0x80) == 0
    assert kb.decode(A) == ord("a")


def test_shifted_digit():
    kb = Keyboard()
    kb.decode(LSHIFT)
    assert kb.decode(0x02) == ord("!")


def test_control_letter():
    kb = Keyboard()
    kb.decode(LCTRL)
    assert kb.decode(A) == 1


def test_key_release_gives_nothing():
    kb = Keyboard()
    assert kb.decode(A | 0x80) == 0
    assert kb.shift == 0


def test_caps_lock_toggles():
    kb = Keyboard()
    kb.decode(CAPS)
    assert kb.shift & CAPSLOCK
    assert kb.decode(A) == ord("A")
    kb.decode(CAPS | 0x80)
    kb.decode(CAPS)
    assert not kb.shift & CAPSLOCK
    assert kb.decode(A) == ord("a")


def test_caps_lock_with_shift_gives_lower_case():
    kb = Keyboard()
    kb.decode(CAPS)
    kb.decode(LSHIFT)
    assert kb.decode(A) == ord("a")


def test_escaped_arrow_key():
    kb = Keyboard()
    assert kb.decode(0xE0) == 0
    assert kb.decode(0x48) == KEY_UP
    assert kb.decode(0xE0) == 0
    assert kb.decode(0x53) == KEY_DEL


def test_escaped_release_clears_escape():
    kb = Keyboard()
    kb.decode(0xE0)
    kb.decode(0xC8)
    assert kb.shift == 0
    assert kb.decode(0x48) == ord("8")


def test_right_control_via_escape():
    kb = Keyboard()
    kb.decode(0xE0)
    kb.decode(LCTRL)
    assert kb.decode(A) == 1
    kb.decode(0xE0)
    kb.decode(LCTRL | 0x80)
    assert kb.decode(A) == ord("a")


def test_chars_skips_non_characters():
    kb = Keyboard()
    codes = list(kb.chars([LSHIFT, 0x23, LSHIFT | 0x80, 0x17]))
    assert codes == [ord("H"), ord("i")]


def test_invalid_scancode():
    with pytest.raises(ValueError):
        Keyboard().decode(256)


def test_keyboard_feeds_console():
    kb = Keyboard()
    console = Console()
    console.interrupt(kb.chars([0x23, 0x23 | 0x80, 0x17, 0x17 | 0x80, 0x1C]))
    assert console.read(10) == b"hi\n"