import pytest

from xvfs.kbd import CAPSLOCK, CTL, KEY_UP, Keyboard


def test_plain_letters():
    kb = Keyboard()
    assert kb.decode_all([0x23, 0x17]) == [ord("h"), ord("i")]


def test_release_yields_nothing():
    kb = Keyboard()
    assert kb.decode(0x23) == ord("h")
    assert kb.decode(0xA3) == 0


def test_shift_held_and_released():
    kb = Keyboard()
    codes = kb.decode_all([0x2A, 0x23, 0xAA, 0x23])
    assert "".join(map(chr, codes)) == "Hh"


def test_shifted_digit():
    kb = Keyboard()
    assert kb.decode_all([0x2A, 0x02]) == [ord("!")]


def test_control_key():
    kb = Keyboard()
    assert kb.decode_all([0x1D, 0x20, 0x9D]) == [ord("D") - ord("@")]
    assert kb.shift & CTL == 0


def test_capslock_toggles():
    kb = Keyboard()
    assert kb.decode_all([0x3A, 0xBA, 0x23]) == [ord("H")]
    assert kb.shift & CAPSLOCK
    assert kb.decode_all([0x2A, 0x23, 0xAA]) == [ord("h")]
    assert kb.decode_all([0x3A, 0xBA, 0x23]) == [ord("h")]


def test_escaped_arrow_key():
    kb = Keyboard()
    assert kb.decode_all([0xE0, 0x48]) == [KEY_UP]


def test_right_control_via_escape():
    kb = Keyboard()
    assert kb.decode_all([0xE0, 0x1D, 0x20]) == [ord("D") - ord("@")]
    assert kb.decode_all([0xE0, 0x9D, 0x20]) == [ord("d")]


def test_enter_maps_to_newline_and_ctrl_enter_to_return():
    kb = Keyboard()
    assert kb.decode(0x1C) == ord("\n")
    kb.decode(0x1D)
    assert kb.decode(0x1C) == ord("\r")


def test_out_of_range():
    kb = Keyboard()
    with pytest.raises(ValueError):
        kb.decode(256)