"""Decoding of PC keyboard scan codes into characters."""

from __future__ import annotations

from collections.abc import Iterable

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


def _c(x: str) -> int:
    return (ord(x) - ord("@")) & 0xFF


def _table(entries: Iterable[int], extra: dict[int, int]) -> list[int]:
    table = [NO] * 256
    for code, value in enumerate(entries):
        table[code] = value
    for code, value in extra.items():
        table[code] = value
    return table


_SPECIALS = {
    0xC8: KEY_UP,
    0xD0: KEY_DN,
    0xC9: KEY_PGUP,
    0xD1: KEY_PGDN,
    0xCB: KEY_LF,
    0xCD: KEY_RT,
    0x97: KEY_HOME,
    0xCF: KEY_END,
    0xD2: KEY_INS,
    0xD3: KEY_DEL,
}

_KEYPAD = "\x00" * 13 + "789-456+1230."

SHIFTCODE = _table(
    [], {0x1D: CTL, 0x2A: SHIFT, 0x36: SHIFT, 0x38: ALT, 0x9D: CTL, 0xB8: ALT}
)
TOGGLECODE = _table([], {0x3A: CAPSLOCK, 0x45: NUMLOCK, 0x46: SCROLLLOCK})

NORMALMAP = _table(
    map(
        ord,
        "\x00\x1b1234567890-=\b\t"
        "qwertyuiop[]\n\x00as"
        "dfghjkl;'`\x00\\zxcv"
        "bnm,./\x00*\x00 " + _KEYPAD,
    ),
    {0x9C: ord("\n"), 0xB5: ord("/"), **_SPECIALS},
)

SHIFTMAP = _table(
    map(
        ord,
        "\x00\x1b!@#$%^&*()_+\b\t"
        "QWERTYUIOP{}\n\x00AS"
        'DFGHJKL:"~\x00|ZXCV'
        "BNM<>?\x00*\x00 " + _KEYPAD,
    ),
    {0x9C: ord("\n"), 0xB5: ord("/"), **_SPECIALS},
)

CTLMAP = _table(
    [NO] * 16
    + [_c(x) for x in "QWERTYUI"]
    + [_c("O"), _c("P"), NO, NO, ord("\r"), NO, _c("A"), _c("S")]
    + [_c(x) for x in "DFGHJKL"]
    + [NO, NO, NO, NO, _c("\\")]
    + [_c(x) for x in "ZXCV"]
    + [_c(x) for x in "BNM"]
    + [NO, NO, _c("/"), NO, NO],
    {0x9C: ord("\r"), 0xB5: _c("/"), **_SPECIALS},
)

_CHARCODE = (NORMALMAP, SHIFTMAP, CTLMAP, CTLMAP)


class Keyboard:
    """Tracks modifier state across scan codes."""

    def __init__(self) -> None:
        self.shift = 0

    def decode(self, data: int) -> int:
        """Decode one scan code; return a character code, or 0 if none results."""
        if not 0 <= data <= 0xFF:
            raise ValueError(f"scan code {data} out of range")
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
            # Last code was an E0 escape.
            data |= 0x80
            self.shift &= ~E0ESC

        self.shift |= SHIFTCODE[data]
        self.shift ^= TOGGLECODE[data]
        c = _CHARCODE[self.shift & (CTL | SHIFT)][data]
        if self.shift & CAPSLOCK:
            if ord("a") <= c <= ord("z"):
                c += ord("A") - ord("a")
            elif ord("A") <= c <= ord("Z"):
                c += ord("a") - ord("A")
        return c

    def decode_all(self, scancodes: Iterable[int]) -> list[int]:
        """Decode a sequence of scan codes, keeping only those that yield a character."""
        return [c for c in map(self.decode, scancodes) if c != 0]