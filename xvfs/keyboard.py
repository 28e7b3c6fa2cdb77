"""Decoding of PC keyboard scan codes into characters."""

from __future__ import annotations

from typing import Iterable

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


def _ctl(ch: str) -> int:
    return (ord(ch) - ord("@")) & 0xFF


def _table(base: Iterable[int], extra: dict[int, int]) -> tuple[int, ...]:
    table = list(base)
    table.extend([0] * (256 - len(table)))
    for code, value in extra.items():
        table[code] = value
    return tuple(table)


_KEYPAD = "\x00 " + "\x00" * 13 + "789-456+1230." + "\x00" * 4

_SPECIAL = {
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

SHIFTCODE = _table((), {0x1D: CTL, 0x2A: SHIFT, 0x36: SHIFT, 0x38: ALT, 0x9D: CTL, 0xB8: ALT})
TOGGLECODE = _table((), {0x3A: CAPSLOCK, 0x45: NUMLOCK, 0x46: SCROLLLOCK})

NORMALMAP = _table(
    (
        "\x00\x1b1234567890-=\b\t"
        "qwertyuiop[]\n\x00as"
        "dfghjkl;'`\x00\\zxcv"
        "bnm,./\x00*" + _KEYPAD
    ).encode("latin-1"),
    {0x9C: ord("\n"), 0xB5: ord("/"), **_SPECIAL},
)

SHIFTMAP = _table(
    (
        "\x00\x1b!@#$%^&*()_+\b\t"
        "QWERTYUIOP{}\n\x00AS"
        'DFGHJKL:"~\x00|ZXCV'
        "BNM<>?\x00*" + _KEYPAD
    ).encode("latin-1"),
    {0x9C: ord("\n"), 0xB5: ord("/"), **_SPECIAL},
)

CTLMAP = _table(
    [0] * 16
    + [_ctl(ch) for ch in "QWERTYUI"]
    + [_ctl("O"), _ctl("P"), 0, 0, ord("\r"), 0, _ctl("A"), _ctl("S")]
    + [_ctl(ch) for ch in "DFGHJKL"] + [0]
    + [0, 0, 0, _ctl("\\"), _ctl("Z"), _ctl("X"), _ctl("C"), _ctl("V")]
    + [_ctl("B"), _ctl("N"), _ctl("M"), 0, 0, _ctl("/"), 0, 0],
    {0x9C: ord("\r"), 0xB5: _ctl("/"), **_SPECIAL},
)

_CHARCODE = (NORMALMAP, SHIFTMAP, CTLMAP, CTLMAP)


class KeyboardDecoder:
    """Tracks modifier state and turns scan codes into character codes."""

    def __init__(self) -> None:
        self.shift = 0

    def feed(self, scancode: int) -> int:
        """Decode one scan code; 0 means no character was produced."""
        data = scancode & 0xFF
        if data == 0xE0:
            self.shift |= E0ESC
            return 0
        if data & 0x80:
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

    def decode(self, scancodes: Iterable[int]) -> list[int]:
        """Decode a sequence of scan codes, keeping only produced characters."""
        return [c for c in map(self.feed, scancodes) if c]