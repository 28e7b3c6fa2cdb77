"""Console: line-edited keyboard input and output to a text screen and serial line."""

from __future__ import annotations

import threading
from typing import Callable, Iterable, Optional, Union

from xvfs.layout import FsPanic

BACKSPACE = 0x100
INPUT_BUF = 128
ROWS = 25
COLS = 80
_ATTR = 0x0700


def _control(ch: str) -> int:
    return ord(ch) - ord("@")


class CgaScreen:
    """An 80x25 colour text screen with a cursor and scrolling."""

    def __init__(self) -> None:
        self.cells = [0] * (ROWS * COLS)
        self.pos = 0

    def putc(self, c: int) -> None:
        pos = self.pos
        if c == ord("\n"):
            pos += COLS - pos % COLS
        elif c == BACKSPACE:
            if pos > 0:
                pos -= 1
        else:
            self.cells[pos] = (c & 0xFF) | _ATTR
            pos += 1

        if pos < 0 or pos > ROWS * COLS:
            raise FsPanic("pos under/overflow")

        if pos // COLS >= 24:
            self.cells[: 23 * COLS] = self.cells[COLS : 24 * COLS]
            pos -= COLS
            self.cells[pos : 24 * COLS] = [0] * (24 * COLS - pos)

        self.pos = pos
        self.cells[pos] = ord(" ") | _ATTR

    def text(self) -> str:
        """The visible characters, one line per row, trailing blanks removed."""
        rows = [
            "".join(chr(cell & 0xFF) or " " for cell in self.cells[r * COLS : (r + 1) * COLS])
            .replace("\0", " ")
            .rstrip()
            for r in range(ROWS)
        ]
        while rows and not rows[-1]:
            rows.pop()
        return "\n".join(rows)


class Console:
    """Console device: edits typed input into lines and echoes all output."""

    def __init__(self, on_procdump: Optional[Callable[[], None]] = None) -> None:
        self.screen = CgaScreen()
        self.serial = bytearray()
        self.on_procdump = on_procdump
        self.killed = False
        self._buf = bytearray(INPUT_BUF)
        self._r = 0
        self._w = 0
        self._e = 0
        self._cond = threading.Condition()

    @property
    def output(self) -> bytes:
        return bytes(self.serial)

    def putc(self, c: int) -> None:
        if c == BACKSPACE:
            self.serial.extend(b"\b \b")
        else:
            self.serial.append(c & 0xFF)
        self.screen.putc(c)

    def interrupt(self, chars: Union[str, bytes, Iterable[int]]) -> None:
        """Deliver typed characters to the input line editor."""
        codes = chars.encode("latin-1") if isinstance(chars, str) else chars
        doprocdump = False
        with self._cond:
            for c in codes:
                if c == _control("P"):
                    doprocdump = True
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
        if doprocdump and self.on_procdump is not None:
            self.on_procdump()

    def read(self, n: int) -> bytes:
        """Read up to n bytes of committed input, stopping after a newline.

        Blocks until input is available; raises InterruptedError once killed.
        """
        out = bytearray()
        target = n
        with self._cond:
            while n > 0:
                while self._r == self._w:
                    if self.killed:
                        raise InterruptedError("console read interrupted")
                    self._cond.wait()
                c = self._buf[self._r % INPUT_BUF]
                self._r += 1
                if c == _control("D"):
                    if n < target:
                        # Leave ^D for the next read so it returns 0 bytes.
                        self._r -= 1
                    break
                out.append(c)
                n -= 1
                if c == ord("\n"):
                    break
        return bytes(out)

    def write(self, data: bytes) -> int:
        with self._cond:
            for b in data:
                self.putc(b & 0xFF)
        return len(data)

    def kill(self) -> None:
        """Mark the reader as killed and wake any blocked read."""
        with self._cond:
            self.killed = True
            self._cond.notify_all()