"""The console: a line-edited input buffer and a text screen with serial echo."""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from typing import Any

from xvfs.fmt import cprintf_format

BACKSPACE = 0x100
INPUT_BUF = 128
COLS = 80
ROWS = 25
_ATTR = 0x0700  # black on white


def ctrl(x: str) -> int:
    """Code of Control-``x``."""
    return ord(x) - ord("@")


class Console:
    """Screen output, serial output and an input line buffer."""

    def __init__(self, procdump: Callable[[], Any] | None = None) -> None:
        self.procdump = procdump
        self.crt = [0] * (ROWS * COLS)
        self.cursor = 0
        self.serial = bytearray()
        self._cond = threading.Condition(threading.RLock())
        self._buf = [0] * INPUT_BUF
        self._r = 0  # read index
        self._w = 0  # write index
        self._e = 0  # edit index

    def _cgaputc(self, c: int) -> None:
        pos = self.cursor
        if c == ord("\n"):
            pos += COLS - pos % COLS
        elif c == BACKSPACE:
            if pos > 0:
                pos -= 1
        else:
            self.crt[pos] = (c & 0xFF) | _ATTR
            pos += 1

        if pos < 0 or pos > ROWS * COLS:
            raise RuntimeError("pos under/overflow")

        if pos // COLS >= 24:  # scroll up
            self.crt[: 23 * COLS] = self.crt[COLS : 24 * COLS]
            pos -= COLS
            self.crt[pos : 24 * COLS] = [0] * (24 * COLS - pos)

        self.cursor = pos
        self.crt[pos] = ord(" ") | _ATTR

    def putc(self, c: int | str) -> None:
        """Put one character on the serial line and the screen."""
        if isinstance(c, str):
            c = ord(c)
        with self._cond:
            if c == BACKSPACE:
                self.serial += b"\b \b"
            else:
                self.serial.append(c & 0xFF)
            self._cgaputc(c)

    def cprintf(self, fmt: str, *args: Any) -> None:
        """Print formatted text; understands %d, %x, %p, %s."""
        text = cprintf_format(fmt, *args)
        with self._cond:
            for ch in text:
                self.putc(ord(ch))

    def interrupt(self, chars: Iterable[int] | str | bytes) -> None:
        """Feed typed characters through line editing into the input buffer."""
        codes = [ord(ch) for ch in chars] if isinstance(chars, str) else list(chars)
        doprocdump = False
        with self._cond:
            for c in codes:
                if c == ctrl("P"):
                    doprocdump = True
                elif c == ctrl("U"):
                    while (
                        self._e != self._w
                        and self._buf[(self._e - 1) % INPUT_BUF] != ord("\n")
                    ):
                        self._e -= 1
                        self.putc(BACKSPACE)
                elif c in (ctrl("H"), 0x7F):
                    if self._e != self._w:
                        self._e -= 1
                        self.putc(BACKSPACE)
                elif c != 0 and self._e - self._r < INPUT_BUF:
                    if c == ord("\r"):
                        c = ord("\n")
                    self._buf[self._e % INPUT_BUF] = c & 0xFF
                    self._e += 1
                    self.putc(c)
                    if (
                        c == ord("\n")
                        or c == ctrl("D")
                        or self._e == self._r + INPUT_BUF
                    ):
                        self._w = self._e
                        self._cond.notify_all()
        if doprocdump and self.procdump is not None:
            self.procdump()

    def read(self, n: int) -> bytes:
        """Read up to ``n`` bytes of finished input, stopping after a newline.

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
                if c == ctrl("D"):
                    if n < target:
                        # Keep ^D so the next read returns nothing.
                        self._r -= 1
                    break
                out.append(c)
                n -= 1
                if c == ord("\n"):
                    break
        return bytes(out)

    def write(self, data: bytes) -> int:
        """Write every byte of ``data`` to the console."""
        with self._cond:
            for byte in bytes(data):
                self.putc(byte & 0xFF)
        return len(data)

    def screen_text(self) -> str:
        """The characters on screen, rows joined by newlines, trailing blanks removed."""
        rows = []
        for start in range(0, ROWS * COLS, COLS):
            cells = self.crt[start : start + COLS]
            rows.append("".join(chr(cell & 0xFF) if cell & 0xFF else " " for cell in cells).rstrip())
        return "\n".join(rows).rstrip("\n")