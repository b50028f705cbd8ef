"""Minimal printf-style formatting as used by user programs and the console."""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any

_UPPER = "0123456789ABCDEF"
_LOWER = "0123456789abcdef"
_MASK = 0xFFFFFFFF


def _number(value: Any, base: int, signed: bool, digits: str) -> str:
    x = int(value) & _MASK
    negative = signed and x >= 1 << 31
    if negative:
        x = (1 << 32) - x
    out = []
    while True:
        x, r = divmod(x, base)
        out.append(digits[r])
        if x == 0:
            break
    if negative:
        out.append("-")
    return "".join(reversed(out))


def _string(value: Any) -> str:
    if value is None:
        return "(null)"
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("latin-1")
    return str(value)


def _char(value: Any) -> str:
    if isinstance(value, str):
        return value[:1]
    return chr(int(value) & 0xFF)


def _format(fmt: str, args: tuple, digits: str, with_char: bool) -> str:
    values: Iterator[Any] = iter(args)

    def next_arg() -> Any:
        try:
            return next(values)
        except StopIteration:
            raise TypeError("not enough arguments for format string") from None

    out = []
    chars = iter(fmt)
    for c in chars:
        if c != "%":
            out.append(c)
            continue
        spec = next(chars, None)
        if spec is None:
            break
        if spec == "d":
            out.append(_number(next_arg(), 10, True, digits))
        elif spec in ("x", "p"):
            out.append(_number(next_arg(), 16, False, digits))
        elif spec == "s":
            out.append(_string(next_arg()))
        elif spec == "c" and with_char:
            out.append(_char(next_arg()))
        elif spec == "%":
            out.append("%")
        else:
            out.append("%" + spec)
    return "".join(out)


def printf_format(fmt: str, *args: Any) -> str:
    """Format like the user-level printf: %d, %x, %p, %s, %c and %%.

    Hex digits are upper case; unknown sequences are kept as written.
    """
    return _format(fmt, args, _UPPER, with_char=True)


def cprintf_format(fmt: str, *args: Any) -> str:
    """Format like the console printer: %d, %x, %p, %s and %%.

    Hex digits are lower case; %c is not understood and is kept as written.
    """
    if fmt is None:
        raise ValueError("null fmt")
    return _format(fmt, args, _LOWER, with_char=False)