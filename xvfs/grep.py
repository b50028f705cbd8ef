"""A small grep supporting only the ^ . * $ operators."""

from __future__ import annotations

import sys
from collections.abc import Iterator
from typing import TextIO

_BUFSIZE = 1024


def match(re: str, text: str) -> bool:
    """Return True if ``re`` matches anywhere in ``text``."""
    if re.startswith("^"):
        return _match_here(re, 1, text, 0)
    return any(_match_here(re, 0, text, start) for start in range(len(text) + 1))


def _match_here(re: str, ri: int, text: str, ti: int) -> bool:
    if ri == len(re):
        return True
    if ri + 1 < len(re) and re[ri + 1] == "*":
        return _match_star(re[ri], re, ri + 2, text, ti)
    if re[ri] == "$" and ri + 1 == len(re):
        return ti == len(text)
    if ti < len(text) and re[ri] in (".", text[ti]):
        return _match_here(re, ri + 1, text, ti + 1)
    return False


def _match_star(c: str, re: str, ri: int, text: str, ti: int) -> bool:
    while True:
        if _match_here(re, ri, text, ti):
            return True
        if ti >= len(text):
            return False
        current = text[ti]
        ti += 1
        if current != c and c != ".":
            return False


def grep(pattern: str, stream: TextIO) -> Iterator[str]:
    """Yield each newline-terminated line of ``stream`` that matches ``pattern``.

    Input is read through a buffer of fixed size; a final line without a
    newline is never reported, and a buffer filled without a newline is dropped.
    """
    pending = ""
    while True:
        chunk = stream.read(_BUFSIZE - 1 - len(pending))
        if not chunk:
            break
        pending += chunk
        *lines, rest = pending.split("\n")
        for line in lines:
            if match(pattern, line):
                yield line + "\n"
        pending = rest if lines else ""


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else list(argv)
    if not args:
        sys.stderr.write("usage: grep pattern [file ...]\n")
        return 1
    pattern, *paths = args
    out = sys.stdout

    if not paths:
        out.writelines(grep(pattern, sys.stdin))
        return 0

    for path in paths:
        try:
            fh = open(path, encoding="utf-8", errors="surrogateescape", newline="")
        except OSError:
            out.write(f"grep: cannot open {path}\n")
            return 1
        with fh:
            out.writelines(grep(pattern, fh))
    return 0