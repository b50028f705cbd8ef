"""The basic user commands: echo, cat and ls, run against a file system image."""

from __future__ import annotations

import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from xvfs.fs import FileSystem, FsError, Inode, Stat
from xvfs.layout import DIRENT_SIZE, DIRSIZ, DirEntry, InodeType

_BUFSIZE = 512


def fmtname(path: str) -> str:
    """The last element of ``path``, blank-padded to DIRSIZ characters."""
    name = path.rsplit("/", 1)[-1]
    if len(name) >= DIRSIZ:
        return name
    return name.ljust(DIRSIZ)


def echo(args: list[str]) -> str:
    """The arguments separated by spaces and ended by a newline; empty for none."""
    if not args:
        return ""
    return " ".join(args) + "\n"


@contextmanager
def _opened(fs: FileSystem, path: str) -> Iterator[Inode]:
    with fs.log.transaction():
        ip = fs.namei(path)
    try:
        yield ip
    finally:
        with fs.log.transaction():
            fs.iput(ip)


@contextmanager
def _locked(fs: FileSystem, ip: Inode) -> Iterator[Inode]:
    fs.ilock(ip)
    try:
        yield ip
    finally:
        fs.iunlock(ip)


def _stat_path(fs: FileSystem, path: str) -> Stat:
    with _opened(fs, path) as ip, _locked(fs, ip):
        return fs.stati(ip)


def _stat_line(path: str, st: Stat) -> str:
    return f"{fmtname(path)} {int(st.type)} {st.ino} {st.size}"


def cat(fs: FileSystem, path: str) -> bytes:
    """Return the whole contents of the file at ``path``."""
    out = bytearray()
    with _opened(fs, path) as ip:
        off = 0
        while True:
            with _locked(fs, ip):
                chunk = fs.readi(ip, off, _BUFSIZE)
            if not chunk:
                break
            out += chunk
            off += len(chunk)
    return bytes(out)


def ls(fs: FileSystem, path: str) -> list[str]:
    """List ``path``: one line per file, each directory entry for a directory.

    Each line holds the padded name, the type, the inode number and the size.
    """
    with _opened(fs, path) as ip:
        with _locked(fs, ip):
            st = fs.stati(ip)
            data = fs.readi(ip, 0, st.size) if st.type == InodeType.DIR else b""

    if st.type == InodeType.FILE:
        return [_stat_line(path, st)]
    if st.type != InodeType.DIR:
        return []

    if len(path.encode("utf-8", errors="surrogateescape")) + 1 + DIRSIZ + 1 > _BUFSIZE:
        return ["ls: path too long"]

    lines = []
    for start in range(0, len(data) - DIRENT_SIZE + 1, DIRENT_SIZE):
        de = DirEntry.unpack(data[start : start + DIRENT_SIZE])
        if de.inum == 0:
            continue
        child = f"{path}/{de.name}"
        try:
            child_st = _stat_path(fs, child)
        except (OSError, FsError):
            lines.append(f"ls: cannot stat {child}")
            continue
        lines.append(_stat_line(child, child_st))
    return lines


def _usage() -> int:
    sys.stderr.write("usage: echo args... | cat image [file ...] | ls image [path ...]\n")
    return 1


def _write_bytes(data: bytes) -> None:
    sys.stdout.flush()
    out = getattr(sys.stdout, "buffer", None)
    if out is not None:
        out.write(data)
        out.flush()
    else:
        sys.stdout.write(data.decode("utf-8", errors="replace"))


def _run_cat(fs: FileSystem, paths: list[str]) -> int:
    if not paths:
        source = getattr(sys.stdin, "buffer", None)
        data = source.read() if source is not None else sys.stdin.read().encode()
        _write_bytes(data)
        return 0
    for path in paths:
        try:
            data = cat(fs, path)
        except OSError:
            sys.stdout.write(f"cat: cannot open {path}\n")
            return 1
        except FsError:
            sys.stdout.write("cat: read error\n")
            return 1
        _write_bytes(data)
    return 0


def _run_ls(fs: FileSystem, paths: list[str]) -> int:
    for path in paths or ["."]:
        try:
            lines = ls(fs, path)
        except (OSError, FsError):
            sys.stderr.write(f"ls: cannot open {path}\n")
            continue
        for line in lines:
            sys.stdout.write(line + "\n")
    return 0


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else list(argv)
    if not args:
        return _usage()
    command, *rest = args

    if command == "echo":
        sys.stdout.write(echo(rest))
        return 0
    if command not in ("cat", "ls") or not rest:
        return _usage()

    image_path, *paths = rest
    try:
        image = Path(image_path).read_bytes()
    except OSError as exc:
        sys.stderr.write(f"{image_path}: {exc.strerror}\n")
        return 1
    fs = FileSystem.open_image(image)
    if command == "cat":
        return _run_cat(fs, paths)
    return _run_ls(fs, paths)