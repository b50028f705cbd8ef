"""Open files: a table of reference-counted file structures over inodes and pipes."""

from __future__ import annotations

import enum
import errno
import threading
from dataclasses import dataclass

from xvfs.fs import FileSystem, FsError, Inode, Stat
from xvfs.layout import BSIZE
from xvfs.log import MAXOPBLOCKS

NFILE = 100
PIPESIZE = 512


class FileType(enum.Enum):
    """What an open file refers to."""

    NONE = 0
    PIPE = 1
    INODE = 2


class Pipe:
    """A bounded byte channel with one reading and one writing end."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._data = bytearray()
        self.readopen = True
        self.writeopen = True

    @property
    def closed(self) -> bool:
        """True once both ends are closed."""
        return not self.readopen and not self.writeopen

    def write(self, data: bytes) -> int:
        """Write all of ``data``, waiting for room while the reader is open.

        Raises BrokenPipeError if the pipe is full and nobody will read it.
        """
        with self._cond:
            for byte in bytes(data):
                while len(self._data) == PIPESIZE:
                    if not self.readopen:
                        raise BrokenPipeError("pipe has no reader")
                    self._cond.notify_all()
                    self._cond.wait()
                self._data.append(byte)
            self._cond.notify_all()
        return len(data)

    def read(self, n: int) -> bytes:
        """Read up to ``n`` bytes, waiting while the pipe is empty and the writer open."""
        with self._cond:
            while not self._data and self.writeopen:
                self._cond.wait()
            count = max(n, 0)
            out = bytes(self._data[:count])
            del self._data[:count]
            self._cond.notify_all()
        return out

    def close(self, writable: bool) -> None:
        """Close the writing end if ``writable``, otherwise the reading end."""
        with self._cond:
            if writable:
                self.writeopen = False
            else:
                self.readopen = False
            self._cond.notify_all()


@dataclass(eq=False)
class File:
    """One slot of the open file table."""

    type: FileType = FileType.NONE
    ref: int = 0
    readable: bool = False
    writable: bool = False
    pipe: Pipe | None = None
    ip: Inode | None = None
    off: int = 0


class FileTable:
    """A fixed number of open files shared by everyone using the file system."""

    def __init__(
        self, fs: FileSystem, nfile: int = NFILE, maxopblocks: int = MAXOPBLOCKS
    ) -> None:
        self.fs = fs
        self.maxopblocks = maxopblocks
        self._files = [File() for _ in range(nfile)]

    def alloc(self) -> File:
        """Take a free slot, with one reference."""
        for f in self._files:
            if f.ref == 0:
                f.ref = 1
                return f
        raise OSError(errno.ENFILE, "file table full")

    def dup(self, f: File) -> File:
        """Take another reference to ``f``."""
        if f.ref < 1:
            raise ValueError("filedup")
        f.ref += 1
        return f

    def close(self, f: File) -> None:
        """Drop a reference; the last one releases the pipe end or the inode."""
        if f.ref < 1:
            raise ValueError("fileclose")
        f.ref -= 1
        if f.ref > 0:
            return
        kind, pipe, ip, writable = f.type, f.pipe, f.ip, f.writable
        f.type = FileType.NONE
        f.pipe = None
        f.ip = None
        if kind is FileType.PIPE and pipe is not None:
            pipe.close(writable)
        elif kind is FileType.INODE and ip is not None:
            with self.fs.log.transaction():
                self.fs.iput(ip)

    def stat(self, f: File) -> Stat:
        """Return the metadata of the inode behind ``f``."""
        if f.type is not FileType.INODE or f.ip is None:
            raise OSError(errno.EINVAL, "not an inode")
        self.fs.ilock(f.ip)
        try:
            return self.fs.stati(f.ip)
        finally:
            self.fs.iunlock(f.ip)

    def read(self, f: File, n: int) -> bytes:
        """Read up to ``n`` bytes from ``f``."""
        if not f.readable:
            raise OSError(errno.EBADF, "file not open for reading")
        if f.type is FileType.PIPE and f.pipe is not None:
            return f.pipe.read(n)
        if f.type is FileType.INODE and f.ip is not None:
            self.fs.ilock(f.ip)
            try:
                data = self.fs.readi(f.ip, f.off, n)
                f.off += len(data)
            finally:
                self.fs.iunlock(f.ip)
            return data
        raise FsError("fileread")

    def write(self, f: File, data: bytes) -> int:
        """Write all of ``data`` to ``f``."""
        if not f.writable:
            raise OSError(errno.EBADF, "file not open for writing")
        if f.type is FileType.PIPE and f.pipe is not None:
            return f.pipe.write(data)
        if f.type is FileType.INODE and f.ip is not None:
            # A few blocks at a time, to stay within one log transaction:
            # inode, indirect block, allocation blocks and 2 blocks of slop.
            chunk = ((self.maxopblocks - 1 - 1 - 2) // 2) * BSIZE
            if chunk <= 0:
                raise ValueError("maxopblocks too small to write")
            view = memoryview(bytes(data))
            done = 0
            while done < len(view):
                part = view[done : done + chunk]
                with self.fs.log.transaction():
                    self.fs.ilock(f.ip)
                    try:
                        r = self.fs.writei(f.ip, part, f.off)
                        f.off += r
                    finally:
                        self.fs.iunlock(f.ip)
                if r != len(part):
                    raise FsError("short filewrite")
                done += r
            return len(view)
        raise FsError("filewrite")

    def open_inode(self, ip: Inode, readable: bool, writable: bool) -> File:
        """Open ``ip``, handing the caller's reference to the new file."""
        f = self.alloc()
        f.type = FileType.INODE
        f.ip = ip
        f.off = 0
        f.readable = bool(readable)
        f.writable = bool(writable)
        return f

    def pipe(self) -> tuple[File, File]:
        """Create a pipe; return its reading file and its writing file."""
        f0 = self.alloc()
        try:
            f1 = self.alloc()
        except OSError:
            self.close(f0)
            raise
        p = Pipe()
        f0.type, f0.readable, f0.writable, f0.pipe = FileType.PIPE, True, False, p
        f1.type, f1.readable, f1.writable, f1.pipe = FileType.PIPE, False, True, p
        return f0, f1