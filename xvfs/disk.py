"""An in-memory disk and the buffer cache that sits in front of it."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

from xvfs.layout import BSIZE

NBUF = 30


class DiskError(Exception):
    """Raised when the disk or the buffer cache is used in a way it cannot serve."""


class BufFlag(enum.Flag):
    """State of a cached block."""

    NONE = 0
    VALID = enum.auto()  # data has been read from disk
    DIRTY = enum.auto()  # data has been modified and must be written


@dataclass(eq=False)
class Buf:
    """A cached copy of one disk block."""

    dev: int | None = None
    blockno: int = 0
    flags: BufFlag = BufFlag.NONE
    refcnt: int = 0
    locked: bool = False
    data: bytearray = field(default_factory=lambda: bytearray(BSIZE))

    @property
    def valid(self) -> bool:
        return BufFlag.VALID in self.flags

    @property
    def dirty(self) -> bool:
        return BufFlag.DIRTY in self.flags


class MemDisk:
    """A disk whose blocks live in memory."""

    def __init__(self, image: bytes | bytearray, dev: int = 1) -> None:
        self.image = bytearray(image)
        self.dev = dev
        self.disksize = len(self.image) // BSIZE

    def rw(self, buf: Buf) -> None:
        """Sync ``buf`` with the disk.

        A dirty buffer is written and marked clean; otherwise the block is read.
        Either way the buffer ends up valid.
        """
        if not buf.locked:
            raise DiskError("iderw: buf not locked")
        if buf.flags & (BufFlag.VALID | BufFlag.DIRTY) == BufFlag.VALID:
            raise DiskError("iderw: nothing to do")
        if buf.dev != self.dev:
            raise DiskError(f"iderw: request not for disk {self.dev}")
        if not 0 <= buf.blockno < self.disksize:
            raise DiskError("iderw: block out of range")

        start = buf.blockno * BSIZE
        if buf.dirty:
            buf.flags &= ~BufFlag.DIRTY
            self.image[start : start + BSIZE] = buf.data
        else:
            buf.data[:] = self.image[start : start + BSIZE]
        buf.flags |= BufFlag.VALID


class BufferCache:
    """A fixed set of block buffers, recycled least recently used first."""

    def __init__(self, disk: MemDisk, nbuf: int = NBUF) -> None:
        if nbuf < 1:
            raise ValueError("a buffer cache needs at least one buffer")
        self.disk = disk
        # Most recently used first.
        self._lru: list[Buf] = [Buf() for _ in range(nbuf)]

    @staticmethod
    def _lock(buf: Buf) -> Buf:
        if buf.locked:
            buf.refcnt -= 1
            raise DiskError(
                f"block {buf.blockno} on device {buf.dev} is already in use"
            )
        buf.locked = True
        return buf

    def _get(self, dev: int, blockno: int) -> Buf:
        for buf in self._lru:
            if buf.dev == dev and buf.blockno == blockno:
                buf.refcnt += 1
                return self._lock(buf)

        # Not cached; recycle an unused buffer. A dirty buffer with no
        # references is still pinned by an uncommitted log transaction.
        for buf in reversed(self._lru):
            if buf.refcnt == 0 and not buf.dirty:
                buf.dev = dev
                buf.blockno = blockno
                buf.flags = BufFlag.NONE
                buf.refcnt = 1
                return self._lock(buf)
        raise DiskError("bget: no buffers")

    def read(self, dev: int, blockno: int) -> Buf:
        """Return a locked buffer holding the contents of the block."""
        buf = self._get(dev, blockno)
        if not buf.valid:
            self.disk.rw(buf)
        return buf

    def write(self, buf: Buf) -> None:
        """Write the buffer's contents to disk. The buffer must be locked."""
        if not buf.locked:
            raise DiskError("bwrite")
        buf.flags |= BufFlag.DIRTY
        self.disk.rw(buf)

    def release(self, buf: Buf) -> None:
        """Release a locked buffer, making it the most recently used one."""
        if not buf.locked:
            raise DiskError("brelse")
        buf.locked = False
        buf.refcnt -= 1
        if buf.refcnt == 0:
            self._lru.remove(buf)
            self._lru.insert(0, buf)