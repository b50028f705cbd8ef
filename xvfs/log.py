"""A redo log that makes groups of block writes atomic.

On disk the log is a header block holding a count and the home block
numbers, followed by copies of those blocks. A transaction commits when
the last outstanding operation ends.
"""

from __future__ import annotations

import struct
from collections.abc import Iterator
from contextlib import contextmanager

from xvfs.disk import Buf, BufferCache, BufFlag
from xvfs.layout import BSIZE, SuperBlock

LOGSIZE = 30
MAXOPBLOCKS = 10

_COUNT = struct.Struct("<i")


class LogError(Exception):
    """Raised when the log is used in a way it cannot serve."""


class Log:
    """The write-ahead log of one device."""

    def __init__(
        self,
        cache: BufferCache,
        dev: int,
        sb: SuperBlock,
        logsize: int = LOGSIZE,
        maxopblocks: int = MAXOPBLOCKS,
    ) -> None:
        if _COUNT.size * (1 + logsize) >= BSIZE:
            raise LogError("initlog: too big logheader")
        self.cache = cache
        self.dev = dev
        self.start = sb.logstart
        self.size = sb.nlog
        self.logsize = logsize
        self.maxopblocks = maxopblocks
        self.outstanding = 0
        self.committing = False
        self.blocks: list[int] = []
        self.recover()

    @contextmanager
    def _block(self, blockno: int) -> Iterator[Buf]:
        buf = self.cache.read(self.dev, blockno)
        try:
            yield buf
        finally:
            self.cache.release(buf)

    def _install_trans(self) -> None:
        """Copy committed blocks from the log to their home locations."""
        for tail, blockno in enumerate(self.blocks):
            with self._block(self.start + tail + 1) as lbuf, self._block(
                blockno
            ) as dbuf:
                dbuf.data[:] = lbuf.data
                self.cache.write(dbuf)

    def _read_head(self) -> None:
        with self._block(self.start) as buf:
            (n,) = _COUNT.unpack_from(buf.data)
            if not 0 <= n <= self.logsize:
                raise LogError(f"corrupt log header: {n} blocks")
            self.blocks = list(struct.unpack_from(f"<{n}i", buf.data, _COUNT.size))

    def _write_head(self) -> None:
        """Write the in-memory header to disk; this is the commit point."""
        header = struct.pack(f"<i{len(self.blocks)}i", len(self.blocks), *self.blocks)
        with self._block(self.start) as buf:
            buf.data[: len(header)] = header
            self.cache.write(buf)

    def _write_log(self) -> None:
        """Copy modified blocks from the cache to the log."""
        for tail, blockno in enumerate(self.blocks):
            with self._block(self.start + tail + 1) as to, self._block(
                blockno
            ) as src:
                to.data[:] = src.data
                self.cache.write(to)

    def _commit(self) -> None:
        if self.blocks:
            self._write_log()
            self._write_head()
            self._install_trans()
            self.blocks = []
            self._write_head()

    def recover(self) -> None:
        """Install any committed transaction found on disk, then clear the log."""
        self._read_head()
        self._install_trans()
        self.blocks = []
        self._write_head()

    def begin_op(self) -> None:
        """Mark the start of a file system operation."""
        if self.committing:
            raise LogError("begin_op during commit")
        if len(self.blocks) + (self.outstanding + 1) * self.maxopblocks > self.logsize:
            raise LogError("begin_op: log space exhausted")
        self.outstanding += 1

    def end_op(self) -> None:
        """Mark the end of an operation; the last one to end commits."""
        if self.outstanding < 1:
            raise LogError("end_op without begin_op")
        self.outstanding -= 1
        if self.committing:
            raise LogError("log.committing")
        if self.outstanding == 0:
            self.committing = True
            try:
                self._commit()
            finally:
                self.committing = False

    @contextmanager
    def transaction(self) -> Iterator[Log]:
        """Run the enclosed block as one operation of the current transaction."""
        self.begin_op()
        try:
            yield self
        finally:
            self.end_op()

    def write(self, buf: Buf) -> None:
        """Record a modified buffer in the transaction and pin it in the cache."""
        if len(self.blocks) >= self.logsize or len(self.blocks) >= self.size - 1:
            raise LogError("too big a transaction")
        if self.outstanding < 1:
            raise LogError("log_write outside of trans")
        if buf.blockno not in self.blocks:
            self.blocks.append(buf.blockno)
        buf.flags |= BufFlag.DIRTY