"""The file system proper: block allocation, inodes, directories and path names.

Every change made here goes through the log, so callers that modify the
file system must do so inside a ``log.transaction()``.
"""

from __future__ import annotations

import struct
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from xvfs.disk import Buf, BufferCache, MemDisk
from xvfs.layout import (
    BPB,
    BSIZE,
    DINODE_SIZE,
    DIRENT_SIZE,
    DIRSIZ,
    IPB,
    MAXFILE,
    NDIRECT,
    NINDIRECT,
    ROOTINO,
    SUPERBLOCK_SIZE,
    DirEntry,
    DiskInode,
    InodeType,
    SuperBlock,
    bblock,
    iblock,
)
from xvfs.log import Log

NINODE = 50
ROOTDEV = 1

_ADDR = struct.Struct("<I")


class FsError(Exception):
    """Raised when the file system is used in a way it cannot serve."""


@dataclass(eq=False)
class Inode:
    """In-memory copy of an inode, with bookkeeping that is not on disk."""

    dev: int = 0
    inum: int = 0
    ref: int = 0
    locked: bool = False
    valid: bool = False
    type: int = 0
    major: int = 0
    minor: int = 0
    nlink: int = 0
    size: int = 0
    addrs: list[int] = field(default_factory=lambda: [0] * (NDIRECT + 1))


@dataclass(frozen=True)
class Stat:
    """Metadata of an inode."""

    dev: int
    ino: int
    type: int
    nlink: int
    size: int


def _truncate_name(name: str) -> str:
    raw = name.encode("utf-8", errors="surrogateescape")[:DIRSIZ]
    return raw.decode("utf-8", errors="surrogateescape")


def _name_bytes(name: str) -> bytes:
    return name.encode("utf-8", errors="surrogateescape")[:DIRSIZ]


def skipelem(path: str) -> tuple[str, str] | None:
    """Split off the first element of ``path``.

    Returns the element (cut to DIRSIZ bytes) and the rest of the path without
    leading slashes, or None if there is no element left.
    """
    stripped = path.lstrip("/")
    if not stripped:
        return None
    elem, _, rest = stripped.partition("/")
    return _truncate_name(elem), rest.lstrip("/")


def _readsb(cache: BufferCache, dev: int) -> SuperBlock:
    buf = cache.read(dev, 1)
    try:
        return SuperBlock.unpack(bytes(buf.data[:SUPERBLOCK_SIZE]))
    finally:
        cache.release(buf)


class FileSystem:
    """Inodes, directories and paths on top of a buffer cache and a log."""

    def __init__(
        self,
        cache: BufferCache,
        log: Log,
        dev: int = ROOTDEV,
        ninode: int = NINODE,
        devsw: Mapping[int, Any] | None = None,
    ) -> None:
        self.cache = cache
        self.log = log
        self.dev = dev
        self.devsw: dict[int, Any] = dict(devsw or {})
        self.sb = _readsb(cache, dev)
        self._icache = [Inode() for _ in range(ninode)]

    @classmethod
    def open_image(cls, image: bytes | bytearray, dev: int = ROOTDEV) -> FileSystem:
        """Mount an image held in memory, recovering its log first."""
        disk = MemDisk(image, dev)
        cache = BufferCache(disk)
        sb = _readsb(cache, dev)
        log = Log(cache, dev, sb)
        return cls(cache, log, dev)

    @contextmanager
    def _block(self, blockno: int) -> Iterator[Buf]:
        buf = self.cache.read(self.dev, blockno)
        try:
            yield buf
        finally:
            self.cache.release(buf)

    # Blocks.

    def _bzero(self, bno: int) -> None:
        with self._block(bno) as bp:
            bp.data[:] = bytes(BSIZE)
            self.log.write(bp)

    def _balloc(self) -> int:
        for b in range(0, self.sb.size, BPB):
            found = None
            with self._block(bblock(b, self.sb)) as bp:
                for bi in range(min(BPB, self.sb.size - b)):
                    m = 1 << (bi % 8)
                    if not bp.data[bi // 8] & m:
                        bp.data[bi // 8] |= m
                        self.log.write(bp)
                        found = b + bi
                        break
            if found is not None:
                self._bzero(found)
                return found
        raise FsError("balloc: out of blocks")

    def _bfree(self, b: int) -> None:
        with self._block(bblock(b, self.sb)) as bp:
            bi = b % BPB
            m = 1 << (bi % 8)
            if not bp.data[bi // 8] & m:
                raise FsError("freeing free block")
            bp.data[bi // 8] &= ~m & 0xFF
            self.log.write(bp)

    # Inodes.

    @staticmethod
    def _dinode_offset(inum: int) -> int:
        return (inum % IPB) * DINODE_SIZE

    def ialloc(self, type: InodeType | int) -> Inode:
        """Allocate a free inode with the given type; returned unlocked and referenced."""
        for inum in range(1, self.sb.ninodes):
            off = self._dinode_offset(inum)
            with self._block(iblock(inum, self.sb)) as bp:
                din = DiskInode.unpack(bytes(bp.data[off : off + DINODE_SIZE]))
                if din.type != InodeType.FREE:
                    continue
                bp.data[off : off + DINODE_SIZE] = DiskInode(type=int(type)).pack()
                self.log.write(bp)
            return self.iget(inum)
        raise FsError("ialloc: no inodes")

    def iupdate(self, ip: Inode) -> None:
        """Copy a modified in-memory inode to disk."""
        off = self._dinode_offset(ip.inum)
        din = DiskInode(ip.type, ip.major, ip.minor, ip.nlink, ip.size, list(ip.addrs))
        with self._block(iblock(ip.inum, self.sb)) as bp:
            bp.data[off : off + DINODE_SIZE] = din.pack()
            self.log.write(bp)

    def iget(self, inum: int) -> Inode:
        """Return the cached inode ``inum``, neither locked nor read from disk."""
        empty = None
        for ip in self._icache:
            if ip.ref > 0 and ip.dev == self.dev and ip.inum == inum:
                ip.ref += 1
                return ip
            if empty is None and ip.ref == 0:
                empty = ip
        if empty is None:
            raise FsError("iget: no inodes")
        empty.dev = self.dev
        empty.inum = inum
        empty.ref = 1
        empty.valid = False
        return empty

    def idup(self, ip: Inode) -> Inode:
        """Take another reference to ``ip``."""
        ip.ref += 1
        return ip

    def ilock(self, ip: Inode) -> None:
        """Lock ``ip``, reading it from disk if needed."""
        if ip is None or ip.ref < 1:
            raise FsError("ilock")
        if ip.locked:
            raise FsError(f"ilock: inode {ip.inum} already locked")
        ip.locked = True
        if not ip.valid:
            off = self._dinode_offset(ip.inum)
            with self._block(iblock(ip.inum, self.sb)) as bp:
                din = DiskInode.unpack(bytes(bp.data[off : off + DINODE_SIZE]))
            ip.type = din.type
            ip.major = din.major
            ip.minor = din.minor
            ip.nlink = din.nlink
            ip.size = din.size
            ip.addrs = list(din.addrs)
            ip.valid = True
            if ip.type == InodeType.FREE:
                ip.locked = False
                raise FsError("ilock: no type")

    def iunlock(self, ip: Inode) -> None:
        """Unlock ``ip``."""
        if ip is None or not ip.locked or ip.ref < 1:
            raise FsError("iunlock")
        ip.locked = False

    def iput(self, ip: Inode) -> None:
        """Drop a reference; free the inode on disk if it was the last one and unlinked."""
        if ip.locked:
            raise FsError(f"iput: inode {ip.inum} is locked")
        ip.locked = True
        try:
            if ip.valid and ip.nlink == 0 and ip.ref == 1:
                self._itrunc(ip)
                ip.type = InodeType.FREE
                self.iupdate(ip)
                ip.valid = False
        finally:
            ip.locked = False
        ip.ref -= 1

    def iunlockput(self, ip: Inode) -> None:
        """Unlock, then drop a reference."""
        self.iunlock(ip)
        self.iput(ip)

    # Inode content.

    def _bmap(self, ip: Inode, bn: int) -> int:
        if bn < NDIRECT:
            if ip.addrs[bn] == 0:
                ip.addrs[bn] = self._balloc()
            return ip.addrs[bn]
        bn -= NDIRECT
        if bn < NINDIRECT:
            if ip.addrs[NDIRECT] == 0:
                ip.addrs[NDIRECT] = self._balloc()
            with self._block(ip.addrs[NDIRECT]) as bp:
                (addr,) = _ADDR.unpack_from(bp.data, bn * _ADDR.size)
                if addr == 0:
                    addr = self._balloc()
                    _ADDR.pack_into(bp.data, bn * _ADDR.size, addr)
                    self.log.write(bp)
            return addr
        raise FsError("bmap: out of range")

    def _itrunc(self, ip: Inode) -> None:
        for i in range(NDIRECT):
            if ip.addrs[i]:
                self._bfree(ip.addrs[i])
                ip.addrs[i] = 0
        if ip.addrs[NDIRECT]:
            with self._block(ip.addrs[NDIRECT]) as bp:
                addrs = struct.unpack_from(f"<{NINDIRECT}I", bp.data)
            for addr in addrs:
                if addr:
                    self._bfree(addr)
            self._bfree(ip.addrs[NDIRECT])
            ip.addrs[NDIRECT] = 0
        ip.size = 0
        self.iupdate(ip)

    def stati(self, ip: Inode) -> Stat:
        """Return the metadata of ``ip``."""
        return Stat(ip.dev, ip.inum, ip.type, ip.nlink, ip.size)

    def _device(self, ip: Inode, op: str) -> Any:
        device = self.devsw.get(ip.major)
        if device is None or not callable(getattr(device, op, None)):
            raise FsError(f"no device with major number {ip.major} to {op}")
        return device

    def readi(self, ip: Inode, off: int, n: int) -> bytes:
        """Read up to ``n`` bytes at ``off``; the caller must hold the lock."""
        if ip.type == InodeType.DEVICE:
            return bytes(self._device(ip, "read").read(n))
        if off < 0 or n < 0 or off > ip.size:
            raise FsError(f"read at offset {off} outside file of {ip.size} bytes")
        n = min(n, ip.size - off)
        out = bytearray()
        while len(out) < n:
            start = off % BSIZE
            m = min(n - len(out), BSIZE - start)
            with self._block(self._bmap(ip, off // BSIZE)) as bp:
                out += bp.data[start : start + m]
            off += m
        return bytes(out)

    def writei(self, ip: Inode, data: bytes, off: int) -> int:
        """Write ``data`` at ``off``; the caller must hold the lock."""
        if ip.type == InodeType.DEVICE:
            return self._device(ip, "write").write(bytes(data))
        n = len(data)
        if off < 0 or off > ip.size:
            raise FsError(f"write at offset {off} outside file of {ip.size} bytes")
        if off + n > MAXFILE * BSIZE:
            raise FsError("write past the largest file size")
        src = memoryview(bytes(data))
        tot = 0
        while tot < n:
            start = off % BSIZE
            m = min(n - tot, BSIZE - start)
            with self._block(self._bmap(ip, off // BSIZE)) as bp:
                bp.data[start : start + m] = src[tot : tot + m]
                self.log.write(bp)
            tot += m
            off += m
        if n > 0 and off > ip.size:
            ip.size = off
            self.iupdate(ip)
        return n

    # Directories.

    def _entries(self, dp: Inode) -> Iterator[tuple[int, DirEntry]]:
        for off in range(0, dp.size, DIRENT_SIZE):
            raw = self.readi(dp, off, DIRENT_SIZE)
            if len(raw) != DIRENT_SIZE:
                raise FsError("dirlookup read")
            yield off, DirEntry.unpack(raw)

    def dirlookup(self, dp: Inode, name: str) -> tuple[Inode, int] | None:
        """Find ``name`` in directory ``dp``; return its inode and entry offset."""
        if dp.type != InodeType.DIR:
            raise FsError("dirlookup not DIR")
        wanted = _name_bytes(name)
        for off, de in self._entries(dp):
            if de.inum != 0 and _name_bytes(de.name) == wanted:
                return self.iget(de.inum), off
        return None

    def dirlink(self, dp: Inode, name: str, inum: int) -> None:
        """Add the entry (``name``, ``inum``) to directory ``dp``."""
        found = self.dirlookup(dp, name)
        if found is not None:
            self.iput(found[0])
            raise FsError(f"{name!r} already exists")
        off = dp.size
        for entry_off, de in self._entries(dp):
            if de.inum == 0:
                off = entry_off
                break
        self.writei(dp, DirEntry(inum, name).pack(), off)

    # Paths.

    def _namex(
        self, path: str, parent: bool, cwd: Inode | None
    ) -> tuple[Inode, str]:
        if path.startswith("/") or cwd is None:
            ip = self.iget(ROOTINO)
        else:
            ip = self.idup(cwd)
        name = ""
        while (step := skipelem(path)) is not None:
            name, path = step
            self.ilock(ip)
            if ip.type != InodeType.DIR:
                self.iunlockput(ip)
                raise NotADirectoryError(name)
            if parent and path == "":
                self.iunlock(ip)
                return ip, name
            found = self.dirlookup(ip, name)
            self.iunlockput(ip)
            if found is None:
                raise FileNotFoundError(name)
            ip = found[0]
        if parent:
            self.iput(ip)
            raise FileNotFoundError("path has no final element")
        return ip, name

    def namei(self, path: str, cwd: Inode | None = None) -> Inode:
        """Return the inode for ``path``, resolved from ``cwd`` (root if None)."""
        return self._namex(path, False, cwd)[0]

    def nameiparent(self, path: str, cwd: Inode | None = None) -> tuple[Inode, str]:
        """Return the inode of the parent directory of ``path`` and the final element."""
        return self._namex(path, True, cwd)