"""On-disk layout of the file system: constants and packed structures."""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass, field

ROOTINO = 1
BSIZE = 512

NDIRECT = 12
NINDIRECT = BSIZE // 4
MAXFILE = NDIRECT + NINDIRECT

DIRSIZ = 14

_SUPERBLOCK = struct.Struct("<7I")
_DINODE = struct.Struct(f"<4hI{NDIRECT + 1}I")
_DIRENT = struct.Struct(f"<H{DIRSIZ}s")

SUPERBLOCK_SIZE = _SUPERBLOCK.size
DINODE_SIZE = _DINODE.size
DIRENT_SIZE = _DIRENT.size

# Inodes per block.
IPB = BSIZE // DINODE_SIZE
# Bitmap bits per block.
BPB = BSIZE * 8


class InodeType(enum.IntEnum):
    """Type of an inode as stored on disk."""

    FREE = 0
    DIR = 1
    FILE = 2
    DEVICE = 3


def _unpack(layout: struct.Struct, data: bytes, what: str) -> tuple:
    if len(data) < layout.size:
        raise ValueError(f"{what} needs {layout.size} bytes, got {len(data)}")
    return layout.unpack_from(data)


@dataclass
class SuperBlock:
    """Describes the disk layout."""

    size: int
    nblocks: int
    ninodes: int
    nlog: int
    logstart: int
    inodestart: int
    bmapstart: int

    def pack(self) -> bytes:
        return _SUPERBLOCK.pack(
            self.size,
            self.nblocks,
            self.ninodes,
            self.nlog,
            self.logstart,
            self.inodestart,
            self.bmapstart,
        )

    @classmethod
    def unpack(cls, data: bytes) -> SuperBlock:
        return cls(*_unpack(_SUPERBLOCK, data, "superblock"))


@dataclass
class DiskInode:
    """An inode as stored on disk."""

    type: int = 0
    major: int = 0
    minor: int = 0
    nlink: int = 0
    size: int = 0
    addrs: list[int] = field(default_factory=lambda: [0] * (NDIRECT + 1))

    def pack(self) -> bytes:
        if len(self.addrs) != NDIRECT + 1:
            raise ValueError(f"an inode holds {NDIRECT + 1} block addresses")
        return _DINODE.pack(
            self.type, self.major, self.minor, self.nlink, self.size, *self.addrs
        )

    @classmethod
    def unpack(cls, data: bytes) -> DiskInode:
        type_, major, minor, nlink, size, *addrs = _unpack(_DINODE, data, "inode")
        return cls(type_, major, minor, nlink, size, list(addrs))


@dataclass
class DirEntry:
    """One entry of a directory: an inode number and a name of up to DIRSIZ bytes."""

    inum: int
    name: str

    def pack(self) -> bytes:
        raw = self.name.encode("utf-8", errors="surrogateescape")[:DIRSIZ]
        return _DIRENT.pack(self.inum, raw)

    @classmethod
    def unpack(cls, data: bytes) -> DirEntry:
        inum, raw = _unpack(_DIRENT, data, "directory entry")
        name = raw.split(b"\0", 1)[0].decode("utf-8", errors="surrogateescape")
        return cls(inum, name)


def iblock(inum: int, sb: SuperBlock) -> int:
    """Block holding inode ``inum``."""
    return inum // IPB + sb.inodestart


def bblock(b: int, sb: SuperBlock) -> int:
    """Block of the free map holding the bit for block ``b``."""
    return b // BPB + sb.bmapstart