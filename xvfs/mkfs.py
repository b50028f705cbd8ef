"""Build a file system image holding a root directory and a set of files."""

from __future__ import annotations

import struct
import sys
from collections.abc import Iterable, Mapping
from pathlib import Path

from xvfs.layout import (
    BPB,
    BSIZE,
    DINODE_SIZE,
    IPB,
    MAXFILE,
    NDIRECT,
    NINDIRECT,
    ROOTINO,
    DirEntry,
    DiskInode,
    InodeType,
    SuperBlock,
    iblock,
)

FSSIZE = 1000
LOGSIZE = 30
NINODES = 200

_INDIRECT = struct.Struct(f"<{NINDIRECT}I")


class ImageBuilder:
    """Lays out an empty file system in memory and appends files to it.

    Disk layout: boot block, superblock, log, inode blocks, free bit map, data blocks.
    """

    def __init__(self, size: int = FSSIZE, ninodes: int = NINODES) -> None:
        self.size = size
        self.ninodes = ninodes
        self.nbitmap = size // BPB + 1
        self.ninodeblocks = ninodes // IPB + 1
        self.nlog = LOGSIZE
        self.nmeta = 2 + self.nlog + self.ninodeblocks + self.nbitmap
        self.nblocks = size - self.nmeta
        if self.nblocks <= 0:
            raise ValueError(f"image of {size} blocks has no room for data blocks")

        self.sb = SuperBlock(
            size=size,
            nblocks=self.nblocks,
            ninodes=ninodes,
            nlog=self.nlog,
            logstart=2,
            inodestart=2 + self.nlog,
            bmapstart=2 + self.nlog + self.ninodeblocks,
        )
        self.freeblock = self.nmeta
        self.freeinode = 1
        self._image = bytearray(size * BSIZE)
        self._finished = False

        self._wsect(1, self.sb.pack())

        self.rootino = self.ialloc(InodeType.DIR)
        self.iappend(self.rootino, DirEntry(self.rootino, ".").pack())
        self.iappend(self.rootino, DirEntry(self.rootino, "..").pack())

    def _check_sector(self, sec: int) -> None:
        if not 0 <= sec < self.size:
            raise ValueError(f"sector {sec} outside image of {self.size} blocks")

    def _rsect(self, sec: int) -> bytes:
        self._check_sector(sec)
        return bytes(self._image[sec * BSIZE : (sec + 1) * BSIZE])

    def _wsect(self, sec: int, data: bytes) -> None:
        self._check_sector(sec)
        if len(data) > BSIZE:
            raise ValueError("sector data larger than a block")
        self._image[sec * BSIZE : (sec + 1) * BSIZE] = data.ljust(BSIZE, b"\0")

    def _check_open(self) -> None:
        if self._finished:
            raise ValueError("image already finished")

    def _alloc_block(self) -> int:
        if self.freeblock >= self.size:
            raise ValueError("out of data blocks")
        block = self.freeblock
        self.freeblock += 1
        return block

    def read_inode(self, inum: int) -> DiskInode:
        """Return the on-disk inode ``inum``."""
        off = (inum % IPB) * DINODE_SIZE
        raw = self._rsect(iblock(inum, self.sb))
        return DiskInode.unpack(raw[off : off + DINODE_SIZE])

    def write_inode(self, inum: int, din: DiskInode) -> None:
        """Store ``din`` as inode ``inum``."""
        bn = iblock(inum, self.sb)
        off = (inum % IPB) * DINODE_SIZE
        buf = bytearray(self._rsect(bn))
        buf[off : off + DINODE_SIZE] = din.pack()
        self._wsect(bn, bytes(buf))

    def ialloc(self, type: InodeType | int) -> int:
        """Allocate the next inode with the given type and one link."""
        self._check_open()
        if self.freeinode >= self.ninodes:
            raise ValueError("out of inodes")
        inum = self.freeinode
        self.freeinode += 1
        self.write_inode(inum, DiskInode(type=int(type), nlink=1))
        return inum

    def iappend(self, inum: int, data: bytes) -> None:
        """Append ``data`` to the contents of inode ``inum``."""
        self._check_open()
        din = self.read_inode(inum)
        off = din.size
        rest = memoryview(bytes(data))
        while rest:
            fbn = off // BSIZE
            if fbn >= MAXFILE:
                raise ValueError(f"inode {inum} would exceed {MAXFILE} blocks")
            if fbn < NDIRECT:
                if din.addrs[fbn] == 0:
                    din.addrs[fbn] = self._alloc_block()
                target = din.addrs[fbn]
            else:
                if din.addrs[NDIRECT] == 0:
                    din.addrs[NDIRECT] = self._alloc_block()
                indirect = list(_INDIRECT.unpack(self._rsect(din.addrs[NDIRECT])))
                slot = fbn - NDIRECT
                if indirect[slot] == 0:
                    indirect[slot] = self._alloc_block()
                    self._wsect(din.addrs[NDIRECT], _INDIRECT.pack(*indirect))
                target = indirect[slot]
            start = off - fbn * BSIZE
            n1 = min(len(rest), BSIZE - start)
            buf = bytearray(self._rsect(target))
            buf[start : start + n1] = rest[:n1]
            self._wsect(target, bytes(buf))
            rest = rest[n1:]
            off += n1
        din.size = off
        self.write_inode(inum, din)

    def add_file(self, name: str, data: bytes) -> int:
        """Add a regular file to the root directory; a leading '_' is dropped."""
        self._check_open()
        if "/" in name:
            raise ValueError(f"file name {name!r} contains '/'")
        if name.startswith("_"):
            name = name[1:]
        inum = self.ialloc(InodeType.FILE)
        self.iappend(self.rootino, DirEntry(inum, name).pack())
        self.iappend(inum, data)
        return inum

    def finish(self) -> bytes:
        """Round the root directory size up, write the free map and return the image."""
        self._check_open()
        din = self.read_inode(self.rootino)
        din.size = (din.size // BSIZE + 1) * BSIZE
        self.write_inode(self.rootino, din)

        used = self.freeblock
        if used >= BPB:
            raise ValueError("free map needs more than one block")
        bitmap = ((1 << used) - 1).to_bytes(BSIZE, "little")
        self._wsect(self.sb.bmapstart, bitmap)
        self._finished = True
        return bytes(self._image)


def build_image(
    files: Mapping[str, bytes] | Iterable[tuple[str, bytes]],
    size: int = FSSIZE,
    ninodes: int = NINODES,
) -> bytes:
    """Build an image whose root directory holds ``files`` in the given order."""
    builder = ImageBuilder(size, ninodes)
    items = files.items() if isinstance(files, Mapping) else files
    for name, data in items:
        builder.add_file(name, data)
    return builder.finish()


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else list(argv)
    if not args:
        print("Usage: mkfs fs.img files...", file=sys.stderr)
        return 1
    image_path, *names = args

    try:
        builder = ImageBuilder()
        print(
            f"nmeta {builder.nmeta} (boot, super, log blocks {builder.nlog} "
            f"inode blocks {builder.ninodeblocks}, bitmap blocks {builder.nbitmap}) "
            f"blocks {builder.nblocks} total {builder.size}"
        )
        for name in names:
            with open(name, "rb") as fh:
                data = fh.read()
            builder.add_file(name, data)
        used = builder.freeblock
        image = builder.finish()
        print(f"balloc: first {used} blocks have been allocated")
        print(f"balloc: write bitmap block at sector {builder.sb.bmapstart}")
        Path(image_path).write_bytes(image)
    except OSError as exc:
        print(f"{exc.filename}: {exc.strerror}", file=sys.stderr)
        return 1
    except ValueError as exc:
        print(f"mkfs: {exc}", file=sys.stderr)
        return 1
    return 0