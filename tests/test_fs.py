import pytest

from xvfs.fs import FileSystem, FsError, Stat, skipelem
from xvfs.layout import BSIZE, DIRSIZ, MAXFILE, NDIRECT, ROOTINO, InodeType
from xvfs.mkfs import build_image

HELLO = b"hello world\n"
BIG = bytes(range(256)) * ((NDIRECT + 3) * BSIZE // 256) + b"tail"


def make_fs(devsw=None):
    image = build_image({"hello": HELLO, "big": BIG})
    fs = FileSystem.open_image(image, 1)
    if devsw:
        fs.devsw.update(devsw)
    return fs


def read_file(fs, path):
    ip = fs.namei(path)
    fs.ilock(ip)
    try:
        return fs.readi(ip, 0, ip.size)
    finally:
        fs.iunlockput(ip)


def test_skipelem_examples():
    assert skipelem("a/bb/c") == ("a", "bb/c")
    assert skipelem("///a//bb") == ("a", "bb")
    assert skipelem("a") == ("a", "")
    assert skipelem("") is None
    assert skipelem("////") is None


def test_skipelem_truncates_long_names():
    name, rest = skipelem("/" + "x" * 20 + "/y")
    assert name == "x" * DIRSIZ
    assert rest == "y"


def test_root_is_directory():
    fs = make_fs()
    ip = fs.namei("/")
    fs.ilock(ip)
    assert ip.inum == ROOTINO
    assert ip.type == InodeType.DIR
    fs.iunlockput(ip)


def test_read_small_file():
    fs = make_fs()
    assert read_file(fs, "/hello") == HELLO


def test_read_file_with_indirect_blocks():
    fs = make_fs()
    assert read_file(fs, "big") == BIG


def test_readi_clips_to_size_and_rejects_offset_past_end():
    fs = make_fs()
    ip = fs.namei("/hello")
    fs.ilock(ip)
    assert fs.readi(ip, 6, 1000) == HELLO[6:]
    with pytest.raises(FsError):
        fs.readi(ip, len(HELLO) + 1, 1)
    fs.iunlockput(ip)


def test_stati_reports_inode():
    fs = make_fs()
    ip = fs.namei("/hello")
    fs.ilock(ip)
    st = fs.stati(ip)
    fs.iunlockput(ip)
    assert st == Stat(dev=1, ino=ip.inum, type=InodeType.FILE, nlink=1, size=len(HELLO))


def test_missing_path_raises():
    fs = make_fs()
    with pytest.raises(FileNotFoundError):
        fs.namei("/nothere")


def test_file_as_directory_raises():
    fs = make_fs()
    with pytest.raises(NotADirectoryError):
        fs.namei("/hello/x")


def test_nameiparent_returns_parent_and_name():
    fs = make_fs()
    dp, name = fs.nameiparent("/hello")
    assert dp.inum == ROOTINO
    assert name == "hello"
    fs.iput(dp)
    with pytest.raises(FileNotFoundError):
        fs.nameiparent("/")


def test_iget_shares_cached_inode():
    fs = make_fs()
    a = fs.iget(ROOTINO)
    b = fs.iget(ROOTINO)
    assert a is b
    assert a.ref == 2


def test_ilock_twice_raises():
    fs = make_fs()
    ip = fs.namei("/hello")
    fs.ilock(ip)
    with pytest.raises(FsError):
        fs.ilock(ip)


def test_write_is_invisible_until_commit_and_survives_remount():
    fs = make_fs()
    data = b"fresh contents " * 70
    before = bytes(fs.cache.disk.image)
    with fs.log.transaction():
        ip = fs.ialloc(InodeType.FILE)
        fs.ilock(ip)
        ip.nlink = 1
        fs.iupdate(ip)
        assert fs.writei(ip, data, 0) == len(data)
        fs.iunlock(ip)
        root = fs.namei("/")
        fs.ilock(root)
        fs.dirlink(root, "new", ip.inum)
        fs.iunlockput(root)
        fs.iput(ip)
        assert bytes(fs.cache.disk.image) == before
    assert bytes(fs.cache.disk.image) != before

    again = FileSystem.open_image(bytes(fs.cache.disk.image), 1)
    assert read_file(again, "/new") == data
    assert read_file(again, "/hello") == HELLO


def test_dirlookup_finds_entry_and_duplicate_link_fails():
    fs = make_fs()
    root = fs.namei("/")
    fs.ilock(root)
    ip, off = fs.dirlookup(root, "hello")
    assert off % 16 == 0
    assert fs.dirlookup(root, "missing") is None
    with fs.log.transaction():
        with pytest.raises(FsError):
            fs.dirlink(root, "hello", ip.inum)
    fs.iunlockput(root)


class _Device:
    def __init__(self):
        self.written = b""

    def read(self, n):
        return b"k" * n

    def write(self, data):
        self.written += data
        return len(data)


def test_device_inode_goes_to_devsw():
    dev = _Device()
    fs = make_fs({1: dev})
    with fs.log.transaction():
        ip = fs.ialloc(InodeType.DEVICE)
        fs.ilock(ip)
        ip.major = 1
        fs.iupdate(ip)
    assert fs.readi(ip, 0, 3) == b"kkk"
    assert fs.writei(ip, b"out", 0) == 3
    assert dev.written == b"out"
    ip.major = 7
    with pytest.raises(FsError):
        fs.readi(ip, 0, 1)