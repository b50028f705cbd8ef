import errno
import threading

import pytest

from xvfs.console import Console
from xvfs.file import PIPESIZE, FileTable, FileType, Pipe
from xvfs.fs import FileSystem
from xvfs.layout import InodeType
from xvfs.mkfs import build_image

HELLO = b"hello world\n"


@pytest.fixture
def fs():
    return FileSystem.open_image(build_image({"hello": HELLO}))


def test_read_whole_file(fs):
    ft = FileTable(fs)
    f = ft.open_inode(fs.namei("/hello"), True, False)
    assert ft.read(f, 100) == HELLO
    assert f.off == len(HELLO)
    assert ft.read(f, 100) == b""


def test_read_in_pieces(fs):
    ft = FileTable(fs)
    f = ft.open_inode(fs.namei("/hello"), True, False)
    assert ft.read(f, 5) == HELLO[:5]
    assert ft.read(f, 5) == HELLO[5:10]


def test_write_then_reopen(fs):
    ft = FileTable(fs)
    f = ft.open_inode(fs.namei("/hello"), True, True)
    assert ft.write(f, b"HELLO") == 5
    ft.close(f)
    g = ft.open_inode(fs.namei("/hello"), True, False)
    assert ft.read(g, 100) == b"HELLO" + HELLO[5:]


def test_large_write_spans_transactions(fs):
    ft = FileTable(fs)
    data = bytes(range(256)) * 16
    f = ft.open_inode(fs.namei("/hello"), True, True)
    assert ft.write(f, data) == len(data)
    assert ft.stat(f).size == len(data)
    g = ft.open_inode(fs.namei("/hello"), True, False)
    assert ft.read(g, len(data) + 10) == data


def test_stat(fs):
    ft = FileTable(fs)
    f = ft.open_inode(fs.namei("/hello"), True, False)
    st = ft.stat(f)
    assert st.size == len(HELLO)
    assert st.type == InodeType.FILE


def test_permissions(fs):
    ft = FileTable(fs)
    wo = ft.open_inode(fs.namei("/hello"), False, True)
    with pytest.raises(OSError) as info:
        ft.read(wo, 1)
    assert info.value.errno == errno.EBADF
    ro = ft.open_inode(fs.namei("/hello"), True, False)
    with pytest.raises(OSError) as info:
        ft.write(ro, b"x")
    assert info.value.errno == errno.EBADF


def test_dup_and_close_refcounts(fs):
    ft = FileTable(fs)
    f = ft.open_inode(fs.namei("/hello"), True, False)
    assert ft.dup(f) is f
    assert f.ref == 2
    ft.close(f)
    assert f.ref == 1
    assert f.type is FileType.INODE
    ft.close(f)
    assert f.ref == 0
    assert f.type is FileType.NONE
    with pytest.raises(ValueError):
        ft.close(f)
    with pytest.raises(ValueError):
        ft.dup(f)


def test_alloc_exhausted(fs):
    ft = FileTable(fs, nfile=2)
    a = ft.alloc()
    ft.alloc()
    with pytest.raises(OSError) as info:
        ft.alloc()
    assert info.value.errno == errno.ENFILE
    ft.close(a)
    assert ft.alloc() is a


def test_pipe_roundtrip(fs):
    ft = FileTable(fs)
    r, w = ft.pipe()
    assert ft.write(w, b"abc") == 3
    assert ft.read(r, 10) == b"abc"
    with pytest.raises(OSError):
        ft.read(w, 1)
    with pytest.raises(OSError):
        ft.write(r, b"x")


def test_pipe_eof_after_writer_closed(fs):
    ft = FileTable(fs)
    r, w = ft.pipe()
    ft.write(w, b"xy")
    ft.close(w)
    assert ft.read(r, 10) == b"xy"
    assert ft.read(r, 10) == b""


def test_pipe_broken_when_reader_gone(fs):
    ft = FileTable(fs)
    r, w = ft.pipe()
    ft.close(r)
    with pytest.raises(BrokenPipeError):
        ft.write(w, b"x" * (PIPESIZE + 1))


def test_pipe_blocking_transfer(fs):
    ft = FileTable(fs)
    r, w = ft.pipe()
    data = bytes(range(256)) * 10

    def writer():
        ft.write(w, data)
        ft.close(w)

    t = threading.Thread(target=writer)
    t.start()
    got = bytearray()
    while chunk := ft.read(r, 300):
        got += chunk
    t.join(timeout=5)
    assert not t.is_alive()
    assert bytes(got) == data


def test_pipe_needs_two_slots(fs):
    ft = FileTable(fs, nfile=1)
    with pytest.raises(OSError):
        ft.pipe()
    assert ft.alloc().ref == 1


def test_stat_of_pipe_rejected(fs):
    ft = FileTable(fs)
    r, _ = ft.pipe()
    with pytest.raises(OSError):
        ft.stat(r)


def test_pipe_object_directly():
    p = Pipe()
    assert p.write(b"ab") == 2
    assert p.read(1) == b"a"
    assert p.read(5) == b"b"
    p.close(True)
    p.close(False)
    assert p.closed


def test_device_write_goes_to_console(fs):
    console = Console()
    fs.devsw[1] = console
    with fs.log.transaction():
        ip = fs.ialloc(InodeType.DEVICE)
        fs.ilock(ip)
        ip.major = 1
        ip.nlink = 1
        fs.iupdate(ip)
        fs.iunlock(ip)
    ft = FileTable(fs)
    f = ft.open_inode(ip, True, True)
    assert ft.write(f, b"hi") == 2
    assert bytes(console.serial) == b"hi"