# xvfs

A compact Unix-style file system in plain Python, covering the storage layer
of a small teaching kernel together with a few user tools.

- `xvfs.layout` – the on-disk format: `SuperBlock`, `DiskInode`, `DirEntry`,
  `InodeType`, and the `iblock` / `bblock` helpers.
- `xvfs.mkfs` – `ImageBuilder` and `build_image` create a fresh image with a
  root directory and the files you add.
- `xvfs.disk` – `MemDisk` (a disk held in memory) and `BufferCache` (a block
  cache with reference counts that recycles the least recently used buffer).
- `xvfs.log` – `Log`, a redo log with `begin_op` / `end_op` or the
  `transaction()` context manager, and `recover()` run when it is created.
- `xvfs.fs` – `FileSystem` with block allocation, inodes, reading and writing
  (`readi`, `writei`), directories (`dirlookup`, `dirlink`) and path lookup
  (`namei`, `nameiparent`).
- `xvfs.file` – `FileTable`, open `File` objects and bounded in-memory `Pipe`s.
- `xvfs.console` and `xvfs.kbd` – a line-editing `Console` with an 80x25 text
  screen and a captured serial stream, and a PC scan-code `Keyboard` decoder.
- `xvfs.grep`, `xvfs.fmt`, `xvfs.commands` – a tiny pattern matcher and
  `grep`, the `printf_format` / `cprintf_format` formatters, and `echo`, `cat`
  and `ls`.

## Install

```
pip install .
```

## Building an image

```
xvfs-mkfs fs.img notes.txt _hello
```

The image has 1000 blocks and room for 200 inodes. Files are stored in the
root directory; a leading `_` in a file name is dropped, and names containing
`/` are refused. From Python:

```python
from xvfs.mkfs import build_image
from xvfs.fs import FileSystem
from xvfs.commands import cat, ls

image = build_image({"hello": b"hello world\n"}, 1000, 200)
fs = FileSystem.open_image(image, 1)
print(ls(fs, "/"))       # one line per entry: name, type, inode number, size
print(cat(fs, "/hello"))  # b'hello world\n'
```

## Reading an image

The `xvfs` command takes the tool name first:

```
xvfs echo some words
xvfs ls fs.img /
xvfs cat fs.img /hello
```

`ls` with no path lists `.`, which is resolved from the root directory; `cat`
with no path copies standard input to standard output.

## Searching text

`grep` understands `^`, `$`, `.` and `*` and prints matching lines:

```
xvfs-grep '^ab*c' file.txt
```

With no file it reads standard input. A last line without a newline is not
reported.

## What it does not do

- There are no processes, system calls or scheduler: the file system is used
  directly through `FileSystem` and `FileTable` from Python.
- The command-line tools only read images. Nothing writes a changed image back
  to disk, and there are no tools to create, link, remove or make directories
  inside an image.
- `Log.begin_op` does not wait for room in the log; it raises `LogError` when
  the transaction would not fit.

## Tests

```
pip install .[test]
pytest
```