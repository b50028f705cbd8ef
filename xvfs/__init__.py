"""A small Unix-style file system: image builder, block cache, redo log, inodes,
directories, open files and pipes, a console, a keyboard decoder and tools."""

__version__ = "0.1.0"