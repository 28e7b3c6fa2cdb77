# xvfs

xvfs is a small Unix-style file system in plain Python with no dependencies. It
builds disk images and reads and writes them through the layers a simple kernel
uses: a block disk, a buffer cache, a redo log, inodes, directories and path names.

## Modules

- `xvfs.layout`: the on-disk format: `Superblock`, `DiskInode` and `Dirent`
  (each with `pack()` and `unpack()`), `InodeType`, `FsParams` (sizes of the
  disk and of the in-memory tables), and `iblock` / `bblock`, which find the
  block holding an inode or a bitmap bit. `FsPanic` is raised when an internal
  invariant is broken.
- `xvfs.disk`: `MemDisk`, a disk held in memory (`rw()`, `image()`), and `Buf`,
  a cached block.
- `xvfs.bio`: `BufferCache`, a fixed set of buffers recycled least recently used
  first: `read()`, `write()`, `release()`, and `block()` as a context manager.
- `xvfs.journal`: `Log`, a physical redo log. Wrap each file-system operation in
  `with fs.log.transaction():` (or `begin_op()` / `end_op()`); the last
  operation to finish commits, and an interrupted commit is replayed when the log
  is opened.
- `xvfs.fs`: `FileSystem`, with `ialloc`, `iget`, `ilock`, `iunlock`, `iput`,
  `readi`, `writei`, `dirlookup`, `dirlink`, `namei` and `nameiparent`, plus
  `Inode`, `Stat`, `skipelem` and `namecmp`. Inodes of type `DEV` are served by
  objects passed in the `devsw` mapping.
- `xvfs.file`: `FileTable` of shared `File` handles onto inodes and pipes
  (`alloc`, `dup`, `close`, `stat`, `read`, `write`, `pipe`, `open_inode`), and
  `Pipe`, a 512-byte bounded channel.
- `xvfs.console`: `Console`, a line-editing input buffer (backspace, ^U, ^D,
  ^P) that echoes to a serial byte log and to `CgaScreen`, an 80x25 text screen.
- `xvfs.keyboard`: `KeyboardDecoder`, which turns PC scan codes into characters,
  tracking shift, control and caps lock.
- `xvfs.fmt`: `printf_format` and `cprintf_format`, small formatters that
  understand `%d %x %p %s %%` (and `%c` for `printf_format`).
- `xvfs.matcher`: `match`, a matcher for `^ . * $`, and `grep`, which yields
  matching newline-terminated lines from a stream of byte chunks.
- `xvfs.tools`: `cat`, `echo`, `ls`, `fmtname` and `grep_files`, working on an
  open `FileSystem`.

## Install

```
pip install .
```

## Build an image

```
xvfs-mkfs fs.img README.md notes.txt
```

This writes `fs.img` (1000 blocks of 512 bytes) whose root directory holds the
named files. A leading `_` in a file name is dropped from the name stored in the
image, names are cut to 14 characters, and no argument may contain `/`.

From Python:

```python
from xvfs.layout import FsParams
from xvfs.mkfs import build_image

image = build_image([("hello", b"hello world\n")], FsParams())
```

## Look inside an image

```
xvfs ls fs.img /
xvfs cat fs.img /hello
xvfs grep fs.img '^hel' /hello
xvfs echo some words
```

`ls` lists each entry as name (padded to 14 characters), type, inode number and
size; with no path it lists the root. `cat` and `grep` read standard input when
no path is given.

From Python:

```python
from xvfs.disk import MemDisk
from xvfs.fs import FileSystem
from xvfs.tools import cat, ls

fs = FileSystem(MemDisk(image))
print(ls(fs, "/"))
print(cat(fs, ["/hello"]))
```

## What it does not do

The commands only read images: the image is loaded into memory and never written
back. There are no commands or functions for creating directories, removing or
linking files, or opening files by path for writing; those would be built from
`FileSystem` and `FileTable` directly. There are no processes, no program
loading and no real disk or keyboard hardware; `MemDisk`, `Console` and
`KeyboardDecoder` work on data handed to them.

## Tests

```
pip install .[test]
pytest
```