"""Builds a fresh file system image holding a root directory and some files."""

from __future__ import annotations

import os
import struct
import sys
from typing import Callable, Iterable, Optional

from xvfs.layout import (
    BPB,
    BSIZE,
    DINODE_SIZE,
    IPB,
    MAXFILE,
    NDIRECT,
    NINDIRECT,
    ROOTINO,
    Dirent,
    DiskInode,
    FsParams,
    InodeType,
    Superblock,
    iblock,
)

_INDIRECT = struct.Struct(f"<{NINDIRECT}I")


class _ImageBuilder:
    """Lays out the disk and appends inodes and data to it."""

    def __init__(self, params: FsParams, report: Callable[[str], None]) -> None:
        self.params = params
        self.report = report
        self.nbitmap = params.size // BPB + 1
        self.ninodeblocks = params.ninodes // IPB + 1
        self.nlog = params.nlog
        self.nmeta = 2 + self.nlog + self.ninodeblocks + self.nbitmap
        self.nblocks = params.size - self.nmeta
        self.sb = Superblock(
            size=params.size,
            nblocks=self.nblocks,
            ninodes=params.ninodes,
            nlog=self.nlog,
            logstart=2,
            inodestart=2 + self.nlog,
            bmapstart=2 + self.nlog + self.ninodeblocks,
        )
        self.freeinode = 1
        self.freeblock = self.nmeta
        self.disk = bytearray(params.size * BSIZE)
        self.wsect(1, self.sb.pack())

    def wsect(self, sec: int, data: bytes) -> None:
        block = bytes(data).ljust(BSIZE, b"\0")[:BSIZE]
        end = (sec + 1) * BSIZE
        if len(self.disk) < end:
            self.disk.extend(bytes(end - len(self.disk)))
        self.disk[sec * BSIZE : end] = block

    def rsect(self, sec: int) -> bytes:
        if (sec + 1) * BSIZE > len(self.disk):
            raise ValueError(f"read: block {sec} lies beyond the image")
        return bytes(self.disk[sec * BSIZE : (sec + 1) * BSIZE])

    def _inode_offset(self, inum: int) -> tuple[int, int]:
        return iblock(inum, self.sb), (inum % IPB) * DINODE_SIZE

    def winode(self, inum: int, din: DiskInode) -> None:
        bn, off = self._inode_offset(inum)
        buf = bytearray(self.rsect(bn))
        buf[off : off + DINODE_SIZE] = din.pack()
        self.wsect(bn, buf)

    def rinode(self, inum: int) -> DiskInode:
        bn, off = self._inode_offset(inum)
        return DiskInode.unpack(self.rsect(bn)[off : off + DINODE_SIZE])

    def ialloc(self, type: int) -> int:
        inum = self.freeinode
        self.freeinode += 1
        self.winode(inum, DiskInode(type=int(type), nlink=1, size=0))
        return inum

    def _take_block(self) -> int:
        blockno = self.freeblock
        self.freeblock += 1
        return blockno

    def iappend(self, inum: int, data: bytes) -> None:
        din = self.rinode(inum)
        off = din.size
        pos = 0
        while pos < len(data):
            fbn = off // BSIZE
            if fbn >= MAXFILE:
                raise ValueError("file too large for an inode")
            if fbn < NDIRECT:
                if din.addrs[fbn] == 0:
                    din.addrs[fbn] = self._take_block()
                x = din.addrs[fbn]
            else:
                if din.addrs[NDIRECT] == 0:
                    din.addrs[NDIRECT] = self._take_block()
                indirect = list(_INDIRECT.unpack(self.rsect(din.addrs[NDIRECT])))
                if indirect[fbn - NDIRECT] == 0:
                    indirect[fbn - NDIRECT] = self._take_block()
                    self.wsect(din.addrs[NDIRECT], _INDIRECT.pack(*indirect))
                x = indirect[fbn - NDIRECT]
            n1 = min(len(data) - pos, (fbn + 1) * BSIZE - off)
            buf = bytearray(self.rsect(x))
            start = off - fbn * BSIZE
            buf[start : start + n1] = data[pos : pos + n1]
            self.wsect(x, buf)
            pos += n1
            off += n1
        din.size = off
        self.winode(inum, din)

    def make_root(self) -> None:
        rootino = self.ialloc(InodeType.DIR)
        if rootino != ROOTINO:
            raise ValueError("root directory must be the first inode")
        self.iappend(rootino, Dirent(rootino, ".").pack())
        self.iappend(rootino, Dirent(rootino, "..").pack())

    def add_file(self, name: str, data: bytes) -> None:
        if "/" in name:
            raise ValueError(f"file name {name!r} must not contain '/'")
        # Build outputs carry a leading underscore that is dropped on disk.
        if name.startswith("_"):
            name = name[1:]
        inum = self.ialloc(InodeType.FILE)
        self.iappend(ROOTINO, Dirent(inum, name).pack())
        self.iappend(inum, data)

    def balloc(self, used: int) -> None:
        self.report(f"balloc: first {used} blocks have been allocated")
        if used >= BPB:
            raise ValueError("too many blocks for one bitmap block")
        buf = bytearray(BSIZE)
        for i in range(used):
            buf[i // 8] |= 1 << (i % 8)
        self.report(f"balloc: write bitmap block at sector {self.sb.bmapstart}")
        self.wsect(self.sb.bmapstart, buf)

    def finish(self) -> bytes:
        din = self.rinode(ROOTINO)
        din.size = (din.size // BSIZE + 1) * BSIZE
        self.winode(ROOTINO, din)
        self.balloc(self.freeblock)
        return bytes(self.disk)


def _ignore(_message: str) -> None:
    pass


def _build(
    files: Iterable[tuple[str, bytes]],
    params: FsParams,
    report: Callable[[str], None],
) -> bytes:
    builder = _ImageBuilder(params, report)
    report(
        f"nmeta {builder.nmeta} (boot, super, log blocks {builder.nlog} "
        f"inode blocks {builder.ninodeblocks}, bitmap blocks {builder.nbitmap}) "
        f"blocks {builder.nblocks} total {params.size}"
    )
    builder.make_root()
    for name, data in files:
        builder.add_file(name, bytes(data))
    return builder.finish()


def build_image(
    files: Iterable[tuple[str, bytes]], params: Optional[FsParams] = None
) -> bytes:
    """Return a disk image whose root directory holds the given (name, data) files."""
    return _build(files, params or FsParams(), _ignore)


def main(argv: Optional[list[str]] = None) -> int:
    """Command line: mkfs fs.img files..."""
    args = sys.argv[1:] if argv is None else list(argv)
    if len(args) < 1:
        print("Usage: mkfs fs.img files...", file=sys.stderr)
        return 1
    out_path, paths = args[0], args[1:]

    files = []
    for path in paths:
        if "/" in path:
            print(f"mkfs: file name {path!r} must not contain '/'", file=sys.stderr)
            return 1
        try:
            with open(path, "rb") as fh:
                files.append((os.path.basename(path), fh.read()))
        except OSError as exc:
            print(f"{path}: {exc.strerror}", file=sys.stderr)
            return 1

    try:
        image = _build(files, FsParams(), print)
    except ValueError as exc:
        print(f"mkfs: {exc}", file=sys.stderr)
        return 1

    try:
        with open(out_path, "wb") as fh:
            fh.write(image)
    except OSError as exc:
        print(f"{out_path}: {exc.strerror}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())