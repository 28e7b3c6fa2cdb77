"""On-disk layout of the file system: constants, records and block arithmetic."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from enum import IntEnum

ROOTINO = 1
BSIZE = 512
NDIRECT = 12
NINDIRECT = BSIZE // 4
MAXFILE = NDIRECT + NINDIRECT
DIRSIZ = 14
BPB = BSIZE * 8

_SUPERBLOCK = struct.Struct("<7I")
_DINODE = struct.Struct(f"<4hI{NDIRECT + 1}I")
_DIRENT = struct.Struct(f"<H{DIRSIZ}s")

SUPERBLOCK_SIZE = _SUPERBLOCK.size
DINODE_SIZE = _DINODE.size
DIRENT_SIZE = _DIRENT.size
IPB = BSIZE // DINODE_SIZE


class FsPanic(RuntimeError):
    """An unrecoverable inconsistency inside the file system or kernel code."""


class InodeType(IntEnum):
    """Kinds of inode stored in the type field."""

    DIR = 1
    FILE = 2
    DEV = 3


@dataclass(frozen=True)
class FsParams:
    """Sizing parameters of a file system and its in-memory tables."""

    size: int = 1000
    nlog: int = 30
    ninodes: int = 200
    maxopblocks: int = 10
    nbuf: int = 30
    ninode: int = 50
    nfile: int = 100
    ndev: int = 10
    rootdev: int = 1


@dataclass
class Superblock:
    """Describes where each region of the disk lives."""

    size: int = 0
    nblocks: int = 0
    ninodes: int = 0
    nlog: int = 0
    logstart: int = 0
    inodestart: int = 0
    bmapstart: int = 0

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
    def unpack(cls, data: bytes) -> Superblock:
        try:
            return cls(*_SUPERBLOCK.unpack_from(data))
        except struct.error as exc:
            raise ValueError(f"superblock needs {SUPERBLOCK_SIZE} bytes") from exc


def _empty_addrs() -> list[int]:
    return [0] * (NDIRECT + 1)


@dataclass
class DiskInode:
    """The on-disk form of an inode."""

    type: int = 0
    major: int = 0
    minor: int = 0
    nlink: int = 0
    size: int = 0
    addrs: list[int] = field(default_factory=_empty_addrs)

    def pack(self) -> bytes:
        if len(self.addrs) != NDIRECT + 1:
            raise ValueError(f"an inode holds exactly {NDIRECT + 1} addresses")
        return _DINODE.pack(
            self.type, self.major, self.minor, self.nlink, self.size, *self.addrs
        )

    @classmethod
    def unpack(cls, data: bytes) -> DiskInode:
        try:
            values = _DINODE.unpack_from(data)
        except struct.error as exc:
            raise ValueError(f"inode needs {DINODE_SIZE} bytes") from exc
        return cls(*values[:5], list(values[5:]))


@dataclass
class Dirent:
    """One directory entry: an inode number and a name of up to DIRSIZ bytes."""

    inum: int = 0
    name: str = ""

    def pack(self) -> bytes:
        raw = self.name.encode("latin-1")[:DIRSIZ]
        return _DIRENT.pack(self.inum, raw)

    @classmethod
    def unpack(cls, data: bytes) -> Dirent:
        try:
            inum, raw = _DIRENT.unpack_from(data)
        except struct.error as exc:
            raise ValueError(f"directory entry needs {DIRENT_SIZE} bytes") from exc
        return cls(inum, raw.split(b"\0", 1)[0].decode("latin-1"))


def iblock(inum: int, sb: Superblock) -> int:
    """Block that holds inode number inum."""
    return inum // IPB + sb.inodestart


def bblock(b: int, sb: Superblock) -> int:
    """Bitmap block that holds the bit for block b."""
    return b // BPB + sb.bmapstart