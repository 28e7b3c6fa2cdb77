"""Inodes, file contents, directories and path names on top of the log and buffer cache."""

from __future__ import annotations

import struct
import threading
from dataclasses import dataclass, field
from typing import Mapping, Optional, Protocol

from xvfs.bio import BufferCache
from xvfs.disk import Buf, MemDisk, _SleepLock
from xvfs.journal import Log
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
    Dirent,
    DiskInode,
    FsPanic,
    FsParams,
    InodeType,
    Superblock,
    bblock,
    iblock,
)

_UINT = struct.Struct("<I")


class Device(Protocol):
    """A character device reachable through an inode of type DEV."""

    def read(self, ip: Inode, n: int) -> bytes: ...

    def write(self, ip: Inode, data: bytes) -> int: ...


@dataclass
class Stat:
    """Metadata about a file."""

    dev: int
    ino: int
    type: int
    nlink: int
    size: int


def _empty_addrs() -> list[int]:
    return [0] * (NDIRECT + 1)


@dataclass(eq=False)
class Inode:
    """In-memory copy of an inode.

    ``dev``, ``inum`` and ``ref`` are guarded by the inode cache; the other
    fields by the inode's own lock, and are only meaningful while ``valid``.
    """

    dev: int = 0
    inum: int = 0
    ref: int = 0
    valid: bool = False
    type: int = 0
    major: int = 0
    minor: int = 0
    nlink: int = 0
    size: int = 0
    addrs: list[int] = field(default_factory=_empty_addrs)
    lock: _SleepLock = field(default_factory=_SleepLock, repr=False)


def skipelem(path: str) -> Optional[tuple[str, str]]:
    """Split off the first element of a path.

    Returns (name, rest) with leading slashes removed from rest, or None when
    the path has no elements left. Names are cut to DIRSIZ characters.
    """
    stripped = path.lstrip("/")
    if not stripped:
        return None
    name, _, rest = stripped.partition("/")
    return name[:DIRSIZ], rest.lstrip("/")


def namecmp(s: str, t: str) -> int:
    """Compare two directory entry names over at most DIRSIZ characters."""
    for i in range(DIRSIZ):
        a = ord(s[i]) if i < len(s) else 0
        b = ord(t[i]) if i < len(t) else 0
        if a != b or a == 0:
            return a - b
    return 0


class FileSystem:
    """The file system on one disk: inode cache, block allocation and naming."""

    def __init__(
        self,
        disk: MemDisk,
        params: Optional[FsParams] = None,
        devsw: Optional[Mapping[int, Device]] = None,
    ) -> None:
        self.params = params or FsParams()
        self.dev = self.params.rootdev
        self.devsw: dict[int, Device] = dict(devsw or {})
        self.cache = BufferCache(disk, self.params.nbuf)
        self._icache_lock = threading.Lock()
        self._inodes = [Inode() for _ in range(self.params.ninode)]
        self.sb = Superblock()
        self.read_superblock()
        self.log = Log(self.cache, self.dev, self.params)

    def read_superblock(self) -> Superblock:
        """Read the superblock from disk and remember it."""
        with self.cache.block(self.dev, 1) as bp:
            self.sb = Superblock.unpack(bytes(bp.data))
        return self.sb

    # Blocks.

    def _bzero(self, blockno: int) -> None:
        with self.cache.block(self.dev, blockno) as bp:
            bp.data[:] = bytes(BSIZE)
            self.log.log_write(bp)

    def _claim_free_bit(self, bp: Buf, base: int) -> Optional[int]:
        for bi in range(min(BPB, self.sb.size - base)):
            mask = 1 << (bi % 8)
            if not bp.data[bi // 8] & mask:
                bp.data[bi // 8] |= mask
                self.log.log_write(bp)
                return base + bi
        return None

    def _balloc(self) -> int:
        for base in range(0, self.sb.size, BPB):
            with self.cache.block(self.dev, bblock(base, self.sb)) as bp:
                blockno = self._claim_free_bit(bp, base)
            if blockno is not None:
                self._bzero(blockno)
                return blockno
        raise FsPanic("balloc: out of blocks")

    def _bfree(self, blockno: int) -> None:
        with self.cache.block(self.dev, bblock(blockno, self.sb)) as bp:
            bi = blockno % BPB
            mask = 1 << (bi % 8)
            if not bp.data[bi // 8] & mask:
                raise FsPanic("freeing free block")
            bp.data[bi // 8] &= ~mask & 0xFF
            self.log.log_write(bp)

    # Inodes.

    def _inode_slot(self, inum: int) -> int:
        return (inum % IPB) * DINODE_SIZE

    def ialloc(self, type: int) -> Inode:
        """Allocate an on-disk inode of the given type; returns it unlocked."""
        for inum in range(1, self.sb.ninodes):
            with self.cache.block(self.dev, iblock(inum, self.sb)) as bp:
                off = self._inode_slot(inum)
                dip = DiskInode.unpack(bytes(bp.data[off : off + DINODE_SIZE]))
                if dip.type != 0:
                    continue
                bp.data[off : off + DINODE_SIZE] = DiskInode(type=int(type)).pack()
                self.log.log_write(bp)
            return self.iget(self.dev, inum)
        raise FsPanic("ialloc: no inodes")

    def iupdate(self, ip: Inode) -> None:
        """Copy a changed in-memory inode to disk; the caller holds its lock."""
        with self.cache.block(ip.dev, iblock(ip.inum, self.sb)) as bp:
            off = self._inode_slot(ip.inum)
            dip = DiskInode(ip.type, ip.major, ip.minor, ip.nlink, ip.size, list(ip.addrs))
            bp.data[off : off + DINODE_SIZE] = dip.pack()
            self.log.log_write(bp)

    def iget(self, dev: int, inum: int) -> Inode:
        """Return the cached inode for (dev, inum), taking a reference; not locked."""
        with self._icache_lock:
            empty: Optional[Inode] = None
            for ip in self._inodes:
                if ip.ref > 0 and ip.dev == dev and ip.inum == inum:
                    ip.ref += 1
                    return ip
                if empty is None and ip.ref == 0:
                    empty = ip
            if empty is None:
                raise FsPanic("iget: no inodes")
            empty.dev = dev
            empty.inum = inum
            empty.ref = 1
            empty.valid = False
            return empty

    def idup(self, ip: Inode) -> Inode:
        """Take another reference to ip."""
        with self._icache_lock:
            ip.ref += 1
        return ip

    def ilock(self, ip: Optional[Inode]) -> None:
        """Lock the inode, reading it from disk if needed."""
        if ip is None or ip.ref < 1:
            raise FsPanic("ilock")
        ip.lock.acquire()
        if not ip.valid:
            with self.cache.block(ip.dev, iblock(ip.inum, self.sb)) as bp:
                off = self._inode_slot(ip.inum)
                dip = DiskInode.unpack(bytes(bp.data[off : off + DINODE_SIZE]))
            ip.type = dip.type
            ip.major = dip.major
            ip.minor = dip.minor
            ip.nlink = dip.nlink
            ip.size = dip.size
            ip.addrs = list(dip.addrs)
            ip.valid = True
            if ip.type == 0:
                raise FsPanic("ilock: no type")

    def iunlock(self, ip: Optional[Inode]) -> None:
        if ip is None or not ip.lock.holding() or ip.ref < 1:
            raise FsPanic("iunlock")
        ip.lock.release()

    def iput(self, ip: Inode) -> None:
        """Drop a reference; free the inode on disk when it was the last and unlinked.

        Must run inside a transaction, since it may free the inode.
        """
        ip.lock.acquire()
        try:
            if ip.valid and ip.nlink == 0:
                with self._icache_lock:
                    refs = ip.ref
                if refs == 1:
                    self._itrunc(ip)
                    ip.type = 0
                    self.iupdate(ip)
                    ip.valid = False
        finally:
            ip.lock.release()
        with self._icache_lock:
            ip.ref -= 1

    def iunlockput(self, ip: Inode) -> None:
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
            with self.cache.block(ip.dev, ip.addrs[NDIRECT]) as bp:
                (addr,) = _UINT.unpack_from(bp.data, bn * 4)
                if addr == 0:
                    addr = self._balloc()
                    _UINT.pack_into(bp.data, bn * 4, addr)
                    self.log.log_write(bp)
            return addr
        raise FsPanic("bmap: out of range")

    def _itrunc(self, ip: Inode) -> None:
        for i in range(NDIRECT):
            if ip.addrs[i]:
                self._bfree(ip.addrs[i])
                ip.addrs[i] = 0
        if ip.addrs[NDIRECT]:
            with self.cache.block(ip.dev, ip.addrs[NDIRECT]) as bp:
                entries = struct.unpack_from(f"<{NINDIRECT}I", bp.data)
            for addr in entries:
                if addr:
                    self._bfree(addr)
            self._bfree(ip.addrs[NDIRECT])
            ip.addrs[NDIRECT] = 0
        ip.size = 0
        self.iupdate(ip)

    def stati(self, ip: Inode) -> Stat:
        """Metadata of a locked inode."""
        return Stat(dev=ip.dev, ino=ip.inum, type=ip.type, nlink=ip.nlink, size=ip.size)

    def _device(self, ip: Inode) -> Device:
        device = self.devsw.get(ip.major)
        if not 0 <= ip.major < self.params.ndev or device is None:
            raise OSError(f"no device with major number {ip.major}")
        return device

    def readi(self, ip: Inode, off: int, n: int) -> bytes:
        """Read up to n bytes at offset off from a locked inode."""
        if ip.type == InodeType.DEV:
            return self._device(ip).read(ip, n)
        if off < 0 or n < 0 or off > ip.size:
            raise ValueError(f"cannot read {n} bytes at offset {off}")
        n = min(n, ip.size - off)
        out = bytearray()
        while len(out) < n:
            with self.cache.block(ip.dev, self._bmap(ip, off // BSIZE)) as bp:
                m = min(n - len(out), BSIZE - off % BSIZE)
                out += bp.data[off % BSIZE : off % BSIZE + m]
            off += m
        return bytes(out)

    def writei(self, ip: Inode, data: bytes, off: int) -> int:
        """Write data at offset off into a locked inode, growing it as needed."""
        if ip.type == InodeType.DEV:
            return self._device(ip).write(ip, bytes(data))
        n = len(data)
        if off < 0 or off > ip.size:
            raise ValueError(f"cannot write at offset {off} past end of file")
        if off + n > MAXFILE * BSIZE:
            raise ValueError("write would exceed the maximum file size")
        tot = 0
        while tot < n:
            with self.cache.block(ip.dev, self._bmap(ip, off // BSIZE)) as bp:
                m = min(n - tot, BSIZE - off % BSIZE)
                bp.data[off % BSIZE : off % BSIZE + m] = data[tot : tot + m]
                self.log.log_write(bp)
            tot += m
            off += m
        if n > 0 and off > ip.size:
            ip.size = off
            self.iupdate(ip)
        return n

    # Directories.

    def dirlookup(self, dp: Inode, name: str) -> Optional[tuple[Inode, int]]:
        """Find name in the locked directory dp; returns (inode, entry offset) or None."""
        if dp.type != InodeType.DIR:
            raise FsPanic("dirlookup not DIR")
        for off in range(0, dp.size, DIRENT_SIZE):
            raw = self.readi(dp, off, DIRENT_SIZE)
            if len(raw) != DIRENT_SIZE:
                raise FsPanic("dirlookup read")
            de = Dirent.unpack(raw)
            if de.inum != 0 and namecmp(name, de.name) == 0:
                return self.iget(dp.dev, de.inum), off
        return None

    def dirlink(self, dp: Inode, name: str, inum: int) -> None:
        """Add the entry (name, inum) to the locked directory dp."""
        found = self.dirlookup(dp, name)
        if found is not None:
            self.iput(found[0])
            raise FileExistsError(name)

        slot = dp.size
        for off in range(0, dp.size, DIRENT_SIZE):
            raw = self.readi(dp, off, DIRENT_SIZE)
            if len(raw) != DIRENT_SIZE:
                raise FsPanic("dirlink read")
            if Dirent.unpack(raw).inum == 0:
                slot = off
                break
        if self.writei(dp, Dirent(inum, name).pack(), slot) != DIRENT_SIZE:
            raise FsPanic("dirlink")

    # Paths.

    def _namex(
        self, path: str, parent: bool, cwd: Optional[Inode]
    ) -> Optional[tuple[Inode, str]]:
        if path.startswith("/") or cwd is None:
            ip = self.iget(self.params.rootdev, ROOTINO)
        else:
            ip = self.idup(cwd)

        name = ""
        while (elem := skipelem(path)) is not None:
            name, path = elem
            self.ilock(ip)
            if ip.type != InodeType.DIR:
                self.iunlockput(ip)
                return None
            if parent and path == "":
                # Stop one level early.
                self.iunlock(ip)
                return ip, name
            found = self.dirlookup(ip, name)
            self.iunlockput(ip)
            if found is None:
                return None
            ip = found[0]
        if parent:
            self.iput(ip)
            return None
        return ip, name

    def namei(self, path: str, cwd: Optional[Inode] = None) -> Optional[Inode]:
        """The inode a path names, referenced but unlocked, or None.

        Relative paths start at cwd, or at the root when cwd is None.
        """
        found = self._namex(path, False, cwd)
        return None if found is None else found[0]

    def nameiparent(
        self, path: str, cwd: Optional[Inode] = None
    ) -> Optional[tuple[Inode, str]]:
        """The parent directory of a path and the path's last element, or None."""
        return self._namex(path, True, cwd)