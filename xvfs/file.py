"""Open files: a table of shared handles onto inodes and pipes."""

from __future__ import annotations

import errno
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from xvfs.fs import FileSystem, Inode, Stat
from xvfs.layout import BSIZE, FsPanic, FsParams

PIPESIZE = 512
_POLL_SECONDS = 0.05


class FileKind(Enum):
    """What an open file refers to."""

    NONE = 0
    PIPE = 1
    INODE = 2


class Pipe:
    """A bounded byte channel with one reading and one writing end.

    Setting ``killed`` makes blocked or future waits fail with InterruptedError.
    """

    def __init__(self) -> None:
        self.data = bytearray(PIPESIZE)
        self.nread = 0
        self.nwrite = 0
        self.readopen = True
        self.writeopen = True
        self.killed = False
        self._cond = threading.Condition()

    def write(self, data: bytes) -> int:
        """Write all of data, waiting while the pipe is full."""
        with self._cond:
            for byte in bytes(data):
                while self.nwrite == self.nread + PIPESIZE:
                    if not self.readopen:
                        raise BrokenPipeError("pipe has no reader")
                    if self.killed:
                        raise InterruptedError("pipe write interrupted")
                    self._cond.notify_all()
                    self._cond.wait(_POLL_SECONDS)
                self.data[self.nwrite % PIPESIZE] = byte
                self.nwrite += 1
            self._cond.notify_all()
        return len(data)

    def read(self, n: int) -> bytes:
        """Read up to n bytes, waiting for data while a writer remains.

        Returns an empty result once the pipe is drained and the writer closed.
        """
        with self._cond:
            while self.nread == self.nwrite and self.writeopen:
                if self.killed:
                    raise InterruptedError("pipe read interrupted")
                self._cond.wait(_POLL_SECONDS)
            out = bytearray()
            while len(out) < n and self.nread != self.nwrite:
                out.append(self.data[self.nread % PIPESIZE])
                self.nread += 1
            self._cond.notify_all()
        return bytes(out)

    def close(self, writable: bool) -> None:
        """Close the writing end if writable is true, otherwise the reading end."""
        with self._cond:
            if writable:
                self.writeopen = False
            else:
                self.readopen = False
            self._cond.notify_all()


@dataclass(eq=False)
class File:
    """One entry of the open file table."""

    kind: FileKind = FileKind.NONE
    ref: int = 0
    readable: bool = False
    writable: bool = False
    pipe: Optional[Pipe] = None
    ip: Optional[Inode] = None
    off: int = 0


class FileTable:
    """A fixed number of open file slots, shared through reference counts."""

    def __init__(self, fs: Optional[FileSystem] = None, nfile: Optional[int] = None) -> None:
        self.fs = fs
        if nfile is None:
            nfile = fs.params.nfile if fs is not None else FsParams().nfile
        self.files = [File() for _ in range(nfile)]
        self._lock = threading.Lock()

    def _filesystem(self) -> FileSystem:
        if self.fs is None:
            raise ValueError("file table has no file system")
        return self.fs

    def alloc(self) -> File:
        """Claim a free slot with one reference."""
        with self._lock:
            for f in self.files:
                if f.ref == 0:
                    f.ref = 1
                    return f
        raise OSError(errno.ENFILE, "file table full")

    def dup(self, f: File) -> File:
        """Take another reference to f."""
        with self._lock:
            if f.ref < 1:
                raise FsPanic("filedup")
            f.ref += 1
        return f

    def close(self, f: File) -> None:
        """Drop a reference; the last one releases the pipe end or inode."""
        with self._lock:
            if f.ref < 1:
                raise FsPanic("fileclose")
            f.ref -= 1
            if f.ref > 0:
                return
            kind, pipe, ip, writable = f.kind, f.pipe, f.ip, f.writable
            f.kind = FileKind.NONE
            f.pipe = None
            f.ip = None
            f.off = 0
            f.readable = False
            f.writable = False

        if kind is FileKind.PIPE and pipe is not None:
            pipe.close(writable)
        elif kind is FileKind.INODE and ip is not None:
            fs = self._filesystem()
            with fs.log.transaction():
                fs.iput(ip)

    def stat(self, f: File) -> Stat:
        """Metadata of the inode behind f."""
        if f.kind is not FileKind.INODE or f.ip is None:
            raise OSError(errno.EINVAL, "only inode files can be examined")
        fs = self._filesystem()
        fs.ilock(f.ip)
        try:
            return fs.stati(f.ip)
        finally:
            fs.iunlock(f.ip)

    def read(self, f: File, n: int) -> bytes:
        """Read up to n bytes from f, advancing its offset."""
        if not f.readable:
            raise OSError(errno.EBADF, "file not open for reading")
        if f.kind is FileKind.PIPE and f.pipe is not None:
            return f.pipe.read(n)
        if f.kind is FileKind.INODE and f.ip is not None:
            fs = self._filesystem()
            fs.ilock(f.ip)
            try:
                data = fs.readi(f.ip, f.off, n)
                f.off += len(data)
            finally:
                fs.iunlock(f.ip)
            return data
        raise FsPanic("fileread")

    def write(self, f: File, data: bytes) -> int:
        """Write all of data to f, advancing its offset."""
        if not f.writable:
            raise OSError(errno.EBADF, "file not open for writing")
        if f.kind is FileKind.PIPE and f.pipe is not None:
            return f.pipe.write(data)
        if f.kind is FileKind.INODE and f.ip is not None:
            fs = self._filesystem()
            # Keep each transaction within the log: inode, indirect block,
            # bitmap block and two blocks of slop for unaligned writes.
            max_chunk = ((fs.params.maxopblocks - 1 - 1 - 2) // 2) * BSIZE
            payload = bytes(data)
            i = 0
            while i < len(payload):
                chunk = payload[i : i + max_chunk]
                with fs.log.transaction():
                    fs.ilock(f.ip)
                    try:
                        r = fs.writei(f.ip, chunk, f.off)
                        if r > 0:
                            f.off += r
                    finally:
                        fs.iunlock(f.ip)
                if r != len(chunk):
                    raise FsPanic("short filewrite")
                i += r
            return len(payload)
        raise FsPanic("filewrite")

    def pipe(self) -> tuple[File, File]:
        """Create a pipe; returns its (reading, writing) files."""
        rf = self.alloc()
        try:
            wf = self.alloc()
        except OSError:
            self.close(rf)
            raise
        p = Pipe()
        rf.kind = FileKind.PIPE
        rf.readable = True
        rf.writable = False
        rf.pipe = p
        wf.kind = FileKind.PIPE
        wf.readable = False
        wf.writable = True
        wf.pipe = p
        return rf, wf

    def open_inode(self, ip: Inode, readable: bool, writable: bool) -> File:
        """Open a referenced inode; the file takes over that reference."""
        self._filesystem()
        f = self.alloc()
        f.kind = FileKind.INODE
        f.ip = ip
        f.off = 0
        f.readable = bool(readable)
        f.writable = bool(writable)
        return f