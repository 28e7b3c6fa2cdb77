"""Buffer cache: a fixed set of block buffers recycled in least-recently-used order."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator

from xvfs.disk import Buf, MemDisk
from xvfs.layout import FsPanic


class BufferCache:
    """Caches disk blocks; each buffer is used by one holder at a time."""

    def __init__(self, disk: MemDisk, nbuf: int = 30) -> None:
        self.disk = disk
        self._lock = threading.Lock()
        # Most recently used first.
        self._mru: list[Buf] = [Buf() for _ in range(nbuf)]

    def _get(self, dev: int, blockno: int) -> Buf:
        with self._lock:
            found = next(
                (b for b in self._mru if b.dev == dev and b.blockno == blockno), None
            )
            if found is not None:
                found.refcnt += 1
            else:
                # A dirty buffer is still in use by the log even when unreferenced.
                found = next(
                    (b for b in reversed(self._mru) if b.refcnt == 0 and not b.dirty),
                    None,
                )
                if found is None:
                    raise FsPanic("bget: no buffers")
                found.dev = dev
                found.blockno = blockno
                found.valid = False
                found.dirty = False
                found.refcnt = 1
        found.lock.acquire()
        return found

    def read(self, dev: int, blockno: int) -> Buf:
        """Return a locked buffer holding the contents of the block."""
        buf = self._get(dev, blockno)
        if not buf.valid:
            self.disk.rw(buf)
        return buf

    def write(self, buf: Buf) -> None:
        """Write the buffer's contents to disk; the caller must hold it."""
        if not buf.lock.holding():
            raise FsPanic("bwrite")
        buf.dirty = True
        self.disk.rw(buf)

    def release(self, buf: Buf) -> None:
        """Give up a locked buffer and mark it most recently used."""
        if not buf.lock.holding():
            raise FsPanic("brelse")
        buf.lock.release()
        with self._lock:
            buf.refcnt -= 1
            if buf.refcnt == 0:
                self._mru.remove(buf)
                self._mru.insert(0, buf)

    @contextmanager
    def block(self, dev: int, blockno: int) -> Iterator[Buf]:
        """Read a block and release it when the block of code ends."""
        buf = self.read(dev, blockno)
        try:
            yield buf
        finally:
            self.release(buf)