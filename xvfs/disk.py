"""Block buffers and an in-memory disk that serves them."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Optional

from xvfs.layout import BSIZE, FsPanic


class _SleepLock:
    """A lock that remembers which thread holds it."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._locked = False
        self._owner: Optional[int] = None

    def acquire(self) -> None:
        with self._cond:
            while self._locked:
                self._cond.wait()
            self._locked = True
            self._owner = threading.get_ident()

    def release(self) -> None:
        with self._cond:
            self._locked = False
            self._owner = None
            self._cond.notify_all()

    def holding(self) -> bool:
        with self._cond:
            return self._locked and self._owner == threading.get_ident()


def _block() -> bytearray:
    return bytearray(BSIZE)


@dataclass(eq=False)
class Buf:
    """A cached copy of one disk block.

    ``valid`` means the data has been read from disk; ``dirty`` means the
    data has been changed and must be written back.
    """

    dev: int = 0
    blockno: int = 0
    valid: bool = False
    dirty: bool = False
    refcnt: int = 0
    data: bytearray = field(default_factory=_block, repr=False)
    lock: _SleepLock = field(default_factory=_SleepLock, repr=False)


class MemDisk:
    """A disk whose blocks live in memory, holding a whole file system image."""

    def __init__(self, image: bytes, dev: int = 1) -> None:
        self._data = bytearray(image)
        self.dev = dev
        self.disksize = len(self._data) // BSIZE

    def rw(self, buf: Buf) -> None:
        """Write the buffer if dirty, otherwise read it; it is valid afterwards."""
        if not buf.lock.holding():
            raise FsPanic("iderw: buf not locked")
        if buf.valid and not buf.dirty:
            raise FsPanic("iderw: nothing to do")
        if buf.dev != self.dev:
            raise FsPanic(f"iderw: request not for disk {self.dev}")
        if not 0 <= buf.blockno < self.disksize:
            raise FsPanic("iderw: block out of range")

        start = buf.blockno * BSIZE
        if buf.dirty:
            buf.dirty = False
            self._data[start : start + BSIZE] = buf.data
        else:
            buf.data[:] = self._data[start : start + BSIZE]
        buf.valid = True

    def image(self) -> bytes:
        """The current contents of the whole disk."""
        return bytes(self._data)