"""Write-ahead redo log that makes groups of block updates atomic."""

from __future__ import annotations

import struct
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from xvfs.bio import BufferCache
from xvfs.disk import Buf
from xvfs.layout import BSIZE, FsPanic, FsParams, Superblock


class Log:
    """Collects the blocks changed by file system operations and commits them.

    On disk the log is a header block (a count and the home block numbers)
    followed by copies of the logged blocks. A commit happens only when no
    operation is in progress.
    """

    def __init__(
        self, cache: BufferCache, dev: int, params: Optional[FsParams] = None
    ) -> None:
        params = params or FsParams()
        self.logsize = params.nlog
        self.maxopblocks = params.maxopblocks
        if 4 * (1 + self.logsize) >= BSIZE:
            raise FsPanic("initlog: too big logheader")

        self.cache = cache
        self.dev = dev
        self._cond = threading.Condition()
        with cache.block(dev, 1) as bp:
            sb = Superblock.unpack(bytes(bp.data))
        self.start = sb.logstart
        self.size = sb.nlog
        self.outstanding = 0
        self.committing = False
        self.blocks: list[int] = []
        self._recover()

    def _install_trans(self) -> None:
        for tail, blockno in enumerate(self.blocks):
            lbuf = self.cache.read(self.dev, self.start + tail + 1)
            dbuf = self.cache.read(self.dev, blockno)
            dbuf.data[:] = lbuf.data
            self.cache.write(dbuf)
            self.cache.release(lbuf)
            self.cache.release(dbuf)

    def _read_head(self) -> None:
        with self.cache.block(self.dev, self.start) as buf:
            (n,) = struct.unpack_from("<i", buf.data)
            if not 0 <= n <= self.logsize:
                raise FsPanic("corrupt log header")
            self.blocks = list(struct.unpack_from(f"<{n}i", buf.data, 4))

    def _write_head(self) -> None:
        buf = self.cache.read(self.dev, self.start)
        n = len(self.blocks)
        header = struct.pack(f"<{n + 1}i", n, *self.blocks)
        buf.data[: len(header)] = header
        self.cache.write(buf)
        self.cache.release(buf)

    def _recover(self) -> None:
        self._read_head()
        self._install_trans()
        self.blocks = []
        self._write_head()

    def begin_op(self) -> None:
        """Start an operation, waiting while a commit runs or space is short."""
        with self._cond:
            while (
                self.committing
                or len(self.blocks) + (self.outstanding + 1) * self.maxopblocks
                > self.logsize
            ):
                self._cond.wait()
            self.outstanding += 1

    def end_op(self) -> None:
        """Finish an operation; the last one to finish commits."""
        with self._cond:
            self.outstanding -= 1
            if self.committing:
                raise FsPanic("log.committing")
            do_commit = self.outstanding == 0
            if do_commit:
                self.committing = True
            else:
                # Waiting begin_op calls may now fit in the log.
                self._cond.notify_all()

        if do_commit:
            self._commit()
            with self._cond:
                self.committing = False
                self._cond.notify_all()

    def _write_log(self) -> None:
        for tail, blockno in enumerate(self.blocks):
            to = self.cache.read(self.dev, self.start + tail + 1)
            src = self.cache.read(self.dev, blockno)
            to.data[:] = src.data
            self.cache.write(to)
            self.cache.release(src)
            self.cache.release(to)

    def _commit(self) -> None:
        if self.blocks:
            self._write_log()
            self._write_head()  # the real commit point
            self._install_trans()
            self.blocks = []
            self._write_head()

    def log_write(self, buf: Buf) -> None:
        """Record a changed buffer in the log and pin it in the cache."""
        if len(self.blocks) >= self.logsize or len(self.blocks) >= self.size - 1:
            raise FsPanic("too big a transaction")
        if self.outstanding < 1:
            raise FsPanic("log_write outside of trans")
        with self._cond:
            if buf.blockno not in self.blocks:
                self.blocks.append(buf.blockno)
            buf.dirty = True

    @contextmanager
    def transaction(self) -> Iterator[Log]:
        """Run a block of code as one file system operation."""
        self.begin_op()
        try:
            yield self
        finally:
            self.end_op()