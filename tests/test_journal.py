import struct
import threading

import pytest

from xvfs.bio import BufferCache
from xvfs.disk import MemDisk
from xvfs.journal import Log
from xvfs.layout import BSIZE, FsPanic, FsParams, Superblock
from xvfs.mkfs import build_image


@pytest.fixture
def setup():
    image = build_image([], FsParams())
    disk = MemDisk(image)
    cache = BufferCache(disk, nbuf=40)
    log = Log(cache, 1)
    sb = Superblock.unpack(image[BSIZE : 2 * BSIZE])
    return disk, cache, log, sb


def _header_count(image, sb):
    return struct.unpack_from("<i", image, sb.logstart * BSIZE)[0]


def test_log_reads_superblock(setup):
    _, _, log, sb = setup
    assert log.start == sb.logstart
    assert log.size == sb.nlog
    assert log.blocks == []


def test_commit_installs_blocks_at_home(setup):
    disk, cache, log, sb = setup
    with log.transaction():
        with cache.block(1, 900) as buf:
            buf.data[:5] = b"hello"
            log.log_write(buf)
        assert disk.image()[900 * BSIZE : 900 * BSIZE + 5] == bytes(5)
    image = disk.image()
    assert image[900 * BSIZE : 900 * BSIZE + 5] == b"hello"
    assert _header_count(image, sb) == 0
    assert log.blocks == []


def test_repeated_writes_are_absorbed(setup):
    _, cache, log, _ = setup
    log.begin_op()
    for _ in range(2):
        with cache.block(1, 900) as buf:
            log.log_write(buf)
    assert log.blocks == [900]
    log.end_op()
    assert log.blocks == []


def test_log_write_outside_transaction_panics(setup):
    _, cache, log, _ = setup
    with cache.block(1, 900) as buf:
        with pytest.raises(FsPanic, match="outside of trans"):
            log.log_write(buf)


def test_too_big_transaction_panics(setup):
    _, cache, log, _ = setup
    with pytest.raises(FsPanic, match="too big a transaction"):
        with log.transaction():
            for blockno in range(900, 900 + log.size):
                with cache.block(1, blockno) as buf:
                    log.log_write(buf)
    assert log.outstanding == 0


def test_recovery_installs_committed_log():
    image = bytearray(build_image([], FsParams()))
    sb = Superblock.unpack(image[BSIZE : 2 * BSIZE])
    struct.pack_into("<2i", image, sb.logstart * BSIZE, 1, 900)
    start = (sb.logstart + 1) * BSIZE
    image[start : start + 9] = b"recovered"
    disk = MemDisk(bytes(image))
    Log(BufferCache(disk), 1)
    result = disk.image()
    assert result[900 * BSIZE : 900 * BSIZE + 9] == b"recovered"
    assert _header_count(result, sb) == 0


def test_oversized_header_panics():
    disk = MemDisk(build_image([], FsParams()))
    with pytest.raises(FsPanic, match="too big logheader"):
        Log(BufferCache(disk), 1, FsParams(nlog=127))


def test_outstanding_counts_nested_operations(setup):
    _, _, log, _ = setup
    log.begin_op()
    log.begin_op()
    assert log.outstanding == 2
    log.end_op()
    assert log.outstanding == 1
    log.end_op()
    assert log.outstanding == 0
    assert not log.committing


def test_begin_op_waits_for_log_space(setup):
    _, _, log, _ = setup
    for _ in range(3):
        log.begin_op()
    entered = threading.Event()

    def worker():
        log.begin_op()
        entered.set()

    thread = threading.Thread(target=worker, daemon=True)
    thread.start()
    assert not entered.wait(0.2)
    log.end_op()
    assert entered.wait(5)
    thread.join(5)
    assert log.outstanding == 3