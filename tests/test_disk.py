import pytest

from xvfs.disk import Buf, MemDisk
from xvfs.layout import BSIZE, FsPanic


def _image(nblocks=4):
    return b"".join(bytes([i]) * BSIZE for i in range(nblocks))


def _locked(dev, blockno):
    buf = Buf(dev=dev, blockno=blockno)
    buf.lock.acquire()
    return buf


def test_read_fills_buffer_and_marks_valid():
    disk = MemDisk(_image())
    buf = _locked(1, 2)
    disk.rw(buf)
    assert bytes(buf.data) == bytes([2]) * BSIZE
    assert buf.valid
    assert not buf.dirty


def test_write_stores_data_and_clears_dirty():
    disk = MemDisk(_image())
    buf = _locked(1, 1)
    buf.data[:] = b"z" * BSIZE
    buf.dirty = True
    disk.rw(buf)
    assert not buf.dirty
    assert buf.valid
    image = disk.image()
    assert image[BSIZE : 2 * BSIZE] == b"z" * BSIZE
    assert image[:BSIZE] == bytes([0]) * BSIZE


def test_image_round_trip():
    img = _image(3)
    assert MemDisk(img).image() == img


def test_disksize_ignores_partial_block():
    assert MemDisk(bytes(BSIZE * 2 + 10)).disksize == 2


def test_unlocked_buffer_panics():
    disk = MemDisk(_image())
    with pytest.raises(FsPanic, match="not locked"):
        disk.rw(Buf(dev=1, blockno=0))


def test_valid_clean_buffer_has_nothing_to_do():
    disk = MemDisk(_image())
    buf = _locked(1, 0)
    buf.valid = True
    with pytest.raises(FsPanic, match="nothing to do"):
        disk.rw(buf)


def test_wrong_device_panics():
    disk = MemDisk(_image())
    with pytest.raises(FsPanic, match="not for disk"):
        disk.rw(_locked(0, 0))


def test_block_out_of_range_panics():
    disk = MemDisk(_image(4))
    with pytest.raises(FsPanic, match="out of range"):
        disk.rw(_locked(1, 4))


def test_other_device_number():
    disk = MemDisk(_image(), dev=3)
    buf = _locked(3, 3)
    disk.rw(buf)
    assert bytes(buf.data) == bytes([3]) * BSIZE