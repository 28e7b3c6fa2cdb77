import pytest

from xvfs.disk import MemDisk
from xvfs.fs import FileSystem, Inode, namecmp, skipelem
from xvfs.layout import BSIZE, DIRSIZ, MAXFILE, NDIRECT, ROOTINO, FsPanic, FsParams, InodeType
from xvfs.mkfs import build_image

README = b"hello xv6\n"
CAT = bytes(range(256)) * 4
FILES = [("README", README), ("_cat", CAT)]


@pytest.fixture
def params():
    return FsParams()


@pytest.fixture
def disk(params):
    return MemDisk(build_image(FILES, params))


@pytest.fixture
def fs(disk, params):
    return FileSystem(disk, params)


def read_file(fs, path, cwd=None):
    ip = fs.namei(path, cwd)
    assert ip is not None
    fs.ilock(ip)
    data = fs.readi(ip, 0, ip.size)
    fs.iunlockput(ip)
    return data


def make_file(fs, name):
    with fs.log.transaction():
        ip = fs.ialloc(InodeType.FILE)
        fs.ilock(ip)
        ip.nlink = 1
        fs.iupdate(ip)
        root = fs.namei("/")
        fs.ilock(root)
        fs.dirlink(root, name, ip.inum)
        fs.iunlockput(root)
        fs.iunlock(ip)
    return ip


def test_skipelem_documented_examples():
    assert skipelem("a/bb/c") == ("a", "bb/c")
    assert skipelem("///a//bb") == ("a", "bb")
    assert skipelem("a") == ("a", "")
    assert skipelem("") is None
    assert skipelem("////") is None


def test_skipelem_truncates_long_names():
    name, rest = skipelem("abcdefghijklmnopqrst/x")
    assert len(name) == DIRSIZ
    assert rest == "x"


def test_namecmp():
    assert namecmp("README", "README") == 0
    assert namecmp("a", "b") < 0
    assert namecmp("b", "a") > 0
    assert namecmp("ab", "abc") < 0
    assert namecmp("abcdefghijklmnop", "abcdefghijklmnXY") == 0


def test_superblock_matches_params(fs, params):
    sb = fs.read_superblock()
    assert sb.size == params.size
    assert sb.ninodes == params.ninodes
    assert sb.nlog == params.nlog
    assert sb.logstart == 2
    assert sb.inodestart == 2 + params.nlog


def test_read_files_from_image(fs):
    assert read_file(fs, "/README") == README
    assert read_file(fs, "/cat") == CAT
    assert fs.namei("/_cat") is None


def test_stat_of_file(fs):
    ip = fs.namei("README")
    fs.ilock(ip)
    st = fs.stati(ip)
    fs.iunlockput(ip)
    assert st.type == InodeType.FILE
    assert st.size == len(README)
    assert st.nlink == 1
    assert st.ino == ip.inum


def test_root_directory_entries(fs):
    root = fs.namei("/")
    assert root.inum == ROOTINO
    fs.ilock(root)
    assert root.type == InodeType.DIR
    dot, _ = fs.dirlookup(root, ".")
    dotdot, off = fs.dirlookup(root, "..")
    assert dot.inum == ROOTINO and dotdot.inum == ROOTINO
    assert off > 0
    assert fs.dirlookup(root, "missing") is None
    fs.iunlockput(root)
    fs.iput(dot)
    fs.iput(dotdot)


def test_namei_failures(fs):
    assert fs.namei("/nothing") is None
    assert fs.namei("/README/x") is None


def test_nameiparent(fs):
    parent, name = fs.nameiparent("/README")
    assert parent.inum == ROOTINO
    assert name == "README"
    fs.iput(parent)
    assert fs.nameiparent("/") is None


def test_relative_path_from_cwd(fs):
    root = fs.namei("/")
    assert read_file(fs, "./README", cwd=root) == README
    fs.iput(root)


def test_iget_shares_cache_entry(fs):
    a = fs.iget(fs.dev, ROOTINO)
    b = fs.iget(fs.dev, ROOTINO)
    assert a is b
    assert a.ref == 2
    assert fs.idup(a).ref == 3
    for _ in range(3):
        fs.iput(a)
    assert a.ref == 0


def test_iunlock_without_lock_panics(fs):
    ip = fs.iget(fs.dev, ROOTINO)
    with pytest.raises(FsPanic):
        fs.iunlock(ip)
    fs.iput(ip)


def test_ilock_unreferenced_panics(fs):
    with pytest.raises(FsPanic):
        fs.ilock(Inode())


def test_dirlookup_on_file_panics(fs):
    ip = fs.namei("/README")
    fs.ilock(ip)
    with pytest.raises(FsPanic):
        fs.dirlookup(ip, "x")
    fs.iunlockput(ip)


def test_create_write_and_persist(fs, disk, params):
    ip = make_file(fs, "new")
    with fs.log.transaction():
        fs.ilock(ip)
        assert fs.writei(ip, b"data", 0) == 4
        fs.iunlockput(ip)
    assert read_file(fs, "/new") == b"data"

    again = FileSystem(MemDisk(disk.image()), params)
    assert read_file(again, "/new") == b"data"
    assert read_file(again, "/README") == README


def test_dirlink_duplicate_raises(fs):
    with fs.log.transaction():
        root = fs.namei("/")
        fs.ilock(root)
        with pytest.raises(FileExistsError):
            fs.dirlink(root, "README", 5)
        fs.iunlockput(root)


def test_offset_errors(fs):
    ip = fs.namei("/README")
    fs.ilock(ip)
    with pytest.raises(ValueError):
        fs.readi(ip, ip.size + 1, 1)
    with fs.log.transaction():
        with pytest.raises(ValueError):
            fs.writei(ip, b"x", ip.size + 1)
        with pytest.raises(ValueError):
            fs.writei(ip, b"x" * (MAXFILE * BSIZE + 1), 0)
    fs.iunlockput(ip)


def test_large_file_through_indirect_block(fs):
    ip = make_file(fs, "big")
    data = bytes(i % 251 for i in range((NDIRECT + 2) * BSIZE))
    chunk = 3 * BSIZE
    for start in range(0, len(data), chunk):
        with fs.log.transaction():
            fs.ilock(ip)
            piece = data[start : start + chunk]
            assert fs.writei(ip, piece, start) == len(piece)
            fs.iunlock(ip)
    fs.ilock(ip)
    assert ip.addrs[NDIRECT] != 0
    assert fs.readi(ip, 0, ip.size) == data
    assert fs.readi(ip, len(data) - 10, 100) == data[-10:]
    with fs.log.transaction():
        fs.iunlockput(ip)


def test_unlinked_inode_is_freed(fs):
    with fs.log.transaction():
        ip = fs.ialloc(InodeType.FILE)
        inum = ip.inum
        fs.ilock(ip)
        fs.writei(ip, b"temporary", 0)
        block = ip.addrs[0]
        fs.iunlockput(ip)
    with fs.log.transaction():
        again = fs.ialloc(InodeType.FILE)
        fs.ilock(again)
        assert again.inum == inum
        assert again.size == 0
        fs.writei(again, b"x", 0)
        assert again.addrs[0] == block
        fs.iunlockput(again)


class _FakeDevice:
    def __init__(self):
        self.written = b""

    def read(self, ip, n):
        return b"z" * n

    def write(self, ip, data):
        self.written += data
        return len(data)


def test_device_inode(disk, params):
    device = _FakeDevice()
    fs = FileSystem(disk, params, devsw={1: device})
    with fs.log.transaction():
        ip = fs.ialloc(InodeType.DEV)
        fs.ilock(ip)
        ip.major = 1
        assert fs.readi(ip, 0, 3) == b"zzz"
        assert fs.writei(ip, b"out", 0) == 3
        assert device.written == b"out"
        ip.major = 5
        with pytest.raises(OSError):
            fs.readi(ip, 0, 1)
        fs.iunlockput(ip)