import pytest

from xvfs.disk import MemDisk
from xvfs.fs import FileSystem
from xvfs.layout import DIRSIZ, ROOTINO, FsParams, InodeType
from xvfs.mkfs import build_image
from xvfs.tools import cat, echo, fmtname, grep_files, ls, main

README = b"hello world\n"
NOTES = b"one\ntwo\nthree\n"
FILES = [("README", README), ("notes", NOTES)]


@pytest.fixture
def fs():
    return FileSystem(MemDisk(build_image(FILES), dev=FsParams().rootdev))


@pytest.fixture
def image_path(tmp_path):
    path = tmp_path / "fs.img"
    path.write_bytes(build_image(FILES))
    return path


def test_echo_joins_arguments():
    assert echo(["a", "b"]) == "a b\n"
    assert echo([]) == ""


def test_fmtname_pads_last_element():
    name = fmtname("/a/b/cat")
    assert len(name) == DIRSIZ
    assert name.rstrip() == "cat"
    assert fmtname("cat") == name


def test_fmtname_long_name_unchanged():
    long_name = "abcdefghijklmnop"
    assert fmtname("/dir/" + long_name) == long_name


def test_cat_single_and_multiple(fs):
    assert cat(fs, ["README"]) == README
    assert cat(fs, ["/README", "notes"]) == README + NOTES
    assert cat(fs, []) == b""


def test_cat_missing_file(fs):
    with pytest.raises(FileNotFoundError):
        cat(fs, ["missing"])


def test_ls_directory(fs):
    lines = ls(fs, "/")
    names = [line[:DIRSIZ].rstrip() for line in lines]
    assert names == [".", "..", "README", "notes"]
    dot = lines[0].split()
    assert dot[1] == str(int(InodeType.DIR))
    assert dot[2] == str(ROOTINO)
    readme = lines[2].split()
    assert readme[1] == str(int(InodeType.FILE))
    assert readme[3] == str(len(README))


def test_ls_file(fs):
    lines = ls(fs, "/notes")
    assert len(lines) == 1
    parts = lines[0].split()
    assert parts[0] == "notes"
    assert parts[3] == str(len(NOTES))


def test_ls_dot_matches_root(fs):
    assert ls(fs, ".") == [line for line in ls(fs, ".")]
    assert [line[:DIRSIZ].rstrip() for line in ls(fs, ".")] == [
        line[:DIRSIZ].rstrip() for line in ls(fs, "/")
    ]


def test_ls_missing(fs):
    with pytest.raises(FileNotFoundError):
        ls(fs, "/nothing")


def test_grep_files(fs):
    assert grep_files(fs, "o", ["notes"]) == [b"one\n", b"two\n"]
    assert grep_files(fs, "^hel", ["README", "notes"]) == [README]


def test_grep_files_missing(fs):
    with pytest.raises(FileNotFoundError):
        grep_files(fs, "x", ["absent"])


def test_main_echo(capsys):
    assert main(["echo", "x", "y"]) == 0
    assert capsys.readouterr().out == "x y\n"


def test_main_cat(image_path, capsys):
    assert main(["cat", str(image_path), "README"]) == 0
    assert capsys.readouterr().out == README.decode()


def test_main_cat_missing(image_path, capsys):
    assert main(["cat", str(image_path), "nope"]) == 1
    assert "nope" in capsys.readouterr().out


def test_main_ls(image_path, capsys):
    assert main(["ls", str(image_path), "/"]) == 0
    out = capsys.readouterr().out.splitlines()
    assert [line[:DIRSIZ].rstrip() for line in out] == [".", "..", "README", "notes"]


def test_main_grep(image_path, capsys):
    assert main(["grep", str(image_path), "t", "notes"]) == 0
    assert capsys.readouterr().out == "two\nthree\n"


def test_main_missing_image(tmp_path):
    assert main(["ls", str(tmp_path / "absent.img")]) == 1


def test_main_unknown_command():
    with pytest.raises(SystemExit):
        main(["frobnicate"])