"""Small user programs working on a file system image: cat, echo, ls and grep."""

from __future__ import annotations

import argparse
import sys
from typing import Iterator, Optional, Sequence

from xvfs.disk import MemDisk
from xvfs.file import File, FileTable
from xvfs.fs import FileSystem, Stat
from xvfs.layout import DIRENT_SIZE, DIRSIZ, Dirent, FsParams, InodeType
from xvfs.matcher import grep

_CHUNK = 512
_PATHBUF = 512


def _open(fs: FileSystem, table: FileTable, path: str) -> File:
    with fs.log.transaction():
        ip = fs.namei(path)
    if ip is None:
        raise FileNotFoundError(path)
    try:
        return table.open_inode(ip, readable=True, writable=False)
    except OSError:
        with fs.log.transaction():
            fs.iput(ip)
        raise


def _chunks(table: FileTable, f: File) -> Iterator[bytes]:
    try:
        while chunk := table.read(f, _CHUNK):
            yield chunk
    finally:
        table.close(f)


def _stat(fs: FileSystem, table: FileTable, path: str) -> Stat:
    f = _open(fs, table, path)
    try:
        return table.stat(f)
    finally:
        table.close(f)


def cat(fs: FileSystem, paths: Sequence[str]) -> bytes:
    """The contents of the named files, one after another."""
    table = FileTable(fs)
    out = bytearray()
    for path in paths:
        try:
            f = _open(fs, table, path)
        except FileNotFoundError:
            raise FileNotFoundError(f"cat: cannot open {path}") from None
        out.extend(b"".join(_chunks(table, f)))
    return bytes(out)


def echo(args: Sequence[str]) -> str:
    """The arguments separated by spaces and ended by a newline."""
    return " ".join(args) + "\n" if args else ""


def fmtname(path: str) -> str:
    """The last element of path, padded with blanks to DIRSIZ characters."""
    name = path.rsplit("/", 1)[-1]
    if len(name) >= DIRSIZ:
        return name
    return name.ljust(DIRSIZ)


def _line(name: str, st: Stat) -> str:
    return f"{name} {st.type} {st.ino} {st.size}"


def ls(fs: FileSystem, path: str) -> list[str]:
    """Listing lines for a file, or for every entry of a directory."""
    table = FileTable(fs)
    try:
        f = _open(fs, table, path)
    except FileNotFoundError:
        raise FileNotFoundError(f"ls: cannot open {path}") from None
    try:
        st = table.stat(f)
        if st.type == InodeType.FILE:
            return [_line(fmtname(path), st)]
        if st.type != InodeType.DIR:
            return []
        if len(path) + 1 + DIRSIZ + 1 > _PATHBUF:
            raise ValueError("ls: path too long")
        lines = []
        while len(raw := table.read(f, DIRENT_SIZE)) == DIRENT_SIZE:
            de = Dirent.unpack(raw)
            if de.inum == 0:
                continue
            full = f"{path}/{de.name}"
            try:
                entry = _stat(fs, table, full)
            except OSError:
                lines.append(f"ls: cannot stat {full}")
                continue
            lines.append(_line(fmtname(full), entry))
        return lines
    finally:
        table.close(f)


def grep_files(fs: FileSystem, pattern: str, paths: Sequence[str]) -> list[bytes]:
    """Every newline-terminated line of the named files that matches pattern."""
    table = FileTable(fs)
    found: list[bytes] = []
    for path in paths:
        try:
            f = _open(fs, table, path)
        except FileNotFoundError:
            raise FileNotFoundError(f"grep: cannot open {path}") from None
        found.extend(grep(pattern, _chunks(table, f)))
    return found


def _stdin_chunks() -> Iterator[bytes]:
    stream = sys.stdin.buffer
    while chunk := stream.read(_CHUNK):
        yield chunk


def _load(image: str) -> FileSystem:
    params = FsParams()
    with open(image, "rb") as fh:
        data = fh.read()
    return FileSystem(MemDisk(data, dev=params.rootdev), params)


def _emit(data: bytes) -> None:
    sys.stdout.write(data.decode("latin-1"))


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="xvfs", description="Tools for file system images.")
    sub = parser.add_subparsers(dest="command", required=True)
    p_echo = sub.add_parser("echo", help="print the arguments")
    p_echo.add_argument("args", nargs="*")
    p_cat = sub.add_parser("cat", help="print files of an image")
    p_cat.add_argument("image")
    p_cat.add_argument("paths", nargs="*")
    p_ls = sub.add_parser("ls", help="list files of an image")
    p_ls.add_argument("image")
    p_ls.add_argument("paths", nargs="*")
    p_grep = sub.add_parser("grep", help="search files of an image")
    p_grep.add_argument("image")
    p_grep.add_argument("pattern")
    p_grep.add_argument("paths", nargs="*")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Command line: xvfs echo ARGS | cat IMAGE PATHS | ls IMAGE PATHS | grep IMAGE PATTERN PATHS."""
    args = _parser().parse_args(argv)

    if args.command == "echo":
        sys.stdout.write(echo(args.args))
        return 0

    try:
        fs = _load(args.image)
    except OSError as exc:
        print(f"{args.image}: {exc.strerror or exc}", file=sys.stderr)
        return 1

    if args.command == "cat":
        if not args.paths:
            for chunk in _stdin_chunks():
                _emit(chunk)
            return 0
        for path in args.paths:
            try:
                _emit(cat(fs, [path]))
            except OSError as exc:
                print(exc)
                return 1
        return 0

    if args.command == "ls":
        status = 0
        for path in args.paths or ["."]:
            try:
                for line in ls(fs, path):
                    print(line)
            except (OSError, ValueError) as exc:
                print(exc, file=sys.stderr)
                status = 1
        return status

    if not args.paths:
        for line in grep(args.pattern, _stdin_chunks()):
            _emit(line)
        return 0
    for path in args.paths:
        try:
            lines = grep_files(fs, args.pattern, [path])
        except OSError as exc:
            print(exc)
            return 1
        for line in lines:
            _emit(line)
    return 0


if __name__ == "__main__":
    sys.exit(main())