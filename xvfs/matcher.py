"""A tiny regular-expression matcher supporting ^ . * $ and a line filter."""

from __future__ import annotations

from typing import Callable, Iterable, Iterator

_BUFSIZE = 1024


def match(pattern: str, text: str) -> bool:
    """True if the pattern matches anywhere in text."""
    if pattern.startswith("^"):
        return _match_here(pattern, 1, text, 0)
    return any(_match_here(pattern, 0, text, i) for i in range(len(text) + 1))


def _match_here(re: str, ri: int, text: str, ti: int) -> bool:
    if ri == len(re):
        return True
    if ri + 1 < len(re) and re[ri + 1] == "*":
        return _match_star(re[ri], re, ri + 2, text, ti)
    if re[ri] == "$" and ri + 1 == len(re):
        return ti == len(text)
    if ti < len(text) and (re[ri] == "." or re[ri] == text[ti]):
        return _match_here(re, ri + 1, text, ti + 1)
    return False


def _match_star(c: str, re: str, ri: int, text: str, ti: int) -> bool:
    while True:
        if _match_here(re, ri, text, ti):
            return True
        if ti >= len(text) or not (text[ti] == c or c == "."):
            return False
        ti += 1


def _reader(chunks: Iterable[bytes]) -> Callable[[int], bytes]:
    source = iter(chunks)
    pending = b""

    def read(n: int) -> bytes:
        nonlocal pending
        while not pending:
            try:
                pending = bytes(next(source))
            except StopIteration:
                return b""
        out, pending = pending[:n], pending[n:]
        return out

    return read


def grep(pattern: str, chunks: Iterable[bytes]) -> Iterator[bytes]:
    """Yield each newline-terminated line of the stream that matches pattern.

    The stream is consumed through a fixed 1024-byte buffer: a buffer that
    holds no complete line is discarded, and a last line without a newline
    is never reported.
    """
    read = _reader(chunks)
    buf = b""
    while data := read(_BUFSIZE - 1 - len(buf)):
        buf += data
        p = 0
        while (q := buf.find(b"\n", p)) >= 0 and buf.find(b"\0", p, q) < 0:
            if match(pattern, buf[p:q].decode("latin-1")):
                yield buf[p : q + 1]
            p = q + 1
        buf = buf[p:] if p else b""