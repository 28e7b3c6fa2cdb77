"""The small printf dialects used by user programs and by the console."""

from __future__ import annotations

from typing import Any


def _signed(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - (1 << 32) if value & 0x80000000 else value


def _text(value: Any) -> str:
    if value is None:
        return "(null)"
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).split(b"\0", 1)[0].decode("latin-1")
    return str(value)


def _render(fmt: str, args: tuple, digits_upper: bool, allow_char: bool) -> str:
    out: list[str] = []
    pending = iter(args)

    def next_arg() -> Any:
        try:
            return next(pending)
        except StopIteration:
            raise TypeError("not enough arguments for format string") from None

    chars = iter(fmt)
    for c in chars:
        if c != "%":
            out.append(c)
            continue
        spec = next(chars, None)
        if spec is None:
            break
        if spec == "d":
            out.append(str(_signed(next_arg())))
        elif spec in "xp":
            text = format(next_arg() & 0xFFFFFFFF, "x")
            out.append(text.upper() if digits_upper else text)
        elif spec == "s":
            out.append(_text(next_arg()))
        elif spec == "c" and allow_char:
            out.append(chr(next_arg() & 0xFF))
        elif spec == "%":
            out.append("%")
        else:
            out.append("%" + spec)
    return "".join(out)


def printf_format(fmt: str, *args: Any) -> str:
    """Format as the user-level printf: %d, %x, %p, %s, %c and %%."""
    return _render(fmt, args, digits_upper=True, allow_char=True)


def cprintf_format(fmt: str, *args: Any) -> str:
    """Format as the console's cprintf: %d, %x, %p, %s and %%."""
    if fmt is None:
        raise ValueError("null fmt")
    return _render(fmt, args, digits_upper=False, allow_char=False)