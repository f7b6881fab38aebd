"""Helpers for storage benchmarks: random data and throughput formatting."""

from __future__ import annotations

import random
import string
from datetime import timedelta
from typing import Sequence, TypeVar, Union

T = TypeVar("T")

_ALPHANUMERIC = string.ascii_letters + string.digits


def chunk_vec(items: Sequence[T], size: int) -> list[list[T]]:
    """Split ``items`` into lists of at most ``size`` elements."""
    if size <= 0:
        raise ValueError("chunk size must be positive")
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


def gen_pairs(klen: int, vlen: int, length: int) -> list[tuple[bytes, bytes]]:
    """Generate ``length`` pairs of random key bytes and alphanumeric values."""
    return [(gen_byte(klen), gen_str(vlen)) for _ in range(length)]


def gen_num_pair() -> tuple[bytes, bytes]:
    """Two random unsigned 64-bit numbers, big-endian encoded."""
    return (
        random.getrandbits(64).to_bytes(8, "big"),
        random.getrandbits(64).to_bytes(8, "big"),
    )


def gen_byte(length: int) -> bytes:
    return random.randbytes(length)


def gen_str(length: int) -> bytes:
    """Random alphanumeric ASCII text as bytes."""
    return "".join(random.choices(_ALPHANUMERIC, k=length)).encode("ascii")


def fmt_num(count: float) -> str:
    """Format a number with one decimal and a K, M or G suffix."""
    if count < 1_000.0:
        return f"{count:.1f}"
    if count < 1_000_000.0:
        return f"{count / 1_000.0:.1f}K"
    if count < 1_000_000_000.0:
        return f"{count / 1_000_000.0:.1f}M"
    return f"{count / 1_000_000_000.0:.1f}G"


def fmt_per_sec(count: int, seconds: Union[float, timedelta]) -> str:
    """Format ``count`` operations over ``seconds`` as a rate per second."""
    if isinstance(seconds, timedelta):
        seconds = seconds.total_seconds()
    if seconds <= 0:
        raise ValueError("duration must be positive")
    return f"{fmt_num(count / seconds)}/s"