"""Command-line argument lookup and install directory helpers."""

from __future__ import annotations

import os
import re
import sys
from collections.abc import Sequence
from typing import Any

_INT_RE = re.compile(r"\s*([+-]?\d+)", re.ASCII)
_FLOAT_RE = re.compile(
    r"\s*([+-]?(?:(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?|inf(?:inity)?|nan))",
    re.ASCII | re.IGNORECASE,
)


def _to_int(text: str) -> int:
    match = _INT_RE.match(text)
    return int(match.group(1)) if match else 0


def _to_float(text: str) -> float:
    match = _FLOAT_RE.match(text)
    return float(match.group(1)) if match else 0.0


_CONVERTERS = {str: str, int: _to_int, float: _to_float}


def find_arg(argv: Sequence[str], name: str) -> int:
    """Index of the last occurrence of ``name`` after the program name, or -1."""
    return next((i for i in range(len(argv) - 1, 0, -1) if argv[i] == name), -1)


def arg_value(argv: Sequence[str], name: str, kind: type = str) -> tuple[int, Any]:
    """Find ``name`` and convert the argument after it.

    Returns the flag's index (-1 when absent) and the converted value, which
    is None when the flag is absent or has nothing after it. Numbers are read
    leniently: the longest leading number counts, and 0 when there is none.
    """
    try:
        convert = _CONVERTERS[kind]
    except KeyError:
        raise ValueError(f"unsupported argument kind {kind!r}") from None
    index = find_arg(argv, name)
    if index < 0 or index + 1 >= len(argv):
        return index, None
    return index, convert(argv[index + 1])


def base_dir(executable: str | os.PathLike | None = None) -> str:
    """The part of the executable's path before its ``/build/`` directory."""
    if executable is None:
        try:
            executable = os.readlink("/proc/self/exe")
        except OSError:
            executable = sys.executable
    path = os.fspath(executable)
    cut = path.rfind("/build/")
    return path if cut < 0 else path[:cut]