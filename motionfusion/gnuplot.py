"""A line-oriented pipe into a gnuplot process."""

from __future__ import annotations

import os
import subprocess
from pathlib import Path


class GnuplotPipe:
    """Sends commands and inline data to gnuplot, with an optional data buffer.

    When gnuplot cannot be started every send is silently ignored.
    """

    def __init__(self, persist: bool = True) -> None:
        self._buffer: list[str] = []
        command = ["gnuplot", "-persist"] if persist else ["gnuplot"]
        print("Opening gnuplot... ", end="")
        try:
            self._process = subprocess.Popen(command, stdin=subprocess.PIPE, text=True)
        except OSError:
            self._process = None
            print("failed!")
        else:
            print("succeeded.")

    @property
    def is_open(self) -> bool:
        return self._process is not None

    @property
    def buffer(self) -> tuple[str, ...]:
        return tuple(self._buffer)

    def send_line(self, text: str, use_buffer: bool = False) -> None:
        """Send one line, or keep it in the buffer for the next end of data."""
        if self._process is None:
            return
        line = text + "\n"
        if use_buffer:
            self._buffer.append(line)
        else:
            self._process.stdin.write(line)

    def send_end_of_data(self, repeat_buffer: int = 1) -> None:
        """Write the buffer ``repeat_buffer`` times, each closed by ``e``, then clear it."""
        if self._process is None:
            return
        stdin = self._process.stdin
        for _ in range(repeat_buffer):
            stdin.writelines(self._buffer)
            stdin.write("e\n")
        stdin.flush()
        self._buffer.clear()

    def send_new_data_block(self) -> None:
        """Separate data blocks with a blank line, buffered if data is buffered."""
        self.send_line("\n", bool(self._buffer))

    def write_buffer_to_file(self, file_name: str | os.PathLike) -> None:
        Path(file_name).write_text("".join(self._buffer))

    def close(self) -> None:
        if self._process is None:
            return
        process, self._process = self._process, None
        try:
            process.stdin.close()
        except BrokenPipeError:
            pass
        process.wait()

    def __enter__(self) -> GnuplotPipe:
        return self

    def __exit__(self, *args) -> None:
        self.close()