import io
import subprocess
from unittest import mock

import pytest

from motionfusion.gnuplot import GnuplotPipe


class _FakeStdin(io.StringIO):
    def __init__(self):
        super().__init__()
        self.final_text = None

    def close(self):
        self.final_text = self.getvalue()
        super().close()


class _FakeProcess:
    created = []

    def __init__(self, command, **kwargs):
        self.command = command
        self.stdin = _FakeStdin()
        self.waited = False
        _FakeProcess.created.append(self)

    def wait(self):
        self.waited = True
        return 0


@pytest.fixture
def processes():
    _FakeProcess.created = []
    with mock.patch.object(subprocess, "Popen", _FakeProcess):
        yield _FakeProcess.created


def test_persist_command(processes):
    pipe = GnuplotPipe()
    assert pipe.is_open
    assert processes[0].command == ["gnuplot", "-persist"]


def test_non_persist_command(processes):
    pipe = GnuplotPipe(persist=False)
    assert pipe.is_open
    assert processes[0].command == ["gnuplot"]


def test_send_line_writes_directly(processes):
    pipe = GnuplotPipe()
    pipe.send_line("set grid")
    assert pipe.buffer == ()
    assert processes[0].stdin.getvalue() == "set grid\n"


def test_buffered_data_is_repeated(processes):
    pipe = GnuplotPipe()
    pipe.send_line("1 2", use_buffer=True)
    pipe.send_line("3 4", use_buffer=True)
    assert processes[0].stdin.getvalue() == ""
    pipe.send_end_of_data(2)
    assert processes[0].stdin.getvalue() == "1 2\n3 4\ne\n1 2\n3 4\ne\n"
    assert pipe.buffer == ()


def test_new_data_block_without_buffer_goes_to_pipe(processes):
    pipe = GnuplotPipe()
    pipe.send_new_data_block()
    assert pipe.buffer == ()
    assert processes[0].stdin.getvalue() == "\n\n"


def test_new_data_block_with_buffer_is_buffered(processes):
    pipe = GnuplotPipe()
    pipe.send_line("5 6", use_buffer=True)
    pipe.send_new_data_block()
    assert pipe.buffer == ("5 6\n", "\n\n")
    assert processes[0].stdin.getvalue() == ""


def test_write_buffer_to_file(processes, tmp_path):
    pipe = GnuplotPipe()
    pipe.send_line("7 8", use_buffer=True)
    target = tmp_path / "data.txt"
    pipe.write_buffer_to_file(target)
    assert target.read_text() == "7 8\n"


def test_context_manager_closes(processes):
    with GnuplotPipe() as pipe:
        pipe.send_line("plot x")
    assert processes[0].waited
    assert processes[0].stdin.final_text == "plot x\n"
    assert not pipe.is_open


def test_missing_gnuplot_ignores_sends(capsys):
    with mock.patch.object(subprocess, "Popen", side_effect=FileNotFoundError):
        pipe = GnuplotPipe()
    pipe.send_line("1 2", use_buffer=True)
    assert not pipe.is_open
    assert pipe.buffer == ()
    assert "failed!" in capsys.readouterr().out