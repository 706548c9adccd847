import sys
from contextlib import closing

import pytest

from callsam.external import ExternalCommandError, ensure_executable_in_path, run_command, stream_command
from callsam.mpileup import build_mpileup_command, iter_mpileup_lines


def test_mpileup_command():
    cmd = build_mpileup_command("in.bam", reference_path="ref.fa")
    assert cmd == ["samtools", "mpileup", "-q", "1", "-f", "ref.fa", "-O", "-s", "in.bam"]


def test_mpileup_command_custom_options():
    cmd = build_mpileup_command("in.bam", extra_opts="-q 20 -Q 13 -r chr1")
    assert cmd == ["samtools", "mpileup", "-q", "20", "-Q", "13", "-r", "chr1", "-O", "-s", "in.bam"]
    assert "-f" not in build_mpileup_command("in.bam", extra_opts="")


def test_stream_command_yields_lines():
    cmd = [sys.executable, "-c", "print('a\\tb'); print('c')"]
    assert list(stream_command(cmd)) == ["a\tb\n", "c\n"]


def test_stream_command_failure():
    cmd = [sys.executable, "-c", "import sys; print('x'); sys.stderr.write('boom'); sys.exit(3)"]
    lines = []
    with pytest.raises(ExternalCommandError) as exc:
        for line in stream_command(cmd):
            lines.append(line)
    assert lines == ["x\n"]
    assert exc.value.returncode == 3
    assert "boom" in exc.value.stderr
    assert "exit code 3" in str(exc.value)


def test_stream_command_early_close():
    cmd = [sys.executable, "-c", "import itertools\nfor i in itertools.count(): print(i, flush=True)"]
    with closing(stream_command(cmd)) as it:
        assert next(it) == "0\n"
        assert next(it) == "1\n"


def test_run_command_failure():
    with pytest.raises(ExternalCommandError) as exc:
        run_command([sys.executable, "-c", "import sys; sys.exit(2)"])
    assert exc.value.returncode == 2
    cp = run_command([sys.executable, "-c", "import sys; sys.exit(2)"], check=False)
    assert cp.returncode == 2


def test_missing_executable():
    with pytest.raises(FileNotFoundError, match="not found in your PATH"):
        ensure_executable_in_path("definitely-not-a-real-tool-4821", hint="install it")


def test_iter_mpileup_lines_needs_the_executable():
    with pytest.raises(FileNotFoundError, match="--pileup"):
        next(iter_mpileup_lines(["definitely-not-samtools-4821", "mpileup", "x.bam"]))
