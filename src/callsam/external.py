"""Helpers for running external commands (samtools).

Design goals
------------
- Fail fast with actionable error messages.
- Capture stderr for debugging.
- Stream large outputs (mpileup) line by line instead of buffering them.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import tempfile
import textwrap
from pathlib import Path
from typing import Dict, Iterator, Mapping, Optional, Sequence

logger = logging.getLogger(__name__)


class ExternalCommandError(RuntimeError):
    """Raised when an external command fails."""

    def __init__(
        self,
        message: str,
        *,
        cmd: Sequence[str],
        returncode: int,
        stdout: Optional[str] = None,
        stderr: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.cmd = list(cmd)
        self.returncode = int(returncode)
        self.stdout = stdout
        self.stderr = stderr


def cmd_to_str(cmd: Sequence[str]) -> str:
    return " ".join(shlex.quote(str(x)) for x in cmd)


def ensure_executable_in_path(exe: str, *, hint: Optional[str] = None) -> None:
    """Ensure an executable exists in PATH.

    Parameters
    ----------
    exe:
        Name of the executable to find.
    hint:
        Optional message shown if the executable is missing.
    """
    from shutil import which

    if which(exe) is None:
        msg = f"Required executable '{exe}' was not found in your PATH."
        if hint:
            msg += "\n\n" + hint
        raise FileNotFoundError(msg)


def _merge_env(env: Optional[Mapping[str, str]]) -> Optional[Dict[str, str]]:
    if env is None:
        return None
    merged = dict(os.environ)
    merged.update({str(k): str(v) for k, v in env.items()})
    return merged


def _failure_message(cmd: Sequence[str], returncode: int, stderr: Optional[str]) -> str:
    return textwrap.dedent(
        f"""
        External command failed (exit code {returncode}).

        Command:
          {cmd_to_str(cmd)}

        STDERR (tail):
          {_tail(stderr)}
        """
    ).strip()


def run_command(
    cmd: Sequence[str],
    *,
    cwd: Optional[str | Path] = None,
    env: Optional[Mapping[str, str]] = None,
    check: bool = True,
    capture: bool = True,
    text: bool = True,
) -> subprocess.CompletedProcess:
    """Run a command and return the CompletedProcess.

    If ``check`` is True, raise ``ExternalCommandError`` on non-zero exit.
    For commands with large outputs use :func:`stream_command` instead.
    """
    if cwd is not None:
        cwd = str(Path(cwd))

    logger.debug("Running command: %s", cmd_to_str(cmd))

    cp = subprocess.run(
        list(map(str, cmd)),
        cwd=cwd,
        env=_merge_env(env),
        check=False,
        stdout=subprocess.PIPE if capture else None,
        stderr=subprocess.PIPE if capture else None,
        text=text,
    )

    if check and cp.returncode != 0:
        raise ExternalCommandError(
            _failure_message(cmd, cp.returncode, cp.stderr if isinstance(cp.stderr, str) else None),
            cmd=cmd,
            returncode=cp.returncode,
            stdout=cp.stdout if isinstance(cp.stdout, str) else None,
            stderr=cp.stderr if isinstance(cp.stderr, str) else None,
        )

    return cp


def _tail(s: Optional[str], n: int = 3000) -> str:
    if not s:
        return "(empty)"
    s = str(s)
    if len(s) <= n:
        return s
    return "..." + s[-n:]


def stream_command(
    cmd: Sequence[str],
    *,
    cwd: Optional[str | Path] = None,
    env: Optional[Mapping[str, str]] = None,
) -> Iterator[str]:
    """Run a command and yield its stdout line by line.

    The exit status is checked once the output is exhausted; a non-zero exit
    raises ``ExternalCommandError`` with the stderr tail. If the consumer stops
    early, the process is terminated and its exit status is ignored.

    stderr goes to a temporary file so a chatty producer cannot block on a
    full pipe while we read stdout.
    """
    if cwd is not None:
        cwd = str(Path(cwd))

    logger.debug("Streaming command: %s", cmd_to_str(cmd))

    with tempfile.TemporaryFile() as err_fh:
        proc = subprocess.Popen(
            list(map(str, cmd)),
            cwd=cwd,
            env=_merge_env(env),
            stdout=subprocess.PIPE,
            stderr=err_fh,
            text=True,
        )
        assert proc.stdout is not None

        exhausted = False
        try:
            for line in proc.stdout:
                yield line
            exhausted = True
        finally:
            proc.stdout.close()
            if not exhausted:
                proc.terminate()
            returncode = proc.wait()

        if returncode != 0:
            err_fh.seek(0)
            stderr = err_fh.read().decode("utf-8", errors="replace")
            raise ExternalCommandError(
                _failure_message(cmd, returncode, stderr),
                cmd=cmd,
                returncode=returncode,
                stderr=stderr,
            )
