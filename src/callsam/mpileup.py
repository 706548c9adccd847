from __future__ import annotations

import logging
import shlex
from pathlib import Path
from typing import Iterator, List, Optional, Sequence

from .external import cmd_to_str, ensure_executable_in_path, stream_command

logger = logging.getLogger(__name__)

_SAMTOOLS_HINT = (
    "Install samtools. Ubuntu: sudo apt-get install -y samtools\n"
    "Conda/mamba: mamba install -c bioconda samtools\n"
    "Alternatively, run samtools mpileup yourself and pass its output with --pileup."
)


def build_mpileup_command(
    bam: str | Path,
    *,
    reference_path: Optional[str | Path] = None,
    extra_opts: str = "-q 1",
) -> List[str]:
    """Build ``samtools mpileup`` with base positions (-O) and mapping qualities (-s)."""
    cmd = ["samtools", "mpileup"] + shlex.split(extra_opts or "")
    if reference_path is not None:
        cmd += ["-f", str(reference_path)]
    cmd += ["-O", "-s", str(bam)]
    return cmd


def iter_mpileup_lines(cmd: Sequence[str]) -> Iterator[str]:
    """Stream pileup lines from samtools.

    Raises
    ------
    FileNotFoundError
        If samtools is not in PATH.
    ExternalCommandError
        If samtools exits non-zero.
    """
    ensure_executable_in_path(cmd[0], hint=_SAMTOOLS_HINT)
    logger.info("Running: %s", cmd_to_str(cmd))
    yield from stream_command(cmd)
    logger.info("Closing the samtools mpileup stream")
