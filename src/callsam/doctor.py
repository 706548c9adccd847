"""Environment self-checks.

This module powers the ``callsam doctor`` CLI command.

Calling from an existing pileup file (``callsam call --pileup``) is pure
Python. Calling straight from a BAM runs ``samtools mpileup`` underneath, so
samtools must be installed and in PATH.
"""

from __future__ import annotations

import logging
import platform
import shutil
from dataclasses import dataclass
from typing import Dict, Optional

from .external import run_command

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckResult:
    name: str
    ok: bool
    detail: str
    howto: Optional[str] = None


def check_python() -> CheckResult:
    v = platform.python_version()
    return CheckResult(name="python", ok=True, detail=f"Python {v}")


def check_samtools() -> CheckResult:
    howto = (
        "Ubuntu: sudo apt-get install -y samtools\n"
        "Conda/mamba: mamba install -c bioconda samtools\n"
        "Then re-run: callsam doctor"
    )
    p = shutil.which("samtools")
    if p is None:
        return CheckResult(name="samtools", ok=False, detail="not found in PATH", howto=howto)
    try:
        cp = run_command(["samtools", "--version"], check=True, capture=True, text=True)
    except Exception as e:
        return CheckResult(
            name="samtools", ok=False, detail=f"samtools present but not usable: {e}", howto=howto
        )
    first_line = cp.stdout.splitlines()[0] if isinstance(cp.stdout, str) and cp.stdout else "samtools"
    return CheckResult(name="samtools", ok=True, detail=f"{first_line} ({p})")


def collect_checks() -> Dict[str, CheckResult]:
    """Run all checks and return a mapping name->result."""
    return {
        "python": check_python(),
        "samtools": check_samtools(),
    }
