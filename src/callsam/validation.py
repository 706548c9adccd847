from __future__ import annotations

import logging
from pathlib import Path

import pysam

from .models import CallSettings

logger = logging.getLogger(__name__)

ON_ERROR_CHOICES = ("abort", "skip")


def validate_settings(settings: CallSettings) -> None:
    """Reject settings the caller cannot work with; raise ValueError."""
    if settings.min_coverage < 0:
        raise ValueError(f"min_coverage must be >= 0, got {settings.min_coverage}")
    if not 0.0 <= settings.min_frequency <= 1.0:
        raise ValueError(f"min_frequency must be within [0, 1], got {settings.min_frequency}")
    if settings.numcpus < 1:
        raise ValueError(f"numcpus must be >= 1, got {settings.numcpus}")
    if settings.debug_positions < 1:
        raise ValueError(f"debug_positions must be >= 1, got {settings.debug_positions}")
    if settings.progress_every < 1:
        raise ValueError(f"progress_every must be >= 1, got {settings.progress_every}")
    if settings.on_error not in ON_ERROR_CHOICES:
        raise ValueError(f"on_error must be one of {ON_ERROR_CHOICES}, got {settings.on_error!r}")


def check_reference(ref_fa: str | Path) -> Path:
    """Ensure the reference FASTA exists and has a .fai index (samtools mpileup -f needs it)."""
    ref = Path(ref_fa).expanduser()
    if not ref.is_file():
        raise FileNotFoundError(f"Could not locate the reference: {ref}")
    fai = ref.with_suffix(ref.suffix + ".fai")
    if not fai.exists():
        logger.info("Creating FASTA index: %s", fai)
        pysam.faidx(str(ref))
    return ref


def check_alignment_sorted(bam_path: str | Path) -> None:
    """Ensure the alignment file exists; warn if it is not declared coordinate-sorted."""
    bam = Path(bam_path)
    if not bam.is_file():
        raise FileNotFoundError(f"Alignment file not found: {bam}")
    with pysam.AlignmentFile(str(bam), "r") as fh:
        sort_order = fh.header.to_dict().get("HD", {}).get("SO")
    if sort_order != "coordinate":
        logger.warning(
            "%s does not declare SO:coordinate (found %s). samtools mpileup needs a "
            "coordinate-sorted file. Run: samtools sort -o sorted.bam %s",
            bam,
            sort_order,
            bam,
        )
