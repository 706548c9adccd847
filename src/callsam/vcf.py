from __future__ import annotations

import datetime as _dt
import logging
from typing import List, Optional

from .models import NO_CALL, CallSettings, ConsensusResult, OutputRecord, PileupRecord
from .reference import ReferenceGenome

logger = logging.getLogger(__name__)

VCF_COLUMNS = ["#CHROM", "POS", "ID", "REF", "ALT", "QUAL", "FILTER", "INFO"]

_INFO_DEFINITIONS = [
    'INFO=<ID=DP,Number=1,Type=Integer,Description="Total Depth">',
    'INFO=<ID=AC,Number=1,Type=Integer,Description="allele count in genotypes, '
    'for each ALT allele, in the same order as listed">',
]


def header_lines(
    *,
    reference_path: Optional[str] = None,
    date: Optional[_dt.date] = None,
    source: str = "callsam",
) -> List[str]:
    """Return the VCF header block, column line included, without newlines."""
    date = date or _dt.date.today()
    meta = [
        "fileformat=VCFv4.2",
        f"fileDate={date.strftime('%Y%m%d')}",
        f"source={source}",
    ] + _INFO_DEFINITIONS
    if reference_path:
        meta.append(f"reference={reference_path}")
    return ["##" + m for m in meta] + ["\t".join(VCF_COLUMNS)]


def build_output_record(
    record: PileupRecord,
    result: ConsensusResult,
    reference: Optional[ReferenceGenome],
) -> OutputRecord:
    ref = reference.lookup(record.contig, record.position) if reference is not None else None
    return OutputRecord(
        contig=record.contig,
        position=record.position,
        id=record.location,
        ref=ref.upper() if ref else ".",
        alt=result.final_call.upper(),
        qual=f"{result.score:.2f}",
        filter=result.filter_summary,
        info=f"DP={record.depth};AC={result.allele_count}",
    )


def is_suppressed(output: OutputRecord, settings: CallSettings) -> bool:
    """Whether a record is dropped in variants-only mode."""
    if not settings.variants_only:
        return False
    ref = output.ref.upper()
    alt = output.alt.upper()
    return ref == alt or alt == NO_CALL or ref == NO_CALL


def emit_record(
    record: PileupRecord,
    result: ConsensusResult,
    reference: Optional[ReferenceGenome],
    settings: CallSettings,
) -> Optional[OutputRecord]:
    """Build the output record for a position, or None if it is suppressed."""
    output = build_output_record(record, result, reference)
    if is_suppressed(output, settings):
        logger.debug("Suppressed %s (REF %s, ALT %s)", output.id, output.ref, output.alt)
        return None
    return output
