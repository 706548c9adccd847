from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Sequence

import pysam

from .utils import ensure_outdir, write_json

TOY_CONTIG = "chr1"
# 0-based position of the simulated SNV (1-based 101)
TOY_SNV_POS0 = 100


def _write_fasta(path: Path, contig: str, seq: str) -> None:
    lines = [f">{contig}"]
    for i in range(0, len(seq), 60):
        lines.append(seq[i : i + 60])
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def _mutate_base(base: str) -> str:
    for alt in ["C", "G", "T", "A"]:
        if alt != base:
            return alt
    return "A"


def _phred_char(q: int) -> str:
    return chr(min(int(q), 93) + 33)


def _make_read(
    name: str,
    start0: int,
    seq: str,
    *,
    reverse: bool = False,
    mapq: int = 60,
) -> pysam.AlignedSegment:
    a = pysam.AlignedSegment()
    a.query_name = name
    a.query_sequence = seq
    a.flag = 16 if reverse else 0
    a.reference_id = 0
    a.reference_start = start0
    a.mapping_quality = mapq
    a.cigartuples = [(0, len(seq))]
    a.query_qualities = pysam.qualitystring_to_array("I" * len(seq))
    return a


def simulate_pileup_lines(
    reads: Sequence[pysam.AlignedSegment],
    *,
    contig: str,
    ref_seq: str,
) -> List[str]:
    """Render ungapped reads as ``samtools mpileup -O -s`` lines.

    Only full-length match alignments (CIGAR ``<n>M``) are supported.
    """
    ordered = sorted(reads, key=lambda r: r.reference_start)
    lines: List[str] = []
    for pos0, ref_base in enumerate(ref_seq):
        bases: List[str] = []
        quals: List[str] = []
        mquals: List[str] = []
        read_pos: List[str] = []
        for r in ordered:
            seq = r.query_sequence or ""
            off = pos0 - r.reference_start
            if off < 0 or off >= len(seq):
                continue
            token = ""
            if off == 0:
                token += "^" + _phred_char(r.mapping_quality)
            base = seq[off].upper()
            if base == ref_base.upper():
                token += "," if r.is_reverse else "."
            else:
                token += base.lower() if r.is_reverse else base
            if off == len(seq) - 1:
                token += "$"
            bases.append(token)
            qq = r.query_qualities
            quals.append(_phred_char(qq[off] if qq is not None else 0))
            mquals.append(_phred_char(r.mapping_quality))
            read_pos.append(str(off + 1))
        if not bases:
            continue
        lines.append(
            "\t".join(
                [
                    contig,
                    str(pos0 + 1),
                    ref_base,
                    str(len(bases)),
                    "".join(bases),
                    "".join(quals),
                    "".join(mquals),
                    ",".join(read_pos),
                ]
            )
        )
    return lines


def make_toy_data(*, outdir: str | Path) -> Dict[str, str]:
    """Create a tiny reference, BAM and matching pileup for quick demos/tests.

    The outputs include:
    - toy_ref.fa (+ .fai)
    - toy.bam (+ .bai), coordinate-sorted
    - toy.pileup, the pileup of toy.bam in ``samtools mpileup -O -s`` layout

    Reads alternate strands. Position chr1:101 carries an A->C SNV in most of
    the reads covering it, so it is called as a PASS variant.

    Returns
    -------
    dict
        Paths to the generated files.
    """
    outdir_p = ensure_outdir(outdir)

    ref_seq = ("ACGT" * 50)[:200]
    ref_fa = outdir_p / "toy_ref.fa"
    _write_fasta(ref_fa, TOY_CONTIG, ref_seq)
    pysam.faidx(str(ref_fa))

    ref_base = ref_seq[TOY_SNV_POS0]
    alt_base = _mutate_base(ref_base)

    reads: List[pysam.AlignedSegment] = []
    for i in range(24):
        start0 = 60 + 2 * i
        seq = list(ref_seq[start0 : start0 + 50])
        rel = TOY_SNV_POS0 - start0
        # every seventh read keeps the reference allele
        if 0 <= rel < len(seq) and i % 7 != 3:
            seq[rel] = alt_base
        reads.append(_make_read(f"r{i}", start0, "".join(seq), reverse=bool(i % 2)))

    bam_path = outdir_p / "toy.bam"
    header = {
        "HD": {"VN": "1.6", "SO": "coordinate"},
        "SQ": [{"SN": TOY_CONTIG, "LN": len(ref_seq)}],
    }
    with pysam.AlignmentFile(str(bam_path), "wb", header=header) as bam:
        for r in reads:
            bam.write(r)
    pysam.index(str(bam_path))

    pileup_path = outdir_p / "toy.pileup"
    lines = simulate_pileup_lines(reads, contig=TOY_CONTIG, ref_seq=ref_seq)
    pileup_path.write_text("\n".join(lines) + "\n", encoding="utf-8")

    summary = {
        "ref_fa": str(ref_fa),
        "bam": str(bam_path),
        "pileup": str(pileup_path),
        "snv": f"{TOY_CONTIG}:{TOY_SNV_POS0 + 1}:{ref_base}:{alt_base}",
        "outdir": str(outdir_p),
    }

    write_json(outdir_p / "toy_summary.json", summary)
    return summary
