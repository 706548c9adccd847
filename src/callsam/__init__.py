"""CallSam: call consensus bases from a sequence alignment/map.

Turns a samtools mpileup stream into one VCF record per position, with the
evidence (depth, allele frequency, strand balance, quality score) that led to
each call recorded in the FILTER column. Most users should use the CLI:

    callsam call sorted.bam --reference ref.fa > out.vcf

"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.3.0"
