from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

NO_CALL = "N"
PASS = "PASS"


class Strand(str, Enum):
    """Orientation of a read relative to the reference."""

    FORWARD = "F"
    REVERSE = "R"
    UNKNOWN = "?"


@dataclass(frozen=True)
class PileupRecord:
    """One mpileup line split into typed fields.

    Coordinates are 1-based, exactly as printed by ``samtools mpileup``.

    Attributes
    ----------
    contig:
        Contig name.
    position:
        1-based reference position.
    ref_hint:
        Reference base column printed by mpileup (``N`` without ``-f``).
    depth:
        Number of reads covering the position.
    read_bases:
        The compact read-encoding string (``.,ACGTacgt^]$+2AT-1C*``...).
    qualities:
        Base qualities, one Phred+33 character per read.
    mapping_qualities:
        Mapping qualities, one Phred+33 character per read.
    line_number:
        1-based line number in the input stream, if known.
    """

    contig: str
    position: int
    ref_hint: str
    depth: int
    read_bases: str
    qualities: str
    mapping_qualities: str
    line_number: Optional[int] = None

    @property
    def location(self) -> str:
        return f"{self.contig}:{self.position}"


@dataclass(frozen=True)
class ReadObservation:
    """A single decoded read at one position.

    ``token`` is usually one base, but an insertion is kept as its whole
    inserted sequence and a deletion as a run of ``*``.
    """

    token: str
    strand: Strand


@dataclass(frozen=True)
class ConsensusResult:
    """Outcome of the consensus call at one position."""

    winner: str
    allele_count: int
    frequency: float
    score: float
    filters: Tuple[Tuple[str, str], ...]
    final_call: str
    original_guess: str
    depth: int

    @property
    def passed(self) -> bool:
        return not self.filters

    @property
    def filter_summary(self) -> str:
        if not self.filters:
            return PASS
        # ifIHadToGuess is appended without a separating semicolon
        return "".join(f"{name}:{value};" for name, value in self.filters) + (
            f"ifIHadToGuess:{self.original_guess}"
        )

    @property
    def filter_names(self) -> Tuple[str, ...]:
        return tuple(name for name, _ in self.filters)


@dataclass(frozen=True)
class OutputRecord:
    """One VCF body line."""

    contig: str
    position: int
    id: str
    ref: str
    alt: str
    qual: str
    filter: str
    info: str

    def to_line(self) -> str:
        return "\t".join(
            [
                self.contig,
                str(self.position),
                self.id,
                self.ref,
                self.alt,
                self.qual,
                self.filter,
                self.info,
            ]
        )


@dataclass(frozen=True)
class CallSettings:
    """Run configuration for the caller.

    Attributes
    ----------
    min_coverage:
        Minimum depth; shallower positions get the ``depth`` filter.
    min_frequency:
        Minimum majority allele frequency in [0, 1].
    variants_only:
        Drop records where REF equals ALT, or either is ``N``.
    numcpus:
        Worker processes. With more than one, output order is not guaranteed.
    debug:
        Stop early after ``debug_positions`` positions.
    debug_positions:
        Number of positions analysed in debug mode.
    progress_every:
        Emit a progress log line every this many positions.
    on_error:
        ``abort`` stops at the first malformed line; ``skip`` logs and counts it.
    mpileup_opts:
        Extra options passed to ``samtools mpileup``.
    """

    min_coverage: int = 10
    min_frequency: float = 0.75
    variants_only: bool = False
    numcpus: int = 1
    debug: bool = False
    debug_positions: int = 10_000
    progress_every: int = 100_000
    on_error: str = "abort"
    mpileup_opts: str = "-q 1"
