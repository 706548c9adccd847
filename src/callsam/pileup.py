"""Parsing of ``samtools mpileup -O -s`` lines.

Each line describes one reference position::

    contig  pos  ref  depth  read_bases  base_quals  mapping_quals  [read_pos]

``read_bases`` packs one entry per read using the mpileup conventions:

- ``^`` + one mapping-quality character: a read starts here (no observation).
- ``$``: a read ends here (no observation).
- ``.`` / ``,``: match to the reference on the forward / reverse strand.
- ``ACGTN`` / ``acgtn``: mismatch on the forward / reverse strand.
- ``+<N><seq>``: insertion, kept as a single observation ``<seq>``.
- ``-<N><seq>``: deletion, kept as a single observation of N ``*``.
- ``*`` / ``#``: the read has a deletion over this position.
- ``>`` / ``<``: reference skip on the forward / reverse strand, token ``>``.

In real mpileup output an indel follows the base of the same read
(``.+2AT`` is one read), but here it counts as an observation of its own, so
the depth check fails at indel sites. Use ``on_error="skip"`` to step over them.
"""

from __future__ import annotations

import string
from typing import List, Optional, Tuple

from .models import PileupRecord, ReadObservation, Strand
from .reference import ReferenceGenome

_MIN_FIELDS = 7
_INDEL_CHARS = frozenset(string.ascii_letters + "*#")
_LETTERS = frozenset(string.ascii_letters)


class PileupError(ValueError):
    """A pileup line that cannot be turned into read observations."""

    def __init__(
        self,
        message: str,
        contig: Optional[str] = None,
        position: Optional[int] = None,
        line_number: Optional[int] = None,
    ) -> None:
        # all parts go to args so the error survives pickling between worker processes
        super().__init__(message, contig, position, line_number)
        self.reason = message
        self.contig = contig
        self.position = position
        self.line_number = line_number

    def __str__(self) -> str:
        return f"{self.location}: {self.reason}"

    @property
    def location(self) -> str:
        if self.contig is not None and self.position is not None:
            return f"{self.contig}:{self.position}"
        if self.line_number is not None:
            return f"line {self.line_number}"
        return "unknown position"


class MalformedLineError(PileupError):
    """Wrong field count, non-numeric coordinates or quality/depth mismatch."""


class ReadDecodeError(PileupError):
    """The read-base string could not be decoded into exactly ``depth`` reads."""


def parse_pileup_line(line: str, line_number: Optional[int] = None) -> PileupRecord:
    """Split one mpileup line into a :class:`PileupRecord`.

    Fields are tab-separated; lines without tabs are split on whitespace.
    Columns after the seventh (e.g. read positions from ``-O``) are ignored.

    Raises
    ------
    MalformedLineError
        If the line does not have the expected shape.
    """
    text = line.rstrip("\r\n")
    fields = text.split("\t") if "\t" in text else text.split()

    contig = fields[0] if fields and fields[0] else None
    if len(fields) < 4:
        raise MalformedLineError(
            f"expected at least {_MIN_FIELDS} fields, found {len(fields)}",
            contig=contig,
            line_number=line_number,
        )

    try:
        position = int(fields[1])
    except ValueError:
        raise MalformedLineError(
            f"position is not an integer: {fields[1]!r}", contig=contig, line_number=line_number
        ) from None
    if position < 1:
        raise MalformedLineError(
            f"position must be >= 1, got {position}", contig=contig, line_number=line_number
        )

    try:
        depth = int(fields[3])
    except ValueError:
        raise MalformedLineError(
            f"depth is not an integer: {fields[3]!r}",
            contig=contig,
            position=position,
            line_number=line_number,
        ) from None
    if depth < 0:
        raise MalformedLineError(
            f"depth must be >= 0, got {depth}", contig=contig, position=position, line_number=line_number
        )

    strings = list(fields[4:_MIN_FIELDS])
    if len(strings) < 3:
        # mpileup may drop the empty trailing columns of an uncovered position
        if depth != 0:
            raise MalformedLineError(
                f"expected at least {_MIN_FIELDS} fields, found {len(fields)}",
                contig=contig,
                position=position,
                line_number=line_number,
            )
        strings += [""] * (3 - len(strings))

    if depth == 0:
        strings = ["" if s == "*" else s for s in strings]

    read_bases, qualities, mapping_qualities = strings

    if len(qualities) != depth or len(mapping_qualities) != depth:
        raise MalformedLineError(
            f"depth is {depth} but found {len(qualities)} base qualities "
            f"and {len(mapping_qualities)} mapping qualities",
            contig=contig,
            position=position,
            line_number=line_number,
        )

    return PileupRecord(
        contig=fields[0],
        position=position,
        ref_hint=fields[2],
        depth=depth,
        read_bases=read_bases,
        qualities=qualities,
        mapping_qualities=mapping_qualities,
        line_number=line_number,
    )


def _indel_strand(seq: str) -> Strand:
    if any(c.islower() for c in seq):
        return Strand.REVERSE
    if any(c.isupper() for c in seq):
        return Strand.FORWARD
    return Strand.UNKNOWN


def _read_indel(record: PileupRecord, start: int) -> Tuple[str, int]:
    """Read ``<N><seq>`` starting right after a ``+``/``-``.

    Returns the N characters of the indel and the offset just past them.
    """
    s = record.read_bases
    i = start
    while i < len(s) and s[i].isdigit():
        i += 1
    if i == start:
        raise ReadDecodeError(
            f"indel at offset {start - 1} has no length",
            contig=record.contig,
            position=record.position,
            line_number=record.line_number,
        )
    length = int(s[start:i])
    if length < 1:
        raise ReadDecodeError(
            f"indel at offset {start - 1} has length {length}",
            contig=record.contig,
            position=record.position,
            line_number=record.line_number,
        )
    seq = s[i : i + length]
    if len(seq) != length or not all(c in _INDEL_CHARS for c in seq):
        # e.g. the indel runs into the next read's '^' marker
        raise ReadDecodeError(
            f"indel of length {length} at offset {start - 1} is followed by {seq!r}",
            contig=record.contig,
            position=record.position,
            line_number=record.line_number,
        )
    return seq, i + length


def decode_read_bases(
    record: PileupRecord, reference: Optional[ReferenceGenome] = None
) -> List[ReadObservation]:
    """Expand the read-base string of a record into one observation per read.

    Matches (``.``/``,``) are replaced by the reference base at this position,
    upper case for the forward strand and lower case for the reverse strand.
    Without a reference base the token stays ``.``.

    Raises
    ------
    ReadDecodeError
        If the string is truncated or does not yield exactly ``record.depth`` reads.
    """
    s = record.read_bases
    ref_base = reference.lookup(record.contig, record.position) if reference is not None else None
    forward_match = ref_base.upper() if ref_base else "."
    reverse_match = ref_base.lower() if ref_base else "."

    observations: List[ReadObservation] = []
    i = 0
    n = len(s)
    while i < n:
        c = s[i]
        if c == "^":
            if i + 1 >= n:
                raise ReadDecodeError(
                    "read start '^' without a mapping quality",
                    contig=record.contig,
                    position=record.position,
                    line_number=record.line_number,
                )
            i += 2
            continue
        if c == "$":
            i += 1
            continue
        if c == "+":
            seq, i = _read_indel(record, i + 1)
            observations.append(ReadObservation(seq, _indel_strand(seq)))
            continue
        if c == "-":
            seq, i = _read_indel(record, i + 1)
            observations.append(ReadObservation("*" * len(seq), Strand.UNKNOWN))
            continue

        if c == ".":
            observations.append(ReadObservation(forward_match, Strand.FORWARD))
        elif c == ",":
            observations.append(ReadObservation(reverse_match, Strand.REVERSE))
        elif c in "*#":
            observations.append(ReadObservation("*", Strand.UNKNOWN))
        elif c in "><":
            # one allele for both strands, like . and ,
            observations.append(ReadObservation(">", Strand.FORWARD if c == ">" else Strand.REVERSE))
        elif c in _LETTERS:
            observations.append(ReadObservation(c, Strand.FORWARD if c.isupper() else Strand.REVERSE))
        else:
            raise ReadDecodeError(
                f"unexpected character {c!r} at offset {i}",
                contig=record.contig,
                position=record.position,
                line_number=record.line_number,
            )
        i += 1

    if len(observations) != record.depth:
        raise ReadDecodeError(
            f"decoded {len(observations)} reads but depth is {record.depth}",
            contig=record.contig,
            position=record.position,
            line_number=record.line_number,
        )
    return observations
