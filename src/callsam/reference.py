from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterator, List, Mapping, Optional

import pysam

logger = logging.getLogger(__name__)


class ReferenceGenome:
    """Read-only contig -> sequence lookup addressed with 1-based positions.

    An empty genome stands for "no reference given": every lookup returns None.
    """

    __slots__ = ("_seqs", "path")

    def __init__(self, seqs: Mapping[str, str], *, path: Optional[str] = None) -> None:
        self._seqs: Dict[str, str] = dict(seqs)
        self.path = path

    @classmethod
    def empty(cls) -> "ReferenceGenome":
        return cls({})

    def lookup(self, contig: str, position: int) -> Optional[str]:
        """Return the base at a 1-based position, or None if unknown."""
        seq = self._seqs.get(contig)
        if seq is None or position < 1 or position > len(seq):
            return None
        return seq[position - 1]

    @property
    def contigs(self) -> List[str]:
        return list(self._seqs)

    def __contains__(self, contig: object) -> bool:
        return contig in self._seqs

    def __len__(self) -> int:
        return len(self._seqs)

    def __iter__(self) -> Iterator[str]:
        return iter(self._seqs)


def load_reference(path: Optional[str | Path]) -> ReferenceGenome:
    """Load every sequence of a FASTA file into memory.

    Parameters
    ----------
    path:
        FASTA path (optionally gzipped). If None, an empty genome is returned
        and match characters decode to ``.``.

    Raises
    ------
    FileNotFoundError
        If a path is given but does not exist.
    """
    if path is None:
        logger.warning("Reference not given; matches to the reference will be reported as '.'")
        return ReferenceGenome.empty()

    p = Path(path).expanduser()
    if not p.is_file():
        raise FileNotFoundError(f"Could not locate the reference: {p}")

    seqs: Dict[str, str] = {}
    with pysam.FastxFile(str(p)) as fh:
        for entry in fh:
            if entry.name in seqs:
                logger.warning("Duplicate contig '%s' in %s; keeping the last one", entry.name, p)
            seqs[entry.name] = entry.sequence or ""

    logger.info("Loaded %d contig(s) from %s", len(seqs), p)
    return ReferenceGenome(seqs, path=str(p))
