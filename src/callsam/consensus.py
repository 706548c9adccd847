from __future__ import annotations

import logging
from typing import Dict, List, Sequence, Tuple

from .models import NO_CALL, CallSettings, ConsensusResult, ReadObservation, Strand
from .utils import phred

logger = logging.getLogger(__name__)

# Either strand must carry at least this share of the reads supporting the call.
_MIN_STRAND_FRACTION = 0.1


def tally_tokens(observations: Sequence[ReadObservation]) -> Dict[str, int]:
    """Count observations per allele. Case carries the strand, so it is ignored here."""
    counts: Dict[str, int] = {}
    for obs in observations:
        token = obs.token.upper()
        counts[token] = counts.get(token, 0) + 1
    return counts


def majority_token(counts: Dict[str, int]) -> str:
    """Most frequent token; ties go to the smallest token string."""
    if not counts:
        return NO_CALL
    return min(counts, key=lambda token: (-counts[token], token))


def strand_counts(observations: Sequence[ReadObservation], token: str) -> Tuple[int, int]:
    """Forward and reverse read counts among observations agreeing with ``token``."""
    target = token.upper()
    forward = reverse = 0
    for obs in observations:
        if obs.token.upper() != target:
            continue
        if obs.strand is Strand.FORWARD:
            forward += 1
        elif obs.strand is Strand.REVERSE:
            reverse += 1
    return forward, reverse


def quality_score(
    observations: Sequence[ReadObservation],
    qualities: str,
    mapping_qualities: str,
    token: str,
) -> float:
    """Sum of baseQ * MAPQ over reads agreeing with ``token``, minus the rest."""
    target = token.upper()
    score = 0
    for obs, bq, mq in zip(observations, qualities, mapping_qualities):
        weight = phred(bq) * phred(mq)
        if obs.token.upper() == target:
            score += weight
        else:
            score -= weight
    return round(float(score), 2)


def call_consensus(
    observations: Sequence[ReadObservation],
    qualities: str,
    mapping_qualities: str,
    settings: CallSettings,
) -> ConsensusResult:
    """Make the majority call for one position and record every failed filter.

    Any failed filter turns the call into ``N``; the majority token is kept as
    ``original_guess`` and reported as ``ifIHadToGuess`` in the FILTER column.
    """
    depth = len(observations)
    if len(qualities) != depth or len(mapping_qualities) != depth:
        raise ValueError(
            f"{depth} observations but {len(qualities)} base qualities "
            f"and {len(mapping_qualities)} mapping qualities"
        )

    counts = tally_tokens(observations)
    winner = majority_token(counts)
    allele_count = counts.get(winner, 0)
    frequency = round(allele_count / depth, 2) if depth > 0 else 0.0

    filters: List[Tuple[str, str]] = []
    if depth < settings.min_coverage:
        filters.append(("depth", str(depth)))
    if frequency < settings.min_frequency:
        filters.append(("freq", f"{frequency:.2f}"))

    forward, reverse = strand_counts(observations, winner)
    total = forward + reverse
    # reads without a strand (deletions) cannot be judged
    if total > 0 and (forward / total < _MIN_STRAND_FRACTION or reverse / total < _MIN_STRAND_FRACTION):
        filters.append(("forwardReads", str(forward)))
        filters.append(("reverseReads", str(reverse)))

    score = quality_score(observations, qualities, mapping_qualities, winner)
    final_call = winner
    if score < 0:
        filters.append(("score", f"{score:.2f}"))
        final_call = NO_CALL

    if filters:
        final_call = NO_CALL
        logger.debug("No-call (guess %s): %s", winner, ", ".join(name for name, _ in filters))

    return ConsensusResult(
        winner=winner,
        allele_count=allele_count,
        frequency=frequency,
        score=score,
        filters=tuple(filters),
        final_call=final_call,
        original_guess=winner,
        depth=depth,
    )
