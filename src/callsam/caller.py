"""Position stream driver: pileup lines in, VCF records out.

Every line is handled on its own (decode -> consensus -> record), so the only
state shared across positions is the read-only reference and the run counters.

With ``numcpus > 1`` lines are fanned out to a ``multiprocessing.Pool`` and
records are written in completion order. Output order is then NOT the input
order; sort afterwards if needed, e.g.::

    (grep '^#' out.vcf; grep -v '^#' out.vcf | sort -k1,1 -k2,2n) > out.sorted.vcf
"""

from __future__ import annotations

import logging
import multiprocessing
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, Optional, TextIO, Tuple

import numpy as np
from tqdm import tqdm

from .consensus import call_consensus
from .models import CallSettings, ConsensusResult, OutputRecord, PileupRecord
from .pileup import PileupError, decode_read_bases, parse_pileup_line
from .reference import ReferenceGenome
from .utils import chunked, dataclass_to_jsonable
from .vcf import emit_record

logger = logging.getLogger(__name__)

# Depths at or above this share the last histogram bin.
DEPTH_HIST_CAP = 100

_CHUNKSIZE = 256
_BATCH_SIZE = 64 * _CHUNKSIZE

FILTER_NAMES = ["depth", "freq", "forwardReads", "reverseReads", "score"]


@dataclass(frozen=True)
class PositionOutcome:
    """What the driver needs to know about one processed line."""

    line_number: int
    depth: int = 0
    vcf_line: Optional[str] = None
    suppressed: bool = False
    passed: bool = False
    filters: Tuple[str, ...] = ()
    error: Optional[PileupError] = None


@dataclass
class RunStats:
    """Run-wide counters."""

    positions: int = 0
    records_written: int = 0
    records_suppressed: int = 0
    lines_skipped: int = 0
    calls_pass: int = 0
    calls_filtered: int = 0
    filter_counts: Dict[str, int] = field(default_factory=lambda: {name: 0 for name in FILTER_NAMES})
    depth_counts: np.ndarray = field(default_factory=lambda: np.zeros(DEPTH_HIST_CAP + 1, dtype=np.int64))
    runtime_seconds: float = 0.0

    def add(self, outcome: PositionOutcome) -> None:
        self.positions += 1
        if outcome.error is not None:
            self.lines_skipped += 1
            return

        self.depth_counts[min(outcome.depth, DEPTH_HIST_CAP)] += 1
        if outcome.passed:
            self.calls_pass += 1
        else:
            self.calls_filtered += 1
        for name in outcome.filters:
            self.filter_counts[name] = self.filter_counts.get(name, 0) + 1

        if outcome.suppressed:
            self.records_suppressed += 1
        elif outcome.vcf_line is not None:
            self.records_written += 1

    def to_dict(self) -> Dict[str, object]:
        return {
            "positions": int(self.positions),
            "records_written": int(self.records_written),
            "records_suppressed": int(self.records_suppressed),
            "lines_skipped": int(self.lines_skipped),
            "calls_pass": int(self.calls_pass),
            "calls_filtered": int(self.calls_filtered),
            "filter_counts": dict(self.filter_counts),
            "depth_hist": {
                "depths": list(range(DEPTH_HIST_CAP + 1)),
                "counts": self.depth_counts.tolist(),
                "last_bin_is_open": True,
            },
            "runtime_seconds": float(self.runtime_seconds),
        }


def call_record(
    record: PileupRecord,
    reference: Optional[ReferenceGenome],
    settings: CallSettings,
) -> Tuple[ConsensusResult, Optional[OutputRecord]]:
    """Decode, call and format one parsed position."""
    observations = decode_read_bases(record, reference)
    result = call_consensus(observations, record.qualities, record.mapping_qualities, settings)
    return result, emit_record(record, result, reference, settings)


def call_position(
    line: str,
    reference: Optional[ReferenceGenome],
    settings: CallSettings,
    *,
    line_number: int = 0,
) -> PositionOutcome:
    """Process one pileup line.

    Raises
    ------
    PileupError
        If the line is malformed or its read bases cannot be decoded.
    """
    record = parse_pileup_line(line, line_number=line_number or None)
    result, output = call_record(record, reference, settings)
    return PositionOutcome(
        line_number=line_number,
        depth=record.depth,
        vcf_line=output.to_line() if output is not None else None,
        suppressed=output is None,
        passed=result.passed,
        filters=result.filter_names,
    )


def _call_line(
    line_number: int,
    line: str,
    reference: Optional[ReferenceGenome],
    settings: CallSettings,
) -> PositionOutcome:
    try:
        return call_position(line, reference, settings, line_number=line_number)
    except PileupError as e:
        if settings.on_error != "skip":
            raise
        return PositionOutcome(line_number=line_number, error=e)


# Per-process state for pool workers, set once by the initializer.
_WORKER_STATE: Dict[str, object] = {}


def _init_worker(reference: Optional[ReferenceGenome], settings: CallSettings) -> None:
    _WORKER_STATE["reference"] = reference
    _WORKER_STATE["settings"] = settings


def _call_numbered_line(item: Tuple[int, str]) -> PositionOutcome:
    line_number, line = item
    return _call_line(
        line_number,
        line,
        _WORKER_STATE["reference"],  # type: ignore[arg-type]
        _WORKER_STATE["settings"],  # type: ignore[arg-type]
    )


def _numbered_lines(lines: Iterable[str], settings: CallSettings) -> Iterator[Tuple[int, str]]:
    """Number input lines (1-based), skip blank ones and apply the debug cut-off."""
    taken = 0
    for line_number, line in enumerate(lines, start=1):
        if not line.strip():
            continue
        if settings.debug and taken >= settings.debug_positions:
            logger.info("Debug mode: stopping after %d positions", taken)
            return
        taken += 1
        yield line_number, line


def _consume(
    outcomes: Iterable[PositionOutcome],
    out: TextIO,
    stats: RunStats,
    settings: CallSettings,
) -> None:
    for outcome in outcomes:
        stats.add(outcome)
        if outcome.error is not None:
            logger.warning("Skipping %s: %s", outcome.error.location, outcome.error.reason)
        elif outcome.vcf_line is not None:
            out.write(outcome.vcf_line + "\n")

        if stats.positions % settings.progress_every == 0:
            logger.info("Finished with %d positions", stats.positions)


def call_pileup_stream(
    lines: Iterable[str],
    out: TextIO,
    reference: Optional[ReferenceGenome],
    settings: CallSettings,
    *,
    progress: bool = False,
) -> RunStats:
    """Call every position of a pileup stream and write VCF body lines to ``out``.

    Parameters
    ----------
    lines:
        mpileup lines (``-O -s`` columns), e.g. an open file or
        :func:`callsam.mpileup.iter_mpileup_lines`.
    out:
        Text sink for the records. The header is not written here.
    reference:
        Reference genome used to resolve ``.``/``,`` and the REF column.
    settings:
        Thresholds and run options.
    progress:
        Show a tqdm progress bar on stderr.

    Returns
    -------
    RunStats
        Counters for the whole run.

    Raises
    ------
    PileupError
        On the first bad line when ``settings.on_error == "abort"``. In
        parallel mode, records of lines already finished may have been written.
    """
    t0 = time.time()
    stats = RunStats()

    numbered: Iterable[Tuple[int, str]] = _numbered_lines(lines, settings)
    if progress:
        numbered = tqdm(numbered, unit="position", desc="Calling positions")

    if settings.numcpus <= 1:
        outcomes: Iterable[PositionOutcome] = (
            _call_line(line_number, line, reference, settings) for line_number, line in numbered
        )
        _consume(outcomes, out, stats, settings)
    else:
        logger.info(
            "Calling with %d worker processes; output order is not guaranteed", settings.numcpus
        )
        with multiprocessing.Pool(
            processes=settings.numcpus,
            initializer=_init_worker,
            initargs=(reference, settings),
        ) as pool:
            # input is read here, in the main process, one batch at a time
            for batch in chunked(numbered, _BATCH_SIZE):
                _consume(
                    pool.imap_unordered(_call_numbered_line, batch, chunksize=_CHUNKSIZE),
                    out,
                    stats,
                    settings,
                )

    stats.runtime_seconds = time.time() - t0
    logger.info("Finished with %d positions", stats.positions)
    if stats.lines_skipped:
        logger.warning("%d malformed line(s) were skipped", stats.lines_skipped)
    return stats


def summarize_run(
    stats: RunStats,
    settings: CallSettings,
    *,
    input_path: Optional[str],
    reference_path: Optional[str],
    output_path: Optional[str],
) -> Dict[str, object]:
    """Machine-readable run summary (summary.json)."""
    return {
        "input": input_path,
        "reference": reference_path,
        "output": output_path,
        "settings": dict(dataclass_to_jsonable(settings)),
        "counts": stats.to_dict(),
    }

