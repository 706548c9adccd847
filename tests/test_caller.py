import io

import pytest

from callsam.caller import DEPTH_HIST_CAP, call_pileup_stream, call_position, summarize_run
from callsam.models import CallSettings
from callsam.pileup import MalformedLineError, ReadDecodeError
from callsam.reference import ReferenceGenome

REF = ReferenceGenome({"chr1": "ACGTACGTAC"})

LINES = [
    "chr1\t1\tA\t12\t......,,,,,,\t555555555555\t555555555555\t1,2,3,4,5,6,7,8,9,10,11,12\n",
    "chr1\t2\tC\t12\tGGGGGGgggggg\t555555555555\t555555555555\t1,2,3,4,5,6,7,8,9,10,11,12\n",
    "chr1\t3\tG\t8\t....,,,,\t55555555\t55555555\t1,2,3,4,5,6,7,8\n",
    "chr1\t4\tT\t0\t*\t*\t*\t*\n",
]


def _run(lines, settings=CallSettings(), reference=REF):
    out = io.StringIO()
    stats = call_pileup_stream(lines, out, reference, settings)
    return out.getvalue().splitlines(), stats


def test_call_position():
    outcome = call_position(LINES[0], REF, CallSettings(), line_number=1)
    assert outcome.vcf_line == "chr1\t1\tchr1:1\tA\tA\t4800.00\tPASS\tDP=12;AC=12"
    assert outcome.passed
    assert outcome.depth == 12
    assert outcome.error is None


def test_every_position_is_written():
    body, stats = _run(LINES)
    assert body == [
        "chr1\t1\tchr1:1\tA\tA\t4800.00\tPASS\tDP=12;AC=12",
        "chr1\t2\tchr1:2\tC\tG\t4800.00\tPASS\tDP=12;AC=12",
        "chr1\t3\tchr1:3\tG\tN\t3200.00\tdepth:8;ifIHadToGuess:G\tDP=8;AC=8",
        "chr1\t4\tchr1:4\tT\tN\t0.00\tdepth:0;freq:0.00;ifIHadToGuess:N\tDP=0;AC=0",
    ]
    assert stats.positions == 4
    assert stats.records_written == 4
    assert stats.calls_pass == 2
    assert stats.calls_filtered == 2
    assert stats.filter_counts["depth"] == 2
    assert stats.filter_counts["freq"] == 1
    assert stats.depth_counts[12] == 2
    assert stats.depth_counts[0] == 1


def test_variants_only():
    body, stats = _run(LINES, CallSettings(variants_only=True))
    assert body == ["chr1\t2\tchr1:2\tC\tG\t4800.00\tPASS\tDP=12;AC=12"]
    assert stats.records_written == 1
    assert stats.records_suppressed == 3


def test_without_reference():
    body, _ = _run(LINES[:1], reference=ReferenceGenome.empty())
    # matches stay '.', and so does the REF column
    assert body == ["chr1\t1\tchr1:1\t.\t.\t4800.00\tPASS\tDP=12;AC=12"]


def test_blank_lines_are_ignored():
    body, stats = _run(["\n", LINES[0], "   \n", LINES[1]])
    assert len(body) == 2
    assert stats.positions == 2


def test_debug_stops_early():
    body, stats = _run(LINES, CallSettings(debug=True, debug_positions=2))
    assert len(body) == 2
    assert stats.positions == 2


def test_abort_on_malformed_line():
    bad = "chr1\t5\tA\t3\t..\t555\t555\n"
    with pytest.raises(ReadDecodeError) as exc:
        _run([LINES[0], bad, LINES[1]])
    assert exc.value.location == "chr1:5"
    assert exc.value.line_number == 2


def test_skip_malformed_lines():
    lines = [LINES[0], "chr1\tx\tA\n", "chr1\t5\tA\t3\t..\t555\t555\n", LINES[1]]
    body, stats = _run(lines, CallSettings(on_error="skip"))
    assert len(body) == 2
    assert stats.positions == 4
    assert stats.lines_skipped == 2
    assert stats.calls_pass == 2


def test_malformed_line_error_type():
    with pytest.raises(MalformedLineError):
        call_position("chr1\t1\tA", REF, CallSettings())


def test_deep_positions_share_the_last_bin():
    depth = DEPTH_HIST_CAP + 20
    line = f"chr1\t1\tA\t{depth}\t{'.,' * (depth // 2)}\t{'5' * depth}\t{'5' * depth}\n"
    _, stats = _run([line])
    assert stats.depth_counts[DEPTH_HIST_CAP] == 1


def test_parallel_output_matches_sequential():
    lines = LINES * 25
    seq_body, seq_stats = _run(lines)
    par_body, par_stats = _run(lines, CallSettings(numcpus=2))
    assert sorted(par_body) == sorted(seq_body)
    assert par_stats.positions == seq_stats.positions == 100
    assert par_stats.filter_counts == seq_stats.filter_counts


def test_parallel_abort():
    bad = "chr1\t5\tA\t3\t..\t555\t555\n"
    with pytest.raises(ReadDecodeError):
        _run(LINES * 5 + [bad], CallSettings(numcpus=2))


def test_summary():
    _, stats = _run(LINES)
    summary = summarize_run(
        stats,
        CallSettings(),
        input_path="in.pileup",
        reference_path="ref.fa",
        output_path=None,
    )
    assert summary["input"] == "in.pileup"
    assert summary["settings"]["min_coverage"] == 10
    counts = summary["counts"]
    assert counts["positions"] == 4
    assert counts["depth_hist"]["counts"][12] == 2
    assert len(counts["depth_hist"]["depths"]) == DEPTH_HIST_CAP + 1
