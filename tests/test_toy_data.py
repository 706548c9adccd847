import io
from pathlib import Path

import pysam

from callsam.caller import call_pileup_stream
from callsam.models import CallSettings
from callsam.reference import load_reference
from callsam.toy_data import TOY_CONTIG, make_toy_data


def test_toy_data_files(tmp_path: Path):
    toy = make_toy_data(outdir=tmp_path)
    for key in ["ref_fa", "bam", "pileup"]:
        assert Path(toy[key]).exists()
    assert Path(toy["ref_fa"] + ".fai").exists()
    assert (tmp_path / "toy_summary.json").exists()
    assert toy["snv"] == "chr1:101:A:C"

    with pysam.AlignmentFile(toy["bam"], "rb") as bam:
        assert bam.header.to_dict()["HD"]["SO"] == "coordinate"
        assert bam.count(TOY_CONTIG) == 24


def test_toy_pileup_calls_the_snv(tmp_path: Path):
    toy = make_toy_data(outdir=tmp_path)
    reference = load_reference(toy["ref_fa"])
    out = io.StringIO()
    with open(toy["pileup"], "rt") as fh:
        stats = call_pileup_stream(fh, out, reference, CallSettings(variants_only=True))

    body = out.getvalue().splitlines()
    # 18 C reads against 3 A reads, each weighing baseQ 40 * MAPQ 60
    assert body == ["chr1\t101\tchr1:101\tA\tC\t36000.00\tPASS\tDP=21;AC=18"]
    assert stats.positions == 96
