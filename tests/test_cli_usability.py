import gzip
import json
import shutil
import subprocess
import sys
from pathlib import Path
from typing import Optional

import pytest

from callsam.toy_data import make_toy_data

SNV_PREFIX = "chr1\t101\tchr1:101\tA\tC\t"


def _run_cli(args: list[str], stdin: Optional[str] = None) -> subprocess.CompletedProcess:
    return subprocess.run(
        [sys.executable, "-m", "callsam"] + args,
        check=False,
        capture_output=True,
        text=True,
        input=stdin,
    )


def _body(vcf_text: str) -> list[str]:
    return [line for line in vcf_text.splitlines() if line and not line.startswith("#")]


def test_quickstart_output() -> None:
    cp = _run_cli(["quickstart"])
    assert cp.returncode == 0
    assert "callsam call sorted.bam" in cp.stdout
    assert "callsam call --pileup" in cp.stdout


def test_make_toy_data_dry_run(tmp_path: Path) -> None:
    outdir = tmp_path / "toy"
    cp = _run_cli(["make-toy-data", "--outdir", str(outdir), "--dry-run"])
    assert cp.returncode == 0
    assert "Would write" in cp.stdout
    assert not outdir.exists()


def test_make_toy_data_and_call_pileup(tmp_path: Path) -> None:
    toy_dir = tmp_path / "toy"
    cp = _run_cli(["make-toy-data", "--outdir", str(toy_dir)])
    assert cp.returncode == 0
    assert json.loads(cp.stdout)["snv"] == "chr1:101:A:C"

    cp = _run_cli(
        [
            "call",
            "--pileup",
            str(toy_dir / "toy.pileup"),
            "--reference",
            str(toy_dir / "toy_ref.fa"),
            "--no-progress",
        ]
    )
    assert cp.returncode == 0, cp.stderr
    assert cp.stdout.startswith("##fileformat=VCFv4.2")
    assert "#CHROM\tPOS\tID\tREF\tALT\tQUAL\tFILTER\tINFO" in cp.stdout
    body = _body(cp.stdout)
    assert len(body) == 96
    snv = [line for line in body if line.startswith(SNV_PREFIX)]
    assert len(snv) == 1
    assert snv[0].split("\t")[6] == "PASS"


def test_variants_only_to_gzip_file(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    out_vcf = tmp_path / "variants.vcf.gz"
    cp = _run_cli(
        [
            "call",
            "--pileup",
            toy["pileup"],
            "--reference",
            toy["ref_fa"],
            "--variants-only",
            "--out",
            str(out_vcf),
            "--no-progress",
        ]
    )
    assert cp.returncode == 0, cp.stderr
    with gzip.open(out_vcf, "rt") as fh:
        body = _body(fh.read())
    assert len(body) == 1
    assert body[0].startswith(SNV_PREFIX)


def test_pileup_from_stdin(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    text = Path(toy["pileup"]).read_text(encoding="utf-8")
    cp = _run_cli(
        ["call", "--pileup", "-", "--reference", toy["ref_fa"], "--variants-only", "--numcpus", "2"],
        stdin=text,
    )
    assert cp.returncode == 0, cp.stderr
    body = _body(cp.stdout)
    assert len(body) == 1
    assert body[0].startswith(SNV_PREFIX)


def test_summary_dir(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    summary_dir = tmp_path / "run"
    cp = _run_cli(
        [
            "call",
            "--pileup",
            toy["pileup"],
            "--reference",
            toy["ref_fa"],
            "--summary-dir",
            str(summary_dir),
            "--out",
            str(tmp_path / "out.vcf"),
            "--no-progress",
        ]
    )
    assert cp.returncode == 0, cp.stderr
    assert (summary_dir / "report.html").exists()
    assert (summary_dir / "plots" / "filter_counts.png").exists()
    assert (summary_dir / "plots" / "depth_hist.png").exists()
    assert (summary_dir / "logs" / "call.log").exists()

    summary = json.loads((summary_dir / "summary.json").read_text(encoding="utf-8"))
    assert summary["counts"]["positions"] == 96
    assert summary["counts"]["records_written"] == 96
    assert summary["settings"]["min_coverage"] == 10


def test_malformed_pileup_reports_location(tmp_path: Path) -> None:
    pileup = tmp_path / "bad.pileup"
    pileup.write_text("chr7\t42\tA\t3\t..\t555\t555\n", encoding="utf-8")
    cp = _run_cli(["call", "--pileup", str(pileup), "--no-progress"])
    assert cp.returncode == 2
    assert "chr7:42" in cp.stderr


def test_malformed_pileup_can_be_skipped(tmp_path: Path) -> None:
    pileup = tmp_path / "bad.pileup"
    pileup.write_text(
        "chr7\t42\tA\t3\t..\t555\t555\n" "chr7\t43\tA\t2\t.,\t55\t55\n",
        encoding="utf-8",
    )
    cp = _run_cli(["call", "--pileup", str(pileup), "--on-error", "skip", "--no-progress"])
    assert cp.returncode == 0, cp.stderr
    assert len(_body(cp.stdout)) == 1
    assert "chr7:42" in cp.stderr


def test_call_needs_exactly_one_input(tmp_path: Path) -> None:
    cp = _run_cli(["call", "--no-progress"])
    assert cp.returncode == 2
    assert "exactly one input" in cp.stderr


def test_call_rejects_bad_frequency(tmp_path: Path) -> None:
    pileup = tmp_path / "x.pileup"
    pileup.write_text("", encoding="utf-8")
    cp = _run_cli(["call", "--pileup", str(pileup), "--min-frequency", "1.5"])
    assert cp.returncode == 2
    assert "within [0, 1]" in cp.stderr


def test_doctor_dry_run() -> None:
    cp = _run_cli(["doctor", "--dry-run"])
    assert cp.returncode == 0
    assert "python" in cp.stdout
    assert "samtools" in cp.stdout


@pytest.mark.skipif(shutil.which("samtools") is None, reason="samtools not installed")
def test_call_from_bam(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    cp = _run_cli(
        [
            "call",
            toy["bam"],
            "--reference",
            toy["ref_fa"],
            "--mpileup-opts=-q 1 -B",
            "--variants-only",
            "--no-progress",
        ]
    )
    assert cp.returncode == 0, cp.stderr
    body = _body(cp.stdout)
    assert len(body) == 1
    assert body[0].startswith(SNV_PREFIX)
