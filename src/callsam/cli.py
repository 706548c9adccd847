from __future__ import annotations

import argparse
import json
import logging
import sys
from contextlib import closing
from pathlib import Path
from typing import ContextManager, Iterable, Optional

from . import __version__
from .caller import RunStats, call_pileup_stream, summarize_run
from .doctor import collect_checks
from .external import ExternalCommandError
from .models import CallSettings
from .mpileup import build_mpileup_command, iter_mpileup_lines
from .plotting import plot_depth_hist, plot_filter_counts
from .reference import load_reference
from .report import render_report
from .toy_data import make_toy_data
from .utils import ensure_outdir, open_input, open_output, write_json
from .validation import ON_ERROR_CHOICES, check_alignment_sorted, check_reference, validate_settings
from .vcf import header_lines


def _setup_logging(verbosity: int, *, logfile: Optional[Path] = None) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    log_fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    logging.basicConfig(level=level, format=log_fmt, stream=sys.stderr)

    if logfile is not None:
        logfile.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(logfile)
        fh.setLevel(level)
        fh.setFormatter(logging.Formatter(log_fmt))
        logging.getLogger().addHandler(fh)


def _path_exists(p: str) -> str:
    if p != "-" and not Path(p).exists():
        raise argparse.ArgumentTypeError(f"Path does not exist: {p}")
    return p


def _fraction(s: str) -> float:
    try:
        v = float(s)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Not a number: {s}") from None
    if not 0.0 <= v <= 1.0:
        raise argparse.ArgumentTypeError(f"Must be within [0, 1]: {s}")
    return v


def _log_path(outdir: Path, name: str) -> Path:
    return outdir / "logs" / name


def _handle_error(err: Exception, *, log_path: Optional[Path] = None) -> int:
    if isinstance(err, ExternalCommandError):
        msg = str(err)
    else:
        msg = f"{err.__class__.__name__}: {err}"

    sys.stderr.write(msg + "\n")
    if log_path is not None:
        sys.stderr.write(f"See log: {log_path}\n")
    return 2


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="callsam",
        description=(
            "CallSam: call consensus bases from a sorted BAM (via samtools mpileup) or from an "
            "existing pileup, and write one VCF record per position."
        ),
    )
    p.add_argument("--version", action="version", version=f"callsam {__version__}")

    sub = p.add_subparsers(dest="cmd", required=True)

    # -----------------
    # quickstart
    # -----------------
    sub.add_parser(
        "quickstart",
        help="Print ready-to-run recipes for common scenarios.",
    )

    # -----------------
    # call
    # -----------------
    c = sub.add_parser(
        "call",
        help="Call a consensus base at every covered position and write a VCF.",
        description=(
            "Creates a VCF from a sorted BAM file (runs samtools mpileup) or from a pileup "
            "produced by 'samtools mpileup -O -s'. The score at a position is the sum of "
            "base quality times mapping quality of the reads agreeing with the consensus, "
            "minus the same for the reads that do not. When a position fails a filter the "
            "ALT is N and the FILTER column carries an ifIHadToGuess entry with the best guess. "
            "An insertion or deletion is counted as a read of its own, so real samtools "
            "output fails the depth check at indel sites: use --on-error skip to step over them."
        ),
    )
    c.add_argument("bam", nargs="?", default=None, type=_path_exists, help="Sorted BAM file.")
    c.add_argument(
        "--pileup",
        default=None,
        type=_path_exists,
        help="Read an existing 'samtools mpileup -O -s' output instead of a BAM ('-' for stdin).",
    )
    c.add_argument("--reference", default=None, help="Reference FASTA (optional).")
    c.add_argument("--min-coverage", type=int, default=10, help="Min depth at a position.")
    c.add_argument(
        "--min-frequency",
        type=_fraction,
        default=0.75,
        help="Min frequency of the majority allele (0-1).",
    )
    c.add_argument("--variants-only", action="store_true", help="Do not print invariant sites.")
    c.add_argument(
        "--numcpus",
        type=int,
        default=1,
        help=(
            "Worker processes. WARNING: with more than one, records are written in completion "
            "order and the output must be sorted afterwards."
        ),
    )
    c.add_argument(
        "--mpileup-opts",
        default="-q 1",
        help="Options passed to 'samtools mpileup' (see samtools mpileup for help).",
    )
    c.add_argument("--debug", action="store_true", help="Call only the first positions.")
    c.add_argument(
        "--debug-positions",
        type=int,
        default=10_000,
        help="Number of positions called with --debug.",
    )
    c.add_argument(
        "--on-error",
        choices=list(ON_ERROR_CHOICES),
        default="abort",
        help=(
            "What to do with a malformed pileup line: abort the run or skip and count it. "
            "Indel sites from samtools mpileup fail the depth check; use skip when calling from a BAM."
        ),
    )
    c.add_argument("--out", default=None, help="Output VCF (default: stdout; .gz is gzipped).")
    c.add_argument(
        "--summary-dir",
        default=None,
        help="Write summary.json, plots and report.html into this directory.",
    )
    c.add_argument("--no-progress", action="store_true", help="Do not show a progress bar.")
    c.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")

    # -----------------
    # make-toy-data
    # -----------------
    t = sub.add_parser(
        "make-toy-data",
        help="Generate a tiny reference, BAM and pileup for demos/tests.",
    )
    t.add_argument("--outdir", required=True, help="Output directory for toy data.")
    t.add_argument("--dry-run", action="store_true", help="Validate paths without writing files.")

    # -----------------
    # doctor
    # -----------------
    d = sub.add_parser(
        "doctor",
        help="Check your environment for required external tools (samtools).",
    )
    d.add_argument("--dry-run", action="store_true", help="Print checks without exiting nonzero.")
    d.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")

    return p


# -----------------
# Command handlers
# -----------------

def cmd_quickstart() -> int:
    lines = [
        "CallSam quickstart (copy/paste):",
        "",
        "1) Sorted BAM -> VCF:",
        "   callsam call sorted.bam --reference ref.fa --on-error skip > out.vcf",
        "",
        "2) Variant sites only, compressed:",
        "   callsam call sorted.bam --reference ref.fa --variants-only --out variants.vcf.gz",
        "",
        "3) Existing pileup (no samtools needed):",
        "   samtools mpileup -q 1 -f ref.fa -O -s sorted.bam > sample.pileup",
        "   callsam call --pileup sample.pileup --reference ref.fa --summary-dir run/ > out.vcf",
        "",
        "4) Several CPUs (output must be re-sorted):",
        "   callsam call sorted.bam --numcpus 4 > out.vcf && \\",
        "     (grep '^#' out.vcf; grep -v '^#' out.vcf | sort -k1,1 -k2,2n) > out.sorted.vcf",
        "",
        "Tip: run 'callsam make-toy-data --outdir toy/' to get a small dataset to try these on.",
    ]
    print("\n".join(lines))
    return 0


def cmd_make_toy_data(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    if args.dry_run:
        print(f"Would write toy data into: {outdir}")
        return 0

    summary = make_toy_data(outdir=outdir)
    print(json.dumps(summary, indent=2))
    return 0


def _write_summary_dir(
    summary_dir: Path,
    stats: RunStats,
    settings: CallSettings,
    args: argparse.Namespace,
) -> Path:
    summary = summarize_run(
        stats,
        settings,
        input_path=args.bam or args.pileup,
        reference_path=args.reference,
        output_path=args.out,
    )
    write_json(summary_dir / "summary.json", summary)

    plots_dir = summary_dir / "plots"
    filter_png = plots_dir / "filter_counts.png"
    depth_png = plots_dir / "depth_hist.png"
    plot_filter_counts(filter_counts=stats.filter_counts, calls_pass=stats.calls_pass, out_png=filter_png)
    plot_depth_hist(counts=stats.depth_counts.tolist(), out_png=depth_png)

    plots_rel = {
        "filter_counts": str(Path("plots") / filter_png.name),
        "depth_hist": str(Path("plots") / depth_png.name),
    }
    return render_report(outdir=summary_dir, version=__version__, summary=summary, plots=plots_rel)


def cmd_call(args: argparse.Namespace) -> int:
    summary_dir: Optional[Path] = None
    log_path: Optional[Path] = None
    if args.summary_dir:
        summary_dir = ensure_outdir(Path(args.summary_dir).expanduser().resolve())
        log_path = _log_path(summary_dir, "call.log")
    _setup_logging(args.verbose, logfile=log_path)

    logger = logging.getLogger("callsam")
    logger.info("callsam %s", __version__)

    try:
        if (args.bam is None) == (args.pileup is None):
            raise ValueError("Give exactly one input: a sorted BAM file or --pileup FILE")

        settings = CallSettings(
            min_coverage=int(args.min_coverage),
            min_frequency=float(args.min_frequency),
            variants_only=bool(args.variants_only),
            numcpus=int(args.numcpus),
            debug=bool(args.debug),
            debug_positions=int(args.debug_positions),
            on_error=str(args.on_error),
            mpileup_opts=str(args.mpileup_opts),
        )
        validate_settings(settings)

        reference = load_reference(args.reference)

        lines_cm: ContextManager[Iterable[str]]
        if args.bam is not None:
            check_alignment_sorted(args.bam)
            ref_fa = check_reference(args.reference) if args.reference else None
            cmd = build_mpileup_command(args.bam, reference_path=ref_fa, extra_opts=settings.mpileup_opts)
            lines_cm = closing(iter_mpileup_lines(cmd))
        else:
            lines_cm = open_input(args.pileup)

        with lines_cm as lines, open_output(args.out) as out:
            for h in header_lines(reference_path=args.reference):
                out.write(h + "\n")
            stats = call_pileup_stream(
                lines,
                out,
                reference,
                settings,
                progress=not args.no_progress and sys.stderr.isatty(),
            )

        logger.info("Done. %d positions were analyzed.", stats.positions)

        if summary_dir is not None:
            report_path = _write_summary_dir(summary_dir, stats, settings, args)
            logger.info("Report written: %s", report_path)
        return 0
    except Exception as e:
        return _handle_error(e, log_path=log_path)


def cmd_doctor(args: argparse.Namespace) -> int:
    _setup_logging(args.verbose, logfile=None)

    checks = collect_checks()

    lines = []
    ok_all = True
    for name in ["python", "samtools"]:
        r = checks[name]
        status = "OK" if r.ok else "MISSING"
        lines.append(f"{name:9s} : {status:7s}  {r.detail}")
        if not r.ok:
            ok_all = False

    print("\n".join(lines))

    for name in ["samtools"]:
        r = checks[name]
        if not r.ok and r.howto:
            print("\n---")
            print(f"How to install/fix '{name}':")
            print(r.howto)
            print("Without samtools you can still call from an existing pileup: callsam call --pileup FILE")

    if args.dry_run:
        return 0
    return 0 if ok_all else 1


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.cmd == "quickstart":
        return cmd_quickstart()
    if args.cmd == "call":
        return cmd_call(args)
    if args.cmd == "make-toy-data":
        return cmd_make_toy_data(args)
    if args.cmd == "doctor":
        return cmd_doctor(args)

    parser.error(f"Unknown command: {args.cmd}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
