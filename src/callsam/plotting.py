from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List

import matplotlib.pyplot as plt

logger = logging.getLogger(__name__)


def plot_filter_counts(
    *,
    filter_counts: Dict[str, int],
    calls_pass: int,
    out_png: str | Path,
    title: str = "Positions per filter",
) -> None:
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    labels = ["PASS"] + list(filter_counts)
    values = [int(calls_pass)] + [int(v) for v in filter_counts.values()]

    plt.figure()
    plt.bar(labels, values)
    plt.ylabel("Position count")
    plt.title(title)
    plt.xticks(rotation=15, ha="right")
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()


def plot_depth_hist(
    *,
    counts: List[int],
    out_png: str | Path,
    title: str = "Depth distribution",
) -> None:
    """Bar plot of positions per depth; the last bin collects all deeper positions."""
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    cap = len(counts) - 1
    xs = list(range(len(counts)))

    plt.figure()
    plt.bar(xs, counts, width=1.0, align="center")
    plt.xlabel(f"Depth (last bin: {cap}+)")
    plt.ylabel("Position count")
    plt.title(title)
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()
