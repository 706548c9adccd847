from __future__ import annotations

import datetime as _dt
import logging
from pathlib import Path
from typing import Any, Dict

from jinja2 import Template

logger = logging.getLogger(__name__)


_REPORT_TEMPLATE = Template(
    """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>CallSam Report</title>
  <style>
    body { font-family: Arial, Helvetica, sans-serif; margin: 24px; }
    code, pre { background: #f6f8fa; padding: 2px 4px; border-radius: 4px; }
    h1, h2, h3 { margin-top: 1.2em; }
    table { border-collapse: collapse; margin-top: 0.6em; }
    th, td { border: 1px solid #ddd; padding: 8px; }
    th { background: #f2f2f2; text-align: left; }
    .grid { display: grid; grid-template-columns: 1fr 1fr; gap: 16px; }
    .card { border: 1px solid #ddd; border-radius: 8px; padding: 12px; }
    .small { color: #666; font-size: 0.9em; }
    img { max-width: 100%; height: auto; border: 1px solid #eee; border-radius: 6px; }
  </style>
</head>
<body>

<h1>CallSam Report</h1>
<p class="small">Generated: {{ generated_at }}</p>

<h2>Run summary</h2>
<div class="grid">
  <div class="card">
    <h3>Inputs</h3>
    <table>
      <tr><th>Input</th><td><code>{{ input_path }}</code></td></tr>
      <tr><th>Reference</th><td><code>{{ reference_path or "(none)" }}</code></td></tr>
      <tr><th>Output</th><td><code>{{ output_path or "(stdout)" }}</code></td></tr>
    </table>
  </div>
  <div class="card">
    <h3>Thresholds</h3>
    <table>
      <tr><th>Min coverage</th><td>{{ settings.min_coverage }}</td></tr>
      <tr><th>Min frequency</th><td>{{ settings.min_frequency }}</td></tr>
      <tr><th>Variants only</th><td>{{ settings.variants_only }}</td></tr>
      <tr><th>Worker processes</th><td>{{ settings.numcpus }}</td></tr>
    </table>
  </div>
</div>

<h2>Positions</h2>
<table>
  <tr><th>Positions analyzed</th><td>{{ counts.positions }}</td></tr>
  <tr><th>Records written</th><td>{{ counts.records_written }}</td></tr>
  <tr><th>Records suppressed (variants only)</th><td>{{ counts.records_suppressed }}</td></tr>
  <tr><th>Malformed lines skipped</th><td>{{ counts.lines_skipped }}</td></tr>
  <tr><th>PASS calls</th><td>{{ counts.calls_pass }}</td></tr>
  <tr><th>No-calls (N)</th><td>{{ counts.calls_filtered }}</td></tr>
</table>

<h2>Filters</h2>
<table>
  {% for name, n in counts.filter_counts.items() %}
  <tr><th>{{ name }}</th><td>{{ n }}</td></tr>
  {% endfor %}
</table>

<h2>Plots</h2>
<div class="grid">
  <div class="card">
    <h3>Filters</h3>
    <img src="{{ plots.filter_counts }}" alt="filter counts">
  </div>
  <div class="card">
    <h3>Depth</h3>
    <img src="{{ plots.depth_hist }}" alt="depth histogram">
  </div>
</div>

<h2>Interpretation notes</h2>
<ul>
  <li>A position fails if any filter triggers; its ALT becomes <code>N</code> and the FILTER column lists every reason plus <code>ifIHadToGuess</code>.</li>
  <li>QUAL is the sum of baseQ &times; MAPQ over reads agreeing with the majority minus the same over the rest.</li>
  {% if settings.numcpus > 1 %}
  <li>This run used {{ settings.numcpus }} worker processes: records are not in genomic order.</li>
  {% endif %}
</ul>

<hr>
<p class="small">CallSam {{ version }} &middot; runtime {{ "%.1f"|format(counts.runtime_seconds) }} s</p>
</body>
</html>"""
)


def render_report(
    *,
    outdir: str | Path,
    version: str,
    summary: Dict[str, Any],
    plots: Dict[str, str],
) -> Path:
    outdir = Path(outdir)
    outdir.mkdir(parents=True, exist_ok=True)

    html = _REPORT_TEMPLATE.render(
        generated_at=_dt.datetime.now().isoformat(timespec="seconds"),
        version=version,
        input_path=summary.get("input") or "(stdin)",
        reference_path=summary.get("reference"),
        output_path=summary.get("output"),
        settings=summary.get("settings", {}),
        counts=summary.get("counts", {}),
        plots=plots,
    )

    out_path = outdir / "report.html"
    out_path.write_text(html, encoding="utf-8")
    return out_path
