"""
Generate a compact per-restart comparison figure from
outputs/tables/collective_trace.csv.

For every restart it shows the best value reached for train RMS, overall RMS
and train accuracy, and marks the restart that produced the adopted model.

Outputs:
- outputs/figures/restart_report.png
- outputs/figures/restart_report.svg
- outputs/figures/restart_report.txt (caption)
"""
from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import List, Optional, Sequence

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

TRACE_CSV = Path("outputs/tables/collective_trace.csv")
SUMMARY_JSON = Path("outputs/notes/run_summary.json")
FIG_DIR = Path("outputs/figures")

# (column, title, lower is better)
PANELS = [
    ("rms_train", "RMS (train)", True),
    ("rms", "RMS (overall)", True),
    ("acc_train", "Accuracy (train)", False),
]


def per_restart(trace: pd.DataFrame) -> pd.DataFrame:
    """Best value per restart for every panel column."""
    aggregations = {column: ("min" if lower else "max") for column, _, lower in PANELS}
    aggregations["flipped"] = "mean"
    return trace.groupby("restart").agg(aggregations).reset_index()


def main(args: Optional[Sequence[str]] = None) -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--trace", type=Path, default=TRACE_CSV)
    parser.add_argument("--summary", type=Path, default=SUMMARY_JSON)
    parser.add_argument("--fig-dir", type=Path, default=FIG_DIR)
    parsed = parser.parse_args(args=args)

    if not parsed.trace.exists():
        raise SystemExit(f"Missing trace CSV: {parsed.trace}")
    trace = pd.read_csv(parsed.trace)
    if trace.empty:
        raise SystemExit("Trace is empty, nothing to plot.")

    restarts = per_restart(trace)
    adopted = trace[trace["adopted"].astype(bool)]
    best_restart = int(adopted["restart"].iloc[-1]) if not adopted.empty else -1

    n = len(PANELS)
    fig, axes = plt.subplots(1, n, figsize=(1 + 3.5 * n, 4.2), constrained_layout=True)
    labels = [f"R{r + 1}" for r in restarts["restart"]]
    colors = ["#00796b" if r == best_restart else "#9e9e9e" for r in restarts["restart"]]
    for ax, (column, title, _) in zip(axes, PANELS):
        values = restarts[column]
        bars = ax.bar(labels, values, color=colors)
        ax.set_title(title)
        finite = values[np.isfinite(values)]
        ax.set_ylim(0, max(1.0, float(finite.max()) * 1.15) if not finite.empty else 1.0)
        for b in bars:
            h = b.get_height()
            if np.isfinite(h):
                ax.text(b.get_x() + b.get_width() / 2, h + 0.02, f"{h:.3f}", ha="center", va="bottom", fontsize=8)
        ax.set_xticks(np.arange(len(labels)))
        ax.set_xticklabels(labels)
        ax.grid(axis="y", linestyle="--", alpha=0.3)

    fig.suptitle("Collective restarts: best value per restart (adopted restart highlighted)", fontsize=12)

    parsed.fig_dir.mkdir(parents=True, exist_ok=True)
    out_png = parsed.fig_dir / "restart_report.png"
    out_svg = parsed.fig_dir / "restart_report.svg"
    fig.savefig(out_png, dpi=200)
    fig.savefig(out_svg)
    plt.close(fig)

    caption_lines: List[str] = [
        "Title: Collective restarts, best value per restart",
        "What this shows: the lowest RMS and highest training accuracy reached within each restart.",
        "How to read: the highlighted restart produced the model that serves predictions.",
        f"Restarts: {len(restarts)}, iterations per restart: {int(trace.groupby('restart').size().max())}.",
    ]
    if parsed.summary.exists():
        summary = json.loads(parsed.summary.read_text())
        measures = summary.get("measures", {})
        if "last_rms_train" in measures:
            caption_lines.append(
                f"Adopted model: restart {int(measures['last_restart']) + 1}, "
                f"iteration {int(measures['last_iteration']) + 1}, "
                f"train RMS={measures['last_rms_train']:.3f}."
            )
    (parsed.fig_dir / "restart_report.txt").write_text("\n".join(caption_lines) + "\n")
    print(f"Wrote {out_png} and {out_svg}")


if __name__ == "__main__":
    main()
