#!/usr/bin/env python3
"""Offline diagnostic renderer for the hash art engine.

Renders hashes to PNG files and summarises what the generator produced:
tier, background style and shape-kind distributions, generation time, and
whether rendering the same hash twice gives identical pixels.

Usage:
    python3 hashgrid_diag.py                          # 24 demo hashes
    python3 hashgrid_diag.py --demo 200 --no-png      # distribution check only
    python3 hashgrid_diag.py --hashes abc123 5VfYd... # specific hashes
    python3 hashgrid_diag.py --records txs.jsonl      # every hash in a file
    python3 hashgrid_diag.py --size 200               # smaller renders
"""
from __future__ import annotations

import argparse
import json
import sys
import time
from collections import Counter
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

import numpy as np

from hashart import (
    BACKGROUND_STYLES,
    SHAPE_KINDS,
    TIER_THRESHOLDS,
    TIERS,
    ArtMetadata,
    generate_art,
)
from hashgrid_sources import DemoTransactionSource, JsonlTransactionSource


# ═══════════════════════════════════════════════════════════════════════
#  Constants
# ═══════════════════════════════════════════════════════════════════════

DEFAULT_SIZE: int = 400
DEFAULT_DEMO: int = 24
DEFAULT_OUTPUT_DIR: str = "diag_output"


def expected_tier_share() -> dict[str, float]:
    """Probability of each tier implied by the cumulative thresholds."""
    share: dict[str, float] = {}
    prev = 0.0
    for threshold, tier in TIER_THRESHOLDS:
        share[tier] = threshold - prev
        prev = threshold
    share[TIERS[-1]] = 1.0 - prev
    return share


# ═══════════════════════════════════════════════════════════════════════
#  Analysis
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ArtReport:
    index: int
    meta: ArtMetadata
    seconds: float
    deterministic: bool | None = None


def analyze_hashes(
    hashes: Sequence[str],
    size: int,
    check_determinism: bool = True,
    generator: Callable[[str, int], ArtMetadata] = generate_art,
    progress: bool = False,
) -> list[ArtReport]:
    reports: list[ArtReport] = []
    for i, h in enumerate(hashes):
        if progress:
            print(f"  Rendering {i + 1}/{len(hashes)}: {h[:16]}...", end="", flush=True)
        t0 = time.perf_counter()
        meta = generator(h, size)
        dt = time.perf_counter() - t0

        same: bool | None = None
        if check_determinism:
            again = generator(h, size)
            same = (
                again.as_dict() == meta.as_dict()
                and np.array_equal(np.asarray(again.image), np.asarray(meta.image))
            )
        reports.append(ArtReport(i, meta, dt, same))
        if progress:
            print(f" {meta.tier}, {meta.background_style}, {dt * 1000:.0f} ms", flush=True)
    return reports


def format_report(reports: list[ArtReport], size: int) -> str:
    """Format analysis results into a structured text report."""
    lines: list[str] = []
    sep = "=" * 79
    n = max(1, len(reports))

    lines.append(sep)
    lines.append("HASH ART DIAGNOSTIC REPORT")
    lines.append(f"Generated: {datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')}")
    lines.append(f"Hashes: {len(reports)} @ {size}px")
    lines.append(sep)
    lines.append("")

    lines.append("    #  Hash              Tier        Background       Shapes     ms  Same")
    lines.append("  " + "-" * 75)
    for r in reports:
        m = r.meta
        same = "--" if r.deterministic is None else ("yes" if r.deterministic else "NO")
        lines.append(
            f"  {r.index:3d}  {m.hash[:16]:<16}  {m.tier:<10}  {m.background_style:<15}"
            f"  {m.shape_count:6d}  {r.seconds * 1000:5.0f}  {same}"
        )
    lines.append("")

    # Tier distribution against the thresholds
    tiers = Counter(r.meta.tier for r in reports)
    expected = expected_tier_share()
    lines.append("  Tier         Count   Share  Expected")
    lines.append("  " + "-" * 38)
    for tier in TIERS:
        lines.append(
            f"  {tier:<10}  {tiers.get(tier, 0):6d}  {100 * tiers.get(tier, 0) / n:5.1f}%"
            f"  {100 * expected[tier]:7.1f}%"
        )
    lines.append("")

    styles = Counter(r.meta.background_style for r in reports)
    lines.append("  Background       Count")
    lines.append("  " + "-" * 23)
    for style in BACKGROUND_STYLES:
        lines.append(f"  {style:<15}  {styles.get(style, 0):5d}")
    lines.append("")

    kinds: Counter[str] = Counter()
    for r in reports:
        kinds.update(r.meta.shape_type_counts)
    total_shapes = max(1, sum(kinds.values()))
    lines.append("  Shape kind     Total   Share")
    lines.append("  " + "-" * 29)
    for kind in SHAPE_KINDS:
        lines.append(f"  {kind:<12}  {kinds.get(kind, 0):6d}  {100 * kinds.get(kind, 0) / total_shapes:5.1f}%")
    lines.append("")

    lines.append("  Tier        Mean shapes   Mean ms    Max ms")
    lines.append("  " + "-" * 43)
    for tier in TIERS:
        group = [r for r in reports if r.meta.tier == tier]
        if not group:
            continue
        shapes = np.array([r.meta.shape_count for r in group], dtype=np.float64)
        ms = np.array([r.seconds for r in group]) * 1000
        lines.append(f"  {tier:<10}  {shapes.mean():11.1f}  {ms.mean():8.1f}  {ms.max():8.1f}")
    lines.append("")

    failures = [r for r in reports if r.deterministic is False]
    if failures:
        lines.append(f"  [!] {len(failures)} hash(es) rendered differently on a second pass:")
        for r in failures:
            lines.append(f"      {r.meta.hash}")
    elif any(r.deterministic is not None for r in reports):
        lines.append("  Determinism: every hash re-rendered identically.")
    lines.append(sep)
    return "\n".join(lines)


# ═══════════════════════════════════════════════════════════════════════
#  Output
# ═══════════════════════════════════════════════════════════════════════

def write_pngs(output_dir: Path, reports: list[ArtReport]) -> list[Path]:
    """Write one PNG per hash. Returns list of written paths."""
    output_dir.mkdir(parents=True, exist_ok=True)
    written: list[Path] = []
    for r in reports:
        path = output_dir / f"{r.index:03d}_{r.meta.tier}_{r.meta.hash[:16]}.png"
        try:
            r.meta.image.save(path)
            written.append(path)
        except OSError as e:
            print(f"  [error] Failed to write {path}: {e}", file=sys.stderr)
    return written


def write_metadata(output_dir: Path, reports: list[ArtReport]) -> Path:
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / "metadata.json"
    payload = [
        dict(r.meta.as_dict(), index=r.index, ms=round(r.seconds * 1000, 2), deterministic=r.deterministic)
        for r in reports
    ]
    path.write_text(json.dumps(payload, indent=2))
    return path


# ═══════════════════════════════════════════════════════════════════════
#  Main
# ═══════════════════════════════════════════════════════════════════════

def collect_hashes(args: argparse.Namespace) -> list[str]:
    if args.hashes:
        return list(args.hashes)
    if args.records is not None:
        if not args.records.exists():
            print(f"Error: file not found: {args.records}", file=sys.stderr)
            sys.exit(1)
        return [r.signature for r in JsonlTransactionSource(args.records).recent()]
    return [r.signature for r in DemoTransactionSource(args.demo, args.seed).recent()]


def main(argv: Sequence[str] | None = None) -> None:
    """Run the full diagnostic pipeline."""
    parser = argparse.ArgumentParser(
        description="Hash art engine diagnostic renderer and analyzer",
    )
    parser.add_argument(
        "--hashes", nargs="*", default=None,
        help="Specific hashes to render (default: demo signatures)",
    )
    parser.add_argument(
        "--records", type=Path, default=None, metavar="FILE",
        help="Render every signature in a JSONL transaction file",
    )
    parser.add_argument(
        "--demo", type=int, default=DEFAULT_DEMO,
        help=f"Number of demo signatures (default: {DEFAULT_DEMO})",
    )
    parser.add_argument(
        "--seed", type=int, default=0,
        help="Demo signature seed (default: 0)",
    )
    parser.add_argument(
        "--size", type=int, default=DEFAULT_SIZE,
        help=f"Artwork size in px (default: {DEFAULT_SIZE})",
    )
    parser.add_argument(
        "--output-dir", type=Path, default=Path(DEFAULT_OUTPUT_DIR),
        help=f"Directory for PNG and report output (default: {DEFAULT_OUTPUT_DIR})",
    )
    parser.add_argument(
        "--no-png", action="store_true",
        help="Skip PNG and file output, only print report",
    )
    parser.add_argument(
        "--no-check", action="store_true",
        help="Skip the second render used for the determinism check",
    )
    args = parser.parse_args(argv)

    hashes = collect_hashes(args)
    if not hashes:
        print("Error: no hashes to render", file=sys.stderr)
        sys.exit(1)

    reports = analyze_hashes(hashes, args.size, check_determinism=not args.no_check, progress=True)

    print()
    report = format_report(reports, args.size)
    print(report)

    if not args.no_png:
        written = write_pngs(args.output_dir, reports)
        meta_path = write_metadata(args.output_dir, reports)
        report_path = args.output_dir / "analysis_report.txt"
        try:
            report_path.write_text(report)
            print(f"\nWrote {len(written)} PNGs, {meta_path.name}, and report to: {args.output_dir}")
        except OSError as e:
            print(f"\nFailed to save report: {e}", file=sys.stderr)


if __name__ == "__main__":
    main()
