#!/usr/bin/env python3
"""
Profiling harness for the hash grid.

Pre-renders a pool of demo hashes, then drives a session headlessly with a
scripted pointer (hover sweeps, a click every few seconds, the odd wheel
notch) on a synthetic 60 fps clock. Either runs everything under cProfile
or times each frame component.

Usage:
  python3 hashgrid_bench.py                  # 300 frames, summary
  python3 hashgrid_bench.py -n 1000          # 1000 frames
  python3 hashgrid_bench.py --line-timing    # per-frame component timing
  python3 hashgrid_bench.py --dump prof.out  # dump cProfile binary for snakeviz etc.
"""

from __future__ import annotations

import argparse
import cProfile
import math
import pstats
import time
from io import StringIO

import numpy as np

from hashart import ArtCache
from hashgrid import (
    FRAME_INTERVAL_MS,
    ColorMap,
    GridConfig,
    GridRenderer,
    GridSession,
    InputEvent,
    PointerDown,
    PointerMove,
    PointerUp,
    Wheel,
    present,
)
from hashgrid_sources import DemoTransactionSource


# ── Fake curses stubs for headless rendering ────────────────────────────

class FakeWindow:
    """Minimal curses.window stub that records addstr calls."""

    def __init__(self, rows: int, cols: int) -> None:
        self._rows = rows
        self._cols = cols
        self._calls = 0
        self.writes: list[tuple[int, int, str, int]] = []

    def getmaxyx(self) -> tuple[int, int]:
        return self._rows, self._cols

    def addstr(self, y: int, x: int, text: str, attr: int = 0) -> None:
        self._calls += 1
        self.writes.append((y, x, text, attr))

    def erase(self) -> None:
        self.writes.clear()

    def refresh(self) -> None:
        pass


def scripted_input(frame: int, width: float, height: float, now: float) -> list[InputEvent]:
    """A wandering pointer with periodic clicks and wheel notches."""
    t = frame / 60.0
    x = width / 2 + math.sin(t * 0.7) * width * 0.4
    y = height / 2 + math.sin(t * 1.1) * height * 0.4
    events: list[InputEvent] = [PointerMove(x, y, now)]
    if frame % 240 == 120:
        events += [PointerDown(x, y, now), PointerUp(x, y, now)]
    elif frame % 90 == 45:
        events.append(Wheel(x, y, -100.0 if frame % 180 < 90 else 100.0, now))
    return events


def pre_render_pool(cache: ArtCache, pool: list[str], size: int) -> dict[str, list[float]]:
    """Generate the pool, returning generation seconds grouped by tier."""
    by_tier: dict[str, list[float]] = {}
    for h in pool:
        t0 = time.perf_counter()
        cache.pre_render([h], size)
        dt = time.perf_counter() - t0
        meta = cache.get(h)
        if meta is not None:
            by_tier.setdefault(meta.tier, []).append(dt)
    return by_tier


def simulate_frame(
    session: GridSession,
    renderer: GridRenderer,
    window: FakeWindow,
    cmap: ColorMap,
    frame: int,
    now: float,
) -> dict[str, float]:
    """One pass of the main loop's hot path, timing each component."""
    timings: dict[str, float] = {}
    vp = session.viewport

    t0 = time.perf_counter()
    session.post(*scripted_input(frame, vp.width, vp.height, now))
    session.drain()
    timings["input"] = time.perf_counter() - t0

    t0 = time.perf_counter()
    session.tick(now)
    timings["tick"] = time.perf_counter() - t0

    t0 = time.perf_counter()
    fb = renderer.render(session, now)
    timings["composite"] = time.perf_counter() - t0

    t0 = time.perf_counter()
    window.erase()
    present(window, fb, cmap)
    timings["present"] = time.perf_counter() - t0
    timings["_addstr_calls"] = float(len(window.writes))
    timings["_visible"] = float(renderer.visible)
    return timings


def stats_line(name: str, data: list[float]) -> str:
    arr = np.array(data) * 1000  # to ms
    return (f"{name:<25} {arr.mean():8.2f} {np.median(arr):8.2f} "
            f"{np.percentile(arr, 95):8.2f} {np.percentile(arr, 99):8.2f} "
            f"{arr.max():8.2f}")


def run_benchmark(
    n_frames: int,
    term_rows: int = 60,
    term_cols: int = 200,
    pool_size: int = 40,
    art_size: int = 200,
    line_timing: bool = False,
    dump_path: str | None = None,
) -> None:
    """Run the benchmark for n_frames and report results."""

    pool = [r.signature for r in DemoTransactionSource(pool_size, seed=7).recent()]
    cache = ArtCache()

    print(f"Pool: {pool_size} hashes  Art: {art_size}px  Frames: {n_frames}")
    print(f"Terminal: {term_rows}x{term_cols}")
    print()

    t0 = time.perf_counter()
    by_tier = pre_render_pool(cache, pool, art_size)
    print(f"Pre-render: {time.perf_counter() - t0:.2f}s")
    print(f"{'Tier':<25} {'Mean':>8} {'P50':>8} {'P95':>8} {'P99':>8} {'Max':>8}")
    print("-" * 73)
    for tier in sorted(by_tier):
        print(stats_line(f"{tier} ({len(by_tier[tier])})", by_tier[tier]))
    print()

    height = (term_rows - 1) * 2
    session = GridSession(pool, term_cols, height, GridConfig(art_size=art_size))
    renderer = GridRenderer(cache)
    window = FakeWindow(term_rows, term_cols)
    cmap = ColorMap()

    # ── Per-frame component timing ─────────────────────────────────
    if line_timing:
        frame_times: dict[str, list[float]] = {}
        total_times: list[float] = []

        for frame in range(n_frames):
            frame_t0 = time.perf_counter()
            rt = simulate_frame(session, renderer, window, cmap, frame, frame * FRAME_INTERVAL_MS)
            for k, v in rt.items():
                frame_times.setdefault(k, []).append(v)
            total_times.append(time.perf_counter() - frame_t0)

            if (frame + 1) % 100 == 0:
                avg_ms = sum(total_times[-100:]) / 100 * 1000
                print(f"  frame {frame + 1}/{n_frames}  "
                      f"avg {avg_ms:.1f}ms/frame  "
                      f"zoom {session.viewport.zoom:.2f}")

        print()
        print("=== Per-Frame Component Breakdown (ms) ===")
        print(f"{'Component':<25} {'Mean':>8} {'P50':>8} {'P95':>8} {'P99':>8} {'Max':>8}")
        print("-" * 73)
        for k in sorted(frame_times.keys()):
            if k.startswith("_"):
                continue
            print(stats_line(k, frame_times[k]))
        print(stats_line("TOTAL", total_times))

        for label, key in (("addstr calls/frame", "_addstr_calls"), ("visible cells/frame", "_visible")):
            arr = np.array(frame_times.get(key, [0.0]))
            print(f"\n{label}: mean={arr.mean():.0f}  max={arr.max():.0f}")

        budget_ms = FRAME_INTERVAL_MS
        total_arr = np.array(total_times) * 1000
        over_budget = (total_arr > budget_ms).sum()
        print(f"\n60fps budget: {budget_ms:.1f}ms/frame")
        print(f"Frames over budget: {over_budget}/{n_frames} "
              f"({100 * over_budget / n_frames:.1f}%)")
        print(f"Headroom (mean): {budget_ms - total_arr.mean():.1f}ms")
        return

    # ── cProfile run ───────────────────────────────────────────────
    def profiled_run() -> None:
        for frame in range(n_frames):
            simulate_frame(session, renderer, window, cmap, frame, frame * FRAME_INTERVAL_MS)

    profiler = cProfile.Profile()
    wall_t0 = time.perf_counter()
    profiler.runctx("profiled_run()", globals(), locals())
    wall_dt = time.perf_counter() - wall_t0

    print(f"Wall time: {wall_dt:.2f}s  ({wall_dt / n_frames * 1000:.1f}ms/frame)")
    print(f"Effective FPS: {n_frames / wall_dt:.1f}")
    print()

    if dump_path:
        profiler.dump_stats(dump_path)
        print(f"Profile data saved to: {dump_path}")
        print(f"  View with: python3 -m pstats {dump_path}")
        print()

    buf = StringIO()
    ps = pstats.Stats(profiler, stream=buf)
    ps.sort_stats("cumulative")
    ps.print_stats(40)
    print(buf.getvalue())

    buf2 = StringIO()
    ps2 = pstats.Stats(profiler, stream=buf2)
    ps2.sort_stats("tottime")
    ps2.print_stats(30)
    print("\n=== By Self-Time (tottime) ===")
    print(buf2.getvalue())


def main() -> None:
    parser = argparse.ArgumentParser(description="Profile the hash grid")
    parser.add_argument("-n", "--frames", type=int, default=300,
                        help="Number of frames to simulate (default: 300)")
    parser.add_argument("--rows", type=int, default=60,
                        help="Simulated terminal rows (default: 60)")
    parser.add_argument("--cols", type=int, default=200,
                        help="Simulated terminal cols (default: 200)")
    parser.add_argument("--pool", type=int, default=40,
                        help="Number of demo hashes to pre-render (default: 40)")
    parser.add_argument("--art-size", type=int, default=200,
                        help="Artwork raster size in px (default: 200)")
    parser.add_argument("--line-timing", action="store_true",
                        help="Per-frame component timing instead of cProfile")
    parser.add_argument("--dump", type=str, default=None,
                        help="Dump cProfile binary to this path")
    args = parser.parse_args()

    run_benchmark(
        n_frames=args.frames,
        term_rows=args.rows,
        term_cols=args.cols,
        pool_size=args.pool,
        art_size=args.art_size,
        line_timing=args.line_timing,
        dump_path=args.dump,
    )


if __name__ == "__main__":
    main()
