#!/usr/bin/env python3
"""
  ▦  H A S H G R I D  ▦
  An infinite, pannable wall of generative art, one tile per transaction.

  Every tile is painted from a transaction hash and nothing else, so the
  same hash always looks the same. The wall never ends: a finite pool of
  hashes is scattered across the whole integer plane, and only the tiles
  on screen (plus a thin margin) are ever composited.

  Hover a tile and it swells and brightens; move on and it sinks back into
  the wall. Click a tile to fly the camera to it and read its rarity,
  palette and shapes in the detail panel. Click it again to drift home.

  Controls:
    q         quit               mouse     hover / drag / click / wheel
    arrows    pan                z/x       zoom out / in
    enter     select hovered     esc       deselect
    h         home               /         look up a signature
    s         toggle stats overlay

  Frame telemetry is logged to hashgrid_stats.csv beside this script,
  warnings to hashgrid.log.
"""

from __future__ import annotations

import argparse
import curses
import logging
import math
import sys
import time
from collections import deque
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import IO, ClassVar, Union

import numpy as np
from numpy.typing import NDArray

from hashart import ArtCache, ArtMetadata, RenderProgress
from hashgrid_sources import (
    DemoTransactionSource,
    JsonlTransactionSource,
    TransactionLookupError,
    TransactionRecord,
    TransactionSource,
)

log = logging.getLogger("hashgrid")

# ── Timing (ms) ─────────────────────────────────────────────────────────
ANIMATION_DURATION: float = 100.0     # hover entry
EXIT_DURATION: float = 600.0          # hover exit
FOCUS_DURATION: float = 2000.0        # camera flight to a selected tile
RETURN_DURATION: float = 1600.0       # camera flight home
FRAME_INTERVAL_MS: float = 1000.0 / 60.0

# ── Tile animation ──────────────────────────────────────────────────────
HOVER_SCALE: float = 1.3
BASE_OPACITY: float = 0.5
HOVER_OPACITY: float = 1.0
SELECTED_OPACITY: float = 1.0
WOBBLE_AMPLITUDE: float = 0.01        # radians
WOBBLE_PERIOD: float = 1000.0         # ms per radian of phase
CULL_RADIUS: int = 8                  # Manhattan cells around the hovered tile

# ── Camera ──────────────────────────────────────────────────────────────
DEFAULT_ZOOM: float = 0.25
SELECTED_ZOOM: float = 0.5
MIN_ZOOM: float = 0.1
MAX_ZOOM: float = 5.0
OVERSCAN: int = 2
FOCUS_MARGIN: float = 40.0            # lift above centre for a focused tile

# ── Input ───────────────────────────────────────────────────────────────
DRAG_THRESHOLD: float = 5.0           # px of travel that turns a click into a drag
WHEEL_SENSITIVITY: float = 0.002
WHEEL_NOTCH: float = 100.0            # deltaY of one wheel click
PAN_STEP: float = 16.0                # px per arrow key
KEY_ZOOM_FACTOR: float = 1.25

# ── Terminal layout ─────────────────────────────────────────────────────
UPPER_HALF = "\u2580"  # ▀  fg = top pixel, bg = bottom pixel
PANEL_ROWS: int = 6
BACKGROUND: tuple[int, int, int] = (12, 12, 18)
OUTLINE_PX: float = 1.0
SEARCH_RADIUS: int = 64

LOG_PATH = Path(__file__).resolve().parent / "hashgrid.log"
STATS_PATH = Path(__file__).resolve().parent / "hashgrid_stats.csv"


# ═══════════════════════════════════════════════════════════════════════
#  Configuration
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class GridConfig:
    """Per-session geometry and data source, built from the command line."""
    art_size: int = 400
    cell_size: float = 96.0
    padding: float = 4.0
    cull_radius: int = CULL_RADIUS
    focus_margin: float = 4.0
    records: Path | None = None
    demo_count: int = 100
    demo_seed: int | None = None

    @property
    def total(self) -> float:
        return self.cell_size + self.padding

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> GridConfig:
        return cls(
            art_size=args.art_size,
            cell_size=args.cell_size,
            padding=args.padding,
            cull_radius=args.cull_radius,
            records=args.records,
            demo_count=args.demo,
            demo_seed=args.seed,
        )

    def open_source(self) -> TransactionSource:
        if self.records is not None:
            return JsonlTransactionSource(self.records)
        return DemoTransactionSource(self.demo_count, self.demo_seed)


# ═══════════════════════════════════════════════════════════════════════
#  Cell index
# ═══════════════════════════════════════════════════════════════════════

def index_of(row: int, col: int, pool_size: int) -> int:
    """Pool index shown at (row, col). Pure, so panning never reshuffles."""
    if pool_size < 1:
        raise ValueError("hash pool is empty")
    return abs((row * 31) ^ (col * 37)) % pool_size


def find_cell(
    hash_index: int,
    pool_size: int,
    near: tuple[int, int] = (0, 0),
    radius: int = SEARCH_RADIUS,
) -> tuple[int, int] | None:
    """Closest cell to `near` (by Chebyshev rings) that shows `hash_index`."""
    r0, c0 = near
    for ring in range(radius + 1):
        for row in range(r0 - ring, r0 + ring + 1):
            edge = abs(row - r0) == ring
            cols = range(c0 - ring, c0 + ring + 1) if edge else (c0 - ring, c0 + ring)
            for col in cols:
                if index_of(row, col, pool_size) == hash_index:
                    return row, col
    return None


# ═══════════════════════════════════════════════════════════════════════
#  Viewport
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class CameraTween:
    start_time: float
    duration: float
    from_x: float
    from_y: float
    from_zoom: float


@dataclass
class Viewport:
    """Screen ↔ world transform: screen = offset + zoom · world."""

    width: float
    height: float
    cell_size: float
    padding: float = 0.0
    min_zoom: float = MIN_ZOOM
    max_zoom: float = MAX_ZOOM
    focus_margin: float = FOCUS_MARGIN
    offset_x: float = 0.0
    offset_y: float = 0.0
    zoom: float = 1.0
    target_x: float = 0.0
    target_y: float = 0.0
    target_zoom: float = 1.0
    tween: CameraTween | None = None

    @property
    def total(self) -> float:
        return self.cell_size + self.padding

    def clamp_zoom(self, zoom: float) -> float:
        return min(self.max_zoom, max(self.min_zoom, zoom))

    # ── Coordinate transforms ─────────────────────────────────────────

    def screen_to_world(self, px: float, py: float) -> tuple[float, float]:
        return (px - self.offset_x) / self.zoom, (py - self.offset_y) / self.zoom

    def world_to_screen(self, wx: float, wy: float) -> tuple[float, float]:
        return self.offset_x + wx * self.zoom, self.offset_y + wy * self.zoom

    def cell_origin(self, row: int, col: int) -> tuple[float, float]:
        """World position of a cell's top-left corner."""
        return col * self.total, row * self.total

    def cell_at(self, px: float, py: float) -> tuple[int, int]:
        """Hit test: the (row, col) under a screen point."""
        wx, wy = self.screen_to_world(px, py)
        return math.floor(wy / self.total), math.floor(wx / self.total)

    def visible_cell_range(self) -> tuple[int, int, int, int]:
        """(start_row, end_row, start_col, end_col), ends exclusive, with overscan."""
        span = self.total * self.zoom
        start_col = math.floor(-self.offset_x / span) - OVERSCAN
        end_col = start_col + math.ceil(self.width / span) + 2 * OVERSCAN
        start_row = math.floor(-self.offset_y / span) - OVERSCAN
        end_row = start_row + math.ceil(self.height / span) + 2 * OVERSCAN
        return start_row, end_row, start_col, end_col

    # ── Direct manipulation (cancels any flight) ──────────────────────

    def _settle(self) -> None:
        self.target_x, self.target_y, self.target_zoom = self.offset_x, self.offset_y, self.zoom
        self.tween = None

    def zoom_at(self, px: float, py: float, factor: float) -> None:
        """Zoom by `factor` keeping the world point under (px, py) fixed."""
        wx, wy = self.screen_to_world(px, py)
        self.zoom = self.clamp_zoom(self.zoom * factor)
        self.offset_x = px - wx * self.zoom
        self.offset_y = py - wy * self.zoom
        self._settle()

    def pan_by(self, dx: float, dy: float) -> None:
        self.offset_x += dx
        self.offset_y += dy
        self._settle()

    def move_to(self, x: float, y: float) -> None:
        self.offset_x, self.offset_y = x, y
        self._settle()

    # ── Camera flights ────────────────────────────────────────────────

    def animate_to(self, x: float, y: float, zoom: float, duration: float, now: float) -> None:
        self.target_x, self.target_y = x, y
        self.target_zoom = self.clamp_zoom(zoom)
        self.tween = CameraTween(now, duration, self.offset_x, self.offset_y, self.zoom)

    def focus_target(self, row: int, col: int, panel_height: float = 0.0) -> tuple[float, float, float]:
        """Offset and zoom that centre a cell above the detail panel."""
        z = SELECTED_ZOOM
        cx, cy = self.cell_origin(row, col)
        half = self.cell_size * z / 2
        x = self.width / 2 - cx * z - half
        y = (self.height - panel_height) / 2 - cy * z - half - self.focus_margin
        return x, y, z

    def home_target(self) -> tuple[float, float, float]:
        return self.width / 2, self.height / 2, DEFAULT_ZOOM

    def resize(self, width: float, height: float) -> None:
        self.width, self.height = width, height


def ease_in_out_cubic(t: float) -> float:
    if t < 0.5:
        return 4 * t * t * t
    return 1 - (-2 * t + 2) ** 3 / 2


# ═══════════════════════════════════════════════════════════════════════
#  Tile animations
# ═══════════════════════════════════════════════════════════════════════

class AnimState(Enum):
    ENTERING = "entering"
    STEADY = "steady"
    EXITING = "exiting"
    REMOVED = "removed"


@dataclass
class CellAnimation:
    """Hover/selection state of one tile.

    Each transition interpolates linearly from the visual state the tile had
    when it began (`from_scale`, `from_opacity`), so reversing mid-flight
    never jumps.
    """
    row: int
    col: int
    start_time: float
    scale: float = 1.0
    opacity: float = BASE_OPACITY
    state: AnimState = AnimState.ENTERING
    is_selected: bool = False
    from_scale: float = 1.0
    from_opacity: float = BASE_OPACITY

    @property
    def key(self) -> tuple[int, int]:
        return self.row, self.col

    @property
    def is_exiting(self) -> bool:
        return self.state in (AnimState.EXITING, AnimState.REMOVED)

    def _begin(self, state: AnimState, now: float) -> None:
        self.from_scale, self.from_opacity = self.scale, self.opacity
        self.start_time = now
        self.state = state

    def enter(self, now: float) -> None:
        self._begin(AnimState.ENTERING, now)

    def leave(self, now: float) -> None:
        if self.is_selected:
            self.opacity = SELECTED_OPACITY
            return
        if not self.is_exiting:
            self._begin(AnimState.EXITING, now)

    def pin(self) -> None:
        self.is_selected = True
        self.state = AnimState.STEADY
        self.scale = 1.0
        self.opacity = SELECTED_OPACITY

    def unpin(self, now: float) -> None:
        self.is_selected = False
        self._begin(AnimState.EXITING, now)

    def advance(self, now: float) -> None:
        if self.is_selected:
            self.scale, self.opacity = 1.0, SELECTED_OPACITY
            return
        if self.state is AnimState.ENTERING:
            p = min(1.0, max(0.0, (now - self.start_time) / ANIMATION_DURATION))
            self.scale = self.from_scale + (HOVER_SCALE - self.from_scale) * p
            self.opacity = self.from_opacity + (HOVER_OPACITY - self.from_opacity) * p
            if p >= 1.0:
                self.state = AnimState.STEADY
        elif self.state is AnimState.EXITING:
            p = min(1.0, max(0.0, (now - self.start_time) / EXIT_DURATION))
            self.scale = self.from_scale + (1.0 - self.from_scale) * p
            self.opacity = self.from_opacity + (BASE_OPACITY - self.from_opacity) * p
            if p >= 1.0:
                self.state = AnimState.REMOVED


class AnimationScheduler:
    """Owns every tile animation and eases the camera, at most 60 times a second."""

    def __init__(
        self, cull_radius: int = CULL_RADIUS, frame_interval: float = FRAME_INTERVAL_MS
    ) -> None:
        self.cells: dict[tuple[int, int], CellAnimation] = {}
        self.cull_radius = cull_radius
        self.frame_interval = frame_interval
        self._last_update: float | None = None

    def __len__(self) -> int:
        return len(self.cells)

    def get(self, row: int, col: int) -> CellAnimation | None:
        return self.cells.get((row, col))

    # ── Hover ─────────────────────────────────────────────────────────

    def hover(
        self, row: int, col: int, now: float, selected: tuple[int, int] | None = None
    ) -> None:
        """Pointer entered (row, col): everything else sinks, this one rises."""
        key = (row, col)
        for other_key, anim in self.cells.items():
            if other_key != key:
                anim.leave(now)
        self._cull(key)

        if key == selected:
            return
        anim = self.cells.get(key)
        if anim is None:
            self.cells[key] = CellAnimation(row, col, start_time=now)
        elif anim.is_exiting:
            anim.enter(now)

    def leave_all(self, now: float) -> None:
        for anim in self.cells.values():
            anim.leave(now)

    def _cull(self, around: tuple[int, int]) -> None:
        r0, c0 = around
        far = [
            key for key, anim in self.cells.items()
            if anim.is_exiting and abs(key[0] - r0) + abs(key[1] - c0) > self.cull_radius
        ]
        for key in far:
            del self.cells[key]

    # ── Selection ─────────────────────────────────────────────────────

    def select(self, row: int, col: int, now: float) -> None:
        anim = self.cells.get((row, col))
        if anim is None:
            anim = CellAnimation(row, col, start_time=now)
            self.cells[(row, col)] = anim
        anim.pin()

    def deselect(self, now: float) -> None:
        for anim in self.cells.values():
            if anim.is_selected:
                anim.unpin(now)

    # ── Per-frame update ──────────────────────────────────────────────

    def ease_camera(self, viewport: Viewport, now: float) -> None:
        tw = viewport.tween
        if tw is None:
            return
        progress = 1.0 if tw.duration <= 0 else min(1.0, max(0.0, (now - tw.start_time) / tw.duration))
        e = ease_in_out_cubic(progress)
        viewport.offset_x = tw.from_x + (viewport.target_x - tw.from_x) * e
        viewport.offset_y = tw.from_y + (viewport.target_y - tw.from_y) * e
        viewport.zoom = tw.from_zoom + (viewport.target_zoom - tw.from_zoom) * e
        if progress >= 1.0:
            viewport.offset_x, viewport.offset_y = viewport.target_x, viewport.target_y
            viewport.zoom = viewport.target_zoom
            viewport.tween = None

    def update(self, now: float, viewport: Viewport | None = None) -> bool:
        """Advance everything to `now`. Returns False if throttled."""
        if self._last_update is not None and now - self._last_update < self.frame_interval:
            return False
        self._last_update = now

        if viewport is not None:
            self.ease_camera(viewport, now)

        done = []
        for key, anim in self.cells.items():
            anim.advance(now)
            if anim.state is AnimState.REMOVED:
                done.append(key)
        for key in done:
            del self.cells[key]
        return True


# ═══════════════════════════════════════════════════════════════════════
#  Input events
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class PointerMove:
    x: float
    y: float
    now: float


@dataclass(frozen=True)
class PointerDown:
    x: float
    y: float
    now: float


@dataclass(frozen=True)
class PointerUp:
    x: float
    y: float
    now: float


@dataclass(frozen=True)
class PointerLeave:
    now: float


@dataclass(frozen=True)
class Wheel:
    x: float
    y: float
    delta_y: float
    now: float


@dataclass(frozen=True)
class TouchStart:
    points: tuple[tuple[float, float], ...]
    now: float


@dataclass(frozen=True)
class TouchMove:
    points: tuple[tuple[float, float], ...]
    now: float


@dataclass(frozen=True)
class TouchEnd:
    now: float


@dataclass(frozen=True)
class Key:
    """Named key: up, down, left, right, zoom_in, zoom_out, enter, escape, home."""
    name: str
    now: float


InputEvent = Union[
    PointerMove, PointerDown, PointerUp, PointerLeave, Wheel,
    TouchStart, TouchMove, TouchEnd, Key,
]


@dataclass(frozen=True)
class CellEvent:
    kind: str  # hover | click | select | deselect
    row: int
    col: int
    hash: str


@dataclass(frozen=True)
class SelectedCell:
    row: int
    col: int
    hash: str

    @property
    def key(self) -> tuple[int, int]:
        return self.row, self.col


# ═══════════════════════════════════════════════════════════════════════
#  Session
# ═══════════════════════════════════════════════════════════════════════

class GridSession:
    """The grid's whole interactive state, driven by events and an injected clock.

    Nothing in here reads the time: every event carries its own timestamp and
    `tick(now)` advances the animations, so tests can replay any interaction.
    """

    def __init__(
        self,
        pool: Sequence[str],
        width: float,
        height: float,
        config: GridConfig | None = None,
        now: float = 0.0,
        panel_height: float = 0.0,
    ) -> None:
        if not pool:
            raise ValueError("hash pool is empty")
        self.config = config or GridConfig()
        self.pool: list[str] = list(pool)
        self.viewport = Viewport(
            width, height, self.config.cell_size, self.config.padding,
            focus_margin=self.config.focus_margin,
            offset_x=width / 2, offset_y=height / 2,
        )
        self.viewport.target_x, self.viewport.target_y = width / 2, height / 2
        self.scheduler = AnimationScheduler(self.config.cull_radius)
        self.panel_height = panel_height
        self.selected: SelectedCell | None = None
        self.hovered: tuple[int, int] | None = None
        self.pending: deque[InputEvent] = deque()

        self._drag_anchor: tuple[float, float] | None = None
        self._drag_origin: tuple[float, float] = (0.0, 0.0)
        self._drag_moved: bool = False
        self._touch_last: tuple[float, float] | None = None

        # Open wide, then settle to the default zoom
        self.viewport.animate_to(*self.viewport.home_target(), RETURN_DURATION, now)

    # ── Pool ──────────────────────────────────────────────────────────

    def hash_at(self, row: int, col: int) -> str:
        return self.pool[index_of(row, col, len(self.pool))]

    def cell_event(self, kind: str, row: int, col: int) -> CellEvent:
        return CellEvent(kind, row, col, self.hash_at(row, col))

    def add_hash(self, hash_str: str) -> int:
        """Append a hash to the pool (if new) and return its index.

        Growing the pool reassigns which hash each cell shows.
        """
        try:
            return self.pool.index(hash_str)
        except ValueError:
            self.pool.append(hash_str)
            return len(self.pool) - 1

    def locate(self, hash_str: str, now: float) -> CellEvent | None:
        """Put a hash on the wall near the screen centre and fly to it."""
        index = self.add_hash(hash_str)
        vp = self.viewport
        centre = vp.cell_at(vp.width / 2, vp.height / 2)
        cell = find_cell(index, len(self.pool), centre)
        if cell is None:
            return None
        return self.select(*cell, now)

    def visible_cells(self) -> list[tuple[int, int, str]]:
        r0, r1, c0, c1 = self.viewport.visible_cell_range()
        return [
            (row, col, self.hash_at(row, col))
            for row in range(r0, r1)
            for col in range(c0, c1)
        ]

    # ── Event queue ───────────────────────────────────────────────────

    def post(self, *events: InputEvent) -> None:
        self.pending.extend(events)

    def drain(self) -> list[CellEvent]:
        out: list[CellEvent] = []
        while self.pending:
            out.extend(self.handle(self.pending.popleft()))
        return out

    def handle(self, event: InputEvent) -> list[CellEvent]:
        if isinstance(event, PointerMove):
            return self.pointer_move(event.x, event.y, event.now)
        if isinstance(event, PointerDown):
            self.pointer_down(event.x, event.y, event.now)
        elif isinstance(event, PointerUp):
            return self.pointer_up(event.x, event.y, event.now)
        elif isinstance(event, PointerLeave):
            self.pointer_leave(event.now)
        elif isinstance(event, Wheel):
            self.wheel(event.x, event.y, event.delta_y)
        elif isinstance(event, TouchStart):
            self.touch_start(event.points)
        elif isinstance(event, TouchMove):
            self.touch_move(event.points)
        elif isinstance(event, TouchEnd):
            return self.touch_end(event.now)
        elif isinstance(event, Key):
            return self.key(event.name, event.now)
        else:
            raise TypeError(f"unknown input event {event!r}")
        return []

    def tick(self, now: float) -> bool:
        return self.scheduler.update(now, self.viewport)

    # ── Pointer ───────────────────────────────────────────────────────

    @property
    def dragging(self) -> bool:
        return self._drag_anchor is not None

    def _begin_drag(self, x: float, y: float) -> None:
        vp = self.viewport
        self._drag_anchor = (x - vp.offset_x, y - vp.offset_y)
        self._drag_origin = (x, y)
        self._drag_moved = False

    def _drag(self, x: float, y: float) -> None:
        ax, ay = self._drag_anchor
        self.viewport.move_to(x - ax, y - ay)
        ox, oy = self._drag_origin
        if math.hypot(x - ox, y - oy) > DRAG_THRESHOLD:
            self._drag_moved = True

    def _end_drag(self) -> bool:
        """Stop dragging. True if it was a click (never travelled far)."""
        was_click = self.dragging and not self._drag_moved
        self._drag_anchor = None
        return was_click

    def pointer_move(self, x: float, y: float, now: float) -> list[CellEvent]:
        if self.dragging:
            self._drag(x, y)
            return []
        row, col = self.viewport.cell_at(x, y)
        if self.hovered == (row, col):
            return []
        self.hovered = (row, col)
        self.scheduler.hover(row, col, now, self.selected.key if self.selected else None)
        return [self.cell_event("hover", row, col)]

    def pointer_down(self, x: float, y: float, now: float) -> None:
        self._begin_drag(x, y)
        self.scheduler.leave_all(now)
        self.hovered = None

    def pointer_up(self, x: float, y: float, now: float) -> list[CellEvent]:
        if self._end_drag():
            return self.click(x, y, now)
        return []

    def pointer_leave(self, now: float) -> None:
        self.scheduler.leave_all(now)
        self.hovered = None
        self._end_drag()

    def wheel(self, x: float, y: float, delta_y: float) -> None:
        if self.selected is not None:
            return
        self.viewport.zoom_at(x, y, 1.0 - delta_y * WHEEL_SENSITIVITY)

    # ── Touch ─────────────────────────────────────────────────────────

    def touch_start(self, points: tuple[tuple[float, float], ...]) -> None:
        if len(points) == 1:
            self._begin_drag(*points[0])
            self._touch_last = points[0]
        else:
            self._end_drag()
            self._touch_last = None

    def touch_move(self, points: tuple[tuple[float, float], ...]) -> None:
        if self.dragging and len(points) == 1:
            self._drag(*points[0])
            self._touch_last = points[0]

    def touch_end(self, now: float) -> list[CellEvent]:
        last = self._touch_last
        self._touch_last = None
        if self._end_drag() and last is not None:
            return self.click(last[0], last[1], now)
        return []

    # ── Keyboard ──────────────────────────────────────────────────────

    def key(self, name: str, now: float) -> list[CellEvent]:
        vp = self.viewport
        if name == "left":
            vp.pan_by(PAN_STEP, 0)
        elif name == "right":
            vp.pan_by(-PAN_STEP, 0)
        elif name == "up":
            vp.pan_by(0, PAN_STEP)
        elif name == "down":
            vp.pan_by(0, -PAN_STEP)
        elif name in ("zoom_in", "zoom_out") and self.selected is None:
            factor = KEY_ZOOM_FACTOR if name == "zoom_in" else 1 / KEY_ZOOM_FACTOR
            vp.zoom_at(vp.width / 2, vp.height / 2, factor)
        elif name == "enter" and self.hovered is not None:
            return [self.select(*self.hovered, now)]
        elif name == "escape":
            ev = self.deselect(now)
            return [ev] if ev else []
        elif name == "home":
            return self.home(now)
        return []

    # ── Selection ─────────────────────────────────────────────────────

    def click(self, x: float, y: float, now: float) -> list[CellEvent]:
        row, col = self.viewport.cell_at(x, y)
        events = [self.cell_event("click", row, col)]
        if self.selected is not None and self.selected.key == (row, col):
            events.append(self.deselect(now))
        else:
            events.append(self.select(row, col, now))
        return events

    def select(self, row: int, col: int, now: float) -> CellEvent:
        if self.selected is not None and self.selected.key != (row, col):
            self.scheduler.deselect(now)
        self.selected = SelectedCell(row, col, self.hash_at(row, col))
        self.scheduler.select(row, col, now)
        x, y, z = self.viewport.focus_target(row, col, self.panel_height)
        self.viewport.animate_to(x, y, z, FOCUS_DURATION, now)
        return self.cell_event("select", row, col)

    def deselect(self, now: float) -> CellEvent | None:
        sel = self.selected
        if sel is None:
            return None
        self.selected = None
        self.scheduler.deselect(now)
        if self.hovered == sel.key:
            # still under the pointer: rise back to the hover state
            self.scheduler.hover(sel.row, sel.col, now)
        self.viewport.animate_to(*self.viewport.home_target(), RETURN_DURATION, now)
        return CellEvent("deselect", sel.row, sel.col, sel.hash)

    def home(self, now: float) -> list[CellEvent]:
        ev = self.deselect(now)
        if ev is None:
            self.viewport.animate_to(*self.viewport.home_target(), RETURN_DURATION, now)
            return []
        return [ev]

    def resize(self, width: float, height: float, now: float) -> None:
        self.viewport.resize(width, height)
        if self.selected is not None:
            x, y, z = self.viewport.focus_target(self.selected.row, self.selected.col, self.panel_height)
            self.viewport.animate_to(x, y, z, FOCUS_DURATION, now)


# ═══════════════════════════════════════════════════════════════════════
#  Compositing
# ═══════════════════════════════════════════════════════════════════════

class GridRenderer:
    """Composites the visible tiles into an RGB framebuffer.

    Each tile is drawn by inverse-affine nearest sampling: for every screen
    pixel in the tile's bounding box, undo the wobble rotation and hover
    scale about the tile centre and read the artwork pixel underneath.
    Tiles only ever come from the cache; a miss is skipped, never generated.
    """

    def __init__(self, cache: ArtCache, background: tuple[int, int, int] = BACKGROUND) -> None:
        self.cache = cache
        self.background = np.array(background, dtype=np.float32)
        self._pixels: dict[str, NDArray[np.uint8]] = {}
        self._warned: set[str] = set()
        self._faulted: set[tuple[int, int]] = set()
        self.visible: int = 0
        self.drawn: int = 0
        self.misses: int = 0
        self.faults: int = 0

    def pixels_for(self, meta: ArtMetadata) -> NDArray[np.uint8]:
        px = self._pixels.get(meta.hash)
        if px is None:
            px = np.asarray(meta.image.convert("RGB"), dtype=np.uint8)
            self._pixels[meta.hash] = px
        return px

    def paint_order(
        self, session: GridSession
    ) -> list[tuple[int, int, str, CellAnimation | None]]:
        """Visible cells, animated ones after plain ones, the selection last."""
        sched = session.scheduler
        cells = [
            (row, col, h, sched.get(row, col))
            for row, col, h in session.visible_cells()
        ]
        cells.sort(key=lambda c: (c[3] is not None, c[3] is not None and c[3].is_selected))
        return cells

    def render(self, session: GridSession, now: float) -> NDArray[np.uint8]:
        vp = session.viewport
        fb = np.empty((int(vp.height), int(vp.width), 3), dtype=np.float32)
        fb[:] = self.background

        wobble = WOBBLE_AMPLITUDE * math.sin(now / WOBBLE_PERIOD)
        order = self.paint_order(session)
        self.visible = len(order)
        self.drawn = 0
        self.misses = 0

        for row, col, hash_str, anim in order:
            meta = self.cache.get(hash_str)
            if meta is None:
                self.misses += 1
                if hash_str not in self._warned:
                    self._warned.add(hash_str)
                    log.warning("no cached art for %s, skipping", hash_str)
                continue
            try:
                self._draw_cell(fb, vp, row, col, self.pixels_for(meta), anim, wobble)
                self.drawn += 1
            except Exception:
                self.faults += 1
                if (row, col) not in self._faulted:
                    self._faulted.add((row, col))
                    log.exception("failed to draw cell (%d, %d) %s", row, col, hash_str)

        return np.clip(fb + 0.5, 0, 255).astype(np.uint8)

    def _draw_cell(
        self,
        fb: NDArray[np.float32],
        vp: Viewport,
        row: int,
        col: int,
        pixels: NDArray[np.uint8],
        anim: CellAnimation | None,
        wobble: float,
    ) -> None:
        if anim is None:
            scale, opacity, angle, selected = 1.0, BASE_OPACITY, 0.0, False
        else:
            scale, opacity, selected = anim.scale, anim.opacity, anim.is_selected
            angle = 0.0 if (anim.is_exiting or selected) else wobble
        if opacity <= 0.0:
            return

        cell = vp.cell_size
        half = cell / 2
        ox, oy = vp.cell_origin(row, col)
        cx, cy = vp.world_to_screen(ox + half, oy + half)
        k = vp.zoom * scale  # screen px per tile unit
        cos_a, sin_a = math.cos(angle), math.sin(angle)
        extent = half * k * (abs(cos_a) + abs(sin_a))

        h, w = fb.shape[:2]
        x0, x1 = max(0, math.floor(cx - extent)), min(w, math.ceil(cx + extent))
        y0, y1 = max(0, math.floor(cy - extent)), min(h, math.ceil(cy + extent))
        if x0 >= x1 or y0 >= y1:
            return

        gx, gy = np.meshgrid(
            np.arange(x0, x1, dtype=np.float64) + 0.5 - cx,
            np.arange(y0, y1, dtype=np.float64) + 0.5 - cy,
        )
        u = (gx * cos_a + gy * sin_a) / k + half
        v = (gy * cos_a - gx * sin_a) / k + half
        inside = (u >= 0) & (u < cell) & (v >= 0) & (v < cell)
        if not inside.any():
            return

        ah, aw = pixels.shape[:2]
        iu = np.clip((u * (aw / cell)).astype(np.intp), 0, aw - 1)
        iv = np.clip((v * (ah / cell)).astype(np.intp), 0, ah - 1)
        src = pixels[iv, iu].astype(np.float32)

        if selected:
            border = OUTLINE_PX / k
            edge = inside & (
                (u < border) | (u >= cell - border) | (v < border) | (v >= cell - border)
            )
            src[edge] = 255.0

        region = fb[y0:y1, x0:x1]
        region[inside] = region[inside] * (1.0 - opacity) + src[inside] * opacity


# ═══════════════════════════════════════════════════════════════════════
#  Color management
# ═══════════════════════════════════════════════════════════════════════

def _cube_colors(levels: int) -> list[int]:
    """Quantised index → xterm-256 colour number in the 6×6×6 cube."""
    colors = []
    for idx in range(levels ** 3):
        r, rem = divmod(idx, levels * levels)
        g, b = divmod(rem, levels)
        to6 = [round(c * 5 / (levels - 1)) for c in (r, g, b)]
        colors.append(16 + 36 * to6[0] + 6 * to6[1] + to6[2])
    return colors


def _basic_colors() -> list[int]:
    """2-level quantisation onto the 8 ANSI colours."""
    colors = []
    for idx in range(8):
        r, g, b = (idx >> 2) & 1, (idx >> 1) & 1, idx & 1
        colors.append(r * curses.COLOR_RED + g * curses.COLOR_GREEN + b * curses.COLOR_BLUE)
    return colors


@dataclass
class ColorMap:
    """Quantises RGB to a colour cube and hands out (top, bottom) colour pairs.

    Pairs are allocated lazily, one per distinct (top, bottom) combination.
    The cube is kept small enough that every combination fits in
    COLOR_PAIRS. Without setup() the map is headless: attributes are the
    bare pair numbers, so benches and tests need no terminal.
    """

    levels: int = 6
    live: bool = False
    _colors: list[int] = field(default_factory=list)
    _pairs: dict[tuple[int, int], int] = field(default_factory=dict)
    _max_pairs: int = 0

    def __post_init__(self) -> None:
        if not self._colors:
            self._colors = _cube_colors(self.levels)

    @property
    def n_colors(self) -> int:
        return self.levels ** 3

    def setup(self) -> None:
        curses.start_color()
        curses.use_default_colors()
        self._max_pairs = curses.COLOR_PAIRS - 1
        if curses.COLORS >= 256:
            levels = 6
            while levels > 2 and levels ** 6 > self._max_pairs:
                levels -= 1
            self.levels = levels
            self._colors = _cube_colors(levels)
        else:
            self.levels = 2
            self._colors = _basic_colors()
        self._pairs.clear()
        self.live = True
        log.info("colour cube %d levels, %d pairs available", self.levels, self._max_pairs)

    def quantize(self, fb: NDArray[np.uint8]) -> NDArray[np.intp]:
        L = self.levels
        q = (fb.astype(np.intp) * (L - 1) + 127) // 255
        return q[..., 0] * (L * L) + q[..., 1] * L + q[..., 2]

    def pair(self, top: int, bot: int) -> int:
        pid = self._pairs.get((top, bot))
        if pid is None:
            pid = len(self._pairs) + 1
            if self.live:
                if pid > self._max_pairs:
                    return 0
                curses.init_pair(pid, self._colors[top], self._colors[bot])
            self._pairs[(top, bot)] = pid
        return pid

    def attr(self, top: int, bot: int) -> int:
        pid = self.pair(top, bot)
        return curses.color_pair(pid) if self.live else pid << 8

    def swatch(self, rgb: Sequence[int]) -> int:
        """Attribute for a solid block of one colour."""
        idx = int(self.quantize(np.array(rgb, dtype=np.uint8).reshape(1, 3))[0])
        return self.attr(idx, idx)


def present(window: curses.window, fb: NDArray[np.uint8], cmap: ColorMap, top: int = 0) -> None:
    """Emit the framebuffer as half blocks, one addstr per run of equal pairs."""
    max_y, max_x = window.getmaxyx()
    idx = cmap.quantize(fb)
    n_rows = min(idx.shape[0] // 2, max_y - top)
    n_cols = min(idx.shape[1], max_x)
    if n_rows <= 0 or n_cols <= 0:
        return
    n = cmap.n_colors
    for ty in range(n_rows):
        t_row = idx[2 * ty, :n_cols]
        b_row = idx[2 * ty + 1, :n_cols]
        key = t_row * n + b_row
        starts = np.flatnonzero(np.r_[True, key[1:] != key[:-1]]).tolist()
        ends = starts[1:] + [n_cols]
        tops = t_row.tolist()
        bots = b_row.tolist()
        for s, e in zip(starts, ends):
            try:
                window.addstr(top + ty, s, UPPER_HALF * (e - s), cmap.attr(tops[s], bots[s]))
            except curses.error:
                pass


# ═══════════════════════════════════════════════════════════════════════
#  Stats logger
# ═══════════════════════════════════════════════════════════════════════

class StatsLogger:
    """Writes frame telemetry to CSV for post-hoc tuning."""

    HEADER: ClassVar[str] = (
        "frame,time_s,fps,zoom,offset_x,offset_y,"
        "visible,drawn,animations,misses,event\n"
    )

    def __init__(self, path: Path) -> None:
        self._path = path
        self._fh: IO[str] | None = None
        self._t0: float = time.monotonic()

    def open(self) -> None:
        try:
            self._fh = open(self._path, "w")
            self._fh.write(self.HEADER)
            self._fh.flush()
        except OSError:
            log.warning("cannot write stats to %s", self._path)
            self._fh = None

    def log(
        self,
        frame: int,
        fps: float,
        viewport: Viewport,
        visible: int,
        drawn: int,
        animations: int,
        misses: int,
        event: str = "",
    ) -> None:
        if self._fh is None:
            return
        t = time.monotonic() - self._t0
        self._fh.write(
            f"{frame},{t:.1f},{fps:.1f},{viewport.zoom:.3f},"
            f"{viewport.offset_x:.1f},{viewport.offset_y:.1f},"
            f"{visible},{drawn},{animations},{misses},{event}\n"
        )
        if event or frame % 50 == 0:
            try:
                self._fh.flush()
            except OSError:
                pass

    def close(self) -> None:
        if self._fh is not None:
            try:
                self._fh.close()
            except OSError:
                pass
            self._fh = None


# ═══════════════════════════════════════════════════════════════════════
#  Terminal chrome
# ═══════════════════════════════════════════════════════════════════════

def _put(window: curses.window, y: int, x: int, text: str, attr: int = 0) -> None:
    try:
        window.addstr(y, x, text, attr)
    except curses.error:
        pass


def draw_loading(window: curses.window, progress: RenderProgress) -> None:
    max_y, max_x = window.getmaxyx()
    label = f"Generating Art {progress.completed} / {progress.total}"
    bar_w = max(10, min(40, max_x - 4))
    filled = bar_w * progress.completed // max(1, progress.total)
    bar = "█" * filled + "░" * (bar_w - filled)
    y = max_y // 2
    _put(window, y - 1, max(0, (max_x - len(label)) // 2), label, curses.A_BOLD)
    _put(window, y + 1, max(0, (max_x - bar_w) // 2), bar, curses.A_DIM)


def format_kinds(counts: Mapping[str, int]) -> str:
    return "  ".join(f"{k} {n}" for k, n in counts.items() if n)


def format_block_time(ts: int) -> str:
    if ts <= 0:
        return "-"
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d %H:%M")


def draw_detail_panel(
    window: curses.window,
    cmap: ColorMap,
    meta: ArtMetadata | None,
    record: TransactionRecord | None,
    selected: SelectedCell,
    y0: int,
    max_x: int,
) -> None:
    """Bottom-docked panel describing the selected tile."""
    width = max_x
    blank = " " * (width - 1)
    for i in range(PANEL_ROWS):
        _put(window, y0 + i, 0, blank, curses.A_REVERSE)

    sig = selected.hash if len(selected.hash) <= width - 20 else selected.hash[: width - 23] + "..."
    tier = meta.tier.upper() if meta else "?"
    _put(window, y0, 1, f"{sig}  [{tier}]  ({selected.row}, {selected.col})", curses.A_REVERSE | curses.A_BOLD)
    if meta is None:
        _put(window, y0 + 1, 1, "art not rendered yet", curses.A_REVERSE)
        return

    _put(window, y0 + 1, 1, f"background {meta.background_style}   shapes {meta.shape_count}", curses.A_REVERSE)
    _put(window, y0 + 2, 1, format_kinds(meta.shape_type_counts)[: width - 2], curses.A_REVERSE)
    _put(window, y0 + 3, 1, "palette", curses.A_REVERSE)
    x = 9
    for rgb in meta.palette:
        _put(window, y0 + 3, x, UPPER_HALF * 3, cmap.swatch(rgb))
        x += 4
    if record is not None:
        line = (
            f"from {record.source[:12] or '-'}  amount {record.display_amount()}  "
            f"slot {record.slot:,}  {format_block_time(record.block_time)}  "
            f"{record.activity_type}"
        )
        _put(window, y0 + 4, 1, line[: width - 2], curses.A_REVERSE)


def _draw_stats_overlay(
    window: curses.window, session: GridSession, renderer: GridRenderer,
    cache: ArtCache, fps: float, max_x: int,
) -> None:
    panel_w = 30
    x0 = max_x - panel_w - 1
    if x0 < 0:
        return
    vp = session.viewport
    lines = [
        f"{'':─<{panel_w - 2}}",
        " hashgrid",
        f" fps         : {fps:.0f}",
        f" zoom        : {vp.zoom:.3f}",
        f" visible     : {renderer.visible}",
        f" drawn       : {renderer.drawn}",
        f" animations  : {len(session.scheduler)}",
        f" cached art  : {len(cache)}",
        f" pool        : {len(session.pool)}",
    ]
    for i, line in enumerate(lines):
        _put(window, 1 + i, x0, f" {line:<{panel_w - 1}}"[:panel_w], curses.A_DIM)


def draw_status(
    window: curses.window, session: GridSession, fps: float,
    message: str, search: str | None, max_y: int, max_x: int,
) -> None:
    if search is not None:
        text = f" / {search}_"
    else:
        vp = session.viewport
        left = f"  zoom {vp.zoom:.2f}  {fps:.0f} fps  {message}"
        right = "q arrows z/x enter esc h / s  "
        pad = max(1, max_x - len(left) - len(right) - 1)
        text = left + " " * pad + right
    _put(window, max_y - 1, 0, text[: max_x - 1], curses.A_DIM)


# ═══════════════════════════════════════════════════════════════════════
#  Main loop
# ═══════════════════════════════════════════════════════════════════════

KEYMAP: dict[int, str] = {
    curses.KEY_UP: "up",
    curses.KEY_DOWN: "down",
    curses.KEY_LEFT: "left",
    curses.KEY_RIGHT: "right",
    ord("x"): "zoom_in",
    ord("X"): "zoom_in",
    ord("z"): "zoom_out",
    ord("Z"): "zoom_out",
    ord("h"): "home",
    ord("H"): "home",
    10: "enter",
    13: "enter",
    curses.KEY_ENTER: "enter",
    27: "escape",
}


def mouse_events(bstate: int, mx: int, my: int, grid_rows: int, now: float) -> list[InputEvent]:
    """Translate one curses mouse report into pointer events in pixel space."""
    if my >= grid_rows:
        return [PointerLeave(now)]
    x, y = mx + 0.5, my * 2 + 1.0
    if bstate & curses.BUTTON4_PRESSED:
        return [Wheel(x, y, -WHEEL_NOTCH, now)]
    if bstate & curses.BUTTON5_PRESSED:
        return [Wheel(x, y, WHEEL_NOTCH, now)]
    if bstate & curses.BUTTON1_PRESSED:
        return [PointerDown(x, y, now)]
    if bstate & curses.BUTTON1_RELEASED:
        return [PointerMove(x, y, now), PointerUp(x, y, now)]
    if bstate & curses.BUTTON1_CLICKED:
        return [PointerDown(x, y, now), PointerUp(x, y, now)]
    return [PointerMove(x, y, now)]


def run_loading_screen(
    window: curses.window, cache: ArtCache, pool: Iterable[str], size: int
) -> bool:
    """Pre-render the pool, redrawing progress between items. False if quit."""
    for progress in cache.iter_pre_render(pool, size):
        window.erase()
        draw_loading(window, progress)
        window.refresh()
        try:
            if window.getch() in (ord("q"), ord("Q")):
                return False
        except curses.error:
            pass
    return True


def main(stdscr: curses.window, config: GridConfig, source: TransactionSource) -> None:
    curses.curs_set(0)
    stdscr.nodelay(True)
    stdscr.timeout(0)
    stdscr.keypad(True)
    curses.mousemask(curses.ALL_MOUSE_EVENTS | curses.REPORT_MOUSE_POSITION)
    curses.mouseinterval(0)
    # Ask the terminal for motion reports without a button held
    print("\033[?1003h", end="", flush=True)

    cmap = ColorMap()
    cmap.setup()

    records = {r.signature: r for r in source.recent()}
    cache = ArtCache()
    if not run_loading_screen(stdscr, cache, list(records), config.art_size):
        return

    def clock() -> float:
        return time.monotonic() * 1000.0

    max_y, max_x = stdscr.getmaxyx()
    grid_rows = max_y - 1
    session = GridSession(
        list(records), max_x, grid_rows * 2, config,
        now=clock(), panel_height=PANEL_ROWS * 2,
    )
    renderer = GridRenderer(cache)
    logger = StatsLogger(STATS_PATH)
    logger.open()

    show_stats = False
    search: str | None = None
    message = f"{len(records)} transactions"
    frame = 0
    fps = 0.0
    last_frame = time.monotonic()

    try:
        while True:
            now = clock()
            quit_requested = False

            # ── Input ──────────────────────────────────────────────
            while True:
                try:
                    key = stdscr.getch()
                except curses.error:
                    key = -1
                if key == -1:
                    break

                if search is not None:
                    if key in (10, 13, curses.KEY_ENTER):
                        query, search = search, None
                        try:
                            record = source.lookup(query)
                        except TransactionLookupError as exc:
                            message = str(exc)
                            continue
                        records[record.signature] = record
                        cache.pre_render([record.signature], config.art_size)
                        ev = session.locate(record.signature, now)
                        message = "found" if ev else "no free cell nearby"
                        logger.log(frame, fps, session.viewport, renderer.visible,
                                   renderer.drawn, len(session.scheduler),
                                   renderer.misses, event="lookup")
                    elif key == 27:
                        search = None
                    elif key in (curses.KEY_BACKSPACE, 127, 8):
                        search = search[:-1]
                    elif 32 <= key < 127:
                        search += chr(key)
                    continue

                if key in (ord("q"), ord("Q")):
                    quit_requested = True
                    break
                elif key == ord("/"):
                    search = ""
                elif key in (ord("s"), ord("S")):
                    show_stats = not show_stats
                elif key == curses.KEY_MOUSE:
                    try:
                        _, mx, my, _, bstate = curses.getmouse()
                        session.post(*mouse_events(bstate, mx, my, grid_rows, now))
                    except curses.error:
                        pass
                elif key == curses.KEY_RESIZE:
                    max_y, max_x = stdscr.getmaxyx()
                    grid_rows = max_y - 1
                    session.resize(max_x, grid_rows * 2, now)
                elif key in KEYMAP:
                    session.post(Key(KEYMAP[key], now))

            if quit_requested:
                break

            for ev in session.drain():
                if ev.kind in ("select", "deselect"):
                    log.info("%s (%d, %d) %s", ev.kind, ev.row, ev.col, ev.hash)
                    logger.log(frame, fps, session.viewport, renderer.visible,
                               renderer.drawn, len(session.scheduler),
                               renderer.misses, event=ev.kind)

            # ── Animate + composite ────────────────────────────────
            session.tick(now)
            fb = renderer.render(session, now)

            # ── Draw ───────────────────────────────────────────────
            stdscr.erase()
            present(stdscr, fb, cmap)
            if session.selected is not None:
                sel = session.selected
                meta = cache.get(sel.hash)
                draw_detail_panel(
                    stdscr, cmap, meta, records.get(sel.hash), sel,
                    max(0, grid_rows - PANEL_ROWS), max_x,
                )
            if show_stats:
                _draw_stats_overlay(stdscr, session, renderer, cache, fps, max_x)
            draw_status(stdscr, session, fps, message, search, max_y, max_x)
            stdscr.refresh()

            # ── Log ────────────────────────────────────────────────
            frame += 1
            if frame % 10 == 0:
                logger.log(frame, fps, session.viewport, renderer.visible,
                           renderer.drawn, len(session.scheduler), renderer.misses)

            elapsed = time.monotonic() - last_frame
            time.sleep(max(0.0, FRAME_INTERVAL_MS / 1000.0 - elapsed))
            tick_end = time.monotonic()
            fps = 0.9 * fps + 0.1 / max(1e-6, tick_end - last_frame)
            last_frame = tick_end

    finally:
        print("\033[?1003l", end="", flush=True)
        logger.close()


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Infinite grid of hash-seeded generative art")
    parser.add_argument("--records", type=Path, default=None,
                        help="JSONL file of transactions (default: demo signatures)")
    parser.add_argument("--demo", type=int, default=100,
                        help="number of demo signatures when no --records (default: 100)")
    parser.add_argument("--seed", type=int, default=None, help="demo signature seed")
    parser.add_argument("--art-size", type=int, default=400, help="artwork raster size in px")
    parser.add_argument("--cell-size", type=float, default=96.0, help="tile size in world px")
    parser.add_argument("--padding", type=float, default=4.0, help="gap between tiles in world px")
    parser.add_argument("--cull-radius", type=int, default=CULL_RADIUS,
                        help="keep fading tiles within this Manhattan distance")
    return parser.parse_args(argv)


def run(argv: Sequence[str] | None = None) -> int:
    config = GridConfig.from_args(parse_args(argv))
    logging.basicConfig(
        filename=LOG_PATH,
        level=logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    source = config.open_source()
    try:
        if not source.recent():
            print("no transactions to show", file=sys.stderr)
            return 1
    except OSError as exc:
        print(f"cannot read transactions: {exc}", file=sys.stderr)
        return 1
    try:
        curses.wrapper(main, config, source)
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(run())
