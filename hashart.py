"""
Deterministic generative-art engine for the hash grid.

Every artwork is a pure function of (hash, size): the hash is folded into an
integer seed, a sine-scrambled counter stream drives every random choice, and
a seeded value-noise field supplies the smooth flow angles. Nothing here reads
the clock or the global `random` module, so regenerating a hash after a cache
miss reproduces the same pixels.

Pipeline (one GenerationContext per hash, never shared):
  seed → tier → particles → palette → background → shapes → flow field

The cache pre-renders hashes one at a time and yields between items so the
terminal loop can keep drawing its progress bar.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import NamedTuple, TypeVar

import numpy as np
from numpy.typing import NDArray
from PIL import Image, ImageDraw

log = logging.getLogger("hashgrid.art")

T = TypeVar("T")


# ═══════════════════════════════════════════════════════════════════════
#  Constants
# ═══════════════════════════════════════════════════════════════════════

FALLBACK_HASH: str = "default" * 10

# Tiers, rarest first, with their cumulative draw thresholds
TIER_LEGENDARY: str = "legendary"
TIER_RARE: str = "rare"
TIER_UNCOMMON: str = "uncommon"
TIER_COMMON: str = "common"
TIERS: list[str] = [TIER_LEGENDARY, TIER_RARE, TIER_UNCOMMON, TIER_COMMON]
TIER_THRESHOLDS: list[tuple[float, str]] = [
    (0.01, TIER_LEGENDARY),
    (0.1, TIER_RARE),
    (0.3, TIER_UNCOMMON),
]

# Tier → (particle count, flow grid cell size in px)
TIER_PARTICLES: dict[str, tuple[int, int]] = {
    TIER_LEGENDARY: (3000, 10),
    TIER_RARE:      (2000, 20),
    TIER_UNCOMMON:  (1000, 30),
    TIER_COMMON:    (500, 40),
}

# Tier → (min shapes, max shapes)
TIER_SHAPES: dict[str, tuple[int, int]] = {
    TIER_LEGENDARY: (50, 100),
    TIER_RARE:      (30, 70),
    TIER_UNCOMMON:  (20, 50),
    TIER_COMMON:    (10, 30),
}

Color = tuple[int, int, int]
Palette = tuple[Color, Color, Color, Color, Color]

PALETTES: list[Palette] = [
    ((230, 57, 70), (241, 250, 238), (168, 218, 220), (69, 123, 157), (29, 53, 87)),
    ((255, 190, 11), (251, 86, 7), (255, 0, 110), (131, 56, 236), (58, 134, 255)),
    ((6, 214, 160), (27, 154, 170), (239, 71, 111), (255, 196, 61), (17, 138, 178)),
    ((38, 70, 83), (42, 157, 143), (233, 196, 106), (244, 162, 97), (231, 111, 81)),
    ((155, 93, 229), (0, 187, 249), (0, 245, 212), (251, 86, 7), (254, 228, 64)),
]

BACKGROUND_STYLES: list[str] = [
    "gradient",
    "noise",
    "subtle-shapes",
    "concentric",
    "grid-pattern",
    "wave-lines",
    "dot-matrix",
    "cross-hatch",
    "spiral",
    "mosaic",
    "flow-field",
    "circuit-board",
]

SHAPE_KINDS: list[str] = [
    "circles", "rectangles", "triangles", "lines",
    "stars", "polygons", "curves", "spirals",
]

# ── Flow field ──────────────────────────────────────────────────────────
FLOW_INCREMENT: float = 0.1     # noise-space step between flow grid cells
FLOW_DEPTH_STEP: float = 0.01   # depth advance after each field rebuild
MAX_PARTICLE_SPEED: float = 2.0
PARTICLE_ALPHA: int = 100

# ── Noise ───────────────────────────────────────────────────────────────
NOISE_SIZE: int = 4095
NOISE_YWRAPB: int = 4
NOISE_ZWRAPB: int = 8
NOISE_OCTAVES: int = 4
NOISE_FALLOFF: float = 0.5

TWO_PI: float = 2.0 * math.pi


# ═══════════════════════════════════════════════════════════════════════
#  Seeded PRNG
# ═══════════════════════════════════════════════════════════════════════

def seed_from_hash(hash_str: object) -> int:
    """Sum of character codes. Empty or non-string input uses FALLBACK_HASH."""
    if not isinstance(hash_str, str) or not hash_str:
        log.warning("invalid hash %r, using fallback seed", hash_str)
        hash_str = FALLBACK_HASH
    return sum(ord(ch) for ch in hash_str)


class SeededRandom:
    """Sine-scrambled counter stream.

    Reproducible and locally uniform enough for art; not for anything that
    needs real randomness. The counter is the whole state.
    """

    def __init__(self, seed: int = 0) -> None:
        self.state: int = seed

    def seed(self, value: int) -> None:
        self.state = value

    def next(self, lo: float | None = None, hi: float | None = None) -> float:
        """``next()`` → [0,1); ``next(max)`` → [0,max); ``next(min, max)``."""
        x = math.sin(self.state) * 10000.0
        self.state += 1
        r = x - math.floor(x)
        if lo is None:
            return r
        if hi is None:
            lo, hi = 0.0, lo
        return r * (hi - lo) + lo

    def pick(self, items: Sequence[T]) -> T:
        return items[math.floor(self.next() * len(items))]


# ═══════════════════════════════════════════════════════════════════════
#  Value noise
# ═══════════════════════════════════════════════════════════════════════

def _scaled_cosine(t: NDArray[np.float64]) -> NDArray[np.float64]:
    return 0.5 * (1.0 - np.cos(t * math.pi))


class ValueNoise:
    """Octave value noise over a seeded lattice, in the classic p5 layout.

    The lattice is built from raw PCG64 output seeded by the hash seed, so
    the field is reproducible across numpy releases and independent of the
    SeededRandom stream.
    Output is roughly in [0, 1).
    """

    def __init__(
        self,
        seed: int,
        octaves: int = NOISE_OCTAVES,
        falloff: float = NOISE_FALLOFF,
    ) -> None:
        raw = np.random.PCG64(seed).random_raw(NOISE_SIZE + 1)
        # top 53 bits → doubles in [0, 1)
        self._lattice: NDArray[np.float64] = (raw >> np.uint64(11)).astype(np.float64) * 2.0**-53
        self.octaves = octaves
        self.falloff = falloff

    def __call__(
        self,
        x: float | NDArray[np.float64],
        y: float | NDArray[np.float64] = 0.0,
        z: float | NDArray[np.float64] = 0.0,
    ) -> NDArray[np.float64]:
        xs, ys, zs = np.broadcast_arrays(
            np.abs(np.asarray(x, dtype=np.float64)),
            np.abs(np.asarray(y, dtype=np.float64)),
            np.abs(np.asarray(z, dtype=np.float64)),
        )
        xi = np.floor(xs).astype(np.int64)
        yi = np.floor(ys).astype(np.int64)
        zi = np.floor(zs).astype(np.int64)
        xf = xs - xi
        yf = ys - yi
        zf = zs - zi

        lat = self._lattice
        mask = NOISE_SIZE
        yoff = 1 << NOISE_YWRAPB
        zoff = 1 << NOISE_ZWRAPB
        result = np.zeros(xs.shape, dtype=np.float64)
        amp = 0.5

        for _ in range(self.octaves):
            of = xi + (yi << NOISE_YWRAPB) + (zi << NOISE_ZWRAPB)
            rxf = _scaled_cosine(xf)
            ryf = _scaled_cosine(yf)

            n1 = lat[of & mask]
            n1 = n1 + rxf * (lat[(of + 1) & mask] - n1)
            n2 = lat[(of + yoff) & mask]
            n2 = n2 + rxf * (lat[(of + yoff + 1) & mask] - n2)
            n1 = n1 + ryf * (n2 - n1)

            of = of + zoff
            n2 = lat[of & mask]
            n2 = n2 + rxf * (lat[(of + 1) & mask] - n2)
            n3 = lat[(of + yoff) & mask]
            n3 = n3 + rxf * (lat[(of + yoff + 1) & mask] - n3)
            n2 = n2 + ryf * (n3 - n2)

            n1 = n1 + _scaled_cosine(zf) * (n2 - n1)
            result += n1 * amp
            amp *= self.falloff

            xi, xf = _double_octave(xi, xf)
            yi, yf = _double_octave(yi, yf)
            zi, zf = _double_octave(zi, zf)

        return result


def _double_octave(
    i: NDArray[np.int64], f: NDArray[np.float64]
) -> tuple[NDArray[np.int64], NDArray[np.float64]]:
    i = i << 1
    f = f * 2.0
    carry = f >= 1.0
    return i + carry, f - carry


# ═══════════════════════════════════════════════════════════════════════
#  Data model
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ArtMetadata:
    """Rendered artwork plus everything the detail panel shows about it."""
    hash: str
    image: Image.Image = field(repr=False, compare=False)
    tier: str
    shape_count: int
    background_style: str
    shape_type_counts: Mapping[str, int] = field(hash=False)
    palette: Palette

    def __post_init__(self) -> None:
        object.__setattr__(self, "shape_type_counts", MappingProxyType(dict(self.shape_type_counts)))

    def as_dict(self) -> dict[str, object]:
        """JSON-ready view without the raster."""
        return {
            "hash": self.hash,
            "tier": self.tier,
            "shape_count": self.shape_count,
            "background_style": self.background_style,
            "shape_type_counts": dict(self.shape_type_counts),
            "palette": [list(c) for c in self.palette],
        }


class RenderProgress(NamedTuple):
    completed: int
    total: int


@dataclass
class Particles:
    """Struct-of-arrays particle system for one flow-field pass."""
    pos: NDArray[np.float64]      # (N, 2)
    vel: NDArray[np.float64]      # (N, 2)
    color: NDArray[np.uint8]      # (N, 4) RGBA
    weight: NDArray[np.float64]   # (N,)

    def __len__(self) -> int:
        return int(self.pos.shape[0])


@dataclass
class GenerationContext:
    """Everything one generation pass mutates. Created per hash, then dropped."""
    hash: str
    size: int
    rng: SeededRandom
    noise: ValueNoise
    image: Image.Image
    draw: ImageDraw.ImageDraw | None
    tier: str = TIER_COMMON
    scl: int = 40
    cols: int = 0
    rows: int = 0
    zoff: float = 0.0
    particles: Particles | None = None
    flow_field: NDArray[np.float64] | None = None

    @classmethod
    def for_hash(cls, hash_str: str, size: int) -> GenerationContext:
        seed = seed_from_hash(hash_str)
        if not isinstance(hash_str, str) or not hash_str:
            hash_str = FALLBACK_HASH
        image = Image.new("RGB", (size, size), (0, 0, 0))
        return cls(
            hash=hash_str,
            size=size,
            rng=SeededRandom(seed),
            noise=ValueNoise(seed),
            image=image,
            # RGBA draw mode blends translucent fills onto the RGB surface
            draw=ImageDraw.Draw(image, "RGBA"),
        )

    def release(self) -> Image.Image:
        """Drop the transient drawing state and hand back the final raster."""
        self.draw = None
        self.particles = None
        self.flow_field = None
        return self.image


# ═══════════════════════════════════════════════════════════════════════
#  Drawing helpers
# ═══════════════════════════════════════════════════════════════════════

def _rgba(c: Sequence[int], alpha: float) -> tuple[int, int, int, int]:
    return (int(c[0]), int(c[1]), int(c[2]), int(alpha))


def _width(weight: float) -> int:
    return max(1, int(round(weight)))


def _ellipse(
    draw: ImageDraw.ImageDraw, x: float, y: float, w: float, h: float,
    fill: tuple[int, int, int, int],
) -> None:
    w, h = abs(w), abs(h)
    draw.ellipse([x - w / 2, y - h / 2, x + w / 2, y + h / 2], fill=fill)


def _point(
    draw: ImageDraw.ImageDraw, x: float, y: float, weight: float,
    fill: tuple[int, int, int, int],
) -> None:
    """A stroked point is a dot as wide as the stroke."""
    if weight <= 1.0:
        draw.point((x, y), fill=fill)
    else:
        _ellipse(draw, x, y, weight, weight, fill)


def _catmull_rom(
    points: list[tuple[float, float]], samples: int = 12
) -> list[tuple[float, float]]:
    """Sample a Catmull-Rom spline; first and last points are control only."""
    out: list[tuple[float, float]] = []
    ts = np.linspace(0.0, 1.0, samples)
    for i in range(1, len(points) - 2):
        p0, p1, p2, p3 = (np.asarray(p) for p in points[i - 1 : i + 3])
        for t in ts:
            pt = 0.5 * (
                2 * p1
                + (-p0 + p2) * t
                + (2 * p0 - 5 * p1 + 4 * p2 - p3) * t * t
                + (-p0 + 3 * p1 - 3 * p2 + p3) * t * t * t
            )
            out.append((float(pt[0]), float(pt[1])))
    return out


# ═══════════════════════════════════════════════════════════════════════
#  Generation stages
# ═══════════════════════════════════════════════════════════════════════

def choose_tier(rng: SeededRandom) -> str:
    roll = rng.next()
    for threshold, tier in TIER_THRESHOLDS:
        if roll < threshold:
            return tier
    return TIER_COMMON


def spawn_particles(ctx: GenerationContext) -> None:
    """Size the particle system and flow grid from the tier, then spawn."""
    count, scl = TIER_PARTICLES[ctx.tier]
    ctx.scl = scl
    ctx.cols = ctx.size // scl
    ctx.rows = ctx.size // scl

    rng = ctx.rng
    size = ctx.size
    pos = np.empty((count, 2), dtype=np.float64)
    color = np.empty((count, 4), dtype=np.uint8)
    weight = np.empty(count, dtype=np.float64)
    for i in range(count):
        pos[i, 0] = rng.next(size)
        pos[i, 1] = rng.next(size)
        color[i] = (int(rng.next(255)), int(rng.next(255)), int(rng.next(255)), PARTICLE_ALPHA)
        weight[i] = rng.next(1, 3)

    ctx.particles = Particles(
        pos=pos,
        vel=np.zeros((count, 2), dtype=np.float64),
        color=color,
        weight=weight,
    )


# ── Backgrounds ─────────────────────────────────────────────────────────

def _bg_gradient(ctx: GenerationContext, palette: Palette) -> None:
    size = ctx.size
    c1 = np.array(palette[0], dtype=np.float64)
    c2 = np.array(palette[-1], dtype=np.float64)
    t = (np.arange(size, dtype=np.float64) / size)[:, None]
    rows = c1 + (c2 - c1) * t
    pixels = np.repeat(rows[:, None, :], size, axis=1)
    ctx.image.paste(Image.fromarray(np.round(pixels).astype(np.uint8)))


def _bg_noise(ctx: GenerationContext, palette: Palette) -> None:
    size = ctx.size
    coords = np.arange(size, dtype=np.float64) * 0.01
    ys, xs = np.meshgrid(coords, coords, indexing="ij")
    values = ctx.noise(xs, ys)
    idx = np.clip(np.floor(values * len(palette)).astype(np.intp), 0, len(palette) - 1)
    lut = np.array(palette, dtype=np.uint8)
    ctx.image.paste(Image.fromarray(lut[idx]))


def _bg_subtle_shapes(ctx: GenerationContext, palette: Palette) -> None:
    rng, draw, size = ctx.rng, ctx.draw, ctx.size
    for _ in range(500):
        x = rng.next(size)
        y = rng.next(size)
        d = rng.next(1, 10)
        c = palette[math.floor(rng.next(len(palette)))]
        _ellipse(draw, x, y, d, d, _rgba(c, 100))


def _bg_concentric(ctx: GenerationContext, palette: Palette) -> None:
    rng, draw, size = ctx.rng, ctx.draw, ctx.size
    max_radius = size * 1.5
    step = max_radius / 50
    d = max_radius
    while d > 0:
        c = rng.pick(palette)
        _ellipse(draw, size / 2, size / 2, d, d, _rgba(c, 40))
        d -= step


def _bg_grid_pattern(ctx: GenerationContext, palette: Palette) -> None:
    rng, draw, size = ctx.rng, ctx.draw, ctx.size
    grid = rng.next(10, 30)
    x = 0.0
    while x < size:
        y = 0.0
        while y < size:
            c = rng.pick(palette)
            if rng.next(0, 1) > 0.5:
                draw.rectangle([x, y, x + grid * 0.9, y + grid * 0.9], fill=_rgba(c, 200))
            y += grid
        x += grid


def _bg_wave_lines(ctx: GenerationContext, palette: Palette) -> None:
    rng, draw, size = ctx.rng, ctx.draw, ctx.size
    amplitude = size / 10
    frequency = rng.next(0.001, 0.005)
    xs = np.arange(0, size, 2, dtype=np.float64)
    for y in range(0, size, 5):
        c = rng.pick(palette)
        ys = y + np.sin(xs * frequency + y * 0.01) * amplitude
        draw.line(list(zip(xs.tolist(), ys.tolist())), fill=_rgba(c, 150), width=2)


def _bg_dot_matrix(ctx: GenerationContext, palette: Palette) -> None:
    rng, draw, size = ctx.rng, ctx.draw, ctx.size
    spacing = rng.next(10, 20)
    x = spacing
    while x < size:
        y = spacing
        while y < size:
            c = rng.pick(palette)
            d = rng.next(2, 6)
            _ellipse(draw, x, y, d, d, _rgba(c, 200))
            y += spacing
        x += spacing


def _bg_cross_hatch(ctx: GenerationContext, palette: Palette) -> None:
    rng, draw, size = ctx.rng, ctx.draw, ctx.size
    spacing = rng.next(10, 20)
    fill = _rgba(rng.pick(palette), 100)
    i = -float(size)
    while i < size * 2:
        draw.line([(i, 0), (i + size, size)], fill=fill, width=1)
        i += spacing
    i = -float(size)
    while i < size * 2:
        draw.line([(i, size), (i + size, 0)], fill=fill, width=1)
        i += spacing


def _bg_spiral(ctx: GenerationContext, palette: Palette) -> None:
    rng, draw, size = ctx.rng, ctx.draw, ctx.size
    rng.next(3, 8)  # rotation count, drawn for stream parity
    spacing = rng.next(5, 15)
    angle = 0.0
    radius = 0.0
    while radius < size * 1.5:
        c = rng.pick(palette)
        weight = rng.next(1, 4)
        _point(
            draw,
            size / 2 + radius * math.cos(angle),
            size / 2 + radius * math.sin(angle),
            weight,
            _rgba(c, 150),
        )
        angle += 0.1
        radius += spacing / TWO_PI


def _bg_mosaic(ctx: GenerationContext, palette: Palette) -> None:
    rng, draw, size = ctx.rng, ctx.draw, ctx.size
    tile = rng.next(10, 30)
    half = tile / 2
    x = 0.0
    while x < size:
        y = 0.0
        while y < size:
            fill = _rgba(rng.pick(palette), 200)
            if rng.next(0, 1) < 0.5:
                if rng.next(0, 1) < 0.5:
                    draw.polygon([(x, y), (x + tile, y), (x, y + tile)], fill=fill)
                    draw.polygon([(x + tile, y + tile), (x + tile, y), (x, y + tile)], fill=fill)
                else:
                    draw.polygon([(x, y), (x + tile, y), (x + tile, y + tile)], fill=fill)
                    draw.polygon([(x, y), (x, y + tile), (x + tile, y + tile)], fill=fill)
            elif rng.next(0, 1) < 0.3:
                second = _rgba(rng.pick(palette), 200)
                draw.rectangle([x, y, x + half, y + half], fill=fill)
                draw.rectangle([x + half, y + half, x + tile, y + tile], fill=second)
            else:
                draw.rectangle([x, y, x + tile, y + tile], fill=fill)
            y += tile
        x += tile


def _bg_flow_field(ctx: GenerationContext, palette: Palette) -> None:
    rng, draw, size = ctx.rng, ctx.draw, ctx.size
    scale = 0.005
    step = 20
    length = step * 0.8
    for x in range(0, size, step):
        for y in range(0, size, step):
            angle = float(ctx.noise(x * scale, y * scale)) * TWO_PI * 4
            c = rng.pick(palette)
            weight = rng.next(1, 3)
            draw.line(
                [(x, y), (x + math.cos(angle) * length, y + math.sin(angle) * length)],
                fill=_rgba(c, 100),
                width=_width(weight),
            )


def _bg_circuit_board(ctx: GenerationContext, palette: Palette) -> None:
    rng, draw, size = ctx.rng, ctx.draw, ctx.size
    node = 8
    spacing = 40
    for x in range(spacing, size, spacing):
        for y in range(spacing, size, spacing):
            if rng.next(0, 1) >= 0.7:
                continue
            c = rng.pick(palette)
            _ellipse(draw, x, y, node, node, _rgba(c, 200))
            wire = _rgba(c, 150)
            if rng.next(0, 1) < 0.5 and x < size - spacing:
                draw.line([(x, y), (x + spacing, y)], fill=wire, width=2)
            if rng.next(0, 1) < 0.5 and y < size - spacing:
                draw.line([(x, y), (x, y + spacing)], fill=wire, width=2)


BACKGROUND_PAINTERS: dict[str, Callable[[GenerationContext, Palette], None]] = {
    "gradient": _bg_gradient,
    "noise": _bg_noise,
    "subtle-shapes": _bg_subtle_shapes,
    "concentric": _bg_concentric,
    "grid-pattern": _bg_grid_pattern,
    "wave-lines": _bg_wave_lines,
    "dot-matrix": _bg_dot_matrix,
    "cross-hatch": _bg_cross_hatch,
    "spiral": _bg_spiral,
    "mosaic": _bg_mosaic,
    "flow-field": _bg_flow_field,
    "circuit-board": _bg_circuit_board,
}


def paint_background(ctx: GenerationContext, palette: Palette) -> str:
    """Pick one of the 12 styles, paint it over a solid base, return its name."""
    style = ctx.rng.pick(BACKGROUND_STYLES)
    ctx.draw.rectangle([0, 0, ctx.size, ctx.size], fill=_rgba(palette[0], 255))
    BACKGROUND_PAINTERS[style](ctx, palette)
    return style


# ── Foreground shapes ───────────────────────────────────────────────────

def paint_shapes(ctx: GenerationContext, palette: Palette) -> tuple[int, dict[str, int]]:
    """Scatter tier-sized foreground shapes. Returns (total, per-kind counts)."""
    rng = ctx.rng
    counts = {kind: 0 for kind in SHAPE_KINDS}
    lo, hi = TIER_SHAPES[ctx.tier]
    total = math.floor(rng.next(lo, hi))

    for _ in range(total):
        kind = rng.pick(SHAPE_KINDS)
        counts[kind] += 1
        paint_shape(ctx, kind, palette)

    return total, counts


def paint_shape(ctx: GenerationContext, kind: str, palette: Palette) -> None:
    """Draw one shape of the given kind at a random spot."""
    rng, draw, size = ctx.rng, ctx.draw, ctx.size
    x = rng.next(size)
    y = rng.next(size)
    s = rng.next(10, 100)
    c = rng.pick(palette)
    fill = _rgba(c, rng.next(20, 100))

    if kind == "circles":
        _ellipse(draw, x, y, s, s, fill)
    elif kind == "rectangles":
        draw.rectangle([x, y, x + s, y + s * rng.next(0.5, 1.5)], fill=fill)
    elif kind == "triangles":
        draw.polygon([(x, y), (x + s, y), (x + s / 2, y - s)], fill=fill)
    elif kind == "lines":
        weight = rng.next(1, 5)
        end = (x + s * rng.next(-1, 1), y + s * rng.next(-1, 1))
        draw.line([(x, y), end], fill=_rgba(c, 50), width=_width(weight))
    elif kind == "stars":
        points = math.floor(rng.next(5, 8))
        verts = []
        for i in range(points * 2):
            r = s if i % 2 == 0 else s * 0.4
            a = i * TWO_PI / (points * 2)
            verts.append((x + r * math.cos(a), y + r * math.sin(a)))
        draw.polygon(verts, fill=fill)
    elif kind == "polygons":
        sides = math.floor(rng.next(6, 10))
        verts = [
            (x + s * math.cos(i * TWO_PI / sides), y + s * math.sin(i * TWO_PI / sides))
            for i in range(sides)
        ]
        draw.polygon(verts, fill=fill)
    elif kind == "curves":
        weight = rng.next(1, 4)
        n = math.floor(rng.next(3, 6))
        pts = [(x + rng.next(-s, s), y + rng.next(-s, s)) for _ in range(n)]
        path = _catmull_rom(pts)
        if len(path) > 1:
            draw.line(path, fill=_rgba(c, 150), width=_width(weight))
    elif kind == "spirals":
        weight = rng.next(1, 3)
        turns = rng.next(2, 4)
        spacing = s / (turns * 10)
        stroke = _rgba(c, 150)
        angle = 0.0
        while angle < TWO_PI * turns:
            radius = spacing * angle
            _point(draw, x + radius * math.cos(angle), y + radius * math.sin(angle), weight, stroke)
            angle += 0.1
    else:
        raise ValueError(f"unknown shape kind {kind!r}")


# ── Flow-field particles ────────────────────────────────────────────────

def build_flow_field(ctx: GenerationContext) -> NDArray[np.float64]:
    """Unit force vectors, one per flow grid cell, row-major (cols × rows)."""
    cols, rows = ctx.cols, ctx.rows
    xoff = np.arange(cols, dtype=np.float64) * FLOW_INCREMENT
    yoff = np.arange(rows, dtype=np.float64) * FLOW_INCREMENT
    ys, xs = np.meshgrid(yoff, xoff, indexing="ij")
    angles = ctx.noise(xs, ys, ctx.zoff) * TWO_PI * 4
    ctx.zoff += FLOW_DEPTH_STEP
    field_ = np.stack([np.cos(angles), np.sin(angles)], axis=-1).reshape(-1, 2)
    ctx.flow_field = field_
    return field_


def advect_particles(ctx: GenerationContext) -> None:
    """Follow the field, limit speed, move, wrap at the canvas edges."""
    p = ctx.particles
    flow = ctx.flow_field
    if p is None or flow is None or len(p) == 0:
        return
    size = ctx.size

    cx = np.floor(p.pos[:, 0] / ctx.scl).astype(np.int64)
    cy = np.floor(p.pos[:, 1] / ctx.scl).astype(np.int64)
    index = cx + cy * ctx.cols
    valid = (index >= 0) & (index < len(flow))
    acc = np.zeros_like(p.vel)
    acc[valid] = flow[index[valid]]

    p.vel += acc
    speed = np.hypot(p.vel[:, 0], p.vel[:, 1])
    too_fast = speed > MAX_PARTICLE_SPEED
    p.vel[too_fast] *= (MAX_PARTICLE_SPEED / speed[too_fast])[:, None]
    p.pos += p.vel

    for axis in (0, 1):
        col = p.pos[:, axis]
        col[col > size] = 0.0
        col[col < 0] = float(size)


def draw_particles(ctx: GenerationContext) -> None:
    rng, draw = ctx.rng, ctx.draw
    p = ctx.particles
    if p is None:
        return
    pos = p.pos.tolist()
    vel = p.vel.tolist()
    colors = [tuple(c) for c in p.color.tolist()]
    weights = p.weight.tolist()
    for i in range(len(pos)):
        x, y = pos[i]
        fill = colors[i]
        roll = rng.next()
        if roll < 0.33:
            _point(draw, x, y, weights[i], fill)
        elif roll < 0.66:
            vx, vy = vel[i]
            draw.line([(x, y), (x + vx * 5, y + vy * 5)], fill=fill, width=_width(weights[i]))
        else:
            _ellipse(draw, x, y, 3, 3, fill)


def run_flow_field(ctx: GenerationContext) -> None:
    # particle styling restarts from the hash seed
    ctx.rng.seed(seed_from_hash(ctx.hash))
    build_flow_field(ctx)
    advect_particles(ctx)
    draw_particles(ctx)


# ═══════════════════════════════════════════════════════════════════════
#  Generator entry point
# ═══════════════════════════════════════════════════════════════════════

def generate_art(hash_str: str, size: int) -> ArtMetadata:
    """Render one artwork. Pure function of (hash, size)."""
    ctx = GenerationContext.for_hash(hash_str, size)

    # The tier is drawn exactly once, as the stream's first value
    ctx.tier = choose_tier(ctx.rng)
    spawn_particles(ctx)
    palette: Palette = ctx.rng.pick(PALETTES)
    style = paint_background(ctx, palette)
    total, counts = paint_shapes(ctx, palette)
    run_flow_field(ctx)

    image = ctx.release()
    return ArtMetadata(
        hash=ctx.hash,
        image=image,
        tier=ctx.tier,
        shape_count=total,
        background_style=style,
        shape_type_counts=counts,
        palette=palette,
    )


# ═══════════════════════════════════════════════════════════════════════
#  Image cache
# ═══════════════════════════════════════════════════════════════════════

class ArtCache:
    """One rendered artwork per hash, filled by pre-rendering.

    Generation happens only here; the grid renderer just reads.
    """

    def __init__(
        self, generator: Callable[[str, int], ArtMetadata] = generate_art
    ) -> None:
        self._entries: dict[str, ArtMetadata] = {}
        self._generator = generator
        self.generated: int = 0

    def has(self, hash_str: str) -> bool:
        return hash_str in self._entries

    def get(self, hash_str: str) -> ArtMetadata | None:
        return self._entries.get(hash_str)

    def __contains__(self, hash_str: object) -> bool:
        return hash_str in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def iter_pre_render(self, hashes: Iterable[str], size: int) -> Iterator[RenderProgress]:
        """Generate missing hashes one at a time, yielding after each input item.

        Each yield is a suspension point: one item's work is done and the
        caller may redraw before the next begins. Duplicates and hits still
        count toward progress.
        """
        items = list(hashes)
        total = len(items)
        for completed, hash_str in enumerate(items, 1):
            if hash_str not in self._entries:
                self._entries[hash_str] = self._generator(hash_str, size)
                self.generated += 1
                log.debug("generated %s (%s)", hash_str, self._entries[hash_str].tier)
            yield RenderProgress(completed, total)

    def pre_render(
        self,
        hashes: Iterable[str],
        size: int,
        on_progress: Callable[[RenderProgress], None] | None = None,
    ) -> None:
        for progress in self.iter_pre_render(hashes, size):
            if on_progress is not None:
                on_progress(progress)
