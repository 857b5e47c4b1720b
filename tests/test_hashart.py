import numpy as np
import pytest

from hashart import (
    BACKGROUND_PAINTERS,
    BACKGROUND_STYLES,
    FALLBACK_HASH,
    PALETTES,
    SHAPE_KINDS,
    TIER_SHAPES,
    TIERS,
    ArtCache,
    GenerationContext,
    Particles,
    RenderProgress,
    SeededRandom,
    ValueNoise,
    _catmull_rom,
    advect_particles,
    build_flow_field,
    choose_tier,
    generate_art,
    paint_shape,
    run_flow_field,
    seed_from_hash,
    spawn_particles,
)

SIZE = 48


class FixedRandom:
    def __init__(self, value):
        self.value = value

    def next(self):
        return self.value


# ── Seeding ─────────────────────────────────────────────────────────────

def test_seed_is_sum_of_char_codes():
    assert seed_from_hash("abc123") == 444
    assert seed_from_hash("A") == 65


@pytest.mark.parametrize("bad", ["", None, 42])
def test_invalid_hash_uses_fallback_seed(bad):
    assert seed_from_hash(bad) == seed_from_hash(FALLBACK_HASH)


def test_identically_seeded_streams_match():
    a, b = SeededRandom(444), SeededRandom(444)
    assert [a.next() for _ in range(50)] == [b.next() for _ in range(50)]


def test_stream_ranges_and_counter():
    rng = SeededRandom(7)
    for _ in range(200):
        assert 0.0 <= rng.next() < 1.0
        assert 0.0 <= rng.next(10) < 10.0
        assert 5.0 <= rng.next(5, 6) < 6.0
    assert rng.state == 7 + 600


def test_first_draw_of_zero_seed():
    rng = SeededRandom(0)
    assert rng.next() == 0.0
    assert rng.state == 1
    assert SeededRandom(0).pick(["a", "b", "c"]) == "a"


@pytest.mark.parametrize("roll,tier", [
    (0.005, "legendary"),
    (0.01, "rare"),
    (0.05, "rare"),
    (0.1, "uncommon"),
    (0.29, "uncommon"),
    (0.3, "common"),
    (0.99, "common"),
])
def test_tier_thresholds(roll, tier):
    assert choose_tier(FixedRandom(roll)) == tier


# ── Generation ──────────────────────────────────────────────────────────

def test_same_hash_same_art():
    a = generate_art("5VfYdK3mN8pQrStUvWxYz", SIZE)
    b = generate_art("5VfYdK3mN8pQrStUvWxYz", SIZE)
    assert a.as_dict() == b.as_dict()
    assert np.array_equal(np.asarray(a.image), np.asarray(b.image))


def test_abc123_tier_is_first_draw_and_stable():
    expected = choose_tier(SeededRandom(444))
    tiers = {generate_art("abc123", SIZE).tier for _ in range(3)}
    assert tiers == {expected}


def test_different_hashes_differ():
    a = generate_art("abc123", SIZE)
    b = generate_art("abc124", SIZE)
    assert not np.array_equal(np.asarray(a.image), np.asarray(b.image))


@pytest.mark.parametrize("h", ["abc123", "zzz", "4f7Kq9", "x" * 44])
def test_metadata_is_consistent(h):
    meta = generate_art(h, SIZE)
    assert meta.hash == h
    assert meta.tier in TIERS
    assert meta.background_style in BACKGROUND_STYLES
    assert meta.palette in PALETTES
    assert set(meta.shape_type_counts) == set(SHAPE_KINDS)
    assert sum(meta.shape_type_counts.values()) == meta.shape_count
    lo, hi = TIER_SHAPES[meta.tier]
    assert lo <= meta.shape_count < hi
    assert meta.image.size == (SIZE, SIZE)
    assert meta.image.mode == "RGB"


def test_empty_hash_renders_fallback():
    a = generate_art("", 32)
    b = generate_art(FALLBACK_HASH, 32)
    assert a.hash == FALLBACK_HASH
    assert np.array_equal(np.asarray(a.image), np.asarray(b.image))


def test_as_dict_is_json_ready():
    d = generate_art("abc123", 32).as_dict()
    assert "image" not in d
    assert d["palette"] == [list(c) for c in generate_art("abc123", 32).palette]


def test_metadata_is_frozen_and_hashable():
    meta = generate_art("abc123", 32)
    with pytest.raises(TypeError):
        meta.shape_type_counts["circles"] = 99
    assert hash(meta) == hash(generate_art("abc123", 32))


def test_context_release_drops_transients():
    ctx = GenerationContext.for_hash("abc", 40)
    spawn_particles(ctx)
    build_flow_field(ctx)
    image = ctx.release()
    assert image is ctx.image
    assert ctx.draw is None
    assert ctx.particles is None
    assert ctx.flow_field is None


# ── Noise and flow field ────────────────────────────────────────────────

def test_noise_is_seeded_and_bounded():
    xs = np.linspace(0, 20, 101)
    a = ValueNoise(444)(xs, xs * 0.5, 0.3)
    b = ValueNoise(444)(xs, xs * 0.5, 0.3)
    c = ValueNoise(445)(xs, xs * 0.5, 0.3)
    assert np.array_equal(a, b)
    assert not np.array_equal(a, c)
    assert a.min() >= 0.0 and a.max() < 1.0


def test_noise_lattice_comes_from_raw_pcg64_bits():
    raw = np.random.PCG64(444).random_raw(4096)
    expected = (raw >> np.uint64(11)).astype(np.float64) * 2.0**-53
    assert np.array_equal(ValueNoise(444)._lattice, expected)


def test_noise_is_smooth():
    noise = ValueNoise(1)
    xs = np.linspace(3.0, 3.01, 11)
    vals = noise(xs, 1.5)
    assert np.abs(np.diff(vals)).max() < 0.01


def test_flow_field_unit_vectors_and_depth_step():
    ctx = GenerationContext.for_hash("abc", 120)
    ctx.tier = "common"
    spawn_particles(ctx)
    assert ctx.cols == ctx.rows == 3
    flow = build_flow_field(ctx)
    assert flow.shape == (9, 2)
    assert np.allclose(np.hypot(flow[:, 0], flow[:, 1]), 1.0)
    assert ctx.zoff == pytest.approx(0.01)


def test_particles_limit_speed_and_wrap():
    ctx = GenerationContext.for_hash("abc", 40)
    ctx.tier = "common"
    spawn_particles(ctx)
    ctx.particles = Particles(
        pos=np.array([[39.9, 10.0], [20.0, 20.0]]),
        vel=np.array([[2.0, 0.0], [5.0, 5.0]]),
        color=np.zeros((2, 4), dtype=np.uint8),
        weight=np.ones(2),
    )
    build_flow_field(ctx)
    advect_particles(ctx)
    speeds = np.hypot(ctx.particles.vel[:, 0], ctx.particles.vel[:, 1])
    assert speeds.max() <= 2.0 + 1e-9
    assert ctx.particles.pos[0, 0] == 0.0


def test_particle_styling_restarts_from_hash_seed():
    ctx = GenerationContext.for_hash("abc123", 64)
    ctx.tier = "common"
    spawn_particles(ctx)
    for _ in range(7):
        ctx.rng.next()
    run_flow_field(ctx)
    # one style roll per particle, counted from the hash seed
    assert ctx.rng.state == 444 + len(ctx.particles)


def test_curve_needs_four_points():
    assert _catmull_rom([(0, 0), (1, 1), (2, 0)]) == []
    pts = [(0.0, 0.0), (10.0, 0.0), (20.0, 10.0), (30.0, 10.0)]
    path = _catmull_rom(pts)
    assert path[0] == pytest.approx((10.0, 0.0))
    assert path[-1] == pytest.approx((20.0, 10.0))


# ── Cache ───────────────────────────────────────────────────────────────

def test_pre_render_generates_each_hash_once(counting_generator):
    cache = ArtCache(counting_generator)
    progress = []
    cache.pre_render(["a", "b", "a"], 8, progress.append)
    assert counting_generator.calls == ["a", "b"]
    assert progress == [RenderProgress(1, 3), RenderProgress(2, 3), RenderProgress(3, 3)]
    assert cache.generated == 2
    assert len(cache) == 2

    cache.pre_render(["a", "b"], 8)
    assert cache.generated == 2


def test_iter_pre_render_suspends_between_items(counting_generator):
    cache = ArtCache(counting_generator)
    it = cache.iter_pre_render(["x", "y"], 8)
    assert counting_generator.calls == []
    assert next(it) == RenderProgress(1, 2)
    assert counting_generator.calls == ["x"]
    assert "x" in cache and not cache.has("y")
    assert list(it) == [RenderProgress(2, 2)]


def test_cache_get_miss():
    cache = ArtCache()
    assert cache.get("nope") is None
    assert not cache.has("nope")


def test_real_cache_round_trip():
    cache = ArtCache()
    cache.pre_render(["abc123"], 32)
    meta = cache.get("abc123")
    assert meta is not None
    assert meta.tier == choose_tier(SeededRandom(444))
    assert meta.image.size == (32, 32)


# ── Painters ────────────────────────────────────────────────────────────

def _painted(paint, hash_str="painter", size=160):
    ctx = GenerationContext.for_hash(hash_str, size)
    paint(ctx)
    return np.asarray(ctx.release())


@pytest.mark.parametrize("style", BACKGROUND_STYLES)
def test_every_background_paints_deterministically(style):
    painter = BACKGROUND_PAINTERS[style]
    a = _painted(lambda ctx: painter(ctx, PALETTES[0]))
    b = _painted(lambda ctx: painter(ctx, PALETTES[0]))
    assert np.array_equal(a, b)
    assert a.any()


def test_background_table_matches_styles():
    assert list(BACKGROUND_PAINTERS) == list(BACKGROUND_STYLES)


@pytest.mark.parametrize("kind", SHAPE_KINDS)
def test_every_shape_kind_paints_deterministically(kind):
    for h in ("abc123", "zzz", "4f7Kq9"):
        a = _painted(lambda ctx: paint_shape(ctx, kind, PALETTES[1]), h)
        b = _painted(lambda ctx: paint_shape(ctx, kind, PALETTES[1]), h)
        assert np.array_equal(a, b)


def test_unknown_shape_kind_rejected():
    ctx = GenerationContext.for_hash("abc", 32)
    with pytest.raises(ValueError):
        paint_shape(ctx, "blobs", PALETTES[0])
