import sys
from pathlib import Path

# Flat modules live at the project root
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest
from PIL import Image

from hashart import PALETTES, SHAPE_KINDS, ArtCache, ArtMetadata


def solid_generator(color=(200, 100, 50)):
    """Generator stand-in producing flat tiles, counting its calls."""
    calls = []

    def generate(hash_str, size):
        calls.append(hash_str)
        return ArtMetadata(
            hash=hash_str,
            image=Image.new("RGB", (size, size), color),
            tier="common",
            shape_count=0,
            background_style="gradient",
            shape_type_counts={k: 0 for k in SHAPE_KINDS},
            palette=PALETTES[0],
        )

    generate.calls = calls
    return generate


@pytest.fixture
def solid_cache():
    """Cache factory whose generator paints every tile one flat colour."""

    def make(hashes, color=(200, 100, 50), size=8):
        cache = ArtCache(solid_generator(color))
        cache.pre_render(hashes, size)
        return cache

    return make


@pytest.fixture
def counting_generator():
    return solid_generator()
