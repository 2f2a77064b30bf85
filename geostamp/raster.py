"""Solid-fill placeholder images."""

import random
from typing import Optional, Tuple

from PIL import Image

PALETTE = {
    'red': (255, 59, 48),
    'blue': (0, 122, 255),
    'green': (52, 199, 89),
    'orange': (255, 149, 0),
    'yellow': (255, 204, 0),
    'purple': (175, 82, 222),
    'pink': (255, 45, 85),
    'teal': (48, 176, 199),
}


def random_flat_color(rng: Optional[random.Random] = None) -> Tuple[int, int, int]:
    """Pick a palette color uniformly at random."""
    rng = rng or random
    return PALETTE[rng.choice(sorted(PALETTE))]


def make_blank_image(
    size: Tuple[int, int],
    color: Optional[Tuple[int, int, int]] = None,
    rng: Optional[random.Random] = None,
) -> Optional[Image.Image]:
    """
    Create an opaque RGB image of the exact size filled with one color.

    Args:
        size: (width, height) in pixels, both positive
        color: RGB fill; a random palette color when omitted
        rng: Random source used when picking the color

    Returns:
        The image, or None if Pillow could not allocate it
    """
    if color is None:
        color = random_flat_color(rng)
    try:
        return Image.new('RGB', size, color=color)
    except (MemoryError, ValueError, Image.DecompressionBombError):
        return None
