"""Color parsing and palette gradient helpers."""

import re
from typing import Sequence

import numpy as np

RGBA = tuple[int, int, int, int]

DEFAULT_PALETTE: tuple[str, ...] = ("#67e8f9", "#a78bfa", "#f472b6")

_HEX_RE = re.compile(r"^#?([0-9a-fA-F]{3}|[0-9a-fA-F]{6}|[0-9a-fA-F]{8})$")
_RGBA_RE = re.compile(
    r"^rgba?\(\s*(\d+)\s*,\s*(\d+)\s*,\s*(\d+)\s*(?:,\s*([0-9.]+)\s*)?\)$"
)


def is_valid_color(color_str: str) -> bool:
    """Return True for #rgb, #rrggbb, #rrggbbaa or rgb()/rgba() strings."""
    value = color_str.strip()
    return bool(_HEX_RE.match(value) or _RGBA_RE.match(value))


def parse_color(color_str: str, alpha: int = 255) -> RGBA:
    """Parse a CSS-style color string to an (r, g, b, a) tuple.

    Supports 3/6/8-char hex (embedded alpha overrides the parameter) and
    rgb()/rgba() with a 0-1 alpha component.

    Raises:
        ValueError: If the string is not a recognised color
    """
    value = color_str.strip()

    match = _RGBA_RE.match(value)
    if match:
        r, g, b = (min(255, int(match.group(i))) for i in (1, 2, 3))
        if match.group(4) is not None:
            alpha = int(round(max(0.0, min(1.0, float(match.group(4)))) * 255))
        return (r, g, b, alpha)

    match = _HEX_RE.match(value)
    if not match:
        raise ValueError(f"Invalid color: {color_str!r}")

    hex_c = match.group(1)
    if len(hex_c) == 3:
        hex_c = "".join([c * 2 for c in hex_c])
    r = int(hex_c[0:2], 16)
    g = int(hex_c[2:4], 16)
    b = int(hex_c[4:6], 16)
    if len(hex_c) == 8:
        alpha = int(hex_c[6:8], 16)
    return (r, g, b, alpha)


def gradient_stops(palette_length: int) -> list[float]:
    """Normalized stop positions ``index / max(palette_length - 1, 1)``."""
    denominator = max(palette_length - 1, 1)
    return [index / denominator for index in range(palette_length)]


def build_gradient_lut(palette: Sequence[str], size: int = 256) -> np.ndarray:
    """Sample a linear gradient across the palette into a (size, 3) uint8 table.

    Entry 0 is the first palette color and entry ``size - 1`` the last.
    A single-color palette yields a solid table.
    """
    if not palette:
        palette = DEFAULT_PALETTE
    colors = np.array([parse_color(c)[:3] for c in palette], dtype=np.float32)
    stops = np.array(gradient_stops(len(palette)), dtype=np.float32)
    t = np.linspace(0.0, 1.0, size, dtype=np.float32)

    lut = np.empty((size, 3), dtype=np.float32)
    for channel in range(3):
        lut[:, channel] = np.interp(t, stops, colors[:, channel])
    return np.clip(np.rint(lut), 0, 255).astype(np.uint8)
