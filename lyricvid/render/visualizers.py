"""Spectrum visualizers drawn onto a frame canvas.

Both visualizers take a gradient lookup table built from the palette with
``build_gradient_lut``; a single-color palette yields a solid table, so the
output degenerates to a solid fill.
"""

import numpy as np
from PIL import Image, ImageDraw, ImageFilter, ImageOps

from lyricvid.utils.colors import RGBA

BAR_WIDTH_FACTOR = 1.5
BAR_GAP = 2
LINE_WIDTH = 3
LINE_GLOW_BLUR = 10


def _lut_index(t: np.ndarray, lut: np.ndarray) -> np.ndarray:
    return np.clip(np.rint(t * (len(lut) - 1)), 0, len(lut) - 1).astype(np.intp)


def bar_geometry(bin_count: int, width: float) -> tuple[float, float]:
    """Return (bar_width, step) for ``bin_count`` bars over ``width``."""
    bar_width = width / bin_count * BAR_WIDTH_FACTOR
    return bar_width, bar_width + BAR_GAP


def draw_bars(
    canvas: Image.Image,
    spectrum: np.ndarray,
    lut: np.ndarray,
    x: float,
    baseline_y: float,
    width: float,
    height: float,
) -> None:
    """Draw vertical bars growing upward from ``baseline_y``.

    Bar height is ``value / 255 * height``. Each bar carries a vertical
    gradient from the first palette color at the baseline to the last at
    its top. Bars past the canvas edge are clipped.
    """
    bin_count = len(spectrum)
    if bin_count == 0 or height <= 0:
        return

    bar_width, step = bar_geometry(bin_count, width)
    heights = spectrum.astype(np.float32) / 255.0 * height
    canvas_width = canvas.size[0]

    for i in range(bin_count):
        bar_height = int(round(heights[i]))
        if bar_height <= 0:
            continue
        left = int(round(x + i * step))
        right = int(round(x + i * step + bar_width))
        if left >= canvas_width:
            break
        if right <= left:
            continue

        # Row 0 is the bar top (t=1), last row sits on the baseline (t=0)
        t = np.linspace(1.0, 0.0, bar_height, dtype=np.float32) if bar_height > 1 else np.zeros(1, np.float32)
        column = lut[_lut_index(t, lut)]
        block = np.broadcast_to(column[:, None, :], (bar_height, right - left, 3))
        canvas.paste(Image.fromarray(np.ascontiguousarray(block), "RGB"), (left, int(round(baseline_y)) - bar_height))


def line_points(spectrum: np.ndarray, x: float, baseline_y: float, width: float, height: float) -> list[tuple[float, float]]:
    """Polyline vertices: one per bin, spaced ``width / bins`` apart."""
    bin_count = len(spectrum)
    if bin_count == 0:
        return []
    slice_width = width / bin_count
    values = spectrum.astype(np.float32) / 255.0
    return [(x + i * slice_width, baseline_y - float(values[i]) * height) for i in range(bin_count)]


def render_line_layer(
    spectrum: np.ndarray,
    lut: np.ndarray,
    glow_color: RGBA,
    x: float,
    baseline_y: float,
    width: float,
    height: float,
) -> tuple[Image.Image, int, int]:
    """Rasterize the glowing line into an RGBA layer.

    Returns (layer, left, top) where (left, top) is the layer's canvas position.
    """
    pad = LINE_GLOW_BLUR * 2 + LINE_WIDTH
    left = int(np.floor(x)) - pad
    top = int(np.floor(baseline_y - height)) - pad
    layer_w = int(np.ceil(width)) + pad * 2
    layer_h = int(np.ceil(height)) + pad * 2

    points = [(px - left, py - top) for px, py in line_points(spectrum, x, baseline_y, width, height)]
    mask = Image.new("L", (layer_w, layer_h), 0)
    if len(points) > 1:
        ImageDraw.Draw(mask).line(points, fill=255, width=LINE_WIDTH, joint="curve")
    elif points:
        ImageDraw.Draw(mask).point(points, fill=255)

    # Horizontal gradient spanning [x, x + width]
    columns = np.arange(layer_w, dtype=np.float32) + left
    t = (columns - x) / width if width > 0 else np.zeros(layer_w, np.float32)
    row = lut[_lut_index(np.clip(t, 0.0, 1.0), lut)]
    stroke_rgb = np.ascontiguousarray(np.broadcast_to(row[None, :, :], (layer_h, layer_w, 3)))
    stroke = Image.fromarray(stroke_rgb, "RGB").convert("RGBA")
    stroke.putalpha(mask)

    glow_alpha = mask.filter(ImageFilter.GaussianBlur(radius=LINE_GLOW_BLUR / 2.0))
    if glow_color[3] < 255:
        glow_alpha = glow_alpha.point(lambda v: v * glow_color[3] // 255)
    glow = Image.new("RGBA", (layer_w, layer_h), glow_color[:3] + (0,))
    glow.putalpha(glow_alpha)

    return Image.alpha_composite(glow, stroke), left, top


def draw_line(
    canvas: Image.Image,
    spectrum: np.ndarray,
    lut: np.ndarray,
    glow_color: RGBA,
    x: float,
    baseline_y: float,
    width: float,
    height: float,
    mirrored: bool = False,
) -> None:
    """Draw the line visualizer; ``mirrored`` reflects it across the canvas's vertical center."""
    if len(spectrum) == 0:
        return
    layer, left, top = render_line_layer(spectrum, lut, glow_color, x, baseline_y, width, height)
    if mirrored:
        layer = ImageOps.mirror(layer)
        left = canvas.size[0] - (left + layer.size[0])
    canvas.paste(layer, (left, top), layer)
