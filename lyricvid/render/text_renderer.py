"""Text rendering for frame overlays.

Features:
- Lyric fonts (Mukta / Tiro Devanagari Hindi / Baloo 2) with system fallbacks
- UI sans font (Inter) for song metadata at weights 400/700/900
- Glow (blurred shadow under the fill) and stroke-only outlined text
- Per-string layer cache so repeated lyrics are rasterized once
"""

import logging
import os
from collections import OrderedDict
from dataclasses import dataclass
from typing import Optional

from PIL import Image, ImageChops, ImageDraw, ImageFilter, ImageFont

from lyricvid.render.style_config import LyricFont
from lyricvid.utils.colors import RGBA, parse_color

logger = logging.getLogger(__name__)

WHITE: RGBA = (255, 255, 255, 255)
LYRIC_GLOW_COLOR = "rgba(103, 232, 249, 0.7)"
LYRIC_GLOW_BLUR = 20

# Font files per family, in preference order
_FONT_FILES: dict[str, list[str]] = {
    "mukta": ["Mukta-Bold.ttf", "NotoSansDevanagari-Bold.ttf"],
    "tiro": ["TiroDevanagariHindi-Regular.ttf", "NotoSerifDevanagari-Regular.ttf"],
    "baloo": ["Baloo2-Bold.ttf", "Baloo2-ExtraBold.ttf", "NotoSansDevanagari-Bold.ttf"],
    "inter-400": ["Inter-Regular.ttf", "Inter.ttc"],
    "inter-700": ["Inter-Bold.ttf", "Inter.ttc"],
    "inter-900": ["Inter-Black.ttf", "Inter-ExtraBold.ttf", "Inter.ttc"],
}

# Final fallbacks, regular then bold
_FALLBACK_FILES = {
    "regular": ["DejaVuSans.ttf", "LiberationSans-Regular.ttf", "Arial.ttf"],
    "bold": ["DejaVuSans-Bold.ttf", "LiberationSans-Bold.ttf", "Arial Bold.ttf"],
}

_SYSTEM_FONT_DIRS = [
    "/usr/share/fonts/truetype/mukta",
    "/usr/share/fonts/truetype/noto",
    "/usr/share/fonts/opentype/noto",
    "/usr/share/fonts/truetype/inter",
    "/usr/share/fonts/opentype/inter",
    "/usr/share/fonts/truetype/dejavu",
    "/usr/share/fonts/truetype/liberation",
    "/usr/share/fonts/truetype",
    "/Library/Fonts",
    "/System/Library/Fonts/Supplemental",
]


def ui_family(weight: int) -> str:
    if weight >= 900:
        return "inter-900"
    if weight >= 700:
        return "inter-700"
    return "inter-400"


@dataclass(frozen=True)
class TextLayer:
    """Rasterized RGBA text plus the position of its anchor point inside the layer."""

    image: Image.Image
    origin_x: int
    origin_y: int

    def paste_onto(self, canvas: Image.Image, x: float, y: float) -> None:
        """Alpha-blend onto ``canvas`` with the anchor point at (x, y)."""
        canvas.paste(
            self.image,
            (int(round(x)) - self.origin_x, int(round(y)) - self.origin_y),
            self.image,
        )


class FontResolver:
    """Resolves font families to loaded FreeType fonts, caching by (family, size)."""

    def __init__(self, font_dir: Optional[str] = None):
        self.font_dir = font_dir
        self._fonts: dict[tuple[str, int], ImageFont.FreeTypeFont] = {}
        self._missing: set[str] = set()

    def candidates(self, family: str) -> list[str]:
        """Candidate font paths for a family, ``font_dir`` first."""
        names = list(_FONT_FILES.get(family, []))
        bold = family in ("mukta", "baloo", "inter-700", "inter-900")
        names += _FALLBACK_FILES["bold" if bold else "regular"]

        dirs = ([self.font_dir] if self.font_dir else []) + _SYSTEM_FONT_DIRS
        return [os.path.join(d, name) for name in names for d in dirs]

    def get(self, family: str, size: int) -> ImageFont.FreeTypeFont:
        key = (family, size)
        font = self._fonts.get(key)
        if font is not None:
            return font

        for candidate_path in self.candidates(family):
            if not os.path.exists(candidate_path):
                continue
            try:
                font = ImageFont.truetype(candidate_path, size)
                logger.debug(f"[TEXT] Loaded font {family}@{size}: {candidate_path}")
                break
            except OSError:
                continue

        if font is None:
            if family not in self._missing:
                logger.warning(f"[TEXT] No font file found for {family}, using PIL default")
                self._missing.add(family)
            font = ImageFont.load_default(size=size)

        self._fonts[key] = font
        return font

    def lyric_font(self, font: LyricFont, size: int) -> ImageFont.FreeTypeFont:
        return self.get(LyricFont(font).value, size)

    def ui_font(self, weight: int, size: int) -> ImageFont.FreeTypeFont:
        return self.get(ui_family(weight), size)


class TextRenderer:
    """Builds cached text layers for lyrics and song metadata."""

    def __init__(self, font_dir: Optional[str] = None, cache_size: int = 64):
        self.fonts = FontResolver(font_dir)
        self._cache: OrderedDict[tuple, TextLayer] = OrderedDict()
        self._cache_size = cache_size

    def lyric_layer(self, text: str, font: LyricFont, size: int) -> TextLayer:
        """White lyric text with the fixed cyan glow, anchored at its baseline center."""
        return self.text_layer(
            text,
            self.fonts.lyric_font(font, size),
            fill=WHITE,
            anchor="ms",
            glow_color=parse_color(LYRIC_GLOW_COLOR),
            glow_blur=LYRIC_GLOW_BLUR,
        )

    def label_layer(
        self,
        text: str,
        size: int,
        weight: int = 400,
        fill: RGBA = WHITE,
        anchor: str = "ms",
    ) -> TextLayer:
        """Plain UI text (titles, creator lines)."""
        return self.text_layer(text, self.fonts.ui_font(weight, size), fill=fill, anchor=anchor)

    def outlined_layer(
        self,
        text: str,
        size: int,
        weight: int,
        stroke_fill: RGBA,
        stroke_width: int,
        glow_color: RGBA,
        glow_blur: int,
    ) -> TextLayer:
        """Stroke-only text (transparent fill) with a colored glow."""
        return self.text_layer(
            text,
            self.fonts.ui_font(weight, size),
            fill=stroke_fill,
            anchor="ms",
            glow_color=glow_color,
            glow_blur=glow_blur,
            stroke_width=stroke_width,
            outline_only=True,
        )

    def text_layer(
        self,
        text: str,
        font: ImageFont.FreeTypeFont,
        fill: RGBA,
        anchor: str = "ms",
        glow_color: Optional[RGBA] = None,
        glow_blur: int = 0,
        stroke_width: int = 0,
        outline_only: bool = False,
    ) -> TextLayer:
        key = (text, id(font), fill, anchor, glow_color, glow_blur, stroke_width, outline_only)
        layer = self._cache.get(key)
        if layer is not None:
            self._cache.move_to_end(key)
            return layer

        layer = _rasterize(text, font, fill, anchor, glow_color, glow_blur, stroke_width, outline_only)
        self._cache[key] = layer
        if len(self._cache) > self._cache_size:
            self._cache.popitem(last=False)
        return layer

    def clear(self) -> None:
        self._cache.clear()


def _rasterize(
    text: str,
    font: ImageFont.FreeTypeFont,
    fill: RGBA,
    anchor: str,
    glow_color: Optional[RGBA],
    glow_blur: int,
    stroke_width: int,
    outline_only: bool,
) -> TextLayer:
    left, top, right, bottom = font.getbbox(text or " ", anchor=anchor, stroke_width=stroke_width)
    # Canvas shadowBlur is roughly twice the Gaussian sigma
    sigma = glow_blur / 2.0
    pad = int(sigma * 3) + stroke_width + 2
    width = max(1, right - left + pad * 2)
    height = max(1, bottom - top + pad * 2)
    origin = (pad - left, pad - top)

    # Coverage mask of the visible glyph pixels
    mask = Image.new("L", (width, height), 0)
    ImageDraw.Draw(mask).text(origin, text, font=font, fill=255, anchor=anchor, stroke_width=stroke_width, stroke_fill=255)
    if outline_only and stroke_width > 0:
        inner = Image.new("L", (width, height), 0)
        ImageDraw.Draw(inner).text(origin, text, font=font, fill=255, anchor=anchor)
        mask = ImageChops.subtract(mask, inner)

    layer = Image.new("RGBA", (width, height), (0, 0, 0, 0))

    if glow_color is not None and glow_blur > 0:
        glow_alpha = mask.filter(ImageFilter.GaussianBlur(radius=sigma))
        if glow_color[3] < 255:
            glow_alpha = glow_alpha.point(lambda v: v * glow_color[3] // 255)
        glow = Image.new("RGBA", (width, height), glow_color[:3] + (0,))
        glow.putalpha(glow_alpha)
        layer = Image.alpha_composite(layer, glow)

    text_alpha = mask if fill[3] == 255 else mask.point(lambda v: v * fill[3] // 255)
    body = Image.new("RGBA", (width, height), fill[:3] + (0,))
    body.putalpha(text_alpha)
    layer = Image.alpha_composite(layer, body)

    return TextLayer(image=layer, origin_x=origin[0], origin_y=origin[1])
