"""Frame compositors, one per visualization style.

Every style shares the same algorithm: cover-cropped dimmed background,
one spectrum visualization, the active lyric with a fixed glow, and the
song metadata. Styles differ only in layout.
"""

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import numpy as np
from PIL import Image, ImageDraw, ImageOps

from lyricvid.render.style_config import RenderStyleConfig, VisualizationStyle
from lyricvid.render.text_renderer import WHITE, TextRenderer
from lyricvid.render.visualizers import draw_bars, draw_line
from lyricvid.utils.colors import DEFAULT_PALETTE, RGBA, build_gradient_lut, parse_color

logger = logging.getLogger(__name__)

OVERLAY_OPACITY = 0.6
DEFAULT_BACKGROUND_ALPHA = 0.3
DEFAULT_ROTATION_RAD_S = 0.5
FALLBACK_GLOW = "rgba(103, 232, 249, 0.7)"


@dataclass(frozen=True)
class SongMetadata:
    """Song title and creator shown on every frame."""

    title: str
    creator: str = ""

    @property
    def creator_line(self) -> str:
        return f"by {self.creator}" if self.creator else ""


def cover_crop(image: Image.Image, width: int, height: int) -> Image.Image:
    """Scale to cover (width, height) preserving aspect ratio, center-cropping overflow."""
    return ImageOps.fit(image.convert("RGB"), (width, height), method=Image.Resampling.LANCZOS, centering=(0.5, 0.5))


def build_background(
    image: Image.Image,
    width: int,
    height: int,
    image_alpha: float = DEFAULT_BACKGROUND_ALPHA,
) -> Image.Image:
    """Black fill, image drawn at ``image_alpha``, then the fixed 60% black overlay."""
    black = Image.new("RGB", (width, height), (0, 0, 0))
    dimmed = Image.blend(black, cover_crop(image, width, height), image_alpha)
    return Image.blend(dimmed, black, OVERLAY_OPACITY)


def make_vinyl_disc(size: int = 512, label_color: str = "#b91c1c") -> Image.Image:
    """Procedural record: black disc, grooves, colored label and a sheen so rotation shows."""
    disc = Image.new("RGBA", (size, size), (0, 0, 0, 0))
    draw = ImageDraw.Draw(disc)
    draw.ellipse((0, 0, size - 1, size - 1), fill=(12, 12, 14, 255))

    center = size / 2
    for radius in np.linspace(size * 0.2, size * 0.48, 14):
        draw.ellipse(
            (center - radius, center - radius, center + radius, center + radius),
            outline=(38, 38, 42, 255),
            width=1,
        )

    # Off-center sheen
    draw.pieslice((size * 0.04, size * 0.04, size * 0.96, size * 0.96), start=-70, end=-40, fill=(44, 44, 50, 255))

    label_radius = size * 0.17
    draw.ellipse(
        (center - label_radius, center - label_radius, center + label_radius, center + label_radius),
        fill=parse_color(label_color),
    )
    draw.rectangle(
        (center - label_radius * 0.6, center - label_radius * 0.5, center + label_radius * 0.6, center - label_radius * 0.35),
        fill=(255, 255, 255, 200),
    )
    hole = size * 0.015
    draw.ellipse((center - hole, center - hole, center + hole, center + hole), fill=(0, 0, 0, 0))
    return disc


def extract_palette(image: Image.Image, count: int = 3) -> tuple[str, ...]:
    """Dominant colors of ``image`` as hex strings, most frequent first."""
    if count < 1:
        raise ValueError("count must be >= 1")
    thumb = image.convert("RGB")
    thumb.thumbnail((64, 64))
    quantized = thumb.quantize(colors=count)
    palette = quantized.getpalette() or []
    colors = sorted(quantized.getcolors() or [], reverse=True)
    result = []
    for _, index in colors[:count]:
        r, g, b = palette[index * 3: index * 3 + 3]
        result.append(f"#{r:02x}{g:02x}{b:02x}")
    return tuple(result) or DEFAULT_PALETTE


class StyleRenderer(ABC):
    """Base compositor holding per-export caches (background, art, gradient)."""

    style: VisualizationStyle

    def __init__(
        self,
        text_renderer: Optional[TextRenderer] = None,
        background_alpha: float = DEFAULT_BACKGROUND_ALPHA,
    ):
        self.text = text_renderer or TextRenderer()
        self.background_alpha = background_alpha
        self._background: Optional[tuple[Image.Image, tuple[int, int], Image.Image]] = None
        self._art: dict[tuple[int, int], tuple[Image.Image, Image.Image]] = {}
        self._luts: dict[tuple[str, ...], np.ndarray] = {}

    def render(
        self,
        canvas: Image.Image,
        image: Image.Image,
        spectrum: np.ndarray,
        lyric: Optional[str],
        metadata: SongMetadata,
        elapsed: float,
        config: RenderStyleConfig,
    ) -> None:
        """Composite one frame onto ``canvas`` in place."""
        if canvas.size != (config.width, config.height):
            raise ValueError(f"Canvas size {canvas.size} does not match output resolution {config.width}x{config.height}")
        canvas.paste(self.background(image, config.width, config.height), (0, 0))
        self.draw_layout(canvas, image, spectrum, lyric, metadata, elapsed, config)

    @abstractmethod
    def draw_layout(
        self,
        canvas: Image.Image,
        image: Image.Image,
        spectrum: np.ndarray,
        lyric: Optional[str],
        metadata: SongMetadata,
        elapsed: float,
        config: RenderStyleConfig,
    ) -> None:
        raise NotImplementedError

    def background(self, image: Image.Image, width: int, height: int) -> Image.Image:
        cached = self._background
        if cached is not None and cached[0] is image and cached[1] == (width, height):
            return cached[2]
        background = build_background(image, width, height, self.background_alpha)
        self._background = (image, (width, height), background)
        logger.debug(f"[STYLE] Built {width}x{height} background for {self.style.value}")
        return background

    def album_art(self, image: Image.Image, size: int) -> Image.Image:
        cached = self._art.get((size, size))
        if cached is not None and cached[0] is image:
            return cached[1]
        art = cover_crop(image, size, size)
        self._art[(size, size)] = (image, art)
        return art

    def lut(self, config: RenderStyleConfig) -> np.ndarray:
        lut = self._luts.get(config.palette)
        if lut is None:
            lut = build_gradient_lut(config.palette)
            self._luts[config.palette] = lut
        return lut

    def glow_color(self, config: RenderStyleConfig) -> RGBA:
        return parse_color(config.palette[0] if config.palette else FALLBACK_GLOW)

    def draw_lyric(self, canvas: Image.Image, lyric: Optional[str], config: RenderStyleConfig, x: float, y: float) -> None:
        if not lyric:
            return
        self.text.lyric_layer(lyric, config.font, config.font_size).paste_onto(canvas, x, y)

    def draw_label(
        self,
        canvas: Image.Image,
        text: str,
        x: float,
        y: float,
        size: float,
        weight: int,
        fill: RGBA = WHITE,
        anchor: str = "ms",
    ) -> None:
        if not text:
            return
        layer = self.text.label_layer(text, int(round(size)), weight, fill=fill, anchor=anchor)
        layer.paste_onto(canvas, x, y)


class ClassicRenderer(StyleRenderer):
    """Centered bars near the bottom, lyric above them, metadata bottom-left."""

    style = VisualizationStyle.CLASSIC

    def draw_layout(self, canvas, image, spectrum, lyric, metadata, elapsed, config):
        width, height, font_size = config.width, config.height, config.font_size

        viz_height = height * 0.1
        viz_y = height * 0.85
        viz_width = width * 0.4
        draw_bars(canvas, spectrum, self.lut(config), (width - viz_width) / 2, viz_y, viz_width, viz_height)

        self.draw_lyric(canvas, lyric, config, width / 2, height * 0.7)

        dim = (255, 255, 255, 179)
        self.draw_label(canvas, metadata.title, 40, height - 60, font_size * 0.5, 700, fill=dim, anchor="ls")
        self.draw_label(canvas, metadata.creator_line, 40, height - 30, font_size * 0.4, 400, fill=dim, anchor="ls")


class VinylRenderer(StyleRenderer):
    """Translucent card with album art, a spinning record and a line visualizer."""

    style = VisualizationStyle.VINYL

    def __init__(
        self,
        text_renderer: Optional[TextRenderer] = None,
        background_alpha: float = DEFAULT_BACKGROUND_ALPHA,
        disc_image: Optional[Image.Image] = None,
        rotation_rad_s: float = DEFAULT_ROTATION_RAD_S,
    ):
        super().__init__(text_renderer, background_alpha)
        self.disc_image = disc_image if disc_image is not None else make_vinyl_disc()
        self.rotation_rad_s = rotation_rad_s
        self._disc_sized: Optional[tuple[int, Image.Image]] = None

    def rotation_angle(self, elapsed: float) -> float:
        """Disc angle in radians, ``elapsed * rate`` modulo 2π."""
        return (elapsed * self.rotation_rad_s) % (2 * math.pi)

    def disc(self, size: int) -> Image.Image:
        if self._disc_sized is None or self._disc_sized[0] != size:
            sized = self.disc_image.convert("RGBA").resize((size, size), Image.Resampling.LANCZOS)
            self._disc_sized = (size, sized)
        return self._disc_sized[1]

    def draw_layout(self, canvas, image, spectrum, lyric, metadata, elapsed, config):
        width, height, font_size = config.width, config.height, config.font_size

        container_h = height * 0.25
        container_w = width * 0.7
        container_x = (width - container_w) / 2
        container_y = (height - container_h) / 2
        box = tuple(int(round(v)) for v in (container_x, container_y, container_x + container_w, container_y + container_h))
        region = canvas.crop(box)
        canvas.paste(Image.blend(region, Image.new("RGB", region.size, (0, 0, 0)), 0.4), box[:2])

        art_size = int(round(container_h * 0.9))
        art_x = container_x + 20
        art_y = container_y + (container_h - art_size) / 2
        canvas.paste(self.album_art(image, art_size), (int(round(art_x)), int(round(art_y))))

        vinyl_size = int(round(art_size * 0.9))
        vinyl_x = art_x + art_size - vinyl_size * 0.35
        vinyl_y = art_y + (container_h - art_size) / 2
        # PIL rotates counter-clockwise; canvas rotation is clockwise
        disc = self.disc(vinyl_size).rotate(-math.degrees(self.rotation_angle(elapsed)), resample=Image.Resampling.BICUBIC)
        canvas.paste(disc, (int(round(vinyl_x)), int(round(vinyl_y))), disc)

        viz_x = vinyl_x + vinyl_size / 2 + 30
        viz_width = container_x + container_w - viz_x - 20
        draw_line(
            canvas, spectrum, self.lut(config), self.glow_color(config),
            viz_x, container_y + container_h / 2, viz_width, container_h * 0.8,
        )

        self.draw_lyric(canvas, lyric, config, width / 2, container_y - font_size * 2)

        self.draw_label(canvas, metadata.title, width / 2, container_y + container_h + 80, font_size * 1.2, 700)
        self.draw_label(canvas, metadata.creator_line, width / 2, container_y + container_h + 140, font_size * 0.8, 400)


class WavesRenderer(StyleRenderer):
    """Centered art flanked by mirrored line visualizers."""

    style = VisualizationStyle.WAVES

    def draw_layout(self, canvas, image, spectrum, lyric, metadata, elapsed, config):
        width, height, font_size = config.width, config.height, config.font_size

        self.draw_label(canvas, metadata.title, width / 2, height * 0.15, font_size * 1.5, 700)
        self.draw_label(canvas, metadata.creator_line, width / 2, height * 0.15 + 80, font_size * 1.0, 400)

        art_size = int(round(height * 0.25))
        art_x = (width - art_size) / 2
        art_y = (height - art_size) / 2
        canvas.paste(self.album_art(image, art_size), (int(round(art_x)), int(round(art_y))))

        viz_width = art_size * 1.5
        viz_height = art_size * 0.5
        lut, glow = self.lut(config), self.glow_color(config)
        for mirrored in (False, True):
            draw_line(
                canvas, spectrum, lut, glow,
                art_x - viz_width - 40, art_y + viz_height, viz_width, viz_height,
                mirrored=mirrored,
            )

        self.draw_lyric(canvas, lyric, config, width / 2, height * 0.85)


class BigTextRenderer(StyleRenderer):
    """Huge outlined title with a palette glow and a full-width bar strip."""

    style = VisualizationStyle.BIG_TEXT

    def draw_layout(self, canvas, image, spectrum, lyric, metadata, elapsed, config):
        width, height, font_size = config.width, config.height, config.font_size

        self.draw_label(canvas, metadata.creator_line, width / 2, height * 0.2, font_size, 700, fill=(255, 255, 255, 204))

        if metadata.title:
            title = self.text.outlined_layer(
                metadata.title.upper(),
                size=font_size * 3,
                weight=900,
                stroke_fill=WHITE,
                stroke_width=2,
                glow_color=self.glow_color(config),
                glow_blur=30,
            )
            title.paste_onto(canvas, width / 2, height * 0.45)

        self.draw_lyric(canvas, lyric, config, width / 2, height * 0.6)

        draw_bars(canvas, spectrum, self.lut(config), 0, height * 0.95, width, height * 0.15)


STYLE_RENDERERS: dict[VisualizationStyle, type[StyleRenderer]] = {
    VisualizationStyle.CLASSIC: ClassicRenderer,
    VisualizationStyle.VINYL: VinylRenderer,
    VisualizationStyle.WAVES: WavesRenderer,
    VisualizationStyle.BIG_TEXT: BigTextRenderer,
}

_unmapped = set(VisualizationStyle) - set(STYLE_RENDERERS)
if _unmapped:
    raise RuntimeError(f"No renderer registered for styles: {sorted(s.value for s in _unmapped)}")


def create_style_renderer(
    style: VisualizationStyle,
    text_renderer: Optional[TextRenderer] = None,
    background_alpha: float = DEFAULT_BACKGROUND_ALPHA,
    disc_image: Optional[Image.Image] = None,
    rotation_rad_s: float = DEFAULT_ROTATION_RAD_S,
) -> StyleRenderer:
    """Instantiate the renderer for ``style``."""
    renderer_cls = STYLE_RENDERERS[VisualizationStyle(style)]
    if renderer_cls is VinylRenderer:
        return VinylRenderer(text_renderer, background_alpha, disc_image=disc_image, rotation_rad_s=rotation_rad_s)
    return renderer_cls(text_renderer, background_alpha)
