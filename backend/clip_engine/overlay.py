"""
Text overlay layout and rasterization.

A caption is laid out once into an OverlayScene (background shape, wrapped text
lines, attribution) in canvas pixel coordinates. The same scene is serialized
to SVG and drawn with Pillow, so both outputs share one coordinate system.

Two styles are supported:
  * panel  - opaque white panel across the top of the frame, dark serif text.
  * banner - translucent dark bar, light bold sans-serif text.

Line wrapping counts characters of the raw text, before emoji shortcodes such
as ``:fire:`` are expanded, so lines holding shortcodes may render narrower
than the budget suggests.
"""

from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import List, Optional, Tuple

import emoji
from PIL import Image, ImageColor, ImageDraw, ImageFont

logger = logging.getLogger(__name__)

MAX_LINES = 5
ELLIPSIS = "\u2026"
LINE_GUTTER = 10
CHAR_WIDTH_FACTOR = 0.6
ATTR_GAP_FACTOR = 0.25
ATTR_BOTTOM_PADDING_RATIO = 0.02

RGBA = Tuple[int, int, int, int]


class OverlayError(RuntimeError):
    """Raised when an overlay image cannot be produced."""


@dataclass(frozen=True)
class OverlayStyle:
    name: str
    side_margin_ratio: float
    font_divisor: float
    attr_fraction: float
    serif: bool
    bold: bool
    text_fill: str
    attr_fill: str
    background: RGBA
    corner_radius: int = 0
    # panel placement
    top_padding_ratio: float = 0.10
    bottom_padding_ratio: float = 0.025
    max_panel_ratio: float = 0.32
    # banner placement
    bar_height_ratio: float = 0.30
    bar_side_ratio: float = 0.05
    bar_edge_ratio: float = 0.05


PANEL = OverlayStyle(
    name="panel",
    side_margin_ratio=0.08,
    font_divisor=19,
    attr_fraction=0.8,
    serif=True,
    bold=False,
    text_fill="#000000",
    attr_fill="#FF8F00",
    background=(255, 255, 255, 255),
)

BANNER = OverlayStyle(
    name="banner",
    side_margin_ratio=0.15,
    font_divisor=20,
    attr_fraction=0.7,
    serif=False,
    bold=True,
    text_fill="#FFFFFF",
    attr_fill="#FFA500",
    background=(0, 0, 0, 102),
    corner_radius=10,
)

STYLES = {PANEL.name: PANEL, BANNER.name: BANNER}


def get_style(name: str) -> OverlayStyle:
    try:
        return STYLES[name]
    except KeyError:
        raise OverlayError(f"unknown overlay style: {name}") from None


# ---------------- Text processing ----------------

def escape_svg(text: str) -> str:
    if not text:
        return ""
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&apos;")
    )


def expand_emoji(text: str) -> str:
    """Replace shortcodes like ``:thumbsup:`` with the emoji glyph."""
    if not text:
        return ""
    return emoji.emojize(text, language="alias")


def max_chars_per_line(text_width: int, font_size: int) -> int:
    return max(1, math.floor(text_width / (font_size * CHAR_WIDTH_FACTOR)))


def wrap_text(text: str, max_chars: int) -> List[str]:
    """
    Greedy word wrap. Words longer than ``max_chars`` are split into chunks; the
    last chunk keeps accepting following words like any other line.
    """
    if max_chars < 1:
        raise ValueError("max_chars must be at least 1")
    lines: List[str] = []
    current = ""
    for word in (text or "").split():
        candidate = f"{current} {word}" if current else word
        if len(candidate) <= max_chars:
            current = candidate
            continue
        if current:
            lines.append(current)
        while len(word) > max_chars:
            lines.append(word[:max_chars])
            word = word[max_chars:]
        current = word
    if current:
        lines.append(current)
    return lines


def enforce_line_limit(lines: List[str], max_lines: int = MAX_LINES) -> List[str]:
    if len(lines) <= max_lines:
        return list(lines)
    kept = lines[:max_lines]
    kept[-1] = kept[-1] + ELLIPSIS
    return kept


# ---------------- Layout ----------------

@dataclass
class OverlayLayout:
    style: OverlayStyle
    canvas_width: int
    canvas_height: int
    side_margin: int
    text_width: int
    font_size: int
    attr_font_size: int
    line_spacing: int
    center_x: int
    text_top: int
    max_chars: int
    # (x, y, width, height) of the background shape
    background_box: Tuple[int, int, int, int]
    max_panel_fraction: Optional[float] = None


def even_floor(value: float) -> int:
    n = int(math.floor(value))
    return n - (n % 2)


def compute_layout(
    canvas_width: int,
    canvas_height: int,
    style: OverlayStyle = PANEL,
    position: str = "center",
) -> OverlayLayout:
    if canvas_width <= 0 or canvas_height <= 0:
        raise OverlayError(f"invalid canvas size {canvas_width}x{canvas_height}")

    side_margin = round(canvas_width * style.side_margin_ratio)
    text_width = canvas_width - 2 * side_margin
    font_size = max(1, round(text_width / style.font_divisor))
    attr_font_size = max(1, round(font_size * style.attr_fraction))

    if style is PANEL:
        text_top = round(canvas_height * style.top_padding_ratio)
        # panel height is settled in build_scene once the line count is known
        box = (0, 0, canvas_width, 0)
        max_fraction: Optional[float] = style.max_panel_ratio
    else:
        bar_x = round(canvas_width * style.bar_side_ratio)
        bar_w = canvas_width - 2 * bar_x
        bar_h = round(canvas_height * style.bar_height_ratio)
        edge = round(canvas_height * style.bar_edge_ratio)
        if position == "top":
            bar_y = edge
        elif position == "bottom":
            bar_y = canvas_height - bar_h - edge
        else:
            bar_y = round((canvas_height - bar_h) / 2)
        text_top = bar_y + round(font_size * 1.5)
        box = (bar_x, bar_y, bar_w, bar_h)
        max_fraction = None

    return OverlayLayout(
        style=style,
        canvas_width=canvas_width,
        canvas_height=canvas_height,
        side_margin=side_margin,
        text_width=text_width,
        font_size=font_size,
        attr_font_size=attr_font_size,
        line_spacing=font_size + LINE_GUTTER,
        center_x=round(canvas_width / 2),
        text_top=text_top,
        max_chars=max_chars_per_line(text_width, font_size),
        background_box=box,
        max_panel_fraction=max_fraction,
    )


# ---------------- Scene ----------------

@dataclass
class TextRun:
    text: str
    x: int
    y: int  # baseline
    font_size: int
    fill: str
    bold: bool
    serif: bool
    css_class: str


@dataclass
class OverlayScene:
    width: int
    height: int
    style: OverlayStyle
    background_box: Tuple[int, int, int, int]
    lines: List[TextRun] = field(default_factory=list)
    attribution: Optional[TextRun] = None

    @property
    def panel_height(self) -> int:
        return self.background_box[3]

    def to_svg(self) -> str:
        x, y, w, h = self.background_box
        fill = _svg_color(self.style.background)
        radius = f' rx="{self.style.corner_radius}"' if self.style.corner_radius else ""
        parts = [
            '<?xml version="1.0" encoding="UTF-8"?>',
            f'<svg width="{self.width}" height="{self.height}" xmlns="http://www.w3.org/2000/svg">',
            "  <defs>",
            "    <style>",
            "      <![CDATA[",
            _svg_css(self),
            "      ]]>",
            "    </style>",
            "  </defs>",
            f'  <rect x="{x}" y="{y}" width="{w}" height="{h}" fill="{fill}"{radius}/>',
        ]
        if self.lines:
            parts.append('  <text class="main-text">')
            for run in self.lines:
                parts.append(f'    <tspan x="{run.x}" y="{run.y}">{escape_svg(run.text)}</tspan>')
            parts.append("  </text>")
        if self.attribution is not None:
            a = self.attribution
            parts.append(f'  <text class="attr-text" x="{a.x}" y="{a.y}">{escape_svg(a.text)}</text>')
        parts.append("</svg>")
        return "\n".join(parts) + "\n"

    def rasterize(self) -> Image.Image:
        img = Image.new("RGBA", (self.width, self.height), (0, 0, 0, 0))
        draw = ImageDraw.Draw(img)
        x, y, w, h = self.background_box
        if w > 0 and h > 0:
            box = [x, y, x + w - 1, y + h - 1]
            if self.style.corner_radius:
                draw.rounded_rectangle(box, radius=self.style.corner_radius, fill=self.style.background)
            else:
                draw.rectangle(box, fill=self.style.background)
        runs = list(self.lines)
        if self.attribution is not None:
            runs.append(self.attribution)
        for run in runs:
            _draw_run(draw, run)
        return img


def _svg_color(rgba: RGBA) -> str:
    r, g, b, a = rgba
    if a == 255:
        return f"#{r:02X}{g:02X}{b:02X}"
    return f"rgba({r},{g},{b},{round(a / 255, 2)})"


def _svg_css(scene: OverlayScene) -> str:
    family = '"Georgia", "Times New Roman", serif' if scene.style.serif else '"Roboto", "Noto Color Emoji", "Helvetica", sans-serif'
    main_size = scene.lines[0].font_size if scene.lines else 0
    attr_size = scene.attribution.font_size if scene.attribution else 0
    weight = "bold" if scene.style.bold else "normal"
    return (
        f"        .main-text {{ font-family: {family}; font-size: {main_size}px; font-weight: {weight}; "
        f"fill: {scene.style.text_fill}; text-anchor: middle; }}\n"
        f"        .attr-text {{ font-family: {family}; font-size: {attr_size}px; font-weight: bold; "
        f"fill: {scene.style.attr_fill}; text-anchor: middle; }}"
    )


def build_scene(
    text: str,
    attribution: str,
    canvas_width: int,
    canvas_height: int,
    style: str = "panel",
    position: str = "center",
    ratio: Optional[float] = None,
) -> OverlayScene:
    """
    Lay out ``text`` and ``attribution`` on a canvas of the given size.

    ``ratio`` (panel style only) fixes the panel height to that fraction of the
    canvas instead of fitting it to the text.
    """
    overlay_style = get_style(style)
    layout = compute_layout(canvas_width, canvas_height, overlay_style, position)

    raw_lines = enforce_line_limit(wrap_text(text, layout.max_chars), MAX_LINES)
    lines = [
        TextRun(
            text=expand_emoji(line),
            x=layout.center_x,
            y=layout.text_top + i * layout.line_spacing,
            font_size=layout.font_size,
            fill=overlay_style.text_fill,
            bold=overlay_style.bold,
            serif=overlay_style.serif,
            css_class="main-text",
        )
        for i, line in enumerate(raw_lines)
    ]

    last_baseline = layout.text_top + max(len(lines) - 1, 0) * layout.line_spacing
    attr_y = last_baseline + layout.font_size + round(layout.font_size * ATTR_GAP_FACTOR)

    box = layout.background_box
    if overlay_style is PANEL:
        if ratio is not None:
            max_fraction = ratio
            panel_height = even_floor(canvas_height * ratio)
        else:
            max_fraction = layout.max_panel_fraction or overlay_style.max_panel_ratio
            bottom_padding = round(canvas_height * overlay_style.bottom_padding_ratio)
            fitted = attr_y + layout.attr_font_size + bottom_padding
            panel_height = even_floor(min(fitted, canvas_height * max_fraction))
        box = (0, 0, canvas_width, panel_height)
        max_attr_y = panel_height - round(canvas_height * ATTR_BOTTOM_PADDING_RATIO)
        if attr_y > max_attr_y:
            attr_y = max_attr_y
    elif ratio is not None:
        logger.debug("Overlay ratio only applies to the panel style; ignoring %s", ratio)

    attribution_run = None
    attribution = (attribution or "").strip()
    if attribution:
        shown = attribution if overlay_style is PANEL else f"- {attribution} -"
        attribution_run = TextRun(
            text=expand_emoji(shown),
            x=layout.center_x,
            y=attr_y,
            font_size=layout.attr_font_size,
            fill=overlay_style.attr_fill,
            bold=True,
            serif=overlay_style.serif,
            css_class="attr-text",
        )

    return OverlayScene(
        width=canvas_width,
        height=canvas_height,
        style=overlay_style,
        background_box=box,
        lines=lines,
        attribution=attribution_run,
    )


# ---------------- Rasterization (Pillow) ----------------

_SERIF_FONTS = {
    False: ("DejaVuSerif.ttf", "LiberationSerif-Regular.ttf", "Georgia.ttf", "times.ttf", "FreeSerif.ttf"),
    True: ("DejaVuSerif-Bold.ttf", "LiberationSerif-Bold.ttf", "Georgia Bold.ttf", "timesbd.ttf", "FreeSerifBold.ttf"),
}
_SANS_FONTS = {
    False: ("DejaVuSans.ttf", "LiberationSans-Regular.ttf", "Roboto-Regular.ttf", "arial.ttf", "FreeSans.ttf"),
    True: ("DejaVuSans-Bold.ttf", "LiberationSans-Bold.ttf", "Roboto-Bold.ttf", "arialbd.ttf", "FreeSansBold.ttf"),
}
_FONT_DIRS = ("/usr/share/fonts", "/usr/local/share/fonts", "/Library/Fonts", "C:\\Windows\\Fonts")


def _find_system_font(name: str) -> Optional[str]:
    for base in _FONT_DIRS:
        if not os.path.isdir(base):
            continue
        for root, _dirs, files in os.walk(base):
            if name in files:
                return os.path.join(root, name)
    return None


@lru_cache(maxsize=64)
def load_font(size: int, serif: bool, bold: bool):
    candidates = (_SERIF_FONTS if serif else _SANS_FONTS)[bold]
    for candidate in candidates:
        for path in (candidate, _find_system_font(candidate)):
            if not path:
                continue
            try:
                return ImageFont.truetype(path, size=size)
            except OSError:
                continue
    logger.debug("No TrueType font found for serif=%s bold=%s; using Pillow default", serif, bold)
    return ImageFont.load_default(size=size)


def _draw_run(draw: ImageDraw.ImageDraw, run: TextRun) -> None:
    font = load_font(run.font_size, run.serif, run.bold)
    fill = ImageColor.getrgb(run.fill)
    # "ms" anchors at the horizontal middle and the baseline, like SVG's text-anchor: middle
    draw.text((run.x, run.y), run.text, font=font, fill=fill, anchor="ms")


def render_overlay(scene: OverlayScene, png_path: str | Path, svg_path: Optional[str | Path] = None) -> str:
    """
    Write the scene as SVG (when ``svg_path`` is given) and as a PNG of exactly
    the canvas size. Partial outputs are removed if anything fails.
    """
    png_path = Path(png_path)
    written: List[Path] = []
    try:
        png_path.parent.mkdir(parents=True, exist_ok=True)
        if svg_path is not None:
            svg_path = Path(svg_path)
            written.append(svg_path)
            svg_path.write_text(scene.to_svg(), encoding="utf-8")
        img = scene.rasterize()
        written.append(png_path)
        img.save(png_path, format="PNG")
    except Exception as e:
        for path in written:
            try:
                path.unlink()
            except OSError:
                pass
        raise OverlayError(f"overlay rendering failed: {e}") from e
    return str(png_path)
