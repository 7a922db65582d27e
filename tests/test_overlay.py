import pytest
from PIL import Image

from backend.clip_engine.overlay import (
    BANNER,
    ELLIPSIS,
    PANEL,
    OverlayError,
    build_scene,
    compute_layout,
    enforce_line_limit,
    escape_svg,
    expand_emoji,
    max_chars_per_line,
    render_overlay,
    wrap_text,
)
from backend.clip_engine.schemas import DEFAULT_PANEL_RATIO, parse_params


SAMPLE = (
    "The quick brown fox jumps over the lazy dog while the  band plays on and on "
    "until the sun goes down behind the hills"
)


@pytest.mark.parametrize("budget", [8, 12, 20, 35])
def test_wrap_reconstructs_text_and_respects_budget(budget):
    lines = wrap_text(SAMPLE, budget)
    assert " ".join(lines) == " ".join(SAMPLE.split())
    assert all(len(line) <= budget for line in lines)


def test_wrap_hard_splits_long_words():
    lines = wrap_text("tiny supercalifragilistic end", 6)
    assert all(len(line) <= 6 for line in lines)
    assert "".join(lines).replace(" ", "") == "tinysupercalifragilisticend"
    assert lines[0] == "tiny"
    assert lines[1] == "superc"


def test_wrap_empty_text():
    assert wrap_text("", 10) == []
    assert wrap_text("   ", 10) == []


def test_line_limit_appends_ellipsis():
    lines = [f"line {i}" for i in range(8)]
    kept = enforce_line_limit(lines, 5)
    assert len(kept) == 5
    assert kept[-1] == "line 4" + ELLIPSIS
    assert kept[:4] == lines[:4]
    assert enforce_line_limit(lines[:3], 5) == lines[:3]


def test_escape_svg():
    assert escape_svg("""Tom & "Jerry" <3 'em""") == "Tom &amp; &quot;Jerry&quot; &lt;3 &apos;em"
    assert escape_svg("") == ""


def test_expand_emoji_shortcodes():
    assert expand_emoji("nice :thumbsup:") == "nice \U0001F44D"
    assert expand_emoji("plain text") == "plain text"


def test_layout_panel_vs_banner_metrics():
    panel = compute_layout(1080, 1920, PANEL)
    assert panel.side_margin == round(1080 * 0.08)
    assert panel.text_width == 1080 - 2 * panel.side_margin
    assert panel.font_size == round(panel.text_width / 19)
    assert panel.attr_font_size == round(panel.font_size * 0.8)
    assert panel.line_spacing == panel.font_size + 10
    assert panel.text_top == 192
    assert panel.max_chars == max_chars_per_line(panel.text_width, panel.font_size)

    banner = compute_layout(1080, 1920, BANNER)
    assert banner.side_margin == round(1080 * 0.15)
    assert banner.font_size == round(banner.text_width / 20)
    bar_x, bar_y, bar_w, bar_h = banner.background_box
    assert bar_h == round(1920 * 0.30)
    assert bar_y == round((1920 - bar_h) / 2)
    assert bar_x + bar_w + bar_x == 1080


def test_layout_rejects_empty_canvas():
    with pytest.raises(OverlayError):
        compute_layout(0, 1920, PANEL)


@pytest.mark.parametrize("size", [(1080, 1920), (1920, 1080), (721, 1281), (640, 361)])
@pytest.mark.parametrize("text", ["Short", SAMPLE, SAMPLE * 4])
def test_panel_height_even_and_capped(size, text):
    width, height = size
    scene = build_scene(text, "Author", width, height, style="panel")
    assert scene.panel_height % 2 == 0
    assert scene.panel_height <= height * PANEL.max_panel_ratio


@pytest.mark.parametrize("ratio", [0.1, 0.25, 0.3, 0.5, 0.77])
def test_panel_height_follows_caller_ratio(ratio):
    scene = build_scene(SAMPLE, "Author", 1081, 1921, style="panel", ratio=ratio)
    assert scene.panel_height % 2 == 0
    assert scene.panel_height <= 1921 * ratio
    assert scene.panel_height >= 1921 * ratio - 2


def test_attribution_clamped_inside_panel():
    scene = build_scene(SAMPLE * 3, "Somebody Famous", 1080, 1920, style="panel", ratio=0.15)
    assert scene.attribution is not None
    assert scene.attribution.y <= scene.panel_height - round(1920 * 0.02)


def test_scene_lines_positions_and_cap():
    scene = build_scene(SAMPLE * 4, "", 1080, 1920, style="panel")
    assert len(scene.lines) == 5
    assert scene.lines[-1].text.endswith(ELLIPSIS)
    spacing = scene.lines[1].y - scene.lines[0].y
    assert all(b.y - a.y == spacing for a, b in zip(scene.lines, scene.lines[1:]))
    assert all(run.x == 540 for run in scene.lines)
    assert scene.attribution is None


def test_banner_formats_attribution():
    scene = build_scene("Keep going", "Coach", 1080, 1920, style="banner")
    assert scene.attribution.text == "- Coach -"
    assert scene.attribution.fill == "#FFA500"
    assert scene.lines[0].fill == "#FFFFFF"


def test_svg_escapes_text_and_matches_canvas():
    scene = build_scene("Fish & <Chips>", "Joe's", 720, 1280, style="panel")
    svg = scene.to_svg()
    assert 'width="720" height="1280"' in svg
    assert "Fish &amp; &lt;Chips&gt;" in svg
    assert "Joe&apos;s" in svg
    assert f'height="{scene.panel_height}"' in svg


def test_raster_matches_canvas_and_draws_panel(tmp_path):
    scene = build_scene("Hello world", "Me", 360, 640, style="panel")
    png = tmp_path / "o.png"
    svg = tmp_path / "o.svg"
    render_overlay(scene, png, svg)

    with Image.open(png) as img:
        assert img.size == (360, 640)
        assert img.mode == "RGBA"
        # opaque panel at the top-left corner, transparent below the panel
        assert img.getpixel((1, 1)) == (255, 255, 255, 255)
        assert img.getpixel((1, 639))[3] == 0
    assert svg.read_text(encoding="utf-8").startswith("<?xml")


def test_render_failure_cleans_up(tmp_path, mocker):
    scene = build_scene("Hello", "", 100, 200)
    mocker.patch.object(scene, "rasterize", side_effect=RuntimeError("boom"))
    png = tmp_path / "x.png"
    svg = tmp_path / "x.svg"

    with pytest.raises(OverlayError):
        render_overlay(scene, png, svg)
    assert not svg.exists()
    assert not png.exists()


def test_overlay_ratio_defaults_and_falls_back():
    base = {"videoFile": "v.mp4", "text": "hi"}
    assert parse_params("add-text-overlay", base).ratio == DEFAULT_PANEL_RATIO
    assert parse_params("add-text-overlay", {**base, "ratio": 0.45}).ratio == 0.45
    for bad in (0, 1, 1.5, -0.2, "half"):
        assert parse_params("add-text-overlay", {**base, "ratio": bad}).ratio == DEFAULT_PANEL_RATIO


@pytest.mark.parametrize(
    "position, expected_y",
    [
        ("top", round(1920 * 0.05)),
        ("center", round((1920 - round(1920 * 0.30)) / 2)),
        ("bottom", 1920 - round(1920 * 0.30) - round(1920 * 0.05)),
    ],
)
def test_banner_bar_follows_position(position, expected_y):
    layout = compute_layout(1080, 1920, BANNER, position)
    _, bar_y, _, bar_h = layout.background_box
    assert bar_y == expected_y
    assert layout.text_top == bar_y + round(layout.font_size * 1.5)

    scene = build_scene("Stay curious", "Someone", 1080, 1920, style="banner", position=position)
    assert scene.background_box[1] == expected_y
    assert bar_y + bar_h <= 1920
