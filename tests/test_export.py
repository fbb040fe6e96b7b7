"""
Tests for replaying display-resolution edits at export resolution.
"""

import logging

import cv2
import numpy as np
import pytest

from retoucher.compositor import Compositor, RenderInputs
from retoucher.export import (
    EXPORT_PRESETS,
    batch_presets,
    crop_to_preset,
    draw_watermark,
    finish_export,
    fit_to_box,
    render_at_resolution,
    rescale_inputs,
)
from retoucher.liquify import DisplacementField
from retoucher.models import BodyAnchors, ExportSettings, FaceAdjustments, LiquifyStroke, PointModel

from conftest import make_face_landmarks


def _display_inputs(image):
    field = DisplacementField.zeros(100, 100).stroke(
        LiquifyStroke(x=50, y=50, dx=4.0, dy=0.0, radius=20, strength=100)
    )
    skin = np.zeros((100, 100), dtype=np.float32)
    skin[40:60, 40:60] = 0.6
    return RenderInputs(
        image=image,
        landmarks=make_face_landmarks(cx=50, cy=50, scale=30),
        face=FaceAdjustments(smallFace=40),
        anchors=BodyAnchors(chest=PointModel(x=50, y=80)),
        skin_mask=skin,
        privacy_mask=np.zeros((100, 100), dtype=np.float32),
        liquify=field,
    )


class TestRescaleInputs:
    """Every resolution-bound input is moved to the target size."""

    def test_everything_scales_by_ratio(self, textured_image):
        display = cv2.resize(textured_image, (100, 100), interpolation=cv2.INTER_AREA)
        inputs = _display_inputs(display)

        scaled = rescale_inputs(inputs, textured_image, 2.0)

        assert scaled.image is textured_image
        np.testing.assert_allclose(scaled.landmarks[:, :2], inputs.landmarks[:, :2] * 2)
        assert scaled.anchors.chest == PointModel(x=100, y=160)
        assert scaled.skin_mask.shape == (200, 200)
        assert set(np.unique(scaled.skin_mask)) <= {0.0, np.float32(0.6)}
        assert scaled.liquify.dx.shape == (200, 200)
        assert scaled.liquify.dx.max() == pytest.approx(inputs.liquify.dx.max() * 2, rel=0.05)
        assert scaled.field_scale == 2.0
        # adjustment objects travel unchanged
        assert scaled.face is inputs.face

    def test_empty_buffers_are_dropped(self, textured_image):
        display = textured_image[:100, :100].copy()
        inputs = _display_inputs(display)

        scaled = rescale_inputs(inputs, textured_image, 2.0)

        assert scaled.privacy_mask is None
        inputs.liquify = DisplacementField.zeros(100, 100)
        assert rescale_inputs(inputs, textured_image, 2.0).liquify is None

    def test_display_inputs_untouched(self, textured_image):
        inputs = _display_inputs(textured_image[:100, :100].copy())
        before = inputs.landmarks.copy()

        rescale_inputs(inputs, textured_image, 2.0)

        np.testing.assert_array_equal(inputs.landmarks, before)
        assert inputs.liquify.dx.shape == (100, 100)


class TestRenderAtResolution:
    """Export output tracks the preview."""

    def test_logs_export_size(self, textured_image, caplog):
        with caplog.at_level(logging.INFO, logger="retoucher.export"):
            render_at_resolution(textured_image, RenderInputs(image=textured_image[::2, ::2].copy()), 2.0)

        assert "Rendering export at 200x200 (ratio 2.000)" in caplog.text

    def test_ratio_one_matches_preview(self, textured_image):
        inputs = _display_inputs(textured_image[:100, :100].copy())

        preview = Compositor().render(inputs)
        exported = render_at_resolution(inputs.image, inputs, 1.0)

        np.testing.assert_array_equal(preview, exported)

    def test_upscaled_export_resembles_preview(self):
        ys, xs = np.mgrid[0:200, 0:200].astype(np.float32)
        original = np.empty((200, 200, 4), dtype=np.uint8)
        original[..., 0] = np.clip(128 + 90 * np.sin(xs / 15.0), 0, 255)
        original[..., 1] = np.clip(128 + 90 * np.cos(ys / 17.0), 0, 255)
        original[..., 2] = 90
        original[..., 3] = 255
        display = cv2.resize(original, (100, 100), interpolation=cv2.INTER_AREA)
        inputs = _display_inputs(display)

        preview = Compositor().render(inputs)
        exported = render_at_resolution(original, inputs, 2.0)

        assert exported.shape == (200, 200, 4)
        shrunk = cv2.resize(exported, (100, 100), interpolation=cv2.INTER_AREA)
        diff = np.abs(shrunk.astype(np.int16) - preview.astype(np.int16))[..., :3]
        assert diff.mean() < 4


class TestFitToBox:
    """Aspect-preserving output resize."""

    def test_landscape_into_square(self):
        image = np.zeros((100, 200, 4), dtype=np.uint8)
        assert fit_to_box(image, 50, 50).shape == (25, 50, 4)

    def test_portrait_into_wide_box(self):
        image = np.zeros((300, 100, 4), dtype=np.uint8)
        assert fit_to_box(image, 400, 150).shape == (150, 50, 4)

    def test_same_size_and_invalid_box(self):
        image = np.zeros((10, 20, 4), dtype=np.uint8)
        assert fit_to_box(image, 20, 10) is image
        assert fit_to_box(image, 0, 10) is image


def _marked(**values):
    return ExportSettings(**{"watermarkEnabled": True, "watermarkText": "demo", "watermarkOpacity": 100, **values})


class TestWatermark:
    """Text overlay drawn after the export resize."""

    def test_disabled_or_blank_is_a_no_op(self, gray_image):
        assert draw_watermark(gray_image, ExportSettings(watermarkText="demo")) is gray_image
        assert draw_watermark(gray_image, _marked(watermarkText="   ")) is gray_image

    def test_bottom_right_placement(self, gray_image):
        out = draw_watermark(gray_image, _marked())

        changed = np.any(out != gray_image, axis=2)
        assert changed[100:, 100:].any()
        assert not changed[:100, :].any()
        assert not changed[:, :100].any()
        np.testing.assert_array_equal(out[..., 3], gray_image[..., 3])
        # white fill and black stroke both show
        assert out[..., 0].max() > 200
        assert out[..., 0].min() < 64

    @pytest.mark.parametrize(
        "position, region",
        [
            ("topLeft", (slice(0, 100), slice(0, 100))),
            ("topRight", (slice(0, 100), slice(100, 200))),
            ("bottomLeft", (slice(100, 200), slice(0, 100))),
            ("center", (slice(60, 140), slice(40, 160))),
        ],
    )
    def test_positions(self, gray_image, position, region):
        out = draw_watermark(gray_image, _marked(watermarkPosition=position))

        changed = np.any(out != gray_image, axis=2)
        assert changed[region].sum() == changed.sum() > 0

    def test_opacity_scales_the_mark(self, gray_image):
        solid = draw_watermark(gray_image, _marked()).astype(int)
        faint = draw_watermark(gray_image, _marked(watermarkOpacity=25)).astype(int)
        invisible = draw_watermark(gray_image, _marked(watermarkOpacity=0))

        assert np.abs(faint - 128).max() < np.abs(solid - 128).max()
        np.testing.assert_array_equal(invisible, gray_image)

    def test_drawn_on_a_copy(self, gray_image):
        before = gray_image.copy()
        draw_watermark(gray_image, _marked())
        np.testing.assert_array_equal(gray_image, before)

    def test_finish_resizes_before_marking(self, gray_image):
        out = finish_export(gray_image, _marked(watermarkSize=10), resize=(50, 50))

        assert out.shape == (50, 50, 4)
        assert np.any(out[..., :3] != 128)


class TestPresets:
    """Centre-cropped social sizes."""

    def test_exact_sizes(self, textured_image):
        results = batch_presets(textured_image, ExportSettings())

        assert set(results) == {"twitter", "fanclub", "instagram"}
        for name, (width, height) in EXPORT_PRESETS.items():
            assert results[name].shape == (height, width, 4)

    def test_wide_source_is_cropped_at_the_sides(self):
        # left quarter red, middle half green, right quarter blue
        image = np.zeros((200, 400, 4), dtype=np.uint8)
        image[..., 3] = 255
        image[:, :100, 0] = 255
        image[:, 100:300, 1] = 255
        image[:, 300:, 2] = 255

        square = crop_to_preset(image, 1080, 1080)

        assert square.shape == (1080, 1080, 4)
        assert (square[..., 1] == 255).all()
        assert (square[..., 0] == 0).all()

    def test_tall_source_is_cropped_top_and_bottom(self):
        image = np.zeros((400, 200, 4), dtype=np.uint8)
        image[:50] = 255
        image[50:350, :, 3] = 255

        wide = crop_to_preset(image, 1200, 675)

        assert wide.shape == (675, 1200, 4)
        assert (wide[..., 0] == 0).all()

    def test_watermark_applies_to_every_preset(self, gray_image):
        for result in batch_presets(gray_image, _marked()).values():
            assert result[..., 0].max() > 200
