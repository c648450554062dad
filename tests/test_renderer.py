"""Tests for the OpenCV effect renderer."""

import numpy as np
import pytest

from helpers import create_mock_frame

from facecloak.errors import RenderError
from facecloak.geometry import Region
from facecloak.renderer import EffectAssignment, EffectKind, OpenCVEffectRenderer, assign_effect

CENTER = Region(0.4, 0.4, 0.2, 0.2)


@pytest.fixture
def frame():
    return create_mock_frame(width=100, height=100, seed=7)


@pytest.fixture
def renderer():
    return OpenCVEffectRenderer(blur_radius=5, pixelate_divisions=4)


class TestEffects:

    @pytest.mark.parametrize("kind", [EffectKind.BLUR, EffectKind.PIXELATE])
    def test_region_changes(self, renderer, frame, kind):
        output = renderer.apply(frame, [EffectAssignment(CENTER, kind)])
        assert output.shape == frame.shape
        assert output.dtype == np.uint8
        assert not np.array_equal(output[45:55, 45:55], frame[45:55, 45:55])

    @pytest.mark.parametrize("kind", [EffectKind.BLUR, EffectKind.PIXELATE, EffectKind.EMOJI])
    def test_outside_region_unchanged(self, renderer, frame, kind):
        output = renderer.apply(frame, [EffectAssignment(CENTER, kind)])
        # The expanded face box covers roughly x 32..68, y 30..70
        assert np.array_equal(output[:20], frame[:20])
        assert np.array_equal(output[:, :20], frame[:, :20])
        assert np.array_equal(output[85:], frame[85:])

    def test_emoji_covers_face_with_default_font(self):
        frame = create_mock_frame(width=200, height=200, seed=3)
        output = OpenCVEffectRenderer().apply(frame, [EffectAssignment(CENTER, EffectKind.EMOJI)])
        face = (slice(80, 120), slice(80, 120))
        changed = np.any(output[face] != frame[face], axis=-1)
        assert changed.mean() > 0.95

    def test_pixelate_mask_fades_out_before_blur_mask(self, renderer, frame):
        # Pixel (31, 33) lies ~24.8px from the box centre: past the pixelate
        # outer radius (0.6 * 40) but inside the blur one (0.65 * 40)
        output = renderer.apply(frame, [EffectAssignment(CENTER, EffectKind.PIXELATE)])
        assert np.array_equal(output[31, 33], frame[31, 33])

    def test_input_frame_not_mutated(self, renderer, frame):
        original = frame.copy()
        renderer.apply(frame, [EffectAssignment(CENTER, EffectKind.BLUR)])
        assert np.array_equal(frame, original)

    def test_no_assignments_returns_copy(self, renderer, frame):
        output = renderer.apply(frame, [])
        assert np.array_equal(output, frame)
        assert output is not frame

    def test_region_partially_outside_frame(self, renderer, frame):
        output = renderer.apply(frame, [EffectAssignment(Region(0.9, 0.9, 0.3, 0.3), EffectKind.PIXELATE)])
        assert output.shape == frame.shape

    def test_multiple_regions(self, renderer, frame):
        regions = [Region(0.05, 0.05, 0.1, 0.1), Region(0.8, 0.8, 0.1, 0.1)]
        output = renderer.apply(frame, assign_effect(regions, EffectKind.BLUR))
        # Bottom-left region lands at the bottom of the array, top-right at the top
        assert not np.array_equal(output[88:93, 7:13], frame[88:93, 7:13])
        assert not np.array_equal(output[8:13, 83:88], frame[8:13, 83:88])

    def test_rejects_non_rgb_frame(self, renderer):
        with pytest.raises(RenderError):
            renderer.apply(np.zeros((10, 10), dtype=np.uint8), [EffectAssignment(CENTER)])

    def test_from_config(self, config):
        config.blur_radius = 11
        config.emoji = "X"
        config.emoji_backdrop = "black"
        renderer = OpenCVEffectRenderer.from_config(config)
        assert renderer.blur_radius == 11
        assert renderer.emoji == "X"
        assert renderer.emoji_backdrop == "black"
        assert (renderer.pixelate_mask_inner_ratio, renderer.pixelate_mask_outer_ratio) == (0.4, 0.6)


def test_assign_effect_keeps_order():
    regions = [Region(0.1, 0.1, 0.1, 0.1), Region(0.5, 0.5, 0.1, 0.1)]
    assignments = assign_effect(regions, EffectKind.PIXELATE)
    assert [a.region for a in assignments] == regions
    assert all(a.kind == EffectKind.PIXELATE for a in assignments)
