"""Tests for sinkmorph.core.interpolate."""
import numpy as np
import pytest

from sinkmorph.core.interpolate import displacement_interpolate, interpolation_frames

X = np.array([[0.0, 0.0], [1.0, 0.0]])
T = np.array([[2.0, 2.0], [4.0, 2.0]])


class TestDisplacementInterpolate:
    def test_midpoint(self):
        np.testing.assert_allclose(displacement_interpolate(X, T, 0.5), [[1.0, 1.0], [2.5, 1.0]])

    def test_endpoints(self):
        np.testing.assert_array_equal(displacement_interpolate(X, T, 0.0), X)
        np.testing.assert_array_equal(displacement_interpolate(X, T, 1.0), T)

    @pytest.mark.parametrize("t", [-0.1, 1.5, float("nan")])
    def test_rejects_out_of_range(self, t):
        with pytest.raises(ValueError):
            displacement_interpolate(X, T, t)

    def test_rejects_shape_mismatch(self):
        with pytest.raises(ValueError, match="shape mismatch"):
            displacement_interpolate(X, T[:1], 0.5)


class TestInterpolationFrames:
    def test_frame_count_and_ends(self):
        frames = list(interpolation_frames(X, T, 5))
        assert len(frames) == 5
        np.testing.assert_array_equal(frames[0], X)
        np.testing.assert_array_equal(frames[-1], T)
        np.testing.assert_allclose(frames[2], displacement_interpolate(X, T, 0.5))

    def test_single_frame_is_target(self):
        frames = list(interpolation_frames(X, T, 1))
        assert len(frames) == 1
        np.testing.assert_array_equal(frames[0], T)

    def test_rejects_zero_frames(self):
        with pytest.raises(ValueError):
            list(interpolation_frames(X, T, 0))
