"""Tests for sinkmorph.core.types: PointSet, SinkhornParams, AnnealSchedule."""
import numpy as np
import pytest

from sinkmorph.core.types import AnnealSchedule, PointSet, SinkhornParams, SinkhornResult, SolveMode


class TestPointSet:
    def test_accepts_pairs(self):
        ps = PointSet(positions=[[0.0, 0.0], [1.0, 2.0]], weights=[0.25, 0.75])
        assert len(ps) == 2
        assert ps.positions.shape == (2, 2)

    def test_accepts_flat_layout(self):
        ps = PointSet(positions=[0.0, 0.0, 1.0, 2.0], weights=[0.5, 0.5])
        np.testing.assert_array_equal(ps.positions, [[0.0, 0.0], [1.0, 2.0]])
        np.testing.assert_array_equal(ps.flat_positions(), [0.0, 0.0, 1.0, 2.0])

    def test_arrays_are_read_only(self):
        ps = PointSet.uniform(np.zeros((3, 2)))
        with pytest.raises(ValueError):
            ps.positions[0, 0] = 1.0
        with pytest.raises(ValueError):
            ps.weights[0] = 1.0

    def test_copies_input(self):
        src = np.zeros((2, 2))
        ps = PointSet.uniform(src)
        src[0, 0] = 5.0
        assert ps.positions[0, 0] == 0.0

    def test_uniform_weights(self):
        ps = PointSet.uniform(np.zeros((4, 2)))
        np.testing.assert_allclose(ps.weights, 0.25)

    def test_rejects_empty(self):
        with pytest.raises(ValueError, match="at least one point"):
            PointSet(positions=np.zeros((0, 2)), weights=np.zeros(0))

    def test_rejects_length_mismatch(self):
        with pytest.raises(ValueError, match="mismatch"):
            PointSet(positions=np.zeros((3, 2)), weights=[0.5, 0.5])

    def test_rejects_bad_flat_length(self):
        with pytest.raises(ValueError, match="flat positions"):
            PointSet(positions=[0.0, 1.0, 2.0], weights=[0.5, 0.5])

    def test_rejects_non_positive_weight(self):
        with pytest.raises(ValueError, match="strictly positive"):
            PointSet(positions=np.zeros((2, 2)), weights=[1.0, 0.0])

    def test_rejects_unnormalised_weights(self):
        with pytest.raises(ValueError, match="sum to 1"):
            PointSet(positions=np.zeros((2, 2)), weights=[0.5, 0.6])

    def test_tolerates_small_sum_error(self):
        ps = PointSet(positions=np.zeros((2, 2)), weights=[0.5, 0.500001])
        assert len(ps) == 2

    def test_small_sum_error_is_rescaled(self):
        ps = PointSet(positions=np.zeros((2, 2)), weights=[0.500004, 0.500004])
        assert ps.weights.sum() == pytest.approx(1.0, abs=1e-15)
        np.testing.assert_allclose(ps.weights, [0.5, 0.5], atol=1e-15)

    def test_non_finite_positions_pass_through(self):
        ps = PointSet.uniform(np.array([[np.nan, 0.0]]))
        assert np.isnan(ps.positions[0, 0])


class TestSinkhornParams:
    def test_defaults(self):
        p = SinkhornParams(epsilon=0.1, max_iter=10, tol=1e-6)
        assert p.compute_plan is False
        assert p.plan_max_cells == 65536

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"epsilon": 0.0, "max_iter": 10, "tol": 1e-6},
            {"epsilon": -1.0, "max_iter": 10, "tol": 1e-6},
            {"epsilon": 0.1, "max_iter": 0, "tol": 1e-6},
            {"epsilon": 0.1, "max_iter": 10, "tol": 0.0},
            {"epsilon": 0.1, "max_iter": 10, "tol": 1e-6, "plan_max_cells": -1},
        ],
    )
    def test_rejects_invalid(self, kwargs):
        with pytest.raises(ValueError):
            SinkhornParams(**kwargs)

    def test_with_epsilon_keeps_other_fields(self):
        p = SinkhornParams(epsilon=0.1, max_iter=7, tol=1e-4, compute_plan=True, plan_max_cells=9)
        q = p.with_epsilon(0.5)
        assert q.epsilon == 0.5
        assert (q.max_iter, q.tol, q.compute_plan, q.plan_max_cells) == (7, 1e-4, True, 9)


class TestAnnealSchedule:
    def test_linear_values(self):
        values = list(AnnealSchedule(start=1.0, end=0.2, steps=5).values())
        assert values == pytest.approx([1.0, 0.8, 0.6, 0.4, 0.2])

    def test_single_step_yields_start(self):
        assert list(AnnealSchedule(start=0.3, end=0.1, steps=1).values()) == [0.3]

    def test_rejects_zero_steps(self):
        with pytest.raises(ValueError):
            AnnealSchedule(start=0.3, end=0.1, steps=0)

    def test_rejects_non_positive_epsilon(self):
        with pytest.raises(ValueError):
            AnnealSchedule(start=0.3, end=0.0, steps=2)


class TestSinkhornResult:
    def test_plan_shape(self):
        r = SinkhornResult(displacement_map=np.zeros((2, 2)), iterations=1, residual=0.0, plan=np.zeros((2, 3)))
        assert r.plan_shape == (2, 3)

    def test_plan_shape_none(self):
        r = SinkhornResult(displacement_map=np.zeros((2, 2)), iterations=1, residual=0.0)
        assert r.plan_shape is None


def test_solve_mode_values():
    assert SolveMode("direct") is SolveMode.DIRECT
    assert SolveMode("log_domain") is SolveMode.LOG_DOMAIN
    with pytest.raises(ValueError):
        SolveMode("linear")
