"""Tests for sinkmorph.core.projection: barycentric maps and plan materialisation."""
import numpy as np
import pytest

from sinkmorph.core.backends import ReferenceBackend
from sinkmorph.core.cost import squared_euclidean_cost
from sinkmorph.core.projection import (
    barycentric_map,
    barycentric_map_from_log,
    barycentric_map_products,
    materialize_log_plan,
    materialize_plan,
    plan_allowed,
)

X = np.array([[0.0, 0.0], [1.0, 0.0], [5.0, 5.0]])
Y = np.array([[0.0, 1.0], [2.0, 1.0]])


class TestBarycentricMap:
    def test_weighted_average(self):
        w = np.array([[1.0, 1.0], [3.0, 1.0], [0.0, 2.0]])
        out = barycentric_map(X, Y, w)
        np.testing.assert_allclose(out, [[1.0, 1.0], [0.5, 1.0], [2.0, 1.0]])

    def test_degenerate_row_is_identity(self):
        w = np.array([[1.0, 0.0], [1e-21, 0.0], [0.0, 0.0]])
        out = barycentric_map(X, Y, w)
        np.testing.assert_allclose(out[1:], X[1:])

    def test_non_finite_weights_ignored(self):
        w = np.array([[np.inf, 1.0], [np.nan, 1.0], [1.0, 1.0]])
        out = barycentric_map(X, Y, w)
        assert np.isfinite(out).all()
        np.testing.assert_allclose(out[0], Y[1])

    def test_log_version_matches_linear(self):
        rng = np.random.default_rng(0)
        w = rng.random((3, 2)) + 0.1
        np.testing.assert_allclose(barycentric_map_from_log(X, Y, np.log(w)), barycentric_map(X, Y, w), rtol=1e-12)

    def test_log_version_huge_weights(self):
        lw = np.array([[800.0, 800.0], [900.0, -np.inf], [-np.inf, -np.inf]])
        out = barycentric_map_from_log(X, Y, lw)
        np.testing.assert_allclose(out, [[1.0, 1.0], Y[0], X[2]])

    def test_log_version_tiny_mass_is_degenerate(self):
        lw = np.array([[-100.0, -100.0], [0.0, 0.0], [0.0, 0.0]])
        out = barycentric_map_from_log(X, Y, lw)
        np.testing.assert_allclose(out[0], X[0])

    def test_products_match_dense(self):
        v = np.array([0.3, 0.9])
        eps = 0.7
        dense = barycentric_map(X, Y, np.exp(-squared_euclidean_cost(X, Y) / eps) * v)
        out = barycentric_map_products(ReferenceBackend(), X, Y, v, eps)
        np.testing.assert_allclose(out, dense, rtol=1e-12)


class TestPlan:
    @pytest.mark.parametrize(("n", "m", "flag", "cells", "expected"), [
        (10, 10, True, 100, True),
        (10, 11, True, 100, False),
        (10, 10, False, 100, False),
        (1, 1, True, 0, False),
    ])
    def test_plan_allowed(self, n, m, flag, cells, expected):
        assert plan_allowed(n, m, flag, cells) is expected

    def test_linear_and_log_plans_agree(self):
        eps = 0.5
        cost = squared_euclidean_cost(X, Y)
        f = np.array([0.1, -0.2, 0.3])
        g = np.array([-0.5, 0.4])
        linear = materialize_plan(np.exp(f), np.exp(-cost / eps), np.exp(g))
        np.testing.assert_allclose(materialize_log_plan(f, g, cost, eps), linear, rtol=1e-12)
