"""Tests for the pydantic request/response models."""

import math

import numpy as np
import pytest
from pydantic import ValidationError

from sinkmorph.core.types import SinkhornResult, SolveMode
from sinkmorph.schemas import (
    AnnealScheduleModel,
    BlendRequest,
    BlendResponse,
    PointSetModel,
    SolveRequest,
    SolveResponse,
)


class TestPointSetModel:
    def test_pairs_and_flat_count(self):
        assert PointSetModel(positions=[[0, 0], [1, 0], [0, 1]]).point_count() == 3
        assert PointSetModel(positions=[0, 0, 1, 0]).point_count() == 2

    def test_to_core_uniform_weights(self):
        ps = PointSetModel(positions=[[0, 0], [1, 0]]).to_core()
        assert len(ps) == 2
        np.testing.assert_allclose(ps.weights, [0.5, 0.5])

    def test_to_core_flat_with_weights(self):
        ps = PointSetModel(positions=[0, 0, 2, 2], weights=[0.25, 0.75]).to_core()
        np.testing.assert_allclose(ps.positions, [[0, 0], [2, 2]])

    def test_to_core_rejects_bad_weights(self):
        with pytest.raises(ValueError):
            PointSetModel(positions=[[0, 0], [1, 0]], weights=[0.5, 0.2]).to_core()


class TestRequests:
    def test_solve_request_defaults(self):
        req = SolveRequest(
            source={"positions": [[0, 0]]},
            target={"positions": [[1, 1]]},
        )
        assert req.mode is SolveMode.DIRECT
        assert req.epsilon is None
        assert req.compute_plan is False

    def test_solve_request_mode_from_string(self):
        req = SolveRequest(
            mode="log_domain",
            source={"positions": [[0, 0]]},
            target={"positions": [[1, 1]]},
        )
        assert req.mode is SolveMode.LOG_DOMAIN

    def test_solve_request_rejects_non_positive_epsilon(self):
        with pytest.raises(ValidationError):
            SolveRequest(
                source={"positions": [[0, 0]]},
                target={"positions": [[1, 1]]},
                epsilon=0.0,
            )

    def test_blend_request_requires_target(self):
        with pytest.raises(ValidationError):
            BlendRequest(source={"positions": [[0, 0]]}, targets=[])

    def test_blend_request_rejects_negative_weight(self):
        with pytest.raises(ValidationError):
            BlendRequest(
                source={"positions": [[0, 0]]},
                targets=[{"positions": [[1, 1]], "weight": -1.0}],
            )

    def test_schedule_to_core(self):
        sched = AnnealScheduleModel(start=0.5, end=0.05, steps=3).to_core()
        values = list(sched.values())
        assert len(values) == 3
        assert values[0] == pytest.approx(0.5)


class TestResponses:
    def test_solve_response_with_plan(self):
        plan = np.array([[0.5, 0.0], [0.0, 0.5]])
        result = SinkhornResult(
            displacement_map=np.array([[1.0, 2.0], [3.0, 4.0]]),
            iterations=12,
            residual=1e-10,
            plan=plan,
        )
        resp = SolveResponse.from_result(result)
        assert resp.displacement_map == [[1.0, 2.0], [3.0, 4.0]]
        assert resp.plan == [[0.5, 0.0], [0.0, 0.5]]
        assert resp.plan_rows == 2
        assert resp.plan_cols == 2
        assert resp.cancelled is False

    def test_solve_response_without_plan(self):
        result = SinkhornResult(
            displacement_map=np.zeros((3, 2)), iterations=1, residual=0.5,
        )
        resp = SolveResponse.from_result(result)
        assert resp.plan is None
        assert resp.plan_rows is None

    def test_non_finite_residual_reported_as_null(self):
        result = SinkhornResult(
            displacement_map=np.zeros((1, 2)), iterations=0, residual=math.inf, cancelled=True,
        )
        resp = BlendResponse.from_result(result)
        assert resp.residual is None
        assert resp.cancelled is True
        assert resp.model_dump()["residual"] is None
