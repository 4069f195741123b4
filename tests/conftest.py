"""Shared test fixtures for the sinkmorph test suite."""
from dataclasses import replace

import numpy as np
import pytest

from sinkmorph.config import Settings
from sinkmorph.core.sampling import random_point_cloud
from sinkmorph.core.types import PointSet
from sinkmorph.services.solver_service import SolverService


def make_test_settings(**overrides) -> Settings:
    """Settings suitable for tests: plain-text logs, small limits."""
    base = Settings(log_level="WARNING", log_json=False, max_points=500)
    return replace(base, **overrides)


def unit_square() -> PointSet:
    """Four corners of the unit square with uniform mass."""
    return PointSet.uniform(np.array([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0], [1.0, 1.0]]))


def cloud(n: int, seed: int, shift: tuple[float, float] = (0.0, 0.0)) -> PointSet:
    """Annulus cloud translated by ``shift``."""
    base = random_point_cloud(n, seed=seed)
    return PointSet.uniform(base.positions + np.asarray(shift))


def point_payload(points: PointSet) -> dict:
    return {"positions": points.positions.tolist(), "weights": points.weights.tolist()}


@pytest.fixture
def settings() -> Settings:
    return make_test_settings()


@pytest.fixture
def service(settings) -> SolverService:
    return SolverService(settings)
