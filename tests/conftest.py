# conftest.py

import os

os.environ.setdefault("MPLBACKEND", "Agg")

import pytest

from flow_state import CursorState, SimulationParams, initialize_grid


@pytest.fixture
def grid():
    return initialize_grid(8)


@pytest.fixture
def still_params():
    """No inflow, no force, fixed dt: nothing drives the flow."""
    return SimulationParams(
        reynolds_number=1000.0,
        inflow_velocity=0.0,
        force_magnitude=0.0,
        auto_cfl=False,
        dt=0.01,
    )


@pytest.fixture
def cursor():
    return CursorState(y=0.5, locked=False)
