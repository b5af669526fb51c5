import numpy as np
import pytest

from flow_state import (
    BoundaryCondition,
    ForceDirection,
    InflowProfile,
    SimulationParams,
    initialize_grid,
)


@pytest.mark.parametrize("n", [1, 4, 17, 64])
def test_grid_allocation_sizes(n):
    s = initialize_grid(n)

    assert s.u.size == (n + 1) * n
    assert s.v.size == n * (n + 1)
    assert s.u_next.shape == s.u.shape
    assert s.v_next.shape == s.v.shape
    assert s.fx.shape == s.u.shape and s.locked_fx.shape == s.u.shape
    assert s.fy.shape == s.v.shape and s.locked_fy.shape == s.v.shape
    for a in (s.p, s.div, s.omega, s.speed, s.grad_mag):
        assert a.size == n * n
    assert s.dx == 1.0 / n
    for a in s.arrays():
        assert np.all(a == 0.0)


@pytest.mark.parametrize("n", [0, -2, 3.0, True])
def test_invalid_resolution_rejected(n):
    with pytest.raises(ValueError):
        initialize_grid(n)


def test_flat_index_matches_row_major_layout():
    n = 4
    s = initialize_grid(n)
    s.u[2, 3] = 1.0
    s.v[4, 1] = 2.0
    assert s.u.ravel()[2 * (n + 1) + 3] == 1.0
    assert s.v.ravel()[4 * n + 1] == 2.0


def test_reset_zeroes_and_keeps_shapes():
    s = initialize_grid(6)
    shapes = [a.shape for a in s.arrays()]
    for a in s.arrays():
        a.fill(3.0)
    s.rng.next()

    s.reset()

    assert [a.shape for a in s.arrays()] == shapes
    for a in s.arrays():
        assert np.all(a == 0.0)
    assert s.rng.seed == 42
    assert s.dx == 1.0 / 6


def test_params_accept_control_labels():
    p = SimulationParams(inflow_profile="Parabolic", force_direction="Swirl", boundary_condition="No-slip")
    assert p.inflow_profile is InflowProfile.PARABOLIC
    assert p.force_direction is ForceDirection.SWIRL
    assert p.boundary_condition is BoundaryCondition.NO_SLIP
    assert np.isclose(p.nu, 0.01)


@pytest.mark.parametrize("re", [0.0, -10.0])
def test_params_reject_non_positive_reynolds(re):
    with pytest.raises(ValueError):
        SimulationParams(reynolds_number=re)


def test_params_reject_unknown_label():
    with pytest.raises(ValueError):
        SimulationParams(force_direction="Sideways")
