# flow_state.py
# Staggered (MAC) grid state + the parameter/cursor/diagnostics records
# exchanged with the driver.
#
# Layout (row-major, [j, i] = [y index, x index]):
#   u        (N, N+1)   vertical faces    x = i/N,        y = (j+0.5)/N
#   v        (N+1, N)   horizontal faces  x = (i+0.5)/N,  y = j/N
#   p, div, omega, speed, grad_mag  (N, N) cell centers

import logging
from dataclasses import dataclass, field
from enum import Enum

import numpy as np

from seeded_rng import SeededRNG


logger = logging.getLogger(__name__)

GRID_SEED = 42


class InflowProfile(str, Enum):
    UNIFORM = "Uniform"
    PARABOLIC = "Parabolic"
    SINUSOIDAL = "Sinusoidal"
    NOISY = "Noisy"


class ForceDirection(str, Enum):
    RIGHTWARD = "Rightward"
    UPWARD = "Upward"
    SWIRL = "Swirl"


class BoundaryCondition(str, Enum):
    FREE_SLIP = "Free-slip"
    NO_SLIP = "No-slip"


@dataclass(frozen=True)
class SimulationParams:
    reynolds_number: float = 100.0
    inflow_velocity: float = 0.5
    inflow_profile: InflowProfile = InflowProfile.UNIFORM
    force_magnitude: float = 2.0
    force_radius: float = 20.0
    force_sigma: float = 0.1
    force_direction: ForceDirection = ForceDirection.RIGHTWARD
    auto_cfl: bool = True
    dt: float = 0.001
    boundary_condition: BoundaryCondition = BoundaryCondition.FREE_SLIP

    # Gaussian jitter added to the Noisy profile (0 keeps it closed-form)
    inflow_jitter: float = 0.0

    def __post_init__(self):
        if not self.reynolds_number > 0:
            raise ValueError(f"reynolds_number must be > 0, got {self.reynolds_number}")
        # accept the plain labels used by the controls ("No-slip", "Swirl", ...)
        object.__setattr__(self, "inflow_profile", InflowProfile(self.inflow_profile))
        object.__setattr__(self, "force_direction", ForceDirection(self.force_direction))
        object.__setattr__(self, "boundary_condition", BoundaryCondition(self.boundary_condition))

    @property
    def nu(self) -> float:
        return 1.0 / self.reynolds_number


@dataclass
class CursorState:
    y: float = 0.5
    locked: bool = False


@dataclass(frozen=True)
class Diagnostics:
    dt: float = 0.0
    cfl: float = 0.0
    kinetic_energy: float = 0.0
    enstrophy: float = 0.0
    max_divergence: float = 0.0
    max_vorticity: float = 0.0


@dataclass
class GridState:
    n: int
    dx: float
    u: np.ndarray
    v: np.ndarray
    u_next: np.ndarray
    v_next: np.ndarray
    p: np.ndarray
    div: np.ndarray
    omega: np.ndarray
    speed: np.ndarray
    grad_mag: np.ndarray
    fx: np.ndarray
    fy: np.ndarray
    locked_fx: np.ndarray
    locked_fy: np.ndarray
    rng: SeededRNG = field(default_factory=lambda: SeededRNG(GRID_SEED))

    def arrays(self):
        return (
            self.u, self.v, self.u_next, self.v_next,
            self.p, self.div, self.omega, self.speed, self.grad_mag,
            self.fx, self.fy, self.locked_fx, self.locked_fy,
        )

    def reset(self):
        """Zero every buffer in place (shapes and dx are kept) and re-seed the RNG."""
        for a in self.arrays():
            a.fill(0.0)
        self.rng = SeededRNG(GRID_SEED)
        logger.info("grid %dx%d reset", self.n, self.n)


def initialize_grid(n: int, dtype=np.float32) -> GridState:
    if isinstance(n, bool) or not isinstance(n, (int, np.integer)) or n < 1:
        raise ValueError(f"grid resolution must be a positive integer, got {n!r}")
    n = int(n)

    u_shape = (n, n + 1)
    v_shape = (n + 1, n)
    c_shape = (n, n)

    state = GridState(
        n=n,
        dx=1.0 / n,
        u=np.zeros(u_shape, dtype=dtype),
        v=np.zeros(v_shape, dtype=dtype),
        u_next=np.zeros(u_shape, dtype=dtype),
        v_next=np.zeros(v_shape, dtype=dtype),
        p=np.zeros(c_shape, dtype=dtype),
        div=np.zeros(c_shape, dtype=dtype),
        omega=np.zeros(c_shape, dtype=dtype),
        speed=np.zeros(c_shape, dtype=dtype),
        grad_mag=np.zeros(c_shape, dtype=dtype),
        fx=np.zeros(u_shape, dtype=dtype),
        fy=np.zeros(v_shape, dtype=dtype),
        locked_fx=np.zeros(u_shape, dtype=dtype),
        locked_fy=np.zeros(v_shape, dtype=dtype),
    )
    logger.info("allocated MAC grid N=%d dx=%.5f", n, state.dx)
    return state
