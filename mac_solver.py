# mac_solver.py
# MAC (staggered grid) 2D flow approximation for interactive use
# - Inflow profile on the left wall
# - Cursor-driven Gaussian force band (with lock snapshot)
# - Semi-Lagrangian advection (bilinear, clamped sampling)
# - Explicit weighted-Jacobi viscous blur
# - Wall conditions + global damping
# - Derived fields: divergence, vorticity, speed, |grad speed|, pressure proxy
# - Diagnostics + CFL-based adaptive dt
#
# No projection: p = -0.5 * div is a display proxy and never touches u, v.

import logging
import math

import numpy as np
from numba import njit

from flow_state import (
    BoundaryCondition,
    Diagnostics,
    ForceDirection,
    InflowProfile,
)


logger = logging.getLogger(__name__)

CFL_TARGET = 0.8
DT_MIN = 1e-4
DT_MAX = 1e-2
SPEED_EPS = 1e-6

DAMPING = 0.998
FORCE_BAND = 5
MAX_VISCOUS_ITERS = 3

# kernel dispatch codes
_RIGHTWARD = 0
_UPWARD = 1
_SWIRL = 2

_DIRECTION_CODES = {
    ForceDirection.RIGHTWARD: _RIGHTWARD,
    ForceDirection.UPWARD: _UPWARD,
    ForceDirection.SWIRL: _SWIRL,
}


# ============================================================
# Utils
# ============================================================

@njit(inline="always")
def clamp(x, a, b):
    if x < a:
        return a
    if x > b:
        return b
    return x


# ============================================================
# Bilinear sampling on MAC grids (domain = unit square)
# ============================================================

@njit(inline="always")
def bilinear_u(u, x, y, n):
    fx = x * n
    fy = y * n - 0.5

    i = int(np.floor(fx))
    j = int(np.floor(fy))
    tx = fx - i
    ty = fy - j

    i0 = clamp(i, 0, n)
    i1 = clamp(i + 1, 0, n)
    j0 = clamp(j, 0, n - 1)
    j1 = clamp(j + 1, 0, n - 1)

    v00 = u[j0, i0]
    v10 = u[j0, i1]
    v01 = u[j1, i0]
    v11 = u[j1, i1]

    a = v00 * (1.0 - tx) + v10 * tx
    b = v01 * (1.0 - tx) + v11 * tx
    return a * (1.0 - ty) + b * ty


@njit(inline="always")
def bilinear_v(v, x, y, n):
    fx = x * n - 0.5
    fy = y * n

    i = int(np.floor(fx))
    j = int(np.floor(fy))
    tx = fx - i
    ty = fy - j

    i0 = clamp(i, 0, n - 1)
    i1 = clamp(i + 1, 0, n - 1)
    j0 = clamp(j, 0, n)
    j1 = clamp(j + 1, 0, n)

    v00 = v[j0, i0]
    v10 = v[j0, i1]
    v01 = v[j1, i0]
    v11 = v[j1, i1]

    a = v00 * (1.0 - tx) + v10 * tx
    b = v01 * (1.0 - tx) + v11 * tx
    return a * (1.0 - ty) + b * ty


# ============================================================
# Inflow BC (left wall)
# ============================================================

def _finite_gaussian(rng):
    # Box-Muller gives inf/nan when the first uniform is exactly 0
    while True:
        g = rng.next_gaussian()
        if np.isfinite(g):
            return g


def inflow_profile(n, profile, t, rng=None, jitter=0.0):
    y = (np.arange(n, dtype=np.float64) + 0.5) / n
    profile = InflowProfile(profile)

    if profile is InflowProfile.PARABOLIC:
        prof = 4.0 * y * (1.0 - y)
    elif profile is InflowProfile.SINUSOIDAL:
        prof = np.sin(np.pi * y)
    elif profile is InflowProfile.NOISY:
        prof = 1.0 + 0.3 * np.sin(2.0 * np.pi * y + 2.0 * t) * np.cos(3.0 * t)
        if jitter > 0.0 and rng is not None:
            for j in range(n):
                prof[j] += jitter * _finite_gaussian(rng)
    else:
        prof = np.ones(n, dtype=np.float64)

    return prof


def apply_inflow_bc(state, params, t):
    prof = inflow_profile(state.n, params.inflow_profile, t,
                          rng=state.rng, jitter=params.inflow_jitter)
    state.u[:, 0] = params.inflow_velocity * prof
    state.v[:, 0] = 0.0


# ============================================================
# Forces: cursor band + lock snapshot
# ============================================================

@njit
def _force_band(fx, fy, n, cursor_y, magnitude, radius, sigma, direction):
    sigma2 = sigma * sigma
    i_max = min(FORCE_BAND, n)

    for j in range(n):
        y = (j + 0.5) / n
        dy = y - cursor_y
        dist2 = dy * dy

        if math.sqrt(dist2) > radius / n:
            continue

        weight = math.exp(-dist2 / (2.0 * sigma2 / (n * n)))

        for i in range(i_max + 1):
            if direction == _RIGHTWARD:
                fx[j, i] += magnitude * weight
            elif direction == _UPWARD:
                if i < n:
                    fy[j, i] += magnitude * weight
            else:
                fx[j, i] += -magnitude * weight * dy * n
                if i < n:
                    fy[j, i] += magnitude * weight * 0.1


def compose_forces(state, cursor, params):
    fx = state.fx
    fy = state.fy
    fx.fill(0.0)
    fy.fill(0.0)

    if cursor.locked:
        fx[:, :] = state.locked_fx
        fy[:, :] = state.locked_fy
        return fx, fy

    _force_band(
        fx, fy, state.n,
        float(cursor.y),
        float(params.force_magnitude),
        float(params.force_radius),
        float(params.force_sigma),
        _DIRECTION_CODES[ForceDirection(params.force_direction)],
    )
    return fx, fy


def apply_forces(state, fx, fy, dt):
    state.u += dt * fx
    state.v += dt * fy


def lock_forces(state):
    state.locked_fx[:, :] = state.fx
    state.locked_fy[:, :] = state.fy


def unlock_forces(state):
    state.locked_fx.fill(0.0)
    state.locked_fy.fill(0.0)


# ============================================================
# Timestep (CFL)
# ============================================================

def adaptive_timestep(state, params):
    """
    dt for the coming advection. Uses the speed field left by the previous
    step; the current one is not known until after advection.
    """
    if not params.auto_cfl:
        return float(params.dt)

    max_speed = float(np.max(state.speed))
    dt = CFL_TARGET * state.dx / (max_speed + SPEED_EPS)
    return float(max(DT_MIN, min(DT_MAX, dt)))


# ============================================================
# Advection (semi-Lagrangian, single backtrace)
# ============================================================

@njit
def advect_semi_lagrangian(u0, v0, u1, v1, dt, n):
    for j in range(n):
        y = (j + 0.5) / n
        for i in range(n + 1):
            x = i / n

            uvel = bilinear_u(u0, x, y, n)
            vvel = bilinear_v(v0, x, y, n)

            u1[j, i] = bilinear_u(u0, x - uvel * dt, y - vvel * dt, n)

    for j in range(n + 1):
        y = j / n
        for i in range(n):
            x = (i + 0.5) / n

            uvel = bilinear_u(u0, x, y, n)
            vvel = bilinear_v(v0, x, y, n)

            v1[j, i] = bilinear_v(v0, x - uvel * dt, y - vvel * dt, n)


def advect_velocity(state, dt):
    advect_semi_lagrangian(state.u, state.v, state.u_next, state.v_next, float(dt), state.n)
    np.copyto(state.u, state.u_next)
    np.copyto(state.v, state.v_next)


# ============================================================
# Diffusion (weighted Jacobi blur)
# ============================================================

@njit
def viscous_pass(u_in, v_in, u_out, v_out, alpha, n):
    w = 0.25 * alpha
    keep = 1.0 - alpha

    for j in range(n):
        u_out[j, 0] = u_in[j, 0]
        u_out[j, n] = u_in[j, n]
        for i in range(1, n):
            c = u_in[j, i]
            down = u_in[j - 1, i] if j > 0 else c
            up = u_in[j + 1, i] if j < n - 1 else c
            u_out[j, i] = keep * c + w * (u_in[j, i - 1] + u_in[j, i + 1] + down + up)

    for i in range(n):
        v_out[0, i] = v_in[0, i]
        v_out[n, i] = v_in[n, i]
    for j in range(1, n):
        for i in range(n):
            c = v_in[j, i]
            left = v_in[j, i - 1] if i > 0 else c
            right = v_in[j, i + 1] if i < n - 1 else c
            v_out[j, i] = keep * c + w * (left + right + v_in[j - 1, i] + v_in[j + 1, i])


def viscous_iterations(nu):
    return min(MAX_VISCOUS_ITERS, int(math.floor(nu * 100.0)))


def apply_viscous_blur(state, nu, iterations):
    alpha = nu * 0.1
    for _ in range(int(iterations)):
        viscous_pass(state.u, state.v, state.u_next, state.v_next, alpha, state.n)
        np.copyto(state.u, state.u_next)
        np.copyto(state.v, state.v_next)


# ============================================================
# Walls + damping
# ============================================================

def enforce_boundaries(state, bc):
    n = state.n
    u = state.u
    v = state.v

    if BoundaryCondition(bc) is BoundaryCondition.NO_SLIP:
        u[0, :] = 0.0
        u[n - 1, :] = 0.0

    v[:, 0] = 0.0
    v[:, n - 1] = 0.0

    u *= DAMPING
    v *= DAMPING


# ============================================================
# Derived fields (cell-centered)
# ============================================================

@njit
def _divergence(u, v, div, dx, n):
    invdx = 1.0 / dx
    for j in range(n):
        for i in range(n):
            div[j, i] = ((u[j, i + 1] - u[j, i]) + (v[j + 1, i] - v[j, i])) * invdx


@njit
def _vorticity(u, v, omega, dx, n):
    inv2dx = 1.0 / (2.0 * dx)
    for j in range(n):
        for i in range(n):
            vc = v[j, i]
            v_right = v[j, i + 1] if i < n - 1 else vc
            v_left = v[j, i - 1] if i > 0 else vc

            uc = u[j, i]
            u_up = u[j + 1, i] if j < n - 1 else uc
            u_down = u[j - 1, i] if j > 0 else uc

            omega[j, i] = (v_right - v_left) * inv2dx - (u_up - u_down) * inv2dx


@njit
def _speed(u, v, speed, n):
    for j in range(n):
        for i in range(n):
            uc = 0.5 * (u[j, i] + u[j, i + 1])
            vc = 0.5 * (v[j, i] + v[j + 1, i])
            speed[j, i] = math.sqrt(uc * uc + vc * vc)


@njit
def _grad_mag(speed, grad_mag, dx, n):
    inv2dx = 1.0 / (2.0 * dx)
    for j in range(n):
        for i in range(n):
            c = speed[j, i]
            left = speed[j, i - 1] if i > 0 else c
            right = speed[j, i + 1] if i < n - 1 else c
            down = speed[j - 1, i] if j > 0 else c
            up = speed[j + 1, i] if j < n - 1 else c

            grad_mag[j, i] = math.hypot((right - left) * inv2dx, (up - down) * inv2dx)


def compute_divergence(state):
    _divergence(state.u, state.v, state.div, state.dx, state.n)
    return state.div


def compute_vorticity(state):
    _vorticity(state.u, state.v, state.omega, state.dx, state.n)
    return state.omega


def compute_speed(state):
    _speed(state.u, state.v, state.speed, state.n)
    return state.speed


def compute_grad_mag(state):
    _grad_mag(state.speed, state.grad_mag, state.dx, state.n)
    return state.grad_mag


def compute_pressure_proxy(state):
    np.multiply(state.div, -0.5, out=state.p)
    return state.p


def compute_derived_fields(state):
    compute_divergence(state)
    compute_vorticity(state)
    compute_speed(state)
    compute_grad_mag(state)
    compute_pressure_proxy(state)


# ============================================================
# Diagnostics
# ============================================================

def update_diagnostics(state, dt):
    sp = state.speed.astype(np.float64)
    w = state.omega.astype(np.float64)
    d = state.div.astype(np.float64)

    max_speed = float(np.max(sp))

    return Diagnostics(
        dt=float(dt),
        cfl=max_speed * float(dt) / state.dx,
        kinetic_energy=float(np.mean(0.5 * sp * sp)),
        enstrophy=float(np.mean(0.5 * w * w)),
        max_divergence=float(np.max(np.abs(d))),
        max_vorticity=float(np.max(np.abs(w))),
    )


# ============================================================
# Public API
# ============================================================

def step(state, params, cursor, t):
    """
    Advance the grid by one frame.

    Order: inflow -> forces (fixed params.dt) -> dt choice -> advection ->
    viscous blur -> walls/damping -> derived fields -> diagnostics.

    The state is updated in place and returned with the diagnostics.
    """
    apply_inflow_bc(state, params, t)

    fx, fy = compose_forces(state, cursor, params)
    apply_forces(state, fx, fy, params.dt)

    dt = adaptive_timestep(state, params)

    advect_velocity(state, dt)

    nu = params.nu
    apply_viscous_blur(state, nu, viscous_iterations(nu))

    enforce_boundaries(state, params.boundary_condition)

    compute_derived_fields(state)
    diag = update_diagnostics(state, dt)

    if not (np.isfinite(diag.kinetic_energy) and np.isfinite(diag.enstrophy)):
        logger.warning("non-finite diagnostics at t=%.4f (dt=%.2e): KE=%s enstrophy=%s",
                       t, dt, diag.kinetic_energy, diag.enstrophy)

    logger.debug("t=%.4f dt=%.2e cfl=%.3f KE=%.4e ens=%.4e max|div|=%.3e max|w|=%.3e",
                 t, diag.dt, diag.cfl, diag.kinetic_energy, diag.enstrophy,
                 diag.max_divergence, diag.max_vorticity)

    return state, diag
