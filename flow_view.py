# flow_view.py
# Display-side views of the grid: scalar field selection, log/linear
# normalization to [-1, 1] and cell-centered arrows.

from enum import Enum

import numpy as np


LOG_ALPHA = 4.0
NORM_EPS = 1e-6
MIN_ARROW_SPEED = 0.001


class DisplayMode(str, Enum):
    PRESSURE = "Pressure"
    VELOCITY = "Velocity"
    DIVERGENCE = "Divergence"
    VORTICITY = "Vorticity"
    SPEED = "Speed"
    GRADIENT_MAGNITUDE = "Gradient Magnitude"

    def next(self):
        modes = list(DisplayMode)
        return modes[(modes.index(self) + 1) % len(modes)]


def scalar_field(state, mode):
    """Cell field shown for a scalar display mode (Velocity falls back to speed)."""
    mode = DisplayMode(mode)
    if mode is DisplayMode.PRESSURE:
        return state.p
    if mode is DisplayMode.DIVERGENCE:
        return state.div
    if mode is DisplayMode.VORTICITY:
        return state.omega
    if mode is DisplayMode.GRADIENT_MAGNITUDE:
        return state.grad_mag
    return state.speed


def normalize_log(values, max_mag):
    values = np.asarray(values, dtype=np.float64)
    denom = np.log1p(LOG_ALPHA * max_mag)
    if denom <= 0.0:
        return np.zeros_like(values)
    return np.sign(values) * np.log1p(LOG_ALPHA * np.abs(values)) / denom


def normalize_field(values, log_scale=True):
    values = np.asarray(values, dtype=np.float64)
    max_mag = float(np.max(np.abs(values))) if values.size else 0.0

    if log_scale:
        out = normalize_log(values, max_mag)
    else:
        out = values / (max_mag + NORM_EPS)
    return np.clip(out, -1.0, 1.0)


def cell_centered_velocity(state):
    uc = 0.5 * (state.u[:, :-1] + state.u[:, 1:])
    vc = 0.5 * (state.v[:-1, :] + state.v[1:, :])
    return uc, vc


def arrow_stride(density):
    return max(1, int(np.floor(8.0 / density)))


def arrow_field(state, density):
    """
    Subsampled arrow positions (cell centers, unit-square coords) and
    components normalized by the max cell speed. Near-still cells are dropped.
    """
    n = state.n
    uc, vc = cell_centered_velocity(state)
    speed = np.hypot(uc, vc)
    max_speed = float(np.max(speed)) if speed.size else 0.0

    s = arrow_stride(density)
    jj, ii = np.mgrid[0:n:s, 0:n:s]
    us = uc[::s, ::s]
    vs = vc[::s, ::s]
    keep = speed[::s, ::s] >= MIN_ARROW_SPEED

    x = (ii[keep] + 0.5) / n
    y = (jj[keep] + 0.5) / n
    scale = 1.0 / (max_speed + NORM_EPS)
    return x, y, us[keep] * scale, vs[keep] * scale
