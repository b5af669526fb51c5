# flow_session.py
# Single-owner driver around the solver: keeps the grid, parameters, cursor
# and elapsed time together and turns UI events into solver calls.

import dataclasses
import logging

from flow_state import CursorState, Diagnostics, SimulationParams, initialize_grid
from mac_solver import lock_forces, step, unlock_forces


logger = logging.getLogger(__name__)


class FlowSession:
    def __init__(self, n=128, params=None, cursor=None):
        self.state = initialize_grid(n)
        self.params = params if params is not None else SimulationParams()
        self.cursor = cursor if cursor is not None else CursorState()
        self.t = 0.0
        self.frame = 0
        self.diagnostics = Diagnostics(dt=self.params.dt)

    def advance(self):
        _, diag = step(self.state, self.params, self.cursor, self.t)
        self.diagnostics = diag
        self.t += diag.dt
        self.frame += 1
        return diag

    def move_cursor(self, y):
        self.cursor.y = min(1.0, max(0.0, float(y)))

    def toggle_lock(self):
        # edge-triggered: snapshot on engage, clear on release
        locked = not self.cursor.locked
        if locked:
            lock_forces(self.state)
        else:
            unlock_forces(self.state)
        self.cursor.locked = locked
        logger.info("force lock %s at y=%.3f", "engaged" if locked else "released", self.cursor.y)
        return locked

    def update_params(self, **changes):
        self.params = dataclasses.replace(self.params, **changes)
        return self.params

    def reset(self):
        self.state.reset()
        self.cursor.locked = False
        self.t = 0.0
        self.frame = 0
        self.diagnostics = Diagnostics(dt=self.params.dt)
