import csv
import json
import logging
import os

import matplotlib.pyplot as plt
import numpy as np
import pytest

import run
from flow_session import FlowSession
from flow_state import BoundaryCondition, ForceDirection, InflowProfile, SimulationParams
from flow_view import DisplayMode
from run import (
    RunConfig,
    apply_control,
    build_controls,
    config_from_env,
    config_to_dict,
    handle_key,
    new_view,
    run_headless,
    step_paused,
)


@pytest.fixture
def session():
    return FlowSession(8)


@pytest.fixture
def view():
    return new_view(RunConfig())


def test_config_from_env(monkeypatch):
    monkeypatch.setenv("FLOW_N", "32")
    monkeypatch.setenv("FLOW_FRAMES", "7")
    monkeypatch.setenv("FLOW_HEADLESS", "yes")
    monkeypatch.setenv("FLOW_MODE", "Speed")
    cfg = config_from_env()
    assert cfg.n == 32
    assert cfg.frames == 7
    assert cfg.headless is True
    assert cfg.display_mode is DisplayMode.SPEED


def test_config_to_dict_is_json_ready():
    d = config_to_dict(RunConfig(params=SimulationParams(force_direction="Swirl")))
    text = json.dumps(d)
    assert '"Swirl"' in text
    assert d["display_mode"] == "Vorticity"


# ============================================================
# Headless
# ============================================================

def test_run_headless_writes_outputs(tmp_path):
    cfg = RunConfig(n=12, frames=5, headless=True, out_root=str(tmp_path), log_every=2)
    session = run_headless(cfg)
    assert session.frame == 5

    (root,) = [p for p in tmp_path.iterdir() if p.is_dir()]
    assert (root / "config.json").exists()

    with open(root / "diagnostics.csv", newline="", encoding="utf-8") as f:
        rows = list(csv.DictReader(f))
    assert [int(r["frame"]) for r in rows] == [1, 2, 3, 4, 5]
    assert float(rows[-1]["t"]) == np.float64(session.t)

    data = np.load(os.path.join(root, "state_last.npz"))
    assert data["u"].shape == (12, 13)
    assert data["v"].shape == (13, 12)
    assert data["p"].shape == (12, 12)


class BlowUpSession(FlowSession):
    """Leaves an infinite face velocity behind after every step."""

    def advance(self):
        d = super().advance()
        self.state.u[3, 3] = np.inf
        return d


def test_run_headless_skips_state_when_velocity_not_finite(tmp_path, monkeypatch, caplog):
    monkeypatch.setattr(run, "FlowSession", BlowUpSession)
    cfg = RunConfig(n=8, frames=3, headless=True, out_root=str(tmp_path), log_every=0)

    with caplog.at_level(logging.ERROR, logger="flow"):
        session = run_headless(cfg)

    assert session.frame == 3
    (root,) = [p for p in tmp_path.iterdir() if p.is_dir()]
    assert (root / "config.json").exists()
    assert (root / "diagnostics.csv").exists()
    assert not (root / "state_last.npz").exists()
    assert any(r.levelno == logging.ERROR and "not finite" in r.getMessage() for r in caplog.records)


# ============================================================
# Controls
# ============================================================

def test_new_view_starts_from_config():
    cfg = RunConfig(display_mode=DisplayMode.SPEED, arrow_density=2.5, log_scale=False)
    v = new_view(cfg)
    assert v == {"mode": DisplayMode.SPEED, "playing": True, "arrow_density": 2.5, "log_scale": False}


def test_apply_control_updates_params(session, view):
    apply_control(session, view, "reynolds", 3.0)
    apply_control(session, view, "inflow_velocity", 1.25)
    apply_control(session, view, "inflow_profile", "Parabolic")
    apply_control(session, view, "force_magnitude", 4.0)
    apply_control(session, view, "force_radius", 12.0)
    apply_control(session, view, "force_sigma", 0.3)
    apply_control(session, view, "force_direction", "Upward")
    apply_control(session, view, "boundary_condition", "No-slip")
    apply_control(session, view, "auto_cfl", False)
    apply_control(session, view, "dt", 0.005)

    p = session.params
    assert p.reynolds_number == pytest.approx(1000.0)
    assert p.inflow_velocity == 1.25
    assert p.inflow_profile is InflowProfile.PARABOLIC
    assert (p.force_magnitude, p.force_radius, p.force_sigma) == (4.0, 12.0, 0.3)
    assert p.force_direction is ForceDirection.UPWARD
    assert p.boundary_condition is BoundaryCondition.NO_SLIP
    assert p.auto_cfl is False
    assert p.dt == 0.005

    # a fixed dt reaches the next step
    assert session.advance().dt == 0.005


def test_apply_control_goes_through_update_params(session, view, monkeypatch):
    calls = []
    original = session.update_params

    def spy(**changes):
        calls.append(changes)
        return original(**changes)

    monkeypatch.setattr(session, "update_params", spy)
    apply_control(session, view, "force_sigma", 0.2)
    apply_control(session, view, "reynolds", 2.0)
    assert calls == [{"force_sigma": 0.2}, {"reynolds_number": pytest.approx(100.0)}]


def test_view_controls_leave_params_alone(session, view):
    before = session.params
    apply_control(session, view, "arrow_density", 3.0)
    apply_control(session, view, "log_scale", False)
    assert view["arrow_density"] == 3.0
    assert view["log_scale"] is False
    assert session.params is before


def test_step_paused_only_advances_when_paused(session, view):
    assert step_paused(session, view) is None
    assert session.frame == 0

    view["playing"] = False
    d = step_paused(session, view)
    assert session.frame == 1
    assert session.diagnostics is d


def test_keys(session, view):
    assert handle_key(session, view, "n")
    assert session.frame == 0

    handle_key(session, view, "p")
    assert view["playing"] is False
    handle_key(session, view, "n")
    handle_key(session, view, "n")
    assert session.frame == 2

    handle_key(session, view, "l")
    assert view["log_scale"] is False

    mode = view["mode"]
    handle_key(session, view, "m")
    assert view["mode"] is mode.next()

    handle_key(session, view, " ")
    assert session.cursor.locked
    handle_key(session, view, "r")
    assert session.frame == 0 and not session.cursor.locked

    assert handle_key(session, view, "z") is False


def test_control_panel_widgets_drive_session(session, view):
    fig = plt.figure()
    try:
        widgets = build_controls(fig, session, view)
        assert widgets["reynolds"].val == pytest.approx(2.0)

        widgets["reynolds"].set_val(4.0)
        widgets["force_direction"].set_active(2)
        widgets["inflow_profile"].set_active(3)
        widgets["boundary_condition"].set_active(1)
        widgets["arrow_density"].set_val(3.0)
        widgets["toggles"].set_active(0)
        widgets["toggles"].set_active(1)

        p = session.params
        assert p.reynolds_number == pytest.approx(1e4)
        assert p.force_direction is ForceDirection.SWIRL
        assert p.inflow_profile is InflowProfile.NOISY
        assert p.boundary_condition is BoundaryCondition.NO_SLIP
        assert p.auto_cfl is False
        assert view["arrow_density"] == pytest.approx(3.0)
        assert view["log_scale"] is False
    finally:
        plt.close(fig)
