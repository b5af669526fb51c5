# run.py
# Interactive MAC flow viewer (matplotlib) + headless recording mode.
#
# Controls (interactive):
#   mouse move  cursor y (force band position)
#   space       lock / unlock current force field
#   p           pause / resume
#   n           single step while paused
#   m           cycle display mode
#   l           toggle log color scale
#   r           reset grid
#   side panel  Re, inflow, force, boundary, auto-CFL / dt, arrow density
#
# Env overrides: FLOW_N, FLOW_FRAMES, FLOW_HEADLESS=1, FLOW_MODE="Vorticity"

import csv
import json
import logging
import os
import time
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime

import numpy as np
import matplotlib.pyplot as plt
import matplotlib.animation as animation
from matplotlib.widgets import Button, CheckButtons, RadioButtons, Slider

from flow_session import FlowSession
from flow_state import BoundaryCondition, ForceDirection, InflowProfile, SimulationParams
from flow_view import DisplayMode, arrow_field, normalize_field, scalar_field


logger = logging.getLogger("flow")


# ============================================================
# Config
# ============================================================

@dataclass
class RunConfig:
    n: int = 128
    frames: int = 600
    headless: bool = False

    # display
    display_mode: DisplayMode = DisplayMode.VORTICITY
    arrow_density: float = 1.5
    log_scale: bool = True
    interval_ms: int = 16
    fps_window: int = 30

    # headless outputs
    out_root: str = "out"
    log_every: int = 50

    params: SimulationParams = field(default_factory=SimulationParams)


def config_from_env(cfg=None):
    cfg = cfg if cfg is not None else RunConfig()
    if "FLOW_N" in os.environ:
        cfg.n = int(os.environ["FLOW_N"])
    if "FLOW_FRAMES" in os.environ:
        cfg.frames = int(os.environ["FLOW_FRAMES"])
    if "FLOW_HEADLESS" in os.environ:
        cfg.headless = os.environ["FLOW_HEADLESS"].strip().lower() in ("1", "true", "yes")
    if "FLOW_MODE" in os.environ:
        cfg.display_mode = DisplayMode(os.environ["FLOW_MODE"])
    return cfg


def config_to_dict(cfg):
    d = asdict(cfg)
    d["display_mode"] = cfg.display_mode.value
    d["params"] = {k: (v.value if hasattr(v, "value") else v) for k, v in d["params"].items()}
    return d


# ============================================================
# Util
# ============================================================

def now_stamp():
    return datetime.now().strftime("%Y%m%d_%H%M%S")


def ensure_dir(p):
    os.makedirs(p, exist_ok=True)
    return p


def save_state(state, path):
    np.savez_compressed(path, u=state.u, v=state.v, p=state.p)


DIAG_FIELDS = ["frame", "t", "dt", "cfl", "kinetic_energy", "enstrophy", "max_divergence", "max_vorticity"]


def write_csv_header(path, fieldnames):
    with open(path, "w", newline="", encoding="utf-8") as f:
        w = csv.DictWriter(f, fieldnames=fieldnames)
        w.writeheader()


def append_csv_row(path, fieldnames, row):
    with open(path, "a", newline="", encoding="utf-8") as f:
        w = csv.DictWriter(f, fieldnames=fieldnames)
        w.writerow({k: row.get(k, "") for k in fieldnames})
        f.flush()


def diag_row(session):
    row = asdict(session.diagnostics)
    row.update({"frame": session.frame, "t": session.t})
    return row


# ============================================================
# Headless
# ============================================================

def run_headless(cfg):
    root = ensure_dir(os.path.join(cfg.out_root, now_stamp()))
    with open(os.path.join(root, "config.json"), "w", encoding="utf-8") as f:
        json.dump(config_to_dict(cfg), f, indent=2, ensure_ascii=False)

    csv_path = os.path.join(root, "diagnostics.csv")
    write_csv_header(csv_path, DIAG_FIELDS)

    session = FlowSession(cfg.n, params=cfg.params)

    t0 = time.perf_counter()
    for _ in range(cfg.frames):
        d = session.advance()
        append_csv_row(csv_path, DIAG_FIELDS, diag_row(session))
        if cfg.log_every and session.frame % cfg.log_every == 0:
            logger.info("[flow] frame %d/%d | t=%.3f dt=%.2e cfl=%.3f | KE=%.4e ens=%.4e",
                        session.frame, cfg.frames, session.t, d.dt, d.cfl, d.kinetic_energy, d.enstrophy)
    t1 = time.perf_counter()

    logger.info("[flow] %d frames in %.2fs (%.2f ms/frame)",
                session.frame, t1 - t0, 1e3 * (t1 - t0) / max(session.frame, 1))

    if not (np.all(np.isfinite(session.state.u)) and np.all(np.isfinite(session.state.v))):
        logger.error("[flow] velocity field not finite; state not saved (outputs in %s)", root)
        return session

    save_state(session.state, os.path.join(root, "state_last.npz"))
    logger.info("[flow] outputs in %s", root)
    return session


# ============================================================
# Controls
# ============================================================

# controls that change the picture only; everything else is a SimulationParams field
VIEW_CONTROLS = ("arrow_density", "log_scale")

# name -> (label, min, max, step)
SLIDERS = {
    "reynolds": ("log10 Re", 1.0, 7.0, 0.01),
    "inflow_velocity": ("inflow", 0.0, 2.0, 0.01),
    "force_magnitude": ("force", 0.0, 10.0, 0.1),
    "force_radius": ("radius", 5.0, 50.0, 1.0),
    "force_sigma": ("sigma", 0.01, 0.5, 0.01),
    "dt": ("fixed dt", 1e-4, 1e-2, 1e-4),
    "arrow_density": ("arrows", 0.5, 4.0, 0.1),
}


def new_view(cfg):
    return {
        "mode": cfg.display_mode,
        "playing": True,
        "arrow_density": cfg.arrow_density,
        "log_scale": cfg.log_scale,
    }


def apply_control(session, view, name, value):
    """Route one control change to the view or to ``session.update_params``.

    ``reynolds`` arrives as log10(Re) from its slider. Labels for the enum
    fields are coerced by ``SimulationParams``.
    """
    if name in VIEW_CONTROLS:
        view[name] = value
    elif name == "reynolds":
        session.update_params(reynolds_number=float(10.0 ** value))
    else:
        session.update_params(**{name: value})
    logger.debug("[flow] control %s=%s", name, value)


def step_paused(session, view):
    # single step only while paused; while playing the animation already advances
    if view["playing"]:
        return None
    return session.advance()


def handle_key(session, view, key):
    """Apply one keyboard shortcut. Returns False for keys with no binding."""
    if key == " ":
        session.toggle_lock()
    elif key == "p":
        view["playing"] = not view["playing"]
    elif key == "n":
        step_paused(session, view)
    elif key == "m":
        view["mode"] = view["mode"].next()
        logger.info("[flow] display mode: %s", view["mode"].value)
    elif key == "l":
        view["log_scale"] = not view["log_scale"]
    elif key == "r":
        session.reset()
    else:
        return False
    return True


def slider_init(session, view, name):
    if name == "reynolds":
        return float(np.log10(session.params.reynolds_number))
    if name in VIEW_CONTROLS:
        return view[name]
    return float(getattr(session.params, name))


def build_controls(fig, session, view):
    """Lay the control panel out on the right of ``fig`` and wire it up.

    The returned widgets must stay referenced or matplotlib drops their
    callbacks.
    """
    widgets = {}
    for k, (name, (label, lo, hi, inc)) in enumerate(SLIDERS.items()):
        sax = fig.add_axes([0.72, 0.93 - 0.04 * k, 0.22, 0.025])
        s = Slider(sax, label, lo, hi, valinit=min(hi, max(lo, slider_init(session, view, name))), valstep=inc)
        s.on_changed(lambda val, name=name: apply_control(session, view, name, float(val)))
        widgets[name] = s

    radios = {
        "inflow_profile": ([0.64, 0.44, 0.15, 0.18], InflowProfile),
        "force_direction": ([0.81, 0.48, 0.15, 0.14], ForceDirection),
        "boundary_condition": ([0.64, 0.31, 0.15, 0.11], BoundaryCondition),
    }
    for name, (rect, kind) in radios.items():
        labels = [m.value for m in kind]
        r = RadioButtons(fig.add_axes(rect), labels, active=labels.index(getattr(session.params, name).value))
        r.on_clicked(lambda label, name=name: apply_control(session, view, name, label))
        widgets[name] = r

    toggles = CheckButtons(
        fig.add_axes([0.81, 0.31, 0.15, 0.11]),
        ["auto CFL", "log scale"],
        [session.params.auto_cfl, view["log_scale"]],
    )

    def on_toggle(label):
        auto_cfl, log_scale = toggles.get_status()
        if label == "auto CFL":
            apply_control(session, view, "auto_cfl", bool(auto_cfl))
        else:
            apply_control(session, view, "log_scale", bool(log_scale))

    toggles.on_clicked(on_toggle)
    widgets["toggles"] = toggles

    play = Button(fig.add_axes([0.64, 0.20, 0.12, 0.05]), "Play/Pause")
    play.on_clicked(lambda _: handle_key(session, view, "p"))
    widgets["play"] = play

    step_btn = Button(fig.add_axes([0.78, 0.20, 0.08, 0.05]), "Step")
    step_btn.on_clicked(lambda _: step_paused(session, view))
    widgets["step"] = step_btn

    reset_btn = Button(fig.add_axes([0.88, 0.20, 0.08, 0.05]), "Reset")
    reset_btn.on_clicked(lambda _: session.reset())
    widgets["reset"] = reset_btn
    return widgets


# ============================================================
# Interactive
# ============================================================

def run_interactive(cfg):
    session = FlowSession(cfg.n, params=cfg.params)
    view = new_view(cfg)
    frame_times = deque(maxlen=cfg.fps_window)
    last = [time.perf_counter()]

    # p / r / l otherwise trigger matplotlib's pan, home and y-log navigation keys
    for keymap in ("keymap.pan", "keymap.home", "keymap.yscale"):
        plt.rcParams[keymap] = [k for k in plt.rcParams[keymap] if k not in ("p", "r", "l")]

    fig = plt.figure(figsize=(12, 7))
    ax = fig.add_axes([0.04, 0.06, 0.56, 0.86])
    im = ax.imshow(
        np.zeros((cfg.n, cfg.n)),
        origin="lower",
        extent=[0.0, 1.0, 0.0, 1.0],
        cmap="bwr",
        vmin=-1.0,
        vmax=1.0,
        interpolation="nearest",
    )
    cursor_line = ax.axhline(session.cursor.y, color="k", lw=1.0, ls="--")
    arrows = [None]
    ax.set_xlim(0.0, 1.0)
    ax.set_ylim(0.0, 1.0)

    def on_move(event):
        if event.inaxes is ax and event.ydata is not None:
            session.move_cursor(event.ydata)

    def on_key(event):
        handle_key(session, view, event.key)

    fig.canvas.mpl_connect("motion_notify_event", on_move)
    fig.canvas.mpl_connect("key_press_event", on_key)
    widgets = build_controls(fig, session, view)

    def update(_):
        if view["playing"]:
            session.advance()

        now = time.perf_counter()
        frame_times.append(now - last[0])
        last[0] = now
        fps = len(frame_times) / max(sum(frame_times), 1e-9)

        mode = view["mode"]
        if arrows[0] is not None:
            arrows[0].remove()
            arrows[0] = None

        if mode is DisplayMode.VELOCITY:
            im.set_data(np.zeros((cfg.n, cfg.n)))
            x, y, qu, qv = arrow_field(session.state, view["arrow_density"])
            if x.size:
                arrows[0] = ax.quiver(x, y, qu, qv, color="k", angles="xy", scale_units="xy", scale=25.0)
        else:
            im.set_data(normalize_field(scalar_field(session.state, mode), view["log_scale"]))

        cursor_line.set_ydata([session.cursor.y, session.cursor.y])
        cursor_line.set_color("r" if session.cursor.locked else "k")

        d = session.diagnostics
        ax.set_title(
            f"{mode.value} | t={session.t:.3f} dt={d.dt:.1e} CFL={d.cfl:.2f} | "
            f"KE={d.kinetic_energy:.3e} ens={d.enstrophy:.3e}\n"
            f"max|div|={d.max_divergence:.2e} max|w|={d.max_vorticity:.2e} | {fps:.0f} fps"
            f"{' | LOCKED' if session.cursor.locked else ''}{'' if view['playing'] else ' | PAUSED'}",
            fontsize=9,
        )
        return (im, cursor_line)

    ani = animation.FuncAnimation(fig, update, interval=cfg.interval_ms, blit=False, cache_frame_data=False)
    plt.show()
    return ani, widgets


def main():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    cfg = config_from_env()

    logger.info("=== Config ===")
    logger.info("grid=%dx%d frames=%d headless=%s mode=%s", cfg.n, cfg.n, cfg.frames, cfg.headless, cfg.display_mode.value)
    logger.info("params=%s", config_to_dict(cfg)["params"])

    if cfg.headless:
        run_headless(cfg)
    else:
        run_interactive(cfg)


if __name__ == "__main__":
    main()
