from __future__ import annotations
import csv
import time
from typing import Any, Optional

import yaml

from .logging_io import save_trace_svg, write_parquet

COLUMNS = ["t_s", "v_set", "i_set", "v_meas", "i_meas", "p_meas", "output", "ovp", "ocp", "otp"]


def load_plan(plan_path: str) -> dict:
    with open(plan_path, "r") as f:
        return yaml.safe_load(f) or {}


def apply_step(psu: Any, step: dict) -> None:
    """Program one plan step: OVP, current, voltage (optionally ramped), output."""
    if "ovp" in step:
        psu.set_over_voltage_protection(float(step["ovp"]))
    if "current" in step:
        if step.get("current_ramp_rate") is not None:
            psu.ramp_current(float(step["current"]), float(step["current_ramp_rate"]))
        else:
            psu.set_current(float(step["current"]))
    if "voltage" in step:
        if step.get("ramp_rate") is not None:
            psu.ramp_voltage(float(step["voltage"]), float(step["ramp_rate"]))
        else:
            psu.set_voltage(float(step["voltage"]))
    psu.enable_output(bool(step.get("on", True)))


def run_plan(plan: dict | str, psu: Any, out_path: str, plot_path: Optional[str] = None) -> Optional[str]:
    """Execute a step plan against a connected supply, logging samples to out_path.

    Returns None when every step ran, otherwise the reason the plan aborted.
    The output is switched off on any safety abort.
    """
    if isinstance(plan, str):
        plan = load_plan(plan)

    steps = plan.get("steps", [])
    sample = float(plan.get("sample_rate_hz", 1.0))
    hold_default = float(plan.get("hold_s", 1.0))
    status_every_s = float(plan.get("status_every_s", 0.0))

    safety = plan.get("safety", {}) or {}
    _vmax = safety.get("vmax", None)
    vmax = float(_vmax) if _vmax is not None else None
    _imax = safety.get("imax", None)
    imax = float(_imax) if _imax is not None else None
    abort_on_trip = bool(safety.get("abort_on_trip", True))

    use_parquet = out_path.lower().endswith((".parquet", ".pq"))
    rows: list[dict] = []
    fcsv = None
    writer = None
    if not use_parquet:
        fcsv = open(out_path, "w", newline="")
        writer = csv.writer(fcsv)
        writer.writerow(COLUMNS)

    def record(rec: dict) -> None:
        rows.append(rec)
        if writer is not None:
            writer.writerow([rec[c] for c in COLUMNS])
            try:
                fcsv.flush()
            except Exception:
                pass

    def abort(reason: str) -> str:
        print(f"{reason}; turning off and aborting")
        psu.enable_output(False)
        return reason

    t0 = time.time()
    last_status = 0.0
    reason: Optional[str] = None
    try:
        for idx, step in enumerate(steps):
            step = step or {}
            hold = float(step.get("hold_s", hold_default))
            apply_step(psu, step)

            t_end = time.time() + hold
            while time.time() < t_end:
                vmeas = psu.measure_voltage()
                imeas = psu.measure_current()
                status = psu.get_status()
                now = time.time()
                record({
                    "t_s": now - t0,
                    "v_set": step.get("voltage"),
                    "i_set": step.get("current"),
                    "v_meas": vmeas,
                    "i_meas": imeas,
                    "p_meas": vmeas * imeas,
                    "output": status.output_enabled,
                    "ovp": status.over_voltage,
                    "ocp": status.over_current,
                    "otp": status.over_temperature,
                })
                if vmax is not None and vmeas > vmax:
                    reason = abort(f"vmax exceeded (v={vmeas} > {vmax})")
                    return reason
                if imax is not None and imeas > imax:
                    reason = abort(f"imax exceeded (i={imeas} > {imax})")
                    return reason
                if abort_on_trip and status.tripped:
                    reason = abort(f"protection tripped at step {idx}")
                    return reason
                # Periodic status to stdout
                if status_every_s > 0 and (now - last_status) >= status_every_s:
                    print(f"t={now - t0:6.1f}s step={idx} vset={step.get('voltage')} v={vmeas} i={imeas}")
                    last_status = now
                time.sleep(1.0 / max(sample, 1e-9))
        return reason
    finally:
        if use_parquet:
            write_parquet(rows, out_path)
        else:
            fcsv.close()
        if plot_path:
            save_trace_svg([r["t_s"] for r in rows], [r["v_meas"] for r in rows],
                           [r["i_meas"] for r in rows], plot_path,
                           extra_meta={"aborted": reason, "steps": len(steps)})
