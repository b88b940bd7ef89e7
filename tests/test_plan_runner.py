"""Step plans: programming order, sampling output, safety aborts."""

import base64
import csv
import json
import re

import pytest
import yaml

from psubench.plan_runner import COLUMNS, apply_step, run_plan


@pytest.fixture
def live(psu, transport):
    transport.script.update({
        "MEAS:VOLT?": "5.000",
        "MEAS:CURR?": "0.500",
        "OUTP?": "1",
        "STAT:QUES?": "0",
        "VOLT?": "0.000",
    })
    return psu


def _rows(path):
    with open(path, newline="") as f:
        return list(csv.DictReader(f))


class TestApplyStep:

    def test_order(self, live, transport):
        apply_step(live, {"ovp": 10, "current": 1, "voltage": 5})
        assert transport.writes == ["VOLT:PROT 10.000", "CURR 1.000", "VOLT 5.000", "OUTP ON"]

    def test_ramped_voltage(self, live, transport):
        apply_step(live, {"voltage": 1.0, "ramp_rate": 1.0, "on": False})
        assert transport.writes[0] == "VOLT?"
        assert transport.commands("VOLT ")[-1] == "VOLT 1.000"
        assert transport.writes[-1] == "OUTP OFF"


class TestRunPlan:

    def test_csv(self, live, tmp_path):
        out = tmp_path / "run.csv"
        plan = {"sample_rate_hz": 1000, "steps": [{"voltage": 5, "current": 1, "hold_s": 0.02}]}
        assert run_plan(plan, live, str(out)) is None
        rows = _rows(out)
        assert rows
        assert list(rows[0].keys()) == COLUMNS
        assert float(rows[0]["v_meas"]) == 5.0
        assert float(rows[0]["p_meas"]) == pytest.approx(2.5)
        assert rows[0]["output"] == "True"

    def test_plan_from_yaml_file(self, live, tmp_path):
        plan_path = tmp_path / "plan.yaml"
        plan_path.write_text(yaml.safe_dump({"steps": [{"voltage": 3, "hold_s": 0}, {"on": False, "hold_s": 0}]}))
        out = tmp_path / "run.csv"
        assert run_plan(str(plan_path), live, str(out)) is None
        assert _rows(out) == []
        assert live.output_enabled is False

    def test_vmax_abort(self, live, transport, tmp_path):
        transport.script["MEAS:VOLT?"] = "20.000"
        plan = {"safety": {"vmax": 16}, "steps": [{"voltage": 20, "hold_s": 5}]}
        reason = run_plan(plan, live, str(tmp_path / "run.csv"))
        assert reason and "vmax" in reason
        assert transport.writes[-1] == "OUTP OFF"
        assert len(_rows(tmp_path / "run.csv")) == 1

    def test_imax_abort(self, live, transport, tmp_path):
        transport.script["MEAS:CURR?"] = "4.000"
        plan = {"safety": {"imax": 3}, "steps": [{"current": 2, "hold_s": 5}]}
        assert "imax" in run_plan(plan, live, str(tmp_path / "run.csv"))

    def test_trip_abort(self, live, transport, tmp_path):
        transport.script["STAT:QUES?"] = "1"
        plan = {"steps": [{"voltage": 5, "hold_s": 5}, {"voltage": 6, "hold_s": 5}]}
        reason = run_plan(plan, live, str(tmp_path / "run.csv"))
        assert "protection tripped at step 0" == reason
        assert "VOLT 6.000" not in transport.writes

    def test_trip_ignored_when_disabled(self, live, transport, tmp_path):
        transport.script["STAT:QUES?"] = "1"
        plan = {"safety": {"abort_on_trip": False}, "sample_rate_hz": 1000,
                "steps": [{"voltage": 5, "hold_s": 0.01}]}
        assert run_plan(plan, live, str(tmp_path / "run.csv")) is None

    def test_parquet(self, live, tmp_path):
        pq = pytest.importorskip("pyarrow.parquet")
        out = tmp_path / "run.parquet"
        plan = {"sample_rate_hz": 1000, "steps": [{"voltage": 5, "hold_s": 0.02}]}
        run_plan(plan, live, str(out))
        table = pq.read_table(str(out))
        assert table.column_names == COLUMNS
        assert table.num_rows >= 1

    def test_svg_trace(self, live, tmp_path):
        pytest.importorskip("matplotlib")
        svg = tmp_path / "trace.svg"
        plan = {"sample_rate_hz": 1000, "steps": [{"voltage": 5, "hold_s": 0.02}]}
        run_plan(plan, live, str(tmp_path / "run.csv"), plot_path=str(svg))
        m = re.search(r"<psubench>([^<]+)</psubench>", svg.read_text(encoding="utf-8"))
        assert m
        payload = json.loads(base64.b64decode(m.group(1)))
        assert payload["format"] == "psubench/trace"
        assert payload["v"][0] == 5.0
        assert payload["meta"]["aborted"] is None
