from __future__ import annotations
import argparse
import time

from psubench.config import SessionConfig, load_config, open_transport, parse_host_port
from psubench.errors import PsuError
from psubench.plan_runner import run_plan
from drivers.tdk_lambda.g30 import G30


def build_config(args) -> SessionConfig:
    cfg = load_config(args.config) if args.config else SessionConfig()
    if args.tcp:
        cfg.host, cfg.port = parse_host_port(args.tcp)
        cfg.device = None
    if args.serial:
        cfg.device = args.serial
    if args.baud is not None:
        cfg.baud = args.baud
    if args.timeout is not None:
        cfg.timeout_s = args.timeout
    if args.max_voltage is not None:
        cfg.max_voltage = args.max_voltage
    if args.max_current is not None:
        cfg.max_current = args.max_current
    if args.debug_log:
        cfg.log_file = args.debug_log
    return cfg


def open_psu(args) -> G30:
    cfg = build_config(args)
    if not cfg.host and not cfg.device:
        raise SystemExit("Missing target. Provide --tcp HOST[:PORT], --serial DEVICE, or --config FILE.")
    try:
        transport = open_transport(cfg, open(cfg.log_file, "a") if cfg.log_file else None)
        psu = G30(transport, cfg)
    except PsuError as e:
        raise SystemExit(f"Invalid configuration: {e}")
    try:
        psu.connect()
    except PsuError as e:
        raise SystemExit(f"Failed to connect to {psu.t.describe()}: {e}")
    return psu


def _fmt_status(st) -> str:
    return (f"output={'ON' if st.output_enabled else 'OFF'} ovp={int(st.over_voltage)} "
            f"ocp={int(st.over_current)} otp={int(st.over_temperature)}")


def main(argv=None):
    p = argparse.ArgumentParser(prog="psubench")
    p.add_argument("--tcp", help="HOST[:PORT] of the supply's LAN interface (default port 8003)")
    p.add_argument("--serial", help="Serial device path, e.g. /dev/ttyUSB0")
    p.add_argument("--baud", type=int, help="Serial baud rate (default 9600)")
    p.add_argument("--config", help="YAML session config (endpoint, limits, timing)")
    p.add_argument("--timeout", type=float, help="Round-trip timeout in seconds")
    p.add_argument("--max-voltage", type=float, help="Safety ceiling for voltage set-points")
    p.add_argument("--max-current", type=float, help="Safety ceiling for current set-points")
    p.add_argument("--debug-log", help="Path to write wire I/O log (NDJSON)")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("idn", help="Print the identification string")
    sub.add_parser("status", help="Print output state and protection flags")
    sub.add_parser("measure", help="Print measured voltage, current and power")

    setp = sub.add_parser("set", help="Program set-points and output state")
    setp.add_argument("--voltage", type=float)
    setp.add_argument("--current", type=float)
    setp.add_argument("--ovp", type=float, help="Over-voltage protection level")
    onoff = setp.add_mutually_exclusive_group()
    onoff.add_argument("--on", action="store_true")
    onoff.add_argument("--off", action="store_true")

    rampp = sub.add_parser("ramp", help="Ramp voltage or current to a target at a rate")
    which = rampp.add_mutually_exclusive_group(required=True)
    which.add_argument("--voltage", type=float)
    which.add_argument("--current", type=float)
    rampp.add_argument("--rate", type=float, required=True, help="Units per second")

    monp = sub.add_parser("monitor", help="Sample V/I/P and status as CSV")
    monp.add_argument("--count", type=int, default=10, help="Number of samples")
    monp.add_argument("--interval", type=float, default=1.0, help="Seconds between samples")

    rawp = sub.add_parser("raw", help="Send a raw command (or query, if it ends in '?')")
    rawp.add_argument("text")

    runp = sub.add_parser("run", help="Run a YAML step plan")
    runp.add_argument("plan")
    runp.add_argument("--out", required=True, help="CSV, or parquet when ending in .parquet/.pq")
    runp.add_argument("--plot", help="Optional SVG trace with embedded samples")
    runp.add_argument("--keep-on", action="store_true", help="Leave output on when the plan ends")

    args = p.parse_args(argv)

    psu = open_psu(args)
    keep_on = False
    try:
        if args.cmd == "idn":
            print(psu.identity)

        elif args.cmd == "status":
            print(_fmt_status(psu.get_status()))
            err = psu.check_error()
            if not psu.error_is_clear(err):
                print(f"error queue: {err}")

        elif args.cmd == "measure":
            v = psu.measure_voltage()
            i = psu.measure_current()
            print(f"{v:.3f} V  {i:.3f} A  {v * i:.3f} W")

        elif args.cmd == "set":
            keep_on = True
            if args.ovp is not None:
                psu.set_over_voltage_protection(args.ovp)
            if args.current is not None:
                psu.set_current(args.current)
            if args.voltage is not None:
                psu.set_voltage(args.voltage)
            if args.on or args.off:
                psu.enable_output(args.on)

        elif args.cmd == "ramp":
            keep_on = True
            t_start = time.time()
            if args.voltage is not None:
                steps = psu.ramp_voltage(args.voltage, args.rate)
            else:
                steps = psu.ramp_current(args.current, args.rate)
            print(f"ramped in {steps} steps, {time.time() - t_start:.1f}s")

        elif args.cmd == "monitor":
            keep_on = True
            print("timestamp,v,i,p,output,ovp,ocp,otp")
            for _ in range(max(args.count, 1)):
                v = psu.measure_voltage()
                i = psu.measure_current()
                st = psu.get_status()
                print(f"{time.time():.3f},{v},{i},{v * i},{int(st.output_enabled)},"
                      f"{int(st.over_voltage)},{int(st.over_current)},{int(st.over_temperature)}")
                time.sleep(max(args.interval, 0.0))

        elif args.cmd == "raw":
            keep_on = True
            if args.text.rstrip().endswith("?"):
                print(psu.send_query(args.text))
            else:
                print(psu.send_command(args.text))

        elif args.cmd == "run":
            keep_on = args.keep_on
            reason = run_plan(args.plan, psu, args.out, plot_path=args.plot)
            if reason:
                raise SystemExit(f"plan aborted: {reason}")

    except PsuError as e:
        raise SystemExit(f"{type(e).__name__}: {e}")
    finally:
        if keep_on:
            # Leave the supply as programmed; only release the link
            psu.disconnect()
        else:
            psu.close()


if __name__ == "__main__":
    main()
