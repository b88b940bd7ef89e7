from __future__ import annotations
import base64
import io
import json
from typing import Optional

TRACE_FORMAT = "psubench/trace"
TRACE_VERSION = 1


def write_parquet(rows: list[dict], out_path: str) -> None:
    import pyarrow as pa, pyarrow.parquet as pq
    if not rows:
        pq.write_table(pa.table({}), out_path)
        return
    # Keep the column order of the first record, then anything added later
    cols: list[str] = []
    for r in rows:
        cols.extend(k for k in r.keys() if k not in cols)
    table = pa.table({c: [r.get(c) for r in rows] for c in cols})
    pq.write_table(table, out_path, compression="zstd")


def embed_trace(svg_text: str, payload: dict) -> str:
    b64 = base64.b64encode(json.dumps(payload, separators=(",", ":")).encode()).decode()
    if "<metadata>" in svg_text:
        return svg_text.replace("<metadata>", f"<metadata><psubench>{b64}</psubench>", 1)
    # Insert right after the opening <svg ...> tag, skipping any XML prolog
    svg_open = svg_text.find("<svg")
    insert_at = svg_text.find(">", max(svg_open, 0)) + 1
    return svg_text[:insert_at] + f"<metadata><psubench>{b64}</psubench></metadata>" + svg_text[insert_at:]


def save_trace_svg(ts: list[float], volts: list[Optional[float]], amps: list[Optional[float]],
                   out_svg: str, title: str = "Output trace", extra_meta: Optional[dict] = None) -> dict:
    """Plot measured V and I against time and embed the samples in the SVG."""
    import matplotlib; matplotlib.use("Agg")
    import matplotlib.pyplot as plt
    fig = plt.figure(figsize=(8, 3), dpi=120)
    ax = fig.add_subplot(111)
    ax.plot(ts, [float("nan") if v is None else v for v in volts], color="tab:blue")
    ax.set_title(title); ax.set_xlabel("Time (s)"); ax.set_ylabel("Voltage (V)")
    ax2 = ax.twinx()
    ax2.plot(ts, [float("nan") if i is None else i for i in amps], color="tab:red")
    ax2.set_ylabel("Current (A)")
    fig.tight_layout()
    buf = io.StringIO(); fig.savefig(buf, format="svg"); plt.close(fig)
    payload = {"format": TRACE_FORMAT, "version": TRACE_VERSION,
               "t": ts, "v": volts, "i": amps, "meta": extra_meta or {}}
    with open(out_svg, "w", encoding="utf-8") as f:
        f.write(embed_trace(buf.getvalue(), payload))
    return {"points": len(ts), "file": out_svg}
