#!/usr/bin/env python3
"""Print the V/I trace embedded in a psubench SVG plot as CSV."""
import sys, re, base64, json, csv
if len(sys.argv) < 2:
    print("Usage: extract_from_svg.py path.svg", file=sys.stderr); sys.exit(2)
with open(sys.argv[1], "r", encoding="utf-8") as f:
    text = f.read()
m = re.search(r"<psubench>([^<]+)</psubench>", text)
if not m:
    print("No embedded psubench trace found", file=sys.stderr); sys.exit(1)
obj = json.loads(base64.b64decode(m.group(1)).decode("utf-8"))
if obj.get("format") != "psubench/trace":
    print(f"Unsupported trace format: {obj.get('format')!r}", file=sys.stderr); sys.exit(1)
w = csv.writer(sys.stdout, lineterminator="\n")
w.writerow(["t_s", "v", "i"])
for row in zip(obj.get("t", []), obj.get("v", []), obj.get("i", [])):
    w.writerow(row)
