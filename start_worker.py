#!/usr/bin/env python3
"""Start the cache warming worker with the src directory on PYTHONPATH."""

import os
import subprocess
import sys

cwd = os.getcwd()
src_path = os.path.join(cwd, "src")
if not os.path.isdir(src_path):
    print(f"Warning: src directory not found at {src_path}", file=sys.stderr)
    src_path = cwd

pythonpath = os.environ.get("PYTHONPATH", "")
os.environ["PYTHONPATH"] = f"{src_path}:{pythonpath}" if pythonpath else src_path

cmd = [sys.executable, "-m", "routekit.worker"]

print("Starting cache warming worker...", file=sys.stderr)
print(f"PYTHONPATH={os.environ['PYTHONPATH']}", file=sys.stderr)

try:
    sys.exit(subprocess.call(cmd))
except KeyboardInterrupt:
    print("Worker interrupted by user", file=sys.stderr)
    sys.exit(0)
