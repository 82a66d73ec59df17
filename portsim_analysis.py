"""
portsim launcher.

Run with: python portsim_analysis.py prices.csv
"""
import sys
import os

# Ensure the package directory is on the path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from portsim import run

ALLOCATIONS = {
    "60/40": {"VFINX": 0.6, "VBMFX": 0.4},
    "All equity": {"VFINX": 1.0},
}

if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("usage: python portsim_analysis.py PRICES_CSV [START_DATE]")
        sys.exit(1)
    start = sys.argv[2] if len(sys.argv) > 2 else "2000-01-03"
    run(sys.argv[1], ALLOCATIONS, start)
