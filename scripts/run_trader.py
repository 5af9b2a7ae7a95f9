#!/usr/bin/env python3
"""
UpDown trader — entry point only.
All logic lives in the updown package:
  engine.py         — TradingEngine poll loop
  executor.py       — split legs, single-flight order placement
  adaptive_exit.py  — stop-loss cascade
  connectors/       — Polymarket quotes, fees and market orders

    python scripts/run_trader.py run --live
"""

import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

load_dotenv()

from updown.cli import main  # noqa: E402

if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
