#!/usr/bin/env python3
"""
Show the ledger clock next to the Hive head block.

Usage:
  # Human-readable summary
  python scripts/show_clock.py

  # JSON (single line), e.g. for health checks
  python scripts/show_clock.py --compact

  # Move the stored clock forward to the current head block once
  python scripts/show_clock.py --sync

The stored clock only moves forward; --sync is a no-op when the watcher is
already at or past the head block.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from typing import Any, Dict

# Allow running from repo root
sys.path.append(os.path.dirname(os.path.dirname(__file__)))

os.environ.setdefault("CAPSULE_WATCHER", "0")

from capsule import create_app
from capsule.clock import _get_head_block_num, _get_hive_instance, advance_to, current_height
from capsule.ledger import Ledger
from capsule.models import db


def main():
    ap = argparse.ArgumentParser(description="Show ledger clock vs Hive head block")
    ap.add_argument(
        "--compact", action="store_true", help="Print compact JSON (one line)"
    )
    ap.add_argument(
        "--sync", action="store_true", help="Advance the stored clock to the head block"
    )
    args = ap.parse_args()

    app = create_app()
    with app.app_context():
        hv = _get_hive_instance()
        head = _get_head_block_num(hv) or 0
        stored = current_height()
        if args.sync:
            stored = advance_to(head)
        status = Ledger(db.session).get_network_status().value
        out: Dict[str, Any] = {
            "clock": stored,
            "head_block": head,
            "lag": max(0, head - stored),
            "paused": status.paused,
            "messages": status.total_messages,
        }
        if args.compact:
            print(json.dumps(out))
        else:
            print(json.dumps(out, indent=2, sort_keys=True))


if __name__ == "__main__":
    main()
