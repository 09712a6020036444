#!/usr/bin/env python3
"""
Persist ``overdue`` on invoices whose due date has passed.

Reads already report such invoices as overdue; run this from cron so the
stored status (and list filters on other systems) match.

Usage:
  python3 scripts/mark_overdue.py [--config PATH]
"""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def main() -> int:
    p = argparse.ArgumentParser(description="Mark past-due invoices overdue")
    p.add_argument("--config", default=None, help="Override YAML file (default: $AMPTRACK_CONFIG)")
    args = p.parse_args()

    from amptrack_config import get_settings
    from amptrack_services.engine import build_engine

    engine = build_engine(get_settings(args.config))
    numbers = engine.mark_overdue_invoices()
    if numbers:
        print(f"Marked {len(numbers)} invoice(s) overdue: {', '.join(numbers)}")
    else:
        print("No invoices past due.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
