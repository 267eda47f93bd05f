#!/usr/bin/env python
"""
Run a scheduled job without going through HTTP.

Usage:
    python scripts/run_cron.py follow-ups
    python scripts/run_cron.py stale-leads
"""
from __future__ import annotations

import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.saleshub.cron import JOBS  # noqa: E402
from scripts._db_utils import script_session  # noqa: E402


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    if len(sys.argv) != 2 or sys.argv[1] not in JOBS:
        print(f"usage: run_cron.py {{{'|'.join(JOBS)}}}", file=sys.stderr)
        sys.exit(2)
    with script_session() as s:
        result = JOBS[sys.argv[1]](s)
    print(result)


if __name__ == "__main__":
    main()
