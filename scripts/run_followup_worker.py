#!/usr/bin/env python3
from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
BACKEND_DIR = ROOT / "backend"
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from carematch_flow_core import FlowSettings, FollowUpWorker
from storage import NotificationStore, ScheduledJobStore, SQLiteStore

logger = logging.getLogger("followup_worker")


def build_worker(settings: FlowSettings) -> FollowUpWorker:
    db = SQLiteStore(settings.db_path)
    return FollowUpWorker(jobs=ScheduledJobStore(db), notifications=NotificationStore(db))


def main() -> int:
    parser = argparse.ArgumentParser(description="Deliver due follow-up check-ins as notifications.")
    parser.add_argument("--loop", action="store_true", help="keep polling instead of running once")
    parser.add_argument("--interval", type=float, default=60.0, help="seconds between polls with --loop")
    parser.add_argument("--limit", type=int, default=50, help="maximum jobs claimed per poll")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    worker = build_worker(FlowSettings.from_env())
    while True:
        delivered = worker.run_due(limit=args.limit)
        logger.info("poll finished, delivered=%s", delivered)
        if not args.loop:
            return 0
        time.sleep(max(1.0, args.interval))


if __name__ == "__main__":
    raise SystemExit(main())
