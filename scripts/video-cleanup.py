#!/usr/bin/env python3
from __future__ import annotations

from argparse import ArgumentParser
import logging
import os

from clips.config import LifecycleConfig
from clips.sweep import expire_clips
from db.session import SessionLocal
from storage.s3 import get_object_store


def main() -> int:
    config = LifecycleConfig.from_env()
    parser = ArgumentParser(description="Delete expired clips from storage and mark them expired")
    parser.add_argument("--batch-size", type=int, default=config.sweep_batch_size)
    parser.add_argument(
        "--drain",
        action="store_true",
        help="Keep running batches until one comes back short",
    )
    parser.add_argument("--max-batches", type=int, default=20)
    args = parser.parse_args()

    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
    store = get_object_store()
    batches = 0
    totals = {"selected": 0, "expired": 0, "already_missing": 0, "failed": 0}
    while True:
        report = expire_clips(SessionLocal, store, batch_size=max(1, args.batch_size))
        batches += 1
        for key in totals:
            totals[key] += getattr(report, key)
        print(
            f"[video-cleanup] batch={batches} selected={report.selected} expired={report.expired} "
            f"already_missing={report.already_missing} failed={report.failed}"
        )
        # Failed clips stay selectable, so a batch made only of failures would loop forever.
        if not args.drain or report.selected < args.batch_size or report.expired == 0:
            break
        if batches >= args.max_batches:
            break

    print(
        f"[video-cleanup] done batches={batches} expired={totals['expired']} "
        f"failed={totals['failed']}"
    )
    return 1 if totals["failed"] else 0


if __name__ == "__main__":
    raise SystemExit(main())
