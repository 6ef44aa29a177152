#!/usr/bin/env python3
from __future__ import annotations

from argparse import ArgumentParser

from pipeline.queue import enqueue_cleanup


def main() -> None:
    parser = ArgumentParser(description="Queue the recurring clip expiry sweep")
    parser.add_argument("--batch-size", type=int, default=None)
    parser.add_argument(
        "--delay-s",
        type=int,
        default=0,
        help="Seconds until the first run (0 = run as soon as a worker is free)",
    )
    args = parser.parse_args()

    result = enqueue_cleanup(args.batch_size, delay_s=args.delay_s or None)
    print("[schedule-cleanup] job_id:", result["job_id"])
    print("[schedule-cleanup] rq_id:", result["rq_id"])
    print("[schedule-cleanup] delay_s:", result["delay_s"])


if __name__ == "__main__":
    main()
