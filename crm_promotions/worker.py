"""Command-line entry point for scheduled promotion jobs.

    python -m crm_promotions.worker run-triggers
    python -m crm_promotions.worker process-queue --batch-size 50
    python -m crm_promotions.worker seed-triggers
"""

import argparse
import json
import sys
from dataclasses import asdict

from crm_promotions.core.observability import job_context, setup_observability
from crm_promotions.db.session import SessionLocal
from crm_promotions.services.promotion_delivery import process_pending_deliveries
from crm_promotions.services.promotion_triggers import process_all_triggers, seed_default_triggers


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="crm_promotions.worker")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("run-triggers", help="Evaluate every active promotion trigger once")

    process_queue = commands.add_parser("process-queue", help="Deliver one batch of queued promotions")
    process_queue.add_argument("--batch-size", type=int, default=None)

    commands.add_parser("seed-triggers", help="Install the default trigger set")
    return parser


def run(argv: list[str] | None = None) -> dict:
    args = build_parser().parse_args(argv)
    db = SessionLocal()
    try:
        with job_context(args.command):
            if args.command == "run-triggers":
                return asdict(process_all_triggers(db))
            if args.command == "process-queue":
                return asdict(process_pending_deliveries(db, batch_size=args.batch_size))
            created = seed_default_triggers(db)
            db.commit()
            return {"created": created}
    finally:
        db.close()


def main(argv: list[str] | None = None) -> int:
    setup_observability()
    print(json.dumps(run(argv), default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
