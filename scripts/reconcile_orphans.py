#!/usr/bin/env python3
from __future__ import annotations

import argparse
from dataclasses import asdict
import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from visual_dataset.config import settings
from visual_dataset.infra.repositories import build_repository
from visual_dataset.logging_setup import configure_logging
from visual_dataset.services.reconciliation_service import ReconciliationService


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Find (and optionally delete) images with no submission record")
    parser.add_argument("--delete", action="store_true", help="Remove the orphaned images from storage")
    parser.add_argument(
        "--grace-seconds",
        type=float,
        default=settings.orphan_grace_seconds,
        help="Leave images uploaded more recently than this alone",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    configure_logging(settings.log_level)
    repo, using_supabase, repo_error = build_repository()
    if not using_supabase:
        print(json.dumps({"error": repo_error or "Supabase not configured"}, indent=2))
        return 1

    report = ReconciliationService(repo, grace_seconds=args.grace_seconds).reconcile(delete=args.delete)
    print(json.dumps({"bucket": settings.storage_bucket, "delete": args.delete, **asdict(report)}, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
