#!/usr/bin/env python3
"""
Run one webhook sweep: retry stored webhooks that have not been processed yet.

Intended for cron. Reads configuration from the .env file.
Run from project root: python scripts/run_webhook_sweeper.py
"""

import sys
import os

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, project_root)

# Load .env file
from dotenv import load_dotenv
load_dotenv(os.path.join(project_root, ".env"))

import logging
from src.db import supabase
from src.config import settings
from src.domain.sweeper import build_webhook_sweeper
from src.observability import persist_metrics_snapshot


def main():
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    sweeper = build_webhook_sweeper(supabase, settings)
    result = sweeper.run_once()

    persist_metrics_snapshot(
        supabase_client=supabase,
        source="webhook_sweeper_cron",
        export_url=settings.observability_export_url,
        export_bearer_token=settings.observability_export_bearer_token,
        export_timeout_seconds=settings.observability_export_timeout_seconds,
    )

    print(f"Scanned:   {result.scanned}")
    print(f"Succeeded: {result.succeeded}")
    print(f"Deferred:  {result.deferred}")
    print(f"Exhausted: {result.exhausted}")
    print(f"Skipped:   {result.skipped}")
    if result.errors:
        print("Errors:")
        for error in result.errors:
            print(f"  {error}")
        sys.exit(1)


if __name__ == "__main__":
    main()
