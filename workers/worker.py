"""Worker for the ERP sync engine.

Two modes:
- Temporal (default): polls the sync task queue and runs SyncJobWorkflow
  executions; jobs are scheduled as workflows by TemporalJobScheduler
- Local (--local): single-process polling loop over an InMemoryJobScheduler,
  for development without a Temporal server

The storefront gateway is supplied by the integration layer as
``--storefront package.module:factory`` (a zero-argument callable).

Run with --local --full-sync to queue a full stock sync on start.
"""

import argparse
import asyncio
import importlib
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from temporalio.worker import Worker

# Add repo root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from bootstrap import SyncEngine, build_engine
from core.config import load_settings
from core.security.secrets import EnvSecretProvider
from core.storage.sqlite_store import DEFAULT_DB_PATH, SQLiteSyncStore
from core.storefront import InMemoryStorefront, StorefrontGateway
from jobs.scheduler import InMemoryJobScheduler, JobScheduler

logger = logging.getLogger(__name__)

IDLE_POLL_SECONDS = 5.0


def load_storefront(target: Optional[str]) -> StorefrontGateway:
    """Instantiate the storefront gateway from ``module:factory``.

    Raises:
        ValueError: If the target is not in ``module:factory`` form
    """
    if not target:
        logger.warning("No --storefront given, using an empty in-memory storefront")
        return InMemoryStorefront()
    module_name, sep, attr = target.partition(":")
    if not sep or not attr:
        raise ValueError(f"Storefront must be given as module:factory, got {target!r}")
    factory = getattr(importlib.import_module(module_name), attr)
    return factory()


def build(storefront_path: Optional[str], db_path: Path, scheduler: JobScheduler) -> SyncEngine:
    store = SQLiteSyncStore(db_path)
    store.init_db()
    settings = load_settings(store)
    return build_engine(settings, load_storefront(storefront_path), store, EnvSecretProvider(), scheduler)


# =============================================================================
# Local mode
# =============================================================================

async def run_local(
    engine: SyncEngine,
    scheduler: InMemoryJobScheduler,
    full_sync: bool = False,
    max_idle_seconds: float = IDLE_POLL_SECONDS,
):
    """Poll the in-memory scheduler and run due jobs one at a time."""
    await engine.queue.schedule_recurring_stock_sync()
    if full_sync:
        await engine.queue.queue_full_stock_sync()

    logger.info("Local worker running... (Ctrl+C to stop)")
    while True:
        for job in scheduler.claim_due():
            try:
                outcome = await engine.runner.run(job)
            finally:
                scheduler.complete(job.id)
            logger.info(f"Job {job.id} ({job.job_type.value}): {outcome.status}")

        next_due = scheduler.next_due_at()
        wait = max_idle_seconds
        if next_due is not None:
            wait = min(max_idle_seconds, max(0.0, (next_due - datetime.utcnow()).total_seconds()))
        await asyncio.sleep(wait)


# =============================================================================
# Temporal mode
# =============================================================================

async def run_temporal(storefront_path: Optional[str], db_path: Path):
    """Start a Temporal worker on the sync task queue.

    Raises:
        Exception: If connection to Temporal fails
    """
    from activities.sync_jobs import SyncJobActivities
    from jobs.temporal_scheduler import TemporalJobScheduler
    from temporal_client import get_temporal_client
    from workflows.sync_job_workflow import TASK_QUEUE_SYNC, SyncJobWorkflow

    client = await get_temporal_client()
    logger.info(f"Connected to Temporal: {client.namespace}")

    engine = build(storefront_path, db_path, TemporalJobScheduler(client))
    activities = SyncJobActivities(engine.runner)
    try:
        await engine.queue.schedule_recurring_stock_sync()
        worker = Worker(
            client,
            task_queue=TASK_QUEUE_SYNC,
            workflows=[SyncJobWorkflow],
            activities=[activities.run_sync_job],
        )
        logger.info(f"Worker running on queue '{TASK_QUEUE_SYNC}'... (Ctrl+C to stop)")
        await worker.run()
    finally:
        await engine.close()
        logger.info("ERP client closed")


async def run_worker(args: argparse.Namespace):
    if args.local:
        scheduler = InMemoryJobScheduler()
        engine = build(args.storefront, args.db, scheduler)
        try:
            await run_local(engine, scheduler, full_sync=args.full_sync)
        finally:
            await engine.close()
    else:
        await run_temporal(args.storefront, args.db)


def main():
    """Entry point for worker with CLI args."""
    parser = argparse.ArgumentParser(description="ERP Sync Worker")
    parser.add_argument(
        "--local", "-l",
        action="store_true",
        help="Run an in-process polling worker instead of a Temporal worker",
    )
    parser.add_argument(
        "--storefront", "-s",
        default=None,
        help="Storefront gateway factory as module:callable",
    )
    parser.add_argument(
        "--db",
        type=Path,
        default=DEFAULT_DB_PATH,
        help=f"SQLite database path (default: {DEFAULT_DB_PATH.name})",
    )
    parser.add_argument(
        "--full-sync",
        action="store_true",
        help="Queue a full stock sync on start (local mode)",
    )

    args = parser.parse_args()
    try:
        asyncio.run(run_worker(args))
    except KeyboardInterrupt:
        logger.info("Worker interrupted by user")


if __name__ == "__main__":
    main()
