"""
GBP Post Worker Service
=======================
Entry points for publishing a scheduled Google Business Profile post.

  handler(event, context)  one-shot invocation, returns {statusCode, body}
  main()                   queue consumer: one trigger event per message
  main() sweep <gmb_id>    list orphaned blobs for a location (--apply deletes)
"""

import os
import sys
import argparse
import json
import asyncio
import logging
import signal
from contextlib import asynccontextmanager
from typing import List, Optional

import asyncpg
import httpx
import redis.asyncio as redis

from publisher.db import PostRepository, CredentialStore, create_pool
from publisher.handler import Orchestrator, make_response, FAILURE_MESSAGE
from publisher.notify_stage import NotificationDispatcher
from publisher.publish_stage import PublishClient
from publisher.storage import AssetLinker
from publisher.sweep_stage import sweep_orphaned_blobs
from publisher.tokens import TokenProvider

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s [worker] %(message)s")
logger = logging.getLogger("gbp-post-worker")

DATABASE_URL = os.environ.get("DATABASE_URL")
REDIS_URL = os.environ.get("REDIS_URL", "")
POST_JOB_QUEUE = os.environ.get("POST_JOB_QUEUE", "gbp:scheduled-posts")
POLL_INTERVAL = float(os.environ.get("POLL_INTERVAL_SECONDS", "1.0"))
HTTP_TIMEOUT_SECONDS = float(os.environ.get("HTTP_TIMEOUT_SECONDS", "30"))

shutdown_requested = False


def handle_shutdown(signum, frame):
    global shutdown_requested
    logger.info(f"Shutdown signal received ({signum})")
    shutdown_requested = True


def build_orchestrator(pool: asyncpg.Pool, http: httpx.AsyncClient) -> Orchestrator:
    repo = PostRepository(pool)
    return Orchestrator(
        token_provider=TokenProvider(CredentialStore(pool), http),
        repo=repo,
        linker=AssetLinker(),
        publisher=PublishClient(http),
        dispatcher=NotificationDispatcher(repo, http=http),
        http=http,
    )


@asynccontextmanager
async def worker_resources():
    """Database pool + HTTP client for the lifetime of the process."""
    if not DATABASE_URL:
        raise RuntimeError("DATABASE_URL not set")

    pool = await create_pool(DATABASE_URL, command_timeout=HTTP_TIMEOUT_SECONDS)
    logger.info("Database connected")
    http = httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS)
    try:
        yield build_orchestrator(pool, http)
    finally:
        await http.aclose()
        await pool.close()


async def handle_event(event: dict) -> dict:
    try:
        async with worker_resources() as orchestrator:
            return await orchestrator.handle(event)
    except Exception as e:
        # Startup failures (no DB, bad config) still get exactly one response
        logger.exception(f"Worker startup failed: {e}")
        return make_response(500, {"message": FAILURE_MESSAGE, "error": str(e)})


def handler(event, context=None):
    """One-shot entry point: publish the post named by the trigger event."""
    return asyncio.run(handle_event(event))


async def process_jobs(redis_client: redis.Redis, orchestrator: Orchestrator):
    logger.info("Worker started, waiting for scheduled posts...")

    while not shutdown_requested:
        try:
            job_raw = await redis_client.brpop([POST_JOB_QUEUE], timeout=int(POLL_INTERVAL) or 1)
            if not job_raw:
                continue

            _, job_json = job_raw
            event = json.loads(job_json)

            response = await orchestrator.handle(event)
            logger.info(f"Job finished: status={response['statusCode']} body={response['body']}")

        except json.JSONDecodeError as e:
            logger.error(f"Invalid job JSON: {e}")
        except Exception as e:
            logger.exception(f"Job processing error: {e}")
            await asyncio.sleep(1)

    logger.info("Worker shutting down...")


async def run_sweep(container_id: str, apply: bool, repo, linker) -> List[str]:
    """Report (and with apply, delete) blobs under a location with no media row."""
    orphans = await sweep_orphaned_blobs(container_id, repo, linker, dry_run=not apply)
    for key in orphans:
        logger.info(f"Orphaned blob: {key}")
    return orphans


async def sweep(container_id: str, apply: bool) -> List[str]:
    if not DATABASE_URL:
        logger.error("DATABASE_URL not set")
        sys.exit(1)

    pool = await create_pool(DATABASE_URL, command_timeout=HTTP_TIMEOUT_SECONDS)
    try:
        return await run_sweep(container_id, apply, PostRepository(pool), AssetLinker())
    finally:
        await pool.close()


async def consume():
    signal.signal(signal.SIGTERM, handle_shutdown)
    signal.signal(signal.SIGINT, handle_shutdown)

    if not DATABASE_URL:
        logger.error("DATABASE_URL not set")
        sys.exit(1)
    if not REDIS_URL:
        logger.error("REDIS_URL not set")
        sys.exit(1)

    redis_client: Optional[redis.Redis] = redis.from_url(REDIS_URL, decode_responses=True)
    await redis_client.ping()
    logger.info("Redis connected")

    try:
        async with worker_resources() as orchestrator:
            await process_jobs(redis_client, orchestrator)
    finally:
        await redis_client.aclose()


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Publish scheduled Google Business Profile posts.")
    commands = parser.add_subparsers(dest="command")
    commands.add_parser("consume", help="consume trigger events from the Redis queue (default)")
    sweep_cmd = commands.add_parser("sweep", help="find blobs with no gmb_media row for a location")
    sweep_cmd.add_argument("gmb_id", help="location id, the blob key prefix")
    sweep_cmd.add_argument("--apply", action="store_true", help="delete the orphaned blobs instead of listing them")
    return parser.parse_args(argv)


async def main(argv=None):
    args = parse_args(argv)
    if args.command == "sweep":
        await sweep(args.gmb_id, args.apply)
        return
    await consume()


def cli():
    asyncio.run(main())


if __name__ == "__main__":
    asyncio.run(main())
