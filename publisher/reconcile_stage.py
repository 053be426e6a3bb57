"""
GBP Post Worker Reconcile Stage
===============================
Bring Postgres and S3 in line with the platform's created post.

Order matters:
  1. DB transaction (post row, old media rows out, new media rows in)
  2. Delete the old blobs
  3. Fetch each new media body from Google and store it under its new key

The transaction commits before any blob is touched. If a later step fails
the rows are already correct and at worst a blob is orphaned or missing;
a re-run or sweep_stage cleans that up.
"""

import asyncio
import logging
from typing import Optional

import httpx

from .context import PublishContext
from .errors import MediaFetchFailed
from .models import MediaAsset

logger = logging.getLogger("gbp-post-worker")


async def fetch_media_body(http: httpx.AsyncClient, url: str) -> tuple:
    """Download a published media item. Returns (bytes, content_type)."""
    try:
        resp = await http.get(url, follow_redirects=True)
    except httpx.HTTPError as e:
        raise MediaFetchFailed(f"Failed to fetch media {url}: {e}", stage="reconciled") from e

    if not resp.is_success:
        raise MediaFetchFailed(
            f"Failed to fetch media {url}: {resp.status_code}",
            details={"http_status": resp.status_code},
            stage="reconciled",
        )
    return resp.content, resp.headers.get("content-type")


async def restore_media_blob(http: httpx.AsyncClient, linker, media: MediaAsset) -> Optional[str]:
    """Copy one newly published media body into the blob store."""
    if not media.google_url:
        logger.warning(f"Published media {media.id} has no googleUrl, nothing to store")
        return None
    body, content_type = await fetch_media_body(http, media.google_url)
    await linker.store_blob(media.blob_key, body, content_type)
    return media.blob_key


async def run_reconcile_stage(ctx: PublishContext, repo, linker, http: httpx.AsyncClient) -> PublishContext:
    """
    Reconcile local storage to ctx.result.

    Process:
    1. repo.reconcile in one transaction
    2. linker.delete_blobs for the old media keys
    3. fetch + store every new media body concurrently
    """
    ctx.new_media = await repo.reconcile(
        ctx.container_id,
        ctx.post_id,
        ctx.result,
        ctx.media,
    )

    old_keys = ctx.old_blob_keys
    if old_keys:
        await linker.delete_blobs(old_keys)
        logger.info(f"Removed {len(old_keys)} old media blobs for post {ctx.post_id}")

    if ctx.new_media:
        results = await asyncio.gather(
            *(restore_media_blob(http, linker, m) for m in ctx.new_media),
            return_exceptions=True,
        )
        for r in results:
            if isinstance(r, BaseException):
                raise r
        logger.info(f"Stored {len([k for k in results if k])} new media blobs for post {ctx.result.post_id}")

    return ctx
