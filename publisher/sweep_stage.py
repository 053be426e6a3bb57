"""
GBP Post Worker Sweep
=====================
Find blobs with no gmb_media row (left behind when a run failed between the
reconcile commit and blob cleanup) and optionally delete them.
"""

import logging
from typing import List

logger = logging.getLogger("gbp-post-worker")


async def find_orphaned_blobs(container_id: str, repo, linker) -> List[str]:
    prefix = f"{container_id}/"
    keys = await linker.list_keys(prefix)
    media_ids = set(await repo.list_media_ids(container_id))
    return sorted(k for k in keys if k[len(prefix):] not in media_ids)


async def sweep_orphaned_blobs(container_id: str, repo, linker, dry_run: bool = True) -> List[str]:
    """Return orphaned blob keys for a container, deleting them unless dry_run."""
    orphans = await find_orphaned_blobs(container_id, repo, linker)
    if not orphans:
        logger.info(f"Sweep {container_id}: no orphaned blobs")
        return orphans

    if dry_run:
        logger.info(f"Sweep {container_id}: {len(orphans)} orphaned blobs (dry run)")
        return orphans

    await linker.delete_blobs(orphans)
    logger.info(f"Sweep {container_id}: deleted {len(orphans)} orphaned blobs")
    return orphans
