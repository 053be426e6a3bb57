"""
GBP Post Worker Database Functions
==================================
Postgres access for the publish pipeline.

Tables:
  gmb_posts     keyed by (id, gmb_id)
  gmb_media     keyed by (post_id, gmb_id), id generated on insert
  gmb_accounts  stored refresh tokens keyed by (organization_id, account_id)
  users         notification lookup
"""

from __future__ import annotations

import json
import logging
from typing import Optional, Dict, Any, List

import asyncpg

from .errors import PostNotFound, ReconciliationFailed
from .models import Post, MediaAsset, PublishResult, PublishedMedia

logger = logging.getLogger("gbp-post-worker")

GMB_POST_TABLE = "gmb_posts"
GMB_MEDIA_TABLE = "gmb_media"
GMB_ACCOUNT_TABLE = "gmb_accounts"
USER_TABLE = "users"


def _jsonb(value: Any) -> Optional[str]:
    return json.dumps(value) if value is not None else None


def post_update_values(result: PublishResult) -> List[Any]:
    """Column values copied from the platform response, in UPDATE order.

    Anything the platform left out is written as NULL so no stale
    pre-publish value survives.
    """
    cta = result.call_to_action
    event = result.event
    offer = result.offer
    return [
        result.post_id,
        result.name,
        result.language_code,
        result.summary,
        cta.url if cta else None,
        cta.action_type if cta else None,
        result.create_time,
        result.update_time,
        event.title if event else None,
        _jsonb(event.schedule) if event else None,
        result.state,
        result.search_url,
        result.topic_type,
        result.alert_type,
        offer.coupon_code if offer else None,
        offer.redeem_online_url if offer else None,
        offer.terms_conditions if offer else None,
    ]


def media_insert_values(container_id: str, post_id: str, m: PublishedMedia) -> List[Any]:
    return [
        container_id,
        post_id,
        m.name,
        m.media_format,
        m.category,
        m.price_list_item_id,
        m.google_url,
        m.thumbnail_url,
        m.create_time,
        m.width_px,
        m.height_px,
        m.view_count,
        _jsonb(m.attribution),
        m.description,
        m.source_url,
        m.data_ref_resource,
    ]


# A published post keeps its pre-publish id in source_post_id, so a redelivered
# trigger still finds it (and sees it is no longer SCHEDULED).
LOAD_POST_SQL = f"""
    SELECT * FROM {GMB_POST_TABLE}
    WHERE gmb_id = $2 AND (id = $1 OR source_post_id = $1)
    ORDER BY (id = $1) DESC
    LIMIT 1
"""

UPDATE_POST_SQL = f"""
    UPDATE {GMB_POST_TABLE}
    SET id = $3,
        name = $4,
        language_code = $5,
        summary = $6,
        cta_url = $7,
        cta_type = $8,
        create_time = $9,
        update_time = $10,
        event_title = $11,
        event_schedule = $12::jsonb,
        state = $13,
        search_url = $14,
        topic_type = $15,
        alert_type = $16,
        offer_coupon_code = $17,
        offer_redeem_online_url = $18,
        offer_terms_conditions = $19,
        source_post_id = $1,
        scheduled_pub_time = NULL
    WHERE id = $1 AND gmb_id = $2
"""

DELETE_MEDIA_SQL = f"DELETE FROM {GMB_MEDIA_TABLE} WHERE post_id = $1 AND gmb_id = $2"

INSERT_MEDIA_SQL = f"""
    INSERT INTO {GMB_MEDIA_TABLE} (
        gmb_id, post_id, name, media_format, category, price_list_item_id,
        google_url, thumbnail_url, create_time, width_px, height_px,
        view_count, attribution_json, description, source_url, data_ref_resource
    )
    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13::jsonb, $14, $15, $16)
    RETURNING *
"""


class PostRepository:
    """Reads the scheduled post and applies the post-publish reconciliation."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def load_eligible_post(self, post_id: str, container_id: str) -> Post:
        """Load a post by (id, gmb_id). The caller decides eligibility."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                LOAD_POST_SQL,
                post_id,
                container_id,
            )
        if not row:
            raise PostNotFound(f"Post not found: {post_id}", stage="validating")
        return Post.from_row(dict(row))

    async def load_media(self, post_id: str, container_id: str) -> List[MediaAsset]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT * FROM {GMB_MEDIA_TABLE} WHERE post_id = $1 AND gmb_id = $2 ORDER BY id",
                post_id,
                container_id,
            )
        return [MediaAsset.from_row(dict(r)) for r in rows or []]

    async def reconcile(
        self,
        container_id: str,
        post_id: str,
        result: PublishResult,
        old_media: List[MediaAsset],
    ) -> List[MediaAsset]:
        """
        Mirror the platform response into gmb_posts / gmb_media atomically.

        Process (single transaction):
        1. Update the post row; its id becomes the platform's post id
        2. Delete every old media row of the post
        3. Insert one row per published media item, under the new post id

        Returns the inserted media rows. Blob writes happen afterwards,
        outside this transaction.
        """
        new_post_id = result.post_id
        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    status = await conn.execute(
                        UPDATE_POST_SQL,
                        post_id,
                        container_id,
                        *post_update_values(result),
                    )
                    if status == "UPDATE 0":
                        raise PostNotFound(f"Post disappeared before reconcile: {post_id}", stage="reconcile")

                    await conn.execute(DELETE_MEDIA_SQL, post_id, container_id)

                    inserted = []
                    for m in result.media:
                        row = await conn.fetchrow(
                            INSERT_MEDIA_SQL,
                            *media_insert_values(container_id, new_post_id, m),
                        )
                        inserted.append(MediaAsset.from_row(dict(row)))
        except PostNotFound as e:
            raise ReconciliationFailed(e.message, stage="reconcile") from e
        except Exception as e:
            raise ReconciliationFailed(
                f"Failed to reconcile post {post_id}: {e}",
                details={"gmb_id": container_id, "post_id": post_id},
                stage="reconcile",
            ) from e

        logger.info(
            f"Reconciled post {post_id} -> {new_post_id}: "
            f"removed {len(old_media)} media rows, inserted {len(inserted)}"
        )
        return inserted

    async def load_user(self, user_id: str) -> Optional[dict]:
        """Load a user record by ID."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(f"SELECT * FROM {USER_TABLE} WHERE id = $1", user_id)
            return dict(row) if row else None

    async def list_media_ids(self, container_id: str) -> List[str]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT id FROM {GMB_MEDIA_TABLE} WHERE gmb_id = $1",
                container_id,
            )
        return [str(r["id"]) for r in rows or []]


class CredentialStore:
    """Stored (encrypted) refresh tokens per connected account."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def load_refresh_token(self, organization_id: str, account_id: str) -> Optional[Any]:
        async with self.pool.acquire() as conn:
            val = await conn.fetchval(
                f"""
                SELECT refresh_token FROM {GMB_ACCOUNT_TABLE}
                WHERE organization_id = $1 AND account_id = $2
                ORDER BY updated_at DESC
                LIMIT 1
                """,
                organization_id,
                account_id,
            )
        return val


async def create_pool(database_url: str, command_timeout: float = 30.0) -> asyncpg.Pool:
    return await asyncpg.create_pool(
        database_url,
        min_size=1,
        max_size=2,
        command_timeout=command_timeout,
    )
