"""
GBP Post Worker Blob Storage
============================
S3 operations for post media.

Keys follow {gmb_id}/{media_id}. Exports AssetLinker:
  - create_temporary_link(key)
  - link_media(media)
  - delete_blobs(keys)
  - store_blob(key, body, content_type)
  - list_keys(prefix)
"""

import os
import asyncio
import logging
from functools import partial
from typing import Iterable, List, Optional

from .errors import PresignFailed, BlobCleanupFailed, BlobStoreFailed
from .models import MediaAsset

logger = logging.getLogger("gbp-post-worker")

# S3 Configuration
AWS_REGION = os.environ.get("AWS_REGION", "us-east-2")
GMB_MEDIA_BUCKET = os.environ.get("GMB_MEDIA_BUCKET", "gmb-media")
S3_ENDPOINT = os.environ.get("S3_ENDPOINT", "")
PRE_SIGNED_URL_EXPIRY_TIME = int(os.environ.get("PRE_SIGNED_URL_EXPIRY_TIME", "3600"))

DEFAULT_CONTENT_TYPE = "application/octet-stream"


def create_s3_client(region: str = AWS_REGION, endpoint: str = S3_ENDPOINT):
    """Create a boto3 S3 client for the media bucket."""
    import boto3
    from botocore.config import Config

    return boto3.client(
        "s3",
        endpoint_url=endpoint or None,
        config=Config(
            signature_version="s3v4",
            retries={"max_attempts": 3, "mode": "adaptive"},
        ),
        region_name=region,
    )


class AssetLinker:
    """Temporary links, writes and deletes for media blobs."""

    def __init__(
        self,
        s3_client=None,
        bucket: str = GMB_MEDIA_BUCKET,
        link_ttl: int = PRE_SIGNED_URL_EXPIRY_TIME,
    ):
        self._s3_client = s3_client
        self.bucket = bucket
        self.link_ttl = link_ttl

    def _get_s3_client(self):
        """Get or create the boto3 client."""
        if self._s3_client is None:
            self._s3_client = create_s3_client()
        return self._s3_client

    async def _run(self, fn, *args, **kwargs):
        # boto3 is blocking
        return await asyncio.get_event_loop().run_in_executor(None, partial(fn, *args, **kwargs))

    async def create_temporary_link(self, key: str) -> str:
        """Presigned, read-only GET URL for the platform to fetch the blob."""
        client = self._get_s3_client()
        try:
            return await self._run(
                client.generate_presigned_url,
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=self.link_ttl,
            )
        except Exception as e:
            raise PresignFailed(
                f"Failed to get signed URL for S3 object {key}: {e}",
                stage="media_linked",
            ) from e

    async def link_media(self, media: List[MediaAsset]) -> List[str]:
        """Temporary links for every asset, in the same order as media."""
        if not media:
            return []
        results = await asyncio.gather(
            *(self.create_temporary_link(m.blob_key) for m in media),
            return_exceptions=True,
        )
        for r in results:
            if isinstance(r, BaseException):
                raise r
        return list(results)

    async def delete_blobs(self, keys: Iterable[str]):
        """Delete blobs concurrently. Any single failure fails the batch."""
        keys = sorted(set(keys))
        if not keys:
            return

        client = self._get_s3_client()
        logger.info(f"S3 delete: {len(keys)} objects from {self.bucket}")

        results = await asyncio.gather(
            *(self._run(client.delete_object, Bucket=self.bucket, Key=k) for k in keys),
            return_exceptions=True,
        )
        failed = [(k, r) for k, r in zip(keys, results) if isinstance(r, Exception)]
        if failed:
            raise BlobCleanupFailed(
                f"Failed to remove documents from S3: {failed[0][1]}",
                details={"failed_keys": [k for k, _ in failed]},
                stage="reconciled",
            )

    async def store_blob(self, key: str, body: bytes, content_type: Optional[str] = None):
        """Write (overwrite) a blob."""
        client = self._get_s3_client()
        content_type = content_type or DEFAULT_CONTENT_TYPE
        logger.info(f"S3 upload: {key} ({len(body)} bytes, {content_type})")
        try:
            await self._run(
                client.put_object,
                Bucket=self.bucket,
                Key=key,
                Body=body,
                ContentType=content_type,
            )
        except Exception as e:
            raise BlobStoreFailed(
                f"Failed to upload media to S3: {e}",
                details={"key": key},
                stage="reconciled",
            ) from e

    async def list_keys(self, prefix: str) -> List[str]:
        client = self._get_s3_client()

        def _list():
            keys = []
            paginator = client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                keys.extend(obj["Key"] for obj in page.get("Contents", []))
            return keys

        return await self._run(_list)
