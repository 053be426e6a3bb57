"""
Shared fakes for the publisher tests.

In-memory stand-ins for Postgres, S3 and SNS, plus an httpx MockTransport
router for Google's token, localPosts and media endpoints.
"""

from __future__ import annotations

import copy
import json
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from publisher.errors import PostNotFound, ReconciliationFailed
from publisher.models import MediaAsset, Post, PublishResult


# --- Postgres (repository level) ---


class FakeRepo:
    """In-memory PostRepository."""

    def __init__(self) -> None:
        self.posts: Dict[tuple, Dict[str, Any]] = {}
        self.media: List[Dict[str, Any]] = []
        self.users: Dict[str, dict] = {}
        self.fail_media_insert = False
        self.writes = 0
        self._next_media_id = 1000

    def add_post(self, **row) -> None:
        row.setdefault("state", "SCHEDULED")
        row.setdefault("topic_type", "STANDARD")
        self.posts[(str(row["id"]), str(row["gmb_id"]))] = row

    def add_media(self, **row) -> None:
        self.media.append(row)

    def get_post(self, post_id: str, gmb_id: str) -> Optional[Dict[str, Any]]:
        return self.posts.get((post_id, gmb_id))

    async def load_eligible_post(self, post_id: str, container_id: str) -> Post:
        row = self.posts.get((post_id, container_id))
        if row is None:
            row = next(
                (r for (pid, gid), r in self.posts.items()
                 if gid == container_id and r.get("source_post_id") == post_id),
                None,
            )
        if row is None:
            raise PostNotFound(f"Post not found: {post_id}")
        return Post.from_row(row)

    async def load_media(self, post_id: str, container_id: str) -> List[MediaAsset]:
        return [
            MediaAsset.from_row(r) for r in self.media
            if str(r["post_id"]) == post_id and str(r["gmb_id"]) == container_id
        ]

    async def reconcile(self, container_id, post_id, result: PublishResult, old_media) -> List[MediaAsset]:
        # Stage every change on copies and swap them in at the end
        posts = copy.deepcopy(self.posts)
        media = copy.deepcopy(self.media)

        row = posts.pop((post_id, container_id), None)
        if row is None:
            raise ReconciliationFailed(f"Post disappeared before reconcile: {post_id}")
        row.update({
            "id": result.post_id,
            "name": result.name,
            "state": result.state,
            "topic_type": result.topic_type,
            "summary": result.summary,
            "search_url": result.search_url,
            "create_time": result.create_time,
            "update_time": result.update_time,
            "source_post_id": post_id,
            "scheduled_pub_time": None,
        })
        posts[(result.post_id, container_id)] = row

        media = [m for m in media if not (str(m["post_id"]) == post_id and str(m["gmb_id"]) == container_id)]

        inserted = []
        for pm in result.media:
            if self.fail_media_insert:
                raise ReconciliationFailed("insert into gmb_media failed")
            self._next_media_id += 1
            new_row = {
                "id": str(self._next_media_id),
                "gmb_id": container_id,
                "post_id": result.post_id,
                "name": pm.name,
                "google_url": pm.google_url,
                "media_format": pm.media_format,
            }
            media.append(new_row)
            inserted.append(MediaAsset.from_row(new_row))

        self.posts = posts
        self.media = media
        self.writes += 1
        return inserted

    async def load_user(self, user_id: str) -> Optional[dict]:
        return self.users.get(user_id)

    async def list_media_ids(self, container_id: str) -> List[str]:
        return [str(m["id"]) for m in self.media if str(m["gmb_id"]) == container_id]


# --- S3 ---


class FakeLinker:
    """In-memory AssetLinker."""

    def __init__(self) -> None:
        self.blobs: Dict[str, tuple] = {}
        self.linked: List[str] = []
        self.deleted: List[str] = []
        self.fail_delete = False

    async def create_temporary_link(self, key: str) -> str:
        self.linked.append(key)
        return f"https://s3.test/{key}?X-Amz-Expires=3600"

    async def link_media(self, media) -> List[str]:
        return [await self.create_temporary_link(m.blob_key) for m in media]

    async def delete_blobs(self, keys) -> None:
        from publisher.errors import BlobCleanupFailed

        if self.fail_delete:
            raise BlobCleanupFailed("Failed to remove documents from S3: AccessDenied")
        for k in keys:
            self.blobs.pop(k, None)
            self.deleted.append(k)

    async def store_blob(self, key: str, body: bytes, content_type: Optional[str] = None) -> None:
        self.blobs[key] = (body, content_type or "application/octet-stream")

    async def list_keys(self, prefix: str) -> List[str]:
        return sorted(k for k in self.blobs if k.startswith(prefix))


class FakeS3Client:
    """The subset of the boto3 S3 client used by AssetLinker."""

    def __init__(self) -> None:
        self.objects: Dict[str, dict] = {}
        self.deleted: List[str] = []
        self.fail_keys: set = set()
        self.fail_presign = False
        self.presigned: List[str] = []

    def generate_presigned_url(self, operation, Params, ExpiresIn):
        if self.fail_presign:
            raise RuntimeError("no credentials")
        if Params["Key"] in self.fail_keys:
            raise RuntimeError(f"AccessDenied: {Params['Key']}")
        self.presigned.append(Params["Key"])
        return f"https://{Params['Bucket']}.s3.test/{Params['Key']}?op={operation}&expires={ExpiresIn}"

    def delete_object(self, Bucket, Key):
        if Key in self.fail_keys:
            raise RuntimeError(f"AccessDenied: {Key}")
        self.objects.pop(Key, None)
        self.deleted.append(Key)
        return {}

    def put_object(self, Bucket, Key, Body, ContentType):
        if Key in self.fail_keys:
            raise RuntimeError(f"AccessDenied: {Key}")
        self.objects[Key] = {"Body": Body, "ContentType": ContentType}
        return {}

    def get_paginator(self, name):
        assert name == "list_objects_v2"
        objects = self.objects

        class _Paginator:
            def paginate(self, Bucket, Prefix):
                keys = sorted(k for k in objects if k.startswith(Prefix))
                # two pages to exercise pagination
                half = len(keys) // 2
                yield {"Contents": [{"Key": k} for k in keys[:half]]}
                yield {"Contents": [{"Key": k} for k in keys[half:]]}

        return _Paginator()


class FakeSNSClient:
    def __init__(self, fail: bool = False) -> None:
        self.published: List[dict] = []
        self.fail = fail

    def publish(self, TopicArn, Subject, Message):
        if self.fail:
            raise RuntimeError("SNS unavailable")
        self.published.append({"TopicArn": TopicArn, "Subject": Subject, "Message": Message})
        return {"MessageId": "m-1"}


# --- Credentials ---


class FakeCredentialStore:
    def __init__(self, tokens: Optional[Dict[tuple, Any]] = None) -> None:
        self.tokens = tokens or {}
        self.lookups: List[tuple] = []

    async def load_refresh_token(self, organization_id: str, account_id: str):
        self.lookups.append((organization_id, account_id))
        return self.tokens.get((organization_id, account_id))


# --- HTTP ---


class GoogleRouter:
    """MockTransport handler for the Google endpoints the worker talks to."""

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.token_response: Callable[[httpx.Request], httpx.Response] = (
            lambda req: httpx.Response(200, json={"access_token": "ya29.test", "expires_in": 3599})
        )
        self.publish_response: Callable[[httpx.Request], httpx.Response] = self.default_publish
        self.media_bodies: Dict[str, tuple] = {}

    @staticmethod
    def default_publish(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        return httpx.Response(200, json={
            "name": "accounts/acc1/locations/loc1/localPosts/987654321",
            "languageCode": body["languageCode"],
            "summary": body["summary"],
            "state": "LIVE",
            "topicType": body["postType"],
            "createTime": "2026-10-18T09:00:00.123456789Z",
            "updateTime": "2026-10-18T09:00:00.123456789Z",
            "searchUrl": "https://local.google.com/place?id=1&use=posts&lpsid=987654321",
        })

    def publish_calls(self) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith("/localPosts")]

    def token_calls(self) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.host == "oauth2.googleapis.com"]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == "oauth2.googleapis.com":
            return self.token_response(request)
        if request.url.host == "mybusiness.googleapis.com":
            return self.publish_response(request)
        if str(request.url) in self.media_bodies:
            body, content_type = self.media_bodies[str(request.url)]
            return httpx.Response(200, content=body, headers={"content-type": content_type})
        return httpx.Response(404, text="not found")


@pytest.fixture
def router() -> GoogleRouter:
    return GoogleRouter()


@pytest.fixture
def make_http(router):
    """Build an httpx.AsyncClient that routes to the GoogleRouter.

    Created inside the running loop, so tests call it from their coroutine.
    """
    def _make() -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(router))
    return _make


@pytest.fixture
def repo() -> FakeRepo:
    return FakeRepo()


@pytest.fixture
def linker() -> FakeLinker:
    return FakeLinker()
