"""
GBP Post Worker Publish Stage
=============================
Create the local post on Google Business Profile.

Flow: POST accounts/{accountId}/locations/{locationId}/localPosts -> created post

The create call is made exactly once per invocation. Google does not
deduplicate localPosts creates, so a failure here is never retried locally.
"""

import os
import logging
from typing import Dict, Any

import httpx

from .errors import PublishApiError
from .models import PublishResult

logger = logging.getLogger("gbp-post-worker")

GMB_API_BASE = os.environ.get("GMB_API_BASE", "https://mybusiness.googleapis.com/v4")


def local_post_create_url(account_id: str, location_id: str, base: str = GMB_API_BASE) -> str:
    return f"{base.rstrip('/')}/accounts/{account_id}/locations/{location_id}/localPosts"


def _upstream_message(resp: httpx.Response) -> str:
    """Google wraps failures as {"error": {"code", "message", "status"}}."""
    try:
        data = resp.json()
    except ValueError:
        return (resp.text or "")[:500]
    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if isinstance(err, str):
            return err
    return (resp.text or "")[:500]


class PublishClient:
    def __init__(self, http: httpx.AsyncClient, base_url: str = GMB_API_BASE):
        self.http = http
        self.base_url = base_url

    async def create_post(
        self,
        account_id: str,
        container_id: str,
        payload: Dict[str, Any],
        access_token: str,
    ) -> PublishResult:
        url = local_post_create_url(account_id, container_id, self.base_url)
        try:
            resp = await self.http.post(
                url,
                json=payload,
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "Content-Type": "application/json",
                },
            )
        except httpx.HTTPError as e:
            raise PublishApiError(
                f"Publish request failed: {e}",
                upstream_message=str(e),
                stage="published",
            ) from e

        if not resp.is_success:
            message = _upstream_message(resp)
            logger.error(f"Publish failed for location {container_id}: {resp.status_code} {message[:200]}")
            raise PublishApiError(
                f"Publish failed: {resp.status_code} {message}",
                status_code=resp.status_code,
                upstream_message=message,
                stage="published",
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise PublishApiError(
                "Publish response was not JSON",
                status_code=resp.status_code,
                upstream_message=resp.text[:500],
                stage="published",
            ) from e

        if not isinstance(data, dict) or not data.get("name"):
            raise PublishApiError(
                "Publish response has no resource name",
                status_code=resp.status_code,
                stage="published",
            )

        result = PublishResult.from_api(data)
        logger.info(f"Publish accepted: name={result.name}, state={result.state}, media={len(result.media)}")
        return result
