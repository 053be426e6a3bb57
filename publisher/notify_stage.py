"""
GBP Post Worker Notification Stage
==================================
Best-effort notices after a run.

Notifications:
- User email (via SNS topic): scheduled post published
- Admin Discord webhook: pipeline failures, blob leaks

Nothing in here raises into the pipeline. A post that went live stays live
and is reported as published even if the notice cannot be sent.
"""

import os
import json
import asyncio
import logging
from datetime import datetime, timezone
from functools import partial
from typing import Optional

import httpx

from .errors import NotificationSkipped
from .models import Post

logger = logging.getLogger("gbp-post-worker")

# Configuration
NOTIFY_TOPIC_ARN = os.environ.get("NOTIFY_TOPIC_ARN", "")
ERROR_DISCORD_WEBHOOK_URL = os.environ.get("ERROR_DISCORD_WEBHOOK_URL", "")
AWS_REGION = os.environ.get("AWS_REGION", "us-east-2")

EMAIL_SUBJECT = "GMB Post Published Successfully"


def create_sns_client(region: str = AWS_REGION):
    import boto3

    return boto3.client("sns", region_name=region)


def build_email_message(user: dict, post: Post, published_at: Optional[datetime] = None) -> dict:
    published_at = published_at or datetime.now(timezone.utc)
    return {
        "email": user.get("email"),
        "subject": EMAIL_SUBJECT,
        "message": (
            f"Hello {user.get('name') or ''},\n\n"
            "Your scheduled Google My Business post has been published successfully.\n\n"
            f"Post Summary: {post.summary or ''}\n"
            f"Post Type: {post.topic_type}\n"
            f"Published At: {published_at.isoformat()}\n\n"
            "Best regards,\n"
            "GMB Post Scheduler"
        ),
    }


class NotificationDispatcher:
    def __init__(
        self,
        repo,
        sns_client=None,
        topic_arn: str = NOTIFY_TOPIC_ARN,
        http: Optional[httpx.AsyncClient] = None,
        admin_webhook_url: str = ERROR_DISCORD_WEBHOOK_URL,
    ):
        self.repo = repo
        self._sns_client = sns_client
        self.topic_arn = topic_arn
        self.http = http
        self.admin_webhook_url = admin_webhook_url

    def _get_sns_client(self):
        if self._sns_client is None:
            self._sns_client = create_sns_client()
        return self._sns_client

    async def _send(self, user_id: Optional[str], post: Post) -> str:
        if not user_id:
            raise NotificationSkipped("No user_id on trigger")
        if not self.topic_arn:
            raise NotificationSkipped("NOTIFY_TOPIC_ARN not configured")

        user = await self.repo.load_user(user_id)
        if not user:
            raise NotificationSkipped(f"User not found: {user_id}")
        if not user.get("email"):
            raise NotificationSkipped(f"User {user_id} has no email")

        message = build_email_message(user, post)
        client = self._get_sns_client()
        await asyncio.get_event_loop().run_in_executor(
            None,
            partial(
                client.publish,
                TopicArn=self.topic_arn,
                Subject=message["subject"],
                Message=json.dumps(message),
            ),
        )
        return message["email"]

    async def notify(self, user_id: Optional[str], post: Post) -> bool:
        """Send the published notice. Returns False when skipped or failed."""
        try:
            email = await self._send(user_id, post)
        except NotificationSkipped as e:
            logger.info(f"Notification skipped: {e.reason}")
            return False
        except Exception as e:
            logger.warning(f"Notification skipped, send failed: {e}")
            return False

        logger.info(f"Email notification sent to: {email}")
        return True

    async def notify_admin_error(self, error_type: str, details: dict):
        """Notify admin of a pipeline failure."""
        if not self.admin_webhook_url or self.http is None:
            return

        embed = {
            "title": f"🚨 Error: {error_type}",
            "color": 0xef4444,
            "description": f"```json\n{json.dumps(details, indent=2, default=str)[:1500]}\n```",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

        try:
            response = await self.http.post(self.admin_webhook_url, json={"embeds": [embed]})
            if response.status_code not in (200, 204):
                logger.warning(f"Discord webhook failed: {response.status_code}")
        except Exception as e:
            logger.warning(f"Discord webhook error: {e}")
