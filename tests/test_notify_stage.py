"""NotificationDispatcher tests: never raises, reports whether it sent."""

import asyncio
import json

import httpx

from conftest import FakeSNSClient
from publisher.models import Post
from publisher.notify_stage import NotificationDispatcher

TOPIC = "arn:aws:sns:us-east-2:123456789012:gmb-post-email"

POST = Post(id="987654321", container_id="loc1", state="LIVE", topic_type="OFFER", summary="20% off")


def _notify(dispatcher, user_id="u1"):
    return asyncio.run(dispatcher.notify(user_id, POST))


def test_sends_email_message_to_topic(repo):
    repo.users["u1"] = {"id": "u1", "email": "owner@example.com", "name": "Dana"}
    sns = FakeSNSClient()

    sent = _notify(NotificationDispatcher(repo, sns_client=sns, topic_arn=TOPIC))

    assert sent is True
    (published,) = sns.published
    assert published["TopicArn"] == TOPIC
    message = json.loads(published["Message"])
    assert message["email"] == "owner@example.com"
    assert message["subject"] == "GMB Post Published Successfully"
    assert "Hello Dana" in message["message"]
    assert "Post Summary: 20% off" in message["message"]
    assert "Post Type: OFFER" in message["message"]


def test_missing_user_is_skipped(repo):
    sns = FakeSNSClient()

    assert _notify(NotificationDispatcher(repo, sns_client=sns, topic_arn=TOPIC), "ghost") is False
    assert sns.published == []


def test_no_user_id_is_skipped(repo):
    sns = FakeSNSClient()

    assert _notify(NotificationDispatcher(repo, sns_client=sns, topic_arn=TOPIC), None) is False
    assert sns.published == []


def test_unconfigured_topic_is_skipped(repo):
    repo.users["u1"] = {"id": "u1", "email": "owner@example.com"}
    sns = FakeSNSClient()

    assert _notify(NotificationDispatcher(repo, sns_client=sns, topic_arn="")) is False
    assert sns.published == []


def test_send_failure_is_swallowed(repo):
    repo.users["u1"] = {"id": "u1", "email": "owner@example.com"}

    dispatcher = NotificationDispatcher(repo, sns_client=FakeSNSClient(fail=True), topic_arn=TOPIC)

    assert _notify(dispatcher) is False


def test_user_lookup_failure_is_swallowed(repo):
    async def broken(user_id):
        raise RuntimeError("connection lost")

    repo.load_user = broken
    dispatcher = NotificationDispatcher(repo, sns_client=FakeSNSClient(), topic_arn=TOPIC)

    assert _notify(dispatcher) is False


def test_admin_error_posts_to_webhook(repo):
    seen = []

    def webhook(request):
        seen.append(json.loads(request.content))
        return httpx.Response(204)

    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(webhook)) as http:
            dispatcher = NotificationDispatcher(repo, http=http, admin_webhook_url="https://discord.test/hook")
            await dispatcher.notify_admin_error("scheduled_post_failure", {"post_id": "42"})

    asyncio.run(run())

    (payload,) = seen
    assert payload["embeds"][0]["title"].endswith("scheduled_post_failure")
    assert '"post_id": "42"' in payload["embeds"][0]["description"]


def test_admin_error_never_raises(repo):
    def down(request):
        raise httpx.ConnectError("down", request=request)

    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(down)) as http:
            dispatcher = NotificationDispatcher(repo, http=http, admin_webhook_url="https://discord.test/hook")
            await dispatcher.notify_admin_error("scheduled_post_failure", {})

    asyncio.run(run())


def test_admin_error_without_webhook_is_noop(repo):
    asyncio.run(NotificationDispatcher(repo).notify_admin_error("scheduled_post_failure", {}))
