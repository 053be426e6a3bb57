"""
GBP Post Worker Payload
=======================
Build the localPosts create body from a stored post and its media links.

Which optional blocks are sent depends only on the topic type:

  topic      callToAction   event   offer   alertType
  STANDARD   if set         -       -       -
  EVENT      if set         yes     -       -
  OFFER      never          yes     yes     -
  ALERT      if set         -       -       yes
"""

from typing import Dict, Any, List

from .errors import InvalidPostPayload
from .models import Post, MediaAsset, TopicType

DEFAULT_LANGUAGE_CODE = "en-US"


def _topic(post: Post) -> TopicType:
    try:
        return TopicType(post.topic_type)
    except ValueError:
        raise InvalidPostPayload(
            f"Unsupported topic type for post {post.id}: {post.topic_type!r}",
            stage="payload_built",
        )


def _event_block(post: Post) -> Dict[str, Any]:
    event = post.event
    return {
        "title": event.title if event else None,
        "schedule": event.schedule if event else None,
    }


def _media_block(media: List[MediaAsset], media_links: List[str]) -> List[Dict[str, Any]]:
    if len(media) != len(media_links):
        raise InvalidPostPayload(
            f"Got {len(media_links)} links for {len(media)} media items",
            stage="payload_built",
        )
    return [
        {
            "sourceUrl": link,
            "contentType": m.content_type,
            "description": m.description or "",
        }
        for m, link in zip(media, media_links)
    ]


def build_local_post(post: Post, media_links: List[str], media: List[MediaAsset] = None) -> Dict[str, Any]:
    """Pure transform of a post (+ media and their temporary links) to the API body."""
    topic = _topic(post)

    payload: Dict[str, Any] = {
        "postType": topic.value,
        "languageCode": post.language_code or DEFAULT_LANGUAGE_CODE,
        "summary": post.summary or "",
    }

    if topic != TopicType.OFFER and post.call_to_action and post.call_to_action.action_type:
        payload["callToAction"] = {
            "actionType": post.call_to_action.action_type,
            "url": post.call_to_action.url or "",
        }

    if topic in (TopicType.EVENT, TopicType.OFFER):
        payload["event"] = _event_block(post)

    if topic == TopicType.ALERT:
        payload["alertType"] = post.alert_type

    if topic == TopicType.OFFER:
        offer = post.offer
        payload["offer"] = {
            "couponCode": (offer.coupon_code if offer else None) or "",
            "redeemOnlineUrl": (offer.redeem_online_url if offer else None) or "",
            "termsConditions": (offer.terms_conditions if offer else None) or "",
        }

    media = media or []
    if media or media_links:
        payload["media"] = _media_block(media, media_links)

    return payload
