"""
GBP Post Worker Models
======================
Records read from Postgres and the platform's create-post response.

Column names follow the gmb_posts / gmb_media tables. Platform fields keep
the API's camelCase until they are mapped back to columns in db.py.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, Dict, Any


SCHEDULED_STATE = "SCHEDULED"


class TopicType(str, Enum):
    STANDARD = "STANDARD"
    EVENT = "EVENT"
    OFFER = "OFFER"
    ALERT = "ALERT"


_FRACTION_RE = re.compile(r"\.(\d+)")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an RFC3339 timestamp from the platform into an aware datetime.

    Google returns up to nanosecond precision with a trailing Z; datetime only
    keeps microseconds, so the fraction is truncated to six digits.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    text = str(value).strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _json_value(value: Any) -> Any:
    # asyncpg hands back json/jsonb columns as text unless a codec is set
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value


@dataclass
class CallToAction:
    action_type: str
    url: Optional[str] = None


@dataclass
class EventDetails:
    title: Optional[str] = None
    schedule: Optional[Dict[str, Any]] = None


@dataclass
class OfferTerms:
    coupon_code: Optional[str] = None
    redeem_online_url: Optional[str] = None
    terms_conditions: Optional[str] = None


@dataclass
class Post:
    """A row of gmb_posts.

    The optional sub-structures are populated from whichever columns are set;
    which of them are sent for a given topic type is decided in payload.py.
    """
    id: str
    container_id: str
    state: Optional[str]
    topic_type: Optional[str] = None
    language_code: Optional[str] = None
    summary: Optional[str] = None
    call_to_action: Optional[CallToAction] = None
    event: Optional[EventDetails] = None
    offer: Optional[OfferTerms] = None
    alert_type: Optional[str] = None

    # Filled in by reconciliation
    name: Optional[str] = None
    create_time: Optional[datetime] = None
    update_time: Optional[datetime] = None
    search_url: Optional[str] = None

    scheduled_pub_time: Optional[datetime] = None
    source_post_id: Optional[str] = None
    user_id: Optional[str] = None

    @property
    def is_eligible(self) -> bool:
        return self.state == SCHEDULED_STATE

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Post":
        cta = None
        if row.get("cta_type") is not None:
            cta = CallToAction(action_type=row["cta_type"], url=row.get("cta_url"))

        event = None
        if row.get("event_title") is not None or row.get("event_schedule") is not None:
            event = EventDetails(
                title=row.get("event_title"),
                schedule=_json_value(row.get("event_schedule")),
            )

        offer = None
        offer_cols = ("offer_coupon_code", "offer_redeem_online_url", "offer_terms_conditions")
        if any(row.get(c) is not None for c in offer_cols):
            offer = OfferTerms(
                coupon_code=row.get("offer_coupon_code"),
                redeem_online_url=row.get("offer_redeem_online_url"),
                terms_conditions=row.get("offer_terms_conditions"),
            )

        user_id = row.get("user_id")
        return cls(
            id=str(row["id"]),
            container_id=str(row["gmb_id"]),
            state=row.get("state"),
            topic_type=row.get("topic_type"),
            language_code=row.get("language_code"),
            summary=row.get("summary"),
            call_to_action=cta,
            event=event,
            offer=offer,
            alert_type=row.get("alert_type"),
            name=row.get("name"),
            create_time=row.get("create_time"),
            update_time=row.get("update_time"),
            search_url=row.get("search_url"),
            scheduled_pub_time=row.get("scheduled_pub_time"),
            source_post_id=row.get("source_post_id"),
            user_id=str(user_id) if user_id is not None else None,
        )


@dataclass
class MediaAsset:
    """A row of gmb_media. Its body lives in the blob store at blob_key."""
    id: str
    post_id: Optional[str]
    container_id: str
    content_type: Optional[str] = None
    description: Optional[str] = None
    name: Optional[str] = None
    media_format: Optional[str] = None
    google_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    width_px: Optional[int] = None
    height_px: Optional[int] = None
    view_count: Optional[int] = None
    attribution: Optional[Dict[str, Any]] = None
    source_url: Optional[str] = None

    @property
    def blob_key(self) -> str:
        return blob_key(self.container_id, self.id)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "MediaAsset":
        post_id = row.get("post_id")
        return cls(
            id=str(row["id"]),
            post_id=str(post_id) if post_id is not None else None,
            container_id=str(row["gmb_id"]),
            content_type=row.get("content_type"),
            description=row.get("description"),
            name=row.get("name"),
            media_format=row.get("media_format"),
            google_url=row.get("google_url"),
            thumbnail_url=row.get("thumbnail_url"),
            width_px=row.get("width_px"),
            height_px=row.get("height_px"),
            view_count=row.get("view_count"),
            attribution=_json_value(row.get("attribution_json")),
            source_url=row.get("source_url"),
        )


def blob_key(container_id: str, asset_id: str) -> str:
    return f"{container_id}/{asset_id}"


@dataclass
class PublishedMedia:
    """A media item as returned by the platform for a created post."""
    name: Optional[str] = None
    media_format: Optional[str] = None
    google_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    create_time: Optional[datetime] = None
    width_px: Optional[int] = None
    height_px: Optional[int] = None
    view_count: Optional[int] = None
    attribution: Optional[Dict[str, Any]] = None
    description: Optional[str] = None
    source_url: Optional[str] = None
    data_ref_resource: Optional[str] = None
    category: Optional[str] = None
    price_list_item_id: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "PublishedMedia":
        dimensions = data.get("dimensions") or {}
        insights = data.get("insights") or {}
        association = data.get("locationAssociation") or {}
        data_ref = data.get("dataRef") or {}
        view_count = insights.get("viewCount")
        return cls(
            name=data.get("name"),
            media_format=data.get("mediaFormat"),
            google_url=data.get("googleUrl"),
            thumbnail_url=data.get("thumbnailUrl"),
            create_time=parse_timestamp(data.get("createTime")),
            width_px=dimensions.get("widthPixels"),
            height_px=dimensions.get("heightPixels"),
            view_count=int(view_count) if view_count is not None else None,
            attribution=data.get("attribution") or None,
            description=data.get("description") or None,
            source_url=data.get("sourceUrl") or None,
            data_ref_resource=data_ref.get("resourceName") or None,
            category=association.get("category"),
            price_list_item_id=association.get("priceListItemId"),
        )


@dataclass
class PublishResult:
    """The platform's canonical representation of a created local post."""
    name: str
    state: Optional[str] = None
    topic_type: Optional[str] = None
    language_code: Optional[str] = None
    summary: Optional[str] = None
    call_to_action: Optional[CallToAction] = None
    event: Optional[EventDetails] = None
    offer: Optional[OfferTerms] = None
    alert_type: Optional[str] = None
    create_time: Optional[datetime] = None
    update_time: Optional[datetime] = None
    search_url: Optional[str] = None
    media: List[PublishedMedia] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def post_id(self) -> str:
        """Final segment of accounts/{a}/locations/{l}/localPosts/{id}."""
        return self.name.rstrip("/").split("/")[-1]

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "PublishResult":
        cta_data = data.get("callToAction")
        event_data = data.get("event")
        offer_data = data.get("offer")
        return cls(
            name=data["name"],
            state=data.get("state"),
            topic_type=data.get("topicType"),
            language_code=data.get("languageCode"),
            summary=data.get("summary"),
            call_to_action=CallToAction(
                action_type=cta_data.get("actionType"),
                url=cta_data.get("url"),
            ) if cta_data else None,
            event=EventDetails(
                title=event_data.get("title"),
                schedule=event_data.get("schedule"),
            ) if event_data else None,
            offer=OfferTerms(
                coupon_code=offer_data.get("couponCode"),
                redeem_online_url=offer_data.get("redeemOnlineUrl"),
                terms_conditions=offer_data.get("termsConditions"),
            ) if offer_data else None,
            alert_type=data.get("alertType"),
            create_time=parse_timestamp(data.get("createTime")),
            update_time=parse_timestamp(data.get("updateTime")),
            search_url=data.get("searchUrl"),
            media=[PublishedMedia.from_api(m) for m in data.get("media") or []],
            raw=data,
        )
