"""
GBP Post Worker Job Context
===========================
Carries all state for one scheduled-post invocation through the pipeline.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, Dict, Any

from .errors import PreconditionFailed
from .models import Post, MediaAsset, PublishResult


class PipelineState(str, Enum):
    VALIDATING = "validating"
    TOKEN_ACQUIRED = "token_acquired"
    POST_LOADED = "post_loaded"
    MEDIA_LINKED = "media_linked"
    PAYLOAD_BUILT = "payload_built"
    PUBLISHED = "published"
    RECONCILED = "reconciled"
    NOTIFIED = "notified"
    INELIGIBLE = "ineligible"
    FAILED = "failed"


# Forward-only happy path; INELIGIBLE and FAILED are the side exits.
_PIPELINE_ORDER = [
    PipelineState.VALIDATING,
    PipelineState.TOKEN_ACQUIRED,
    PipelineState.POST_LOADED,
    PipelineState.MEDIA_LINKED,
    PipelineState.PAYLOAD_BUILT,
    PipelineState.PUBLISHED,
    PipelineState.RECONCILED,
    PipelineState.NOTIFIED,
]

TERMINAL_STATES = {PipelineState.NOTIFIED, PipelineState.INELIGIBLE, PipelineState.FAILED}

REQUIRED_EVENT_FIELDS = ("accountId", "gmb_id", "organizationId", "post_id")


class InvalidTransition(RuntimeError):
    pass


@dataclass
class PublishContext:
    """
    Processing context that flows through all pipeline stages.

    Contains:
    - Trigger identification
    - Current pipeline state
    - Loaded post and media
    - Payload, platform response and reconciled rows
    - Timestamps and error info
    """

    # Trigger
    account_id: str
    container_id: str
    organization_id: str
    post_id: str
    user_id: Optional[str] = None

    state: PipelineState = PipelineState.VALIDATING

    # Loaded records
    post: Optional[Post] = None
    media: List[MediaAsset] = field(default_factory=list)

    # Pipeline outputs
    media_links: List[str] = field(default_factory=list)
    payload: Optional[Dict[str, Any]] = None
    result: Optional[PublishResult] = None
    new_media: List[MediaAsset] = field(default_factory=list)
    notified: bool = False

    # Timing
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    # Error tracking
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    failed_in: Optional[PipelineState] = None

    def advance(self, state: PipelineState):
        """Move to the next state; states are never re-entered or skipped back."""
        if self.state in TERMINAL_STATES:
            raise InvalidTransition(f"{self.state.value} is terminal, cannot enter {state.value}")

        if state == PipelineState.INELIGIBLE:
            if self.state != PipelineState.VALIDATING:
                raise InvalidTransition(f"ineligible only reachable from validating, not {self.state.value}")
        elif state == PipelineState.FAILED:
            self.failed_in = self.state
        elif _PIPELINE_ORDER.index(state) != _PIPELINE_ORDER.index(self.state) + 1:
            raise InvalidTransition(f"{self.state.value} -> {state.value}")

        self.state = state
        if state in TERMINAL_STATES:
            self.finished_at = datetime.now(timezone.utc)

    def mark_error(self, code: str, message: str):
        self.error_code = code
        self.error_message = message
        if self.state not in TERMINAL_STATES:
            self.advance(PipelineState.FAILED)

    @property
    def old_blob_keys(self) -> set:
        return {m.blob_key for m in self.media}

    @property
    def gmb_post_name(self) -> Optional[str]:
        return self.result.name if self.result else None

    def to_summary_dict(self) -> dict:
        """Summary for logs."""
        return {
            "post_id": self.post_id,
            "gmb_id": self.container_id,
            "state": self.state.value,
            "failed_in": self.failed_in.value if self.failed_in else None,
            "gmb_post_name": self.gmb_post_name,
            "old_media": len(self.media),
            "new_media": len(self.new_media),
            "notified": self.notified,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


def create_context(event: dict) -> PublishContext:
    """Create a PublishContext from the trigger payload."""
    if not isinstance(event, dict):
        raise PreconditionFailed("Trigger payload must be an object", stage="validating")

    missing = [k for k in REQUIRED_EVENT_FIELDS if event.get(k) in (None, "")]
    if missing:
        raise PreconditionFailed(
            f"Missing required fields: {', '.join(missing)}",
            details={"missing": missing},
            stage="validating",
        )

    user_id = event.get("user_id")
    ctx = PublishContext(
        account_id=str(event["accountId"]),
        container_id=str(event["gmb_id"]),
        organization_id=str(event["organizationId"]),
        post_id=str(event["post_id"]),
        user_id=str(user_id) if user_id not in (None, "") else None,
    )
    ctx.started_at = datetime.now(timezone.utc)
    return ctx
