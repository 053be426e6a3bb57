"""
GBP Post Worker publisher package.

Keep this module lightweight: only the error primitives are exported here.
Import stages directly (e.g., `from publisher.handler import Orchestrator`).
"""

from .errors import StageError, SkipStage, ErrorCode, PostIneligible, NotificationSkipped

__all__ = ["StageError", "SkipStage", "ErrorCode", "PostIneligible", "NotificationSkipped"]
