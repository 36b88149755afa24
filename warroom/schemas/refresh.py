"""
Refresh and Stream Schemas

Structured result of one refresh attempt and the events emitted on the
change-notification stream.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from warroom.schemas.snapshot import CamelModel


class SkipReason(str, Enum):
    """Why a refresh returned without fetching."""

    MIN_INTERVAL = "min_interval"
    LOCKED = "locked"


class RefreshResult(CamelModel):
    """Outcome of ``RefreshCoordinator.refresh_once``.

    ``ok`` is False only when the protected section (or the store) failed;
    skipped refreshes are successful no-ops.
    """

    ok: bool
    skipped: bool = False
    reason: Optional[SkipReason] = None
    updated_at: Optional[str] = None
    error: Optional[str] = None
    trace: List[str] = Field(default_factory=list)
    env: Dict[str, bool] = Field(default_factory=dict)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class StreamEvent(BaseModel):
    """One server-sent event: ``event`` name plus JSON ``data``."""

    event: str
    data: Any

    def to_sse(self) -> Dict[str, str]:
        """Shape accepted by sse-starlette's EventSourceResponse."""
        return {"event": self.event, "data": json.dumps(self.data)}
