"""Pydantic v2 schemas for scheduled job results."""

import uuid
from typing import Literal

from pydantic import BaseModel, Field

ACTION_TRIAL_EXPIRED = "trial_expired"
ACTION_CHARGED = "charged"
ACTION_DOWNGRADED = "downgraded"
ACTION_REMINDER_SENT = "reminder_sent"

RowAction = Literal["trial_expired", "charged", "downgraded", "reminder_sent"]


class RowResult(BaseModel):
    """Outcome for one subscription row touched by a job."""

    subscription_id: uuid.UUID
    user_id: uuid.UUID
    action: RowAction
    plan_name: str
    details: str | None = None


class JobResult(BaseModel):
    """Summary returned by every job run. ``errors`` is None when the batch had none."""

    success: bool = True
    processed: int = 0
    results: list[RowResult] = Field(default_factory=list)
    errors: list[str] | None = None
