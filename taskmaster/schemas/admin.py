"""Pydantic v2 request schemas for admin subscription management."""

import uuid

from pydantic import BaseModel, Field


class StartTrialRequest(BaseModel):
    """Grant a trial of a paid plan to a user."""

    user_id: uuid.UUID
    plan: str
    days: int | None = Field(None, ge=1, le=365)  # None = settings.default_trial_days


class ExtendTrialRequest(BaseModel):
    days: int = Field(..., ge=1, le=365)


class ChangePlanRequest(BaseModel):
    plan: str
