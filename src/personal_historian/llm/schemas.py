"""Typed objects returned by structured enrichment calls."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from personal_historian.config.settings import settings
from personal_historian.utils.timeutils import clamp_minutes


class ActivityReply(BaseModel):
    """Enrichment of a plain journal message."""

    response_text: str = Field(description="Conversational response to send to the user")
    next_checkin_minutes: int = Field(
        description="Minutes until the next check-in (5-1440)",
    )
    activity_summary: str = Field(description="Brief summary of what the user is doing")
    context_tags: list[str] = Field(
        default_factory=list,
        description="Optional tags for categorization",
    )

    @field_validator("next_checkin_minutes", mode="before")
    @classmethod
    def clamp_delay(cls, v) -> int:
        return clamp_minutes(
            v,
            settings.CHECKIN_MIN_MINUTES,
            settings.CHECKIN_MAX_MINUTES,
            settings.CHECKIN_DEFAULT_MINUTES,
        )

    @field_validator("context_tags", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return v or []


class FoodParse(BaseModel):
    """Fields extracted from a new ``food:`` entry."""

    food_description: str = Field(description="Description of the food consumed")
    context: str | None = Field(
        default=None,
        description="Eating context: alone, with friends, at work, etc.",
    )
    work_state: str | None = Field(
        default=None,
        description="Still working, on break, done for the day, or not a work day",
    )
    current_activity: str | None = Field(
        default=None,
        description="What the user is doing while eating",
    )
    eating_trigger: str | None = Field(
        default=None,
        description="Why the user is eating: timer, hunger, saw food, stress, celebration, etc.",
    )


class FoodReplyParse(BaseModel):
    """Answers to follow-up questions about a food entry."""

    context: str | None = Field(default=None, description="Eating context if mentioned")
    work_state: str | None = Field(default=None, description="Work state if mentioned")
    current_activity: str | None = Field(default=None, description="Current activity if mentioned")
    eating_trigger: str | None = Field(default=None, description="Eating trigger if mentioned")
