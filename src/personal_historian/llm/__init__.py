"""Model-backed enrichment: structured parsing and conversational replies."""

from personal_historian.llm.activity import process_user_message
from personal_historian.llm.client import Enricher
from personal_historian.llm.schemas import ActivityReply, FoodParse, FoodReplyParse

__all__ = [
    "ActivityReply",
    "Enricher",
    "FoodParse",
    "FoodReplyParse",
    "process_user_message",
]
