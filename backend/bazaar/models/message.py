"""
Chat message models for negotiation conversations.

WHAT: Message structure with delivery status
WHY: Optimistic local records must be told apart from confirmed remote ones
HOW: Frozen Pydantic model, temporary ids carry a fixed prefix
"""

from datetime import datetime
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from .negotiation import utcnow


MessageStatus = Literal["sending", "sent", "failed"]

TEMP_ID_PREFIX = "temp-"


def new_temp_id() -> str:
    """Locally unique provisional id (two sends in the same millisecond must not collide)."""
    return f"{TEMP_ID_PREFIX}{uuid4().hex}"


class ChatMessage(BaseModel):
    """A message in a negotiation's chat channel."""

    model_config = ConfigDict(frozen=True)

    id: str
    negotiation_id: str
    sender_id: str
    recipient_id: str | None = None
    text: str = Field(max_length=5000)
    timestamp: datetime = Field(default_factory=utcnow)
    status: MessageStatus = "sent"
    read: bool = False

    @property
    def is_provisional(self) -> bool:
        return self.id.startswith(TEMP_ID_PREFIX)

    def echoes(self, other: "ChatMessage") -> bool:
        """True if `other` carries the same negotiation, sender and text."""
        return (
            self.negotiation_id == other.negotiation_id
            and self.sender_id == other.sender_id
            and self.text == other.text
        )
