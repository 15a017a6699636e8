"""
Optimistic chat delivery with retry.

WHAT: Insert messages locally before the network, track sending/sent/failed
WHY: Chat must feel instant, and a failed write must stay visible and retryable
HOW: Dispatch MessageQueued synchronously, then await the store write and
     dispatch the outcome; one in-flight write per message id
"""

from ..models.message import ChatMessage, new_temp_id
from ..models.negotiation import Negotiation, utcnow
from ..store.contract import RemoteStore, WriteResult
from ..utils.exceptions import NotFoundError, RemoteWriteError, ValidationError
from ..utils.logger import get_logger
from .session_state import MessageQueued, MessageRemoved, MessageStatusChanged, StateStore

logger = get_logger(__name__)


class MessagePipeline:
    """Per-negotiation chat writes with optimistic insertion."""

    def __init__(self, store: RemoteStore, state: StateStore):
        self.store = store
        self.state = state
        self._in_flight: set[str] = set()

    def is_in_flight(self, message_id: str) -> bool:
        return message_id in self._in_flight

    async def send(self, negotiation: Negotiation, sender_id: str, text: str) -> ChatMessage:
        """
        Send a chat message.

        The provisional message is in local state before the first await.
        Returns the message as it stands after the write resolved.
        """
        body = text.strip()
        if not body:
            raise ValidationError("Message text cannot be empty", field="text")

        message = ChatMessage(
            id=new_temp_id(),
            negotiation_id=negotiation.id,
            sender_id=sender_id,
            recipient_id=negotiation.farmer_id if sender_id == negotiation.buyer_id else negotiation.buyer_id,
            text=body,
            timestamp=utcnow(),
            status="sending",
        )
        self.state.dispatch(MessageQueued(message))

        delivered = await self._write(message.id, negotiation, sender_id, body)
        self._settle(message.id, "sent" if delivered else "failed")

        current = self.state.state.find_message(message.id)
        # The snapshot may already have replaced it with the confirmed record
        return current or message.model_copy(update={"status": "sent" if delivered else "failed"})

    async def retry(self, message_id: str) -> bool:
        """
        Re-send a failed message.

        Returns True when delivered (the provisional record is removed and the
        feed supplies the canonical one), False when it failed again or a
        write for this id is already outstanding.

        Raises:
            NotFoundError: message or its negotiation is no longer known
            ValidationError: message is not in the failed state
        """
        if message_id in self._in_flight:
            logger.info(f"Retry of {message_id} ignored: write already in flight")
            return False

        snapshot = self.state.state
        message = snapshot.find_message(message_id)
        if message is None:
            raise NotFoundError("Message", message_id)
        if message.status != "failed":
            raise ValidationError(
                f"Only failed messages can be retried (status: {message.status})",
                field="status"
            )

        negotiation = snapshot.find_negotiation(message.negotiation_id)
        if negotiation is None:
            raise NotFoundError("Negotiation", message.negotiation_id)

        self.state.dispatch(MessageStatusChanged(message_id, "sending"))

        delivered = await self._write(message_id, negotiation, message.sender_id, message.text)
        if delivered:
            self.state.dispatch(MessageRemoved(message_id))
            logger.info(f"Retry of {message_id} delivered")
        else:
            self._settle(message_id, "failed")
        return delivered

    async def _write(self, message_id: str, negotiation: Negotiation, sender_id: str, text: str) -> bool:
        self._in_flight.add(message_id)
        try:
            result = await self.store.send_message(negotiation, sender_id, text)
        except Exception as e:
            result = WriteResult.failed(str(e))
        finally:
            self._in_flight.discard(message_id)

        if not result.success:
            error = RemoteWriteError("send_message", result.error)
            logger.error(f"{error.message} (message {message_id}, negotiation {negotiation.id})")
            return False
        return True

    def _settle(self, message_id: str, status: str):
        if self.state.state.find_message(message_id) is None:
            logger.debug(f"Message {message_id} already superseded; skipping {status}")
            return
        self.state.dispatch(MessageStatusChanged(message_id, status))
