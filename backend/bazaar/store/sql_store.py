"""
SQLAlchemy-backed reference implementation of the remote store contract.

WHAT: Persistent store that pushes full result sets to live subscribers
WHY: Exercise the coordination core against real asynchronous delivery
HOW: Writes commit through a session factory, then schedule snapshot pushes
     to every matching listener with loop.call_soon
"""

import asyncio
import itertools
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .contract import ErrorCallback, Unsubscribe, WriteResult
from ..core.database import SessionLocal, get_db
from ..core.models import (
    KycRecord, MessageRecord, NegotiationRecord, TransactionRecord,
    UserRecord, WalletRecord
)
from ..models.message import ChatMessage
from ..models.negotiation import (
    KycStatus, Negotiation, NegotiationStatus, SettlementEvent, User, UserRole
)
from ..utils.logger import get_logger

logger = get_logger(__name__)


def _as_utc(value: datetime | None) -> datetime:
    """SQLite drops tzinfo; stored values are always UTC."""
    if value is None:
        return datetime.fromtimestamp(0, tz=timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_negotiation(rec: NegotiationRecord) -> Negotiation:
    return Negotiation(
        id=rec.id,
        product_id=rec.product_id,
        product_name=rec.product_name or "",
        buyer_id=rec.buyer_id,
        farmer_id=rec.farmer_id,
        initial_price=rec.initial_price,
        offered_price=rec.offered_price,
        counter_price=rec.counter_price,
        quantity=rec.quantity,
        status=NegotiationStatus(rec.status),
        notes=rec.notes or "",
        last_updated=_as_utc(rec.last_updated),
        floor_price=rec.floor_price,
        target_price=rec.target_price,
        price_source=rec.price_source,
        price_verified=bool(rec.price_verified),
        quality_grade=rec.quality_grade,
    )


def _to_message(rec: MessageRecord) -> ChatMessage:
    return ChatMessage(
        id=rec.id,
        negotiation_id=rec.negotiation_id,
        sender_id=rec.sender_id,
        recipient_id=rec.recipient_id,
        text=rec.text,
        timestamp=_as_utc(rec.timestamp),
        status="sent",
        read=bool(rec.read),
    )


def _column_value(value: Any) -> Any:
    if isinstance(value, NegotiationStatus):
        return value.value
    return value


@dataclass
class _NegotiationListener:
    user_id: str
    role: UserRole
    on_data: Callable[[list[Negotiation]], None]
    on_error: ErrorCallback

    def matches(self, buyer_id: str, farmer_id: str) -> bool:
        key = buyer_id if self.role == UserRole.BUYER else farmer_id
        return key == self.user_id


@dataclass
class _MessageListener:
    negotiation_ids: frozenset[str]
    on_data: Callable[[list[ChatMessage]], None]
    on_error: ErrorCallback


class SqlRemoteStore:
    """
    Reference remote store.

    WHAT: RemoteStore implementation over SQLite
    WHY: Integration tests and local runs need a real authoritative store
    HOW: Listener registries keyed by token; unsubscribing removes the token,
         so snapshots already scheduled for it are dropped on delivery
    """

    def __init__(self, session_factory: sessionmaker | None = None):
        self._session_factory = session_factory or SessionLocal
        self._tokens = itertools.count(1)
        self._negotiation_listeners: dict[int, _NegotiationListener] = {}
        self._message_listeners: dict[int, _MessageListener] = {}

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe_negotiations(
        self,
        user_id: str,
        role: UserRole,
        on_data: Callable[[list[Negotiation]], None],
        on_error: ErrorCallback,
    ) -> Unsubscribe:
        token = next(self._tokens)
        self._negotiation_listeners[token] = _NegotiationListener(user_id, role, on_data, on_error)
        logger.debug(f"Negotiation feed {token} opened ({role.value} {user_id})")
        self._schedule(lambda: self._push_negotiations(token))

        def unsubscribe():
            if self._negotiation_listeners.pop(token, None) is not None:
                logger.debug(f"Negotiation feed {token} closed")

        return unsubscribe

    def subscribe_messages(
        self,
        negotiation_ids: Sequence[str],
        on_data: Callable[[list[ChatMessage]], None],
        on_error: ErrorCallback,
    ) -> Unsubscribe:
        token = next(self._tokens)
        self._message_listeners[token] = _MessageListener(frozenset(negotiation_ids), on_data, on_error)
        logger.debug(f"Message feed {token} opened for {len(negotiation_ids)} negotiations")
        self._schedule(lambda: self._push_messages(token))

        def unsubscribe():
            if self._message_listeners.pop(token, None) is not None:
                logger.debug(f"Message feed {token} closed")

        return unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._negotiation_listeners) + len(self._message_listeners)

    def _schedule(self, callback: Callable[[], None]):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            callback()
            return
        loop.call_soon(callback)

    def _push_negotiations(self, token: int):
        listener = self._negotiation_listeners.get(token)
        if listener is None:
            return
        column = (
            NegotiationRecord.buyer_id if listener.role == UserRole.BUYER
            else NegotiationRecord.farmer_id
        )
        try:
            with get_db(self._session_factory) as db:
                records = db.execute(
                    select(NegotiationRecord)
                    .where(column == listener.user_id)
                    .order_by(NegotiationRecord.last_updated.desc())
                ).scalars().all()
                snapshot = [_to_negotiation(r) for r in records]
        except SQLAlchemyError as e:
            logger.error(f"Negotiation feed {token} query failed: {e}")
            listener.on_error(e)
            return
        listener.on_data(snapshot)

    def _push_messages(self, token: int):
        listener = self._message_listeners.get(token)
        if listener is None:
            return
        try:
            with get_db(self._session_factory) as db:
                records = db.execute(
                    select(MessageRecord)
                    .where(MessageRecord.negotiation_id.in_(sorted(listener.negotiation_ids)))
                    .order_by(MessageRecord.timestamp.asc())
                ).scalars().all()
                snapshot = [_to_message(r) for r in records]
        except SQLAlchemyError as e:
            logger.error(f"Message feed {token} query failed: {e}")
            listener.on_error(e)
            return
        listener.on_data(snapshot)

    def _notify_negotiation_change(self, buyer_id: str, farmer_id: str):
        for token, listener in list(self._negotiation_listeners.items()):
            if listener.matches(buyer_id, farmer_id):
                self._schedule(lambda t=token: self._push_negotiations(t))

    def _notify_message_change(self, negotiation_id: str):
        for token, listener in list(self._message_listeners.items()):
            if negotiation_id in listener.negotiation_ids:
                self._schedule(lambda t=token: self._push_messages(t))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_negotiation(self, fields: dict[str, Any]) -> WriteResult:
        try:
            with get_db(self._session_factory) as db:
                record = NegotiationRecord(**{k: _column_value(v) for k, v in fields.items()})
                db.add(record)
                db.flush()
                negotiation_id = record.id
                buyer_id, farmer_id = record.buyer_id, record.farmer_id
        except (SQLAlchemyError, TypeError) as e:
            logger.error(f"create_negotiation failed: {e}")
            return WriteResult.failed(str(e))

        logger.info(f"Created negotiation {negotiation_id} ({buyer_id} -> {farmer_id})")
        self._notify_negotiation_change(buyer_id, farmer_id)
        return WriteResult.ok(negotiation_id)

    async def update_negotiation(self, negotiation_id: str, fields: dict[str, Any]) -> WriteResult:
        try:
            with get_db(self._session_factory) as db:
                record = db.get(NegotiationRecord, negotiation_id)
                if record is None:
                    return WriteResult.failed(f"Negotiation not found: {negotiation_id}")
                for key, value in fields.items():
                    if not hasattr(NegotiationRecord, key):
                        raise TypeError(f"Unknown negotiation field: {key}")
                    setattr(record, key, _column_value(value))
                buyer_id, farmer_id = record.buyer_id, record.farmer_id
        except (SQLAlchemyError, TypeError) as e:
            logger.error(f"update_negotiation {negotiation_id} failed: {e}")
            return WriteResult.failed(str(e))

        self._notify_negotiation_change(buyer_id, farmer_id)
        return WriteResult.ok(negotiation_id)

    async def send_message(self, negotiation: Negotiation, sender_id: str, text: str) -> WriteResult:
        recipient_id = negotiation.farmer_id if sender_id == negotiation.buyer_id else negotiation.buyer_id
        try:
            with get_db(self._session_factory) as db:
                record = db.get(NegotiationRecord, negotiation.id)
                if record is None:
                    return WriteResult.failed(f"Negotiation not found: {negotiation.id}")
                message = MessageRecord(
                    negotiation_id=negotiation.id,
                    sender_id=sender_id,
                    recipient_id=recipient_id,
                    text=text,
                )
                db.add(message)
                record.last_updated = datetime.now(timezone.utc)
                record.last_message = text[:100]
                record.last_message_sender_id = sender_id
                db.flush()
                message_id = message.id
        except SQLAlchemyError as e:
            logger.error(f"send_message on {negotiation.id} failed: {e}")
            return WriteResult.failed(str(e))

        logger.debug(f"Message {message_id} stored ({sender_id} -> {recipient_id})")
        self._notify_message_change(negotiation.id)
        self._notify_negotiation_change(negotiation.buyer_id, negotiation.farmer_id)
        return WriteResult.ok(message_id)

    async def record_settlement(self, event: SettlementEvent) -> WriteResult:
        """Credit the farmer wallet with a completed payment transaction."""
        try:
            with get_db(self._session_factory) as db:
                tx = TransactionRecord(
                    farmer_id=event.farmer_id,
                    type="Payment",
                    status="Completed",
                    amount=event.amount,
                    description=f"Payment from buyer for {event.product_name or event.product_id}",
                    related_id=event.negotiation_id,
                    metadata_json={
                        "negotiation_id": event.negotiation_id,
                        "buyer_id": event.buyer_id,
                        "product_id": event.product_id,
                        "quantity": event.quantity,
                        "final_price": event.final_price,
                    },
                )
                db.add(tx)
                wallet = db.get(WalletRecord, event.farmer_id)
                if wallet is None:
                    wallet = WalletRecord(farmer_id=event.farmer_id, total_balance=0.0)
                    db.add(wallet)
                wallet.total_balance = (wallet.total_balance or 0.0) + event.amount
                db.flush()
                tx_id = tx.id
        except SQLAlchemyError as e:
            logger.error(f"record_settlement for {event.negotiation_id} failed: {e}")
            return WriteResult.failed(str(e))

        logger.info(
            f"Recorded settlement {tx_id}: {event.quantity}kg at {event.final_price}/kg "
            f"credited to {event.farmer_id}"
        )
        return WriteResult.ok(tx_id)

    async def get_kyc_status(self, user_id: str) -> KycStatus:
        try:
            with get_db(self._session_factory) as db:
                record = db.get(KycRecord, user_id)
                return record.status if record else "none"
        except SQLAlchemyError as e:
            logger.error(f"get_kyc_status for {user_id} failed: {e}")
            return "none"

    async def set_user_role(self, user_id: str, role: UserRole) -> WriteResult:
        try:
            with get_db(self._session_factory) as db:
                record = db.get(UserRecord, user_id)
                if record is None:
                    return WriteResult.failed(f"User not found: {user_id}")
                record.role = role.value
        except SQLAlchemyError as e:
            logger.error(f"set_user_role for {user_id} failed: {e}")
            return WriteResult.failed(str(e))
        return WriteResult.ok(user_id)

    # ------------------------------------------------------------------
    # Administrative helpers
    # ------------------------------------------------------------------

    def upsert_user(self, user: User):
        with get_db(self._session_factory) as db:
            record = db.get(UserRecord, user.uid)
            if record is None:
                db.add(UserRecord(uid=user.uid, name=user.name, email=user.email, role=user.role.value))
            else:
                record.name = user.name
                record.email = user.email
                record.role = user.role.value

    def set_kyc_status(self, farmer_id: str, status: KycStatus):
        with get_db(self._session_factory) as db:
            record = db.get(KycRecord, farmer_id)
            if record is None:
                db.add(KycRecord(farmer_id=farmer_id, status=status, submitted_at=datetime.now(timezone.utc)))
            else:
                record.status = status

    def get_wallet_balance(self, farmer_id: str) -> float:
        with get_db(self._session_factory) as db:
            wallet = db.get(WalletRecord, farmer_id)
            return wallet.total_balance if wallet else 0.0
