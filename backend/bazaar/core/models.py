"""
ORM models for the reference store.

WHAT: SQLAlchemy models for all store tables
WHY: Persist negotiations, chat, ledger transactions, wallets, users and KYC
HOW: Declarative models with constraints and indexes on the feed filters
"""

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import (
    Column, Integer, String, Float, Boolean, DateTime, Text, JSON,
    ForeignKey, CheckConstraint, Index
)
from sqlalchemy.orm import relationship

from .database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid4())


class UserRecord(Base):
    """
    User profile table.

    WHAT: Marketplace identity with its current role
    WHY: Role switches are persisted before feeds are rebuilt
    """
    __tablename__ = "users"

    uid = Column(String(100), primary_key=True)
    name = Column(String(100), nullable=False, default="User")
    email = Column(String(200), nullable=True)
    role = Column(String(20), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    def __repr__(self):
        return f"<UserRecord(uid={self.uid}, role={self.role})>"


class KycRecord(Base):
    """Farmer identity-verification status."""
    __tablename__ = "farmer_kyc"

    farmer_id = Column(String(100), primary_key=True)
    status = Column(String(20), nullable=False, default="pending")
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="check_kyc_status"
        ),
    )


class NegotiationRecord(Base):
    """
    Negotiation table.

    WHAT: Authoritative bargaining record shared by buyer and farmer
    WHY: Both parties subscribe to it, keyed by their own id
    HOW: String status column holding NegotiationStatus values
    """
    __tablename__ = "negotiations"

    id = Column(String(36), primary_key=True, default=_new_id)
    product_id = Column(String(100), nullable=False)
    product_name = Column(String(200), nullable=False, default="")
    buyer_id = Column(String(100), nullable=False)
    farmer_id = Column(String(100), nullable=False)
    initial_price = Column(Float, nullable=False)
    offered_price = Column(Float, nullable=False)
    counter_price = Column(Float, nullable=True)
    quantity = Column(Integer, nullable=False)
    status = Column(String(30), nullable=False)
    notes = Column(Text, nullable=False, default="")
    last_updated = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    floor_price = Column(Float, nullable=True)
    target_price = Column(Float, nullable=True)
    price_source = Column(String(50), nullable=True)
    price_verified = Column(Boolean, nullable=False, default=False)
    quality_grade = Column(String(5), nullable=True)

    last_message = Column(String(100), nullable=True)
    last_message_sender_id = Column(String(100), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    messages = relationship("MessageRecord", back_populates="negotiation", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="check_negotiation_quantity_positive"),
        CheckConstraint("offered_price > 0", name="check_offered_price_positive"),
        Index("idx_negotiations_buyer", "buyer_id", "last_updated"),
        Index("idx_negotiations_farmer", "farmer_id", "last_updated"),
    )

    def __repr__(self):
        return f"<NegotiationRecord(id={self.id}, status={self.status})>"


class MessageRecord(Base):
    """Chat message table."""
    __tablename__ = "messages"

    id = Column(String(36), primary_key=True, default=_new_id)
    negotiation_id = Column(String(36), ForeignKey("negotiations.id", ondelete="CASCADE"), nullable=False)
    sender_id = Column(String(100), nullable=False)
    recipient_id = Column(String(100), nullable=True)
    text = Column(Text, nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    read = Column(Boolean, nullable=False, default=False)

    negotiation = relationship("NegotiationRecord", back_populates="messages")

    __table_args__ = (
        Index("idx_messages_negotiation_time", "negotiation_id", "timestamp"),
    )


class TransactionRecord(Base):
    """Farmer ledger transaction (payments credited on settlement)."""
    __tablename__ = "transactions"

    id = Column(String(36), primary_key=True, default=_new_id)
    farmer_id = Column(String(100), nullable=False)
    type = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False)
    amount = Column(Float, nullable=False)
    description = Column(Text, nullable=False, default="")
    related_id = Column(String(36), nullable=True)
    metadata_json = Column(JSON, nullable=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        CheckConstraint("amount >= 0", name="check_transaction_amount_non_negative"),
        Index("idx_transactions_farmer", "farmer_id", "timestamp"),
    )


class WalletRecord(Base):
    """Farmer wallet balance."""
    __tablename__ = "wallets"

    farmer_id = Column(String(100), primary_key=True)
    total_balance = Column(Float, nullable=False, default=0.0)
    last_updated = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
