"""
SQLAlchemy models for accounts, transactions, confirmed subscriptions and
their projected planned payments.
Column types are kept portable so the same models run on PostgreSQL and SQLite.
"""
import uuid
from datetime import datetime
from sqlalchemy import (
    Column,
    String,
    Boolean,
    Date,
    DateTime,
    Numeric,
    Text,
    Integer,
    ForeignKey,
    Index,
    JSON,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from recurring_engine.database import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


class User(Base):
    """
    Minimal user model for foreign key relationships.
    Identity itself is owned by the auth provider in front of this service.
    """
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    name = Column(Text, nullable=True)
    email = Column(Text, unique=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    accounts = relationship("Account", back_populates="user", cascade="all, delete-orphan")
    transactions = relationship("Transaction", back_populates="user", cascade="all, delete-orphan")
    subscriptions = relationship("UserServiceSubscription", back_populates="user", cascade="all, delete-orphan")


class Account(Base):
    """
    Account model. Only the fields needed for name lookup and scoping are mapped.
    """
    __tablename__ = "accounts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    account_type = Column(String(50), nullable=False, default="checking")  # checking, savings, credit
    currency = Column(String(3), default="USD")
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    user = relationship("User", back_populates="accounts")
    transactions = relationship("Transaction", back_populates="account")


class Transaction(Base):
    """
    Transaction model (read-only input for detection).
    Amount and description may be stored encrypted; the plaintext columns are
    kept for rows written before encryption was enabled.
    """
    __tablename__ = "transactions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    account_id = Column(Uuid, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    transaction_type = Column(String(20), nullable=False)  # income, expense, transfer
    amount = Column(Numeric(15, 2), nullable=True)
    amount_ciphertext = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    description_ciphertext = Column(Text, nullable=True)
    merchant_metadata = Column(JSONType, nullable=True)  # merchant_name, merchant_entity_id, logo_url
    booked_at = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    user = relationship("User", back_populates="transactions")
    account = relationship("Account", back_populates="transactions")

    # Indexes and constraints
    __table_args__ = (
        Index("idx_transactions_user_type_booked", "user_id", "transaction_type", "booked_at"),
    )


class UserServiceSubscription(Base):
    """
    Confirmed recurring charge (Netflix, Spotify, gym...).
    first_billing_date anchors every future cadence calculation.
    """
    __tablename__ = "user_service_subscriptions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    service_name = Column(String(255), nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)
    description = Column(Text, nullable=True)
    billing_frequency = Column(String(20), nullable=False, default="monthly")  # daily, weekly, biweekly, semimonthly, monthly, yearly
    billing_day = Column(Integer, nullable=True)
    account_id = Column(Uuid, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    first_billing_date = Column(Date, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    logo_url = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    user = relationship("User", back_populates="subscriptions")
    account = relationship("Account")
    planned_payments = relationship(
        "PlannedPayment",
        back_populates="subscription",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    # Indexes and constraints
    __table_args__ = (
        Index("idx_user_service_subscriptions_user", "user_id"),
        Index("idx_user_service_subscriptions_active", "is_active"),
    )


class PlannedPayment(Base):
    """
    Projected future occurrence of a recurring charge.
    Rows with status "paid" belong to the mark-as-paid flow and are never
    touched by re-projection.
    """
    __tablename__ = "planned_payments"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)
    type = Column(String(20), nullable=False, default="expense")
    amount = Column(Numeric(15, 2), nullable=False)
    account_id = Column(Uuid, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    subscription_id = Column(
        Uuid,
        ForeignKey("user_service_subscriptions.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    description = Column(Text, nullable=True)
    source = Column(String(20), nullable=False, default="subscription")  # subscription, recurring, debt, goal, manual
    status = Column(String(20), nullable=False, default="scheduled")  # scheduled, paid, skipped, cancelled
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    subscription = relationship("UserServiceSubscription", back_populates="planned_payments")

    # Indexes and constraints
    __table_args__ = (
        Index("idx_planned_payments_subscription_status", "subscription_id", "status"),
    )
