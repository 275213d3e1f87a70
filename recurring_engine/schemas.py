from pydantic import BaseModel, ConfigDict
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List
from uuid import UUID


# Detection Schemas
class DetectedSubscriptionResponse(BaseModel):
    """A recurring charge candidate inferred from transaction history."""
    merchant_name: str
    merchant_entity_id: Optional[str] = None
    logo_url: Optional[str] = None
    amount: float
    frequency: str  # daily, weekly, biweekly, semimonthly, monthly, yearly
    billing_day: Optional[int] = None
    first_billing_date: date
    last_transaction_date: date
    account_id: str
    account_name: str
    transaction_count: int
    confidence: str  # high, medium, low
    description: Optional[str] = None
    transaction_ids: List[str] = []

    model_config = ConfigDict(from_attributes=True)


# Subscription Schemas
class SubscriptionBase(BaseModel):
    service_name: str
    amount: Decimal
    billing_frequency: str = "monthly"
    billing_day: Optional[int] = None
    account_id: UUID
    first_billing_date: date
    description: Optional[str] = None
    logo_url: Optional[str] = None


class SubscriptionCreate(SubscriptionBase):
    pass


class SubscriptionUpdate(BaseModel):
    service_name: Optional[str] = None
    amount: Optional[Decimal] = None
    billing_frequency: Optional[str] = None
    billing_day: Optional[int] = None
    account_id: Optional[UUID] = None
    first_billing_date: Optional[date] = None
    description: Optional[str] = None
    logo_url: Optional[str] = None
    is_active: Optional[bool] = None


class SubscriptionFromDetection(DetectedSubscriptionResponse):
    """Confirm a detected candidate; optional overrides win over detected values."""
    service_name: Optional[str] = None
    amount_override: Optional[Decimal] = None


class SubscriptionResponse(SubscriptionBase):
    id: UUID
    user_id: str
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# Planned Payment Schemas
class PlannedPaymentResponse(BaseModel):
    id: UUID
    date: date
    type: str
    amount: Decimal
    account_id: UUID
    subscription_id: Optional[UUID] = None
    description: Optional[str] = None
    source: str
    status: str  # scheduled, paid, skipped, cancelled

    model_config = ConfigDict(from_attributes=True)


# Summary Schemas
class SubscriptionSummary(BaseModel):
    active_count: int
    paused_count: int
    monthly_equivalent_total: Decimal
    yearly_equivalent_total: Decimal
    by_frequency: dict = {}
