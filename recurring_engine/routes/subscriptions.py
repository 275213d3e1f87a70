"""
Subscription endpoints. Service errors (AppError) are rendered by the
exception handler registered in main.py.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional
from uuid import UUID

from recurring_engine.database import get_db
from recurring_engine.schemas import (
    DetectedSubscriptionResponse,
    PlannedPaymentResponse,
    SubscriptionCreate,
    SubscriptionFromDetection,
    SubscriptionResponse,
    SubscriptionSummary,
    SubscriptionUpdate,
)
from recurring_engine.services.cache import get_default_cache
from recurring_engine.services.event_publisher import get_event_publisher
from recurring_engine.services.single_flight import get_default_single_flight
from recurring_engine.services.subscription_detector import DEFAULT_WINDOW_MONTHS
from recurring_engine.services.user_subscriptions_service import UserSubscriptionsService

router = APIRouter()


def get_subscriptions_service(
    user_id: Optional[str] = None,
    db: Session = Depends(get_db)
) -> UserSubscriptionsService:
    return UserSubscriptionsService(
        db,
        user_id,
        cache=get_default_cache(),
        single_flight=get_default_single_flight(),
        publisher=get_event_publisher(),
    )


@router.get("/detect", response_model=List[DetectedSubscriptionResponse])
def detect_subscriptions(
    window_months: int = Query(DEFAULT_WINDOW_MONTHS, ge=1, le=24, description="Months of history to analyze"),
    service: UserSubscriptionsService = Depends(get_subscriptions_service)
):
    """
    Detect recurring charges in the user's recent expense history.

    Results are suggestions only; nothing is persisted until a candidate is
    confirmed through POST /from-detection.
    """
    detections = service.detect_subscriptions(window_months=window_months)
    return [DetectedSubscriptionResponse(**d.to_dict()) for d in detections]


@router.get("/", response_model=List[SubscriptionResponse])
def list_subscriptions(
    is_active: Optional[bool] = Query(None, description="Filter by active state"),
    service: UserSubscriptionsService = Depends(get_subscriptions_service)
):
    """List confirmed subscriptions for the current user."""
    return service.list_subscriptions(is_active=is_active)


@router.get("/summary", response_model=SubscriptionSummary)
def get_summary(service: UserSubscriptionsService = Depends(get_subscriptions_service)):
    """Monthly and yearly equivalent spend across active subscriptions."""
    return service.summary()


@router.post("/", response_model=SubscriptionResponse, status_code=201)
def create_subscription(
    subscription: SubscriptionCreate,
    service: UserSubscriptionsService = Depends(get_subscriptions_service)
):
    """Create a confirmed subscription and project its planned payments."""
    return service.create_subscription(subscription.model_dump())


@router.post("/from-detection", response_model=SubscriptionResponse, status_code=201)
def create_from_detection(
    detected: SubscriptionFromDetection,
    service: UserSubscriptionsService = Depends(get_subscriptions_service)
):
    """Confirm a detected candidate as a subscription."""
    return service.create_from_detection(
        detected.model_dump(exclude={"service_name", "amount_override"}),
        service_name=detected.service_name,
        amount=detected.amount_override,
    )


@router.get("/{subscription_id}", response_model=SubscriptionResponse)
def get_subscription(
    subscription_id: UUID,
    service: UserSubscriptionsService = Depends(get_subscriptions_service)
):
    """Get a specific subscription by ID."""
    return service.get_subscription(subscription_id)


@router.patch("/{subscription_id}", response_model=SubscriptionResponse)
def update_subscription(
    subscription_id: UUID,
    updates: SubscriptionUpdate,
    service: UserSubscriptionsService = Depends(get_subscriptions_service)
):
    """Update a subscription; its future planned payments are regenerated."""
    return service.update_subscription(subscription_id, updates.model_dump(exclude_unset=True))


@router.post("/{subscription_id}/pause", response_model=SubscriptionResponse)
def pause_subscription(
    subscription_id: UUID,
    service: UserSubscriptionsService = Depends(get_subscriptions_service)
):
    return service.pause_subscription(subscription_id)


@router.post("/{subscription_id}/resume", response_model=SubscriptionResponse)
def resume_subscription(
    subscription_id: UUID,
    service: UserSubscriptionsService = Depends(get_subscriptions_service)
):
    return service.resume_subscription(subscription_id)


@router.delete("/{subscription_id}", status_code=204)
def delete_subscription(
    subscription_id: UUID,
    service: UserSubscriptionsService = Depends(get_subscriptions_service)
):
    """Delete a subscription together with its planned payments."""
    service.delete_subscription(subscription_id)


@router.get("/{subscription_id}/planned-payments", response_model=List[PlannedPaymentResponse])
def list_planned_payments(
    subscription_id: UUID,
    service: UserSubscriptionsService = Depends(get_subscriptions_service)
):
    """Projected (and already paid) planned payments of a subscription, by date."""
    return service.list_planned_payments(subscription_id)
