"""
Lifecycle of confirmed subscriptions: create, update, pause, resume, delete.

Every mutation re-projects planned payments (or clears them), commits once,
then invalidates the owner's cached aggregates and publishes a
subscriptions_changed signal. If the old planned payments cannot be
deleted the mutation is rolled back and raises PersistenceError.

Usage:
    service = UserSubscriptionsService(db, user_id, cache=cache, publisher=publisher)
    subscription = service.create_subscription({...})
    service.pause_subscription(subscription.id)
"""
import logging
from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Callable, Dict, List, Mapping, Optional, Union
from uuid import UUID

from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from recurring_engine.models import Account, PlannedPayment, UserServiceSubscription
from recurring_engine.db_helpers import get_user_id
from recurring_engine.errors import NotFoundError, PersistenceError, ValidationError
from recurring_engine.services.billing_cadence import SUPPORTED_FREQUENCIES
from recurring_engine.services.cache import TTLCache, owner_cache_prefix, summary_cache_key
from recurring_engine.services.event_publisher import EventPublisher
from recurring_engine.services.payment_projector import PaymentProjector, ProjectionResult
from recurring_engine.services.single_flight import SingleFlight
from recurring_engine.services.subscription_detector import (
    DEFAULT_WINDOW_MONTHS,
    DetectedSubscription,
    SubscriptionDetector,
)

logger = logging.getLogger(__name__)


# Monthly-equivalent multipliers for the summary
MONTHLY_MULTIPLIERS = {
    "daily": Decimal("30.44"),
    "weekly": Decimal("4.33"),
    "biweekly": Decimal("2.17"),
    "semimonthly": Decimal("2"),
    "monthly": Decimal("1"),
    "yearly": Decimal("1") / Decimal("12"),
}

CENT = Decimal("0.01")

UPDATABLE_FIELDS = (
    "service_name",
    "amount",
    "description",
    "billing_frequency",
    "billing_day",
    "account_id",
    "first_billing_date",
    "logo_url",
    "is_active",
)

SubscriptionId = Union[str, UUID]


def _parse_uuid(value: Any, message: str, error_cls=ValidationError) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError, AttributeError) as exc:
        raise error_cls(message) from exc


def _validate_service_name(value: Any) -> str:
    name = value.strip() if isinstance(value, str) else ""
    if not name:
        raise ValidationError("Service name is required")
    return name


def _validate_amount(value: Any) -> Decimal:
    if value is None or isinstance(value, bool):
        raise ValidationError("Amount is required")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError("Amount must be a number") from exc
    if not amount.is_finite() or amount <= 0:
        raise ValidationError("Amount must be greater than zero")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def _validate_frequency(value: Any) -> str:
    frequency = (value or "monthly")
    if not isinstance(frequency, str) or frequency.strip().lower() not in SUPPORTED_FREQUENCIES:
        raise ValidationError(
            f"Billing frequency must be one of: {', '.join(SUPPORTED_FREQUENCIES)}"
        )
    return frequency.strip().lower()


def _validate_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError as exc:
            raise ValidationError("First billing date must be an ISO date (YYYY-MM-DD)") from exc
    raise ValidationError("First billing date is required")


def _day_kind(frequency: str) -> str:
    return "day_of_week" if frequency in ("weekly", "biweekly") else "day_of_month"


def _validate_billing_day(value: Any, frequency: str) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError("Billing day must be an integer")
    if _day_kind(frequency) == "day_of_week":
        if not 0 <= value <= 6:
            raise ValidationError("Billing day must be a day of week between 0 (Sunday) and 6")
    elif not 1 <= value <= 31:
        raise ValidationError("Billing day must be a day of month between 1 and 31")
    return value


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class UserSubscriptionsService:
    """Confirmed-subscription operations scoped to the authenticated owner."""

    def __init__(
        self,
        db: Session,
        user_id: Optional[str] = None,
        cache: Optional[TTLCache] = None,
        single_flight: Optional[SingleFlight] = None,
        publisher: Optional[EventPublisher] = None,
        projector: Optional[PaymentProjector] = None,
        today: Callable[[], date] = date.today,
    ):
        self.db = db
        self._requested_user_id = user_id
        self.cache = cache
        self.single_flight = single_flight
        self.publisher = publisher
        self.projector = projector or PaymentProjector(db, today=today)

    @property
    def user_id(self) -> str:
        return get_user_id(self._requested_user_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def detect_subscriptions(self, window_months: int = DEFAULT_WINDOW_MONTHS) -> List[DetectedSubscription]:
        detector = SubscriptionDetector(
            self.db,
            self._requested_user_id,
            cache=self.cache,
            single_flight=self.single_flight,
        )
        return detector.detect(window_months=window_months)

    def list_subscriptions(self, is_active: Optional[bool] = None) -> List[UserServiceSubscription]:
        query = self.db.query(UserServiceSubscription).filter(
            UserServiceSubscription.user_id == self.user_id
        )
        if is_active is not None:
            query = query.filter(UserServiceSubscription.is_active == is_active)
        return query.order_by(UserServiceSubscription.created_at.desc()).all()

    def get_subscription(self, subscription_id: SubscriptionId) -> UserServiceSubscription:
        return self._get_owned(subscription_id, self.user_id)

    def list_planned_payments(self, subscription_id: SubscriptionId) -> List[PlannedPayment]:
        subscription = self._get_owned(subscription_id, self.user_id)
        return self.projector.store.list_for_subscription(subscription.id)

    def summary(self) -> Dict[str, Any]:
        """Counts and monthly/yearly equivalent spend of the owner's subscriptions."""
        user_id = self.user_id
        key = summary_cache_key(user_id)
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                return dict(cached)

        subscriptions = (
            self.db.query(UserServiceSubscription)
            .filter(UserServiceSubscription.user_id == user_id)
            .all()
        )

        monthly_total = Decimal("0")
        by_frequency: Dict[str, int] = {}
        active_count = 0
        for subscription in subscriptions:
            if not subscription.is_active:
                continue
            active_count += 1
            frequency = subscription.billing_frequency or "monthly"
            by_frequency[frequency] = by_frequency.get(frequency, 0) + 1
            multiplier = MONTHLY_MULTIPLIERS.get(frequency, Decimal("1"))
            monthly_total += Decimal(str(subscription.amount)) * multiplier

        monthly_total = monthly_total.quantize(CENT, rounding=ROUND_HALF_UP)
        result = {
            "active_count": active_count,
            "paused_count": len(subscriptions) - active_count,
            "monthly_equivalent_total": monthly_total,
            "yearly_equivalent_total": (monthly_total * 12).quantize(CENT, rounding=ROUND_HALF_UP),
            "by_frequency": by_frequency,
        }

        if self.cache is not None:
            self.cache.set(key, result)
        return result

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create_subscription(self, data: Mapping[str, Any]) -> UserServiceSubscription:
        """
        Validate and persist a confirmed subscription, then project its
        planned payments.

        Raises:
            ValidationError: Unauthenticated caller, missing or malformed field
            PersistenceError: The subscription could not be stored
        """
        user_id = self.user_id

        frequency = _validate_frequency(data.get("billing_frequency"))
        subscription = UserServiceSubscription(
            user_id=user_id,
            service_name=_validate_service_name(data.get("service_name")),
            amount=_validate_amount(data.get("amount")),
            description=_optional_text(data.get("description")),
            billing_frequency=frequency,
            billing_day=_validate_billing_day(data.get("billing_day"), frequency),
            account_id=self._validate_account(data.get("account_id"), user_id),
            first_billing_date=_validate_date(data.get("first_billing_date")),
            logo_url=_optional_text(data.get("logo_url")),
            is_active=True,
        )

        try:
            self.db.add(subscription)
            self.db.flush()
        except SQLAlchemyError as exc:
            raise self._persistence_error("Failed to create subscription", exc) from exc

        self._reproject(subscription, "Failed to create subscription")
        self._commit("Failed to create subscription")
        self.db.refresh(subscription)

        logger.info(f"[USER_SUBSCRIPTIONS] Created subscription {subscription.id} ({subscription.service_name})")
        self._after_mutation(user_id, "created", subscription.id)
        return subscription

    def create_from_detection(
        self,
        detected: Union[DetectedSubscription, Mapping[str, Any]],
        service_name: Optional[str] = None,
        amount: Optional[Any] = None,
    ) -> UserServiceSubscription:
        """Confirm a detected candidate as a subscription anchored on its first charge."""
        values = detected.to_dict() if isinstance(detected, DetectedSubscription) else dict(detected)
        return self.create_subscription({
            "service_name": service_name or values.get("merchant_name"),
            "amount": amount if amount is not None else values.get("amount"),
            "billing_frequency": values.get("frequency"),
            "billing_day": values.get("billing_day"),
            "account_id": values.get("account_id"),
            "first_billing_date": values.get("first_billing_date"),
            "logo_url": values.get("logo_url"),
            "description": values.get("description"),
        })

    def update_subscription(
        self,
        subscription_id: SubscriptionId,
        patch: Mapping[str, Any],
    ) -> UserServiceSubscription:
        """
        Apply a partial update and fully re-project planned payments.

        Unknown keys are ignored; keys present with a None value clear optional
        fields and are rejected for required ones. Every field is validated
        before any is written, so a rejected patch leaves the subscription
        untouched.
        """
        user_id = self.user_id
        subscription = self._get_owned(subscription_id, user_id)
        updates = {k: v for k, v in patch.items() if k in UPDATABLE_FIELDS}

        values: Dict[str, Any] = {}
        frequency = subscription.billing_frequency or "monthly"
        if "billing_frequency" in updates:
            if updates["billing_frequency"] is None:
                raise ValidationError("Billing frequency is required")
            frequency = _validate_frequency(updates["billing_frequency"])
            values["billing_frequency"] = frequency
        if "service_name" in updates:
            values["service_name"] = _validate_service_name(updates["service_name"])
        if "amount" in updates:
            values["amount"] = _validate_amount(updates["amount"])
        if "description" in updates:
            values["description"] = _optional_text(updates["description"])
        if "logo_url" in updates:
            values["logo_url"] = _optional_text(updates["logo_url"])
        if "account_id" in updates:
            values["account_id"] = self._validate_account(updates["account_id"], user_id)
        if "first_billing_date" in updates:
            values["first_billing_date"] = _validate_date(updates["first_billing_date"])
        if "billing_day" in updates:
            values["billing_day"] = _validate_billing_day(updates["billing_day"], frequency)
        elif _day_kind(frequency) != _day_kind(subscription.billing_frequency or "monthly"):
            # A day of month means nothing as a day of week and vice versa
            values["billing_day"] = None
        if "is_active" in updates and updates["is_active"] is not None:
            values["is_active"] = bool(updates["is_active"])

        for field, value in values.items():
            setattr(subscription, field, value)

        try:
            self.db.flush()
        except SQLAlchemyError as exc:
            raise self._persistence_error("Failed to update subscription", exc) from exc

        if subscription.is_active:
            self._reproject(subscription, "Failed to update subscription")
        else:
            self._clear_projection(subscription, "Failed to update subscription")

        self._commit("Failed to update subscription")
        self.db.refresh(subscription)

        self._after_mutation(user_id, "updated", subscription.id)
        return subscription

    def pause_subscription(self, subscription_id: SubscriptionId) -> UserServiceSubscription:
        user_id = self.user_id
        subscription = self._get_owned(subscription_id, user_id)
        if not subscription.is_active:
            raise ValidationError("Subscription is already paused")

        subscription.is_active = False
        self._clear_projection(subscription, "Failed to pause subscription")
        self._commit("Failed to pause subscription")
        self.db.refresh(subscription)

        logger.info(f"[USER_SUBSCRIPTIONS] Paused subscription {subscription.id}")
        self._after_mutation(user_id, "paused", subscription.id)
        return subscription

    def resume_subscription(self, subscription_id: SubscriptionId) -> UserServiceSubscription:
        user_id = self.user_id
        subscription = self._get_owned(subscription_id, user_id)
        if subscription.is_active:
            raise ValidationError("Subscription is already active")

        subscription.is_active = True
        try:
            self.db.flush()
        except SQLAlchemyError as exc:
            raise self._persistence_error("Failed to resume subscription", exc) from exc

        self._reproject(subscription, "Failed to resume subscription")
        self._commit("Failed to resume subscription")
        self.db.refresh(subscription)

        logger.info(f"[USER_SUBSCRIPTIONS] Resumed subscription {subscription.id}")
        self._after_mutation(user_id, "resumed", subscription.id)
        return subscription

    def delete_subscription(self, subscription_id: SubscriptionId) -> None:
        """Delete the subscription and every planned payment it produced, paid ones included."""
        user_id = self.user_id
        subscription = self._get_owned(subscription_id, user_id)
        deleted_id = subscription.id

        try:
            self.db.query(PlannedPayment).filter(
                PlannedPayment.subscription_id == deleted_id
            ).delete(synchronize_session=False)
            self.db.delete(subscription)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error(f"[USER_SUBSCRIPTIONS] Error deleting subscription {subscription_id}: {exc}")
            raise PersistenceError("Failed to delete subscription") from exc

        logger.info(f"[USER_SUBSCRIPTIONS] Deleted subscription {deleted_id}")
        self._after_mutation(user_id, "deleted", deleted_id)

    def refresh_projections(self) -> ProjectionResult:
        """
        Roll every active subscription's horizon forward; used by the scheduled refresh.

        A subscription whose old rows cannot be deleted keeps them until the
        next refresh; the others are still regenerated.
        """
        user_id = self.user_id
        total = ProjectionResult()
        for subscription in self.list_subscriptions(is_active=True):
            try:
                result = self.projector.replace_all(subscription)
            except (ValueError, SQLAlchemyError) as exc:
                logger.warning(
                    f"[USER_SUBSCRIPTIONS] Keeping existing planned payments for subscription "
                    f"{subscription.id}: {exc}"
                )
                continue
            total.deleted += result.deleted
            total.created += result.created
            total.failed += result.failed

        self._commit("Failed to refresh planned payments")
        self._after_mutation(user_id, "refreshed", None)
        return total

    # ------------------------------------------------------------------
    # ------------------------------------------------------------------

    def _get_owned(self, subscription_id: SubscriptionId, user_id: str) -> UserServiceSubscription:
        parsed_id = _parse_uuid(subscription_id, "Subscription not found", NotFoundError)
        subscription = self.db.query(UserServiceSubscription).filter(
            UserServiceSubscription.id == parsed_id,
            UserServiceSubscription.user_id == user_id,
        ).first()
        if not subscription:
            raise NotFoundError("Subscription not found")
        return subscription

    def _validate_account(self, account_id: Any, user_id: str) -> UUID:
        if account_id is None or account_id == "":
            raise ValidationError("Account is required")
        parsed_id = _parse_uuid(account_id, "Account id is malformed")
        exists = self.db.query(Account.id).filter(
            Account.id == parsed_id,
            Account.user_id == user_id,
        ).first()
        if not exists:
            raise ValidationError("Account not found")
        return parsed_id

    def _reproject(self, subscription: UserServiceSubscription, failure_message: str) -> ProjectionResult:
        """Regenerate planned payments inside a mutation; a failed delete aborts the mutation."""
        try:
            return self.projector.replace_all(subscription)
        except SQLAlchemyError as exc:
            raise self._persistence_error(failure_message, exc) from exc
        except ValueError as exc:
            logger.error(
                f"[USER_SUBSCRIPTIONS] Error projecting planned payments for subscription {subscription.id}: {exc}"
            )
            return ProjectionResult()

    def _clear_projection(self, subscription: UserServiceSubscription, failure_message: str) -> int:
        try:
            return self.projector.clear(subscription.id)
        except SQLAlchemyError as exc:
            raise self._persistence_error(failure_message, exc) from exc

    def _persistence_error(self, failure_message: str, exc: Exception) -> PersistenceError:
        """Roll back the pending mutation and build the error to raise."""
        self.db.rollback()
        logger.error(f"[USER_SUBSCRIPTIONS] {failure_message}: {exc}")
        return PersistenceError(failure_message)

    def _commit(self, failure_message: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            raise self._persistence_error(failure_message, exc) from exc

    def _after_mutation(self, user_id: str, action: str, subscription_id: Optional[UUID]) -> None:
        if self.cache is not None:
            self.cache.invalidate_prefix(owner_cache_prefix(user_id))
            self.cache.invalidate(summary_cache_key(user_id))
        if self.single_flight is not None:
            self.single_flight.forget_prefix(owner_cache_prefix(user_id))
        if self.publisher is not None:
            try:
                self.publisher.publish_subscriptions_changed(
                    user_id,
                    action,
                    str(subscription_id) if subscription_id else None,
                )
            except Exception as exc:  # noqa: BLE001
                logger.warning(f"[USER_SUBSCRIPTIONS] Failed to publish change signal: {exc}")
