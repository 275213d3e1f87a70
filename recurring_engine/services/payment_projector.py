"""
Projects a confirmed subscription onto planned-payment rows.

Re-projection policy: every create/update/resume deletes all non-paid planned
payments of the subscription and regenerates them from first_billing_date.
Paid rows are owned by the mark-as-paid flow and are never touched here.
"""
import os
import logging
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation
from typing import Callable, List, Optional, Tuple
from uuid import UUID

from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from recurring_engine.models import PlannedPayment, UserServiceSubscription
from recurring_engine.services.billing_cadence import next_billing_date

logger = logging.getLogger(__name__)


# Configuration
PLANNED_HORIZON_DAYS = int(os.getenv("PLANNED_HORIZON_DAYS", "365"))
PLANNED_PAYMENT_BATCH_SIZE = int(os.getenv("PLANNED_PAYMENT_BATCH_SIZE", "50"))

# Guards against a cadence defect looping forever
MAX_PROJECTION_ITERATIONS = 100

PAID_STATUS = "paid"
SCHEDULED_STATUS = "scheduled"
SUBSCRIPTION_SOURCE = "subscription"


@dataclass
class PlannedPaymentDraft:
    """An unpersisted planned payment."""
    date: date
    amount: Decimal
    account_id: UUID
    subscription_id: UUID
    user_id: str
    description: Optional[str] = None
    type: str = "expense"
    source: str = SUBSCRIPTION_SOURCE
    status: str = SCHEDULED_STATUS

    def to_model(self) -> PlannedPayment:
        return PlannedPayment(
            user_id=self.user_id,
            date=self.date,
            type=self.type,
            amount=self.amount,
            account_id=self.account_id,
            subscription_id=self.subscription_id,
            description=self.description,
            source=self.source,
            status=self.status,
        )


@dataclass
class ProjectionResult:
    deleted: int = 0
    created: int = 0
    failed: int = 0


def _coerce_amount(value) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not amount.is_finite():
        return None
    return amount


class PlannedPaymentStore:
    """SQLAlchemy persistence for planned-payment rows of one session."""

    def __init__(self, db: Session):
        self.db = db

    def delete_unpaid(self, subscription_id: UUID) -> int:
        """Delete every non-paid planned payment of a subscription."""
        return (
            self.db.query(PlannedPayment)
            .filter(
                PlannedPayment.subscription_id == subscription_id,
                PlannedPayment.status != PAID_STATUS,
            )
            .delete(synchronize_session=False)
        )

    def insert(self, draft: PlannedPaymentDraft) -> None:
        self.db.add(draft.to_model())
        self.db.flush()

    def insert_batch(self, drafts: List[PlannedPaymentDraft]) -> Tuple[int, int]:
        """
        Insert rows one SAVEPOINT at a time so a failed row is skipped
        without losing the rest of the batch.

        Returns:
            (created, failed)
        """
        created = 0
        failed = 0
        for draft in drafts:
            try:
                with self.db.begin_nested():
                    self.insert(draft)
                created += 1
            except SQLAlchemyError as exc:
                failed += 1
                logger.error(
                    f"[PAYMENT_PROJECTOR] Error creating planned payment for subscription "
                    f"{draft.subscription_id} on {draft.date}: {exc}"
                )
        return created, failed

    def list_for_subscription(self, subscription_id: UUID) -> List[PlannedPayment]:
        return (
            self.db.query(PlannedPayment)
            .filter(PlannedPayment.subscription_id == subscription_id)
            .order_by(PlannedPayment.date.asc())
            .all()
        )


class PaymentProjector:
    """
    Generates and regenerates bounded future planned payments for a subscription.

    project() is pure; replace_all() and clear() write through the store and
    leave committing to the caller, so the delete and the regeneration land in
    the same transaction as the triggering change.
    """

    def __init__(
        self,
        db: Optional[Session] = None,
        store: Optional[PlannedPaymentStore] = None,
        horizon_days: int = PLANNED_HORIZON_DAYS,
        batch_size: int = PLANNED_PAYMENT_BATCH_SIZE,
        today: Callable[[], date] = date.today,
    ):
        if store is None and db is None:
            raise ValueError("PaymentProjector needs a database session or a store")
        self.store = store or PlannedPaymentStore(db)
        self.horizon_days = horizon_days
        self.batch_size = max(1, batch_size)
        self._today = today

    @staticmethod
    def project(
        subscription: UserServiceSubscription,
        horizon_days: int = PLANNED_HORIZON_DAYS,
        today: Optional[date] = None,
    ) -> List[PlannedPaymentDraft]:
        """
        Compute planned payments for every billing date in [today, today + horizon_days].

        Inactive subscriptions, subscriptions without an account and non-positive
        amounts project nothing.
        """
        today = today or date.today()
        amount = _coerce_amount(subscription.amount)

        if not subscription.is_active or not subscription.account_id:
            return []
        if amount is None or amount <= 0:
            return []

        anchor = subscription.first_billing_date
        frequency = subscription.billing_frequency or "monthly"
        horizon = today + timedelta(days=horizon_days)

        drafts: List[PlannedPaymentDraft] = []
        current = anchor
        iterations = 0

        while current <= horizon and iterations < MAX_PROJECTION_ITERATIONS:
            if current >= today:
                drafts.append(
                    PlannedPaymentDraft(
                        date=current,
                        amount=amount,
                        account_id=subscription.account_id,
                        subscription_id=subscription.id,
                        user_id=subscription.user_id,
                        description=subscription.service_name,
                    )
                )
            current = next_billing_date(current, frequency, anchor)
            iterations += 1

        if iterations >= MAX_PROJECTION_ITERATIONS and current <= horizon:
            logger.warning(
                f"[PAYMENT_PROJECTOR] Hit the {MAX_PROJECTION_ITERATIONS}-iteration cap for "
                f"subscription {subscription.id} ({frequency}) before reaching {horizon}"
            )

        return drafts

    def clear(self, subscription_id: UUID) -> int:
        """
        Remove every non-paid planned payment.

        The delete runs in a savepoint; on failure the savepoint is rolled
        back and the SQLAlchemyError propagates so no caller regenerates on
        top of rows that are still there.
        """
        try:
            with self.store.db.begin_nested():
                deleted = self.store.delete_unpaid(subscription_id)
        except SQLAlchemyError as exc:
            logger.error(
                f"[PAYMENT_PROJECTOR] Error deleting planned payments for subscription {subscription_id}: {exc}"
            )
            raise
        logger.debug(f"[PAYMENT_PROJECTOR] Deleted {deleted} planned payments for {subscription_id}")
        return deleted

    def replace_all(
        self,
        subscription: UserServiceSubscription,
        today: Optional[date] = None,
    ) -> ProjectionResult:
        """
        Delete the subscription's non-paid planned payments and regenerate them.

        Insert failures are isolated per row and reported in the result. A
        failed delete raises before anything is inserted, leaving the
        existing rows untouched.
        """
        result = ProjectionResult(deleted=self.clear(subscription.id))

        drafts = self.project(
            subscription,
            horizon_days=self.horizon_days,
            today=today or self._today(),
        )
        if not drafts:
            logger.info(f"[PAYMENT_PROJECTOR] No future planned payments to create for subscription {subscription.id}")
            return result

        for start in range(0, len(drafts), self.batch_size):
            created, failed = self.store.insert_batch(drafts[start:start + self.batch_size])
            result.created += created
            result.failed += failed

        logger.info(
            f"[PAYMENT_PROJECTOR] Created {result.created} planned payments for subscription "
            f"{subscription.id} ({result.failed} failed, {result.deleted} replaced)"
        )
        return result
