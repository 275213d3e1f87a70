"""
Subscription detection service for discovering recurring charges.

Core approach: group expense transactions by (normalized merchant, account),
then keep the groups whose amounts are stable and whose dates are regular, or
whose merchant is a known subscription service.

Usage:
    detector = SubscriptionDetector(db, user_id)
    candidates = detector.detect(window_months=6)
    # ranked DetectedSubscription values, never persisted
"""
import os
import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional
from dataclasses import dataclass, field, asdict
from datetime import date, datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP

from dateutil.relativedelta import relativedelta
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from recurring_engine.models import Account, Transaction
from recurring_engine.db_helpers import get_user_id
from recurring_engine.errors import ValidationError
from recurring_engine.security.data_encryption import decrypt_amount, decrypt_description
from recurring_engine.services.cache import TTLCache, detection_cache_key
from recurring_engine.services.known_services import find_known_subscription_service
from recurring_engine.services.merchant_normalizer import (
    get_metadata_field,
    normalize_merchant_name,
    resolve_merchant_name,
)
from recurring_engine.services.single_flight import SingleFlight
from recurring_engine.services.subscription_statistics import (
    CONFIDENCE_ORDER,
    calculate_amount_variance,
    calculate_billing_day,
    calculate_confidence,
    calculate_date_regularity,
    calculate_frequency,
)

logger = logging.getLogger(__name__)


# Configuration
DEFAULT_WINDOW_MONTHS = int(os.getenv("SUBSCRIPTION_DETECTION_WINDOW_MONTHS", "6"))
MIN_TRANSACTIONS = 2

# Subscriptions are usually fixed price: coefficient of variation below 30%
MAX_AMOUNT_VARIANCE = 0.30
# At least 40% date regularity
MIN_DATE_REGULARITY = 0.4

UNKNOWN_ACCOUNT_NAME = "Unknown Account"
CENT = Decimal("0.01")


@dataclass
class TransactionRecord:
    """Detached snapshot of the transaction fields detection needs."""
    id: str
    booked_at: date
    account_id: str
    transaction_type: str
    amount: Optional[Any] = None
    amount_ciphertext: Optional[str] = None
    description: Optional[str] = None
    description_ciphertext: Optional[str] = None
    merchant_metadata: Optional[Mapping[str, Any]] = None

    @classmethod
    def from_model(cls, txn: Transaction) -> "TransactionRecord":
        return cls(
            id=str(txn.id),
            booked_at=txn.booked_at.date() if isinstance(txn.booked_at, datetime) else txn.booked_at,
            account_id=str(txn.account_id),
            transaction_type=txn.transaction_type,
            amount=txn.amount,
            amount_ciphertext=txn.amount_ciphertext,
            description=txn.description,
            description_ciphertext=txn.description_ciphertext,
            merchant_metadata=txn.merchant_metadata,
        )


@dataclass
class MerchantGroup:
    """Transactions sharing a normalized merchant name on one account."""
    merchant_name: str
    account_id: str
    account_name: str
    merchant_entity_id: Optional[str] = None
    logo_url: Optional[str] = None
    transactions: List[TransactionRecord] = field(default_factory=list)


@dataclass
class DetectedSubscription:
    """A recurring charge candidate. Computed on demand, never persisted."""
    merchant_name: str
    amount: float
    frequency: str
    first_billing_date: date
    last_transaction_date: date
    account_id: str
    account_name: str
    transaction_count: int
    confidence: str
    billing_day: Optional[int] = None
    merchant_entity_id: Optional[str] = None
    logo_url: Optional[str] = None
    description: Optional[str] = None
    transaction_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def window_start(today: date, window_months: int) -> date:
    """First day included in a detection window of `window_months` months ending today."""
    return today - relativedelta(months=window_months)


def _resolve_merchant(
    txn: TransactionRecord,
    decrypt_description_fn: Callable[[Optional[str], Optional[str]], Optional[str]],
) -> str:
    if get_metadata_field(txn.merchant_metadata, "merchantName", "merchant_name"):
        return resolve_merchant_name(txn.merchant_metadata, None)
    description = decrypt_description_fn(txn.description_ciphertext, txn.description)
    return resolve_merchant_name(None, description)


def _in_window(txn: TransactionRecord, start: date, end: date) -> bool:
    booked_at = txn.booked_at
    if isinstance(booked_at, datetime):
        booked_at = booked_at.date()
    return isinstance(booked_at, date) and start <= booked_at <= end


def group_transactions(
    transactions: Iterable[TransactionRecord],
    account_names: Optional[Mapping[str, str]] = None,
    decrypt_description_fn: Callable[[Optional[str], Optional[str]], Optional[str]] = decrypt_description,
) -> List[MerchantGroup]:
    """
    Group transactions by (normalized merchant, account) in first-seen order.

    Transactions without a resolvable merchant name are dropped.
    """
    account_names = account_names or {}
    groups: Dict[tuple, MerchantGroup] = {}

    for txn in transactions:
        try:
            merchant_name = _resolve_merchant(txn, decrypt_description_fn)
        except Exception as exc:  # noqa: BLE001
            logger.debug(f"[SUBSCRIPTION_DETECTOR] Skipping transaction {txn.id}: {exc}")
            continue

        normalized = normalize_merchant_name(merchant_name)
        if not normalized.strip():
            continue

        key = (normalized, txn.account_id)
        group = groups.get(key)
        if group is None:
            group = MerchantGroup(
                merchant_name=merchant_name.strip(),
                account_id=txn.account_id,
                account_name=account_names.get(txn.account_id) or UNKNOWN_ACCOUNT_NAME,
                merchant_entity_id=get_metadata_field(
                    txn.merchant_metadata, "merchantEntityId", "merchant_entity_id"
                ),
                logo_url=get_metadata_field(txn.merchant_metadata, "logoUrl", "logo_url"),
            )
            groups[key] = group
        group.transactions.append(txn)

    return list(groups.values())


def analyze_group(
    group: MerchantGroup,
    decrypt_amount_fn: Callable[[Optional[str], Any], Optional[float]] = decrypt_amount,
) -> Optional[DetectedSubscription]:
    """Classify one merchant group; returns None when it does not look recurring."""
    transactions = group.transactions
    if len(transactions) < MIN_TRANSACTIONS:
        return None

    amounts: List[float] = []
    for txn in transactions:
        try:
            amount = decrypt_amount_fn(txn.amount_ciphertext, txn.amount)
        except Exception as exc:  # noqa: BLE001
            logger.debug(f"[SUBSCRIPTION_DETECTOR] Unreadable amount on {txn.id}: {exc}")
            continue
        if amount is not None and amount > 0:
            amounts.append(amount)

    if len(amounts) < MIN_TRANSACTIONS:
        return None

    dates = [txn.booked_at for txn in transactions]

    avg_amount = sum(amounts) / len(amounts)
    amount_variance = calculate_amount_variance(amounts)
    date_regularity = calculate_date_regularity(dates)

    known_service = find_known_subscription_service(group.merchant_name)
    is_known_service = known_service is not None

    looks_like_subscription = (
        amount_variance < MAX_AMOUNT_VARIANCE
        and date_regularity > MIN_DATE_REGULARITY
    )
    if not looks_like_subscription and not is_known_service:
        return None

    frequency = known_service.typical_frequency if known_service else calculate_frequency(dates)
    billing_day = calculate_billing_day(frequency, dates)
    confidence = calculate_confidence(
        len(transactions),
        amount_variance,
        date_regularity,
        is_known_service,
    )

    return DetectedSubscription(
        merchant_name=known_service.name if known_service else group.merchant_name,
        merchant_entity_id=group.merchant_entity_id,
        logo_url=(known_service.logo_url if known_service else None) or group.logo_url,
        amount=float(Decimal(str(avg_amount)).quantize(CENT, rounding=ROUND_HALF_UP)),
        frequency=frequency,
        billing_day=billing_day,
        first_billing_date=min(dates),
        last_transaction_date=max(dates),
        account_id=group.account_id,
        account_name=group.account_name,
        transaction_count=len(transactions),
        confidence=confidence,
        description=f"Detected from {len(transactions)} transaction(s)",
        transaction_ids=[txn.id for txn in transactions],
    )


def rank_detections(detections: List[DetectedSubscription]) -> List[DetectedSubscription]:
    """Confidence descending, then transaction count descending; stable otherwise."""
    return sorted(
        detections,
        key=lambda d: (-CONFIDENCE_ORDER[d.confidence], -d.transaction_count),
    )


def detect_subscriptions(
    transactions: Iterable[TransactionRecord],
    account_names: Optional[Mapping[str, str]] = None,
    window_months: int = DEFAULT_WINDOW_MONTHS,
    today: Optional[date] = None,
    decrypt_amount_fn: Callable[[Optional[str], Any], Optional[float]] = decrypt_amount,
    decrypt_description_fn: Callable[[Optional[str], Optional[str]], Optional[str]] = decrypt_description,
) -> List[DetectedSubscription]:
    """
    Run the detection pipeline over a transaction set.

    1. Keep expense transactions inside the window
    2. Resolve merchant names, dropping transactions without one
    3. Group by (normalized merchant, account)
    4. Classify each group
    5. Rank the accepted candidates
    """
    today = today or date.today()
    start = window_start(today, window_months)

    in_scope = [
        txn for txn in transactions
        if txn.transaction_type == "expense" and _in_window(txn, start, today)
    ]
    if not in_scope:
        return []

    detections: List[DetectedSubscription] = []
    for group in group_transactions(in_scope, account_names, decrypt_description_fn):
        try:
            detected = analyze_group(group, decrypt_amount_fn)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                f"[SUBSCRIPTION_DETECTOR] Skipping group {group.merchant_name} ({group.account_id}): {exc}"
            )
            continue
        if detected:
            detections.append(detected)

    return rank_detections(detections)


class SubscriptionDetector:
    """
    Detects recurring charges from a user's transaction history.

    Read-only and stateless across callers. Data-quality problems never raise:
    offending transactions or groups are excluded and a (possibly empty) list
    is returned.
    """

    def __init__(
        self,
        db: Session,
        user_id: Optional[str] = None,
        cache: Optional[TTLCache] = None,
        single_flight: Optional[SingleFlight] = None,
    ):
        self.db = db
        self._requested_user_id = user_id
        self.cache = cache
        self.single_flight = single_flight

    def detect(
        self,
        window_months: int = DEFAULT_WINDOW_MONTHS,
        today: Optional[date] = None,
    ) -> List[DetectedSubscription]:
        try:
            user_id = get_user_id(self._requested_user_id)
        except ValidationError as exc:
            logger.warning(f"[SUBSCRIPTION_DETECTOR] User not authenticated: {exc.message}")
            return []

        key = detection_cache_key(user_id, window_months)
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug(f"[SUBSCRIPTION_DETECTOR] Cache hit for {key}")
                return list(cached)

        def compute() -> List[DetectedSubscription]:
            return self._detect_for_user(user_id, window_months, today)

        if self.single_flight is not None:
            detections = self.single_flight.do(key, compute)
        else:
            detections = compute()

        if self.cache is not None:
            self.cache.set(key, detections)
        return list(detections)

    def _detect_for_user(
        self,
        user_id: str,
        window_months: int,
        today: Optional[date],
    ) -> List[DetectedSubscription]:
        today = today or date.today()
        logger.info(f"[SUBSCRIPTION_DETECTOR] Detecting subscriptions for user: {user_id}")

        try:
            transactions = self._load_transactions(user_id, window_start(today, window_months), today)
            account_names = self._load_account_names(user_id)
        except SQLAlchemyError as exc:
            logger.error(f"[SUBSCRIPTION_DETECTOR] Error fetching transactions: {exc}")
            return []

        if not transactions:
            logger.debug("[SUBSCRIPTION_DETECTOR] No transactions found")
            return []

        detections = detect_subscriptions(
            transactions,
            account_names=account_names,
            window_months=window_months,
            today=today,
        )

        logger.info(
            f"[SUBSCRIPTION_DETECTOR] Detected {len(detections)} potential subscriptions"
        )
        return detections

    def _load_transactions(self, user_id: str, start: date, end: date) -> List[TransactionRecord]:
        rows = (
            self.db.query(Transaction)
            .filter(
                Transaction.user_id == user_id,
                Transaction.transaction_type == "expense",
                Transaction.booked_at >= datetime.combine(start, datetime.min.time()),
                Transaction.booked_at < datetime.combine(end + timedelta(days=1), datetime.min.time()),
            )
            .order_by(Transaction.booked_at.asc())
            .all()
        )

        records: List[TransactionRecord] = []
        for row in rows:
            if row.booked_at is None or row.account_id is None:
                logger.debug(f"[SUBSCRIPTION_DETECTOR] Skipping incomplete transaction {row.id}")
                continue
            records.append(TransactionRecord.from_model(row))
        return records

    def _load_account_names(self, user_id: str) -> Dict[str, str]:
        rows = self.db.query(Account.id, Account.name).filter(Account.user_id == user_id).all()
        return {str(account_id): name for account_id, name in rows}
