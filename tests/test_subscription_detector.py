"""
Tests for subscription detection: the pure pipeline and the DB-backed detector.
"""
import os
import sys
from datetime import date, datetime

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from tests.db_session import add_expense, new_session, seed_user_and_account  # noqa: E402

from recurring_engine.db_helpers import clear_request_user_id, set_request_user_id  # noqa: E402
from recurring_engine.services.cache import TTLCache, detection_cache_key  # noqa: E402
from recurring_engine.services.single_flight import SingleFlight  # noqa: E402
from recurring_engine.services.subscription_detector import (  # noqa: E402
    SubscriptionDetector,
    TransactionRecord,
    detect_subscriptions,
    window_start,
)

TODAY = date(2024, 3, 10)
ACCOUNT_ID = "acct-1"


def _txn(txn_id, booked_at, amount, merchant=None, description=None, account_id=ACCOUNT_ID, **kwargs):
    return TransactionRecord(
        id=txn_id,
        booked_at=booked_at,
        account_id=account_id,
        transaction_type=kwargs.pop("transaction_type", "expense"),
        amount=amount,
        description=description,
        merchant_metadata={"merchantName": merchant} if merchant else None,
        **kwargs,
    )


def _spotify(account_id=ACCOUNT_ID, prefix="s"):
    return [
        _txn(f"{prefix}1", date(2024, 1, 5), "15.99", merchant="Spotify", account_id=account_id),
        _txn(f"{prefix}2", date(2024, 2, 5), "15.99", merchant="Spotify", account_id=account_id),
        _txn(f"{prefix}3", date(2024, 3, 5), "15.99", merchant="Spotify", account_id=account_id),
    ]


def test_spotify_end_to_end() -> None:
    results = detect_subscriptions(_spotify(), {ACCOUNT_ID: "Main Checking"}, today=TODAY)

    assert len(results) == 1
    spotify = results[0]
    assert spotify.merchant_name == "Spotify"
    assert spotify.frequency == "monthly"
    assert spotify.billing_day == 5
    assert spotify.amount == 15.99
    assert spotify.confidence == "high"
    assert spotify.transaction_count == 3
    assert spotify.first_billing_date == date(2024, 1, 5)
    assert spotify.last_transaction_date == date(2024, 3, 5)
    assert spotify.account_name == "Main Checking"
    assert spotify.transaction_ids == ["s1", "s2", "s3"]
    print("✓ Spotify end-to-end")


def test_single_transaction_is_not_a_subscription() -> None:
    results = detect_subscriptions(
        [_txn("n1", date(2024, 2, 1), "9.99", merchant="Netflix")],
        today=TODAY,
    )
    assert results == []
    print("✓ single transaction")


def test_known_service_overrides_irregular_statistics() -> None:
    transactions = [
        _txn("a1", date(2023, 12, 1), "5.00", description="ADOBE *CREATIVE CLOUD"),
        _txn("a2", date(2023, 12, 3), "60.00", description="ADOBE *CREATIVE CLOUD"),
        _txn("a3", date(2024, 3, 1), "20.00", description="ADOBE *CREATIVE CLOUD"),
    ]
    results = detect_subscriptions(transactions, today=TODAY)

    assert len(results) == 1
    assert results[0].merchant_name == "Adobe Creative Cloud"
    assert results[0].frequency == "monthly"
    assert results[0].account_name == "Unknown Account"
    print("✓ known service accepted despite variance")


def test_unknown_merchant_with_variable_amounts_is_rejected() -> None:
    transactions = [
        _txn("g1", date(2024, 1, 3), "50.00", description="Corner Grocery"),
        _txn("g2", date(2024, 2, 3), "120.00", description="Corner Grocery"),
        _txn("g3", date(2024, 3, 3), "80.00", description="Corner Grocery"),
    ]
    assert detect_subscriptions(transactions, today=TODAY) == []
    print("✓ variable amounts rejected")


def test_ranking_by_confidence_then_count() -> None:
    gym = [
        _txn("g1", date(2023, 11, 20), "30.00", description="Gym Club"),
        _txn("g2", date(2023, 12, 20), "34.00", description="Gym Club"),
        _txn("g3", date(2024, 1, 20), "30.00", description="Gym Club"),
        _txn("g4", date(2024, 2, 20), "34.00", description="Gym Club"),
    ]
    netflix = [
        _txn("n1", date(2023, 11, 12), "9.99", merchant="Netflix"),
        _txn("n2", date(2023, 12, 12), "9.99", merchant="Netflix"),
        _txn("n3", date(2024, 1, 12), "9.99", merchant="Netflix"),
        _txn("n4", date(2024, 2, 12), "9.99", merchant="Netflix"),
    ]
    results = detect_subscriptions(gym + _spotify() + netflix, today=TODAY)

    assert [r.merchant_name for r in results] == ["Netflix", "Spotify", "Gym Club"]
    assert [r.confidence for r in results] == ["high", "high", "medium"]
    assert results[2].transaction_count == 4
    assert results[2].amount == 32.0
    print("✓ ranking")


def test_groups_are_split_by_account() -> None:
    transactions = _spotify("acct-1", "a") + _spotify("acct-2", "b")[:1]
    results = detect_subscriptions(transactions, today=TODAY)

    assert len(results) == 1
    assert results[0].account_id == "acct-1"
    print("✓ merchant groups keyed by account")


def test_window_and_type_filters() -> None:
    transactions = [
        _txn("old1", date(2023, 6, 5), "15.99", merchant="Spotify"),
        _txn("old2", date(2023, 7, 5), "15.99", merchant="Spotify"),
        _txn("inc1", date(2024, 1, 5), "15.99", merchant="Spotify", transaction_type="income"),
        _txn("inc2", date(2024, 2, 5), "15.99", merchant="Spotify", transaction_type="income"),
    ]
    assert detect_subscriptions(transactions, today=TODAY) == []
    assert window_start(date(2024, 8, 31), 6) == date(2024, 2, 29)
    print("✓ window and type filters")


def test_unreadable_amounts_and_names_are_skipped() -> None:
    transactions = _spotify() + [
        _txn("bad", date(2024, 2, 20), None, merchant="Spotify", amount_ciphertext="enc:v1:k1:not-valid"),
        _txn("blank1", date(2024, 1, 8), "3.00", description="***"),
        _txn("blank2", date(2024, 2, 8), "3.00", description="   "),
        _txn("blank3", date(2024, 3, 8), "3.00", description=None),
    ]
    results = detect_subscriptions(transactions, today=TODAY)

    assert len(results) == 1
    assert results[0].merchant_name == "Spotify"
    assert results[0].amount == 15.99
    assert "bad" in results[0].transaction_ids
    print("✓ unreadable rows skipped")


def test_detector_reads_database_and_caches() -> None:
    db = new_session()
    try:
        _, account = seed_user_and_account(db, user_id="user-1")
        for month in (1, 2, 3):
            add_expense(db, account, datetime(2024, month, 5, 9, 30), "15.99", merchant_name="Spotify")
        add_expense(db, account, datetime(2024, 2, 1), "2500.00", description="Salary", transaction_type="income")

        cache = TTLCache(ttl_seconds=60)
        token = set_request_user_id("user-1")
        try:
            detector = SubscriptionDetector(db, cache=cache, single_flight=SingleFlight())
            results = detector.detect(window_months=6, today=TODAY)
        finally:
            clear_request_user_id(token)

        assert len(results) == 1
        assert results[0].merchant_name == "Spotify"
        assert results[0].account_name == "Main Checking"
        assert results[0].confidence == "high"
        assert detection_cache_key("user-1", 6) in cache
    finally:
        db.close()
    print("✓ database-backed detection")


def test_detector_without_authenticated_user_returns_empty() -> None:
    db = new_session()
    try:
        assert SubscriptionDetector(db).detect(today=TODAY) == []
    finally:
        db.close()
    print("✓ unauthenticated detection returns empty list")


if __name__ == "__main__":
    test_spotify_end_to_end()
    test_single_transaction_is_not_a_subscription()
    test_known_service_overrides_irregular_statistics()
    test_unknown_merchant_with_variable_amounts_is_rejected()
    test_ranking_by_confidence_then_count()
    test_groups_are_split_by_account()
    test_window_and_type_filters()
    test_unreadable_amounts_and_names_are_skipped()
    test_detector_reads_database_and_caches()
    test_detector_without_authenticated_user_returns_empty()
    print("All subscription detector tests passed.")
