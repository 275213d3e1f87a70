"""
Unit tests for application-layer data encryption helpers.
"""
import base64
import os
import sys
from contextlib import contextmanager
from decimal import Decimal

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from recurring_engine.security.data_encryption import (  # noqa: E402
    decrypt_amount,
    decrypt_description,
    decrypt_value,
    decrypt_with_fallback,
    encrypt_amount,
    encrypt_value,
    is_data_encryption_enabled,
    reset_encryption_config_cache,
)


def _b64_key(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("utf-8").rstrip("=")


@contextmanager
def _temporary_encryption_env(current: bytes | None, key_id: str = "k1", previous: bytes | None = None):
    tracked_keys = (
        "DATA_ENCRYPTION_KEY_CURRENT",
        "DATA_ENCRYPTION_KEY_PREVIOUS",
        "DATA_ENCRYPTION_KEY_ID",
    )
    original_values = {key: os.environ.get(key) for key in tracked_keys}

    if current is not None:
        os.environ["DATA_ENCRYPTION_KEY_CURRENT"] = _b64_key(current)
    else:
        os.environ.pop("DATA_ENCRYPTION_KEY_CURRENT", None)
    os.environ["DATA_ENCRYPTION_KEY_ID"] = key_id
    if previous is not None:
        os.environ["DATA_ENCRYPTION_KEY_PREVIOUS"] = _b64_key(previous)
    else:
        os.environ.pop("DATA_ENCRYPTION_KEY_PREVIOUS", None)
    reset_encryption_config_cache()

    try:
        yield
    finally:
        for key, value in original_values.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value
        reset_encryption_config_cache()


def test_roundtrip() -> None:
    with _temporary_encryption_env(b"0" * 32, "k1"):
        assert is_data_encryption_enabled()
        encrypted = encrypt_value("NETFLIX.COM 866-579-7172")

        assert encrypted is not None
        assert encrypted.startswith("enc:v1:k1:")
        assert decrypt_value(encrypted) == "NETFLIX.COM 866-579-7172"
        print("✓ roundtrip")


def test_key_rotation_fallback() -> None:
    old_key = b"2" * 32
    new_key = b"3" * 32

    with _temporary_encryption_env(old_key, "k-old"):
        encrypted_with_old = encrypt_value("legacy-value")

    with _temporary_encryption_env(new_key, "k-new", previous=old_key):
        assert decrypt_value(encrypted_with_old) == "legacy-value"
        print("✓ key rotation fallback")


def test_decrypt_raises_without_matching_key() -> None:
    with _temporary_encryption_env(b"4" * 32, "k-old"):
        encrypted_with_old = encrypt_value("legacy-value")

    with _temporary_encryption_env(b"5" * 32, "k-new"):
        try:
            decrypt_with_fallback(encrypted_with_old, "legacy-value")
        except ValueError:
            pass
        else:
            raise AssertionError("expected ValueError")
        print("✓ decrypt raises without matching key")


def test_amount_helpers_never_raise() -> None:
    with _temporary_encryption_env(b"6" * 32, "k1"):
        encrypted = encrypt_amount(Decimal("15.99"))
        assert decrypt_amount(encrypted, None) == 15.99
        assert decrypt_amount(None, Decimal("9.99")) == 9.99
        assert decrypt_amount(None, None) is None
        assert decrypt_amount(encrypt_value("not a number"), None) is None
        assert decrypt_amount(encrypt_value("inf"), None) is None
        assert decrypt_amount("enc:v1:k1:broken", "3.00") is None

    with _temporary_encryption_env(None):
        assert not is_data_encryption_enabled()
        assert encrypt_amount(Decimal("1.00")) is None
        # Ciphertext without a configured key is unreadable, not an error
        assert decrypt_amount("enc:v1:k1:AAAAAAAAAAAAAAAAAAAAAAAA", "1.00") is None
        print("✓ amount helpers")


def test_description_helper_falls_back() -> None:
    with _temporary_encryption_env(b"7" * 32, "k1"):
        encrypted = encrypt_value("Spotify AB")
        assert decrypt_description(encrypted, None) == "Spotify AB"
        assert decrypt_description(None, "Plain text") == "Plain text"
        assert decrypt_description("enc:v1:k1:broken", "Plain text") is None
        print("✓ description helper")


if __name__ == "__main__":
    test_roundtrip()
    test_key_rotation_fallback()
    test_decrypt_raises_without_matching_key()
    test_amount_helpers_never_raise()
    test_description_helper_falls_back()
    print("All data encryption tests passed.")
