"""
Merchant name normalization used to group transactions by merchant.
"""
import re
from typing import Any, Mapping, Optional

_NON_ALPHANUMERIC = re.compile(r"[^a-z0-9\s]")


def normalize_merchant_name(name: Optional[str]) -> str:
    """Lower-case, trim and strip everything but letters, digits and spaces."""
    if not name:
        return ""
    return _NON_ALPHANUMERIC.sub("", name.lower().strip())


def get_metadata_field(
    metadata: Optional[Mapping[str, Any]],
    camel_key: str,
    snake_key: str,
) -> Optional[str]:
    """Read a bank-sync metadata field stored under either naming convention."""
    if not metadata or not isinstance(metadata, Mapping):
        return None
    value = metadata.get(camel_key)
    if value is None:
        value = metadata.get(snake_key)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def resolve_merchant_name(
    metadata: Optional[Mapping[str, Any]],
    description: Optional[str],
) -> str:
    """
    Pick the display merchant name for a transaction.

    Structured metadata wins over the free-text description. Returns "" when
    neither yields a usable name, which excludes the transaction from grouping.
    """
    merchant = get_metadata_field(metadata, "merchantName", "merchant_name")
    if merchant:
        return merchant
    if description and description.strip():
        return description.strip()
    return ""
