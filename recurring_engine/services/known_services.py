"""
Dictionary of well-known subscription services.

Patterns are matched against normalized merchant names. The list order is the
match order: an exact match is tried first, then the first pattern that is a
substring of the merchant name (or contains it) wins.
"""
from dataclasses import dataclass
from typing import List, Optional, Tuple

from recurring_engine.services.merchant_normalizer import normalize_merchant_name


@dataclass(frozen=True)
class KnownService:
    """Canonical service information for a known subscription provider."""
    name: str
    typical_frequency: str = "monthly"
    logo_url: Optional[str] = None


KNOWN_SUBSCRIPTION_SERVICES: List[Tuple[str, KnownService]] = [
    # Streaming
    ("netflix", KnownService("Netflix")),
    ("spotify", KnownService("Spotify")),
    ("disney", KnownService("Disney+")),
    ("disneyplus", KnownService("Disney+")),
    ("hulu", KnownService("Hulu")),
    ("hbo", KnownService("HBO Max")),
    ("max", KnownService("Max")),
    ("amazon prime", KnownService("Amazon Prime")),
    ("prime video", KnownService("Prime Video")),
    ("apple tv", KnownService("Apple TV+")),
    ("appletv", KnownService("Apple TV+")),
    ("paramount", KnownService("Paramount+")),
    ("paramountplus", KnownService("Paramount+")),
    ("peacock", KnownService("Peacock")),
    ("youtube premium", KnownService("YouTube Premium")),
    ("youtube tv", KnownService("YouTube TV")),

    # Music
    ("apple music", KnownService("Apple Music")),
    ("applemusic", KnownService("Apple Music")),
    ("tidal", KnownService("Tidal")),
    ("pandora", KnownService("Pandora")),
    ("deezer", KnownService("Deezer")),

    # Software & cloud
    ("adobe", KnownService("Adobe Creative Cloud")),
    ("microsoft 365", KnownService("Microsoft 365")),
    ("office 365", KnownService("Microsoft 365")),
    ("google workspace", KnownService("Google Workspace")),
    ("g suite", KnownService("Google Workspace")),
    ("dropbox", KnownService("Dropbox")),
    ("icloud", KnownService("iCloud")),
    ("onedrive", KnownService("OneDrive")),
    ("notion", KnownService("Notion")),
    ("figma", KnownService("Figma")),
    ("slack", KnownService("Slack")),
    ("zoom", KnownService("Zoom")),

    # Gaming
    ("xbox", KnownService("Xbox Game Pass")),
    ("playstation", KnownService("PlayStation Plus")),
    ("nintendo", KnownService("Nintendo Switch Online")),
    ("steam", KnownService("Steam")),

    # Fitness & health
    ("peloton", KnownService("Peloton")),
    ("nike", KnownService("Nike Training Club")),
    ("strava", KnownService("Strava")),
    ("myfitnesspal", KnownService("MyFitnessPal")),

    # News & media
    ("new york times", KnownService("The New York Times")),
    ("nytimes", KnownService("The New York Times")),
    ("washington post", KnownService("The Washington Post")),
    ("wall street journal", KnownService("The Wall Street Journal")),
    ("wsj", KnownService("The Wall Street Journal")),

    # Other
    ("amazon", KnownService("Amazon")),
    ("costco", KnownService("Costco")),
    ("audible", KnownService("Audible")),
    ("kindle unlimited", KnownService("Kindle Unlimited")),
]


def find_known_subscription_service(
    merchant_name: Optional[str],
    services: Optional[List[Tuple[str, KnownService]]] = None,
) -> Optional[KnownService]:
    """
    Look up a known subscription service for a merchant name.

    Steps:
    1. Exact match of the normalized name against a pattern
    2. Bidirectional substring match, first pattern in list order wins
    """
    normalized = normalize_merchant_name(merchant_name)
    if not normalized:
        return None

    entries = KNOWN_SUBSCRIPTION_SERVICES if services is None else services

    for pattern, service in entries:
        if pattern == normalized:
            return service

    for pattern, service in entries:
        if pattern in normalized or normalized in pattern:
            return service

    return None
