from __future__ import annotations

from typing import Dict, Tuple

# Markets a vendor can be listed under.
REGION_US = "US"
REGION_EU = "EU"
REGION_UK = "UK"
REGION_CA = "CA"

REGION_CHOICES: Tuple[str, ...] = (REGION_US, REGION_EU, REGION_UK, REGION_CA)
REGION_DEFAULT = REGION_US

VENDOR_STATUS_VERIFIED = "verified"
VENDOR_STATUS_WARNING = "warning"
VENDOR_STATUS_PENDING = "pending"
VENDOR_STATUS_SCAM = "scam"

VENDOR_STATUS_CHOICES: Tuple[str, ...] = (
    VENDOR_STATUS_VERIFIED,
    VENDOR_STATUS_WARNING,
    VENDOR_STATUS_PENDING,
    VENDOR_STATUS_SCAM,
)

STOCK_IN_STOCK = "in_stock"
STOCK_OUT_OF_STOCK = "out_of_stock"
STOCK_BACKORDER = "backorder"
STOCK_PREORDER = "preorder"
STOCK_COMING_SOON = "coming_soon"

STOCK_STATUS_CHOICES: Tuple[str, ...] = (
    STOCK_IN_STOCK,
    STOCK_OUT_OF_STOCK,
    STOCK_BACKORDER,
    STOCK_PREORDER,
    STOCK_COMING_SOON,
)

ROLE_ADMIN = "admin"
ROLE_MODERATOR = "moderator"
ROLE_USER = "user"
ROLE_CHOICES: Tuple[str, ...] = (ROLE_ADMIN, ROLE_MODERATOR, ROLE_USER)

# Article languages; English is the source language for translations.
SOURCE_LANGUAGE = "en"
LANGUAGE_NAMES: Dict[str, str] = {
    "en": "English",
    "de": "German",
    "fr": "French",
    "pl": "Polish",
    "nl": "Dutch",
    "es": "Spanish",
}
SUPPORTED_LANGUAGES: Tuple[str, ...] = tuple(LANGUAGE_NAMES)

CONTENT_BLOCK_TYPES: Tuple[str, ...] = ("heading", "paragraph", "list", "callout", "citation", "image")

DEFAULT_ARTICLE_CATEGORIES: Tuple[Tuple[str, str], ...] = (
    ("safety", "Safety"),
    ("handling", "Handling"),
    ("pharmacokinetics", "Pharmacokinetics"),
    ("verification", "Verification"),
    ("sourcing", "Sourcing"),
)

DEFAULT_AUTHOR_NAME = "Research Team"
DEFAULT_READ_TIME = 5
