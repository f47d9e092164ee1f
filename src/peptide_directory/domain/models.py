from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from .constants import (
    DEFAULT_AUTHOR_NAME,
    DEFAULT_READ_TIME,
    REGION_DEFAULT,
    STOCK_IN_STOCK,
    VENDOR_STATUS_PENDING,
)


def _float(value: Any, default: float = 0.0) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _float_or_none(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _json_value(value: Any, default: Any) -> Any:
    """Decode a JSON TEXT column; already-decoded values pass through."""
    if value is None:
        return default
    if isinstance(value, (list, dict)):
        return value
    try:
        decoded = json.loads(value)
    except (TypeError, ValueError):
        return default
    return decoded if decoded is not None else default


def _str_list(value: Any) -> List[str]:
    items = _json_value(value, [])
    if not isinstance(items, list):
        return []
    return [str(item) for item in items if item is not None]


class _Record:
    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Product(_Record):
    id: str
    name: str
    slug: str
    category: str = ""
    description: str = ""
    molecular_weight: Optional[str] = None
    purity_standard: Optional[str] = None
    sequence: Optional[str] = None
    synonyms: List[str] = field(default_factory=list)
    half_life: Optional[str] = None
    is_popular: bool = False
    video_url: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Product":
        # The slug doubles as the public id.
        return cls(
            id=row["slug"],
            name=row["name"],
            slug=row["slug"],
            category=row["category"] or "",
            description=row["description"] or "",
            molecular_weight=row["molecular_weight"],
            purity_standard=row["purity_standard"],
            sequence=row["sequence"],
            synonyms=_str_list(row["synonyms"]),
            half_life=row["half_life"],
            is_popular=bool(row["is_popular"]),
            video_url=row["video_url"],
        )


@dataclass
class Vendor(_Record):
    id: str
    slug: str
    name: str
    region: str = REGION_DEFAULT
    shipping_regions: List[str] = field(default_factory=lambda: [REGION_DEFAULT])
    purity_score: float = 0.0
    coa_verified: bool = False
    price_per_mg: float = 0.0
    status: str = VENDOR_STATUS_PENDING
    website: str = ""
    peptides: List[str] = field(default_factory=list)
    last_verified: str = ""
    discount_code: Optional[str] = None
    discount_percentage: Optional[float] = None
    description: Optional[str] = None
    location: Optional[str] = None
    year_founded: Optional[int] = None
    shipping_methods: List[str] = field(default_factory=list)
    payment_methods: List[str] = field(default_factory=list)
    logo_url: Optional[str] = None
    default_currency: str = "USD"

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Vendor":
        shipping = _str_list(row["shipping_regions"]) or [REGION_DEFAULT]
        return cls(
            id=str(row["vendor_id"]),
            slug=row["slug"],
            name=row["name"],
            region=row["region"] or REGION_DEFAULT,
            shipping_regions=shipping,
            purity_score=_float(row["purity_score"]),
            coa_verified=bool(row["coa_verified"]),
            price_per_mg=_float(row["price_per_mg"]),
            status=row["status"] or VENDOR_STATUS_PENDING,
            website=row["website"] or "",
            peptides=_str_list(row["peptides"]),
            last_verified=row["last_verified"] or "",
            discount_code=row["discount_code"],
            discount_percentage=_float_or_none(row["discount_percentage"]),
            description=row["description"],
            location=row["location"],
            year_founded=row["year_founded"],
            shipping_methods=_str_list(row["shipping_methods"]),
            payment_methods=_str_list(row["payment_methods"]),
            logo_url=row["logo_url"],
            default_currency=row["default_currency"] or "USD",
        )


@dataclass
class VendorProduct(_Record):
    id: str
    vendor_id: str
    product_id: str
    product_name: str
    price: float
    price_per_mg: float
    size_mg: Optional[float] = None
    in_stock: bool = True
    stock_status: str = STOCK_IN_STOCK
    currency: str = "USD"
    price_usd: Optional[float] = None
    price_per_mg_usd: Optional[float] = None
    source_url: Optional[str] = None
    last_synced_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "VendorProduct":
        return cls(**_vendor_product_fields(row))


@dataclass
class VendorProductWithVendor(VendorProduct):
    vendor_name: str = ""
    vendor_slug: str = ""
    discount_code: Optional[str] = None
    discount_percentage: float = 0.0
    website: str = ""
    status: str = VENDOR_STATUS_PENDING

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "VendorProductWithVendor":
        return cls(
            **_vendor_product_fields(row),
            vendor_name=row["vendor_name"] or "",
            vendor_slug=row["vendor_slug"] or "",
            discount_code=row["discount_code"],
            discount_percentage=_float(row["discount_percentage"]),
            website=row["website"] or "",
            status=row["status"] or VENDOR_STATUS_PENDING,
        )


def _vendor_product_fields(row: Mapping[str, Any]) -> Dict[str, Any]:
    in_stock = row["in_stock"]
    return {
        "id": str(row["vendor_product_id"]),
        "vendor_id": str(row["vendor_id"]),
        "product_id": row["product_slug"] or "",
        "product_name": row["product_name"],
        "price": _float(row["price"]),
        "price_per_mg": _float(row["price_per_mg"]),
        "size_mg": _float_or_none(row["size_mg"]),
        "in_stock": True if in_stock is None else bool(in_stock),
        "stock_status": row["stock_status"] or STOCK_IN_STOCK,
        "currency": row["currency"] or "USD",
        "price_usd": _float_or_none(row["price_usd"]),
        "price_per_mg_usd": _float_or_none(row["price_per_mg_usd"]),
        "source_url": row["source_url"],
        "last_synced_at": row["last_synced_at"],
    }


@dataclass
class BatchRecord(_Record):
    batch_id: str
    vendor_name: str
    product_name: str
    test_date: str
    purity_result: float
    report_url: Optional[str] = None
    lab_name: Optional[str] = None
    test_method: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "BatchRecord":
        return cls(
            batch_id=row["batch_id"],
            vendor_name=row["vendor_name"],
            product_name=row["product_name"],
            test_date=row["test_date"],
            purity_result=_float(row["purity_result"]),
            report_url=row["report_url"],
            lab_name=row["lab_name"],
            test_method=row["test_method"],
        )


@dataclass
class ArticleCategory(_Record):
    value: str
    label: str


@dataclass
class Article(_Record):
    id: str
    slug: str
    title: str
    summary: str = ""
    category: str = ""
    category_label: str = ""
    meta_title: Optional[str] = None
    read_time: int = DEFAULT_READ_TIME
    published_date: str = ""
    updated_at: Optional[str] = None
    author: Dict[str, Optional[str]] = field(default_factory=lambda: {"name": DEFAULT_AUTHOR_NAME, "role": None})
    table_of_contents: List[Dict[str, Any]] = field(default_factory=list)
    content: List[Dict[str, Any]] = field(default_factory=list)
    citations: List[Dict[str, Any]] = field(default_factory=list)
    related_peptides: List[str] = field(default_factory=list)
    featured_image_url: Optional[str] = None
    language: str = "en"

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Article":
        read_time = row["read_time"]
        return cls(
            id=str(row["article_id"]),
            slug=row["slug"],
            title=row["title"],
            summary=row["summary"] or "",
            category=row["category"] or "",
            category_label=row["category_label"] or "",
            meta_title=row["meta_title"],
            read_time=int(read_time) if read_time else DEFAULT_READ_TIME,
            published_date=row["published_date"] or row["created_at"] or "",
            updated_at=row["updated_at"],
            author={"name": row["author_name"] or DEFAULT_AUTHOR_NAME, "role": row["author_role"]},
            table_of_contents=_json_value(row["table_of_contents"], []),
            content=_json_value(row["content"], []),
            citations=_json_value(row["citations"], []),
            related_peptides=_str_list(row["related_peptides"]),
            featured_image_url=row["featured_image_url"],
        )

    def with_translation(self, translation: "ArticleTranslation") -> "Article":
        """Return a copy with translated fields laid over the English source."""
        data = asdict(self)
        data.update(
            title=translation.title or self.title,
            summary=translation.summary or self.summary,
            meta_title=translation.meta_title or self.meta_title,
            content=translation.content or self.content,
            table_of_contents=translation.table_of_contents or self.table_of_contents,
            language=translation.language,
        )
        return Article(**data)


@dataclass
class ArticleTranslation(_Record):
    article_id: str
    language: str
    title: str
    summary: str = ""
    meta_title: Optional[str] = None
    content: List[Dict[str, Any]] = field(default_factory=list)
    table_of_contents: List[Dict[str, Any]] = field(default_factory=list)
    is_auto_translated: bool = False

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "ArticleTranslation":
        return cls(
            article_id=str(row["article_id"]),
            language=row["language"],
            title=row["title"],
            summary=row["summary"] or "",
            meta_title=row["meta_title"],
            content=_json_value(row["content"], []),
            table_of_contents=_json_value(row["table_of_contents"], []),
            is_auto_translated=bool(row["is_auto_translated"]),
        )


@dataclass
class ArticleSchedule(_Record):
    id: int
    is_active: bool
    frequency: str
    time_of_day: str
    target_length: str = "standard"
    day_of_week: Optional[int] = None
    additional_context: Optional[str] = None
    last_run_at: Optional[str] = None
    next_run_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "ArticleSchedule":
        return cls(
            id=int(row["schedule_id"]),
            is_active=bool(row["is_active"]),
            frequency=row["frequency"],
            time_of_day=row["time_of_day"] or "09:00",
            target_length=row["target_length"] or "standard",
            day_of_week=row["day_of_week"],
            additional_context=row["additional_context"],
            last_run_at=row["last_run_at"],
            next_run_at=row["next_run_at"],
        )
