"""Normalize raw supplier payloads into canonical product records."""

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

from catalog_sync.config import settings
from catalog_sync.db.models import StockStatus

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")
DEFAULT_TITLE = "Unknown Product"

# Field aliases, highest priority first
TITLE_FIELDS = ("product_title", "title", "name")
PRICE_FIELDS = ("product_price", "price", "price_buybox", "current_price")
ORIGINAL_PRICE_FIELDS = ("product_original_price", "original_price", "list_price", "price_initial")
RATING_FIELDS = ("product_star_rating", "rating", "stars")
RATING_COUNT_FIELDS = ("product_num_ratings", "reviews_count", "ratings_total", "rating_count")
AVAILABILITY_FIELDS = ("product_availability", "availability", "stock")
BRAND_FIELDS = ("brand", "manufacturer", "product_brand")
CATEGORY_FIELDS = ("category", "product_category", "categories")
DESCRIPTION_FIELDS = ("product_description", "description")
FEATURE_FIELDS = ("about_product", "features", "bullet_points", "feature_bullets")
SINGLE_IMAGE_FIELDS = ("product_photo", "main_image", "image")
IMAGE_LIST_FIELDS = ("product_photos", "images", "image_urls")
URL_FIELDS = ("product_url", "url")

MAX_FEATURES = 8
MAX_TITLE_FEATURES = 3

OUT_OF_STOCK_KEYWORDS = (
    "out of stock",
    "unavailable",
    "not available",
    "discontinued",
    "temporarily out",
)
LIMITED_STOCK_KEYWORDS = ("limited", "few left", "low stock")

STOCK_QUANTITY_PATTERNS = (
    re.compile(r"only\s+(\d+)\s+left", re.IGNORECASE),
    re.compile(r"(\d+)\s+left\s+in\s+stock", re.IGNORECASE),
    re.compile(r"(\d+)\s+remaining", re.IGNORECASE),
    re.compile(r"(\d+)\s+in\s+stock", re.IGNORECASE),
    re.compile(r"(\d+)\s+available", re.IGNORECASE),
    re.compile(r"stock:\s*(\d+)", re.IGNORECASE),
    re.compile(r"(\d+)\s+items?\s+left", re.IGNORECASE),
    re.compile(r"last\s+(\d+)", re.IGNORECASE),
)

PRICE_NUMBER_RE = re.compile(r"\d+(?:\.\d+)?")
BRAND_BY_RE = re.compile(r"\bby\s+([A-Z][\w&'-]*(?:\s+[A-Z][\w&'-]*){0,2})")
BRAND_LEADING_RE = re.compile(r"^([A-Z][A-Za-z0-9&]+)[\s-]")

BULLET_CHARS = ("•", "●", "▪", "·", "-", "*", "✓", "✔")

STORAGE_RE = re.compile(r"\b(\d+\s?(?:GB|TB))\b", re.IGNORECASE)
SCREEN_RE = re.compile(r"\b(\d+(?:\.\d+)?)\s?(?:\"|''|-?inch\b)", re.IGNORECASE)
TITLE_KEYWORD_FEATURES = (
    ("wireless", "Wireless Connectivity"),
    ("bluetooth", "Bluetooth Enabled"),
    ("camera", "Built-in Camera"),
    ("battery", "Long Battery Life"),
)

MARKETPLACE_DOMAINS = {
    "AU": "www.amazon.com.au",
    "US": "www.amazon.com",
    "UK": "www.amazon.co.uk",
    "GB": "www.amazon.co.uk",
}


@dataclass
class NormalizedProduct:
    """Canonical product data derived from one supplier payload."""

    supplier_asin: str
    supplier_url: str
    supplier_name: str
    title: str
    brand: Optional[str]
    category: Optional[str]
    description: Optional[str]
    supplier_price: Decimal
    original_price: Optional[Decimal]
    our_price: Decimal
    currency: str
    stock_status: StockStatus
    stock_quantity: Optional[int]
    rating_average: Optional[float]
    rating_count: int
    scraped_at: datetime
    features: list[str] = field(default_factory=list)
    image_urls: list[str] = field(default_factory=list)

    def to_record(self, include_identity: bool = True) -> dict[str, Any]:
        """
        Column values for the products table.

        Args:
            include_identity: Include supplier_sku/supplier_asin (left out when
                refreshing a stored product, whose identity never changes)
        """
        record = {
            "supplier_url": self.supplier_url,
            "supplier_name": self.supplier_name,
            "title": self.title,
            "brand": self.brand,
            "category": self.category,
            "description": self.description,
            "features": list(self.features),
            "image_urls": list(self.image_urls),
            "supplier_price": self.supplier_price,
            "original_price": self.original_price,
            "our_price": self.our_price,
            "currency": self.currency,
            "stock_status": self.stock_status.value,
            "stock_quantity": self.stock_quantity,
            "rating_average": self.rating_average,
            "rating_count": self.rating_count,
            "last_scraped": self.scraped_at,
        }
        if include_identity:
            record["supplier_sku"] = self.supplier_asin
            record["supplier_asin"] = self.supplier_asin
        return record


class NormalizationError(Exception):
    """Raised when a payload cannot be normalized at all."""

    pass


def first_present(payload: Mapping, fields: tuple[str, ...]) -> Any:
    """Return the first value among fields that is not None or empty."""
    for name in fields:
        value = payload.get(name)
        if value is None:
            continue
        if isinstance(value, (str, list, tuple, dict)) and not value:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return None


def clean_text(value: Any) -> str:
    """Collapse whitespace runs and trim."""
    if value is None:
        return ""
    return re.sub(r"\s+", " ", str(value)).strip()


def truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."


def parse_price(value: Any) -> Decimal:
    """
    Parse a price from a number or a formatted string like "$1,299.00".

    Returns:
        Decimal amount, or 0 if missing, malformed or not positive
    """
    if value is None or isinstance(value, bool):
        return Decimal("0")

    if isinstance(value, (int, float, Decimal)):
        raw = str(value)
    else:
        # Leading number only, so "$49.99 - $59.99" reads as 49.99
        match = PRICE_NUMBER_RE.search(str(value).replace(",", ""))
        if match is None:
            return Decimal("0")
        raw = match.group(0)

    try:
        price = Decimal(raw)
    except InvalidOperation:
        return Decimal("0")

    if not price.is_finite() or price <= 0:
        return Decimal("0")
    return price


def parse_rating(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)

    match = re.search(r"\d+(?:\.\d+)?", str(value))
    return float(match.group(0)) if match else None


def parse_count(value: Any) -> int:
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return max(value, 0)
    if isinstance(value, float):
        return max(int(value), 0)

    digits = re.sub(r"[^\d]", "", str(value))
    return int(digits) if digits else 0


def classify_stock(availability: Any) -> StockStatus:
    """Map free-text availability to exactly one stock status."""
    if availability is None:
        return StockStatus.IN_STOCK

    text = str(availability).lower()
    if not text.strip():
        return StockStatus.IN_STOCK

    if any(keyword in text for keyword in OUT_OF_STOCK_KEYWORDS):
        return StockStatus.OUT_OF_STOCK

    if ("only" in text and "left" in text) or any(
        keyword in text for keyword in LIMITED_STOCK_KEYWORDS
    ):
        return StockStatus.LIMITED_STOCK

    return StockStatus.IN_STOCK


def extract_stock_quantity(availability: Any, status: StockStatus) -> Optional[int]:
    if status == StockStatus.OUT_OF_STOCK:
        return 0
    if availability is None:
        return None

    text = str(availability)
    for pattern in STOCK_QUANTITY_PATTERNS:
        match = pattern.search(text)
        if match:
            quantity = int(match.group(1))
            if 0 < quantity < 10000:
                return quantity
    return None


def extract_category(value: Any) -> Optional[str]:
    """Category as a string; breadcrumb ladders are joined with " > "."""
    if not value:
        return None
    if isinstance(value, str):
        return clean_text(value) or None

    if isinstance(value, list):
        return extract_category(value[0])

    if isinstance(value, Mapping):
        ladder = value.get("ladder")
        if isinstance(ladder, list) and ladder:
            names = [
                clean_text(step.get("name") if isinstance(step, Mapping) else step)
                for step in ladder
            ]
            return " > ".join(name for name in names if name) or None
        if value.get("name"):
            return clean_text(value["name"])

    return None


def extract_brand_from_title(title: str) -> Optional[str]:
    for pattern in (BRAND_BY_RE, BRAND_LEADING_RE):
        match = pattern.search(title)
        if match:
            brand = match.group(1).strip()
            if 1 < len(brand) < 30:
                return brand
    return None


def _text_list(value: Any) -> list[str]:
    if isinstance(value, str):
        items = value.split("\n")
    elif isinstance(value, (list, tuple)):
        items = value
    else:
        return []
    return [text for text in (clean_text(item) for item in items if item is not None) if text]


def features_from_description(description: str) -> list[str]:
    features = []
    for line in description.splitlines():
        line = line.strip()
        if line.startswith(BULLET_CHARS):
            text = clean_text(line.lstrip("".join(BULLET_CHARS)))
            if text:
                features.append(text)
    return features


def features_from_title(title: str) -> list[str]:
    features = []

    storage = STORAGE_RE.search(title)
    if storage:
        features.append(f"{storage.group(1).upper().replace(' ', '')} Storage")

    screen = SCREEN_RE.search(title)
    if screen:
        features.append(f'{screen.group(1)}" Screen')

    lowered = title.lower()
    for keyword, feature in TITLE_KEYWORD_FEATURES:
        if keyword in lowered:
            features.append(feature)

    return features[:MAX_TITLE_FEATURES]


class ProductNormalizer:
    """Map loosely-typed supplier payloads onto NormalizedProduct."""

    def __init__(
        self,
        currency: Optional[str] = None,
        usd_conversion_rate: Optional[float] = None,
        usd_heuristic_ceiling: Optional[float] = None,
        title_max_length: Optional[int] = None,
        markup_factor: Optional[float] = None,
        flat_fee: Optional[float] = None,
    ):
        self.currency = currency or settings.local_currency
        self.usd_conversion_rate = Decimal(str(
            usd_conversion_rate if usd_conversion_rate is not None else settings.usd_conversion_rate
        ))
        self.usd_heuristic_ceiling = Decimal(str(
            usd_heuristic_ceiling if usd_heuristic_ceiling is not None else settings.usd_heuristic_ceiling
        ))
        self.title_max_length = title_max_length or settings.title_max_length
        self.markup_factor = Decimal(str(
            markup_factor if markup_factor is not None else settings.markup_factor
        ))
        self.flat_fee = Decimal(str(flat_fee if flat_fee is not None else settings.flat_fee))

    def normalize(
        self,
        payload: Mapping,
        identifier: str,
        country: Optional[str] = None,
    ) -> NormalizedProduct:
        """
        Normalize a raw supplier payload.

        Args:
            payload: Raw product payload from SupplierClient
            identifier: ASIN the payload was fetched for
            country: Marketplace country, used for the fallback product URL

        Returns:
            NormalizedProduct

        Raises:
            NormalizationError: If the payload is not a mapping
        """
        if not isinstance(payload, Mapping):
            raise NormalizationError(
                f"Expected a mapping payload for {identifier}, got {type(payload).__name__}"
            )

        country = (country or settings.supplier_default_country).upper()
        asin = str(payload.get("asin") or identifier).strip().upper()

        title = truncate(clean_text(first_present(payload, TITLE_FIELDS)), self.title_max_length)
        title = title or DEFAULT_TITLE

        supplier_price = self.to_local_currency(parse_price(first_present(payload, PRICE_FIELDS)))
        original_price = self.to_local_currency(
            parse_price(first_present(payload, ORIGINAL_PRICE_FIELDS))
        )

        availability = first_present(payload, AVAILABILITY_FIELDS)
        stock_status = classify_stock(availability)

        brand = clean_text(first_present(payload, BRAND_FIELDS)) or None
        if brand is None and title != DEFAULT_TITLE:
            brand = extract_brand_from_title(title)

        description = self._description(payload)

        return NormalizedProduct(
            supplier_asin=asin,
            supplier_url=self._product_url(payload, asin, country),
            supplier_name=f"Amazon {country}",
            title=title,
            brand=brand,
            category=extract_category(first_present(payload, CATEGORY_FIELDS)),
            description=description,
            supplier_price=supplier_price,
            original_price=original_price if original_price > 0 else None,
            our_price=self.resale_price(supplier_price),
            currency=self.currency,
            stock_status=stock_status,
            stock_quantity=extract_stock_quantity(availability, stock_status),
            rating_average=parse_rating(first_present(payload, RATING_FIELDS)),
            rating_count=parse_count(first_present(payload, RATING_COUNT_FIELDS)),
            scraped_at=datetime.utcnow(),
            features=self._features(payload, description, title),
            image_urls=self._images(payload),
        )

    def to_local_currency(self, price: Decimal) -> Decimal:
        """
        Apply the fixed USD conversion to prices under the ceiling.

        This is an approximation with no exchange-rate source.
        """
        if 0 < price < self.usd_heuristic_ceiling:
            price = price * self.usd_conversion_rate
        return price.quantize(CENTS, rounding=ROUND_HALF_UP)

    def resale_price(self, supplier_price: Decimal) -> Decimal:
        if supplier_price <= 0:
            return Decimal("0.00")
        return (supplier_price * self.markup_factor + self.flat_fee).quantize(
            CENTS, rounding=ROUND_HALF_UP
        )

    def to_payload(self, product: NormalizedProduct) -> dict[str, Any]:
        """
        Build a supplier-shaped payload that normalizes back to product.

        Reverses the currency heuristic so prices survive the round trip.
        """
        converted_ceiling = self.usd_heuristic_ceiling * self.usd_conversion_rate
        price = product.supplier_price
        if 0 < price < converted_ceiling:
            price = price / self.usd_conversion_rate

        if product.stock_status == StockStatus.OUT_OF_STOCK:
            availability = "Currently unavailable"
        elif product.stock_status == StockStatus.LIMITED_STOCK:
            availability = (
                f"Only {product.stock_quantity} left in stock"
                if product.stock_quantity
                else "Limited stock"
            )
        else:
            availability = "In Stock"

        return {
            "asin": product.supplier_asin,
            "product_title": product.title,
            "product_price": str(price),
            "product_availability": availability,
            "product_star_rating": product.rating_average,
            "product_num_ratings": product.rating_count,
            "brand": product.brand,
            "category": product.category,
            "product_description": product.description,
            "about_product": list(product.features),
            "product_photos": list(product.image_urls),
            "product_url": product.supplier_url,
        }

    def _description(self, payload: Mapping) -> Optional[str]:
        value = first_present(payload, DESCRIPTION_FIELDS)
        if value is None:
            return None
        if isinstance(value, (list, tuple)):
            value = "\n".join(str(item) for item in value if item)
        # Keep line breaks so bullet lines can be picked out
        lines = [clean_text(line) for line in str(value).splitlines()]
        return "\n".join(line for line in lines if line) or None

    def _features(self, payload: Mapping, description: Optional[str], title: str) -> list[str]:
        features: list[str] = []
        for name in FEATURE_FIELDS:
            features.extend(_text_list(payload.get(name)))
        if features:
            return features[:MAX_FEATURES]

        if description:
            features = features_from_description(description)
            if features:
                return features[:MAX_FEATURES]

        if title == DEFAULT_TITLE:
            return []
        return features_from_title(title)

    def _images(self, payload: Mapping) -> list[str]:
        images: list[str] = []
        for name in SINGLE_IMAGE_FIELDS:
            value = payload.get(name)
            if isinstance(value, str) and value:
                images.append(value)
        for name in IMAGE_LIST_FIELDS:
            value = payload.get(name)
            if isinstance(value, (list, tuple)):
                images.extend(item for item in value if isinstance(item, str) and item)
        return images

    def _product_url(self, payload: Mapping, asin: str, country: str) -> str:
        url = first_present(payload, URL_FIELDS)
        if isinstance(url, str):
            return url.strip()
        domain = MARKETPLACE_DOMAINS.get(country, f"www.amazon.{country.lower()}")
        return f"https://{domain}/dp/{asin}"
