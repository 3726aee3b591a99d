"""Supplier identifier parsing and internal SKU generation."""

import re
import time
from typing import Optional
from urllib.parse import parse_qs, urlparse

ASIN_RE = re.compile(r"^[A-Z0-9]{10}$", re.IGNORECASE)

# Checked in order against the URL path
URL_PATH_PATTERNS = (
    re.compile(r"/dp/([A-Z0-9]{10})(?:[/?]|$)", re.IGNORECASE),
    re.compile(r"/gp/product/([A-Z0-9]{10})(?:[/?]|$)", re.IGNORECASE),
    re.compile(r"/product/([A-Z0-9]{10})(?:[/?]|$)", re.IGNORECASE),
)

INTERNAL_SKU_PREFIX = "AMZ"


def extract_asin(value: str) -> Optional[str]:
    """
    Pull an ASIN out of a bare identifier or a product URL.

    Returns:
        Upper-cased ASIN, or None if nothing matches
    """
    if not value:
        return None

    candidate = value.strip()
    if ASIN_RE.match(candidate):
        return candidate.upper()

    if "://" not in candidate and not candidate.startswith("www."):
        return None

    parsed = urlparse(candidate if "://" in candidate else f"https://{candidate}")

    for pattern in URL_PATH_PATTERNS:
        match = pattern.search(parsed.path)
        if match:
            return match.group(1).upper()

    for asin in parse_qs(parsed.query).get("asin", []):
        if ASIN_RE.match(asin):
            return asin.upper()

    last_segment = parsed.path.rstrip("/").rsplit("/", 1)[-1]
    if ASIN_RE.match(last_segment):
        return last_segment.upper()

    return None


def generate_internal_sku(asin: str, now_ms: Optional[int] = None) -> str:
    """Build the stable internal SKU assigned on first import."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"{INTERNAL_SKU_PREFIX}{asin.upper()}{str(now_ms)[-6:]}"
