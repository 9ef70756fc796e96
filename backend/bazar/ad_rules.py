"""Pure rules shared by the moderation workflow, the admin search and the marketplace endpoints.

Nothing in here touches the database; every function is deterministic for a fixed ``now``.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Optional

from . import catalog

UUID_PATTERN = r"[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}"
_UUID_FULL_RE = re.compile(rf"^{UUID_PATTERN}$", re.IGNORECASE)
_UUID_ANY_RE = re.compile(UUID_PATTERN, re.IGNORECASE)
_UUID_SUFFIX_RE = re.compile(rf"({UUID_PATTERN})$", re.IGNORECASE)
# Any 8-4-4-4-12 hex id, whatever generator produced it.
_HEX_ID_ANY_RE = re.compile(r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}", re.IGNORECASE)
_LETTER_RE = re.compile(r"[a-z]", re.IGNORECASE)
_NON_DIGIT_RE = re.compile(r"\D")

URGENT_PROMOTION_DAYS = 3
DEFAULT_PROMOTION_DAYS = 7

# Legacy ads.promotion_type values mapped onto product types.
LEGACY_PROMOTION_PRODUCTS = {
    "bump_up": catalog.PRODUCT_BUMP_UP,
    "top_ad": catalog.PRODUCT_TOP_AD,
    "top": catalog.PRODUCT_TOP_AD,
    "urgent": catalog.PRODUCT_URGENT_AD,
    "spotlight": catalog.PRODUCT_SPOTLIGHT,
    "featured": catalog.PRODUCT_FEATURED_AD,
    "urgent_bundle": catalog.PRODUCT_URGENT_BUNDLE,
    "membership": catalog.PRODUCT_MEMBERSHIP_PACKAGE,
    "extra_images": catalog.PRODUCT_EXTRA_IMAGES,
}

# Coarse ads.status values that can hold each derived state.
STATE_TO_STATUSES: dict[str, tuple[str, ...]] = {
    catalog.STATE_REJECTED: ("rejected",),
    catalog.STATE_ENQUEUED: ("pending",),
    catalog.STATE_PENDING_VERIFICATION: ("approved",),
    catalog.STATE_PUBLISHED: ("approved",),
    catalog.STATE_DEACTIVATED: ("pending", "approved", "rejected", "sold"),
    catalog.STATE_PENDING_PAYMENT: ("pending", "approved"),
    catalog.STATE_ARCHIVED: ("pending", "approved", "rejected", "sold"),
    catalog.STATE_UNCONFIRMED: ("pending", "approved"),
}

UNCHANGED = object()


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize datetimes (SQLite hands back naive ones) to timezone-aware UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def coerce_list(value: Any) -> list[str]:
    if not isinstance(value, (list, tuple)):
        return []
    return [str(item) for item in value if item]


def unique(items: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for item in items:
        if item in seen:
            continue
        seen.add(item)
        out.append(item)
    return out


def derive_legacy_promotion(product_types: Any, now: datetime) -> tuple[bool, Optional[str], Optional[datetime]]:
    """Map product types onto ``(is_featured, promotion_type, promotion_expires_at)``.

    Urgent beats top, top beats featured. Anything that is not a list yields no promotion.
    """
    selected = set(coerce_list(product_types))

    has_urgent = catalog.PRODUCT_URGENT_AD in selected or catalog.PRODUCT_URGENT_BUNDLE in selected
    has_top = catalog.PRODUCT_TOP_AD in selected
    has_featured = catalog.PRODUCT_FEATURED_AD in selected or catalog.PRODUCT_SPOTLIGHT in selected

    promotion_type: Optional[str] = None
    if has_urgent:
        promotion_type = "urgent"
    elif has_top:
        promotion_type = "top"
    elif has_featured:
        promotion_type = "featured"

    is_featured = has_featured or promotion_type == "featured"

    expires_at: Optional[datetime] = None
    if promotion_type:
        days = URGENT_PROMOTION_DAYS if promotion_type == "urgent" else DEFAULT_PROMOTION_DAYS
        expires_at = now + timedelta(days=days)
    return is_featured, promotion_type, expires_at


def next_expires_at(features: Any, current_expires_at: Optional[datetime], now: datetime, expiry_days: int):
    """Return the new ``expires_at`` or ``UNCHANGED`` when the stored value must be kept."""
    if catalog.FEATURE_NO_EXPIRATION in coerce_list(features):
        return None
    if current_expires_at is None:
        return now + timedelta(days=expiry_days)
    return UNCHANGED


def derive_ad_state(ad: Any, now: datetime) -> str:
    if (getattr(ad, "payment_status", None) or "") == "pending":
        return catalog.STATE_PENDING_PAYMENT
    if getattr(ad, "is_deactivated", False):
        return catalog.STATE_DEACTIVATED

    expires_at = as_utc(getattr(ad, "expires_at", None))
    expired = expires_at is not None and expires_at < now
    if getattr(ad, "is_archived", False) or expired or ad.status == "sold":
        return catalog.STATE_ARCHIVED

    if getattr(ad, "is_unconfirmed", False):
        return catalog.STATE_UNCONFIRMED
    if ad.status == "rejected":
        return catalog.STATE_REJECTED
    if ad.status == "pending":
        return catalog.STATE_ENQUEUED
    if ad.status == "approved" and getattr(ad, "needs_verification", False):
        return catalog.STATE_PENDING_VERIFICATION
    return catalog.STATE_PUBLISHED


def statuses_for_states(states: Iterable[str]) -> list[str]:
    out: list[str] = []
    for state in states:
        out.extend(STATE_TO_STATUSES.get(state, ()))
    return unique(out)


def derive_product_types(ad: Any) -> list[str]:
    derived = coerce_list(getattr(ad, "product_types", None))
    if getattr(ad, "is_featured", False):
        derived.append(catalog.PRODUCT_FEATURED_AD)
    legacy = LEGACY_PROMOTION_PRODUCTS.get(getattr(ad, "promotion_type", None) or "")
    if legacy:
        derived.append(legacy)
    return unique(derived)


def derive_features(ad: Any) -> list[str]:
    return unique(coerce_list(getattr(ad, "features", None)))


def generate_slug(title: str) -> str:
    slug = re.sub(r"[^a-z0-9\s-]", "", (title or "").lower())
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug).strip("-")
    return slug or "ad"


def is_uuid(value: Optional[str]) -> bool:
    return bool(value) and bool(_UUID_FULL_RE.match(value.strip()))


def extract_uuid(text: Optional[str], strict: bool = True) -> Optional[str]:
    if not text:
        return None
    match = (_UUID_ANY_RE if strict else _HEX_ID_ANY_RE).search(text)
    return match.group(0).lower() if match else None


def build_public_path(ad_id: str, slug: Optional[str]) -> str:
    ad_id = (ad_id or "").strip()
    slug = (slug or "").strip()
    if not ad_id:
        return "/"
    if not slug or slug == ad_id:
        return f"/ad/{ad_id}"
    if slug.endswith(ad_id):
        return f"/ad/{slug}"
    return f"/ad/{slug}-{ad_id}"


def parse_route_param(param: Optional[str]) -> tuple[Optional[str], Optional[str]]:
    """Split ``<slug>-<uuid>`` / ``<uuid>`` / ``<slug>`` into ``(id, slug)``."""
    raw = (param or "").strip()
    if not raw:
        return None, None
    if is_uuid(raw):
        return raw.lower(), None
    match = _UUID_SUFFIX_RE.search(raw)
    if match:
        ad_id = match.group(1)
        prefix = raw[: len(raw) - len(ad_id)]
        slug = prefix[:-1] if prefix.endswith("-") else prefix
        return ad_id.lower(), slug or None
    return None, raw


def last_path_segment(text: Optional[str]) -> str:
    cleaned = (text or "").replace(",", " ").strip()
    segments = [part for part in cleaned.split("/") if part]
    last = segments[-1] if segments else cleaned
    return last.split("?")[0].split("#")[0].strip()


def digits_only(text: Optional[str]) -> str:
    return _NON_DIGIT_RE.sub("", text or "")


def is_likely_email(q: str) -> bool:
    return "@" in q and "." in q


def is_likely_phone(q: str) -> bool:
    if _LETTER_RE.search(q):
        return False
    return len(digits_only(q)) >= 7


def classify_search_query(q: Optional[str]) -> str:
    """Classify a free-text admin query: ``uuid`` > ``email`` > ``phone`` > ``slug``."""
    q = (q or "").strip()
    if not q:
        return "empty"
    if extract_uuid(q):
        return "uuid"
    if is_likely_email(q):
        return "email"
    if is_likely_phone(q):
        return "phone"
    return "slug"


def fuzzy_phone_pattern(digits: str) -> str:
    # 01712345678 -> %017%123%456%78%
    cleaned = digits_only(digits)
    if not cleaned:
        return "%"
    chunks = [cleaned[i : i + 3] for i in range(0, len(cleaned), 3)]
    return "%" + "%".join(chunks) + "%"


def phone_patterns(q: str) -> list[str]:
    digits = digits_only(q)
    patterns = [f"%{q}%", f"%{digits}%" if digits else "", fuzzy_phone_pattern(digits)]
    return unique(p for p in patterns if p)


def clean_text(value: Any) -> Optional[str]:
    """Trim strings; blank becomes ``None``."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None
