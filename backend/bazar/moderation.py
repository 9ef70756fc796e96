from __future__ import annotations

import enum
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from . import ad_rules, catalog, models
from .config import settings
from .logging_utils import log_event


class ReviewQueue(str, enum.Enum):
    general = "general"
    edited = "edited"
    verification = "verification"
    member = "member"


AD_FORM_FIELDS = (
    "title",
    "description",
    "category_id",
    "subcategory_id",
    "price",
    "price_type",
    "mrp",
    "discount",
    "division",
    "district",
    "area",
    "ad_type",
    "product_types",
    "features",
)
# Keys an owner may change through an edit request.
EDITABLE_AD_KEYS = (
    "title",
    "description",
    "category_id",
    "subcategory_id",
    "price",
    "price_type",
    "condition",
    "ad_type",
    "mrp",
    "discount",
    "features",
    "division",
    "district",
    "upazila",
    "area",
    "custom_fields",
)
PRICE_TYPES = ("fixed", "negotiable", "free")
SELLER_TYPES = ("private", "business")
DIFF_ROW_LIMIT = 12

_MISSING = object()


@dataclass(frozen=True)
class DiffRow:
    key: str
    old_value: Any
    new_value: Any


@dataclass(frozen=True)
class EditDiff:
    rows: list[DiffRow]
    more: int = 0


@dataclass
class ReviewItem:
    queue: ReviewQueue
    ad: models.Ad
    profile: Optional[models.Profile]
    images: list[models.AdImage]
    ad_form: dict[str, Any]
    profile_form: Optional[dict[str, Any]]
    edit_request: Optional[models.AdEditRequest] = None
    diff: Optional[EditDiff] = None
    review_url: str = ""
    notices: list[str] = field(default_factory=list)


def parse_queue(value: Optional[str]) -> ReviewQueue:
    try:
        return ReviewQueue((value or "").strip().lower())
    except ValueError:
        return ReviewQueue.general


def _now() -> datetime:
    return datetime.now(timezone.utc)


def record_ad_event(
    db: Session,
    *,
    ad_id: str,
    action: str,
    actor_id: str | None = None,
    meta: dict | None = None,
    now: datetime | None = None,
) -> None:
    db.add(models.AdAuditLog(ad_id=ad_id, action=action, actor_id=actor_id, meta=meta, created_at=now or _now()))


def record_status_change(db: Session, ad: models.Ad, previous_status: str, actor_id: str | None, now: datetime) -> None:
    if previous_status == ad.status:
        return
    record_ad_event(db, ad_id=ad.id, action=f"{previous_status}_to_{ad.status}", actor_id=actor_id, now=now)


def _ad_queue_filters(queue: ReviewQueue) -> list:
    if queue == ReviewQueue.verification:
        return [models.Ad.status == "approved", models.Ad.needs_verification.is_(True)]
    if queue == ReviewQueue.member:
        return [models.Ad.status == "pending", models.Ad.first_time_poster.is_(True)]
    return [models.Ad.status == "pending", models.Ad.first_time_poster.is_(False)]


def _oldest_pending_request(db: Session, ad_id: str) -> Optional[models.AdEditRequest]:
    return (
        db.query(models.AdEditRequest)
        .filter(models.AdEditRequest.ad_id == ad_id, models.AdEditRequest.status == "pending")
        .order_by(models.AdEditRequest.created_at.asc(), models.AdEditRequest.id.asc())
        .first()
    )


def _newest_ad_by_slug(db: Session, slug: str) -> Optional[models.Ad]:
    if not slug:
        return None
    return (
        db.query(models.Ad)
        .filter(models.Ad.slug == slug)
        .order_by(models.Ad.created_at.desc(), models.Ad.id.desc())
        .first()
    )


def hydrate_ad_form(ad: models.Ad, overrides: Optional[dict[str, Any]] = None) -> dict[str, Any]:
    form = {
        "title": ad.title,
        "description": ad.description,
        "category_id": ad.category_id,
        "subcategory_id": ad.subcategory_id,
        "price": ad.price,
        "price_type": ad.price_type,
        "mrp": ad.mrp,
        "discount": ad.discount,
        "division": ad.division or "",
        "district": ad.district or "",
        "area": ad.area or "",
        "ad_type": ad.ad_type or "",
        "product_types": list(ad.product_types or []),
        "features": list(ad.features or []),
    }
    for key, value in (overrides or {}).items():
        if key in form:
            form[key] = value
    return form


def hydrate_profile_form(profile: Optional[models.Profile]) -> Optional[dict[str, Any]]:
    if profile is None:
        return None
    return {
        "full_name": profile.full_name or "",
        "email": profile.email or "",
        "phone_number": profile.phone_number or "",
        "phone_number_secondary": profile.phone_number_secondary or "",
        "seller_type": profile.seller_type or "private",
        "show_phone_on_ads": True if profile.show_phone_on_ads is None else profile.show_phone_on_ads,
        "phone_verified": bool(profile.phone_verified),
    }


def _serialize_value(value: Any) -> str:
    if value is _MISSING:
        return "<missing>"
    if isinstance(value, int) and not isinstance(value, bool):
        value = float(value)
    return json.dumps(value, sort_keys=True, default=str)


def diff_edit_values(old_values: Optional[dict], new_values: Optional[dict], limit: int = DIFF_ROW_LIMIT) -> EditDiff:
    old_values = old_values or {}
    new_values = new_values or {}
    keys = sorted(set(old_values) | set(new_values))
    changed = [
        DiffRow(key=key, old_value=old_values.get(key), new_value=new_values.get(key))
        for key in keys
        if _serialize_value(old_values.get(key, _MISSING)) != _serialize_value(new_values.get(key, _MISSING))
    ]
    return EditDiff(rows=changed[:limit], more=max(0, len(changed) - limit))


def review_url(queue: ReviewQueue, ad: models.Ad, edit_request: Optional[models.AdEditRequest] = None) -> str:
    if edit_request is not None:
        return f"/admin/ads/{queue.value}?editId={edit_request.id}"
    return f"/admin/ads/{queue.value}?adId={ad.id}"


def load_item(
    db: Session,
    queue: ReviewQueue,
    ad: models.Ad,
    edit_request: Optional[models.AdEditRequest] = None,
) -> ReviewItem:
    profile = db.query(models.Profile).filter(models.Profile.user_id == ad.user_id).first()
    images = sorted(ad.images, key=lambda img: img.sort_order or 0)
    overrides = edit_request.new_values if edit_request is not None else None
    item = ReviewItem(
        queue=queue,
        ad=ad,
        profile=profile,
        images=images,
        ad_form=hydrate_ad_form(ad, overrides),
        profile_form=hydrate_profile_form(profile),
        edit_request=edit_request,
        review_url=review_url(queue, ad, edit_request),
    )
    if edit_request is not None:
        item.diff = diff_edit_values(edit_request.old_values, edit_request.new_values)
    return item


def next_in_queue(db: Session, queue: ReviewQueue) -> Optional[ReviewItem]:
    """Oldest item waiting in ``queue`` (ties broken by id), or ``None`` when the queue is empty."""
    if queue == ReviewQueue.edited:
        request = (
            db.query(models.AdEditRequest)
            .filter(models.AdEditRequest.status == "pending")
            .order_by(models.AdEditRequest.created_at.asc(), models.AdEditRequest.id.asc())
            .first()
        )
        if request is None:
            return None
        return load_item(db, queue, request.ad, request)

    ad = (
        db.query(models.Ad)
        .filter(*_ad_queue_filters(queue))
        .order_by(models.Ad.created_at.asc(), models.Ad.id.asc())
        .first()
    )
    if ad is None:
        return None
    return load_item(db, queue, ad)


def lookup(db: Session, queue: ReviewQueue, raw: Optional[str]) -> Optional[ReviewItem]:
    """Resolve a pasted id, slug or public URL into a review item, bypassing queue order."""
    text = (raw or "").strip()
    if not text:
        return None
    embedded_id = ad_rules.extract_uuid(text, strict=False)
    slug = ad_rules.last_path_segment(text)

    if queue == ReviewQueue.edited:
        if embedded_id:
            request = db.query(models.AdEditRequest).filter(models.AdEditRequest.id == embedded_id).first()
            if request is not None:
                return load_item(db, queue, request.ad, request)
            ad = db.query(models.Ad).filter(models.Ad.id == embedded_id).first()
            if ad is not None:
                request = _oldest_pending_request(db, ad.id)
                return load_item(db, queue, ad, request) if request is not None else None
        ad = _newest_ad_by_slug(db, slug)
        if ad is None:
            return None
        request = _oldest_pending_request(db, ad.id)
        return load_item(db, queue, ad, request) if request is not None else None

    if embedded_id:
        ad = db.query(models.Ad).filter(models.Ad.id == embedded_id).first()
    else:
        ad = _newest_ad_by_slug(db, slug)
    if ad is None:
        return None
    return load_item(db, queue, ad)


def _clean_list(value: Any, allowed: frozenset[str] | None = None) -> list[str]:
    items = ad_rules.unique(ad_rules.coerce_list(value))
    if allowed is not None:
        unknown = [item for item in items if item not in allowed]
        if unknown:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown value: {unknown[0]}")
    return items


def _clean_number(value: Any) -> Optional[float]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid number: {value}")


def build_ad_patch(ad_form: dict[str, Any]) -> dict[str, Any]:
    title = ad_rules.clean_text(ad_form.get("title"))
    if not title:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Title is required.")
    price_type = ad_form.get("price_type") or "fixed"
    if price_type not in PRICE_TYPES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid price type.")
    ad_type = ad_rules.clean_text(ad_form.get("ad_type"))
    if ad_type is not None and ad_type not in catalog.AD_TYPE_VALUES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid ad type.")
    price = _clean_number(ad_form.get("price"))
    return {
        "title": title,
        "description": ad_rules.clean_text(ad_form.get("description")),
        "category_id": ad_form.get("category_id") or None,
        "subcategory_id": ad_form.get("subcategory_id") or None,
        "price": price if price is not None else 0.0,
        "price_type": price_type,
        "mrp": _clean_number(ad_form.get("mrp")),
        "discount": _clean_number(ad_form.get("discount")),
        "division": ad_rules.clean_text(ad_form.get("division")),
        "district": ad_rules.clean_text(ad_form.get("district")),
        "area": ad_rules.clean_text(ad_form.get("area")),
        "ad_type": ad_type,
        "product_types": _clean_list(ad_form.get("product_types"), frozenset(v for v, _ in catalog.PRODUCT_TYPES)),
        "features": _clean_list(ad_form.get("features"), frozenset(v for v, _ in catalog.AD_FEATURES)),
    }


def build_profile_patch(profile_form: dict[str, Any]) -> dict[str, Any]:
    seller_type = profile_form.get("seller_type") or "private"
    if seller_type not in SELLER_TYPES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid seller type.")
    show_phone = profile_form.get("show_phone_on_ads")
    return {
        "full_name": ad_rules.clean_text(profile_form.get("full_name")),
        "email": ad_rules.clean_text(profile_form.get("email")),
        "phone_number": ad_rules.clean_text(profile_form.get("phone_number")),
        "phone_number_secondary": ad_rules.clean_text(profile_form.get("phone_number_secondary")),
        "seller_type": seller_type,
        "show_phone_on_ads": True if show_phone is None else bool(show_phone),
        "phone_verified": bool(profile_form.get("phone_verified") or False),
    }


def save_review_edits(
    db: Session,
    ad: models.Ad,
    ad_form: Optional[dict[str, Any]],
    profile_form: Optional[dict[str, Any]],
    *,
    actor_id: str | None,
    now: datetime,
) -> None:
    """Persist the moderator's form onto the ad and its owner's profile.

    Both patches are validated before anything is written. Only flushes; the caller owns the commit.
    """
    ad_patch = build_ad_patch(ad_form if ad_form is not None else hydrate_ad_form(ad))
    profile_patch = build_profile_patch(profile_form) if profile_form is not None else None

    if profile_patch is not None:
        profile = db.query(models.Profile).filter(models.Profile.user_id == ad.user_id).first()
        if profile is not None:
            was_verified = bool(profile.phone_verified)
            for key, value in profile_patch.items():
                setattr(profile, key, value)
            if profile_patch["phone_verified"] != was_verified:
                profile.phone_verified_at = now if profile_patch["phone_verified"] else None

    previous_promotion = ad.promotion_type
    for key, value in ad_patch.items():
        setattr(ad, key, value)

    expires_at = ad_rules.next_expires_at(ad_patch["features"], ad.expires_at, now, settings.ad_expiry_days)
    if expires_at is not ad_rules.UNCHANGED:
        ad.expires_at = expires_at

    is_featured, promotion_type, promotion_expires_at = ad_rules.derive_legacy_promotion(ad_patch["product_types"], now)
    ad.is_featured = is_featured
    ad.promotion_type = promotion_type
    ad.promotion_expires_at = promotion_expires_at
    if promotion_type and promotion_type != previous_promotion:
        record_ad_event(
            db, ad_id=ad.id, action="promoted", actor_id=actor_id, meta={"promotion_type": promotion_type}, now=now
        )
    db.flush()


def _stamp_review(ad: models.Ad, reviewer_id: str, now: datetime) -> None:
    ad.last_reviewed_by = reviewer_id
    ad.last_reviewed_at = now
    ad.review_source = "admin"


def approve_ad(
    db: Session,
    ad: models.Ad,
    *,
    reviewer_id: str,
    ad_form: Optional[dict[str, Any]] = None,
    profile_form: Optional[dict[str, Any]] = None,
    now: datetime | None = None,
) -> None:
    now = now or _now()
    save_review_edits(db, ad, ad_form, profile_form, actor_id=reviewer_id, now=now)
    previous_status = ad.status
    ad.status = "approved"
    ad.needs_verification = False
    _stamp_review(ad, reviewer_id, now)
    record_status_change(db, ad, previous_status, reviewer_id, now)
    db.flush()
    log_event("ad_approved", ad_id=ad.id, reviewer_id=reviewer_id, previous_status=previous_status)


def resolve_duplicate_ref(db: Session, ad: models.Ad, ref: Optional[str]) -> tuple[Optional[str], Optional[str]]:
    """Return ``(duplicate_ad_id, notice)``; an unknown slug yields a notice and self-reference is dropped."""
    text = (ref or "").strip()
    if not text:
        return None, None
    notice = None
    duplicate_id = ad_rules.extract_uuid(text, strict=False)
    if duplicate_id is None:
        match = _newest_ad_by_slug(db, ad_rules.last_path_segment(text))
        duplicate_id = match.id if match is not None else None
        if duplicate_id is None:
            notice = "Duplicate not found; rejected without linking a duplicate."
    if duplicate_id == ad.id:
        duplicate_id = None
    return duplicate_id, notice


def reject_ad(
    db: Session,
    ad: models.Ad,
    *,
    reviewer_id: str,
    reasons: list[str],
    message: Optional[str] = None,
    duplicate_ref: Optional[str] = None,
    ad_form: Optional[dict[str, Any]] = None,
    profile_form: Optional[dict[str, Any]] = None,
    now: datetime | None = None,
) -> Optional[str]:
    reasons = ad_rules.unique(r for r in (reasons or []) if r)
    if not reasons:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Select at least one rejection reason.")
    unknown = [r for r in reasons if r not in catalog.REJECTION_REASON_VALUES]
    if unknown:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown rejection reason: {unknown[0]}")

    now = now or _now()
    duplicate_id, notice = resolve_duplicate_ref(db, ad, duplicate_ref)
    save_review_edits(db, ad, ad_form, profile_form, actor_id=reviewer_id, now=now)

    previous_status = ad.status
    ad.status = "rejected"
    ad.needs_verification = False
    ad.rejection_reason = reasons[0]
    ad.rejection_reasons = reasons
    ad.rejection_message = ad_rules.clean_text(message)
    ad.duplicate_of_ad_id = duplicate_id
    _stamp_review(ad, reviewer_id, now)
    record_status_change(db, ad, previous_status, reviewer_id, now)
    db.flush()
    log_event("ad_rejected", ad_id=ad.id, reviewer_id=reviewer_id, reasons=reasons, duplicate_of_ad_id=duplicate_id)
    return notice


def _ensure_pending(request: models.AdEditRequest) -> None:
    if request.status != "pending":
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Edit request was already reviewed.")


def approve_edit_request(
    db: Session,
    request: models.AdEditRequest,
    *,
    reviewer_id: str,
    ad_form: Optional[dict[str, Any]] = None,
    profile_form: Optional[dict[str, Any]] = None,
    now: datetime | None = None,
) -> None:
    """Persist the on-screen form (seeded from ``new_values``) and close the request."""
    _ensure_pending(request)
    now = now or _now()
    ad = request.ad
    new_values = request.new_values or {}
    form = ad_form if ad_form is not None else hydrate_ad_form(ad, new_values)
    save_review_edits(db, ad, form, profile_form, actor_id=reviewer_id, now=now)
    # The moderator form does not carry these, so they come straight from the request.
    for key in EDITABLE_AD_KEYS:
        if key in new_values and key not in AD_FORM_FIELDS:
            value = new_values[key]
            setattr(ad, key, ad_rules.clean_text(value) if isinstance(value, str) else value)

    request.status = "approved"
    request.reviewed_by = reviewer_id
    request.reviewed_at = now
    request.review_message = None
    _stamp_review(ad, reviewer_id, now)
    db.flush()
    log_event("edit_request_approved", edit_request_id=request.id, ad_id=ad.id, reviewer_id=reviewer_id)


def reject_edit_request(
    db: Session,
    request: models.AdEditRequest,
    *,
    reviewer_id: str,
    message: Optional[str] = None,
    now: datetime | None = None,
) -> None:
    _ensure_pending(request)
    now = now or _now()
    request.status = "rejected"
    request.reviewed_by = reviewer_id
    request.reviewed_at = now
    request.review_message = ad_rules.clean_text(message)
    db.flush()
    log_event("edit_request_rejected", edit_request_id=request.id, ad_id=request.ad_id, reviewer_id=reviewer_id)


def queue_counts(db: Session) -> dict[str, int]:
    counts = {}
    for queue in (ReviewQueue.general, ReviewQueue.member, ReviewQueue.verification):
        counts[queue.value] = db.query(models.Ad.id).filter(*_ad_queue_filters(queue)).count()
    counts[ReviewQueue.edited.value] = (
        db.query(models.AdEditRequest.id).filter(models.AdEditRequest.status == "pending").count()
    )
    return counts


def reviewed_today(db: Session, reviewer_id: str, queue: ReviewQueue, now: datetime | None = None) -> int:
    now = now or _now()
    start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if queue == ReviewQueue.edited:
        return (
            db.query(models.AdEditRequest.id)
            .filter(models.AdEditRequest.reviewed_by == reviewer_id, models.AdEditRequest.reviewed_at >= start_of_day)
            .count()
        )
    return (
        db.query(models.Ad.id)
        .filter(models.Ad.last_reviewed_by == reviewer_id, models.Ad.last_reviewed_at >= start_of_day)
        .count()
    )
