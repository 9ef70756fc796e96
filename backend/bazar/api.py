from datetime import date, datetime, time as dt_time, timezone
from typing import List, Optional
from contextlib import asynccontextmanager
import csv
import io
import time
import logging
from pathlib import Path

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, status, Request, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from jose import JWTError, jwt
from jose.exceptions import ExpiredSignatureError
from sqlalchemy import func, or_, text
from sqlalchemy.orm import Session, joinedload

from . import ad_rules, auth, catalog, models, moderation, schemas
from .config import settings
from .database import engine, get_db
from .email_service import schedule_email_item
from .logging_utils import configure_logging, RequestIdMiddleware, log_event, log_warning
from .moderation import ReviewQueue

configure_logging()


def _run_migrations():
    """Run Alembic migrations to latest head. Controlled via settings.auto_run_migrations."""
    try:
        from alembic import command
        from alembic.config import Config
        base_dir = Path(__file__).resolve().parent.parent
        alembic_ini = base_dir / 'alembic.ini'
        if not alembic_ini.exists():
            logging.warning('alembic.ini not found; skipping migrations')
            return
        cfg = Config(str(alembic_ini))
        cfg.set_main_option('script_location', str(base_dir / 'alembic'))
        command.upgrade(cfg, 'head')
        logging.info('Migrations applied to head')
    except Exception:
        logging.exception('Failed to run migrations on startup')


def _check_configuration():
    if not settings.database_url:
        raise RuntimeError('DATABASE_URL is required')
    if not settings.secret_key:
        raise RuntimeError('SECRET_KEY is required')
    if settings.email_enabled and (not settings.smtp_host or not settings.smtp_sender):
        logging.warning('Email enabled but SMTP host/sender missing; disabling email sending')
        settings.email_enabled = False


@asynccontextmanager
async def lifespan(_app: FastAPI):
    _check_configuration()
    if settings.auto_run_migrations:
        _run_migrations()
    elif settings.auto_create_tables:
        models.Base.metadata.create_all(bind=engine)
    yield


app = FastAPI(title="Bazar API", version="1.0.0", lifespan=lifespan)

app.add_middleware(RequestIdMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins or [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    code = f"http_{exc.status_code}"
    message = exc.detail if isinstance(exc.detail, str) else "Error"
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"code": code, "message": message}, "detail": message},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logging.getLogger("bazar").exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": {"code": "internal_error", "message": "An unexpected error occurred."}},
    )


_RATE_LIMIT_STORE: dict[str, list[float]] = {}
_VIEW_DEDUPE_STORE: dict[str, float] = {}


def _enforce_rate_limit(
    action: str,
    request: Request | None = None,
    limit: int = 20,
    window_seconds: int = 60,
    identifier: str | None = None,
) -> None:
    now = time.time()
    identity = identifier or (request.client.host if request and request.client else "unknown")
    key = f"{action}:{identity}"
    entries = _RATE_LIMIT_STORE.get(key, [])
    entries = [ts for ts in entries if now - ts < window_seconds]
    if len(entries) >= limit:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many requests. Try again in a few moments.",
        )
    entries.append(now)
    _RATE_LIMIT_STORE[key] = entries


def _should_count_view(ad_id: str, viewer: str) -> bool:
    now = time.time()
    window = settings.view_count_dedupe_seconds
    stale = [key for key, seen_at in _VIEW_DEDUPE_STORE.items() if now - seen_at >= window]
    for key in stale:
        del _VIEW_DEDUPE_STORE[key]
    key = f"{ad_id}:{viewer}"
    if key in _VIEW_DEDUPE_STORE:
        return False
    _VIEW_DEDUPE_STORE[key] = now
    return True


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _normalize_dt(value: Optional[datetime]) -> Optional[datetime]:
    return ad_rules.as_utc(value)


def _day_start(value: date) -> datetime:
    return datetime.combine(value, dt_time.min, tzinfo=timezone.utc)


def _day_end(value: date) -> datetime:
    return datetime.combine(value, dt_time.max, tzinfo=timezone.utc)


def _get_ad_or_404(db: Session, ad_id: str) -> models.Ad:
    ad = db.query(models.Ad).filter(models.Ad.id == ad_id).first()
    if not ad:
        raise HTTPException(status_code=404, detail="Ad not found.")
    return ad


def _profile_for(db: Session, user_id: str) -> Optional[models.Profile]:
    return db.query(models.Profile).filter(models.Profile.user_id == user_id).first()


def _serialize_public_ad(ad: models.Ad, profile: Optional[models.Profile]) -> schemas.PublicAdResponse:
    show_phone = profile is not None and profile.show_phone_on_ads
    return schemas.PublicAdResponse(
        id=ad.id,
        slug=ad.slug,
        public_path=ad_rules.build_public_path(ad.id, ad.slug),
        title=ad.title,
        description=ad.description,
        category_id=ad.category_id,
        subcategory_id=ad.subcategory_id,
        price=ad.price,
        price_type=ad.price_type,
        condition=ad.condition,
        ad_type=ad.ad_type,
        division=ad.division,
        district=ad.district,
        area=ad.area,
        status=ad.status,
        is_featured=bool(ad.is_featured),
        promotion_type=ad.promotion_type,
        views_count=ad.views_count or 0,
        seller_id=ad.user_id,
        seller_name=profile.full_name if profile else None,
        seller_phone=profile.phone_number if show_phone else None,
        images=[schemas.AdImageResponse.model_validate(img) for img in ad.images],
        created_at=ad.created_at,
    )


def _serialize_edit_request(request: models.AdEditRequest) -> schemas.EditRequestResponse:
    return schemas.EditRequestResponse.model_validate(request)


def _serialize_review_item(item: moderation.ReviewItem) -> schemas.ReviewItemPayload:
    diff = None
    if item.diff is not None:
        diff = schemas.EditDiffResponse(
            rows=[
                schemas.DiffRowResponse(key=row.key, old_value=row.old_value, new_value=row.new_value)
                for row in item.diff.rows
            ],
            more=item.diff.more,
        )
    return schemas.ReviewItemPayload(
        ad=schemas.AdResponse.model_validate(item.ad),
        profile=schemas.ProfileResponse.model_validate(item.profile) if item.profile else None,
        images=[schemas.AdImageResponse.model_validate(img) for img in item.images],
        ad_form=item.ad_form,
        profile_form=item.profile_form,
        edit_request=_serialize_edit_request(item.edit_request) if item.edit_request else None,
        diff=diff,
        review_url=item.review_url,
        public_path=ad_rules.build_public_path(item.ad.id, item.ad.slug),
    )


def _review_response(
    db: Session,
    session: auth.AuthSession,
    queue: ReviewQueue,
    item: Optional[moderation.ReviewItem],
    notice: Optional[str] = None,
) -> schemas.ReviewQueueResponse:
    return schemas.ReviewQueueResponse(
        queue=queue.value,
        item=_serialize_review_item(item) if item else None,
        notice=notice,
        counts=moderation.queue_counts(db),
        reviewed_today=moderation.reviewed_today(db, session.user_id, queue),
    )


def _advance(db: Session, session: auth.AuthSession, queue: ReviewQueue, notice: Optional[str] = None):
    item = moderation.next_in_queue(db, queue)
    if item is None:
        notice = " ".join(filter(None, [notice, "Queue empty."]))
    return _review_response(db, session, queue, item, notice)


def _form_dict(form) -> Optional[dict]:
    return form.model_dump() if form is not None else None


def _csv_response(filename: str, header: list[str], rows: list[list]) -> Response:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(header)
    for row in rows:
        writer.writerow(["" if value is None else value for value in row])
    return Response(
        content=buffer.getvalue(),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


def _get_moderation_settings(db: Session) -> models.AutoModerationSettings:
    row = db.query(models.AutoModerationSettings).order_by(models.AutoModerationSettings.created_at.asc()).first()
    if row is None:
        row = models.AutoModerationSettings()
        db.add(row)
        db.commit()
        db.refresh(row)
    return row


def _passes_auto_moderation(
    rules: models.AutoModerationSettings,
    *,
    title: str,
    description: Optional[str],
    profile: Optional[models.Profile],
    first_time_poster: bool,
) -> bool:
    if not rules.is_enabled:
        return False
    if first_time_poster and not rules.auto_approve_first_time_posters:
        return False
    if len((description or "").strip()) < (rules.min_description_length or 0):
        return False
    haystack = f"{title}\n{description or ''}".lower()
    if any(keyword and keyword.lower() in haystack for keyword in (rules.blocked_keywords or [])):
        return False
    if rules.require_phone_verification and not (profile and profile.phone_verified):
        return False
    return True


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


def _ensure_can_sign_in(profile: Optional[models.Profile]) -> None:
    if profile is not None and (profile.is_blocked or profile.is_deleted):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account disabled.")


@app.post("/register", response_model=schemas.Token)
def register(user: schemas.UserRegister, request: Request, db: Session = Depends(get_db)):
    _enforce_rate_limit("register", request=request, identifier=user.email.lower())
    email = user.email.lower()
    if db.query(models.User).filter(func.lower(models.User.email) == email).first():
        raise HTTPException(status_code=400, detail="This email is already in use.")

    new_user = models.User(email=email, password_hash=auth.get_password_hash(user.password))
    new_user.profile = models.Profile(
        full_name=ad_rules.clean_text(user.full_name),
        email=email,
        phone_number=ad_rules.clean_text(user.phone_number),
    )
    db.add(new_user)
    db.commit()
    db.refresh(new_user)
    log_event("user_registered", user_id=new_user.id, email=new_user.email)

    return {**auth.issue_tokens(new_user.id, new_user.email), "is_admin": auth.is_admin_user(db, new_user)}


@app.post("/login", response_model=schemas.Token)
def login(user_credentials: schemas.UserLogin, request: Request, db: Session = Depends(get_db)):
    _enforce_rate_limit("login", request=request, identifier=user_credentials.email.lower())
    user = db.query(models.User).filter(func.lower(models.User.email) == user_credentials.email.lower()).first()
    if not user or not auth.verify_password(user_credentials.password, user.password_hash):
        log_warning("login_failed", email=user_credentials.email)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    _ensure_can_sign_in(user.profile)

    user.last_seen_at = _now()
    db.add(user)
    db.commit()

    log_event("login_success", user_id=user.id, email=user.email)
    return {**auth.issue_tokens(user.id, user.email), "is_admin": auth.is_admin_user(db, user)}


@app.post("/refresh", response_model=schemas.Token)
def refresh_token(payload: schemas.RefreshRequest, db: Session = Depends(get_db)):
    try:
        decoded = jwt.decode(payload.refresh_token, settings.secret_key, algorithms=[settings.algorithm])
    except ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Refresh token expired.")
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid refresh token.")

    if decoded.get("type") != "refresh" or not decoded.get("sub"):
        raise HTTPException(status_code=401, detail="Invalid refresh token.")

    user = db.query(models.User).filter(models.User.id == decoded["sub"]).first()
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid refresh token.")
    _ensure_can_sign_in(user.profile)
    return {**auth.issue_tokens(user.id, user.email), "is_admin": auth.is_admin_user(db, user)}


@app.get("/me", response_model=schemas.MeResponse)
def get_me(session: auth.AuthSession = Depends(auth.get_session)):
    profile = session.user.profile
    return schemas.MeResponse(
        id=session.user.id,
        email=session.user.email,
        full_name=profile.full_name if profile else None,
        phone_number=profile.phone_number if profile else None,
        is_admin=session.is_admin,
        permissions=sorted(session.permissions),
    )


@app.get("/")
def read_root():
    return {"message": "Hello from Bazar API!"}


@app.get("/api/health")
def health_check(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
    except Exception as exc:  # noqa: BLE001
        log_warning("health_check_failed", error=str(exc))
        raise HTTPException(status_code=503, detail="Database unavailable")
    return {"status": "ok", "database": "ok"}


@app.get("/api/metadata/catalog")
def get_catalog():
    return catalog.get_catalog()


@app.get("/api/categories", response_model=schemas.CategoryListResponse)
def list_categories(db: Session = Depends(get_db)):
    categories = (
        db.query(models.Category)
        .options(joinedload(models.Category.subcategories))
        .order_by(models.Category.sort_order, models.Category.name)
        .all()
    )
    items = []
    for category in categories:
        item = schemas.CategoryResponse.model_validate(category)
        item.subcategories = sorted(item.subcategories, key=lambda sub: sub.name)
        items.append(item)
    return {"items": items}


# ---------------------------------------------------------------------------
# Marketplace
# ---------------------------------------------------------------------------


@app.post("/api/ads", response_model=schemas.AdResponse, status_code=status.HTTP_201_CREATED)
def create_ad(
    payload: schemas.AdCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    _enforce_rate_limit(
        "create_ad",
        request=request,
        identifier=current_user.id,
        limit=settings.public_api_rate_limit,
        window_seconds=settings.public_api_rate_window_seconds,
    )
    profile = _profile_for(db, current_user.id)
    if profile is not None and (profile.is_blocked or profile.is_deleted):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="This account cannot post ads.")

    known_products = {value for value, _ in catalog.PRODUCT_TYPES}
    known_features = {value for value, _ in catalog.AD_FEATURES}
    product_types = ad_rules.unique(payload.product_types)
    features = ad_rules.unique(payload.features)
    if any(p not in known_products for p in product_types) or any(f not in known_features for f in features):
        raise HTTPException(status_code=400, detail="Unknown product type or feature.")
    if payload.subcategory_id:
        sub = db.query(models.Subcategory).filter(models.Subcategory.id == payload.subcategory_id).first()
        if sub is None or (payload.category_id and sub.category_id != payload.category_id):
            raise HTTPException(status_code=400, detail="Subcategory does not belong to the category.")

    now = _now()
    first_time_poster = db.query(models.Ad.id).filter(models.Ad.user_id == current_user.id).first() is None
    rules = _get_moderation_settings(db)
    auto_approved = _passes_auto_moderation(
        rules,
        title=payload.title,
        description=payload.description,
        profile=profile,
        first_time_poster=first_time_poster,
    )
    is_featured, promotion_type, promotion_expires_at = ad_rules.derive_legacy_promotion(product_types, now)
    expires_at = ad_rules.next_expires_at(features, None, now, settings.ad_expiry_days)

    ad = models.Ad(
        user_id=current_user.id,
        slug=ad_rules.generate_slug(payload.title),
        title=payload.title.strip(),
        description=ad_rules.clean_text(payload.description),
        category_id=payload.category_id,
        subcategory_id=payload.subcategory_id,
        custom_fields=payload.custom_fields,
        condition=payload.condition,
        price=payload.price if payload.price is not None else 0.0,
        price_type=payload.price_type,
        mrp=payload.mrp,
        discount=payload.discount,
        ad_type=payload.ad_type,
        product_types=product_types,
        features=features,
        division=ad_rules.clean_text(payload.division),
        district=ad_rules.clean_text(payload.district),
        upazila=ad_rules.clean_text(payload.upazila),
        area=ad_rules.clean_text(payload.area),
        status="approved" if auto_approved else "pending",
        needs_verification=auto_approved,
        first_time_poster=first_time_poster,
        review_source="auto" if auto_approved else None,
        is_featured=is_featured,
        promotion_type=promotion_type,
        promotion_expires_at=promotion_expires_at,
        expires_at=None if expires_at is ad_rules.UNCHANGED else expires_at,
        created_at=now,
    )
    for index, url in enumerate(payload.image_urls):
        ad.images.append(models.AdImage(image_url=url, sort_order=index))
    db.add(ad)
    db.flush()
    moderation.record_ad_event(
        db, ad_id=ad.id, action="created", actor_id=current_user.id, meta={"status": ad.status}, now=now
    )
    if promotion_type:
        moderation.record_ad_event(
            db, ad_id=ad.id, action="promoted", actor_id=current_user.id, meta={"promotion_type": promotion_type}, now=now
        )
    db.commit()
    db.refresh(ad)
    log_event(
        "ad_created",
        ad_id=ad.id,
        user_id=current_user.id,
        status=ad.status,
        first_time_poster=first_time_poster,
    )
    return ad


@app.get("/api/me/ads", response_model=List[schemas.AdResponse])
def my_ads(db: Session = Depends(get_db), current_user: models.User = Depends(auth.get_current_user)):
    return (
        db.query(models.Ad)
        .filter(models.Ad.user_id == current_user.id)
        .order_by(models.Ad.created_at.desc())
        .all()
    )


@app.get("/api/ads/{slug_or_id}", response_model=schemas.PublicAdResponse)
def get_ad(
    slug_or_id: str,
    request: Request,
    db: Session = Depends(get_db),
    current_user: Optional[models.User] = Depends(auth.get_optional_user),
):
    ad_id, slug = ad_rules.parse_route_param(slug_or_id)
    ad = None
    if ad_id:
        ad = db.query(models.Ad).filter(models.Ad.id == ad_id).first()
    if ad is None and slug:
        ad = (
            db.query(models.Ad)
            .filter(models.Ad.slug == slug)
            .order_by(models.Ad.created_at.desc())
            .first()
        )
    if ad is None:
        raise HTTPException(status_code=404, detail="Ad not found.")

    is_owner = current_user is not None and current_user.id == ad.user_id
    publicly_visible = ad.status == "approved" and not ad.is_deactivated and not ad.is_archived
    if not publicly_visible and not is_owner and not auth.is_admin_user(db, current_user):
        raise HTTPException(status_code=404, detail="Ad not found.")

    viewer = current_user.id if current_user else (request.client.host if request.client else "anonymous")
    if not is_owner and _should_count_view(ad.id, viewer):
        db.query(models.Ad).filter(models.Ad.id == ad.id).update(
            {models.Ad.views_count: models.Ad.views_count + 1}, synchronize_session=False
        )
        db.commit()
        db.refresh(ad)
    return _serialize_public_ad(ad, _profile_for(db, ad.user_id))


@app.post(
    "/api/ads/{ad_id}/edit-requests",
    response_model=schemas.EditRequestResponse,
    status_code=status.HTTP_201_CREATED,
)
def submit_edit_request(
    ad_id: str,
    payload: schemas.EditRequestCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    ad = _get_ad_or_404(db, ad_id)
    if ad.user_id != current_user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You can only edit your own ads.")
    changes = payload.changes.model_dump(exclude_unset=True, mode="json")
    if not changes:
        raise HTTPException(status_code=400, detail="No changes submitted.")
    pending = (
        db.query(models.AdEditRequest.id)
        .filter(models.AdEditRequest.ad_id == ad.id, models.AdEditRequest.status == "pending")
        .first()
    )
    if pending:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="An edit request is already pending for this ad.")

    old_values = {key: getattr(ad, key) for key in changes}
    request = models.AdEditRequest(
        ad_id=ad.id,
        user_id=current_user.id,
        old_values=old_values,
        new_values=changes,
        created_at=_now(),
    )
    db.add(request)
    db.commit()
    db.refresh(request)
    log_event("edit_request_submitted", edit_request_id=request.id, ad_id=ad.id, user_id=current_user.id)
    return request


@app.post("/api/ads/{ad_id}/favorite", status_code=status.HTTP_201_CREATED)
def favorite_ad(
    ad_id: str,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    _get_ad_or_404(db, ad_id)
    existing = (
        db.query(models.Favorite)
        .filter(models.Favorite.ad_id == ad_id, models.Favorite.user_id == current_user.id)
        .first()
    )
    if existing:
        return {"status": "exists"}
    db.add(models.Favorite(user_id=current_user.id, ad_id=ad_id))
    db.commit()
    return {"status": "added"}


@app.delete("/api/ads/{ad_id}/favorite", status_code=status.HTTP_204_NO_CONTENT)
def unfavorite_ad(
    ad_id: str,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    fav = (
        db.query(models.Favorite)
        .filter(models.Favorite.ad_id == ad_id, models.Favorite.user_id == current_user.id)
        .first()
    )
    if not fav:
        raise HTTPException(status_code=404, detail="Favorite not found.")
    db.delete(fav)
    db.commit()
    return


@app.get("/api/me/favorites", response_model=schemas.FavoriteListResponse)
def list_favorites(db: Session = Depends(get_db), current_user: models.User = Depends(auth.get_current_user)):
    ads = (
        db.query(models.Ad)
        .join(models.Favorite, models.Favorite.ad_id == models.Ad.id)
        .filter(models.Favorite.user_id == current_user.id)
        .order_by(models.Favorite.created_at.desc())
        .all()
    )
    return {"items": [_serialize_public_ad(ad, _profile_for(db, ad.user_id)) for ad in ads]}


def _serialize_report(report: models.Report) -> schemas.ReportResponse:
    ad_summary = None
    if report.ad is not None:
        ad_summary = schemas.ReportAdSummary(
            id=report.ad.id, title=report.ad.title, slug=report.ad.slug, status=report.ad.status
        )
    reporter_profile = report.reporter.profile if report.reporter else None
    return schemas.ReportResponse(
        id=report.id,
        ad_id=report.ad_id,
        ad=ad_summary,
        reporter_id=report.user_id,
        reporter_name=reporter_profile.full_name if reporter_profile else None,
        reason=report.reason,
        is_resolved=bool(report.is_resolved),
        resolved_by=report.resolved_by,
        resolved_at=report.resolved_at,
        created_at=report.created_at,
    )


@app.post("/api/ads/{ad_id}/reports", response_model=schemas.ReportResponse, status_code=status.HTTP_201_CREATED)
def report_ad(
    ad_id: str,
    payload: schemas.ReportCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    _enforce_rate_limit("report_ad", request=request, identifier=current_user.id)
    ad = _get_ad_or_404(db, ad_id)
    reason = payload.reason.strip()
    if not reason:
        raise HTTPException(status_code=400, detail="A reason is required.")
    report = models.Report(ad_id=ad.id, user_id=current_user.id, reason=reason)
    db.add(report)
    db.commit()
    db.refresh(report)
    log_event("ad_reported", report_id=report.id, ad_id=ad.id, user_id=current_user.id)
    return _serialize_report(report)


def _unread_for(db: Session, conversation_id: str, user_id: str) -> int:
    return (
        db.query(func.count(models.Message.id))
        .filter(
            models.Message.conversation_id == conversation_id,
            models.Message.receiver_id == user_id,
            models.Message.is_read.is_(False),
        )
        .scalar()
        or 0
    )


def _serialize_conversation(db: Session, conversation: models.Conversation, user_id: str, with_messages: bool = False):
    last = conversation.messages[-1] if conversation.messages else None
    data = dict(
        id=conversation.id,
        ad_id=conversation.ad_id,
        ad_title=conversation.ad.title if conversation.ad else None,
        buyer_id=conversation.buyer_id,
        seller_id=conversation.seller_id,
        last_message_at=conversation.last_message_at,
        last_message=last.content if last else None,
        unread_count=int(_unread_for(db, conversation.id, user_id)),
    )
    if with_messages:
        return schemas.ConversationDetailResponse(
            **data, messages=[schemas.MessageResponse.model_validate(m) for m in conversation.messages]
        )
    return schemas.ConversationResponse(**data)


def _get_conversation_for(db: Session, conversation_id: str, user_id: str) -> models.Conversation:
    conversation = db.query(models.Conversation).filter(models.Conversation.id == conversation_id).first()
    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found.")
    if user_id not in (conversation.buyer_id, conversation.seller_id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not a participant in this conversation.")
    return conversation


def _append_message(db: Session, conversation: models.Conversation, sender_id: str, content: str) -> models.Message:
    receiver_id = conversation.seller_id if sender_id == conversation.buyer_id else conversation.buyer_id
    now = _now()
    message = models.Message(
        conversation_id=conversation.id,
        sender_id=sender_id,
        receiver_id=receiver_id,
        content=content.strip(),
        created_at=now,
    )
    conversation.messages.append(message)
    conversation.last_message_at = now
    return message


@app.post(
    "/api/ads/{ad_id}/conversations",
    response_model=schemas.ConversationDetailResponse,
    status_code=status.HTTP_201_CREATED,
)
def start_conversation(
    ad_id: str,
    payload: schemas.ConversationStart,
    request: Request,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    _enforce_rate_limit("send_message", request=request, identifier=current_user.id)
    ad = _get_ad_or_404(db, ad_id)
    if ad.user_id == current_user.id:
        raise HTTPException(status_code=400, detail="You cannot message yourself about your own ad.")
    conversation = (
        db.query(models.Conversation)
        .filter(models.Conversation.ad_id == ad.id, models.Conversation.buyer_id == current_user.id)
        .first()
    )
    if conversation is None:
        conversation = models.Conversation(ad_id=ad.id, buyer_id=current_user.id, seller_id=ad.user_id)
        db.add(conversation)
    _append_message(db, conversation, current_user.id, payload.content)
    db.commit()
    db.refresh(conversation)
    log_event("conversation_message_sent", conversation_id=conversation.id, sender_id=current_user.id)
    return _serialize_conversation(db, conversation, current_user.id, with_messages=True)


@app.get("/api/me/conversations", response_model=schemas.ConversationListResponse)
def list_conversations(db: Session = Depends(get_db), current_user: models.User = Depends(auth.get_current_user)):
    conversations = (
        db.query(models.Conversation)
        .filter(
            or_(models.Conversation.buyer_id == current_user.id, models.Conversation.seller_id == current_user.id)
        )
        .order_by(models.Conversation.last_message_at.desc())
        .all()
    )
    return {"items": [_serialize_conversation(db, c, current_user.id) for c in conversations]}


@app.get("/api/conversations/{conversation_id}", response_model=schemas.ConversationDetailResponse)
def get_conversation(
    conversation_id: str,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    conversation = _get_conversation_for(db, conversation_id, current_user.id)
    return _serialize_conversation(db, conversation, current_user.id, with_messages=True)


@app.post(
    "/api/conversations/{conversation_id}/messages",
    response_model=schemas.MessageResponse,
    status_code=status.HTTP_201_CREATED,
)
def send_message(
    conversation_id: str,
    payload: schemas.MessageCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    _enforce_rate_limit("send_message", request=request, identifier=current_user.id)
    conversation = _get_conversation_for(db, conversation_id, current_user.id)
    message = _append_message(db, conversation, current_user.id, payload.content)
    db.commit()
    db.refresh(message)
    log_event("conversation_message_sent", conversation_id=conversation.id, sender_id=current_user.id)
    return message


@app.post("/api/conversations/{conversation_id}/read")
def mark_conversation_read(
    conversation_id: str,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    conversation = _get_conversation_for(db, conversation_id, current_user.id)
    updated = (
        db.query(models.Message)
        .filter(
            models.Message.conversation_id == conversation.id,
            models.Message.receiver_id == current_user.id,
            models.Message.is_read.is_(False),
        )
        .update({models.Message.is_read: True}, synchronize_session=False)
    )
    db.commit()
    return {"updated": int(updated or 0)}


@app.get("/api/me/messages/unread-count", response_model=schemas.UnreadCountResponse)
def unread_message_count(db: Session = Depends(get_db), current_user: models.User = Depends(auth.get_current_user)):
    count = (
        db.query(func.count(models.Message.id))
        .filter(models.Message.receiver_id == current_user.id, models.Message.is_read.is_(False))
        .scalar()
        or 0
    )
    return {"count": int(count)}


# ---------------------------------------------------------------------------
# Admin: dashboard and review queues
# ---------------------------------------------------------------------------


@app.get("/api/admin/stats", response_model=schemas.AdminStatsResponse)
def admin_stats(db: Session = Depends(get_db), session: auth.AuthSession = Depends(auth.require_admin)):
    status_rows = db.query(models.Ad.status, func.count(models.Ad.id)).group_by(models.Ad.status).all()
    by_status = {row[0]: int(row[1] or 0) for row in status_rows}
    return {
        "total_users": int(db.query(func.count(models.User.id)).scalar() or 0),
        "pending_ads": by_status.get("pending", 0),
        "approved_ads": by_status.get("approved", 0),
        "rejected_ads": by_status.get("rejected", 0),
        "unresolved_reports": int(
            db.query(func.count(models.Report.id)).filter(models.Report.is_resolved.is_(False)).scalar() or 0
        ),
        "queue_counts": moderation.queue_counts(db),
    }


@app.get("/api/admin/review/{queue}", response_model=schemas.ReviewQueueResponse)
def review_queue_item(
    queue: str,
    ad_id: Optional[str] = Query(default=None, alias="adId"),
    edit_id: Optional[str] = Query(default=None, alias="editId"),
    q: Optional[str] = None,
    db: Session = Depends(get_db),
    session: auth.AuthSession = Depends(auth.require_permission("review_ads")),
):
    review_queue = moderation.parse_queue(queue)
    lookup_value = edit_id or ad_id or q
    if lookup_value:
        item = moderation.lookup(db, review_queue, lookup_value)
        notice = None if item else "No item matched that ID, slug or URL."
        return _review_response(db, session, review_queue, item, notice)
    item = moderation.next_in_queue(db, review_queue)
    return _review_response(db, session, review_queue, item, None if item else "Queue empty.")


def _ad_for_review(db: Session, queue: ReviewQueue, ad_id: str) -> models.Ad:
    if queue == ReviewQueue.edited:
        raise HTTPException(status_code=400, detail="Edited-queue items are reviewed through their edit request.")
    return _get_ad_or_404(db, ad_id)


@app.post("/api/admin/review/{queue}/ads/{ad_id}/save", response_model=schemas.ReviewQueueResponse)
def review_save_edits(
    queue: str,
    ad_id: str,
    payload: schemas.ReviewApproveRequest,
    db: Session = Depends(get_db),
    session: auth.AuthSession = Depends(auth.require_permission("review_ads")),
):
    review_queue = moderation.parse_queue(queue)
    ad = _ad_for_review(db, review_queue, ad_id)
    moderation.save_review_edits(
        db,
        ad,
        _form_dict(payload.ad_form),
        _form_dict(payload.profile_form),
        actor_id=session.user_id,
        now=_now(),
    )
    db.commit()
    db.refresh(ad)
    log_event("ad_review_saved", ad_id=ad.id, reviewer_id=session.user_id)
    return _review_response(db, session, review_queue, moderation.load_item(db, review_queue, ad))


@app.post("/api/admin/review/{queue}/ads/{ad_id}/approve", response_model=schemas.ReviewQueueResponse)
def review_approve(
    queue: str,
    ad_id: str,
    payload: schemas.ReviewApproveRequest,
    db: Session = Depends(get_db),
    session: auth.AuthSession = Depends(auth.require_permission("review_ads")),
):
    review_queue = moderation.parse_queue(queue)
    ad = _ad_for_review(db, review_queue, ad_id)
    moderation.approve_ad(
        db,
        ad,
        reviewer_id=session.user_id,
        ad_form=_form_dict(payload.ad_form),
        profile_form=_form_dict(payload.profile_form),
    )
    db.commit()
    return _advance(db, session, review_queue)


@app.post("/api/admin/review/{queue}/ads/{ad_id}/reject", response_model=schemas.ReviewQueueResponse)
def review_reject(
    queue: str,
    ad_id: str,
    payload: schemas.ReviewRejectRequest,
    db: Session = Depends(get_db),
    session: auth.AuthSession = Depends(auth.require_permission("review_ads")),
):
    review_queue = moderation.parse_queue(queue)
    ad = _ad_for_review(db, review_queue, ad_id)
    notice = moderation.reject_ad(
        db,
        ad,
        reviewer_id=session.user_id,
        reasons=payload.reasons,
        message=payload.message,
        duplicate_ref=payload.duplicate_of,
        ad_form=_form_dict(payload.ad_form),
        profile_form=_form_dict(payload.profile_form),
    )
    db.commit()
    return _advance(db, session, review_queue, notice)


def _get_edit_request_or_404(db: Session, edit_id: str) -> models.AdEditRequest:
    request = db.query(models.AdEditRequest).filter(models.AdEditRequest.id == edit_id).first()
    if not request:
        raise HTTPException(status_code=404, detail="Edit request not found.")
    return request


@app.post("/api/admin/edit-requests/{edit_id}/approve", response_model=schemas.ReviewQueueResponse)
def approve_edit_request(
    edit_id: str,
    payload: schemas.ReviewApproveRequest,
    db: Session = Depends(get_db),
    session: auth.AuthSession = Depends(auth.require_permission("review_ads")),
):
    request = _get_edit_request_or_404(db, edit_id)
    moderation.approve_edit_request(
        db,
        request,
        reviewer_id=session.user_id,
        ad_form=_form_dict(payload.ad_form),
        profile_form=_form_dict(payload.profile_form),
    )
    db.commit()
    return _advance(db, session, ReviewQueue.edited)


@app.post("/api/admin/edit-requests/{edit_id}/reject", response_model=schemas.ReviewQueueResponse)
def reject_edit_request(
    edit_id: str,
    payload: schemas.EditRequestRejectRequest,
    db: Session = Depends(get_db),
    session: auth.AuthSession = Depends(auth.require_permission("review_ads")),
):
    request = _get_edit_request_or_404(db, edit_id)
    moderation.reject_edit_request(db, request, reviewer_id=session.user_id, message=payload.message)
    db.commit()
    return _advance(db, session, ReviewQueue.edited)


# ---------------------------------------------------------------------------
# Admin: ad search and bulk moderation
# ---------------------------------------------------------------------------

_EVENT_ACTION_FILTERS = {
    "created": lambda column: column == "created",
    "approved": lambda column: column.ilike("%to_approved"),
    "rejected": lambda column: column.ilike("%to_rejected"),
    "promoted": lambda column: column == "promoted",
    "deactivated": lambda column: column == "deactivated",
}


def _active_filter(value: Optional[str]) -> Optional[str]:
    value = (value or "").strip()
    return None if not value or value == "all" else value


def _resolve_search_user_ids(db: Session, kind: str, q: str) -> Optional[list[str]]:
    if kind == "email":
        rows = db.query(models.Profile.user_id).filter(models.Profile.email.ilike(f"%{q}%")).limit(250).all()
    elif kind == "phone":
        clauses = []
        for pattern in ad_rules.phone_patterns(q):
            clauses.append(models.Profile.phone_number.ilike(pattern))
            clauses.append(models.Profile.phone_number_secondary.ilike(pattern))
        rows = db.query(models.Profile.user_id).filter(or_(*clauses)).limit(250).all()
    else:
        return None
    return ad_rules.unique(row[0] for row in rows if row[0])


def _search_ads(
    db: Session,
    *,
    q: Optional[str] = None,
    category: Optional[str] = None,
    location: Optional[str] = None,
    rejection_reason: Optional[str] = None,
    admin_user_id: Optional[str] = None,
    event_type: Optional[str] = None,
    event_from: Optional[date] = None,
    event_to: Optional[date] = None,
    states: Optional[list[str]] = None,
    ad_types: Optional[list[str]] = None,
    product_types: Optional[list[str]] = None,
    features: Optional[list[str]] = None,
) -> list[models.Ad]:
    q = (q or "").strip()
    event_type = _active_filter(event_type)
    admin_user_id = _active_filter(admin_user_id)
    states = [s for s in (states or []) if s]

    query = db.query(models.Ad)

    if event_type or admin_user_id or event_from or event_to:
        if event_type and event_type not in catalog.AD_EVENT_TYPE_VALUES:
            raise HTTPException(status_code=400, detail="Unknown event type.")
        log_query = db.query(models.AdAuditLog.ad_id)
        if event_from:
            log_query = log_query.filter(models.AdAuditLog.created_at >= _day_start(event_from))
        if event_to:
            log_query = log_query.filter(models.AdAuditLog.created_at <= _day_end(event_to))
        if admin_user_id:
            log_query = log_query.filter(models.AdAuditLog.actor_id == admin_user_id)
        if event_type:
            log_query = log_query.filter(_EVENT_ACTION_FILTERS[event_type](models.AdAuditLog.action))
        rows = log_query.order_by(models.AdAuditLog.created_at.desc()).limit(settings.audit_log_scan_limit).all()
        event_ad_ids = ad_rules.unique(row[0] for row in rows if row[0])
        if not event_ad_ids:
            return []
        query = query.filter(models.Ad.id.in_(event_ad_ids))

    kind = ad_rules.classify_search_query(q)
    if kind == "uuid":
        query = query.filter(models.Ad.id == ad_rules.extract_uuid(q))
    elif kind in ("email", "phone"):
        user_ids = _resolve_search_user_ids(db, kind, q)
        if not user_ids:
            return []
        query = query.filter(models.Ad.user_id.in_(user_ids))
    elif kind == "slug":
        escaped = q.replace(",", " ").strip()
        segment = ad_rules.last_path_segment(q)
        query = query.filter(or_(models.Ad.slug.ilike(f"%{segment}%"), models.Ad.title.ilike(f"%{escaped}%")))

    category = _active_filter(category)
    if category:
        if category.startswith("cat:"):
            query = query.filter(models.Ad.category_id == category[len("cat:"):])
        elif category.startswith("sub:"):
            query = query.filter(models.Ad.subcategory_id == category[len("sub:"):])

    location = _active_filter(location)
    if location:
        needle = f"%{location.replace(',', ' ')}%"
        query = query.filter(
            or_(models.Ad.division.ilike(needle), models.Ad.district.ilike(needle), models.Ad.area.ilike(needle))
        )

    rejection_reason = _active_filter(rejection_reason)
    if rejection_reason:
        query = query.filter(models.Ad.rejection_reason == rejection_reason)

    if states:
        statuses = ad_rules.statuses_for_states(states)
        if statuses:
            query = query.filter(models.Ad.status.in_(statuses))

    ads = (
        query.order_by(models.Ad.created_at.desc(), models.Ad.id.desc())
        .limit(settings.search_result_limit)
        .all()
    )

    now = _now()
    if states:
        ads = [ad for ad in ads if ad_rules.derive_ad_state(ad, now) in states]
    if ad_types:
        ads = [ad for ad in ads if ad.ad_type and ad.ad_type in ad_types]
    if product_types:
        wanted = set(product_types)
        ads = [ad for ad in ads if wanted.intersection(ad_rules.derive_product_types(ad))]
    if features:
        wanted = set(features)
        ads = [ad for ad in ads if wanted.intersection(ad_rules.derive_features(ad))]
    return ads


def _search_params(
    q: Optional[str] = None,
    category: Optional[str] = None,
    location: Optional[str] = None,
    rejection_reason: Optional[str] = None,
    admin_user_id: Optional[str] = None,
    event_type: Optional[str] = None,
    event_from: Optional[date] = None,
    event_to: Optional[date] = None,
    states: List[str] = Query(default=[]),
    ad_types: List[str] = Query(default=[]),
    product_types: List[str] = Query(default=[]),
    features: List[str] = Query(default=[]),
) -> dict:
    return {
        "q": q,
        "category": category,
        "location": location,
        "rejection_reason": rejection_reason,
        "admin_user_id": admin_user_id,
        "event_type": event_type,
        "event_from": event_from,
        "event_to": event_to,
        "states": states,
        "ad_types": ad_types,
        "product_types": product_types,
        "features": features,
    }


def _owner_emails(db: Session, ads: list[models.Ad]) -> dict[str, Optional[str]]:
    user_ids = {ad.user_id for ad in ads}
    if not user_ids:
        return {}
    rows = db.query(models.Profile.user_id, models.Profile.email).filter(models.Profile.user_id.in_(user_ids)).all()
    return {row[0]: row[1] for row in rows}


@app.get("/api/admin/ads/search", response_model=schemas.AdSearchResponse)
def admin_search_ads(
    params: dict = Depends(_search_params),
    db: Session = Depends(get_db),
    session: auth.AuthSession = Depends(auth.require_permission("search_ads")),
):
    ads = _search_ads(db, **params)
    emails = _owner_emails(db, ads)
    now = _now()
    items = [
        schemas.AdSearchResultItem(
            **schemas.AdResponse.model_validate(ad).model_dump(),
            state=ad_rules.derive_ad_state(ad, now),
            derived_product_types=ad_rules.derive_product_types(ad),
            public_path=ad_rules.build_public_path(ad.id, ad.slug),
            owner_email=emails.get(ad.user_id),
        )
        for ad in ads
    ]
    return {"items": items, "total": len(items)}


@app.get("/api/admin/ads/export.csv")
def admin_export_ads(
    params: dict = Depends(_search_params),
    db: Session = Depends(get_db),
    session: auth.AuthSession = Depends(auth.require_permission("search_ads")),
):
    ads = _search_ads(db, **params)
    emails = _owner_emails(db, ads)
    now = _now()
    header = [
        "id",
        "title",
        "slug",
        "status",
        "state",
        "ad_type",
        "price",
        "price_type",
        "division",
        "district",
        "area",
        "owner_email",
        "rejection_reason",
        "product_types",
        "features",
        "created_at",
        "last_reviewed_at",
        "public_url",
    ]
    rows = [
        [
            ad.id,
            ad.title,
            ad.slug,
            ad.status,
            ad_rules.derive_ad_state(ad, now),
            ad.ad_type,
            ad.price,
            ad.price_type,
            ad.division,
            ad.district,
            ad.area,
            emails.get(ad.user_id),
            ad.rejection_reason,
            "|".join(ad_rules.derive_product_types(ad)),
            "|".join(ad_rules.derive_features(ad)),
            _normalize_dt(ad.created_at).isoformat() if ad.created_at else None,
            _normalize_dt(ad.last_reviewed_at).isoformat() if ad.last_reviewed_at else None,
            f"{settings.public_base_url.rstrip('/')}{ad_rules.build_public_path(ad.id, ad.slug)}",
        ]
        for ad in ads
    ]
    log_event("ads_exported", actor_id=session.user_id, rows=len(rows))
    return _csv_response(f"ads-export-{now.date().isoformat()}.csv", header, rows)


@app.post("/api/admin/ads/bulk", response_model=schemas.BulkActionResponse)
def admin_bulk_ads(
    payload: schemas.BulkAdActionRequest,
    db: Session = Depends(get_db),
    session: auth.AuthSession = Depends(auth.require_permission("review_ads")),
):
    ad_ids = ad_rules.unique(i for i in payload.ad_ids if i)
    if not ad_ids:
        raise HTTPException(status_code=400, detail="Select at least one ad.")
    now = _now()
    reviewer = {
        models.Ad.last_reviewed_by: session.user_id,
        models.Ad.last_reviewed_at: now,
        models.Ad.review_source: "admin",
    }

    if payload.action == "reject":
        reasons = ad_rules.unique(r for r in payload.reasons if r)
        if not reasons:
            raise HTTPException(status_code=400, detail="Select at least one rejection reason.")
        if any(r not in catalog.REJECTION_REASON_VALUES for r in reasons):
            raise HTTPException(status_code=400, detail="Unknown rejection reason.")
        patch = {
            models.Ad.status: "rejected",
            models.Ad.needs_verification: False,
            models.Ad.rejection_reason: reasons[0],
            models.Ad.rejection_reasons: reasons,
            models.Ad.rejection_message: ad_rules.clean_text(payload.message),
            **reviewer,
        }
    elif payload.action == "approve":
        patch = {
            models.Ad.status: "approved",
            models.Ad.needs_verification: False,
            models.Ad.is_deactivated: False,
            models.Ad.is_archived: False,
            models.Ad.rejection_reason: None,
            models.Ad.rejection_reasons: [],
            models.Ad.rejection_message: None,
            models.Ad.duplicate_of_ad_id: None,
            **reviewer,
        }
    elif payload.action == "deactivate":
        patch = {models.Ad.is_deactivated: True, **reviewer}
    else:
        patch = {models.Ad.is_archived: True, **reviewer}

    previous = dict(db.query(models.Ad.id, models.Ad.status).filter(models.Ad.id.in_(ad_ids)).all())
    updated = (
        db.query(models.Ad).filter(models.Ad.id.in_(ad_ids)).update(patch, synchronize_session=False)
    )
    new_status = patch.get(models.Ad.status)
    for ad_id, old_status in previous.items():
        if new_status and old_status != new_status:
            action = f"{old_status}_to_{new_status}"
        elif payload.action == "deactivate":
            action = "deactivated"
        elif payload.action == "archive":
            action = "archived"
        else:
            continue
        moderation.record_ad_event(
            db, ad_id=ad_id, action=action, actor_id=session.user_id, meta={"bulk": True}, now=now
        )
    db.commit()
    log_event("bulk_ads_updated", action=payload.action, actor_id=session.user_id, count=int(updated or 0))
    return {"action": payload.action, "updated": int(updated or 0)}


# ---------------------------------------------------------------------------
# Admin: site users
# ---------------------------------------------------------------------------

_USER_STATUS_FILTERS = {
    catalog.USER_STATUS_VERIFIED: lambda: models.Profile.verification_status == "verified",
    catalog.USER_STATUS_UNVERIFIED: lambda: models.Profile.verification_status == "verification_unsuccessful",
    catalog.USER_STATUS_ENQUEUED_VERIFICATION: lambda: models.Profile.verification_status == "pending_verification",
    catalog.USER_STATUS_BLACKLISTED: lambda: models.Profile.is_blocked.is_(True),
    catalog.USER_STATUS_INACTIVE: lambda: models.Profile.is_deleted.is_(True),
}


def _is_phone_user_query(q: str) -> bool:
    return bool(q) and all(ch.isdigit() or ch in "+ -" for ch in q) and len(ad_rules.digits_only(q)) >= 7


def _search_users(
    db: Session,
    *,
    q: Optional[str],
    statuses: list[str],
    sort: Optional[str],
    phone_verified: Optional[bool],
) -> list[models.Profile]:
    q = (q or "").strip()
    query = db.query(models.Profile)
    if q:
        needle = f"%{q}%"
        if "@" in q:
            query = query.filter(models.Profile.email.ilike(needle))
        elif _is_phone_user_query(q):
            query = query.filter(models.Profile.phone_number.ilike(needle))
            if phone_verified is not None:
                query = query.filter(models.Profile.phone_verified.is_(phone_verified))
        else:
            query = query.filter(
                or_(
                    models.Profile.full_name.ilike(needle),
                    models.Profile.email.ilike(needle),
                    models.Profile.phone_number.ilike(needle),
                )
            )

    clauses = [_USER_STATUS_FILTERS[s]() for s in statuses if s in _USER_STATUS_FILTERS]
    if clauses:
        query = query.filter(or_(*clauses))

    if sort == catalog.USER_SORT_STATUS_CHANGE:
        query = query.order_by(models.Profile.status_changed_at.asc(), models.Profile.user_id.asc())
    else:
        query = query.order_by(models.Profile.email.asc(), models.Profile.user_id.asc())
    return query.limit(settings.user_search_limit).all()


def _user_status_label(profile: models.Profile) -> str:
    if profile.is_deleted:
        return "Deleted"
    if profile.is_blocked:
        return "Blacklisted"
    labels = {
        "verified": "Verified",
        "verification_unsuccessful": "Verification Unsuccessful",
        "pending_verification": "Pending Verification",
    }
    return labels.get(profile.verification_status or "", "Active")


@app.get("/api/admin/users", response_model=schemas.AdminUserListResponse)
def admin_list_users(
    q: Optional[str] = None,
    statuses: List[str] = Query(default=[]),
    sort: Optional[str] = None,
    phone_verified: Optional[bool] = None,
    db: Session = Depends(get_db),
    session: auth.AuthSession = Depends(auth.require_permission("manage_users")),
):
    profiles = _search_users(db, q=q, statuses=statuses, sort=sort, phone_verified=phone_verified)
    return {"items": profiles, "total": len(profiles)}


@app.get("/api/admin/users/export.csv")
def admin_export_users(
    q: Optional[str] = None,
    statuses: List[str] = Query(default=[]),
    sort: Optional[str] = None,
    phone_verified: Optional[bool] = None,
    db: Session = Depends(get_db),
    session: auth.AuthSession = Depends(auth.require_permission("manage_users")),
):
    profiles = _search_users(db, q=q, statuses=statuses, sort=sort, phone_verified=phone_verified)
    header = [
        "user_id",
        "full_name",
        "email",
        "phone_number",
        "phone_verified",
        "verification_status",
        "is_blocked",
        "is_deleted",
        "status_changed_at",
        "created_at",
        "status_label",
    ]
    rows = [
        [
            p.user_id,
            p.full_name,
            p.email,
            p.phone_number,
            bool(p.phone_verified),
            p.verification_status,
            bool(p.is_blocked),
            bool(p.is_deleted),
            _normalize_dt(p.status_changed_at).isoformat() if p.status_changed_at else None,
            _normalize_dt(p.created_at).isoformat() if p.created_at else None,
            _user_status_label(p),
        ]
        for p in profiles
    ]
    return _csv_response(f"users-export-{_now().date().isoformat()}.csv", header, rows)


@app.post("/api/admin/users/bulk", response_model=schemas.BulkActionResponse)
def admin_bulk_users(
    payload: schemas.BulkUserActionRequest,
    db: Session = Depends(get_db),
    session: auth.AuthSession = Depends(auth.require_permission("manage_users")),
):
    user_ids = ad_rules.unique(i for i in payload.user_ids if i)
    if not user_ids:
        raise HTTPException(status_code=400, detail="Select at least one user.")
    now = _now()
    patches = {
        "blacklist": {models.Profile.is_blocked: True},
        "unblacklist": {models.Profile.is_blocked: False},
        "verify_phone": {models.Profile.phone_verified: True, models.Profile.phone_verified_at: now},
        "unverify_phone": {models.Profile.phone_verified: False, models.Profile.phone_verified_at: None},
        "set_verification_status": {models.Profile.verification_status: payload.verification_status},
        "delete": {models.Profile.is_deleted: True},
        "restore": {models.Profile.is_deleted: False},
    }
    patch = {**patches[payload.action], models.Profile.status_changed_at: now, models.Profile.updated_at: now}
    updated = (
        db.query(models.Profile)
        .filter(models.Profile.user_id.in_(user_ids))
        .update(patch, synchronize_session=False)
    )
    db.commit()
    log_event("users_bulk_updated", action=payload.action, actor_id=session.user_id, count=int(updated or 0))
    return {"action": payload.action, "updated": int(updated or 0)}


def _get_profile_or_404(db: Session, user_id: str) -> models.Profile:
    profile = _profile_for(db, user_id)
    if not profile:
        raise HTTPException(status_code=404, detail="User not found.")
    return profile


@app.get("/api/admin/users/{user_id}", response_model=schemas.AdminUserDetailResponse)
def admin_user_detail(
    user_id: str,
    db: Session = Depends(get_db),
    session: auth.AuthSession = Depends(auth.require_permission("manage_users")),
):
    profile = _get_profile_or_404(db, user_id)
    roles = (
        db.query(models.RoleAssignment)
        .filter(models.RoleAssignment.user_id == user_id, models.RoleAssignment.is_active.is_(True))
        .all()
    )
    permissions = db.query(models.UserPermission.permission).filter(models.UserPermission.user_id == user_id).all()
    ads = db.query(models.Ad).filter(models.Ad.user_id == user_id).order_by(models.Ad.created_at.desc()).all()
    ad_ids = [ad.id for ad in ads]
    events = []
    if ad_ids:
        events = (
            db.query(models.AdAuditLog)
            .filter(models.AdAuditLog.ad_id.in_(ad_ids))
            .order_by(models.AdAuditLog.created_at.desc())
            .limit(50)
            .all()
        )
    return schemas.AdminUserDetailResponse(
        profile=schemas.ProfileResponse.model_validate(profile),
        roles=sorted(r.role.value for r in roles),
        permissions=sorted(row[0] for row in permissions),
        ads=[schemas.AdResponse.model_validate(ad) for ad in ads],
        recent_events=[schemas.AuditEventResponse.model_validate(e) for e in events],
    )


@app.patch("/api/admin/users/{user_id}", response_model=schemas.ProfileResponse)
def admin_update_user(
    user_id: str,
    payload: schemas.AdminProfileUpdate,
    db: Session = Depends(get_db),
    session: auth.AuthSession = Depends(auth.require_permission("manage_users")),
):
    profile = _get_profile_or_404(db, user_id)
    changes = payload.model_dump(exclude_unset=True)
    now = _now()
    for key in ("full_name", "phone_number", "phone_number_secondary"):
        if key in changes:
            setattr(profile, key, ad_rules.clean_text(changes[key]))
    if "phone_verified" in changes and changes["phone_verified"] is not None:
        profile.phone_verified = changes["phone_verified"]
        profile.phone_verified_at = now if changes["phone_verified"] else None
    status_changed = False
    for key in ("verification_status", "is_blocked", "is_deleted"):
        if key in changes and (changes[key] is not None or key == "verification_status"):
            setattr(profile, key, changes[key])
            status_changed = True
    if status_changed:
        profile.status_changed_at = now
    db.commit()
    db.refresh(profile)
    log_event("user_profile_updated", user_id=user_id, actor_id=session.user_id, fields=sorted(changes))
    return profile


# ---------------------------------------------------------------------------
# Admin: admin accounts and permissions
# ---------------------------------------------------------------------------


def _validate_permissions(permissions: list[str]) -> list[str]:
    cleaned = ad_rules.unique(p.strip() for p in permissions if p and p.strip())
    unknown = [p for p in cleaned if p not in catalog.APP_PERMISSION_VALUES]
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown permission: {unknown[0]}")
    return cleaned


def _replace_permissions(db: Session, user_id: str, permissions: list[str], granted_by: str) -> None:
    db.query(models.UserPermission).filter(models.UserPermission.user_id == user_id).delete(synchronize_session=False)
    for permission in permissions:
        db.add(models.UserPermission(user_id=user_id, permission=permission, granted_by=granted_by))


def _serialize_admin_account(db: Session, role: models.RoleAssignment) -> schemas.AdminAccountResponse:
    user = role.user
    permissions = db.query(models.UserPermission.permission).filter(models.UserPermission.user_id == user.id).all()
    return schemas.AdminAccountResponse(
        user_id=user.id,
        email=user.email,
        full_name=user.profile.full_name if user.profile else None,
        is_active=bool(role.is_active),
        permissions=sorted(row[0] for row in permissions),
    )


def _get_admin_role_or_404(db: Session, user_id: str) -> models.RoleAssignment:
    role = (
        db.query(models.RoleAssignment)
        .filter(models.RoleAssignment.user_id == user_id, models.RoleAssignment.role == models.AppRole.admin)
        .first()
    )
    if not role:
        raise HTTPException(status_code=404, detail="Admin not found.")
    return role


@app.get("/api/admin/admins", response_model=schemas.AdminAccountListResponse)
def list_admins(
    db: Session = Depends(get_db),
    session: auth.AuthSession = Depends(auth.require_permission("manage_admins")),
):
    roles = (
        db.query(models.RoleAssignment)
        .filter(models.RoleAssignment.role == models.AppRole.admin)
        .order_by(models.RoleAssignment.created_at.asc())
        .all()
    )
    return {"items": [_serialize_admin_account(db, role) for role in roles]}


@app.post("/api/admin/admins", response_model=schemas.AdminAccountResponse, status_code=status.HTTP_201_CREATED)
def grant_admin(
    payload: schemas.AdminGrantRequest,
    db: Session = Depends(get_db),
    session: auth.AuthSession = Depends(auth.require_permission("manage_admins")),
):
    permissions = _validate_permissions(payload.permissions)
    user = db.query(models.User).filter(func.lower(models.User.email) == payload.email.lower()).first()
    if not user:
        raise HTTPException(status_code=404, detail="No user with that email.")
    role = (
        db.query(models.RoleAssignment)
        .filter(models.RoleAssignment.user_id == user.id, models.RoleAssignment.role == models.AppRole.admin)
        .first()
    )
    if role is None:
        role = models.RoleAssignment(user_id=user.id, role=models.AppRole.admin, is_active=True)
        db.add(role)
    role.is_active = True
    _replace_permissions(db, user.id, permissions, session.user_id)
    db.commit()
    db.refresh(role)
    log_event("admin_granted", user_id=user.id, actor_id=session.user_id, permissions=permissions)
    return _serialize_admin_account(db, role)


@app.put("/api/admin/admins/{user_id}/permissions", response_model=schemas.AdminAccountResponse)
def update_admin_permissions(
    user_id: str,
    payload: schemas.AdminPermissionsUpdate,
    db: Session = Depends(get_db),
    session: auth.AuthSession = Depends(auth.require_permission("manage_admins")),
):
    role = _get_admin_role_or_404(db, user_id)
    permissions = _validate_permissions(payload.permissions)
    _replace_permissions(db, user_id, permissions, session.user_id)
    db.commit()
    log_event("admin_permissions_updated", user_id=user_id, actor_id=session.user_id, permissions=permissions)
    return _serialize_admin_account(db, role)


@app.patch("/api/admin/admins/{user_id}", response_model=schemas.AdminAccountResponse)
def set_admin_active(
    user_id: str,
    payload: schemas.AdminActiveUpdate,
    db: Session = Depends(get_db),
    session: auth.AuthSession = Depends(auth.require_permission("manage_admins")),
):
    role = _get_admin_role_or_404(db, user_id)
    if user_id == session.user_id and not payload.is_active:
        raise HTTPException(status_code=400, detail="You cannot deactivate your own admin access.")
    role.is_active = payload.is_active
    db.commit()
    db.refresh(role)
    log_event("admin_active_changed", user_id=user_id, actor_id=session.user_id, is_active=payload.is_active)
    return _serialize_admin_account(db, role)


# ---------------------------------------------------------------------------
# Admin: email audit
# ---------------------------------------------------------------------------


def _serialize_email_item(item: models.EmailItem) -> schemas.EmailItemResponse:
    return schemas.EmailItemResponse(
        id=item.id,
        recipient_email=item.recipient_email,
        recipient_phone=item.recipient_phone,
        subject=item.subject,
        template=item.template,
        body_preview=item.body_preview,
        current_state=item.current_state,
        created_at=item.created_at,
        events=[
            schemas.EmailEventResponse(
                id=event.id,
                event_type=event.event_type,
                actor_id=event.actor_id,
                metadata=event.meta,
                created_at=event.created_at,
            )
            for event in item.events
        ],
    )


def _get_email_item_or_404(db: Session, email_id: str) -> models.EmailItem:
    item = db.query(models.EmailItem).filter(models.EmailItem.id == email_id).first()
    if not item:
        raise HTTPException(status_code=404, detail="Email item not found.")
    return item


def _add_email_event(db: Session, item: models.EmailItem, event_type: str, actor_id: Optional[str], meta=None):
    item.events.append(models.EmailEvent(event_type=event_type, actor_id=actor_id, meta=meta, created_at=_now()))


@app.get("/api/admin/emails", response_model=schemas.EmailItemListResponse)
def search_emails(
    q: Optional[str] = None,
    states: List[str] = Query(default=[]),
    event_type: Optional[str] = None,
    admin_user_id: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    db: Session = Depends(get_db),
    session: auth.AuthSession = Depends(auth.require_permission("search_emails")),
):
    query = db.query(models.EmailItem)
    event_type = _active_filter(event_type)
    admin_user_id = _active_filter(admin_user_id)

    if event_type or admin_user_id or date_from or date_to:
        events = db.query(models.EmailEvent.email_id)
        if event_type:
            events = events.filter(models.EmailEvent.event_type == event_type)
        if admin_user_id:
            events = events.filter(models.EmailEvent.actor_id == admin_user_id)
        if date_from:
            events = events.filter(models.EmailEvent.created_at >= _day_start(date_from))
        if date_to:
            events = events.filter(models.EmailEvent.created_at <= _day_end(date_to))
        email_ids = ad_rules.unique(row[0] for row in events.limit(settings.email_event_scan_limit).all())
        if not email_ids:
            return {"items": [], "total": 0}
        query = query.filter(models.EmailItem.id.in_(email_ids))

    # All three states selected means no filter.
    selected = [s for s in ad_rules.unique(states) if s in {e.value for e in models.EmailState}]
    if 0 < len(selected) < len(models.EmailState):
        query = query.filter(models.EmailItem.current_state.in_(selected))

    q = (q or "").strip()
    if q:
        needle = f"%{q}%"
        query = query.filter(
            or_(models.EmailItem.recipient_email.ilike(needle), models.EmailItem.recipient_phone.ilike(needle))
        )

    items = (
        query.order_by(models.EmailItem.created_at.desc(), models.EmailItem.id.desc())
        .limit(settings.email_search_limit)
        .all()
    )
    return {"items": [_serialize_email_item(item) for item in items], "total": len(items)}


@app.post("/api/admin/emails", response_model=schemas.EmailItemResponse, status_code=status.HTTP_201_CREATED)
def log_email_item(
    payload: schemas.EmailItemCreate,
    db: Session = Depends(get_db),
    session: auth.AuthSession = Depends(auth.require_permission("search_emails")),
):
    if not payload.recipient_email and not payload.recipient_phone:
        raise HTTPException(status_code=400, detail="A recipient email or phone is required.")
    if not payload.subject:
        raise HTTPException(status_code=400, detail="A subject is required.")
    item = models.EmailItem(
        recipient_email=str(payload.recipient_email).lower() if payload.recipient_email else None,
        recipient_phone=payload.recipient_phone,
        subject=payload.subject,
        template=payload.template,
        body_preview=payload.body_preview,
        current_state=models.EmailState.enqueued.value,
        created_at=_now(),
    )
    db.add(item)
    _add_email_event(db, item, models.EmailEventType.created.value, session.user_id, {"source": "admin_ui"})
    db.commit()
    db.refresh(item)
    log_event("email_item_logged", email_id=item.id, actor_id=session.user_id)
    return _serialize_email_item(item)


@app.get("/api/admin/emails/{email_id}", response_model=schemas.EmailItemResponse)
def get_email_item(
    email_id: str,
    db: Session = Depends(get_db),
    session: auth.AuthSession = Depends(auth.require_permission("search_emails")),
):
    return _serialize_email_item(_get_email_item_or_404(db, email_id))


@app.post("/api/admin/emails/{email_id}/approve", response_model=schemas.EmailItemResponse)
def approve_email_item(
    email_id: str,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    session: auth.AuthSession = Depends(auth.require_permission("search_emails")),
):
    item = _get_email_item_or_404(db, email_id)
    item.current_state = models.EmailState.approved.value
    _add_email_event(db, item, models.EmailEventType.approved.value, session.user_id)
    db.commit()
    db.refresh(item)
    schedule_email_item(background_tasks, item.id)
    log_event("email_item_approved", email_id=item.id, actor_id=session.user_id)
    return _serialize_email_item(item)


@app.post("/api/admin/emails/{email_id}/reject", response_model=schemas.EmailItemResponse)
def reject_email_item(
    email_id: str,
    payload: schemas.EmailActionRequest,
    db: Session = Depends(get_db),
    session: auth.AuthSession = Depends(auth.require_permission("search_emails")),
):
    item = _get_email_item_or_404(db, email_id)
    note = ad_rules.clean_text(payload.note)
    item.current_state = models.EmailState.rejected.value
    _add_email_event(db, item, models.EmailEventType.rejected.value, session.user_id, {"note": note} if note else None)
    db.commit()
    db.refresh(item)
    log_event("email_item_rejected", email_id=item.id, actor_id=session.user_id)
    return _serialize_email_item(item)


@app.post("/api/admin/emails/{email_id}/sent", response_model=schemas.EmailItemResponse)
def mark_email_item_sent(
    email_id: str,
    db: Session = Depends(get_db),
    session: auth.AuthSession = Depends(auth.require_permission("search_emails")),
):
    item = _get_email_item_or_404(db, email_id)
    _add_email_event(db, item, models.EmailEventType.sent.value, session.user_id)
    db.commit()
    db.refresh(item)
    log_event("email_item_marked_sent", email_id=item.id, actor_id=session.user_id)
    return _serialize_email_item(item)


# ---------------------------------------------------------------------------
# Admin: reports and moderation settings
# ---------------------------------------------------------------------------


def _get_report_or_404(db: Session, report_id: str) -> models.Report:
    report = db.query(models.Report).filter(models.Report.id == report_id).first()
    if not report:
        raise HTTPException(status_code=404, detail="Report not found.")
    return report


@app.get("/api/admin/reports", response_model=schemas.ReportListResponse)
def list_reports(
    resolved: bool = False,
    db: Session = Depends(get_db),
    session: auth.AuthSession = Depends(auth.require_permission("manage_reports")),
):
    reports = (
        db.query(models.Report)
        .filter(models.Report.is_resolved.is_(resolved))
        .order_by(models.Report.created_at.desc())
        .all()
    )
    return {"items": [_serialize_report(report) for report in reports]}


def _resolve_report(report: models.Report, actor_id: str) -> None:
    report.is_resolved = True
    report.resolved_by = actor_id
    report.resolved_at = _now()


@app.post("/api/admin/reports/{report_id}/resolve", response_model=schemas.ReportResponse)
def resolve_report(
    report_id: str,
    db: Session = Depends(get_db),
    session: auth.AuthSession = Depends(auth.require_permission("manage_reports")),
):
    report = _get_report_or_404(db, report_id)
    _resolve_report(report, session.user_id)
    db.commit()
    db.refresh(report)
    log_event("report_resolved", report_id=report.id, actor_id=session.user_id)
    return _serialize_report(report)


@app.post("/api/admin/reports/{report_id}/delete-ad", response_model=schemas.ReportResponse)
def delete_reported_ad(
    report_id: str,
    db: Session = Depends(get_db),
    session: auth.AuthSession = Depends(auth.require_permission("manage_reports")),
):
    report = _get_report_or_404(db, report_id)
    ad = report.ad
    if ad is not None:
        ad_id = ad.id
        db.delete(ad)
        moderation.record_ad_event(db, ad_id=ad_id, action="deleted", actor_id=session.user_id, meta={"report_id": report.id})
        log_event("reported_ad_deleted", ad_id=ad_id, report_id=report.id, actor_id=session.user_id)
    _resolve_report(report, session.user_id)
    db.commit()
    db.refresh(report)
    return _serialize_report(report)


@app.get("/api/admin/moderation-settings", response_model=schemas.ModerationSettingsResponse)
def get_moderation_settings(
    db: Session = Depends(get_db),
    session: auth.AuthSession = Depends(auth.require_permission("manage_moderation_settings")),
):
    return _get_moderation_settings(db)


@app.put("/api/admin/moderation-settings", response_model=schemas.ModerationSettingsResponse)
def update_moderation_settings(
    payload: schemas.ModerationSettingsUpdate,
    db: Session = Depends(get_db),
    session: auth.AuthSession = Depends(auth.require_permission("manage_moderation_settings")),
):
    row = _get_moderation_settings(db)
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    for key, value in changes.items():
        setattr(row, key, value)
    db.commit()
    db.refresh(row)
    log_event("moderation_settings_updated", actor_id=session.user_id, fields=sorted(changes))
    return row
