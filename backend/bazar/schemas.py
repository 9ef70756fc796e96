from datetime import datetime
from typing import Any, Dict, List, Optional, Literal
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


PriceType = Literal["fixed", "negotiable", "free"]
AdType = Literal["for_rent", "for_sale", "to_buy", "to_rent"]
SellerType = Literal["private", "business"]
VerificationStatus = Literal["verified", "verification_unsuccessful", "pending_verification"]
ReviewQueueName = Literal["general", "edited", "verification", "member"]


def _blank_to_none(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value


class UserCreate(BaseModel):
    email: EmailStr
    password: str
    full_name: Optional[str] = None
    phone_number: Optional[str] = Field(default=None, max_length=50)

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        if len(v) < 8:
            raise ValueError("Password must be at least 8 characters")
        if not any(ch.isalpha() for ch in v) or not any(ch.isdigit() for ch in v):
            raise ValueError("Password must include letters and numbers")
        return v


class UserRegister(UserCreate):
    confirm_password: str

    @field_validator("confirm_password")
    @classmethod
    def passwords_match(cls, v: str, info):
        password = info.data.get("password") if hasattr(info, "data") else None
        if password and v != password:
            raise ValueError("Passwords do not match")
        return v


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class Token(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str
    user_id: str
    is_admin: bool = False


class TokenData(BaseModel):
    email: Optional[str] = None
    user_id: Optional[str] = None


class RefreshRequest(BaseModel):
    refresh_token: str


class MeResponse(BaseModel):
    id: str
    email: EmailStr
    full_name: Optional[str] = None
    phone_number: Optional[str] = None
    is_admin: bool = False
    permissions: List[str] = Field(default_factory=list)


class SubcategoryResponse(BaseModel):
    id: str
    category_id: str
    name: str
    slug: str

    model_config = ConfigDict(from_attributes=True)


class CategoryResponse(BaseModel):
    id: str
    name: str
    slug: str
    icon: Optional[str] = None
    sort_order: int = 0
    subcategories: List[SubcategoryResponse] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class CategoryListResponse(BaseModel):
    items: List[CategoryResponse]


class AdImageResponse(BaseModel):
    id: str
    image_url: str
    sort_order: int = 0

    model_config = ConfigDict(from_attributes=True)


class AdCreate(BaseModel):
    title: str = Field(..., min_length=3, max_length=255)
    description: Optional[str] = None
    category_id: Optional[str] = None
    subcategory_id: Optional[str] = None
    price: Optional[float] = Field(default=None, ge=0)
    price_type: PriceType = "fixed"
    mrp: Optional[float] = Field(default=None, ge=0)
    discount: Optional[float] = Field(default=None, ge=0)
    condition: Optional[str] = Field(default=None, max_length=20)
    ad_type: Optional[AdType] = None
    product_types: List[str] = Field(default_factory=list)
    features: List[str] = Field(default_factory=list)
    division: Optional[str] = Field(default=None, max_length=100)
    district: Optional[str] = Field(default=None, max_length=100)
    upazila: Optional[str] = Field(default=None, max_length=100)
    area: Optional[str] = Field(default=None, max_length=255)
    custom_fields: Optional[Dict[str, Any]] = None
    image_urls: List[str] = Field(default_factory=list, max_length=20)


class AdResponse(BaseModel):
    id: str
    user_id: str
    slug: str
    title: str
    description: Optional[str] = None
    category_id: Optional[str] = None
    subcategory_id: Optional[str] = None
    price: Optional[float] = None
    price_type: str
    mrp: Optional[float] = None
    discount: Optional[float] = None
    condition: Optional[str] = None
    ad_type: Optional[str] = None
    product_types: List[str] = Field(default_factory=list)
    features: List[str] = Field(default_factory=list)
    division: Optional[str] = None
    district: Optional[str] = None
    upazila: Optional[str] = None
    area: Optional[str] = None
    status: str
    needs_verification: bool = False
    first_time_poster: bool = False
    is_unconfirmed: bool = False
    is_deactivated: bool = False
    is_archived: bool = False
    payment_status: Optional[str] = None
    rejection_reason: Optional[str] = None
    rejection_reasons: List[str] = Field(default_factory=list)
    rejection_message: Optional[str] = None
    duplicate_of_ad_id: Optional[str] = None
    last_reviewed_by: Optional[str] = None
    last_reviewed_at: Optional[datetime] = None
    review_source: Optional[str] = None
    is_featured: bool = False
    promotion_type: Optional[str] = None
    promotion_expires_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    views_count: int = 0
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PublicAdResponse(BaseModel):
    id: str
    slug: str
    public_path: str
    title: str
    description: Optional[str] = None
    category_id: Optional[str] = None
    subcategory_id: Optional[str] = None
    price: Optional[float] = None
    price_type: str
    condition: Optional[str] = None
    ad_type: Optional[str] = None
    division: Optional[str] = None
    district: Optional[str] = None
    area: Optional[str] = None
    status: str
    is_featured: bool = False
    promotion_type: Optional[str] = None
    views_count: int = 0
    seller_id: str
    seller_name: Optional[str] = None
    seller_phone: Optional[str] = None
    images: List[AdImageResponse] = Field(default_factory=list)
    created_at: datetime


class FavoriteListResponse(BaseModel):
    items: List[PublicAdResponse]


class AdForm(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    category_id: Optional[str] = None
    subcategory_id: Optional[str] = None
    price: Optional[float] = None
    price_type: Optional[PriceType] = None
    mrp: Optional[float] = None
    discount: Optional[float] = None
    division: Optional[str] = None
    district: Optional[str] = None
    area: Optional[str] = None
    ad_type: Optional[str] = None
    product_types: List[str] = Field(default_factory=list)
    features: List[str] = Field(default_factory=list)

    @field_validator("price", "mrp", "discount", "price_type", "category_id", "subcategory_id", mode="before")
    @classmethod
    def blank_is_null(cls, value):
        return _blank_to_none(value)


class ProfileForm(BaseModel):
    full_name: Optional[str] = None
    email: Optional[str] = None
    phone_number: Optional[str] = None
    phone_number_secondary: Optional[str] = None
    seller_type: Optional[SellerType] = None
    show_phone_on_ads: Optional[bool] = None
    phone_verified: Optional[bool] = None

    @field_validator("seller_type", mode="before")
    @classmethod
    def blank_is_null(cls, value):
        return _blank_to_none(value)


class ProfileResponse(BaseModel):
    user_id: str
    full_name: Optional[str] = None
    email: Optional[str] = None
    phone_number: Optional[str] = None
    phone_number_secondary: Optional[str] = None
    seller_type: str = "private"
    show_phone_on_ads: bool = True
    phone_verified: bool = False
    phone_verified_at: Optional[datetime] = None
    verification_status: Optional[str] = None
    is_blocked: bool = False
    is_deleted: bool = False
    status_changed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class EditRequestChanges(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(default=None, min_length=3, max_length=255)
    description: Optional[str] = None
    category_id: Optional[str] = None
    subcategory_id: Optional[str] = None
    price: Optional[float] = Field(default=None, ge=0)
    price_type: Optional[PriceType] = None
    condition: Optional[str] = Field(default=None, max_length=20)
    ad_type: Optional[AdType] = None
    mrp: Optional[float] = Field(default=None, ge=0)
    discount: Optional[float] = Field(default=None, ge=0)
    features: Optional[List[str]] = None
    division: Optional[str] = Field(default=None, max_length=100)
    district: Optional[str] = Field(default=None, max_length=100)
    upazila: Optional[str] = Field(default=None, max_length=100)
    area: Optional[str] = Field(default=None, max_length=255)
    custom_fields: Optional[Dict[str, Any]] = None

    @field_validator("title", "price_type", "features")
    @classmethod
    def not_null(cls, value):
        # Only runs for keys the owner actually sent.
        if value is None:
            raise ValueError("Field cannot be cleared")
        return value


class EditRequestCreate(BaseModel):
    changes: EditRequestChanges


class EditRequestResponse(BaseModel):
    id: str
    ad_id: str
    user_id: str
    status: str
    old_values: Dict[str, Any] = Field(default_factory=dict)
    new_values: Dict[str, Any] = Field(default_factory=dict)
    review_message: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DiffRowResponse(BaseModel):
    key: str
    old_value: Any = None
    new_value: Any = None


class EditDiffResponse(BaseModel):
    rows: List[DiffRowResponse]
    more: int = 0


class ReviewItemPayload(BaseModel):
    ad: AdResponse
    profile: Optional[ProfileResponse] = None
    images: List[AdImageResponse] = Field(default_factory=list)
    ad_form: Dict[str, Any]
    profile_form: Optional[Dict[str, Any]] = None
    edit_request: Optional[EditRequestResponse] = None
    diff: Optional[EditDiffResponse] = None
    review_url: str
    public_path: str


class ReviewQueueResponse(BaseModel):
    queue: ReviewQueueName
    item: Optional[ReviewItemPayload] = None
    notice: Optional[str] = None
    counts: Dict[str, int] = Field(default_factory=dict)
    reviewed_today: int = 0


class ReviewApproveRequest(BaseModel):
    ad_form: Optional[AdForm] = None
    profile_form: Optional[ProfileForm] = None


class ReviewRejectRequest(ReviewApproveRequest):
    reasons: List[str] = Field(default_factory=list)
    message: Optional[str] = None
    duplicate_of: Optional[str] = None


class EditRequestRejectRequest(BaseModel):
    message: Optional[str] = None


class AdSearchResultItem(AdResponse):
    state: str
    derived_product_types: List[str] = Field(default_factory=list)
    public_path: str
    owner_email: Optional[str] = None


class AdSearchResponse(BaseModel):
    items: List[AdSearchResultItem]
    total: int


class BulkAdActionRequest(BaseModel):
    ad_ids: List[str] = Field(default_factory=list)
    action: Literal["approve", "reject", "deactivate", "archive"]
    reasons: List[str] = Field(default_factory=list)
    message: Optional[str] = None


class BulkActionResponse(BaseModel):
    action: str
    updated: int


class AdminUserListResponse(BaseModel):
    items: List[ProfileResponse]
    total: int


class AdminProfileUpdate(BaseModel):
    full_name: Optional[str] = Field(default=None, max_length=255)
    phone_number: Optional[str] = Field(default=None, max_length=50)
    phone_number_secondary: Optional[str] = Field(default=None, max_length=50)
    phone_verified: Optional[bool] = None
    verification_status: Optional[VerificationStatus] = None
    is_blocked: Optional[bool] = None
    is_deleted: Optional[bool] = None


class BulkUserActionRequest(BaseModel):
    user_ids: List[str] = Field(default_factory=list)
    action: Literal[
        "blacklist",
        "unblacklist",
        "verify_phone",
        "unverify_phone",
        "set_verification_status",
        "delete",
        "restore",
    ]
    verification_status: Optional[VerificationStatus] = None


class AuditEventResponse(BaseModel):
    id: str
    ad_id: str
    action: str
    actor_id: Optional[str] = None
    meta: Optional[Dict[str, Any]] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AdminUserDetailResponse(BaseModel):
    profile: ProfileResponse
    roles: List[str] = Field(default_factory=list)
    permissions: List[str] = Field(default_factory=list)
    ads: List[AdResponse] = Field(default_factory=list)
    recent_events: List[AuditEventResponse] = Field(default_factory=list)


class AdminAccountResponse(BaseModel):
    user_id: str
    email: str
    full_name: Optional[str] = None
    is_active: bool
    permissions: List[str] = Field(default_factory=list)


class AdminAccountListResponse(BaseModel):
    items: List[AdminAccountResponse]


class AdminGrantRequest(BaseModel):
    email: EmailStr
    permissions: List[str] = Field(default_factory=list)


class AdminPermissionsUpdate(BaseModel):
    permissions: List[str] = Field(default_factory=list)


class AdminActiveUpdate(BaseModel):
    is_active: bool


class EmailEventResponse(BaseModel):
    id: str
    event_type: str
    actor_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    created_at: datetime


class EmailItemResponse(BaseModel):
    id: str
    recipient_email: Optional[str] = None
    recipient_phone: Optional[str] = None
    subject: Optional[str] = None
    template: Optional[str] = None
    body_preview: Optional[str] = None
    current_state: str
    created_at: datetime
    events: List[EmailEventResponse] = Field(default_factory=list)


class EmailItemListResponse(BaseModel):
    items: List[EmailItemResponse]
    total: int


class EmailItemCreate(BaseModel):
    recipient_email: Optional[EmailStr] = None
    recipient_phone: Optional[str] = Field(default=None, max_length=50)
    subject: Optional[str] = Field(default=None, max_length=255)
    template: Optional[str] = Field(default=None, max_length=100)
    body_preview: Optional[str] = None

    @field_validator("recipient_email", "recipient_phone", "subject", "template", mode="before")
    @classmethod
    def blank_is_null(cls, value):
        return _blank_to_none(value)


class EmailActionRequest(BaseModel):
    note: Optional[str] = None


class ReportCreate(BaseModel):
    reason: str = Field(..., min_length=3, max_length=2000)


class ReportAdSummary(BaseModel):
    id: str
    title: str
    slug: str
    status: str


class ReportResponse(BaseModel):
    id: str
    ad_id: Optional[str] = None
    ad: Optional[ReportAdSummary] = None
    reporter_id: str
    reporter_name: Optional[str] = None
    reason: str
    is_resolved: bool
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    created_at: datetime


class ReportListResponse(BaseModel):
    items: List[ReportResponse]


class ModerationSettingsResponse(BaseModel):
    is_enabled: bool
    auto_approve_first_time_posters: bool
    require_phone_verification: bool
    min_description_length: int
    blocked_keywords: List[str] = Field(default_factory=list)
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ModerationSettingsUpdate(BaseModel):
    is_enabled: Optional[bool] = None
    auto_approve_first_time_posters: Optional[bool] = None
    require_phone_verification: Optional[bool] = None
    min_description_length: Optional[int] = Field(default=None, ge=0, le=5000)
    blocked_keywords: Optional[List[str]] = None

    @field_validator("blocked_keywords", mode="before")
    @classmethod
    def parse_keywords(cls, value):
        if value is None:
            return None
        if isinstance(value, str):
            value = value.split(",")
        if isinstance(value, (list, tuple)):
            seen: list[str] = []
            for keyword in value:
                cleaned = str(keyword).strip().lower()
                if cleaned and cleaned not in seen:
                    seen.append(cleaned)
            return seen
        raise ValueError("blocked_keywords must be a list or comma-separated string")


class AdminStatsResponse(BaseModel):
    total_users: int
    pending_ads: int
    approved_ads: int
    rejected_ads: int
    unresolved_reports: int
    queue_counts: Dict[str, int] = Field(default_factory=dict)


class ConversationStart(BaseModel):
    content: str = Field(..., min_length=1, max_length=5000)


class MessageCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=5000)


class MessageResponse(BaseModel):
    id: str
    conversation_id: str
    sender_id: str
    receiver_id: str
    content: str
    is_read: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ConversationResponse(BaseModel):
    id: str
    ad_id: str
    ad_title: Optional[str] = None
    buyer_id: str
    seller_id: str
    last_message_at: datetime
    last_message: Optional[str] = None
    unread_count: int = 0


class ConversationListResponse(BaseModel):
    items: List[ConversationResponse]


class ConversationDetailResponse(ConversationResponse):
    messages: List[MessageResponse] = Field(default_factory=list)


class UnreadCountResponse(BaseModel):
    count: int
