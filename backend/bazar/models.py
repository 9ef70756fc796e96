import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    TIMESTAMP,
    Boolean,
    Column,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .database import Base


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AppRole(str, enum.Enum):
    admin = "admin"
    user = "user"


class AdStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    sold = "sold"


class EditRequestStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class EmailState(str, enum.Enum):
    enqueued = "enqueued"
    approved = "approved"
    rejected = "rejected"


class EmailEventType(str, enum.Enum):
    created = "created"
    approved = "approved"
    rejected = "rejected"
    sent = "sent"


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String(255), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    created_at = Column(TIMESTAMP(timezone=True), default=utcnow, nullable=False)
    last_seen_at = Column(TIMESTAMP(timezone=True), nullable=True)

    profile = relationship("Profile", back_populates="user", uselist=False, cascade="all, delete-orphan")
    roles = relationship("RoleAssignment", back_populates="user", cascade="all, delete-orphan")
    permissions = relationship(
        "UserPermission", back_populates="user", cascade="all, delete-orphan", foreign_keys="UserPermission.user_id"
    )
    ads = relationship("Ad", back_populates="owner", foreign_keys="Ad.user_id")


class Profile(Base):
    __tablename__ = "profiles"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), unique=True, nullable=False, index=True)
    full_name = Column(String(255))
    email = Column(String(255), index=True)
    phone_number = Column(String(50), index=True)
    phone_number_secondary = Column(String(50))
    seller_type = Column(String(20), nullable=False, default="private")
    show_phone_on_ads = Column(Boolean, nullable=False, default=True)
    phone_verified = Column(Boolean, nullable=False, default=False)
    phone_verified_at = Column(TIMESTAMP(timezone=True), nullable=True)
    verification_status = Column(String(40), nullable=True)
    is_blocked = Column(Boolean, nullable=False, default=False)
    is_deleted = Column(Boolean, nullable=False, default=False)
    status_changed_at = Column(TIMESTAMP(timezone=True), nullable=True)
    avatar_url = Column(String(500))
    division = Column(String(100))
    district = Column(String(100))
    area = Column(String(255))
    created_at = Column(TIMESTAMP(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(TIMESTAMP(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    user = relationship("User", back_populates="profile")


class RoleAssignment(Base):
    __tablename__ = "user_roles"
    __table_args__ = (UniqueConstraint("user_id", "role", name="uq_user_roles_user_role"),)

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    role = Column(Enum(AppRole), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(TIMESTAMP(timezone=True), default=utcnow, nullable=False)

    user = relationship("User", back_populates="roles")


class UserPermission(Base):
    __tablename__ = "user_permissions"
    __table_args__ = (UniqueConstraint("user_id", "permission", name="uq_user_permissions_user_permission"),)

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    permission = Column(String(64), nullable=False)
    granted_by = Column(String(36), ForeignKey("users.id"), nullable=True)
    created_at = Column(TIMESTAMP(timezone=True), default=utcnow, nullable=False)

    user = relationship("User", back_populates="permissions", foreign_keys=[user_id])


class Category(Base):
    __tablename__ = "categories"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(100), nullable=False)
    slug = Column(String(120), unique=True, nullable=False)
    icon = Column(String(64))
    sort_order = Column(Integer, nullable=False, default=0)
    created_at = Column(TIMESTAMP(timezone=True), default=utcnow, nullable=False)

    subcategories = relationship("Subcategory", back_populates="category", cascade="all, delete-orphan")


class Subcategory(Base):
    __tablename__ = "subcategories"

    id = Column(String(36), primary_key=True, default=new_id)
    category_id = Column(String(36), ForeignKey("categories.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    slug = Column(String(120), nullable=False)
    created_at = Column(TIMESTAMP(timezone=True), default=utcnow, nullable=False)

    category = relationship("Category", back_populates="subcategories")


class Ad(Base):
    __tablename__ = "ads"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    slug = Column(String(255), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    category_id = Column(String(36), ForeignKey("categories.id"), nullable=True, index=True)
    subcategory_id = Column(String(36), ForeignKey("subcategories.id"), nullable=True, index=True)
    custom_fields = Column(JSON, nullable=True)
    condition = Column(String(20), nullable=True)

    price = Column(Float, nullable=True)
    price_type = Column(String(20), nullable=False, default="fixed")
    mrp = Column(Float, nullable=True)
    discount = Column(Float, nullable=True)

    ad_type = Column(String(20), nullable=True)
    product_types = Column(JSON, nullable=False, default=list)
    features = Column(JSON, nullable=False, default=list)

    division = Column(String(100))
    district = Column(String(100))
    upazila = Column(String(100))
    area = Column(String(255))

    status = Column(String(20), nullable=False, default=AdStatus.pending.value, index=True)
    needs_verification = Column(Boolean, nullable=False, default=False, index=True)
    first_time_poster = Column(Boolean, nullable=False, default=False, index=True)
    is_unconfirmed = Column(Boolean, nullable=False, default=False)
    is_deactivated = Column(Boolean, nullable=False, default=False)
    is_archived = Column(Boolean, nullable=False, default=False)
    payment_status = Column(String(20), nullable=True)

    rejection_reason = Column(String(80), nullable=True, index=True)
    rejection_reasons = Column(JSON, nullable=False, default=list)
    rejection_message = Column(Text, nullable=True)
    duplicate_of_ad_id = Column(String(36), nullable=True)

    last_reviewed_by = Column(String(36), ForeignKey("users.id"), nullable=True, index=True)
    last_reviewed_at = Column(TIMESTAMP(timezone=True), nullable=True)
    review_source = Column(String(20), nullable=True)

    is_featured = Column(Boolean, nullable=False, default=False)
    promotion_type = Column(String(20), nullable=True)
    promotion_expires_at = Column(TIMESTAMP(timezone=True), nullable=True)
    expires_at = Column(TIMESTAMP(timezone=True), nullable=True)

    views_count = Column(Integer, nullable=False, default=0)
    created_at = Column(TIMESTAMP(timezone=True), default=utcnow, nullable=False, index=True)
    updated_at = Column(TIMESTAMP(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    owner = relationship("User", back_populates="ads", foreign_keys=[user_id])
    images = relationship(
        "AdImage", back_populates="ad", cascade="all, delete-orphan", order_by="AdImage.sort_order"
    )
    edit_requests = relationship("AdEditRequest", back_populates="ad", cascade="all, delete-orphan")
    favorites = relationship("Favorite", back_populates="ad", cascade="all, delete-orphan")
    conversations = relationship("Conversation", back_populates="ad", cascade="all, delete-orphan")
    reports = relationship("Report", back_populates="ad")


class AdImage(Base):
    __tablename__ = "ad_images"

    id = Column(String(36), primary_key=True, default=new_id)
    ad_id = Column(String(36), ForeignKey("ads.id"), nullable=False, index=True)
    image_url = Column(String(500), nullable=False)
    sort_order = Column(Integer, nullable=False, default=0)
    created_at = Column(TIMESTAMP(timezone=True), default=utcnow, nullable=False)

    ad = relationship("Ad", back_populates="images")


class AdEditRequest(Base):
    __tablename__ = "ad_edit_requests"

    id = Column(String(36), primary_key=True, default=new_id)
    ad_id = Column(String(36), ForeignKey("ads.id"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=EditRequestStatus.pending.value, index=True)
    old_values = Column(JSON, nullable=False, default=dict)
    new_values = Column(JSON, nullable=False, default=dict)
    review_message = Column(Text, nullable=True)
    reviewed_by = Column(String(36), ForeignKey("users.id"), nullable=True, index=True)
    reviewed_at = Column(TIMESTAMP(timezone=True), nullable=True)
    created_at = Column(TIMESTAMP(timezone=True), default=utcnow, nullable=False, index=True)

    ad = relationship("Ad", back_populates="edit_requests")


class AdAuditLog(Base):
    __tablename__ = "ad_audit_logs"

    id = Column(String(36), primary_key=True, default=new_id)
    ad_id = Column(String(36), nullable=False, index=True)
    action = Column(String(64), nullable=False, index=True)
    actor_id = Column(String(36), nullable=True, index=True)
    meta = Column("metadata", JSON, nullable=True)
    created_at = Column(TIMESTAMP(timezone=True), default=utcnow, nullable=False, index=True)


class Favorite(Base):
    __tablename__ = "favorites"
    __table_args__ = (UniqueConstraint("user_id", "ad_id", name="uq_favorite_ad"),)

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    ad_id = Column(String(36), ForeignKey("ads.id"), nullable=False, index=True)
    created_at = Column(TIMESTAMP(timezone=True), default=utcnow, nullable=False)

    ad = relationship("Ad", back_populates="favorites")


class Conversation(Base):
    __tablename__ = "conversations"
    __table_args__ = (UniqueConstraint("ad_id", "buyer_id", name="uq_conversation_ad_buyer"),)

    id = Column(String(36), primary_key=True, default=new_id)
    ad_id = Column(String(36), ForeignKey("ads.id"), nullable=False, index=True)
    buyer_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    seller_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    last_message_at = Column(TIMESTAMP(timezone=True), default=utcnow, nullable=False)
    created_at = Column(TIMESTAMP(timezone=True), default=utcnow, nullable=False)

    ad = relationship("Ad", back_populates="conversations")
    messages = relationship(
        "Message", back_populates="conversation", cascade="all, delete-orphan", order_by="Message.created_at"
    )


class Message(Base):
    __tablename__ = "messages"

    id = Column(String(36), primary_key=True, default=new_id)
    conversation_id = Column(String(36), ForeignKey("conversations.id"), nullable=False, index=True)
    sender_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    receiver_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    is_read = Column(Boolean, nullable=False, default=False, index=True)
    created_at = Column(TIMESTAMP(timezone=True), default=utcnow, nullable=False)

    conversation = relationship("Conversation", back_populates="messages")


class Report(Base):
    __tablename__ = "reports"

    id = Column(String(36), primary_key=True, default=new_id)
    ad_id = Column(String(36), ForeignKey("ads.id"), nullable=True, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    reason = Column(Text, nullable=False)
    is_resolved = Column(Boolean, nullable=False, default=False, index=True)
    resolved_by = Column(String(36), ForeignKey("users.id"), nullable=True)
    resolved_at = Column(TIMESTAMP(timezone=True), nullable=True)
    created_at = Column(TIMESTAMP(timezone=True), default=utcnow, nullable=False)

    ad = relationship("Ad", back_populates="reports")
    reporter = relationship("User", foreign_keys=[user_id])


class AutoModerationSettings(Base):
    __tablename__ = "auto_moderation_settings"

    id = Column(String(36), primary_key=True, default=new_id)
    is_enabled = Column(Boolean, nullable=False, default=False)
    auto_approve_first_time_posters = Column(Boolean, nullable=False, default=False)
    require_phone_verification = Column(Boolean, nullable=False, default=False)
    min_description_length = Column(Integer, nullable=False, default=20)
    blocked_keywords = Column(JSON, nullable=False, default=list)
    created_at = Column(TIMESTAMP(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(TIMESTAMP(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class EmailItem(Base):
    __tablename__ = "email_items"

    id = Column(String(36), primary_key=True, default=new_id)
    recipient_email = Column(String(255), nullable=True, index=True)
    recipient_phone = Column(String(50), nullable=True, index=True)
    subject = Column(String(255), nullable=True)
    template = Column(String(100), nullable=True)
    body_preview = Column(Text, nullable=True)
    current_state = Column(String(20), nullable=False, default=EmailState.enqueued.value, index=True)
    created_at = Column(TIMESTAMP(timezone=True), default=utcnow, nullable=False, index=True)

    events = relationship(
        "EmailEvent", back_populates="email", cascade="all, delete-orphan", order_by="EmailEvent.created_at"
    )


class EmailEvent(Base):
    __tablename__ = "email_events"

    id = Column(String(36), primary_key=True, default=new_id)
    email_id = Column(String(36), ForeignKey("email_items.id"), nullable=False, index=True)
    actor_id = Column(String(36), ForeignKey("users.id"), nullable=True, index=True)
    event_type = Column(String(20), nullable=False, index=True)
    meta = Column("metadata", JSON, nullable=True)
    created_at = Column(TIMESTAMP(timezone=True), default=utcnow, nullable=False, index=True)

    email = relationship("EmailItem", back_populates="events")
