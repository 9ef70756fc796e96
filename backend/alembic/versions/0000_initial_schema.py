"""Create initial schema

Revision ID: 0000_initial_schema
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "0000_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def _ts(name: str, nullable: bool = True) -> sa.Column:
    return sa.Column(name, sa.TIMESTAMP(timezone=True), nullable=nullable)


def _id() -> sa.Column:
    return sa.Column("id", sa.String(length=36), primary_key=True)


def upgrade() -> None:
    bind = op.get_bind()

    if bind.dialect.name == "postgresql":
        app_role_enum = postgresql.ENUM("admin", "user", name="approle", create_type=False)
        app_role_enum.create(bind, checkfirst=True)
    else:
        app_role_enum = sa.Enum("admin", "user", name="approle")

    op.create_table(
        "users",
        _id(),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        _ts("created_at", nullable=False),
        _ts("last_seen_at"),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )

    op.create_table(
        "profiles",
        _id(),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("phone_number", sa.String(length=50), nullable=True),
        sa.Column("phone_number_secondary", sa.String(length=50), nullable=True),
        sa.Column("seller_type", sa.String(length=20), nullable=False, server_default="private"),
        sa.Column("show_phone_on_ads", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("phone_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        _ts("phone_verified_at"),
        sa.Column("verification_status", sa.String(length=40), nullable=True),
        sa.Column("is_blocked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        _ts("status_changed_at"),
        sa.Column("avatar_url", sa.String(length=500), nullable=True),
        sa.Column("division", sa.String(length=100), nullable=True),
        sa.Column("district", sa.String(length=100), nullable=True),
        sa.Column("area", sa.String(length=255), nullable=True),
        _ts("created_at", nullable=False),
        _ts("updated_at", nullable=False),
        sa.UniqueConstraint("user_id", name="uq_profiles_user_id"),
    )
    op.create_index("ix_profiles_user_id", "profiles", ["user_id"])
    op.create_index("ix_profiles_email", "profiles", ["email"])
    op.create_index("ix_profiles_phone_number", "profiles", ["phone_number"])

    op.create_table(
        "user_roles",
        _id(),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("role", app_role_enum, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _ts("created_at", nullable=False),
        sa.UniqueConstraint("user_id", "role", name="uq_user_roles_user_role"),
    )
    op.create_index("ix_user_roles_user_id", "user_roles", ["user_id"])

    op.create_table(
        "user_permissions",
        _id(),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("permission", sa.String(length=64), nullable=False),
        sa.Column("granted_by", sa.String(length=36), sa.ForeignKey("users.id"), nullable=True),
        _ts("created_at", nullable=False),
        sa.UniqueConstraint("user_id", "permission", name="uq_user_permissions_user_permission"),
    )
    op.create_index("ix_user_permissions_user_id", "user_permissions", ["user_id"])

    op.create_table(
        "categories",
        _id(),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("slug", sa.String(length=120), nullable=False),
        sa.Column("icon", sa.String(length=64), nullable=True),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        _ts("created_at", nullable=False),
        sa.UniqueConstraint("slug", name="uq_categories_slug"),
    )

    op.create_table(
        "subcategories",
        _id(),
        sa.Column("category_id", sa.String(length=36), sa.ForeignKey("categories.id"), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("slug", sa.String(length=120), nullable=False),
        _ts("created_at", nullable=False),
    )
    op.create_index("ix_subcategories_category_id", "subcategories", ["category_id"])

    op.create_table(
        "ads",
        _id(),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("slug", sa.String(length=255), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category_id", sa.String(length=36), sa.ForeignKey("categories.id"), nullable=True),
        sa.Column("subcategory_id", sa.String(length=36), sa.ForeignKey("subcategories.id"), nullable=True),
        sa.Column("custom_fields", sa.JSON(), nullable=True),
        sa.Column("condition", sa.String(length=20), nullable=True),
        sa.Column("price", sa.Float(), nullable=True),
        sa.Column("price_type", sa.String(length=20), nullable=False, server_default="fixed"),
        sa.Column("mrp", sa.Float(), nullable=True),
        sa.Column("discount", sa.Float(), nullable=True),
        sa.Column("ad_type", sa.String(length=20), nullable=True),
        sa.Column("product_types", sa.JSON(), nullable=False),
        sa.Column("features", sa.JSON(), nullable=False),
        sa.Column("division", sa.String(length=100), nullable=True),
        sa.Column("district", sa.String(length=100), nullable=True),
        sa.Column("upazila", sa.String(length=100), nullable=True),
        sa.Column("area", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("needs_verification", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("first_time_poster", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_unconfirmed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_deactivated", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_archived", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("payment_status", sa.String(length=20), nullable=True),
        sa.Column("rejection_reason", sa.String(length=80), nullable=True),
        sa.Column("rejection_reasons", sa.JSON(), nullable=False),
        sa.Column("rejection_message", sa.Text(), nullable=True),
        sa.Column("duplicate_of_ad_id", sa.String(length=36), nullable=True),
        sa.Column("last_reviewed_by", sa.String(length=36), sa.ForeignKey("users.id"), nullable=True),
        _ts("last_reviewed_at"),
        sa.Column("review_source", sa.String(length=20), nullable=True),
        sa.Column("is_featured", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("promotion_type", sa.String(length=20), nullable=True),
        _ts("promotion_expires_at"),
        _ts("expires_at"),
        sa.Column("views_count", sa.Integer(), nullable=False, server_default="0"),
        _ts("created_at", nullable=False),
        _ts("updated_at", nullable=False),
    )
    for column in (
        "user_id",
        "slug",
        "category_id",
        "subcategory_id",
        "status",
        "needs_verification",
        "first_time_poster",
        "rejection_reason",
        "last_reviewed_by",
        "created_at",
    ):
        op.create_index(f"ix_ads_{column}", "ads", [column])

    op.create_table(
        "ad_images",
        _id(),
        sa.Column("ad_id", sa.String(length=36), sa.ForeignKey("ads.id"), nullable=False),
        sa.Column("image_url", sa.String(length=500), nullable=False),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        _ts("created_at", nullable=False),
    )
    op.create_index("ix_ad_images_ad_id", "ad_images", ["ad_id"])

    op.create_table(
        "ad_edit_requests",
        _id(),
        sa.Column("ad_id", sa.String(length=36), sa.ForeignKey("ads.id"), nullable=False),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("old_values", sa.JSON(), nullable=False),
        sa.Column("new_values", sa.JSON(), nullable=False),
        sa.Column("review_message", sa.Text(), nullable=True),
        sa.Column("reviewed_by", sa.String(length=36), sa.ForeignKey("users.id"), nullable=True),
        _ts("reviewed_at"),
        _ts("created_at", nullable=False),
    )
    for column in ("ad_id", "user_id", "status", "reviewed_by", "created_at"):
        op.create_index(f"ix_ad_edit_requests_{column}", "ad_edit_requests", [column])

    op.create_table(
        "ad_audit_logs",
        _id(),
        sa.Column("ad_id", sa.String(length=36), nullable=False),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("actor_id", sa.String(length=36), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        _ts("created_at", nullable=False),
    )
    for column in ("ad_id", "action", "actor_id", "created_at"):
        op.create_index(f"ix_ad_audit_logs_{column}", "ad_audit_logs", [column])

    op.create_table(
        "favorites",
        _id(),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("ad_id", sa.String(length=36), sa.ForeignKey("ads.id"), nullable=False),
        _ts("created_at", nullable=False),
        sa.UniqueConstraint("user_id", "ad_id", name="uq_favorite_ad"),
    )
    op.create_index("ix_favorites_user_id", "favorites", ["user_id"])
    op.create_index("ix_favorites_ad_id", "favorites", ["ad_id"])

    op.create_table(
        "conversations",
        _id(),
        sa.Column("ad_id", sa.String(length=36), sa.ForeignKey("ads.id"), nullable=False),
        sa.Column("buyer_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("seller_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        _ts("last_message_at", nullable=False),
        _ts("created_at", nullable=False),
        sa.UniqueConstraint("ad_id", "buyer_id", name="uq_conversation_ad_buyer"),
    )
    for column in ("ad_id", "buyer_id", "seller_id"):
        op.create_index(f"ix_conversations_{column}", "conversations", [column])

    op.create_table(
        "messages",
        _id(),
        sa.Column("conversation_id", sa.String(length=36), sa.ForeignKey("conversations.id"), nullable=False),
        sa.Column("sender_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("receiver_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        _ts("created_at", nullable=False),
    )
    for column in ("conversation_id", "receiver_id", "is_read"):
        op.create_index(f"ix_messages_{column}", "messages", [column])

    op.create_table(
        "reports",
        _id(),
        sa.Column("ad_id", sa.String(length=36), sa.ForeignKey("ads.id"), nullable=True),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("is_resolved", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("resolved_by", sa.String(length=36), sa.ForeignKey("users.id"), nullable=True),
        _ts("resolved_at"),
        _ts("created_at", nullable=False),
    )
    for column in ("ad_id", "user_id", "is_resolved"):
        op.create_index(f"ix_reports_{column}", "reports", [column])

    op.create_table(
        "auto_moderation_settings",
        _id(),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("auto_approve_first_time_posters", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("require_phone_verification", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("min_description_length", sa.Integer(), nullable=False, server_default="20"),
        sa.Column("blocked_keywords", sa.JSON(), nullable=False),
        _ts("created_at", nullable=False),
        _ts("updated_at", nullable=False),
    )

    op.create_table(
        "email_items",
        _id(),
        sa.Column("recipient_email", sa.String(length=255), nullable=True),
        sa.Column("recipient_phone", sa.String(length=50), nullable=True),
        sa.Column("subject", sa.String(length=255), nullable=True),
        sa.Column("template", sa.String(length=100), nullable=True),
        sa.Column("body_preview", sa.Text(), nullable=True),
        sa.Column("current_state", sa.String(length=20), nullable=False, server_default="enqueued"),
        _ts("created_at", nullable=False),
    )
    for column in ("recipient_email", "recipient_phone", "current_state", "created_at"):
        op.create_index(f"ix_email_items_{column}", "email_items", [column])

    op.create_table(
        "email_events",
        _id(),
        sa.Column("email_id", sa.String(length=36), sa.ForeignKey("email_items.id"), nullable=False),
        sa.Column("actor_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("event_type", sa.String(length=20), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        _ts("created_at", nullable=False),
    )
    for column in ("email_id", "actor_id", "event_type", "created_at"):
        op.create_index(f"ix_email_events_{column}", "email_events", [column])


def downgrade() -> None:
    for table in (
        "email_events",
        "email_items",
        "auto_moderation_settings",
        "reports",
        "messages",
        "conversations",
        "favorites",
        "ad_audit_logs",
        "ad_edit_requests",
        "ad_images",
        "ads",
        "subcategories",
        "categories",
        "user_permissions",
        "user_roles",
        "profiles",
        "users",
    ):
        op.drop_table(table)

    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        postgresql.ENUM(name="approle").drop(bind, checkfirst=True)
