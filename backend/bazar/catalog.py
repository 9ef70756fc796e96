from __future__ import annotations

from typing import TypedDict


class CatalogOption(TypedDict, total=False):
    value: str
    label: str
    description: str


class DivisionCatalogItem(TypedDict):
    name: str
    districts: list[str]


def _options(pairs: list[tuple[str, str]]) -> list[CatalogOption]:
    return [{"value": value, "label": label} for value, label in pairs]


REJECTION_REASONS: list[tuple[str, str]] = [
    ("ReferencedAdRejectionReason_DUPLICATE", "Duplicate ad"),
    ("IndividualAdRejectionReason_FRAUD", "Fraud"),
    ("IndividualAdRejectionReason_UNREALISTIC_OFFER", "Unrealistic offer"),
    ("ReferencedAdRejectionReason_REPOST", "Reposted ad"),
    ("IndividualAdRejectionReason_WRONG_CATEGORY", "Wrong category"),
    ("IndividualAdRejectionReason_BLACKLISTED_ACCOUNT", "Blacklisted account"),
    ("IndividualAdRejectionReason_MULTIPLE_ITEMS", "Multiple items in same ad"),
    ("IndividualAdRejectionReason_ILLEGAL", "Illegal item or service"),
    ("IndividualAdRejectionReason_OUTSIDE_MARKET", "Item not located in market country"),
    ("IndividualAdRejectionReason_SPAM", "Spam"),
    ("IndividualAdRejectionReason_TOO_VAGUE", "Non-specific item or service"),
    ("IndividualAdRejectionReason_MISSING_DETAILS", "Missing details"),
    ("IndividualAdRejectionReason_MARKETING", "Marketing ad"),
    ("IndividualAdRejectionReason_ACCOUNT_OVER_LIMIT", "Account over the limit"),
    ("IndividualAdRejectionReason_NOT_PAID", "Not Paid"),
    ("IndividualAdRejectionReason_FOLLOW_UP_NEEDED", "Follow Up needed"),
    ("IndividualAdRejectionReason_REPRODUCED_AD", "Reproduced Ad"),
    ("IndividualAdRejectionReason_AD_TYPE_FOR_SALE", "Ad Type - For Sale"),
    ("IndividualAdRejectionReason_AD_TYPE_FOR_RENT", "Ad Type - For Rent"),
    ("IndividualAdRejectionReason_AD_TYPE_TO_RENT", "Ad Type - To Rent"),
    ("IndividualAdRejectionReason_AD_TYPE_TO_BUY", "Ad Type - To Buy"),
    ("IndividualAdRejectionReason_FIRST_IMAGE_VIOLATION", "1st Image Violation"),
    ("IndividualAdRejectionReason_IMAGE_DOWNLOADED", "Downloaded Image"),
    ("IndividualAdRejectionReason_IMAGE_INVALID", "Invalid Image"),
    ("IndividualAdRejectionReason_IMAGE_OTHER_REASON", "Image - Other Reason"),
    ("IndividualAdRejectionReason_REPLICA", "Replica"),
    ("OTHER", "Other reason"),
]
REJECTION_REASON_VALUES = frozenset(value for value, _ in REJECTION_REASONS)
DUPLICATE_REASON = "ReferencedAdRejectionReason_DUPLICATE"

AD_TYPES: list[tuple[str, str]] = [
    ("for_rent", "For rent"),
    ("for_sale", "For sale / Offered"),
    ("to_buy", "To buy / Wanted"),
    ("to_rent", "To rent"),
]
AD_TYPE_VALUES = frozenset(value for value, _ in AD_TYPES)

PRODUCT_BUMP_UP = "Product_BUMP_UP"
PRODUCT_TOP_AD = "Product_TOP_AD"
PRODUCT_URGENT_AD = "Product_URGENT_AD"
PRODUCT_SPOTLIGHT = "Product_SPOTLIGHT"
PRODUCT_FEATURED_AD = "Product_FEATURED_AD"
PRODUCT_URGENT_BUNDLE = "Product_URGENT_BUNDLE"
PRODUCT_MEMBERSHIP_PACKAGE = "Product_MEMBERSHIP_PACKAGE"
PRODUCT_EXTRA_IMAGES = "Product_EXTRA_IMAGES"

PRODUCT_TYPES: list[tuple[str, str]] = [
    (PRODUCT_BUMP_UP, "Bump up"),
    (PRODUCT_TOP_AD, "Top ad"),
    (PRODUCT_URGENT_AD, "Urgent ad"),
    (PRODUCT_SPOTLIGHT, "Spotlight"),
    (PRODUCT_FEATURED_AD, "Featured ad"),
    (PRODUCT_URGENT_BUNDLE, "Urgent Bundle"),
    (PRODUCT_MEMBERSHIP_PACKAGE, "Membership Package"),
    (PRODUCT_EXTRA_IMAGES, "Extra Images"),
]

FEATURE_NO_EXPIRATION = "AdFeatures_NO_EXPIRATION"
FEATURE_BUY_NOW = "AdFeatures_BUY_NOW"

AD_FEATURES: list[tuple[str, str]] = [
    (FEATURE_NO_EXPIRATION, "Auto-renew"),
    (FEATURE_BUY_NOW, "Doorstep Delivery"),
]

STATE_PUBLISHED = "AdState_PUBLISHED"
STATE_REJECTED = "AdState_REJECTED"
STATE_ENQUEUED = "AdState_ENQUEUED"
STATE_PENDING_VERIFICATION = "AdState_PENDING_VERIFICATION"
STATE_UNCONFIRMED = "AdState_UNCONFIRMED"
STATE_ARCHIVED = "AdState_ARCHIVED"
STATE_DEACTIVATED = "AdState_DEACTIVATED"
STATE_PENDING_PAYMENT = "AdState_PENDING_PAYMENT"

AD_STATES: list[tuple[str, str]] = [
    (STATE_PUBLISHED, "Published"),
    (STATE_REJECTED, "Rejected"),
    (STATE_ENQUEUED, "Enqueued"),
    (STATE_PENDING_VERIFICATION, "Pending"),
    (STATE_UNCONFIRMED, "Unconfirmed"),
    (STATE_ARCHIVED, "Archived"),
    (STATE_DEACTIVATED, "Deactivated"),
    (STATE_PENDING_PAYMENT, "Pending Payment"),
]

# Values of ad_audit_logs.action (approved/rejected match the "<old>_to_<new>" transitions).
AD_EVENT_TYPES: list[tuple[str, str]] = [
    ("created", "Created"),
    ("rejected", "Rejected"),
    ("approved", "Approved"),
    ("promoted", "Promoted"),
    ("deactivated", "Deactivated"),
]
AD_EVENT_TYPE_VALUES = frozenset(value for value, _ in AD_EVENT_TYPES)

USER_STATUS_VERIFIED = "AccountFlags_VERIFIED"
USER_STATUS_UNVERIFIED = "AccountFlags_UNVERIFIED"
USER_STATUS_BLACKLISTED = "AccountFlags_BLACKLISTED"
USER_STATUS_ENQUEUED_VERIFICATION = "AccountFlags_ENQUEUED_VERIFICATION"
USER_STATUS_INACTIVE = "inactive"

USER_STATUSES: list[tuple[str, str]] = [
    (USER_STATUS_VERIFIED, "Verified"),
    (USER_STATUS_UNVERIFIED, "Verification Unsuccessful"),
    (USER_STATUS_BLACKLISTED, "Blacklisted"),
    (USER_STATUS_ENQUEUED_VERIFICATION, "Pending Verification"),
    (USER_STATUS_INACTIVE, "Inactive"),
]

USER_SORT_EMAIL = "FindAccountSort_LOGIN_EMAIL"
USER_SORT_STATUS_CHANGE = "FindAccountSort_STATUS_CHANGE"

USER_SORTS: list[tuple[str, str]] = [
    (USER_SORT_EMAIL, "Email"),
    (USER_SORT_STATUS_CHANGE, "Oldest status change"),
]

VERIFICATION_STATUSES = ("verified", "verification_unsuccessful", "pending_verification")

APP_PERMISSIONS: list[CatalogOption] = [
    {"value": "create_ads", "label": "Create ads", "description": "Create ads from the admin panel."},
    {
        "value": "manage_admins",
        "label": "Manage admins",
        "description": "Create, activate/deactivate, and assign permissions to admin users.",
    },
    {
        "value": "manage_blacklists",
        "label": "Manage blacklists",
        "description": "Manage blacklists/blocked entities (users, phones, patterns, etc.).",
    },
    {
        "value": "manage_site_users",
        "label": "Manage site users",
        "description": "Administrative controls for site users (status, verification, deletion).",
    },
    {"value": "review_items", "label": "Review items", "description": "Review and moderate listings via queues."},
    {"value": "search_archived_ads", "label": "Search for archived ads", "description": "Search archived/expired listings."},
    {
        "value": "search_emails",
        "label": "Search for emails",
        "description": "Search email items and filter by event date, state, and admin actor.",
    },
    {
        "value": "search_pending_ads",
        "label": "Search for pending ads",
        "description": "Search pending listings awaiting review/verification.",
    },
    {
        "value": "search_enqueued_ads",
        "label": "Search for enqueued ads",
        "description": "Search enqueued listings waiting in review queues.",
    },
    {
        "value": "search_published_rejected_ads",
        "label": "Search for published and rejected ads",
        "description": "Search listings that are published/approved or rejected.",
    },
    {
        "value": "set_target_response_time",
        "label": "Set target response time",
        "description": "Configure operational targets for response/review times.",
    },
    {
        "value": "edit_ads_outside_review_flow",
        "label": "Edit ads outside of review flow",
        "description": "Edit listings without taking them through standard review queues.",
    },
    {"value": "manage_shops", "label": "Manage shops", "description": "Manage shop profiles and related moderation controls."},
    {"value": "search_site_users", "label": "Search site users", "description": "Search and filter users with advanced options."},
    {
        "value": "manage_doorstep_delivery_orders",
        "label": "Manage Doorstep Delivery orders",
        "description": "Manage delivery orders and related operational workflows.",
    },
    {"value": "view_transactions", "label": "View Transactions", "description": "View financial transactions and related logs."},
    {
        "value": "manage_skin_banners",
        "label": "Manage skin banners",
        "description": "Manage marketing skins/banners displayed on the site.",
    },
    {
        "value": "manage_listing_fee_paid_button",
        "label": "Manage listing fee paid button",
        "description": "Tools related to listing fee verification/paid state.",
    },
    {
        "value": "view_ads_outside_review_flow",
        "label": "View ads outside of review flow",
        "description": "View listings that are not currently in review flow.",
    },
    {"value": "manage_memberships", "label": "Manage memberships", "description": "Manage membership products and subscriptions."},
    {
        "value": "manage_skip_manual_ad_review",
        "label": "Manage skip manual ad review",
        "description": "Control skip/manual-review behavior and exemptions.",
    },
    {"value": "manage_deal_of_the_day_dsd", "label": "Manage deal of the day (DSD)", "description": "Configure deal-of-the-day campaigns."},
    {"value": "manage_featured_shop_dsd", "label": "Manage featured shop (DSD)", "description": "Configure featured shop campaigns."},
    {
        "value": "reindex_account_ads",
        "label": "Reindex account ads",
        "description": "Reindex ads for an account (search/aggregation maintenance).",
    },
    {
        "value": "manage_users",
        "label": "Manage users",
        "description": "View and manage site users, including blocking and verification flags.",
    },
    {"value": "review_ads", "label": "Review ads", "description": "Approve, reject, and moderate listings."},
    {"value": "search_ads", "label": "Search ads", "description": "Find listings across all states using filters and audit events."},
    {
        "value": "manage_categories",
        "label": "Manage categories",
        "description": "Create and maintain categories, subcategories, and fields.",
    },
    {"value": "manage_reports", "label": "Manage reports", "description": "Handle user reports and mark them resolved."},
    {
        "value": "manage_moderation_settings",
        "label": "System moderation settings",
        "description": "Tune automated moderation rules and thresholds.",
    },
]
APP_PERMISSION_VALUES = frozenset(item["value"] for item in APP_PERMISSIONS)

DISTRICTS_BY_DIVISION: dict[str, list[str]] = {
    "Dhaka": [
        "Dhaka",
        "Gazipur",
        "Narayanganj",
        "Tangail",
        "Manikganj",
        "Munshiganj",
        "Narsingdi",
        "Kishoreganj",
        "Madaripur",
        "Gopalganj",
        "Faridpur",
        "Rajbari",
        "Shariatpur",
    ],
    "Chattogram": [
        "Chattogram",
        "Cox's Bazar",
        "Comilla",
        "Feni",
        "Noakhali",
        "Lakshmipur",
        "Chandpur",
        "Brahmanbaria",
        "Rangamati",
        "Khagrachhari",
        "Bandarban",
    ],
    "Rajshahi": ["Rajshahi", "Bogra", "Pabna", "Sirajganj", "Natore", "Naogaon", "Chapainawabganj", "Joypurhat"],
    "Khulna": [
        "Khulna",
        "Jessore",
        "Satkhira",
        "Bagerhat",
        "Narail",
        "Magura",
        "Jhenaidah",
        "Kushtia",
        "Chuadanga",
        "Meherpur",
    ],
    "Barishal": ["Barishal", "Patuakhali", "Bhola", "Pirojpur", "Jhalokati", "Barguna"],
    "Sylhet": ["Sylhet", "Moulvibazar", "Habiganj", "Sunamganj"],
    "Rangpur": ["Rangpur", "Dinajpur", "Kurigram", "Gaibandha", "Nilphamari", "Lalmonirhat", "Thakurgaon", "Panchagarh"],
    "Mymensingh": ["Mymensingh", "Jamalpur", "Sherpur", "Netrokona"],
}


def get_location_catalog() -> list[DivisionCatalogItem]:
    return [{"name": name, "districts": list(districts)} for name, districts in DISTRICTS_BY_DIVISION.items()]


def get_catalog() -> dict:
    return {
        "rejection_reasons": _options(REJECTION_REASONS),
        "ad_types": _options(AD_TYPES),
        "product_types": _options(PRODUCT_TYPES),
        "features": _options(AD_FEATURES),
        "ad_states": _options(AD_STATES),
        "event_types": _options(AD_EVENT_TYPES),
        "user_statuses": _options(USER_STATUSES),
        "user_sorts": _options(USER_SORTS),
        "verification_statuses": list(VERIFICATION_STATUSES),
        "permissions": [dict(item) for item in APP_PERMISSIONS],
        "locations": get_location_catalog(),
    }
