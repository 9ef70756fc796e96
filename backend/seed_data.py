#!/usr/bin/env python3
"""
Seed script for the Bazar database.
Creates sample sellers, admins, categories, ads in every review queue, and a few edit requests,
reports and email items for local development of the moderation back office.

Usage:
    cd backend
    python seed_data.py
"""

import random
from datetime import datetime, timedelta, timezone

from bazar import ad_rules, catalog
from bazar.auth import get_password_hash
from bazar.config import settings
from bazar.database import Base, SessionLocal
from bazar.models import (
    Ad,
    AdAuditLog,
    AdEditRequest,
    AppRole,
    Category,
    EmailEvent,
    EmailItem,
    Profile,
    Report,
    RoleAssignment,
    Subcategory,
    User,
    UserPermission,
)

CATEGORIES = {
    "Vehicles": ["Cars", "Motorbikes", "Bicycles"],
    "Electronics": ["Mobile Phones", "Laptops", "Cameras"],
    "Home & Living": ["Furniture", "Kitchen", "Decor"],
    "Property": ["Apartments", "Land", "Commercial"],
}

SELLERS = [
    {"email": "rahim@bazar.test", "password": "seller123", "full_name": "Rahim Uddin", "phone": "01712345678"},
    {"email": "karima@bazar.test", "password": "seller123", "full_name": "Karima Akter", "phone": "01812345678"},
    {"email": "tanvir@bazar.test", "password": "seller123", "full_name": "Tanvir Hasan", "phone": "01912345678"},
    {"email": "nusrat@bazar.test", "password": "seller123", "full_name": "Nusrat Jahan", "phone": "01612345678"},
]

ADMINS = [
    {"email": "admin@bazar.test", "password": "admin12345", "full_name": "Head Moderator", "permissions": []},
    {
        "email": "reviewer@bazar.test",
        "password": "admin12345",
        "full_name": "Queue Reviewer",
        "permissions": ["review_ads", "search_ads"],
    },
]

SAMPLE_ADS = [
    ("Toyota Axio 2016, single owner", "Vehicles", "Cars", 1850000, "negotiable"),
    ("Yamaha FZS V3 in mint condition", "Vehicles", "Motorbikes", 215000, "fixed"),
    ("Phoenix city bicycle", "Vehicles", "Bicycles", 9500, "fixed"),
    ("iPhone 13 128GB, boxed", "Electronics", "Mobile Phones", 78000, "negotiable"),
    ("Lenovo ThinkPad T480", "Electronics", "Laptops", 42000, "fixed"),
    ("Canon EOS 200D with kit lens", "Electronics", "Cameras", 51000, "negotiable"),
    ("Teak wood dining table, 6 chairs", "Home & Living", "Furniture", 65000, "negotiable"),
    ("Non-stick cookware set", "Home & Living", "Kitchen", 3200, "fixed"),
    ("Wall clock, vintage style", "Home & Living", "Decor", 1500, "fixed"),
    ("3 bed apartment for rent in Mirpur", "Property", "Apartments", 28000, "fixed"),
    ("5 katha plot near Purbachal", "Property", "Land", 0, "free"),
    ("Shop space in Gulshan 1", "Property", "Commercial", 90000, "negotiable"),
]

EMAIL_SUBJECTS = [
    ("ad_approved", "Your ad is now live"),
    ("ad_rejected", "Your ad needs changes"),
    ("phone_verification", "Verify your phone number"),
]


def _clear(session) -> None:
    for table in reversed(Base.metadata.sorted_tables):
        session.execute(table.delete())
    session.commit()


def seed_database():
    """Seed the database with sample data."""
    print("Starting database seeding...")

    session = SessionLocal()
    try:
        if session.query(User.id).first() is not None:
            print("Database already has data. Clearing existing data...")
            _clear(session)

        now = datetime.now(timezone.utc)

        print("Creating categories...")
        subcategories = {}
        for position, (name, children) in enumerate(CATEGORIES.items()):
            category = Category(name=name, slug=ad_rules.generate_slug(name), sort_order=position)
            for child in children:
                sub = Subcategory(name=child, slug=ad_rules.generate_slug(child))
                category.subcategories.append(sub)
                subcategories[(name, child)] = sub
            session.add(category)
        session.flush()

        print("Creating sellers...")
        sellers = []
        for seller_data in SELLERS:
            division = random.choice(list(catalog.DISTRICTS_BY_DIVISION))
            seller = User(email=seller_data["email"], password_hash=get_password_hash(seller_data["password"]))
            seller.profile = Profile(
                full_name=seller_data["full_name"],
                email=seller_data["email"],
                phone_number=seller_data["phone"],
                phone_verified=random.random() > 0.5,
                division=division,
                district=random.choice(catalog.DISTRICTS_BY_DIVISION[division]),
            )
            session.add(seller)
            sellers.append(seller)
        session.flush()

        print("Creating admins...")
        admins = []
        for admin_data in ADMINS:
            admin = User(email=admin_data["email"], password_hash=get_password_hash(admin_data["password"]))
            admin.profile = Profile(full_name=admin_data["full_name"], email=admin_data["email"])
            admin.roles.append(RoleAssignment(role=AppRole.admin, is_active=True))
            for permission in admin_data["permissions"]:
                admin.permissions.append(UserPermission(permission=permission))
            session.add(admin)
            admins.append(admin)
        session.flush()

        print("Creating ads...")
        ads = []
        posted_by = set()
        for index, (title, category_name, sub_name, price, price_type) in enumerate(SAMPLE_ADS):
            seller = sellers[index % len(sellers)]
            sub = subcategories[(category_name, sub_name)]
            created_at = now - timedelta(hours=len(SAMPLE_ADS) - index)
            product_types = random.choice([[], [], [catalog.PRODUCT_TOP_AD], [catalog.PRODUCT_URGENT_AD]])
            is_featured, promotion_type, promotion_expires_at = ad_rules.derive_legacy_promotion(product_types, now)
            roll = random.random()
            status = "pending" if roll < 0.5 else ("approved" if roll < 0.85 else "rejected")
            ad = Ad(
                user_id=seller.id,
                slug=ad_rules.generate_slug(title),
                title=title,
                description=f"{title}. Contact for details, serious buyers only.",
                category_id=sub.category_id,
                subcategory_id=sub.id,
                price=float(price),
                price_type=price_type,
                ad_type="for_rent" if "rent" in title.lower() else "for_sale",
                product_types=product_types,
                features=[],
                division=seller.profile.division,
                district=seller.profile.district,
                status=status,
                needs_verification=status == "approved" and random.random() > 0.5,
                first_time_poster=seller.id not in posted_by,
                rejection_reason="IndividualAdRejectionReason_WRONG_CATEGORY" if status == "rejected" else None,
                rejection_reasons=["IndividualAdRejectionReason_WRONG_CATEGORY"] if status == "rejected" else [],
                is_featured=is_featured,
                promotion_type=promotion_type,
                promotion_expires_at=promotion_expires_at,
                expires_at=created_at + timedelta(days=settings.ad_expiry_days),
                created_at=created_at,
            )
            posted_by.add(seller.id)
            session.add(ad)
            ads.append(ad)
        session.flush()

        for ad in ads:
            session.add(AdAuditLog(ad_id=ad.id, action="created", actor_id=ad.user_id, created_at=ad.created_at))
            if ad.status != "pending":
                session.add(
                    AdAuditLog(ad_id=ad.id, action=f"pending_to_{ad.status}", actor_id=admins[0].id, created_at=now)
                )
        print(f"   Created {len(ads)} ads")

        print("Creating edit requests...")
        approved = [ad for ad in ads if ad.status == "approved"][:3]
        for ad in approved:
            session.add(
                AdEditRequest(
                    ad_id=ad.id,
                    user_id=ad.user_id,
                    old_values={"title": ad.title, "price": ad.price},
                    new_values={"title": f"{ad.title} (price drop)", "price": round(ad.price * 0.9, 2)},
                )
            )

        print("Creating reports...")
        for ad in random.sample(ads, 2):
            reporter = random.choice([s for s in sellers if s.id != ad.user_id])
            session.add(Report(ad_id=ad.id, user_id=reporter.id, reason="Price looks unrealistic."))

        print("Creating email items...")
        for seller in sellers:
            template, subject = random.choice(EMAIL_SUBJECTS)
            item = EmailItem(
                recipient_email=seller.email,
                recipient_phone=seller.profile.phone_number,
                subject=subject,
                template=template,
                body_preview=f"Hello {seller.profile.full_name}, {subject.lower()}.",
            )
            item.events.append(EmailEvent(event_type="created", meta={"source": "seed"}))
            session.add(item)

        session.commit()

        print("\nDatabase seeding completed successfully!")
        print("\nTest accounts:")
        print("   Sellers:")
        for s in SELLERS:
            print(f"      - {s['email']} / {s['password']}")
        print("   Admins:")
        for a in ADMINS:
            print(f"      - {a['email']} / {a['password']}")

    except Exception as e:
        session.rollback()
        print(f"\nError during seeding: {e}")
        raise
    finally:
        session.close()


if __name__ == "__main__":
    seed_database()
