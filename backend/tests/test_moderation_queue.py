from datetime import datetime, timedelta, timezone

from bazar import catalog, models, moderation, schemas


def _actions(db, ad_id):
    rows = (
        db.query(models.AdAuditLog.action)
        .filter(models.AdAuditLog.ad_id == ad_id)
        .order_by(models.AdAuditLog.created_at.asc())
        .all()
    )
    return [row[0] for row in rows]


def _seed_two_ads(helpers):
    seller = helpers["register_user"]("seller@test.com")
    first = helpers["make_ad"](seller, title="First listing")
    second = helpers["make_ad"](seller, title="Second listing")
    return seller, first, second


def test_first_ad_routes_to_member_queue_and_later_ads_to_general(helpers):
    client = helpers["client"]
    _, first, second = _seed_two_ads(helpers)
    assert first["first_time_poster"] is True
    assert second["first_time_poster"] is False
    admin = helpers["make_admin"](permissions=["review_ads"])

    member = client.get("/api/admin/review/member", headers=helpers["auth_header"](admin))
    assert member.status_code == 200
    body = member.json()
    assert body["item"]["ad"]["id"] == first["id"]
    assert body["counts"] == {"general": 1, "member": 1, "verification": 0, "edited": 0}
    assert body["item"]["review_url"] == f"/admin/ads/member?adId={first['id']}"

    general = client.get("/api/admin/review/general", headers=helpers["auth_header"](admin)).json()
    assert general["item"]["ad"]["id"] == second["id"]
    assert general["item"]["ad_form"]["title"] == "Second listing"


def test_general_queue_serves_oldest_first(helpers):
    client = helpers["client"]
    seller = helpers["register_user"]("seller@test.com")
    helpers["make_ad"](seller, title="Opener")
    newer = helpers["make_ad"](seller, title="Newer")
    older = helpers["make_ad"](seller, title="Older")
    helpers["age_ad"](newer["id"], minutes=5)
    helpers["age_ad"](older["id"], minutes=60)
    admin = helpers["make_admin"](permissions=["review_ads"])

    body = client.get("/api/admin/review/general", headers=helpers["auth_header"](admin)).json()
    assert body["item"]["ad"]["id"] == older["id"]


def test_member_queue_serves_oldest_first(helpers):
    client = helpers["client"]
    newer = helpers["make_ad"](helpers["register_user"]("newer@test.com"), title="Newer opener")
    older = helpers["make_ad"](helpers["register_user"]("older@test.com"), title="Older opener")
    helpers["age_ad"](newer["id"], minutes=5)
    helpers["age_ad"](older["id"], minutes=60)
    admin = helpers["make_admin"](permissions=["review_ads"])

    body = client.get("/api/admin/review/member", headers=helpers["auth_header"](admin)).json()
    assert body["item"]["ad"]["id"] == older["id"]


def test_verification_queue_serves_oldest_first(helpers):
    client = helpers["client"]
    db = helpers["db"]
    _, newer, older = _seed_two_ads(helpers)
    for ad_id in (newer["id"], older["id"]):
        stored = db.query(models.Ad).filter(models.Ad.id == ad_id).one()
        stored.status = "approved"
        stored.needs_verification = True
    db.commit()
    helpers["age_ad"](newer["id"], minutes=5)
    helpers["age_ad"](older["id"], minutes=60)
    admin = helpers["make_admin"](permissions=["review_ads"])

    body = client.get("/api/admin/review/verification", headers=helpers["auth_header"](admin)).json()
    assert body["counts"]["verification"] == 2
    assert body["item"]["ad"]["id"] == older["id"]


def test_approve_advances_queue_and_records_status_change(helpers):
    client = helpers["client"]
    db = helpers["db"]
    _, _, ad = _seed_two_ads(helpers)
    admin = helpers["make_admin"](permissions=["review_ads"])

    resp = client.post(
        f"/api/admin/review/general/ads/{ad['id']}/approve",
        json={},
        headers=helpers["auth_header"](admin),
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["item"] is None
    assert body["notice"] == "Queue empty."
    assert body["reviewed_today"] == 1
    assert body["counts"]["general"] == 0

    stored = db.query(models.Ad).filter(models.Ad.id == ad["id"]).one()
    assert stored.status == "approved"
    assert stored.needs_verification is False
    assert stored.review_source == "admin"
    assert stored.last_reviewed_by == helpers["user_id"]("admin@test.com")
    assert "pending_to_approved" in _actions(db, ad["id"])


def test_approve_persists_moderator_form(helpers):
    client = helpers["client"]
    db = helpers["db"]
    _, _, ad = _seed_two_ads(helpers)
    admin = helpers["make_admin"](permissions=["review_ads"])
    form = client.get("/api/admin/review/general", headers=helpers["auth_header"](admin)).json()["item"]["ad_form"]
    form["title"] = "Second listing (cleaned)"
    form["product_types"] = [catalog.PRODUCT_URGENT_AD]

    resp = client.post(
        f"/api/admin/review/general/ads/{ad['id']}/approve",
        json={"ad_form": form},
        headers=helpers["auth_header"](admin),
    )
    assert resp.status_code == 200
    stored = db.query(models.Ad).filter(models.Ad.id == ad["id"]).one()
    assert stored.title == "Second listing (cleaned)"
    assert stored.promotion_type == "urgent"
    assert stored.promotion_expires_at is not None
    assert "promoted" in _actions(db, ad["id"])


def test_reject_requires_known_reason(helpers):
    client = helpers["client"]
    _, _, ad = _seed_two_ads(helpers)
    admin = helpers["make_admin"](permissions=["review_ads"])

    missing = client.post(
        f"/api/admin/review/general/ads/{ad['id']}/reject",
        json={"reasons": []},
        headers=helpers["auth_header"](admin),
    )
    assert missing.status_code == 400

    unknown = client.post(
        f"/api/admin/review/general/ads/{ad['id']}/reject",
        json={"reasons": ["NotAReason"]},
        headers=helpers["auth_header"](admin),
    )
    assert unknown.status_code == 400


def test_reject_links_duplicate_by_public_url(helpers):
    client = helpers["client"]
    db = helpers["db"]
    _, first, second = _seed_two_ads(helpers)
    admin = helpers["make_admin"](permissions=["review_ads"])

    resp = client.post(
        f"/api/admin/review/general/ads/{second['id']}/reject",
        json={
            "reasons": [catalog.DUPLICATE_REASON, "IndividualAdRejectionReason_FRAUD"],
            "message": "  Same bike posted twice ",
            "duplicate_of": f"https://bazar.example/ad/first-listing-{first['id']}",
        },
        headers=helpers["auth_header"](admin),
    )
    assert resp.status_code == 200
    stored = db.query(models.Ad).filter(models.Ad.id == second["id"]).one()
    assert stored.status == "rejected"
    assert stored.rejection_reason == catalog.DUPLICATE_REASON
    assert stored.rejection_reasons == [catalog.DUPLICATE_REASON, "IndividualAdRejectionReason_FRAUD"]
    assert stored.rejection_message == "Same bike posted twice"
    assert stored.duplicate_of_ad_id == first["id"]
    assert "pending_to_rejected" in _actions(db, second["id"])


def test_reject_ignores_duplicate_reference_to_itself(helpers):
    client = helpers["client"]
    db = helpers["db"]
    _, _, second = _seed_two_ads(helpers)
    admin = helpers["make_admin"](permissions=["review_ads"])

    resp = client.post(
        f"/api/admin/review/general/ads/{second['id']}/reject",
        json={
            "reasons": [catalog.DUPLICATE_REASON],
            "duplicate_of": f"https://bazar.example/ad/second-listing-{second['id']}",
        },
        headers=helpers["auth_header"](admin),
    )
    assert resp.status_code == 200
    stored = db.query(models.Ad).filter(models.Ad.id == second["id"]).one()
    assert stored.status == "rejected"
    assert stored.duplicate_of_ad_id is None


def test_reject_with_unknown_duplicate_slug_returns_notice(helpers):
    client = helpers["client"]
    db = helpers["db"]
    _, _, second = _seed_two_ads(helpers)
    admin = helpers["make_admin"](permissions=["review_ads"])

    resp = client.post(
        f"/api/admin/review/general/ads/{second['id']}/reject",
        json={"reasons": [catalog.DUPLICATE_REASON], "duplicate_of": "no-such-listing"},
        headers=helpers["auth_header"](admin),
    )
    assert resp.status_code == 200
    assert resp.json()["notice"].startswith("Duplicate not found")
    stored = db.query(models.Ad).filter(models.Ad.id == second["id"]).one()
    assert stored.status == "rejected"
    assert stored.duplicate_of_ad_id is None


def test_lookup_by_url_bypasses_queue_order(helpers):
    client = helpers["client"]
    _, first, second = _seed_two_ads(helpers)
    admin = helpers["make_admin"](permissions=["review_ads"])

    by_url = client.get(
        "/api/admin/review/general",
        params={"q": f"https://bazar.example/ad/first-listing-{first['id']}"},
        headers=helpers["auth_header"](admin),
    ).json()
    assert by_url["item"]["ad"]["id"] == first["id"]

    by_alias = client.get(
        "/api/admin/review/general",
        params={"adId": second["id"]},
        headers=helpers["auth_header"](admin),
    ).json()
    assert by_alias["item"]["ad"]["id"] == second["id"]

    by_slug = client.get(
        "/api/admin/review/general",
        params={"q": "second-listing"},
        headers=helpers["auth_header"](admin),
    ).json()
    assert by_slug["item"]["ad"]["id"] == second["id"]

    missing = client.get(
        "/api/admin/review/general",
        params={"q": "does-not-exist"},
        headers=helpers["auth_header"](admin),
    ).json()
    assert missing["item"] is None
    assert missing["notice"]


def test_save_edits_updates_ad_and_profile_without_changing_status(helpers):
    client = helpers["client"]
    db = helpers["db"]
    _, _, ad = _seed_two_ads(helpers)
    admin = helpers["make_admin"](permissions=["review_ads"])
    item = client.get("/api/admin/review/general", headers=helpers["auth_header"](admin)).json()["item"]
    ad_form = item["ad_form"]
    ad_form["price"] = ""
    ad_form["features"] = [catalog.FEATURE_NO_EXPIRATION]
    profile_form = item["profile_form"]
    profile_form["phone_verified"] = True
    profile_form["seller_type"] = "business"

    resp = client.post(
        f"/api/admin/review/general/ads/{ad['id']}/save",
        json={"ad_form": ad_form, "profile_form": profile_form},
        headers=helpers["auth_header"](admin),
    )
    assert resp.status_code == 200
    assert resp.json()["item"]["ad"]["id"] == ad["id"]

    stored = db.query(models.Ad).filter(models.Ad.id == ad["id"]).one()
    assert stored.status == "pending"
    assert stored.price == 0.0
    assert stored.expires_at is None
    profile = db.query(models.Profile).filter(models.Profile.user_id == stored.user_id).one()
    assert profile.phone_verified is True
    assert profile.phone_verified_at is not None
    assert profile.seller_type == "business"


def test_save_edits_rejects_blank_title(helpers):
    client = helpers["client"]
    _, _, ad = _seed_two_ads(helpers)
    admin = helpers["make_admin"](permissions=["review_ads"])
    ad_form = client.get("/api/admin/review/general", headers=helpers["auth_header"](admin)).json()["item"]["ad_form"]
    ad_form["title"] = "   "

    resp = client.post(
        f"/api/admin/review/general/ads/{ad['id']}/save",
        json={"ad_form": ad_form},
        headers=helpers["auth_header"](admin),
    )
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "http_400"


def test_edited_queue_approve_applies_requested_values(helpers):
    client = helpers["client"]
    db = helpers["db"]
    seller, _, ad = _seed_two_ads(helpers)
    submit = client.post(
        f"/api/ads/{ad['id']}/edit-requests",
        json={"changes": {"title": "Second listing v2", "price": 99}},
        headers=helpers["auth_header"](seller),
    )
    assert submit.status_code == 201
    assert submit.json()["old_values"] == {"title": "Second listing", "price": 120.0}

    duplicate = client.post(
        f"/api/ads/{ad['id']}/edit-requests",
        json={"changes": {"title": "Another"}},
        headers=helpers["auth_header"](seller),
    )
    assert duplicate.status_code == 409

    admin = helpers["make_admin"](permissions=["review_ads"])
    queue = client.get("/api/admin/review/edited", headers=helpers["auth_header"](admin)).json()
    assert queue["counts"]["edited"] == 1
    item = queue["item"]
    edit_id = item["edit_request"]["id"]
    assert item["ad_form"]["title"] == "Second listing v2"
    assert {row["key"] for row in item["diff"]["rows"]} == {"title", "price"}
    assert item["review_url"] == f"/admin/ads/edited?editId={edit_id}"

    approve = client.post(f"/api/admin/edit-requests/{edit_id}/approve", json={}, headers=helpers["auth_header"](admin))
    assert approve.status_code == 200
    assert approve.json()["item"] is None

    stored = db.query(models.Ad).filter(models.Ad.id == ad["id"]).one()
    assert stored.title == "Second listing v2"
    assert stored.price == 99.0
    request = db.query(models.AdEditRequest).filter(models.AdEditRequest.id == edit_id).one()
    assert request.status == "approved"
    assert request.reviewed_by == helpers["user_id"]("admin@test.com")

    again = client.post(f"/api/admin/edit-requests/{edit_id}/approve", json={}, headers=helpers["auth_header"](admin))
    assert again.status_code == 409


def test_edited_queue_reject_keeps_ad_untouched(helpers):
    client = helpers["client"]
    db = helpers["db"]
    seller, _, ad = _seed_two_ads(helpers)
    edit = client.post(
        f"/api/ads/{ad['id']}/edit-requests",
        json={"changes": {"title": "Spam title"}},
        headers=helpers["auth_header"](seller),
    ).json()
    admin = helpers["make_admin"](permissions=["review_ads"])

    resp = client.post(
        f"/api/admin/edit-requests/{edit['id']}/reject",
        json={"message": "Title not allowed"},
        headers=helpers["auth_header"](admin),
    )
    assert resp.status_code == 200
    stored = db.query(models.Ad).filter(models.Ad.id == ad["id"]).one()
    assert stored.title == "Second listing"
    request = db.query(models.AdEditRequest).filter(models.AdEditRequest.id == edit["id"]).one()
    assert request.status == "rejected"
    assert request.review_message == "Title not allowed"


def test_edited_approve_applies_fields_outside_the_review_form(helpers):
    client = helpers["client"]
    db = helpers["db"]
    seller, _, ad = _seed_two_ads(helpers)
    edit = client.post(
        f"/api/ads/{ad['id']}/edit-requests",
        json={"changes": {"condition": "used", "upazila": " Mirpur ", "price": 80}},
        headers=helpers["auth_header"](seller),
    ).json()
    admin = helpers["make_admin"](permissions=["review_ads"])

    resp = client.post(f"/api/admin/edit-requests/{edit['id']}/approve", json={}, headers=helpers["auth_header"](admin))
    assert resp.status_code == 200
    stored = db.query(models.Ad).filter(models.Ad.id == ad["id"]).one()
    assert stored.condition == "used"
    assert stored.upazila == "Mirpur"
    assert stored.price == 80.0


def test_edited_lookup_by_ad_id_finds_pending_request(helpers):
    client = helpers["client"]
    seller, _, ad = _seed_two_ads(helpers)
    edit = client.post(
        f"/api/ads/{ad['id']}/edit-requests",
        json={"changes": {"area": "Gulshan"}},
        headers=helpers["auth_header"](seller),
    ).json()
    admin = helpers["make_admin"](permissions=["review_ads"])

    body = client.get(
        "/api/admin/review/edited",
        params={"q": ad["id"]},
        headers=helpers["auth_header"](admin),
    ).json()
    assert body["item"]["edit_request"]["id"] == edit["id"]


def test_edit_request_rejects_unknown_fields_and_foreign_owner(helpers):
    client = helpers["client"]
    _, _, ad = _seed_two_ads(helpers)
    other = helpers["register_user"]("other@test.com")

    forbidden = client.post(
        f"/api/ads/{ad['id']}/edit-requests",
        json={"changes": {"title": "Mine now"}},
        headers=helpers["auth_header"](other),
    )
    assert forbidden.status_code == 403

    seller = helpers["login"]("seller@test.com")
    bad_field = client.post(
        f"/api/ads/{ad['id']}/edit-requests",
        json={"changes": {"status": "approved"}},
        headers=helpers["auth_header"](seller),
    )
    assert bad_field.status_code == 422


def test_review_actions_on_edited_queue_path_are_rejected(helpers):
    client = helpers["client"]
    _, _, ad = _seed_two_ads(helpers)
    admin = helpers["make_admin"](permissions=["review_ads"])
    resp = client.post(
        f"/api/admin/review/edited/ads/{ad['id']}/approve",
        json={},
        headers=helpers["auth_header"](admin),
    )
    assert resp.status_code == 400


def test_edited_queue_serves_oldest_request_first(helpers):
    client = helpers["client"]
    db = helpers["db"]
    seller, first, second = _seed_two_ads(helpers)
    requests = {}
    for ad, title in ((first, "First listing v2"), (second, "Second listing v2")):
        resp = client.post(
            f"/api/ads/{ad['id']}/edit-requests",
            json={"changes": {"title": title}},
            headers=helpers["auth_header"](seller),
        )
        assert resp.status_code == 201
        requests[ad["id"]] = resp.json()["id"]
    now = datetime.now(timezone.utc)
    for edit_id, minutes in ((requests[first["id"]], 5), (requests[second["id"]], 60)):
        request = db.query(models.AdEditRequest).filter(models.AdEditRequest.id == edit_id).one()
        request.created_at = now - timedelta(minutes=minutes)
    db.commit()
    admin = helpers["make_admin"](permissions=["review_ads"])

    body = client.get("/api/admin/review/edited", headers=helpers["auth_header"](admin)).json()
    assert body["counts"]["edited"] == 2
    assert body["item"]["edit_request"]["id"] == requests[second["id"]]


def test_edit_request_rejects_values_of_the_wrong_type(helpers):
    client = helpers["client"]
    db = helpers["db"]
    seller, _, ad = _seed_two_ads(helpers)

    for changes in (
        {"condition": {"nested": 1}},
        {"price": "cheap"},
        {"title": None},
        {"custom_fields": ["not", "a", "mapping"]},
    ):
        resp = client.post(
            f"/api/ads/{ad['id']}/edit-requests",
            json={"changes": changes},
            headers=helpers["auth_header"](seller),
        )
        assert resp.status_code == 422, changes
    assert db.query(models.AdEditRequest).count() == 0

    empty = client.post(
        f"/api/ads/{ad['id']}/edit-requests",
        json={"changes": {}},
        headers=helpers["auth_header"](seller),
    )
    assert empty.status_code == 400


def test_edit_request_keys_match_editable_fields():
    assert set(schemas.EditRequestChanges.model_fields) == set(moderation.EDITABLE_AD_KEYS)


def test_edited_diff_ignores_unchanged_integer_price(helpers):
    client = helpers["client"]
    seller, _, ad = _seed_two_ads(helpers)
    submit = client.post(
        f"/api/ads/{ad['id']}/edit-requests",
        json={"changes": {"title": "Second listing v2", "price": 120}},
        headers=helpers["auth_header"](seller),
    )
    assert submit.status_code == 201
    assert submit.json()["new_values"]["price"] == 120.0
    admin = helpers["make_admin"](permissions=["review_ads"])

    item = client.get("/api/admin/review/edited", headers=helpers["auth_header"](admin)).json()["item"]
    assert [row["key"] for row in item["diff"]["rows"]] == ["title"]


def test_diff_treats_equal_int_and_float_as_unchanged():
    diff = moderation.diff_edit_values({"price": 120.0, "discount": 5.5}, {"price": 120, "discount": 5})
    assert [row.key for row in diff.rows] == ["discount"]
    assert diff.more == 0
