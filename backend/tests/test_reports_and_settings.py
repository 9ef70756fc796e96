from bazar import models


def _enable_auto_moderation(helpers, token, **overrides):
    payload = {
        "is_enabled": True,
        "auto_approve_first_time_posters": True,
        "require_phone_verification": False,
        "min_description_length": 10,
        "blocked_keywords": "Replica, counterfeit ,replica",
    }
    payload.update(overrides)
    resp = helpers["client"].put(
        "/api/admin/moderation-settings", json=payload, headers=helpers["auth_header"](token)
    )
    assert resp.status_code == 200, resp.text
    return resp.json()


def test_moderation_settings_created_on_first_read(helpers):
    client = helpers["client"]
    admin = helpers["make_admin"](permissions=["manage_moderation_settings"])
    body = client.get("/api/admin/moderation-settings", headers=helpers["auth_header"](admin)).json()
    assert body["is_enabled"] is False
    assert body["min_description_length"] == 20
    assert body["blocked_keywords"] == []
    assert helpers["db"].query(models.AutoModerationSettings).count() == 1


def test_update_settings_normalizes_keywords(helpers):
    admin = helpers["make_admin"](permissions=["manage_moderation_settings"])
    body = _enable_auto_moderation(helpers, admin)
    assert body["blocked_keywords"] == ["replica", "counterfeit"]
    assert body["is_enabled"] is True


def test_auto_approved_ad_lands_in_verification_queue(helpers):
    client = helpers["client"]
    admin = helpers["make_admin"]()
    _enable_auto_moderation(helpers, admin)
    seller = helpers["register_user"]("seller@test.com")
    ad = helpers["make_ad"](seller)
    assert ad["status"] == "approved"
    assert ad["needs_verification"] is True
    assert ad["review_source"] == "auto"

    body = client.get("/api/admin/review/verification", headers=helpers["auth_header"](admin)).json()
    assert body["item"]["ad"]["id"] == ad["id"]
    assert body["counts"]["verification"] == 1

    approve = client.post(
        f"/api/admin/review/verification/ads/{ad['id']}/approve", json={}, headers=helpers["auth_header"](admin)
    )
    assert approve.json()["counts"]["verification"] == 0
    stored = helpers["db"].query(models.Ad).filter(models.Ad.id == ad["id"]).one()
    assert stored.needs_verification is False


def test_auto_moderation_holds_flagged_submissions(helpers):
    admin = helpers["make_admin"]()
    _enable_auto_moderation(helpers, admin, require_phone_verification=True)
    seller = helpers["register_user"]("seller@test.com")

    keyword = helpers["make_ad"](seller, title="Replica watch")
    assert keyword["status"] == "pending"

    short = helpers["make_ad"](seller, description="tiny")
    assert short["status"] == "pending"

    unverified = helpers["make_ad"](seller)
    assert unverified["status"] == "pending"
    assert unverified["needs_verification"] is False


def test_first_time_posters_held_unless_allowed(helpers):
    admin = helpers["make_admin"]()
    _enable_auto_moderation(helpers, admin, auto_approve_first_time_posters=False)
    seller = helpers["register_user"]("seller@test.com")
    first = helpers["make_ad"](seller)
    second = helpers["make_ad"](seller)
    assert first["status"] == "pending"
    assert first["first_time_poster"] is True
    assert second["status"] == "approved"


def test_blocked_seller_cannot_post(helpers):
    client = helpers["client"]
    seller = helpers["register_user"]("seller@test.com")
    profile = helpers["db"].query(models.Profile).filter(models.Profile.email == "seller@test.com").one()
    profile.is_blocked = True
    helpers["db"].commit()
    resp = client.post(
        "/api/ads",
        json={"title": "Anything", "price_type": "fixed"},
        headers=helpers["auth_header"](seller),
    )
    assert resp.status_code == 403


def test_report_flow_and_resolution(helpers):
    client = helpers["client"]
    seller = helpers["register_user"]("seller@test.com")
    ad = helpers["make_ad"](seller)
    reporter = helpers["register_user"]("reporter@test.com", full_name="Rita Reporter")
    admin = helpers["make_admin"](permissions=["manage_reports"])

    created = client.post(
        f"/api/ads/{ad['id']}/reports", json={"reason": "Looks like a scam"}, headers=helpers["auth_header"](reporter)
    )
    assert created.status_code == 201
    report = created.json()
    assert report["reporter_name"] == "Rita Reporter"
    assert report["ad"]["id"] == ad["id"]

    open_reports = client.get("/api/admin/reports", headers=helpers["auth_header"](admin)).json()
    assert [r["id"] for r in open_reports["items"]] == [report["id"]]

    resolved = client.post(
        f"/api/admin/reports/{report['id']}/resolve", headers=helpers["auth_header"](admin)
    ).json()
    assert resolved["is_resolved"] is True
    assert resolved["resolved_by"] == helpers["user_id"]("admin@test.com")

    assert client.get("/api/admin/reports", headers=helpers["auth_header"](admin)).json()["items"] == []
    history = client.get(
        "/api/admin/reports", params={"resolved": True}, headers=helpers["auth_header"](admin)
    ).json()
    assert len(history["items"]) == 1


def test_delete_reported_ad_removes_ad_and_keeps_report(helpers):
    client = helpers["client"]
    db = helpers["db"]
    seller = helpers["register_user"]("seller@test.com")
    ad = helpers["make_ad"](seller)
    reporter = helpers["register_user"]("reporter@test.com")
    client.post(f"/api/ads/{ad['id']}/favorite", headers=helpers["auth_header"](reporter))
    report = client.post(
        f"/api/ads/{ad['id']}/reports", json={"reason": "Prohibited item"}, headers=helpers["auth_header"](reporter)
    ).json()
    admin = helpers["make_admin"](permissions=["manage_reports"])

    resp = client.post(f"/api/admin/reports/{report['id']}/delete-ad", headers=helpers["auth_header"](admin))
    assert resp.status_code == 200
    body = resp.json()
    assert body["is_resolved"] is True
    assert body["ad_id"] is None
    assert body["ad"] is None

    assert db.query(models.Ad).filter(models.Ad.id == ad["id"]).count() == 0
    assert db.query(models.Favorite).filter(models.Favorite.ad_id == ad["id"]).count() == 0
    actions = [row.action for row in db.query(models.AdAuditLog).filter(models.AdAuditLog.ad_id == ad["id"]).all()]
    assert "deleted" in actions


def test_admin_stats_counts(helpers):
    client = helpers["client"]
    seller = helpers["register_user"]("seller@test.com")
    helpers["make_ad"](seller)
    helpers["make_ad"](seller)
    admin = helpers["make_admin"]()
    stats = client.get("/api/admin/stats", headers=helpers["auth_header"](admin)).json()
    assert stats["total_users"] == 2
    assert stats["pending_ads"] == 2
    assert stats["approved_ads"] == 0
    assert stats["unresolved_reports"] == 0
    assert stats["queue_counts"] == {"general": 1, "member": 1, "verification": 0, "edited": 0}
