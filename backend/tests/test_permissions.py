from bazar import models


def test_admin_routes_require_auth(helpers):
    client = helpers["client"]
    resp = client.get("/api/admin/review/general")
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "http_401"


def test_admin_routes_reject_regular_users(helpers):
    client = helpers["client"]
    token = helpers["register_user"]("user@test.com")
    for path in ("/api/admin/stats", "/api/admin/review/general", "/api/admin/users", "/api/admin/emails"):
        resp = client.get(path, headers=helpers["auth_header"](token))
        assert resp.status_code == 403, path


def test_permission_rows_scope_admin_capabilities(helpers):
    client = helpers["client"]
    admin = helpers["make_admin"](permissions=["search_emails"])

    allowed = client.get("/api/admin/emails", headers=helpers["auth_header"](admin))
    assert allowed.status_code == 200

    denied = client.get("/api/admin/review/general", headers=helpers["auth_header"](admin))
    assert denied.status_code == 403
    assert denied.json()["detail"] == "You do not have permission to perform this action."


def test_permission_aliases_grant_capability(helpers):
    client = helpers["client"]
    admin = helpers["make_admin"](permissions=["review_items", "search_pending_ads"])
    assert client.get("/api/admin/review/general", headers=helpers["auth_header"](admin)).status_code == 200
    assert client.get("/api/admin/ads/search", headers=helpers["auth_header"](admin)).status_code == 200
    assert client.get("/api/admin/users", headers=helpers["auth_header"](admin)).status_code == 403


def test_admin_without_permission_rows_has_full_access(helpers):
    client = helpers["client"]
    admin = helpers["make_admin"]()
    for path in ("/api/admin/review/edited", "/api/admin/users", "/api/admin/admins", "/api/admin/reports"):
        assert client.get(path, headers=helpers["auth_header"](admin)).status_code == 200, path


def test_me_reports_admin_flag_and_permissions(helpers):
    client = helpers["client"]
    admin = helpers["make_admin"](permissions=["review_ads", "manage_users"])
    me = client.get("/me", headers=helpers["auth_header"](admin)).json()
    assert me["is_admin"] is True
    assert me["permissions"] == ["manage_users", "review_ads"]

    user = helpers["register_user"]("user@test.com")
    me_user = client.get("/me", headers=helpers["auth_header"](user)).json()
    assert me_user["is_admin"] is False
    assert me_user["permissions"] == []


def test_grant_update_and_deactivate_admin(helpers):
    client = helpers["client"]
    db = helpers["db"]
    root = helpers["make_admin"](permissions=["manage_admins"])
    helpers["register_user"]("mod@test.com")
    mod_id = helpers["user_id"]("mod@test.com")

    unknown = client.post(
        "/api/admin/admins",
        json={"email": "mod@test.com", "permissions": ["launch_rockets"]},
        headers=helpers["auth_header"](root),
    )
    assert unknown.status_code == 400

    granted = client.post(
        "/api/admin/admins",
        json={"email": "mod@test.com", "permissions": ["review_ads"]},
        headers=helpers["auth_header"](root),
    )
    assert granted.status_code == 201
    assert granted.json()["permissions"] == ["review_ads"]

    mod_token = helpers["login"]("mod@test.com")
    assert client.get("/api/admin/review/general", headers=helpers["auth_header"](mod_token)).status_code == 200

    updated = client.put(
        f"/api/admin/admins/{mod_id}/permissions",
        json={"permissions": ["search_emails", "manage_users"]},
        headers=helpers["auth_header"](root),
    )
    assert updated.json()["permissions"] == ["manage_users", "search_emails"]
    assert client.get("/api/admin/review/general", headers=helpers["auth_header"](mod_token)).status_code == 403

    deactivated = client.patch(
        f"/api/admin/admins/{mod_id}",
        json={"is_active": False},
        headers=helpers["auth_header"](root),
    )
    assert deactivated.json()["is_active"] is False
    assert client.get("/api/admin/users", headers=helpers["auth_header"](mod_token)).status_code == 403

    listing = client.get("/api/admin/admins", headers=helpers["auth_header"](root)).json()
    emails = {item["email"]: item["is_active"] for item in listing["items"]}
    assert emails == {"admin@test.com": True, "mod@test.com": False}
    rows = db.query(models.UserPermission).filter(models.UserPermission.user_id == mod_id).all()
    assert {row.granted_by for row in rows} == {helpers["user_id"]("admin@test.com")}


def test_admin_cannot_deactivate_self(helpers):
    client = helpers["client"]
    root = helpers["make_admin"](permissions=["manage_admins"])
    resp = client.patch(
        f"/api/admin/admins/{helpers['user_id']('admin@test.com')}",
        json={"is_active": False},
        headers=helpers["auth_header"](root),
    )
    assert resp.status_code == 400


def test_admin_emails_setting_grants_admin(helpers, monkeypatch):
    client = helpers["client"]
    from bazar.config import settings

    monkeypatch.setattr(settings, "admin_emails", ["boss@test.com"])
    token = helpers["register_user"]("boss@test.com")
    assert client.get("/api/admin/stats", headers=helpers["auth_header"](token)).status_code == 200


def test_refresh_token_issues_new_access_token(helpers):
    client = helpers["client"]
    resp = client.post(
        "/register",
        json={"email": "user@test.com", "password": "password123", "confirm_password": "password123"},
    )
    refresh = resp.json()["refresh_token"]

    refreshed = client.post("/refresh", json={"refresh_token": refresh})
    assert refreshed.status_code == 200
    assert client.get("/me", headers=helpers["auth_header"](refreshed.json()["access_token"])).status_code == 200

    wrong_type = client.post("/refresh", json={"refresh_token": refreshed.json()["access_token"]})
    assert wrong_type.status_code == 401
