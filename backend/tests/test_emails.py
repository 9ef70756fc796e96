import smtplib

from bazar import email_service


def _create(helpers, token, **overrides):
    payload = {
        "recipient_email": "Buyer@Test.com",
        "subject": "Your ad was approved",
        "template": "ad_approved",
        "body_preview": "Good news!",
    }
    payload.update(overrides)
    resp = helpers["client"].post("/api/admin/emails", json=payload, headers=helpers["auth_header"](token))
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_create_email_item_requires_recipient(helpers):
    client = helpers["client"]
    admin = helpers["make_admin"](permissions=["search_emails"])
    resp = client.post(
        "/api/admin/emails",
        json={"recipient_email": "", "recipient_phone": " ", "subject": "Hi"},
        headers=helpers["auth_header"](admin),
    )
    assert resp.status_code == 400


def test_created_item_is_enqueued_with_created_event(helpers):
    admin = helpers["make_admin"](permissions=["search_emails"])
    item = _create(helpers, admin)
    assert item["recipient_email"] == "buyer@test.com"
    assert item["current_state"] == "enqueued"
    assert [e["event_type"] for e in item["events"]] == ["created"]
    assert item["events"][0]["metadata"] == {"source": "admin_ui"}


def test_approve_dispatches_and_records_sent_event(helpers, monkeypatch):
    client = helpers["client"]
    sent = []

    def _fake_send(to_email, subject, body_text, body_html=None, context=None):
        sent.append((to_email, subject))
        return True

    monkeypatch.setattr(email_service, "send_email_now", _fake_send)
    admin = helpers["make_admin"](permissions=["search_emails"])
    item = _create(helpers, admin)

    resp = client.post(f"/api/admin/emails/{item['id']}/approve", headers=helpers["auth_header"](admin))
    assert resp.status_code == 200
    assert resp.json()["current_state"] == "approved"
    assert sent == [("buyer@test.com", "Your ad was approved")]

    helpers["db"].expire_all()
    detail = client.get(f"/api/admin/emails/{item['id']}", headers=helpers["auth_header"](admin)).json()
    assert [e["event_type"] for e in detail["events"]] == ["created", "approved", "sent"]


def test_approve_without_smtp_keeps_item_unsent(helpers):
    client = helpers["client"]
    admin = helpers["make_admin"](permissions=["search_emails"])
    item = _create(helpers, admin)

    resp = client.post(f"/api/admin/emails/{item['id']}/approve", headers=helpers["auth_header"](admin))
    assert resp.status_code == 200

    helpers["db"].expire_all()
    detail = client.get(f"/api/admin/emails/{item['id']}", headers=helpers["auth_header"](admin)).json()
    assert [e["event_type"] for e in detail["events"]] == ["created", "approved"]


def test_reject_stores_note_in_event_metadata(helpers):
    client = helpers["client"]
    admin = helpers["make_admin"](permissions=["search_emails"])
    item = _create(helpers, admin)

    resp = client.post(
        f"/api/admin/emails/{item['id']}/reject",
        json={"note": "  Wrong template "},
        headers=helpers["auth_header"](admin),
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["current_state"] == "rejected"
    assert body["events"][-1]["event_type"] == "rejected"
    assert body["events"][-1]["metadata"] == {"note": "Wrong template"}


def test_mark_sent_appends_event_without_state_change(helpers):
    client = helpers["client"]
    admin = helpers["make_admin"](permissions=["search_emails"])
    item = _create(helpers, admin)
    resp = client.post(f"/api/admin/emails/{item['id']}/sent", headers=helpers["auth_header"](admin))
    assert resp.status_code == 200
    assert resp.json()["current_state"] == "enqueued"
    assert resp.json()["events"][-1]["event_type"] == "sent"


def test_search_emails_by_state_recipient_and_event(helpers):
    client = helpers["client"]
    admin = helpers["make_admin"](permissions=["search_emails"])
    admin_id = helpers["user_id"]("admin@test.com")
    first = _create(helpers, admin, recipient_email="alpha@test.com")
    second = _create(helpers, admin, recipient_email="beta@test.com")
    third = _create(helpers, admin, recipient_email=None, recipient_phone="01812345678")
    client.post(
        f"/api/admin/emails/{second['id']}/reject", json={"note": "spam"}, headers=helpers["auth_header"](admin)
    )

    enqueued = client.get(
        "/api/admin/emails", params={"states": ["enqueued"]}, headers=helpers["auth_header"](admin)
    ).json()
    assert {item["id"] for item in enqueued["items"]} == {first["id"], third["id"]}

    everything = client.get(
        "/api/admin/emails",
        params={"states": ["enqueued", "approved", "rejected"]},
        headers=helpers["auth_header"](admin),
    ).json()
    assert everything["total"] == 3

    by_recipient = client.get(
        "/api/admin/emails", params={"q": "alpha"}, headers=helpers["auth_header"](admin)
    ).json()
    assert [item["id"] for item in by_recipient["items"]] == [first["id"]]

    by_phone = client.get(
        "/api/admin/emails", params={"q": "018123"}, headers=helpers["auth_header"](admin)
    ).json()
    assert [item["id"] for item in by_phone["items"]] == [third["id"]]

    rejected_by_admin = client.get(
        "/api/admin/emails",
        params={"event_type": "rejected", "admin_user_id": admin_id},
        headers=helpers["auth_header"](admin),
    ).json()
    assert [item["id"] for item in rejected_by_admin["items"]] == [second["id"]]


def test_unknown_email_item_returns_404(helpers):
    client = helpers["client"]
    admin = helpers["make_admin"](permissions=["search_emails"])
    resp = client.get("/api/admin/emails/missing", headers=helpers["auth_header"](admin))
    assert resp.status_code == 404


def test_send_email_now_retries_transient_smtp_failures(monkeypatch):
    monkeypatch.setattr(email_service.settings, "email_enabled", True)
    monkeypatch.setattr(email_service.settings, "smtp_host", "smtp.bazar.test")
    monkeypatch.setattr(email_service.settings, "smtp_sender", "noreply@bazar.test")
    monkeypatch.setattr(email_service.time, "sleep", lambda _seconds: None)
    attempts = []

    def _flaky_deliver(message):
        attempts.append(message["To"])
        if len(attempts) < 2:
            raise smtplib.SMTPServerDisconnected("connection dropped")

    monkeypatch.setattr(email_service, "_deliver", _flaky_deliver)
    assert email_service.send_email_now("buyer@test.com", "Hello", "Body") is True
    assert attempts == ["buyer@test.com", "buyer@test.com"]

    def _down(message):
        raise OSError("unreachable")

    monkeypatch.setattr(email_service, "_deliver", _down)
    assert email_service.send_email_now("buyer@test.com", "Hello", "Body") is False
