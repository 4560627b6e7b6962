"""Tests for newsletter subscriptions, tracking and campaigns."""

import inspect

import pytest

import mailer
from conftest import auth
from database import create_document, now_utc
from routes.auth import forgot_password
from routes.newsletter import send_campaign, subscribe
from schemas import Newsletter


@pytest.fixture
def outbox(monkeypatch):
    sent = []

    def fake_send(to, subject, html, text=None):
        sent.append({"to": to, "subject": subject, "html": html})
        if to.startswith("bounce"):
            return {"success": False, "error": "rejected"}
        return {"success": True, "message_id": f"msg-{len(sent)}"}

    monkeypatch.setattr(mailer, "send_email", fake_send)
    return sent


@pytest.fixture
def subscribe_directly(db):
    def factory(email, is_active=True, **extra):
        subscriber = Newsletter(email=email, subscribed_at=now_utc(), is_active=is_active, **extra).model_dump()
        create_document(db, "newsletter", subscriber)
        return subscriber

    return factory


@pytest.fixture
def campaign(client, admin):
    body = {"title": "October digest", "subject": "This month on the blog", "content": "Hello readers"}
    return client.post("/api/admin/newsletter/campaigns", json=body, headers=auth(admin)).json()["campaign"]


class TestSubscribe:
    def test_subscribe_and_duplicate(self, client, db, outbox):
        response = client.post("/api/newsletter/subscribe", json={"email": "Reader@Example.com"})
        assert response.status_code == 201
        subscriber = db["newsletter"].find_one({})
        assert subscriber["email"] == "reader@example.com"
        assert outbox[0]["to"] == "reader@example.com"

        again = client.post("/api/newsletter/subscribe", json={"email": "reader@example.com"})
        assert again.status_code == 409

    def test_invalid_email(self, client):
        assert client.post("/api/newsletter/subscribe", json={}).json()["detail"] == "Email is required"
        invalid = client.post("/api/newsletter/subscribe", json={"email": "not-an-email"})
        assert invalid.json()["detail"] == "Please provide a valid email address"

    def test_reactivates(self, client, db, subscribe_directly):
        subscribe_directly("back@example.com", is_active=False)
        response = client.post("/api/newsletter/subscribe", json={"email": "back@example.com"})
        assert response.status_code == 201
        assert response.json()["message"].startswith("Welcome back")
        assert db["newsletter"].find_one({"email": "back@example.com"})["is_active"] is True

    def test_welcome_email_failure_does_not_fail_request(self, client):
        assert client.post("/api/newsletter/subscribe", json={"email": "quiet@example.com"}).status_code == 201

    def test_subscribe_is_rate_limited(self, client, outbox):
        for i in range(3):
            client.post("/api/newsletter/subscribe", json={"email": f"r{i}@example.com"})
        assert client.post("/api/newsletter/subscribe", json={"email": "r9@example.com"}).status_code == 429


class TestUnsubscribe:
    def test_unsubscribe(self, client, db, subscribe_directly):
        subscribe_directly("reader@example.com")
        response = client.post("/api/newsletter/unsubscribe", json={"email": "reader@example.com"})
        assert response.json()["success"] is True
        assert db["newsletter"].find_one({})["is_active"] is False

        again = client.post("/api/newsletter/unsubscribe", json={"email": "reader@example.com"})
        assert again.status_code == 400
        assert client.post("/api/newsletter/unsubscribe", json={"email": "who@example.com"}).status_code == 404
        assert client.post("/api/newsletter/unsubscribe", json={}).status_code == 400

    def test_unsubscribe_link(self, client, db, subscribe_directly, campaign):
        subscribe_directly("reader@example.com")
        url = f"/api/newsletter/unsubscribe?email=reader@example.com&campaign={campaign['id']}"

        response = client.get(url, follow_redirects=False)
        assert response.status_code == 302
        assert response.headers["location"] == "https://example.com/?newsletter=unsubscribed"
        stored = db["newslettercampaign"].find_one({})
        assert stored["analytics"]["unsubscribe_count"] == 1

        repeat = client.get(url, follow_redirects=False)
        assert repeat.headers["location"].endswith("newsletter=already-unsubscribed")
        missing = client.get("/api/newsletter/unsubscribe", follow_redirects=False)
        assert missing.headers["location"].endswith("error=missing-email")


class TestCampaigns:
    def test_create_and_list(self, client, admin, campaign):
        assert campaign["status"] == "draft"
        assert campaign["analytics"]["open_rate"] == 0
        listed = client.get("/api/admin/newsletter/campaigns", headers=auth(admin)).json()["campaigns"]
        assert [c["title"] for c in listed] == ["October digest"]

    def test_scheduled_status(self, client, admin):
        body = {"title": "Later", "subject": "Soon", "content": "x", "scheduled_for": "2030-01-01T09:00:00Z"}
        created = client.post("/api/admin/newsletter/campaigns", json=body, headers=auth(admin))
        assert created.status_code == 201
        assert created.json()["campaign"]["status"] == "scheduled"

    def test_update_and_delete(self, client, admin, campaign):
        url = f"/api/admin/newsletter/campaigns/{campaign['id']}"
        updated = client.put(url, json={"subject": "New subject"}, headers=auth(admin)).json()
        assert updated["campaign"]["subject"] == "New subject"
        assert client.delete(url, headers=auth(admin)).status_code == 200
        assert client.get(url, headers=auth(admin)).status_code == 404

    def test_sent_campaign_is_locked(self, client, db, admin, campaign):
        db["newslettercampaign"].update_one({}, {"$set": {"status": "sent"}})
        url = f"/api/admin/newsletter/campaigns/{campaign['id']}"
        assert client.put(url, json={"subject": "x"}, headers=auth(admin)).status_code == 400
        assert client.delete(url, headers=auth(admin)).status_code == 400
        sent_again = client.post(f"{url}/send", json={}, headers=auth(admin))
        assert sent_again.json()["detail"] == "Campaign has already been sent"

    def test_requires_admin(self, client, author):
        assert client.get("/api/admin/newsletter/campaigns", headers=auth(author)).status_code == 403


class TestSending:
    def send(self, client, admin, campaign, **body):
        return client.post(
            f"/api/admin/newsletter/campaigns/{campaign['id']}/send", json=body, headers=auth(admin)
        )

    def test_test_email(self, client, db, admin, campaign, outbox):
        response = self.send(client, admin, campaign, test_email="me@example.com")
        assert response.json()["message"] == "Test email sent to me@example.com"
        assert outbox[0]["subject"] == "[TEST] This month on the blog"
        assert db["newslettercampaign"].find_one({})["status"] == "draft"

    def test_test_email_without_mail_service(self, client, admin, campaign):
        assert self.send(client, admin, campaign, test_email="me@example.com").status_code == 502

    def test_no_recipients(self, client, db, admin, campaign, outbox):
        response = self.send(client, admin, campaign)
        assert response.status_code == 400
        assert response.json()["detail"] == "No active subscribers found for this campaign"
        assert db["newslettercampaign"].find_one({})["status"] == "failed"

    def test_send_to_subscribers(self, client, db, admin, campaign, outbox, subscribe_directly):
        subscribe_directly("one@example.com")
        subscribe_directly("bounce@example.com")
        subscribe_directly("gone@example.com", is_active=False)

        body = self.send(client, admin, campaign).json()
        assert body["message"] == "Campaign sent to 1 subscribers"
        assert body["results"]["failed"] == 1
        assert sorted(m["to"] for m in outbox) == ["bounce@example.com", "one@example.com"]
        assert "/api/newsletter/track/open/" in outbox[0]["html"]

        stored = db["newslettercampaign"].find_one({})
        assert stored["status"] == "sent"
        assert stored["analytics"]["sent_count"] == 1
        statuses = {e["email"]: e["status"] for e in stored["analytics"]["sent_emails"]}
        assert statuses == {"one@example.com": "sent", "bounce@example.com": "failed"}

    def test_render_error_marks_failed_and_allows_retry(
        self, client, db, admin, campaign, outbox, subscribe_directly, monkeypatch
    ):
        subscribe_directly("one@example.com")

        def broken_template(*args, **kwargs):
            raise RuntimeError("template exploded")

        with monkeypatch.context() as patch:
            patch.setattr(mailer, "newsletter_html", broken_template)
            response = self.send(client, admin, campaign)
        assert response.status_code == 500
        assert db["newslettercampaign"].find_one({})["status"] == "failed"

        assert self.send(client, admin, campaign).json()["message"] == "Campaign sent to 1 subscribers"
        assert db["newslettercampaign"].find_one({})["status"] == "sent"

    def test_mail_sending_handlers_run_in_threadpool(self):
        assert not inspect.iscoroutinefunction(send_campaign)
        assert not inspect.iscoroutinefunction(subscribe)
        assert not inspect.iscoroutinefunction(forgot_password)

    def test_custom_audience(self, client, admin, outbox, subscribe_directly):
        subscribe_directly("one@example.com")
        subscribe_directly("two@example.com")
        body = {"title": "VIP", "subject": "Hi", "content": "x", "target_audience": "custom",
                "target_emails": ["Two@example.com"]}
        created = client.post("/api/admin/newsletter/campaigns", json=body, headers=auth(admin)).json()["campaign"]
        self.send(client, admin, created)
        assert [m["to"] for m in outbox] == ["two@example.com"]


class TestTracking:
    @pytest.fixture
    def sent_campaign(self, client, admin, campaign, outbox, subscribe_directly):
        subscribe_directly("one@example.com")
        client.post(f"/api/admin/newsletter/campaigns/{campaign['id']}/send", json={}, headers=auth(admin))
        return campaign

    def test_open_pixel_counts_once(self, client, db, sent_campaign):
        url = f"/api/newsletter/track/open/{sent_campaign['id']}/one@example.com"
        response = client.get(url)
        assert response.headers["content-type"] == "image/gif"
        assert "no-cache" in response.headers["cache-control"]
        client.get(url)

        analytics = db["newslettercampaign"].find_one({})["analytics"]
        assert analytics["open_count"] == 1
        assert analytics["sent_emails"][0]["opened"] is True

    def test_click_redirects(self, client, db, sent_campaign):
        url = f"/api/newsletter/track/click/{sent_campaign['id']}/one@example.com"
        response = client.get(f"{url}?url=https://example.com/blog/hello", follow_redirects=False)
        assert response.headers["location"] == "https://example.com/blog/hello"
        assert db["newslettercampaign"].find_one({})["analytics"]["click_count"] == 1

        unsafe = client.get(f"{url}?url=javascript:alert(1)", follow_redirects=False)
        assert unsafe.headers["location"] == "https://example.com/"

    def test_unknown_campaign_still_serves_pixel(self, client):
        assert client.get("/api/newsletter/track/open/nope/one@example.com").status_code == 200

    def test_campaign_rates(self, client, admin, sent_campaign):
        client.get(f"/api/newsletter/track/open/{sent_campaign['id']}/one@example.com")
        detail = client.get(
            f"/api/admin/newsletter/campaigns/{sent_campaign['id']}", headers=auth(admin)
        ).json()["campaign"]
        assert detail["analytics"]["open_rate"] == 100
        assert detail["sent_emails"][0]["opened"] is True


def test_subscriber_list(client, admin, subscribe_directly):
    subscribe_directly("one@example.com")
    subscribe_directly("two@example.com", is_active=False)
    body = client.get("/api/admin/newsletter/subscribers?status=all", headers=auth(admin)).json()
    assert len(body["subscribers"]) == 2
    assert body["stats"] == {"total": 2, "active": 1, "inactive": 1}


class TestMailer:
    def test_unreadable_api_response_is_a_failure(self, monkeypatch):
        class NotJson:
            def raise_for_status(self):
                pass

            def json(self):
                raise ValueError("Expecting value")

        monkeypatch.setattr(mailer.settings, "RESEND_API_KEY", "re_test")
        monkeypatch.setattr(mailer._session, "post", lambda *args, **kwargs: NotJson())
        result = mailer.send_email("one@example.com", "Hi", "<p>Hi</p>")
        assert result == {"success": False, "error": "Expecting value"}
