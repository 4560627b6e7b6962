"""Tests for daily post analytics and the dashboard."""

from datetime import timedelta

import pytest

from conftest import auth
from database import now_utc
from routes.post_analytics import day_key, traffic_source

IPHONE = "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) Mobile/15E148 Safari/604.1"


@pytest.mark.parametrize(
    "referrer,source",
    [
        (None, "direct"),
        ("https://www.google.com/search?q=goa", "search"),
        ("https://t.co/abc", "social"),
        ("https://someblog.example.org/links", "referral"),
    ],
)
def test_traffic_source(referrer, source):
    assert traffic_source(referrer) == source


def view(client, post, headers=None):
    return client.post(f"/api/posts/{post['_id']}/view", headers=headers or {})


class TestRecording:
    def test_views_are_counted_per_day(self, client, db, author, make_user, category, make_post):
        post = make_post(author, category)
        visitor = {"X-Forwarded-For": "203.0.113.7", "User-Agent": IPHONE, "Referer": "https://www.google.com/"}
        view(client, post, visitor)
        view(client, post, visitor)
        view(client, post, auth(make_user("Fan Person")))
        view(client, post, auth(author))

        stored = db["postanalytics"].find_one({"post_id": post["_id"]})
        assert stored["date"] == day_key()
        assert stored["views"] == {"total": 3, "unique": 2}
        assert stored["sources"]["search"] == 2
        assert stored["devices"]["mobile"] == 2

        body = client.get(f"/api/posts/{post['_id']}/analytics", headers=auth(author)).json()
        assert body["analytics"]["total_views"] == 3
        assert body["analytics"]["unique_views"] == 2
        assert body["analytics"]["daily_data"][0]["date"] == day_key()
        assert body["post"]["slug"] == post["slug"]

    def test_likes_and_comments(self, client, db, author, admin, category, make_post):
        post = make_post(author, category)
        client.post(f"/api/posts/{post['_id']}/actions", json={"action": "like"}, headers=auth(admin))
        client.post(f"/api/posts/{post['_id']}/comments", json={"content": "Nice"}, headers=auth(admin))

        stored = db["postanalytics"].find_one({"post_id": post["_id"]})
        assert stored["likes"] == 1
        assert stored["comments"] == 1
        assert stored["views"] == {"total": 0, "unique": 0}

    def test_post_analytics_is_private(self, client, author, make_user, category, make_post):
        post = make_post(author, category)
        url = f"/api/posts/{post['_id']}/analytics"
        assert client.get(url).status_code == 401
        assert client.get(url, headers=auth(make_user("Nosy Parker"))).status_code == 403


class TestDashboard:
    @pytest.fixture
    def traffic(self, client, db, author, make_user, category, make_post):
        rival = make_user("Rival Writer")
        mine = make_post(author, category, title="Mine")
        theirs = make_post(rival, category, title="Theirs")
        for ip in ("198.51.100.1", "198.51.100.2"):
            view(client, theirs, {"X-Forwarded-For": ip})
        view(client, mine, {"X-Forwarded-For": "198.51.100.3"})
        old = day_key(now_utc() - timedelta(days=40))
        db["postanalytics"].insert_one(
            {"post_id": mine["_id"], "date": old, "views": {"total": 50, "unique": 40}, "likes": 0, "comments": 0}
        )
        return {"mine": mine, "theirs": theirs, "rival": rival}

    def test_author_sees_own_posts(self, client, author, traffic):
        body = client.get("/api/analytics/dashboard", headers=auth(author)).json()
        assert body["summary"]["total_views"] == 1
        assert body["period"] == "Last 30 days"
        assert [d["views"] for d in body["daily_trend"]] == [1]

        longer = client.get("/api/analytics/dashboard?days=60", headers=auth(author)).json()
        assert longer["summary"]["total_views"] == 51
        assert len(longer["daily_trend"]) == 2

    def test_admin_top_posts(self, client, admin, traffic):
        body = client.get("/api/analytics/dashboard?action=top-posts", headers=auth(admin)).json()
        assert [p["post"]["title"] for p in body["top_posts"]] == ["Theirs", "Mine"]
        assert body["top_posts"][0]["metrics"]["unique_views"] == 2

    def test_admin_author_trends(self, client, admin, author, traffic):
        body = client.get("/api/analytics/dashboard?action=authors", headers=auth(admin)).json()
        assert [a["author"]["name"] for a in body["authors"]] == ["Rival Writer", "Jane Doe"]
        assert body["authors"][0]["trend"] == [{"date": day_key(), "views": 2}]

        narrowed = client.get(
            f"/api/analytics/dashboard?author={author['username']}", headers=auth(admin)
        ).json()
        assert narrowed["summary"]["total_views"] == 1

    def test_requires_login(self, client):
        assert client.get("/api/analytics/dashboard").status_code == 401
