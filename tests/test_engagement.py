"""Tests for bookmarks and ratings."""

from conftest import auth


class TestBookmarks:
    def test_toggle_and_list(self, client, author, make_user, category, make_post):
        reader = make_user("Reader Person")
        post = make_post(author, category)
        url = f"/api/posts/{post['_id']}/bookmark"

        saved = client.post(url, headers=auth(reader)).json()
        assert saved == {"message": "Post bookmarked", "is_bookmarked": True, "save_count": 1}
        assert client.get(url, headers=auth(reader)).json()["is_bookmarked"] is True

        bookmarks = client.get("/api/users/bookmarks", headers=auth(reader)).json()
        assert [p["id"] for p in bookmarks["posts"]] == [str(post["_id"])]

        removed = client.post(url, headers=auth(reader)).json()
        assert removed["is_bookmarked"] is False
        assert removed["save_count"] == 0

    def test_anonymous_status(self, client, author, category, make_post):
        post = make_post(author, category)
        assert client.get(f"/api/posts/{post['_id']}/bookmark").json() == {"is_bookmarked": False, "save_count": 0}

    def test_drafts_cannot_be_bookmarked(self, client, author, category, make_post):
        post = make_post(author, category, status="draft")
        assert client.post(f"/api/posts/{post['_id']}/bookmark", headers=auth(author)).status_code == 404


class TestRatings:
    def test_one_rating_per_user(self, client, author, make_user, category, make_post):
        reader = make_user("Reader Person")
        post = make_post(author, category)
        url = f"/api/posts/{post['_id']}/ratings"

        client.post(url, json={"rating": 5}, headers=auth(author))
        client.post(url, json={"rating": 2}, headers=auth(reader))
        response = client.post(url, json={"rating": 4}, headers=auth(reader)).json()
        assert response["rating_count"] == 2
        assert response["average_rating"] == 4.5

        listing = client.get(url, headers=auth(reader)).json()
        assert listing["my_rating"] == 4
        assert listing["average_rating"] == 4.5

    def test_rating_range(self, client, author, category, make_post):
        post = make_post(author, category)
        response = client.post(f"/api/posts/{post['_id']}/ratings", json={"rating": 6}, headers=auth(author))
        assert response.status_code == 422
