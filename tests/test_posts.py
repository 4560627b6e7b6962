"""Tests for the post lifecycle: create, list, edit, review, delete."""

from conftest import auth


def new_post(category, **extra):
    payload = {"title": "My First Trip", "content": "<p>It was great.</p>", "category_id": str(category["_id"])}
    payload.update(extra)
    return payload


class TestCreate:
    def test_author_publish_becomes_pending(self, client, db, author, category):
        response = client.post("/api/posts", json=new_post(category, status="published"), headers=auth(author))
        assert response.status_code == 201
        body = response.json()
        assert body["message"] == "Post submitted for review"
        assert body["post"]["status"] == "pending_review"
        assert body["post"]["slug"] == "my-first-trip"
        assert body["post"]["excerpt"] == "It was great."
        assert db["category"].find_one({"_id": category["_id"]})["post_count"] == 0

    def test_admin_publishes_directly(self, client, db, admin, category):
        response = client.post(
            "/api/posts", json=new_post(category, status="published", is_featured=True), headers=auth(admin)
        )
        post = response.json()["post"]
        assert post["status"] == "published"
        assert post["is_featured"] is True
        assert post["published_at"]
        assert db["category"].find_one({"_id": category["_id"]})["post_count"] == 1

    def test_duplicate_titles_get_unique_slugs(self, client, author, category):
        first = client.post("/api/posts", json=new_post(category), headers=auth(author)).json()
        second = client.post("/api/posts", json=new_post(category), headers=auth(author)).json()
        assert first["post"]["slug"] == "my-first-trip"
        assert second["post"]["slug"] == "my-first-trip-2"

    def test_required_fields(self, client, author, category):
        response = client.post("/api/posts", json={"title": "x"}, headers=auth(author))
        assert response.status_code == 400
        response = client.post("/api/posts", json=new_post(category, category_id="nope"), headers=auth(author))
        assert response.json()["detail"] == "Invalid category"

    def test_requires_login(self, client, category):
        assert client.post("/api/posts", json=new_post(category)).status_code == 401


class TestRead:
    def test_anonymous_sees_only_published(self, client, author, category, make_post):
        make_post(author, category, title="Live")
        make_post(author, category, title="Secret", status="draft")
        posts = client.get("/api/posts").json()["posts"]
        assert [p["title"] for p in posts] == ["Live"]

    def test_author_sees_own_drafts(self, client, author, make_user, category, make_post):
        make_post(author, category, title="Mine", status="draft")
        make_post(make_user("Other One"), category, title="Theirs", status="draft")
        posts = client.get("/api/posts", headers=auth(author)).json()["posts"]
        assert [p["title"] for p in posts] == ["Mine"]

    def test_anonymous_list_is_cached(self, client, author, category, make_post):
        make_post(author, category, title="One")
        assert len(client.get("/api/posts").json()["posts"]) == 1
        make_post(author, category, title="Two")
        assert len(client.get("/api/posts").json()["posts"]) == 1

    def test_filters(self, client, author, make_category, category, make_post):
        food = make_category("Food")
        make_post(author, category, title="Beach")
        make_post(author, food, title="Curry", is_featured=True)
        assert [p["title"] for p in client.get("/api/posts?category=food").json()["posts"]] == ["Curry"]
        assert [p["title"] for p in client.get("/api/posts?featured=true").json()["posts"]] == ["Curry"]
        assert [p["title"] for p in client.get("/api/posts?search=beach").json()["posts"]] == ["Beach"]
        assert client.get(f"/api/posts?author={author['username']}").json()["pagination"]["total"] == 2

    def test_get_does_not_count_views(self, client, db, admin, author, category, make_post):
        post = make_post(author, category)
        assert client.get(f"/api/posts/{post['slug']}").json()["post"]["views"] == 0
        assert client.get(f"/api/posts/{post['_id']}", headers=auth(admin)).json()["post"]["views"] == 0

        client.post(f"/api/posts/{post['_id']}/view", headers=auth(admin))
        assert db["post"].find_one({"_id": post["_id"]})["views"] == 1

    def test_draft_hidden_from_others(self, client, author, make_user, category, make_post):
        post = make_post(author, category, status="draft")
        assert client.get(f"/api/posts/{post['_id']}").status_code == 404
        assert client.get(f"/api/posts/{post['_id']}", headers=auth(make_user("Nosy Parker"))).status_code == 404

    def test_pending_queue_is_admin_only(self, client, author, admin, category, make_post):
        make_post(author, category, title="Waiting", status="pending_review")
        assert client.get("/api/posts/pending", headers=auth(author)).status_code == 403
        posts = client.get("/api/posts/pending", headers=auth(admin)).json()["posts"]
        assert [p["title"] for p in posts] == ["Waiting"]


class TestUpdate:
    def test_title_change_regenerates_slug(self, client, author, category, make_post):
        post = make_post(author, category, status="draft")
        response = client.put(f"/api/posts/{post['_id']}", json={"title": "Brand New"}, headers=auth(author))
        assert response.json()["post"]["slug"] == "brand-new"

    def test_only_owner_or_admin(self, client, author, make_user, category, make_post):
        post = make_post(author, category)
        response = client.put(
            f"/api/posts/{post['_id']}", json={"title": "Hijack"}, headers=auth(make_user("Mallory Bad"))
        )
        assert response.status_code == 403

    def test_author_cannot_publish(self, client, author, category, make_post):
        post = make_post(author, category, status="draft")
        response = client.put(f"/api/posts/{post['_id']}", json={"status": "published"}, headers=auth(author))
        assert response.status_code == 403

    def test_editing_published_post_records_versions(self, client, db, author, category, make_post):
        post = make_post(author, category, title="Original")
        client.put(
            f"/api/posts/{post['_id']}", json={"title": "Edited", "edit_reason": "better title"}, headers=auth(author)
        )
        versions = list(db["postversion"].find({"post_id": post["_id"]}).sort("version_number", 1))
        assert [v["changes_summary"] for v in versions] == ["Original published version", "better title"]
        assert versions[0]["snapshot"]["title"] == "Original"
        assert versions[1]["snapshot"]["title"] == "Edited"

    def test_category_change_moves_count(self, client, db, author, make_category, category, make_post):
        food = make_category("Food")
        post = make_post(author, category)
        client.put(f"/api/posts/{post['_id']}", json={"category_id": "food"}, headers=auth(author))
        assert db["category"].find_one({"_id": category["_id"]})["post_count"] == 0
        assert db["category"].find_one({"_id": food["_id"]})["post_count"] == 1


class TestActions:
    def test_approve(self, client, db, author, admin, category, make_post):
        post = make_post(author, category, status="pending_review")
        response = client.post(f"/api/posts/{post['_id']}/actions", json={"action": "approve"}, headers=auth(admin))
        assert response.json()["post"]["status"] == "published"
        assert db["category"].find_one({"_id": category["_id"]})["post_count"] == 1
        note = db["notification"].find_one({"recipient_id": author["_id"]})
        assert note["type"] == "post_approved"

    def test_reject_requires_reason(self, client, author, admin, category, make_post):
        post = make_post(author, category, status="pending_review")
        url = f"/api/posts/{post['_id']}/actions"
        assert client.post(url, json={"action": "reject"}, headers=auth(admin)).status_code == 400
        response = client.post(url, json={"action": "reject", "reason": "Too short"}, headers=auth(admin))
        assert response.json()["post"]["rejection_reason"] == "Too short"

    def test_author_cannot_approve(self, client, author, category, make_post):
        post = make_post(author, category, status="pending_review")
        response = client.post(f"/api/posts/{post['_id']}/actions", json={"action": "approve"}, headers=auth(author))
        assert response.status_code == 403

    def test_submit_draft(self, client, author, category, make_post):
        post = make_post(author, category, status="draft")
        response = client.post(f"/api/posts/{post['_id']}/actions", json={"action": "submit"}, headers=auth(author))
        assert response.json()["post"]["status"] == "pending_review"

    def test_like_and_unlike(self, client, db, author, make_user, category, make_post):
        reader = make_user("Reader Person")
        post = make_post(author, category)
        url = f"/api/posts/{post['_id']}/actions"
        liked = client.post(url, json={"action": "like"}, headers=auth(reader)).json()["post"]
        assert liked["like_count"] == 1
        assert liked["is_liked"] is True
        assert db["notification"].count_documents({"type": "like_post"}) == 1
        unliked = client.post(url, json={"action": "unlike"}, headers=auth(reader)).json()["post"]
        assert unliked["like_count"] == 0

    def test_like_refreshes_cached_listing(self, client, author, make_user, category, make_post):
        post = make_post(author, category)
        assert client.get("/api/posts").json()["posts"][0]["like_count"] == 0
        client.post(f"/api/posts/{post['_id']}/actions", json={"action": "like"}, headers=auth(make_user("Fan")))
        assert client.get("/api/posts").json()["posts"][0]["like_count"] == 1

    def test_toggle_comments(self, client, author, category, make_post):
        post = make_post(author, category)
        response = client.post(
            f"/api/posts/{post['_id']}/actions", json={"action": "toggle_comments"}, headers=auth(author)
        )
        assert response.json()["message"] == "Comments disabled"


class TestDelete:
    def test_delete_published_post(self, client, db, author, category, make_post):
        post = make_post(author, category)
        response = client.delete(f"/api/posts/{post['_id']}", headers=auth(author))
        assert response.status_code == 200
        assert db["post"].count_documents({}) == 0
        assert db["category"].find_one({"_id": category["_id"]})["post_count"] == 0

    def test_missing_post(self, client, author):
        assert client.delete("/api/posts/000000000000000000000000", headers=auth(author)).status_code == 404


class TestViewAndSchema:
    def test_view_not_counted_for_owner(self, client, author, category, make_post):
        post = make_post(author, category)
        assert client.post(f"/api/posts/{post['_id']}/view", headers=auth(author)).json()["counted"] is False
        assert client.post(f"/api/posts/{post['_id']}/view").json() == {"success": True, "counted": True, "views": 1}

    def test_schema(self, client, author, category, make_post):
        post = make_post(author, category, title="Goa Diary", tags=["beach"])
        body = client.get(f"/api/posts/{post['slug']}/schema").json()
        assert body["article"]["headline"] == "Goa Diary"
        assert body["article"]["author"]["url"].endswith(f"/author/{author['username']}")
        names = [i["name"] for i in body["breadcrumbs"]["itemListElement"]]
        assert names == ["Home", "Blog", "Travel", "Goa Diary"]
