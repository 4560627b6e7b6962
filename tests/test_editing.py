"""Tests for edit locks and version restore endpoints."""

from datetime import timedelta

from conftest import auth
from database import now_utc
from versions import create_version


class TestLock:
    def test_lock_blocks_other_editors(self, client, author, admin, category, make_post):
        post = make_post(author, category)
        url = f"/api/posts/{post['_id']}/lock"

        assert client.post(url, headers=auth(author)).status_code == 200
        conflict = client.post(url, headers=auth(admin))
        assert conflict.status_code == 409
        assert conflict.json()["detail"]["locked_by"] == str(author["_id"])

        status = client.get(url, headers=auth(author)).json()
        assert status["is_locked"] is True
        assert status["is_mine"] is True
        assert status["locked_by"]["username"] == author["username"]

    def test_relocking_own_lock(self, client, author, category, make_post):
        post = make_post(author, category)
        url = f"/api/posts/{post['_id']}/lock"
        client.post(url, headers=auth(author))
        assert client.post(url, headers=auth(author)).status_code == 200

    def test_stale_lock_is_ignored(self, client, db, author, admin, category, make_post):
        post = make_post(author, category)
        stale = {"is_locked": True, "locked_by": author["_id"], "locked_at": now_utc() - timedelta(minutes=31)}
        db["post"].update_one({"_id": post["_id"]}, {"$set": {"editing": stale}})
        url = f"/api/posts/{post['_id']}/lock"
        assert client.get(url, headers=auth(admin)).json()["is_locked"] is False
        assert client.post(url, headers=auth(admin)).status_code == 200

    def test_unlock(self, client, author, make_user, category, make_post):
        post = make_post(author, category)
        url = f"/api/posts/{post['_id']}/lock"
        client.post(url, headers=auth(author))

        response = client.delete(url, headers=auth(make_user("Other Person")))
        assert response.status_code == 403
        assert response.json()["detail"] == "You cannot unlock this post"

        assert client.delete(url, headers=auth(author)).status_code == 200
        assert client.get(url, headers=auth(author)).json()["is_locked"] is False


class TestVersions:
    def test_history_and_restore(self, client, db, author, category, make_post):
        post = make_post(author, category, title="Version one")
        create_version(db, post, author["_id"], "Original published version")
        db["post"].update_one({"_id": post["_id"]}, {"$set": {"title": "Version two"}})

        url = f"/api/posts/{post['_id']}/versions"
        response = client.post(url, json={"version": 1, "reason": "revert"}, headers=auth(author))
        assert response.status_code == 200
        assert response.json()["post"]["title"] == "Version one"

        history = client.get(url, headers=auth(author)).json()
        assert history["total"] == 3
        assert history["versions"][0]["changes_summary"] == "Restored to version 1: revert"
        assert history["versions"][0]["edited_by"]["id"] == str(author["_id"])

    def test_unknown_version(self, client, author, category, make_post):
        post = make_post(author, category)
        response = client.post(f"/api/posts/{post['_id']}/versions", json={"version": 9}, headers=auth(author))
        assert response.status_code == 404

    def test_history_restricted_to_editors(self, client, author, make_user, category, make_post):
        post = make_post(author, category)
        response = client.get(f"/api/posts/{post['_id']}/versions", headers=auth(make_user("Curious Cat")))
        assert response.status_code == 403
