import os

os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("APP_ENV", "development")
os.environ.setdefault("SITE_URL", "https://example.com")
os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ.pop("RESEND_API_KEY", None)
os.environ.pop("DATABASE_URL", None)

import mongomock  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

import ratelimit  # noqa: E402
import stats  # noqa: E402
from cache import api_cache  # noqa: E402
from database import create_document, get_db, now_utc  # noqa: E402
from main import app  # noqa: E402
from schemas import Category, Post, User  # noqa: E402
from security import create_access_token, get_password_hash  # noqa: E402
from seo import slugify  # noqa: E402
from undo import undo_manager  # noqa: E402

PASSWORD = "password123"


@pytest.fixture(autouse=True)
def reset_state():
    api_cache.clear()
    stats.clear_stats_cache()
    ratelimit.reset_all()
    undo_manager.clear()
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def db():
    database = mongomock.MongoClient()["quillpress_test"]
    app.dependency_overrides[get_db] = lambda: database
    return database


@pytest.fixture
def client(db):
    return TestClient(app)


@pytest.fixture
def make_user(db):
    def factory(name="Jane Doe", role="author", username=None, **extra):
        username = username or slugify(name).replace("-", "_")
        user = User(
            name=name,
            email=extra.pop("email", f"{username}@example.com"),
            username=username,
            password_hash=get_password_hash(extra.pop("password", PASSWORD)),
            role=role,
            **extra,
        ).model_dump()
        create_document(db, "user", user)
        return user

    return factory


@pytest.fixture
def make_category(db):
    def factory(name="Travel", **extra):
        category = Category(name=name, slug=slugify(name), **extra).model_dump()
        create_document(db, "category", category)
        return category

    return factory


@pytest.fixture
def make_post(db):
    def factory(author, category, title="Hello World", status="published", **extra):
        data = {
            "title": title,
            "slug": slugify(title),
            "content": extra.pop("content", "<p>Some words about the trip.</p>"),
            "excerpt": extra.pop("excerpt", "Some words about the trip."),
            "author_id": author["_id"],
            "category_id": category["_id"],
            "status": status,
            "published_at": now_utc() if status == "published" else None,
        }
        data.update(extra)
        post = Post(**data).model_dump()
        create_document(db, "post", post)
        if status == "published":
            db["category"].update_one({"_id": category["_id"]}, {"$inc": {"post_count": 1}})
        return post

    return factory


def auth(user: dict) -> dict:
    return {"Authorization": f"Bearer {create_access_token({'sub': str(user['_id'])})}"}


@pytest.fixture
def author(make_user):
    return make_user("Jane Doe")


@pytest.fixture
def admin(make_user):
    return make_user("Ada Admin", role="admin")


@pytest.fixture
def category(make_category):
    return make_category("Travel")
