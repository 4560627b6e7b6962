"""Tests for the affiliate store: products, brands and click analytics."""

import pytest

from conftest import auth


@pytest.fixture
def brand(client, admin):
    response = client.post("/api/store/brands", json={"name": "Wildcraft"}, headers=auth(admin))
    return response.json()["brand"]


@pytest.fixture
def create_product(client, admin, brand, category):
    def factory(title="Trail Backpack", **overrides):
        body = {
            "title": title,
            "description": "Roomy and light.",
            "price": 2499,
            "original_price": 3999,
            "affiliate_link": "https://amzn.example/backpack",
            "brand_id": brand["slug"],
            "category_id": category["slug"],
            "images": ["https://img.example/1.jpg"],
        }
        body.update(overrides)
        response = client.post("/api/store/products", json=body, headers=auth(admin))
        assert response.status_code == 201, response.text
        return response.json()["product"]

    return factory


class TestProducts:
    def test_create(self, db, create_product, brand, category):
        product = create_product()
        assert product["slug"] == "trail-backpack"
        assert product["discount"] == 38
        assert product["featured_image"] == "https://img.example/1.jpg"
        assert product["brand"]["name"] == "Wildcraft"
        assert db["brand"].find_one({})["product_count"] == 1
        assert db["category"].find_one({"_id": category["_id"]})["product_count"] == 1

    def test_missing_fields(self, client, admin):
        response = client.post("/api/store/products", json={"title": "Nothing else"}, headers=auth(admin))
        assert response.status_code == 400
        assert response.json()["detail"] == "Missing required fields: price, affiliate_link, brand_id, category_id"

    def test_unknown_brand(self, client, admin, brand, category):
        body = {"title": "X", "price": 1, "affiliate_link": "https://a", "brand_id": "nope", "category_id": "travel"}
        response = client.post("/api/store/products", json=body, headers=auth(admin))
        assert response.json()["detail"] == "Brand not found"

    def test_requires_admin(self, client, author):
        assert client.post("/api/store/products", json={}, headers=auth(author)).status_code == 403

    def test_list_hides_affiliate_link(self, client, create_product):
        create_product()
        products = client.get("/api/store/products").json()["products"]
        assert len(products) == 1
        assert "affiliate_link" not in products[0]
        assert products[0]["category"]["slug"] == "travel"

    def test_filters_and_sorting(self, client, create_product):
        create_product("Water Bottle", price=299, original_price=None)
        create_product("Premium Tent", price=9999, is_featured=True)
        create_product("Old Stock", price=500, is_active=False)

        cheapest_first = client.get("/api/store/products?sort=price-low").json()["products"]
        assert [p["title"] for p in cheapest_first] == ["Water Bottle", "Premium Tent"]
        ranged = client.get("/api/store/products?minPrice=1000").json()["products"]
        assert [p["title"] for p in ranged] == ["Premium Tent"]
        featured = client.get("/api/store/products?featured=true").json()["products"]
        assert [p["title"] for p in featured] == ["Premium Tent"]
        searched = client.get("/api/store/products?search=bottle&brand=wildcraft").json()["products"]
        assert [p["title"] for p in searched] == ["Water Bottle"]

    def test_pagination(self, client, create_product):
        for i in range(3):
            create_product(f"Item {i}")
        body = client.get("/api/store/products?limit=2").json()
        assert body["pagination"] == {"current_page": 1, "total_pages": 2, "total_products": 3, "has_more": True}

    def test_get_update_delete(self, client, db, admin, create_product, make_category):
        create_product()
        make_category("Gear")
        url = "/api/store/products/trail-backpack"
        assert client.get(url).json()["product"]["affiliate_link"] == "https://amzn.example/backpack"

        updated = client.put(url, json={"price": 1999, "category_id": "gear"}, headers=auth(admin)).json()
        assert updated["product"]["discount"] == 50
        assert db["category"].find_one({"slug": "gear"})["product_count"] == 1
        assert db["category"].find_one({"slug": "travel"})["product_count"] == 0

        assert client.delete(url, headers=auth(admin)).status_code == 200
        assert db["brand"].find_one({})["product_count"] == 0
        assert client.get(url).status_code == 404

    def test_update_rejects_null_required_fields(self, client, db, admin, create_product):
        create_product()
        url = "/api/store/products/trail-backpack"
        response = client.put(url, json={"price": None, "title": None}, headers=auth(admin))
        assert response.status_code == 400
        assert response.json()["detail"] == "Fields cannot be empty: title, price"
        assert db["product"].find_one({})["price"] == 2499

        cleared = client.put(url, json={"original_price": None}, headers=auth(admin)).json()["product"]
        assert cleared["original_price"] is None
        assert cleared["discount"] == 0

    def test_title_without_latin_letters_gets_fallback_slug(self, client, create_product):
        product = create_product("हिंदी उत्पाद")
        assert product["slug"] == "product"
        assert client.get("/api/store/products/product").json()["product"]["title"] == "हिंदी उत्पाद"

    def test_view_and_click(self, client, db, create_product):
        create_product()
        assert client.post("/api/store/products/trail-backpack/view").json()["view_count"] == 1
        click = client.post("/api/store/products/trail-backpack/click").json()
        assert click == {"success": True, "affiliate_link": "https://amzn.example/backpack", "click_count": 1}
        assert db["product"].find_one({})["last_clicked_at"] is not None

    def test_inactive_product_is_hidden(self, client, create_product):
        create_product(is_active=False)
        assert client.get("/api/store/products/trail-backpack").status_code == 404
        assert client.post("/api/store/products/trail-backpack/click").status_code == 404


class TestBrandsAndCategories:
    def test_create_brand(self, client, admin, brand):
        assert brand["slug"] == "wildcraft"
        duplicate = client.post("/api/store/brands", json={"name": "WILDCRAFT"}, headers=auth(admin))
        assert duplicate.json()["detail"] == "Brand with this name already exists"
        assert client.post("/api/store/brands", json={"name": " "}, headers=auth(admin)).status_code == 400

    def test_list_brands(self, client, db, brand):
        db["brand"].insert_one({"name": "Dormant", "slug": "dormant", "is_active": False, "product_count": 0})
        assert len(client.get("/api/store/brands").json()["brands"]) == 2
        assert [b["name"] for b in client.get("/api/store/brands?active=true").json()["brands"]] == ["Wildcraft"]

    def test_store_categories_only_with_products(self, client, create_product, make_category):
        make_category("Empty")
        create_product()
        assert [c["slug"] for c in client.get("/api/store/categories").json()["categories"]] == ["travel"]


def test_store_analytics(client, admin, create_product):
    create_product()
    create_product("Camp Stove")
    for _ in range(4):
        client.post("/api/store/products/trail-backpack/view")
    client.post("/api/store/products/trail-backpack/click")

    body = client.get("/api/admin/store/analytics", headers=auth(admin)).json()
    assert body["totals"]["products"] == 2
    assert body["totals"]["click_through_rate"] == 25
    assert [p["slug"] for p in body["top_clicked"]] == ["trail-backpack"]
    assert "affiliate_link" not in body["top_viewed"][0]
