import pytest
from bson import ObjectId

from conftest import insert_order, product_payload


def create(client, user, **overrides):
    return client.post("/products", json=product_payload(**overrides), headers=user["headers"])


def test_vendor_creates_product(client, vendor):
    res = create(client, vendor)
    assert res.status_code == 201, res.text
    product = res.json()["product"]
    assert product["vendor_id"] == vendor["id"]
    assert product["rating"] == 0
    assert product["review_count"] == 0
    assert product["is_active"] is True


def test_client_cannot_seed_cache_fields(client, vendor):
    res = create(client, vendor, rating=5, review_count=100, vendor_id="someone-else")
    assert res.status_code == 201
    product = res.json()["product"]
    assert product["rating"] == 0
    assert product["review_count"] == 0
    assert product["vendor_id"] == vendor["id"]


def test_consumer_cannot_create_product(client, consumer):
    res = create(client, consumer)
    assert res.status_code == 403


def test_product_validation(client, vendor):
    assert create(client, vendor, price=0).status_code == 422
    assert create(client, vendor, stock=-1).status_code == 422
    assert create(client, vendor, images=[]).status_code == 422
    assert create(client, vendor, discount=150).status_code == 422


def test_duplicate_slug_is_conflict(client, vendor):
    assert create(client, vendor, slug="batik-scarf").status_code == 201
    assert create(client, vendor, slug="batik-scarf").status_code == 409
    assert create(client, vendor).status_code == 201
    assert create(client, vendor).status_code == 201


def test_get_product(client, product):
    res = client.get(f"/products/{product['id']}")
    assert res.status_code == 200
    assert res.json()["product"]["name"] == "Batik scarf"


def test_get_unknown_or_malformed_product(client):
    assert client.get(f"/products/{ObjectId()}").status_code == 404
    res = client.get("/products/not-an-id")
    assert res.status_code == 404
    assert res.json()["error"] == "NotFoundError"


def test_owner_updates_with_merge_patch(client, vendor, product):
    res = client.patch(f"/products/{product['id']}", json={"price": 30, "stock": 0}, headers=vendor["headers"])
    assert res.status_code == 200, res.text
    updated = res.json()["product"]
    assert updated["price"] == 30
    assert updated["stock"] == 0
    assert updated["name"] == product["name"]
    assert updated["tags"] == ["silk", "batik"]


def test_update_cannot_touch_cache_fields(client, vendor, product):
    res = client.patch(f"/products/{product['id']}", json={"rating": 5, "review_count": 9}, headers=vendor["headers"])
    assert res.status_code == 422


def test_other_vendor_cannot_update_or_delete(client, other_vendor, product):
    assert client.patch(f"/products/{product['id']}", json={"price": 1},
                        headers=other_vendor["headers"]).status_code == 403
    assert client.delete(f"/products/{product['id']}", headers=other_vendor["headers"]).status_code == 403


def test_admin_can_update(client, admin, product):
    res = client.patch(f"/products/{product['id']}", json={"is_featured": True}, headers=admin["headers"])
    assert res.status_code == 200
    assert res.json()["product"]["is_featured"] is True


def test_consumer_update_is_denied_before_lookup(client, consumer):
    res = client.patch(f"/products/{ObjectId()}", json={"price": 1}, headers=consumer["headers"])
    assert res.status_code == 403


def test_delete_cascades_to_reviews_and_wishlists(client, db, vendor, consumer, product):
    order_id = insert_order(db, consumer["id"], [product])
    client.post("/reviews", json={"product_id": product["id"], "order_id": order_id, "rating": 4,
                                  "review_text": "Good"}, headers=consumer["headers"])
    client.post(f"/wishlist/{product['id']}", headers=consumer["headers"])

    res = client.delete(f"/products/{product['id']}", headers=vendor["headers"])
    assert res.status_code == 200
    assert db["product"].count_documents({}) == 0
    assert db["review"].count_documents({"product_id": product["id"]}) == 0
    assert client.get("/wishlist", headers=consumer["headers"]).json()["wishlist"]["products"] == []


def test_list_filters(client, vendor, other_vendor):
    create(client, vendor, name="Batik scarf", category="clothing", price=25)
    create(client, vendor, name="Raksha mask", category="crafts", tags=["wood"], price=80)
    create(client, other_vendor, name="Clay pot", category="crafts", tags=["clay"], price=12)
    create(client, vendor, name="Hidden", category="crafts", price=5, is_active=False)

    def names(**params):
        return sorted(p["name"] for p in client.get("/products", params=params).json()["products"])

    assert names() == ["Batik scarf", "Clay pot", "Raksha mask"]
    assert names(category="crafts") == ["Clay pot", "Raksha mask"]
    assert names(q="WOOD") == ["Raksha mask"]
    assert names(q="mask") == ["Raksha mask"]
    assert names(min_price=20, max_price=50) == ["Batik scarf"]
    assert names(vendor_id=other_vendor["id"]) == ["Clay pot"]


def test_vendor_sees_own_products_including_inactive(client, vendor, other_vendor):
    create(client, vendor, name="Hidden", is_active=False)
    create(client, other_vendor, name="Theirs")
    res = client.get("/vendor/products", headers=vendor["headers"])
    assert [p["name"] for p in res.json()["products"]] == ["Hidden"]


@pytest.mark.parametrize("method", ["patch", "delete"])
def test_non_owner_cannot_tell_missing_from_foreign(client, other_vendor, product, method):
    kwargs = {"json": {"price": 1}} if method == "patch" else {}
    responses = [
        getattr(client, method)(f"/products/{product_id}", headers=other_vendor["headers"], **kwargs)
        for product_id in (product["id"], str(ObjectId()), "not-an-id")
    ]
    assert [r.status_code for r in responses] == [403, 403, 403]
    assert len({r.json()["message"] for r in responses}) == 1


def test_admin_sees_missing_product_as_not_found(client, admin):
    res = client.patch(f"/products/{ObjectId()}", json={"price": 1}, headers=admin["headers"])
    assert res.status_code == 404
    assert client.delete("/products/not-an-id", headers=admin["headers"]).status_code == 404
