import cart
from database import create_document
from schemas import Cart


def test_cart_is_created_lazily(client, buyer, db):
    _, headers = buyer
    assert db["cart"].count_documents({}) == 0
    data = client.get("/api/cart", headers=headers).json()["data"]
    assert data["items"] == []
    assert data["total"] == 0
    assert data["count"] == 0
    assert db["cart"].count_documents({}) == 1


def test_add_and_totals(client, seller, buyer, make_product):
    _, s_headers = seller
    _, b_headers = buyer
    camera = make_product(s_headers, price=100.0, stock=5)
    lens = make_product(s_headers, title="Lens", price=25.5, stock=5)

    r = client.post("/api/cart", json={"product_id": camera["id"], "quantity": 2}, headers=b_headers)
    assert r.status_code == 201
    assert r.json()["data"]["subtotal"] == 200.0
    client.post("/api/cart", json={"product_id": lens["id"]}, headers=b_headers)

    data = client.get("/api/cart", headers=b_headers).json()["data"]
    assert data["total"] == 225.5
    assert data["count"] == 3
    assert data["items"][0]["product"]["seller"]["name"] == "Seller"


def test_adding_same_product_merges_quantity(client, seller, buyer, make_product):
    _, s_headers = seller
    _, b_headers = buyer
    product = make_product(s_headers, stock=3)
    client.post("/api/cart", json={"product_id": product["id"], "quantity": 2}, headers=b_headers)
    r = client.post("/api/cart", json={"product_id": product["id"], "quantity": 1}, headers=b_headers)
    assert r.json()["data"]["quantity"] == 3
    items = client.get("/api/cart", headers=b_headers).json()["data"]["items"]
    assert len(items) == 1

    r = client.post("/api/cart", json={"product_id": product["id"], "quantity": 1}, headers=b_headers)
    assert r.status_code == 400


def test_add_rules(client, seller, buyer, make_product):
    _, s_headers = seller
    _, b_headers = buyer
    product = make_product(s_headers, stock=2)
    inactive = make_product(s_headers, title="Off", is_active=False)

    assert client.post("/api/cart", json={"product_id": "64b7f0c2a1b2c3d4e5f60718"}, headers=b_headers).status_code == 404
    assert client.post("/api/cart", json={"product_id": inactive["id"]}, headers=b_headers).status_code == 400
    assert client.post("/api/cart", json={"product_id": product["id"], "quantity": 3}, headers=b_headers).status_code == 400
    assert client.post("/api/cart", json={"product_id": product["id"], "quantity": 0}, headers=b_headers).status_code == 422

    r = client.post("/api/cart", json={"product_id": product["id"]}, headers=s_headers)
    assert r.status_code == 400
    assert "own products" in r.json()["detail"]


def test_update_respects_live_stock(client, seller, buyer, make_product, db):
    _, s_headers = seller
    _, b_headers = buyer
    product = make_product(s_headers, stock=4)
    item = client.post("/api/cart", json={"product_id": product["id"]}, headers=b_headers).json()["data"]

    r = client.put(f"/api/cart/{item['id']}", json={"quantity": 4}, headers=b_headers)
    assert r.status_code == 200
    assert r.json()["data"]["quantity"] == 4

    db["product"].update_one({"title": product["title"]}, {"$set": {"stock": 2}})
    assert client.put(f"/api/cart/{item['id']}", json={"quantity": 3}, headers=b_headers).status_code == 400

    db["product"].update_one({"title": product["title"]}, {"$set": {"is_active": False}})
    assert client.put(f"/api/cart/{item['id']}", json={"quantity": 1}, headers=b_headers).status_code == 400


def test_cannot_touch_another_users_item(client, seller, buyer, make_user, make_product):
    _, s_headers = seller
    _, b_headers = buyer
    _, other = make_user("Other")
    product = make_product(s_headers)
    item = client.post("/api/cart", json={"product_id": product["id"]}, headers=b_headers).json()["data"]
    assert client.put(f"/api/cart/{item['id']}", json={"quantity": 1}, headers=other).status_code == 403
    assert client.delete(f"/api/cart/{item['id']}", headers=other).status_code == 403
    assert client.delete("/api/cart/unknown", headers=b_headers).status_code == 404


def test_remove_and_clear(client, seller, buyer, make_product):
    _, s_headers = seller
    _, b_headers = buyer
    a = make_product(s_headers, title="A")
    b = make_product(s_headers, title="B")
    item = client.post("/api/cart", json={"product_id": a["id"]}, headers=b_headers).json()["data"]
    client.post("/api/cart", json={"product_id": b["id"]}, headers=b_headers)

    assert client.delete(f"/api/cart/{item['id']}", headers=b_headers).status_code == 200
    assert [i["product_id"] for i in client.get("/api/cart", headers=b_headers).json()["data"]["items"]] == [b["id"]]

    assert client.delete("/api/cart", headers=b_headers).status_code == 200
    assert client.get("/api/cart", headers=b_headers).json()["data"]["items"] == []


def test_clear_without_cart(client, buyer):
    _, headers = buyer
    assert client.delete("/api/cart", headers=headers).status_code == 404


def test_deleted_product_drops_out_of_cart(client, seller, buyer, make_product):
    _, s_headers = seller
    _, b_headers = buyer
    product = make_product(s_headers)
    client.post("/api/cart", json={"product_id": product["id"]}, headers=b_headers)
    client.delete(f"/api/products/{product['id']}", headers=s_headers)
    data = client.get("/api/cart", headers=b_headers).json()["data"]
    assert data["items"] == []
    assert data["total"] == 0


def test_cart_created_concurrently_is_reused(client, buyer, db, monkeypatch):
    user, headers = buyer

    def insert_after_competitor(database, collection_name, data, session=None):
        create_document(database, collection_name, Cart(user_id=user["id"]))
        return create_document(database, collection_name, data, session=session)

    monkeypatch.setattr(cart, "create_document", insert_after_competitor)
    r = client.get("/api/cart", headers=headers)
    assert r.status_code == 200
    assert r.json()["data"]["items"] == []
    assert db["cart"].count_documents({"user_id": user["id"]}) == 1
