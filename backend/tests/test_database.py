from bson import ObjectId

from database import pagination, serialize, to_object_id, transaction


def test_pagination_flags():
    assert pagination(1, 10, 0) == {
        "page": 1, "limit": 10, "total": 0, "total_pages": 0, "has_next": False, "has_prev": False,
    }
    meta = pagination(2, 10, 25)
    assert meta["total_pages"] == 3
    assert meta["has_next"] is True
    assert meta["has_prev"] is True


def test_serialize_converts_ids():
    oid, ref = ObjectId(), ObjectId()
    doc = serialize({"_id": oid, "owner": ref, "name": "x"})
    assert doc == {"id": str(oid), "owner": str(ref), "name": "x"}
    assert serialize(None) is None


def test_to_object_id():
    oid = ObjectId()
    assert to_object_id(str(oid)) == oid
    assert to_object_id(oid) is oid
    assert to_object_id("nope") is None
    assert to_object_id(None) is None


def test_transaction_without_support_yields_none(db):
    with transaction(db) as session:
        assert session is None


def test_root_and_diagnostics(client):
    assert client.get("/").json()["status"] == "ok"
    body = client.get("/test").json()
    assert body["backend"] == "✅ Running"
    assert "collections" in body


def test_unique_indexes(db):
    assert db["user"].index_information()["email_1"]["unique"] is True
    assert db["cart"].index_information()["user_id_1"]["unique"] is True
    assert db["review"].index_information()["product_id_1_user_id_1"]["unique"] is True
