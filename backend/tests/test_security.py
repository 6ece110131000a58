import security
from security import decode_token, hash_password, issue_token, verify_password


def test_password_round_trip():
    stored = hash_password("hunter22")
    assert verify_password("hunter22", stored)
    assert not verify_password("hunter23", stored)


def test_verify_rejects_missing_or_malformed_hash():
    assert not verify_password("x", None)
    assert not verify_password("x", "")
    assert not verify_password("x", "md5$abc")


def test_token_carries_subject_and_role():
    payload = decode_token(issue_token("abc123", "ADMIN"))
    assert payload["sub"] == "abc123"
    assert payload["role"] == "ADMIN"


def test_tampered_token_is_rejected():
    token = issue_token("abc123", "USER")
    body, sig = token.split(".")
    forged = issue_token("someone-else", "ADMIN").split(".")[0]
    assert decode_token(f"{forged}.{sig}") is None
    assert decode_token(body) is None
    assert decode_token("garbage") is None


def test_expired_token_is_rejected(monkeypatch):
    monkeypatch.setattr(security, "AUTH_TOKEN_TTL", -1)
    assert decode_token(issue_token("abc123", "USER")) is None


def test_protected_route_requires_token(client):
    assert client.get("/api/user/me").status_code == 401
    assert client.get("/api/user/me", headers={"Authorization": "Bearer nope"}).status_code == 401


def test_token_for_deleted_user_is_rejected(client, make_user, db):
    user, headers = make_user("Ghost")
    db["user"].delete_many({})
    assert client.get("/api/user/me", headers=headers).status_code == 401
