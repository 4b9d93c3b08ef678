from __future__ import annotations

import json

import pytest

from backend import create_app
from database.db_manager import SecretStore

KEY = "JBSWY3DPEHPK3PXP"
RFC_SEED = "GEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQ"


@pytest.fixture
def client(store: SecretStore):
    app = create_app(store=store)
    app.testing = True
    return app.test_client()


def _add(client, **fields):
    payload = {"website": "github.com", "secretKey": KEY}
    payload.update(fields)
    resp = client.post("/api/secrets", json=payload)
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()


def test_create_app_with_database_file(tmp_path) -> None:
    app = create_app(database_file=str(tmp_path / "api.db"))
    assert app.config["DATABASE_FILE"] == str(tmp_path / "api.db")
    assert app.secret_key is None
    resp = app.test_client().get("/api/secrets/all")
    assert resp.status_code == 200
    assert resp.get_json() == {"secrets": [], "total": 0}


def test_add_and_list_with_codes(client) -> None:
    created = _add(client, name="work", issuer="GitHub")
    assert created["name"] == "work"
    assert created["algorithm"] == "SHA1"

    resp = client.get("/api/secrets?website=github.com")
    body = resp.get_json()
    assert resp.status_code == 200
    assert body["website"] == "github.com"
    [item] = body["secrets"]
    assert item["id"] == created["id"]
    assert len(item["code"]) == 6 and item["code"].isdigit()
    assert 1 <= item["remaining"] <= 30
    assert 0 <= item["progress"] < 1


def test_list_by_url_uses_hostname(client) -> None:
    _add(client)
    body = client.get("/api/secrets?url=https://github.com/login?return_to=x").get_json()
    assert body["website"] == "github.com"
    assert len(body["secrets"]) == 1


def test_list_requires_website(client) -> None:
    resp = client.get("/api/secrets")
    assert resp.status_code == 400
    assert "website" in resp.get_json()["error"]


def test_unparseable_url_is_bad_request(client) -> None:
    assert client.get("/api/secrets?url=http://[x").status_code == 400
    assert client.get("/api/code?url=http://[x").status_code == 400


def test_add_invalid_secret_is_bad_request(client) -> None:
    resp = client.post("/api/secrets", json={"website": "github.com", "secretKey": "nope!"})
    assert resp.status_code == 400
    assert "Base32" in resp.get_json()["error"]
    assert client.post("/api/secrets", data="plain text").status_code == 400


def test_get_update_and_move(client) -> None:
    created = _add(client)
    assert client.get(f"/api/secrets/{created['id']}").get_json()["website"] == "github.com"

    resp = client.put(f"/api/secrets/{created['id']}", json={"website": "gitlab.com", "name": "moved"})
    assert resp.status_code == 200
    assert resp.get_json()["createdAt"] == created["createdAt"]
    assert client.get("/api/secrets?website=github.com").get_json()["secrets"] == []
    [moved] = client.get("/api/secrets?website=gitlab.com").get_json()["secrets"]
    assert moved["name"] == "moved"


def test_update_accepts_full_object_from_get(client) -> None:
    created = _add(client)
    payload = dict(created, issuer="GitHub")
    resp = client.put(f"/api/secrets/{created['id']}", json=payload)
    assert resp.status_code == 200
    assert resp.get_json()["issuer"] == "GitHub"


def test_missing_secret_is_not_found(client) -> None:
    assert client.get("/api/secrets/missing").status_code == 404
    assert client.put("/api/secrets/missing", json={"name": "x"}).status_code == 404


def test_delete_is_idempotent(client) -> None:
    created = _add(client)
    for _ in range(2):
        resp = client.delete(f"/api/secrets/{created['id']}?website=github.com")
        assert resp.status_code == 200
    assert client.get("/api/secrets/all").get_json()["total"] == 0


def test_code_for_website_uses_first_secret(client) -> None:
    _add(client, name="first")
    _add(client, name="second", secretKey=RFC_SEED)
    body = client.get("/api/code?url=https://github.com/sessions/two-factor").get_json()
    assert body["name"] == "first"
    assert len(body["code"]) == 6

    resp = client.get("/api/code?website=unknown.example")
    assert resp.status_code == 404
    assert "unknown.example" in resp.get_json()["error"]


def test_totp_endpoint_matches_rfc_vector(client) -> None:
    resp = client.post("/api/totp", json={"secret": RFC_SEED, "timestamp": 59, "digits": 8})
    assert resp.status_code == 200
    assert resp.get_json()["code"] == "94287082"
    assert resp.get_json()["remaining"] == 1


@pytest.mark.parametrize(
    "payload",
    [
        {"secret": "!!!", "timestamp": 59},
        {"secret": RFC_SEED, "digits": 7},
        {"secret": RFC_SEED, "digits": 8.0, "timestamp": 59},
        {"secret": RFC_SEED, "period": 30.0, "timestamp": 59},
        {"secret": RFC_SEED, "timestamp": 1e25},
        {"secret": RFC_SEED, "timestamp": "soon"},
        {"timestamp": 59},
    ],
)
def test_totp_endpoint_errors(client, payload: dict) -> None:
    assert client.post("/api/totp", json=payload).status_code == 400


@pytest.mark.parametrize("timestamp", ["NaN", "Infinity"])
def test_totp_endpoint_rejects_non_finite_timestamp(client, timestamp: str) -> None:
    body = '{"secret": "' + RFC_SEED + '", "timestamp": ' + timestamp + "}"
    resp = client.post("/api/totp", data=body, content_type="application/json")
    assert resp.status_code == 400
    assert "finite" in resp.get_json()["error"]


def test_export_import_round_trip(client, tmp_path) -> None:
    _add(client, name="one")
    _add(client, website="gitlab.com", name="two", digits=8)
    exported = client.get("/api/export").get_json()
    assert exported["version"] == "1.0"
    assert {s["name"] for s in exported["secrets"]} == {"one", "two"}
    assert all("id" not in s for s in exported["secrets"])

    other = create_app(store=SecretStore(str(tmp_path / "other.db"))).test_client()
    resp = other.post("/api/import", json=exported)
    assert resp.get_json() == {"imported": 2, "total": 2}


def test_import_accepts_raw_body_and_skips_bad_entries(client) -> None:
    document = {"secrets": [{"website": "a.com", "name": "ok", "secretKey": KEY}, {"website": "a.com"}]}
    resp = client.post("/api/import", data=json.dumps(document), content_type="text/plain")
    assert resp.status_code == 200
    assert resp.get_json()["imported"] == 1


def test_import_malformed_document(client) -> None:
    assert client.post("/api/import", json={"secrets": None}).status_code == 400
    assert client.post("/api/import", data="{{{").status_code == 400


def test_qr_code(client) -> None:
    created = _add(client, name="alice", issuer="GitHub")
    body = client.get(f"/api/secrets/{created['id']}/qr").get_json()
    assert body["qr_code"].startswith("data:image/png;base64,")
    assert body["uri"].startswith("otpauth://totp/GitHub:alice?secret=" + KEY)
