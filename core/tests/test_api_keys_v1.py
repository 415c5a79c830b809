from __future__ import annotations

from pathlib import Path

from fastapi.testclient import TestClient

from chatdesk_core.api.v1.api_keys import mask_api_key
from chatdesk_core.app import create_app

RAW_KEY = "sk-live-0123456789abcdef"


def _auth(client: TestClient) -> dict[str, str]:
    token = client.app.state.chatdesk_config.auth.install_token
    return {"Authorization": f"Bearer {token}"}


def test_mask_api_key() -> None:
    assert mask_api_key(RAW_KEY) == "sk-l...cdef"
    assert mask_api_key("short") == "*****"


def test_api_keys_crud_never_returns_raw_key(chatdesk_home: Path) -> None:
    with TestClient(create_app()) as client:
        h = _auth(client)

        created = client.post(
            "/v1/api-keys",
            headers=h,
            json={"service_name": "gemini", "api_key": RAW_KEY, "ai_model": "gemini-pro"},
        )
        assert created.status_code == 200
        key_id = created.json()["data"]["api_key_id"]

        client.post(
            "/v1/api-keys",
            headers=h,
            json={"service_name": "openai", "api_key": "sk-openai-abcdefghijkl"},
        )

        listed = client.get("/v1/api-keys", headers=h, params={"service": "gemini"})
        assert listed.status_code == 200
        items = listed.json()["data"]["items"]
        assert [i["id"] for i in items] == [key_id]
        assert items[0]["api_key_preview"] == "sk-l...cdef"
        assert "api_key" not in items[0]
        assert RAW_KEY not in listed.text

        # The default service comes from config.
        assert client.get("/v1/api-keys", headers=h).json()["data"]["items"][0]["id"] == key_id

        services = client.get("/v1/api-keys/services", headers=h).json()["data"]["items"]
        assert services == ["gemini", "openai"]

        models = client.get("/v1/api-keys/service-models", headers=h).json()["data"]["items"]
        assert {(m["service_name"], m["ai_model"]) for m in models} == {
            ("gemini", "gemini-pro"),
            ("openai", None),
        }

        saved = client.get("/v1/api-keys/saved", headers=h, params={"service": "openai"})
        assert saved.json()["data"] == {"saved": True}

        deleted = client.delete("/v1/api-keys", headers=h, params={"service": "openai"})
        assert deleted.json()["data"] == {"deleted": 1}
        saved2 = client.get("/v1/api-keys/saved", headers=h, params={"service": "openai"})
        assert saved2.json()["data"] == {"saved": False}

        assert client.delete(f"/v1/api-keys/{key_id}", headers=h).status_code == 200
        missing = client.delete(f"/v1/api-keys/{key_id}", headers=h)
        assert missing.status_code == 404
        assert missing.json()["error"]["code"] == "not_found"


def test_add_api_key_validates_payload(chatdesk_home: Path) -> None:
    with TestClient(create_app()) as client:
        r = client.post(
            "/v1/api-keys",
            headers=_auth(client),
            json={"service_name": "gemini", "api_key": ""},
        )
        assert r.status_code == 422
        assert r.json()["error"]["code"] == "validation_error"


def test_active_api_key_round_trip(chatdesk_home: Path) -> None:
    with TestClient(create_app()) as client:
        h = _auth(client)

        assert client.get("/v1/api-keys/active", headers=h).json()["data"]["api_key_id"] is None

        key_id = client.post(
            "/v1/api-keys",
            headers=h,
            json={"service_name": "gemini", "api_key": RAW_KEY, "ai_model": "gemini-pro"},
        ).json()["data"]["api_key_id"]

        r = client.put("/v1/api-keys/active", headers=h, json={"api_key_id": key_id})
        assert r.status_code == 200
        assert r.json()["data"] == {"api_key_id": key_id, "initialized": True}
        assert RAW_KEY not in r.text
        assert client.app.state.ai_client.api_key == RAW_KEY

        assert client.get("/v1/api-keys/active", headers=h).json()["data"]["api_key_id"] == key_id

        unknown = client.put("/v1/api-keys/active", headers=h, json={"api_key_id": 999})
        assert unknown.status_code == 404

        cleared = client.delete("/v1/api-keys/active", headers=h)
        assert cleared.json()["data"] == {"cleared": True}
        assert client.app.state.ai_client.is_initialized() is False


def test_saved_key_initializes_ai_on_next_start(chatdesk_home: Path) -> None:
    with TestClient(create_app()) as client:
        client.post(
            "/v1/api-keys",
            headers=_auth(client),
            json={"service_name": "gemini", "api_key": RAW_KEY},
        )

    with TestClient(create_app()) as client:
        assert client.app.state.ai_client.is_initialized() is True
        assert client.app.state.ai_client.service == "gemini"
