from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from starlette.requests import Request

from chatdesk_core.app import create_app
from chatdesk_core.auth import extract_token_from_request, is_exempt_path


def test_v1_requires_token(chatdesk_home: Path) -> None:
    with TestClient(create_app()) as client:
        r = client.get("/v1/ping")
        assert r.status_code == 401
        body = r.json()
        assert body["ok"] is False
        assert body["error"]["code"] == "unauthorized"

        bad = client.get("/v1/ping", headers={"X-ChatDesk-Token": "wrong"})
        assert bad.status_code == 401
        assert bad.json()["error"]["message"] == "Invalid token"

        token = client.app.state.chatdesk_config.auth.install_token
        assert isinstance(token, str)
        assert token

        r2 = client.get("/v1/ping", headers={"Authorization": f"Bearer {token}"})
        assert r2.status_code == 200
        assert r2.json() == {"ok": True, "data": {"pong": True}, "error": None}

        r3 = client.get("/v1/system/info", headers={"X-ChatDesk-Token": token})
        assert r3.status_code == 200
        body3 = r3.json()
        assert body3["ok"] is True
        assert body3["data"]["chatdesk_home"]
        assert body3["data"]["version"]
        assert body3["data"]["database_initialized"] is True
        assert body3["data"]["ai_initialized"] is False
        assert body3["data"]["paths"]["db_dir"].endswith("db")


def test_docs_and_openapi_are_public(chatdesk_home: Path) -> None:
    with TestClient(create_app()) as client:
        docs = client.get("/docs")
        assert docs.status_code == 200

        openapi = client.get("/openapi.json")
        assert openapi.status_code == 200
        spec = openapi.json()
        assert "/v1/ping" in spec.get("paths", {})
        assert "/v1/api-keys" in spec.get("paths", {})

        op = spec["paths"]["/v1/ping"]["get"]
        assert "security" in op

        op2 = spec["paths"]["/v1/database/status"]["get"]
        assert "security" in op2


def test_startup_creates_databases_and_token(chatdesk_home: Path) -> None:
    with TestClient(create_app()):
        pass

    assert {p.name for p in (chatdesk_home / "db").glob("*.db")} == {
        "encryption.db",
        "apikeys.db",
        "conversations.db",
        "settings.db",
    }
    assert (chatdesk_home / "config" / "secure-storage.key").exists()
    assert "install_token" in (chatdesk_home / "config" / "core.json").read_text(encoding="utf-8")


def _request(*headers: tuple[str, str], query: str = "") -> Request:
    return Request(
        {
            "type": "http",
            "method": "GET",
            "path": "/v1/ping",
            "query_string": query.encode(),
            "headers": [(k.lower().encode(), v.encode()) for k, v in headers],
        }
    )


@pytest.mark.parametrize(
    ("path", "exempt"),
    [
        ("/healthz", True),
        ("/openapi.json", True),
        ("/docs", True),
        ("/docs/oauth2-redirect", True),
        ("/redoc", True),
        ("/v1/ping", False),
        ("/healthz/extra", False),
        ("/", False),
    ],
)
def test_is_exempt_path(path: str, exempt: bool) -> None:
    assert is_exempt_path(path) is exempt


def test_extract_token_prefers_chatdesk_header() -> None:
    both = _request(("X-ChatDesk-Token", "from-header"), ("Authorization", "Bearer from-bearer"))
    assert extract_token_from_request(both) == "from-header"
    assert extract_token_from_request(_request(("Authorization", "Bearer abc"))) == "abc"


def test_extract_token_ignores_other_sources() -> None:
    assert extract_token_from_request(_request()) is None
    assert extract_token_from_request(_request(("Authorization", "Basic dXNlcjpwdw=="))) is None
    assert extract_token_from_request(_request(("Authorization", "Bearer   "))) is None
    assert extract_token_from_request(_request(("Cookie", "token=abc"))) is None
    assert extract_token_from_request(_request(query="token=abc")) is None
