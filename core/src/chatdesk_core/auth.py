"""Per-install token auth for the ChatDesk Core HTTP API.

Every request must carry the install token written to core.json on first
start, except the health check and the OpenAPI docs. Clients send it as
`X-ChatDesk-Token: <token>` or `Authorization: Bearer <token>`; cookies and
query parameters are never read.
"""

from __future__ import annotations

from typing import Final

from fastapi import HTTPException, Request, Security
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer

AUTHORIZATION_HEADER: Final[str] = "Authorization"
TOKEN_HEADER: Final[str] = "X-ChatDesk-Token"

_bearer_scheme = HTTPBearer(auto_error=False)
_token_header_scheme = APIKeyHeader(name=TOKEN_HEADER, auto_error=False)


def is_exempt_path(path: str) -> bool:
    """Paths served without a token: /healthz, /openapi.json, /docs* and /redoc*."""

    if path == "/healthz":
        return True
    if path == "/openapi.json":
        return True
    if path.startswith("/docs"):
        return True
    if path.startswith("/redoc"):
        return True
    return False


def extract_token_from_request(request: Request) -> str | None:
    """The token a client sent, or None.

    X-ChatDesk-Token wins over Authorization. Only the Bearer scheme is
    read from Authorization, and a blank bearer value counts as missing.
    """

    header_token = request.headers.get(TOKEN_HEADER)
    if header_token:
        return header_token

    auth = request.headers.get(AUTHORIZATION_HEADER)
    if not auth:
        return None

    prefix = "Bearer "
    if auth.startswith(prefix):
        return auth[len(prefix) :].strip() or None
    return None


def _expected_token(request: Request) -> str | None:
    config = getattr(request.app.state, "chatdesk_config", None)
    return getattr(getattr(config, "auth", None), "install_token", None)


async def require_install_token(
    request: Request,
    bearer: HTTPAuthorizationCredentials | None = Security(_bearer_scheme),  # noqa: B008
    header_token: str | None = Security(_token_header_scheme),  # noqa: B008
) -> None:
    """Require the per-install token for protected endpoints.

    Accepts either:
    - Authorization: Bearer <token>
    - X-ChatDesk-Token: <token>
    """

    expected_token = _expected_token(request)

    # Fail closed; startup always generates a token.
    if not expected_token:
        raise HTTPException(status_code=500, detail="Server auth token not initialized")

    provided = header_token
    if not provided and bearer is not None:
        provided = bearer.credentials

    if not provided:
        raise HTTPException(status_code=401, detail="Missing token")

    if provided != expected_token:
        raise HTTPException(status_code=401, detail="Invalid token")
