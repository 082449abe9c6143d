"""
Bearer-token gate for protected endpoints.

Every protected call goes through ``authenticate``:

1. ``Authorization`` header present, shaped ``Bearer <token>``, token non-empty
2. token accepted by the trust layer
3. client IP / user agent recorded as device activity

Failures raise an ``AuthError`` subclass. They are told apart in logs and
tests, but clients always get the same 401 body from ``auth_error_response``.
"""

from typing import Mapping

from fastapi import Request
from fastapi.responses import JSONResponse
from loguru import logger

from .errors import (
    AuthError,
    EmptyTokenError,
    ExpiredTokenError,
    InvalidTokenError,
    MalformedTokenError,
    MissingTokenError,
)
from .models import AuthContext
from .trust import TokenStatus, TrustLayer, truncate_token


BEARER_PREFIX = "Bearer "


def extract_bearer_token(header) -> str:
    """Pull the token out of an ``Authorization`` header value."""
    if not header:
        raise MissingTokenError()
    if not header.startswith(BEARER_PREFIX):
        raise MalformedTokenError()
    token = header[len(BEARER_PREFIX):].strip()
    if not token:
        raise EmptyTokenError()
    return token


def _first_entry(value: str) -> str:
    return value.split(",")[0].strip()


def extract_client_ip(headers: Mapping[str, str], remote_addr: str) -> str:
    """Real client address, honouring the usual proxy headers."""
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        return _first_entry(forwarded)

    real_ip = headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()

    original = headers.get("x-original-forwarded-for")
    if original:
        return _first_entry(original)

    return remote_addr


def authenticate(trust: TrustLayer, headers: Mapping[str, str], remote_addr: str) -> AuthContext:
    """Run the full gate for one request and return the caller's identity."""
    headers = {k.lower(): v for k, v in headers.items()}

    try:
        token = extract_bearer_token(headers.get("authorization"))
    except AuthError as exc:
        logger.warning(f"[AUTH] {exc.message} (from {remote_addr})")
        raise

    status = trust.validate(token)
    if status is not TokenStatus.VALID:
        logger.warning(f"[AUTH] {status.value} token {truncate_token(token)} from {remote_addr}")
        if status is TokenStatus.EXPIRED:
            raise ExpiredTokenError()
        raise InvalidTokenError()

    client_ip = extract_client_ip(headers, remote_addr)
    user_agent = headers.get("user-agent") or "unknown"

    logger.debug(f"[AUTH] valid token {truncate_token(token)} from {client_ip}")
    trust.track_authenticated(token, client_ip, user_agent)

    return AuthContext(token=token, client_ip=client_ip, user_agent=user_agent)


# ---------------------------------------------------------------------------
# FastAPI glue
# ---------------------------------------------------------------------------

def require_auth(request: Request) -> AuthContext:
    """Dependency for protected routes; also exposes the context on ``request.state.auth``."""
    remote_addr = request.client.host if request.client else "unknown"
    context = authenticate(request.app.state.trust, request.headers, remote_addr)
    request.state.auth = context
    return context


def auth_error_response(exc: AuthError) -> JSONResponse:
    """The single 401 shape every authentication failure maps to."""
    status_code = 401
    return JSONResponse(
        status_code=status_code,
        content={
            "error": "authentication_failed",
            "message": exc.message,
            "status": status_code,
        },
        headers={"WWW-Authenticate": "Bearer"},
    )
