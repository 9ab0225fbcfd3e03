"""
Bearer-token adapter: turns the Authorization header into a Principal.
Credentials are issued elsewhere; this module only verifies them and reads
companyId / role / userId from the JWT claims.

When WELLDASH_JWT_SECRET is not set (local development) the principal comes
from the X-Company-Id / X-Role headers instead. There is no default company.
"""
import time
from dataclasses import dataclass
from typing import Any

import jwt
from fastapi import Header, Request

from .config import settings
from .errors import AuthError

JWT_EXPIRATION_HOURS = 24


@dataclass(frozen=True)
class Principal:
    """Authenticated caller. company_id scopes every query in this service."""
    company_id: int
    role: str = "user"
    user_id: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def create_token(company_id: int, role: str = "user", user_id: str | None = None) -> str:
    now = int(time.time())
    payload = {
        "companyId": company_id,
        "role": role,
        "iat": now,
        "exp": now + JWT_EXPIRATION_HOURS * 3600,
    }
    if user_id is not None:
        payload["userId"] = user_id
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_token(token: str) -> dict[str, Any] | None:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.PyJWTError:
        return None


def principal_from_claims(payload: dict[str, Any]) -> Principal:
    try:
        company_id = int(payload["companyId"])
    except (KeyError, TypeError, ValueError):
        raise AuthError("Token has no company")
    user_id = payload.get("userId")
    return Principal(
        company_id=company_id,
        role=str(payload.get("role") or "user"),
        user_id=str(user_id) if user_id is not None else None,
    )


def get_principal(
    request: Request,
    x_company_id: str | None = Header(None, alias="X-Company-Id"),
    x_role: str | None = Header(None, alias="X-Role"),
) -> Principal:
    """Resolve the caller from the Bearer token, or from headers in standalone mode."""
    if settings.jwt_enabled:
        auth_header = request.headers.get("authorization") or ""
        if not auth_header.startswith("Bearer "):
            raise AuthError()
        payload = verify_token(auth_header[7:].strip())
        if payload is None:
            raise AuthError("Invalid or expired token")
        return principal_from_claims(payload)
    # Standalone: company from header, no fallback
    if not x_company_id or not x_company_id.strip():
        raise AuthError()
    try:
        company_id = int(x_company_id.strip())
    except ValueError:
        raise AuthError("X-Company-Id must be an integer")
    return Principal(company_id=company_id, role=(x_role or "user").strip() or "user")
