from typing import Optional

import jwt
from fastapi import HTTPException, Request

from lumina.config import AUTH_JWT_ALGORITHM, AUTH_JWT_AUDIENCE, AUTH_JWT_SECRET


def get_bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header:
        return None
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token


def verify_access_token(token: str) -> dict | None:
    try:
        return jwt.decode(
            token,
            AUTH_JWT_SECRET,
            algorithms=[AUTH_JWT_ALGORITHM],
            audience=AUTH_JWT_AUDIENCE,
        )
    except jwt.PyJWTError:
        return None


def user_from_token(token: Optional[str]) -> dict | None:
    if not token:
        return None
    payload = verify_access_token(token)
    if not payload or not payload.get("sub"):
        return None
    return {"user_id": payload["sub"], "email": payload.get("email")}


def get_optional_user(request: Request) -> dict | None:
    token = get_bearer_token(request)
    if not token:
        return None
    user = user_from_token(token)
    if not user:
        raise HTTPException(status_code=401, detail="invalid session")
    return user


def require_user(request: Request) -> dict:
    token = get_bearer_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="auth required")
    user = user_from_token(token)
    if not user:
        raise HTTPException(status_code=401, detail="invalid session")
    return user
