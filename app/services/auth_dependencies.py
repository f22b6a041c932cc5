from fastapi import Depends, Header, HTTPException, Request
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from app.config import settings
from app.db import SessionLocal
from app.models.user import User
from app.services.common import coerce_uuid


def _get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _extract_bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    parts = authorization.split(" ", 1)
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1].strip()
    return None


def decode_access_token(token: str) -> dict:
    if not settings.jwt_secret:
        raise HTTPException(status_code=401, detail="Unauthorized")
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc


def require_user_auth(
    authorization: str | None = Header(default=None),
    request: Request = None,
    db: Session = Depends(_get_db),
):
    token = _extract_bearer_token(authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Unauthorized")
    payload = decode_access_token(token)
    try:
        user_id = coerce_uuid(payload.get("sub"))
    except ValueError:
        user_id = None
    if not user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    user = db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=401, detail="Unauthorized")
    roles_value = payload.get("roles")
    roles = [str(role) for role in roles_value] if isinstance(roles_value, list) else []
    if request is not None:
        request.state.actor_id = str(user_id)
    return {"user_id": str(user_id), "roles": roles}


def require_role(role_name: str):
    def _require_role(auth=Depends(require_user_auth)):
        if role_name not in set(auth.get("roles") or []):
            raise HTTPException(status_code=403, detail="Forbidden")
        return auth

    return _require_role


def is_admin(auth: dict) -> bool:
    return "admin" in set(auth.get("roles") or [])
