from fastapi import Request

from app.db import SessionLocal
from app.services.auth_dependencies import require_role, require_user_auth

__all__ = ["get_db", "get_payment_gateway", "require_role", "require_user_auth"]


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_payment_gateway(request: Request):
    """The gateway client created at startup and kept on ``app.state``."""
    return request.app.state.payment_gateway
