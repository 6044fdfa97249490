from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Response, status
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..auth import (
    create_access_token,
    decode_token,
    get_authorization,
    get_current_user,
    revoke_jti,
    verify_password,
)
from ..config import Settings, settings
from ..db import get_db
from ..models import User
from ..rate_limit import check_rate_limit
from ..schemas import DevLoginIn, LoginIn, TokenOut
from ..telemetry import log_json


def _set_token_cookie(response: Response, cfg: Settings, token: str) -> None:
    response.set_cookie(
        cfg.ACCESS_TOKEN_COOKIE,
        token,
        max_age=cfg.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        httponly=True,
        secure=cfg.SESSION_HTTPS_ONLY,
        samesite="lax",
    )


def build_router(current_settings: Settings | None = None) -> APIRouter:
    cfg = current_settings or settings
    router = APIRouter(prefix="/auth", tags=["auth"])

    @router.post("/login", response_model=TokenOut)
    def login(body: LoginIn, response: Response, db: Session = Depends(get_db)) -> TokenOut:
        email = body.email.lower().strip()
        # Throttle login attempts per email to mitigate brute force.
        check_rate_limit(f"login:{email}", cfg.LOGIN_RATE_LIMIT_PER_MINUTE)
        user = db.scalars(select(User).where(User.email == email)).one_or_none()
        if not user or not verify_password(body.password, user.hashed_password) or not user.is_active:
            log_json(30, "auth_login_failed", email_domain=email.rsplit("@", 1)[-1])
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
        token = create_access_token(user_id=user.id)
        _set_token_cookie(response, cfg, token)
        log_json(20, "auth_login", user_id=user.id)
        return TokenOut(access_token=token)

    # Dev login endpoint - only available in non-production environments
    if cfg.ALLOW_DEV_LOGIN and cfg.ENVIRONMENT != "production":

        @router.post("/token", response_model=TokenOut)
        def dev_login(body: DevLoginIn, response: Response, db: Session = Depends(get_db)) -> TokenOut:
            """
            Dev-only login endpoint. NOT AVAILABLE IN PRODUCTION.
            Creates or gets a user by email without password verification.
            """
            email = body.email.lower().strip()
            user = db.scalars(select(User).where(User.email == email)).one_or_none()
            if not user:
                user = User(email=email, hashed_password="", is_active=True, roles=[cfg.ADMIN_ACCESS_ROLE])
                db.add(user)
                db.commit()
                db.refresh(user)

            token = create_access_token(user_id=user.id)
            _set_token_cookie(response, cfg, token)
            return TokenOut(access_token=token)

    @router.post("/logout")
    def logout(
        response: Response,
        token: str = Depends(get_authorization),
        user: User = Depends(get_current_user),
    ) -> dict[str, Any]:
        """
        Revoke the current JWT by adding its JTI to the revocation list and
        drop the session cookie.
        """
        try:
            payload = decode_token(token)
        except JWTError:
            payload = {}
        jti = payload.get("jti")
        if jti:
            revoke_jti(jti, payload.get("exp", 0))
        response.delete_cookie(cfg.ACCESS_TOKEN_COOKIE)
        log_json(20, "auth_logout", user_id=user.id)
        return {"ok": True, "message": "Logged out successfully"}

    return router


router = build_router()
