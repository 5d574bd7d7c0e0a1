from typing import Optional

from fastapi import Depends, Request, Response
from sqlalchemy.orm import Session
from app.db.session import get_db
from app.core.errors import SyncApiError
from app.core.security import verify_password, create_access_token, decode_token
from app.core.config import settings
from app.db.model.user import User
from app.repository.user_repo import get_by_username


COOKIE_NAME = settings.COOKIE_NAME

# 统一 Cookie 策略：
# - 线上/云环境：Secure=True，SameSite="Strict"
# - 本地 http 开发（不走 HTTPS）可以降级 Secure=False
ENV = settings.ENVIRONMENT
COOKIE_SECURE_DEFAULT = False if ENV in ("local", "dev", "test") else True
COOKIE_DOMAIN = settings.COOKIE_DOMAIN or None
COOKIE_SAMESITE = "Strict"


'''
HttpOnly 登录票据 Cookie
    - max_age 与 JWT 的过期时间一致（ACCESS_TOKEN_EXPIRE_MINUTES）
    - 前端页面走 Cookie；脚本 / 定时器 / 其它服务走 Authorization: Bearer
'''
def set_auth_cookie(resp: Response, token: str, max_age: int):
    resp.set_cookie(
        key=COOKIE_NAME,
        value=token,
        max_age=max_age,
        httponly=True,
        secure=COOKIE_SECURE_DEFAULT,
        samesite=COOKIE_SAMESITE,
        domain=COOKIE_DOMAIN,
        path="/",
    )


def clear_cookie(response: Response):
    response.delete_cookie(key=COOKIE_NAME, domain=COOKIE_DOMAIN, path="/")


'''
登录：
    1) 校验用户名/密码（passlib bcrypt）
    2) 签发 Access Token（JWT HS256），写入 HttpOnly Cookie
    3) 返回 (user, token)，token 也放进响应体，方便 Bearer 调用方
'''
def login_user(response: Response, db: Session, username: str, password: str) -> tuple[User, str]:
    user = authenticate_user(db, username, password)
    if not user:
        raise SyncApiError("UNAUTHORIZED")

    expires_minutes = int(settings.ACCESS_TOKEN_EXPIRE_MINUTES or 480)
    token = create_access_token(
        {"user_id": user.id, "username": user.username},
        expires_minutes=expires_minutes,
    )
    set_auth_cookie(response, token, expires_minutes * 60)
    return user, token


def authenticate_user(db: Session, username: str, password: str) -> User | None:
    user = get_by_username(db, username)
    if not user or not user.is_active:
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user


def _extract_token(request: Request) -> Optional[str]:
    """优先 Authorization: Bearer，其次 Cookie。"""
    header = request.headers.get("Authorization") or ""
    scheme, _, value = header.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()
    return request.cookies.get(COOKIE_NAME) or None


'''
获取当前登录用户
    - 无状态：decode JWT → user_id → 回表取用户
    - 任何失败都只回通用的 UNAUTHORIZED，不区分"没带 token / 过期 / 用户被禁用"
'''
def get_current_user(request: Request, db: Session = Depends(get_db)) -> User:
    raw = _extract_token(request)
    if not raw:
        raise SyncApiError("UNAUTHORIZED")
    payload = decode_token(raw)
    if not payload or "user_id" not in payload:
        raise SyncApiError("UNAUTHORIZED")

    user = db.get(User, payload["user_id"])
    if not user or not user.is_active:
        raise SyncApiError("UNAUTHORIZED")
    return user
