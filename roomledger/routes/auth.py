from __future__ import annotations

import logging
import time
from typing import Callable, Optional

import jwt
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Header, status
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from ..audit import record_activity
from ..config import get_settings
from ..db import atomic, get_db
from ..errors import Conflict, Forbidden
from ..rate_limit import rate_limit
from ..scope import AccessScope, Principal, scope_for
from .. import models, schemas

router = APIRouter()
logger = logging.getLogger("roomledger.auth")

JWT_ALG: str = "HS256"
# Use bcrypt_sha256 to avoid bcrypt's 72-byte password limit and handle unicode safely.
pwd_context = CryptContext(schemes=["bcrypt_sha256"], deprecated="auto")


# ----------------
# Helpers
# ----------------
def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def create_access_token(*, user: models.User) -> str:
    settings = get_settings()
    now = int(time.time())
    payload = {
        "sub": str(user.id),
        "username": user.username,
        "role": user.role,
        "iat": now,
        "exp": now + settings.jwt_ttl_seconds,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=JWT_ALG)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, get_settings().jwt_secret, algorithms=[JWT_ALG])
    except jwt.ExpiredSignatureError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired") from exc
    except jwt.InvalidTokenError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc


def ensure_identity_free(
    db: Session,
    username: Optional[str],
    email: Optional[str],
    exclude_user_id: Optional[int] = None,
) -> None:
    """Raise Conflict when the username or email already belongs to another account."""
    if username:
        q = db.query(models.User.id).filter(models.User.username == username)
        if exclude_user_id is not None:
            q = q.filter(models.User.id != exclude_user_id)
        if q.first():
            raise Conflict("Username already taken", {"field": "username"})
    if email:
        q = db.query(models.User.id).filter(models.User.email == email)
        if exclude_user_id is not None:
            q = q.filter(models.User.id != exclude_user_id)
        if q.first():
            raise Conflict("Email already registered", {"field": "email"})


# ----------------
# Dependencies
# ----------------
def bearer_token_from_auth_header(authorization: Optional[str]) -> str:
    if not authorization:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authorization header missing")
    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid Authorization header")
    return parts[1]


def get_current_user(
    db: Session = Depends(get_db),
    authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> models.User:
    token = bearer_token_from_auth_header(authorization)
    payload = decode_token(token)
    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload")
    user = db.get(models.User, int(user_id))
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    return user


def get_principal(user: models.User = Depends(get_current_user)) -> Principal:
    # Role comes from the stored user, so a promotion (guest -> tenant) applies without a new token
    return Principal(id=user.id, role=user.role, username=user.username)


def require_roles(*roles: str) -> Callable[..., Principal]:
    """Dependency factory: the caller's role must be one of `roles`."""

    def _dependency(principal: Principal = Depends(get_principal)) -> Principal:
        if principal.role not in roles:
            raise Forbidden(f"Requires role: {', '.join(roles)}")
        return principal

    return _dependency


def get_scope(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> AccessScope:
    return scope_for(db, principal)


# ----------------
# Routes
# ----------------
@router.post(
    "/auth/register",
    response_model=schemas.TokenResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("register"))],
)
def register(
    payload: schemas.RegisterRequest,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
) -> schemas.TokenResponse:
    # Self-registration always yields a guest; an owner/staff confirmation later promotes to tenant
    with atomic(db):
        ensure_identity_free(db, payload.username, payload.email)
        user = models.User(
            username=payload.username,
            fullname=payload.fullname,
            email=payload.email,
            phone=payload.phone,
            password_hash=hash_password(payload.password),
            role="guest",
        )
        db.add(user)
    db.refresh(user)
    logger.info("user.registered", extra={"user_id": user.id})
    background.add_task(record_activity, user.id, "register", "user", user.id, f"{user.username} registered")

    token = create_access_token(user=user)
    return schemas.TokenResponse(
        access_token=token,
        user=schemas.UserRead.model_validate(user),
    )


@router.post(
    "/auth/login",
    response_model=schemas.TokenResponse,
    dependencies=[Depends(rate_limit("login"))],
)
def login(payload: schemas.LoginRequest, db: Session = Depends(get_db)) -> schemas.TokenResponse:
    user = db.query(models.User).filter(models.User.username == payload.username).first()
    if not user or not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    token = create_access_token(user=user)
    return schemas.TokenResponse(
        access_token=token,
        user=schemas.UserRead.model_validate(user),
    )


@router.get("/auth/me", response_model=schemas.UserRead)
def me(user: models.User = Depends(get_current_user)) -> models.User:
    return user


@router.post("/auth/check-username", response_model=schemas.IdentityAvailability)
def check_username(payload: schemas.UsernameCheck, db: Session = Depends(get_db)) -> schemas.IdentityAvailability:
    taken = db.query(models.User.id).filter(models.User.username == payload.username).first()
    return schemas.IdentityAvailability(available=taken is None)


@router.post("/auth/check-email", response_model=schemas.IdentityAvailability)
def check_email(payload: schemas.EmailCheck, db: Session = Depends(get_db)) -> schemas.IdentityAvailability:
    taken = db.query(models.User.id).filter(models.User.email == payload.email).first()
    return schemas.IdentityAvailability(available=taken is None)
