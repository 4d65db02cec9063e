import logging
import secrets
from typing import Optional

from fastapi import Depends, HTTPException, Request
from passlib.context import CryptContext
from sqlmodel import Session, select

from .db import get_session
from .errors import InvalidFieldError, PermissionDeniedError
from .models import User, UserRole
from .store import LedgerStore

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    return pwd_context.verify(password, hashed)


def register_user(store: LedgerStore, email: str, password: str, full_name: str) -> User:
    """Create an account. New users belong to no family and start with zero points."""
    email = (email or "").strip().lower()
    if not email or "@" not in email:
        raise InvalidFieldError("Please enter a valid email address")
    if not password:
        raise InvalidFieldError("Please choose a password")
    if store.query_rows(User, {"email": email}):
        raise InvalidFieldError("An account with this email already exists")
    user = store.insert_row(
        User,
        email=email,
        full_name=(full_name or "").strip() or email,
        hashed_password=hash_password(password),
        role=UserRole.member,
        points=0,
    )
    logger.info("Registered user %s", user.id)
    return user


def authenticate(store: LedgerStore, email: str, password: str) -> Optional[User]:
    matches = store.query_rows(User, {"email": (email or "").strip().lower()})
    if not matches or not verify_password(password, matches[0].hashed_password):
        return None
    return matches[0]


def get_current_user(
    request: Request, session: Session = Depends(get_session)
) -> Optional[User]:
    user_id = request.session.get("user_id")
    if not user_id:
        return None
    return session.exec(select(User).where(User.id == user_id)).first()


def require_user(user: Optional[User] = Depends(get_current_user)) -> User:
    if not user:
        raise HTTPException(status_code=401, detail="Please log in")
    return user


def require_family(user: User = Depends(require_user)) -> User:
    if not user.family_id:
        raise PermissionDeniedError("Create or join a family first")
    return user


def login_user(request: Request, user: User):
    request.session["user_id"] = user.id
    request.session["csrf_token"] = secrets.token_hex(16)


def logout_user(request: Request):
    request.session.clear()
