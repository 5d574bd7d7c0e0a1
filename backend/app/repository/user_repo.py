from sqlalchemy import select
from sqlalchemy.orm import Session
from typing import Optional
from app.db.model.user import User
from app.core.security import get_password_hash


DEFAULT_USERNAME = "syncadmin"
DEFAULT_FULL_NAME = "Store Sync Admin"


def get_by_username(db: Session, username: str) -> Optional[User]:
    return db.scalars(select(User).where(User.username == username)).first()


def create_user(db: Session, username: str, hashed_password: str, *,
                email: str | None = None, full_name: str | None = None,
                is_superuser: bool = False) -> User:
    user = User(
        username=username,
        email=email,
        hashed_password=hashed_password,
        full_name=full_name,
        is_superuser=is_superuser,
        is_active=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def create_default_user(db: Session, password: str) -> User:
    """Create the default admin user if it does not exist; return the user."""
    existing = get_by_username(db, DEFAULT_USERNAME)
    if existing:
        return existing

    return create_user(
        db,
        username=DEFAULT_USERNAME,
        hashed_password=get_password_hash(password),
        full_name=DEFAULT_FULL_NAME,
        is_superuser=True,
    )
