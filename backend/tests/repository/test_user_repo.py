from app.core.security import verify_password
from app.repository import user_repo


def test_create_default_user_is_idempotent(db):
    created = user_repo.create_default_user(db, "change-me-now")

    assert created.username == user_repo.DEFAULT_USERNAME
    assert created.is_superuser and created.is_active
    assert created.hashed_password != "change-me-now"
    assert verify_password("change-me-now", created.hashed_password)

    again = user_repo.create_default_user(db, "another")
    assert again.id == created.id
    assert user_repo.get_by_username(db, user_repo.DEFAULT_USERNAME).id == created.id
