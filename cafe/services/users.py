from __future__ import annotations

from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from cafe.models.user import User
from cafe.services.errors import UserNotFoundError


class UserDirectory:
    """Read-only lookups over the users table."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def find_by_id(self, user_id: str | None) -> Optional[User]:
        if not user_id:
            return None
        return self.db.get(User, user_id)

    def find_by_email(self, email: str | None) -> Optional[User]:
        normalized = (email or "").strip().lower()
        if not normalized:
            return None
        return self.db.query(User).filter(func.lower(User.email) == normalized).first()

    def get_by_email(self, email: str) -> User:
        user = self.find_by_email(email)
        if user is None:
            raise UserNotFoundError(email)
        return user

    def names_by_id(self, user_ids: set[str]) -> dict[str, str]:
        ids = {user_id for user_id in user_ids if user_id}
        if not ids:
            return {}
        rows = self.db.query(User.id, User.name, User.email).filter(User.id.in_(ids)).all()
        return {row.id: (row.name or row.email or "") for row in rows}
