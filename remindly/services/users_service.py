from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from remindly.models import User


class UserValidationError(ValueError):
    pass


class UserNotFoundError(UserValidationError):
    pass


@dataclass(frozen=True)
class CreateUserInput:
    name: str
    email: str


def get_user(session: Session, user_id: int) -> User:
    user = session.get(User, user_id)
    if user is None:
        raise UserNotFoundError(f"User {user_id} not found")
    return user


def create_user(session: Session, data: CreateUserInput) -> User:
    name = data.name.strip()
    email = data.email.strip().lower()
    if not name:
        raise UserValidationError("name is required")
    if "@" not in email:
        raise UserValidationError("email is invalid")
    if session.scalar(select(User.id).where(User.email == email)) is not None:
        raise UserValidationError(f"User with email {email} already exists")

    user = User(name=name, email=email)
    session.add(user)
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise UserValidationError(f"User with email {email} already exists") from exc
    session.refresh(user)
    return user
